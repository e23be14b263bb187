"""
Session-aware tracking of one user's learning journey.

A session starts at app launch and runs through onboarding, interest
selection, the video preview, vTPR keyword practice, milestones and the
subtitle-free magic moment that completes activation. Every event carries the
session id, and step events carry the step the user came from. Canonical
funnel steps are emitted through FunnelAnalyzer so they count in the funnel;
the rest are plain journey events.
"""
from collections.abc import Callable, Mapping
from typing import Any
from services.funnel import FunnelAnalyzer
from services.tracking import Tracker

import logging
import time
import uuid

logger = logging.getLogger(__name__)

APP_PLATFORM = "mobile"
APP_VERSION = "1.0.0"


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:12]}"


class LearningJourneyTracker:
    """One user session at a time. `reset_session` ends it."""

    def __init__(self, tracker: Tracker, clock: Callable[[], float] = time.monotonic):
        self.tracker = tracker
        self.funnel = FunnelAnalyzer(tracker)
        self._clock = clock
        self.session_id: str | None = None
        self._session_started_at: float | None = None
        self._current_step: str | None = None

    # --- Session state ---

    def start_session(self, user_id: str, platform: str = APP_PLATFORM, app_version: str = APP_VERSION) -> str:
        self.session_id = new_session_id()
        self._session_started_at = self._clock()
        self._current_step = "app_launch"
        self.funnel.track_app_launch(user_id, sessionId=self.session_id, platform=platform, appVersion=app_version)
        logger.debug("Started session %s for user %s", self.session_id, user_id)
        return self.session_id

    def get_current_funnel_step(self) -> str | None:
        return self._current_step

    def get_session_duration(self) -> int:
        """Milliseconds since start_session, 0 without a session."""
        if self._session_started_at is None:
            return 0
        return round((self._clock() - self._session_started_at) * 1000)

    def reset_session(self) -> None:
        self.session_id = None
        self._session_started_at = None
        self._current_step = None

    def _advance(self, step: str) -> dict[str, Any]:
        """Move to `step`; returns the session fields to stamp on its event."""
        fields = {"sessionId": self.session_id, "previousStep": self._current_step}
        self._current_step = step
        return fields

    def _track(self, event_type: str, user_id: str, data: Mapping[str, Any]) -> None:
        self.tracker.track(event_type, {**data, "sessionId": self.session_id}, user_id)

    # --- Onboarding and interests ---

    def track_onboarding_start(self, user_id: str) -> None:
        self._track("onboarding_start", user_id, self._advance("onboarding_start"))

    def track_onboarding_complete(self, user_id: str, duration: int, steps_completed: int) -> None:
        fields = self._advance("onboarding_complete")
        self.funnel.track_onboarding_complete(user_id, duration, stepsCompleted=steps_completed, **fields)

    def track_interest_selection(self, user_id: str, interest_id: str, interest_name: str, selection_time: int) -> None:
        fields = self._advance("interest_selected")
        self.funnel.track_interest_selected(user_id, interest_id, interest_name, selectionTime=selection_time, **fields)

    # --- Video preview ---

    def track_video_preview_start(self, user_id: str, drama_id: str, interest_id: str) -> None:
        self._track("video_play_start", user_id, {
            **self._advance("video_preview_start"),
            "dramaId": drama_id,
            "interestId": interest_id,
            "videoType": "preview",
        })

    def track_video_preview_complete(self, user_id: str, drama_id: str, duration: int, completion_rate: float) -> None:
        self._track("video_play_complete", user_id, {
            **self._advance("video_preview_complete"),
            "dramaId": drama_id,
            "duration": duration,
            "completionRate": completion_rate,
            "videoType": "preview",
        })

    # --- vTPR keyword practice ---

    def track_vtpr_start(self, user_id: str, keyword_id: str, drama_id: str) -> None:
        self._track("keyword_attempt", user_id, {
            **self._advance("vtpr_start"),
            "keywordId": keyword_id,
            "dramaId": drama_id,
            "attemptType": "start",
        })

    def track_vtpr_answer(self, user_id: str, keyword_id: str, is_correct: bool, attempts: int, time_spent: int,
                          selected_option: str | None = None) -> None:
        """An answer does not move the journey; a correct one also unlocks the keyword."""
        self._track("keyword_attempt", user_id, {
            "keywordId": keyword_id,
            "attemptType": "answer",
            "isCorrect": is_correct,
            "attempts": attempts,
            "timeSpent": time_spent,
            "selectedOption": selected_option,
            "previousStep": self._current_step,
        })
        if is_correct:
            self._track("keyword_unlock", user_id, {
                "keywordId": keyword_id,
                "attempts": attempts,
                "timeSpent": time_spent,
            })

    def track_vtpr_complete(self, user_id: str, drama_id: str, keywords_completed: int, accuracy: float) -> None:
        fields = self._advance("vtpr_complete")
        self.funnel.track_vtpr_complete(user_id, {
            **fields,
            "dramaId": drama_id,
            "keywordsCompleted": keywords_completed,
            "accuracy": accuracy,
        })

    def track_milestone_reached(self, user_id: str, milestone_type: str, drama_id: str, keywords_completed: int,
                                total_keywords: int, accuracy: float) -> None:
        self._track("milestone_reached", user_id, {
            **self._advance("milestone_reached"),
            "milestoneType": milestone_type,
            "dramaId": drama_id,
            "keywordsCompleted": keywords_completed,
            "totalKeywords": total_keywords,
            "accuracy": accuracy,
        })

    # --- Magic moment and activation ---

    def track_magic_moment_start(self, user_id: str, drama_id: str) -> None:
        self._track("video_play_start", user_id, {
            **self._advance("magic_moment_start"),
            "dramaId": drama_id,
            "videoType": "magic_moment",
            "subtitlesEnabled": False,
        })

    def track_activation_complete(self, user_id: str, drama_id: str, duration: int, completion_rate: float,
                                  user_feedback: str | None = None) -> None:
        """The activation event, followed by the completion of the magic moment video."""
        total_session_time = self.get_session_duration() if self._session_started_at is not None else None
        fields = self._advance("activation")
        self.funnel.track_activation(
            user_id, drama_id, user_feedback,
            duration=duration,
            completionRate=completion_rate,
            totalSessionTime=total_session_time,
            **fields,
        )
        self._track("video_play_complete", user_id, {
            "dramaId": drama_id,
            "videoType": "magic_moment",
            "duration": duration,
            "completionRate": completion_rate,
            "subtitlesEnabled": False,
        })

    # --- Engagement and diagnostics ---

    def track_user_feedback(self, user_id: str, feedback_type: str, rating: int, comment: str | None = None,
                            context: str | None = None) -> None:
        self._track("user_feedback", user_id, {
            "feedbackType": feedback_type,
            "rating": rating,
            "comment": comment,
            "context": context,
            "currentStep": self._current_step,
        })

    def track_app_background(self, user_id: str, time_spent: int) -> None:
        self._track("app_background", user_id, {"timeSpent": time_spent, "currentStep": self._current_step})

    def track_app_foreground(self, user_id: str, time_away: int) -> None:
        self._track("app_foreground", user_id, {"timeAway": time_away, "currentStep": self._current_step})

    def track_error(self, user_id: str, error_type: str, error_message: str,
                    context: Mapping[str, Any] | None = None) -> None:
        logger.info("Client error reported by %s at %s: %s", user_id, self._current_step, error_type)
        self._track("app_error", user_id, {
            "errorType": error_type,
            "errorMessage": error_message,
            "context": context or {},
            "currentStep": self._current_step,
        })

    def track_performance(self, user_id: str, metric_name: str, value: float,
                          context: Mapping[str, Any] | None = None) -> None:
        self._track("performance_metric", user_id, {
            "metricName": metric_name,
            "value": value,
            "context": context or {},
        })
