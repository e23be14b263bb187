from collections.abc import Mapping
from typing import Any, Protocol
from models.events import TrackedEvent, utcnow
from services.sanitize import sanitize_event_data


class Tracker(Protocol):
    """Fire-and-forget event emission, implemented by EventBuffer and RecordingTracker."""

    def track(self, event_type: str, event_data: Mapping[str, Any] | None = None, user_id: str | None = None) -> None: ...


class EventReader(Protocol):
    """Read access to a user's stored events, oldest first."""

    def get_events_for_user(self, user_id: str) -> list[TrackedEvent]: ...


def build_event(event_type: str, event_data: Mapping[str, Any] | None, user_id: str | None) -> TrackedEvent:
    return TrackedEvent(
        user_id=user_id,
        event_type=event_type,
        event_data=sanitize_event_data(event_data),
        timestamp=utcnow(),
    )


class RecordingTracker:
    """
    In-process tracker that keeps every event it is given.

    Used in tests and local tooling in place of the EventBuffer. It also serves
    the recorded history through ``get_events_for_user`` so it can back a
    FunnelAnalyzer's event reader.
    """

    def __init__(self):
        self.events: list[TrackedEvent] = []

    def track(self, event_type: str, event_data: Mapping[str, Any] | None = None, user_id: str | None = None) -> None:
        self.events.append(build_event(event_type, event_data, user_id))

    def get_events_for_user(self, user_id: str) -> list[TrackedEvent]:
        return [event for event in self.events if event.user_id == user_id]

    def of_type(self, event_type: str) -> list[TrackedEvent]:
        return [event for event in self.events if event.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()
