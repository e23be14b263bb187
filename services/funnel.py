"""
Conversion funnel analytics.

The canonical funnel is app_launch -> onboarding_complete -> interest_selected
-> vtpr_complete -> activation. Step helpers stamp funnel events with their
step number and name; the analysis methods are pure computations over counts
or events supplied by the caller and raise FunnelDataError on input that would
otherwise produce NaN or infinite rates.
"""
from collections.abc import Mapping, Sequence
from typing import Any, TypeVar
from pydantic import BaseModel, ValidationError
from models.events import TrackedEvent
from models.funnel import (
    Anomaly, CohortComparison, CohortData, CohortSnapshot, DropAlert, DropOffPoint, ExperimentImpact,
    ExperimentResults, FunnelAnalysis, FunnelStepCount, OptimizationResults, UserProgression,
)
from services.recommendations import recommend
from services.stats import two_proportion_z_test
from services.tracking import EventReader, Tracker

import logging

logger = logging.getLogger(__name__)

FUNNEL_STEPS: dict[str, int] = {
    "app_launch": 1,
    "onboarding_complete": 2,
    "interest_selected": 3,
    "vtpr_complete": 4,
    "activation": 5,
}
TOTAL_FUNNEL_STEPS = len(FUNNEL_STEPS)
FUNNEL_EVENT_PREFIX = "funnel_"
# Anomaly rates are shares of this step when it is reported
ENTRY_STEP = "app_launch"

# Lower bound of |deviation| for each severity, checked from the top
SEVERITY_BANDS = ((0.5, "critical"), (0.3, "high"), (0.2, "medium"))

ModelT = TypeVar("ModelT", bound=BaseModel)


class FunnelDataError(ValueError):
    """Analysis input that cannot produce a meaningful result."""


def _coerce(model: type[ModelT], value: Any) -> ModelT:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise FunnelDataError(f"invalid {model.__name__}: {e.errors()[0]['msg']}") from e


def _coerce_all(model: type[ModelT], values: Sequence[Any]) -> list[ModelT]:
    return [_coerce(model, value) for value in values]


def classify_severity(deviation: float) -> str:
    magnitude = abs(deviation)
    for cutoff, severity in SEVERITY_BANDS:
        if magnitude >= cutoff:
            return severity
    return "low"


def funnel_event_type(step_name: str) -> str:
    return f"{FUNNEL_EVENT_PREFIX}{step_name}"


class FunnelAnalyzer:
    """Funnel step tracking plus funnel health computations."""

    def __init__(self, tracker: Tracker, event_reader: EventReader | None = None):
        self.tracker = tracker
        self.event_reader = event_reader

    # --- Step tracking ---

    def _track_step(self, step_name: str, user_id: str, extra: Mapping[str, Any]) -> None:
        payload = {
            **extra,
            "funnelStep": FUNNEL_STEPS[step_name],
            "stepName": step_name,
            "userId": user_id,
        }
        self.tracker.track(funnel_event_type(step_name), payload, user_id)

    def track_app_launch(self, user_id: str, **extra) -> None:
        self._track_step("app_launch", user_id, extra)

    def track_onboarding_complete(self, user_id: str, duration: int, **extra) -> None:
        self._track_step("onboarding_complete", user_id, {**extra, "duration": duration})

    def track_interest_selected(self, user_id: str, interest_id: str, interest_name: str | None = None, **extra) -> None:
        data = {**extra, "interestId": interest_id}
        if interest_name is not None:
            data["interestName"] = interest_name
        self._track_step("interest_selected", user_id, data)

    def track_vtpr_complete(self, user_id: str, session_data: Mapping[str, Any]) -> None:
        self._track_step("vtpr_complete", user_id, session_data)

    def track_activation(self, user_id: str, drama_id: str, user_feedback: str | None = None, **extra) -> None:
        self._track_step("activation", user_id, {**extra, "dramaId": drama_id, "userFeedback": user_feedback})

    def track_conversion_event(self, step_name: str, user_id: str, data: Mapping[str, Any] | None = None) -> None:
        """Track a funnel step by name, for callers that only know the step as a string."""
        if step_name not in FUNNEL_STEPS:
            logger.warning("Unknown conversion event type: %s", step_name)
            return
        self._track_step(step_name, user_id, data or {})

    def track_experiment_funnel_step(self, user_id: str, experiment_id: str, variant: str, step_name: str) -> None:
        if step_name not in FUNNEL_STEPS:
            logger.warning("Experiment %s: unknown funnel step %s", experiment_id, step_name)
            return
        self.tracker.track("experiment_funnel_step", {
            "experimentId": experiment_id,
            "variant": variant,
            "funnelStep": FUNNEL_STEPS[step_name],
            "stepName": step_name,
            "userId": user_id,
        }, user_id)

    # --- Conversion and drop-off ---

    def calculate_conversion_rates(self, funnel_data: Sequence[FunnelStepCount | Mapping]) -> dict[str, float]:
        """Step-to-step conversion keyed by the later step, plus 'overall' (last over first)."""
        steps = _coerce_all(FunnelStepCount, funnel_data)
        if len(steps) < 2:
            raise FunnelDataError("conversion rates need at least two funnel steps")

        rates: dict[str, float] = {}
        for previous, current in zip(steps, steps[1:]):
            if previous.users == 0:
                raise FunnelDataError(f"step '{previous.step}' has no users, conversion to '{current.step}' is undefined")
            rates[current.step] = round(current.users / previous.users, 3)

        rates["overall"] = round(steps[-1].users / steps[0].users, 3)
        return rates

    def identify_drop_off_points(self, funnel_data: Sequence[FunnelStepCount | Mapping], threshold: float) -> list[DropOffPoint]:
        """Transitions losing at least `threshold` of users, in funnel order."""
        if not 0 <= threshold <= 1:
            raise FunnelDataError(f"threshold must be within [0, 1], got {threshold}")

        steps = _coerce_all(FunnelStepCount, funnel_data)
        if len(steps) < 2:
            raise FunnelDataError("drop-off analysis needs at least two funnel steps")

        drop_offs = []
        for current, following in zip(steps, steps[1:]):
            if current.users == 0:
                raise FunnelDataError(f"step '{current.step}' has no users, drop-off to '{following.step}' is undefined")

            drop_off_rate = 1 - following.users / current.users
            if drop_off_rate >= threshold:
                drop_offs.append(DropOffPoint(
                    from_step=current.step,
                    to_step=following.step,
                    drop_off_rate=round(drop_off_rate, 3),
                    users_lost=current.users - following.users,
                ))

        return drop_offs

    # --- Per-user progression ---

    def get_user_progression(self, user_id: str) -> UserProgression:
        if self.event_reader is None:
            raise FunnelDataError("user progression needs an event reader")

        return self.progression_from_events(user_id, self.event_reader.get_events_for_user(user_id))

    @staticmethod
    def progression_from_events(user_id: str, events: Sequence[TrackedEvent]) -> UserProgression:
        """Derive progression from one user's events in emission order. Duplicates and reordering are reported as seen."""
        funnel_events = []
        for event in events:
            step = event.event_data.get("funnelStep")
            if event.event_type.startswith(FUNNEL_EVENT_PREFIX) and isinstance(step, int) and not isinstance(step, bool):
                funnel_events.append(event)

        if not funnel_events:
            return UserProgression(
                user_id=user_id, current_step=0, current_step_name=None,
                completed_steps=[], progress_percentage=0.0, time_in_funnel=0,
            )

        completed_steps: list[str] = []
        current_step, current_step_name = 0, None
        for event in funnel_events:
            step_name = event.event_data.get("stepName")
            if not isinstance(step_name, str) or not step_name:
                step_name = event.event_type[len(FUNNEL_EVENT_PREFIX):]
            if step_name not in completed_steps:
                completed_steps.append(step_name)
            if event.event_data["funnelStep"] > current_step:
                current_step, current_step_name = event.event_data["funnelStep"], step_name

        elapsed = funnel_events[-1].timestamp - funnel_events[0].timestamp

        return UserProgression(
            user_id=user_id,
            current_step=current_step,
            current_step_name=current_step_name,
            completed_steps=completed_steps,
            progress_percentage=round(current_step / TOTAL_FUNNEL_STEPS, 3),
            time_in_funnel=round(elapsed.total_seconds() * 1000),
        )

    # --- Cohorts ---

    def track_cohort_performance(self, cohort_id: str, cohort_data: CohortData | Mapping) -> dict[str, Any]:
        cohort = _coerce(CohortData, cohort_data)
        if cohort.total_users == 0:
            raise FunnelDataError(f"cohort {cohort_id} has no users")
        if cohort.activated_users > cohort.total_users:
            raise FunnelDataError(f"cohort {cohort_id} has more activated users than users")

        payload = {
            "cohortId": cohort_id,
            **cohort.model_dump(by_alias=True),
            "activationRate": round(cohort.activated_users / cohort.total_users, 3),
        }
        # cohort-level event, not attributed to a user
        self.tracker.track("cohort_performance", payload)
        logger.info("Cohort %s activation rate %.3f over %d users", cohort_id, payload["activationRate"], cohort.total_users)
        return payload

    def compare_cohorts(self, cohorts: Sequence[CohortSnapshot | Mapping]) -> CohortComparison:
        snapshots = _coerce_all(CohortSnapshot, cohorts)
        if not snapshots:
            raise FunnelDataError("no cohorts to compare")

        first, last = snapshots[0], snapshots[-1]
        if first.activation_rate == 0:
            raise FunnelDataError(f"cohort {first.id} has a zero activation rate, improvement rate is undefined")

        best = worst = first
        for cohort in snapshots[1:]:
            if cohort.activation_rate > best.activation_rate:
                best = cohort
            if cohort.activation_rate < worst.activation_rate:
                worst = cohort

        if last.activation_rate > first.activation_rate:
            trend = "improving"
        elif last.activation_rate < first.activation_rate:
            trend = "declining"
        else:
            trend = "stable"

        return CohortComparison(
            trend=trend,
            avg_activation_rate=round(sum(c.activation_rate for c in snapshots) / len(snapshots), 3),
            best_performing_cohort=best.id,
            worst_performing_cohort=worst.id,
            improvement_rate=round((last.activation_rate - first.activation_rate) / first.activation_rate, 2),
        )

    # --- Experiments ---

    def calculate_experiment_impact(self, experiment_results: ExperimentResults | Mapping) -> ExperimentImpact:
        results = _coerce(ExperimentResults, experiment_results)
        for name, counts in (("control", results.control), ("treatment", results.treatment)):
            if counts.users == 0:
                raise FunnelDataError(f"{name} group has no users")
            if counts.activated > counts.users:
                raise FunnelDataError(f"{name} group has more activations than users")

        control_rate = results.control.activated / results.control.users
        treatment_rate = results.treatment.activated / results.treatment.users
        if control_rate == 0:
            raise FunnelDataError("control activation rate is zero, relative improvement is undefined")

        absolute = treatment_rate - control_rate
        _, p_value = two_proportion_z_test(
            results.control.activated, results.control.users,
            results.treatment.activated, results.treatment.users,
        )

        return ExperimentImpact(
            control_activation_rate=round(control_rate, 3),
            treatment_activation_rate=round(treatment_rate, 3),
            relative_improvement=round(absolute / control_rate, 3),
            absolute_improvement=round(absolute, 3),
            statistical_significance=round(p_value, 4),
        )

    # --- Real-time monitoring ---

    def detect_anomalies(self, current_data: Mapping[str, int], expected_rates: Mapping[str, float], threshold: float) -> list[Anomaly]:
        """
        Compare each step's share of the entry step (app_launch when present, else
        the first key of current_data) against its expected rate and flag relative
        deviations beyond threshold.
        """
        if not current_data:
            raise FunnelDataError("no current funnel counts")
        if threshold < 0:
            raise FunnelDataError(f"threshold must be non-negative, got {threshold}")
        if any(count < 0 for count in current_data.values()):
            raise FunnelDataError("funnel counts must be non-negative")

        entry_step = ENTRY_STEP if ENTRY_STEP in current_data else next(iter(current_data))
        entry_count = current_data[entry_step]
        if entry_count == 0:
            raise FunnelDataError(f"entry step '{entry_step}' has no users")

        anomalies = []
        for step, expected_rate in expected_rates.items():
            if step == entry_step or step not in current_data:
                continue
            if expected_rate <= 0:
                raise FunnelDataError(f"expected rate for '{step}' must be positive")

            actual_rate = current_data[step] / entry_count
            deviation = (actual_rate - expected_rate) / expected_rate
            if abs(deviation) > threshold:
                anomalies.append(Anomaly(
                    step=step,
                    expected_rate=expected_rate,
                    actual_rate=round(actual_rate, 3),
                    deviation=round(deviation, 4),
                    severity=classify_severity(deviation),
                ))

        if anomalies:
            logger.info("Detected %d funnel anomalies: %s", len(anomalies), ", ".join(a.step for a in anomalies))
        return anomalies

    def should_trigger_alert(self, drop_data: Anomaly | DropAlert | Mapping) -> bool:
        """True for a critical drop, which is also reported as a funnel_alert event."""
        if isinstance(drop_data, BaseModel) and not isinstance(drop_data, DropAlert):
            drop_data = drop_data.model_dump()
        drop = _coerce(DropAlert, drop_data)
        if drop.severity != "critical":
            return False

        logger.warning("Critical funnel drop at %s: deviation %s", drop.step, drop.deviation)
        self.tracker.track("funnel_alert", {
            "alertType": "critical_drop",
            **drop.model_dump(by_alias=True, exclude_none=True),
        })
        return True

    # --- Optimization ---

    def generate_optimization_recommendations(self, funnel_analysis: FunnelAnalysis | Mapping) -> list[str]:
        return recommend(_coerce(FunnelAnalysis, funnel_analysis))

    def track_optimization_results(self, optimization_id: str, results: OptimizationResults | Mapping) -> dict[str, Any]:
        outcome = _coerce(OptimizationResults, results)
        before, after = outcome.before_optimization, outcome.after_optimization
        if before.conversion_rate == 0:
            raise FunnelDataError("baseline conversion rate is zero, improvement rate is undefined")

        payload = {
            "optimizationId": optimization_id,
            **outcome.model_dump(by_alias=True),
            "improvementRate": round((after.conversion_rate - before.conversion_rate) / before.conversion_rate, 3),
            "timeReduction": before.avg_time - after.avg_time,
        }
        self.tracker.track("funnel_optimization_results", payload)
        return payload
