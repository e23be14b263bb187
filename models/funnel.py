from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Literal
from datetime import datetime


class CamelModel(BaseModel):
    """Base for analysis shapes: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Inputs ---

class FunnelStepCount(CamelModel):
    step: str
    users: int = Field(..., ge=0)

class DropOffRequest(CamelModel):
    funnel_data: list[FunnelStepCount]
    threshold: float = Field(default=0.2, ge=0, le=1)

class CohortData(CamelModel):
    total_users: int = Field(..., ge=0)
    activated_users: int = Field(..., ge=0)
    avg_time_to_activation: float | None = Field(default=None, description="Milliseconds.")
    top_drop_off_step: str | None = None

class CohortSnapshot(CamelModel):
    id: str
    activation_rate: float = Field(..., ge=0, le=1)
    total_users: int = Field(..., ge=0)

class VariantCounts(CamelModel):
    users: int = Field(..., ge=0)
    activated: int = Field(..., ge=0)

class ExperimentResults(CamelModel):
    control: VariantCounts
    treatment: VariantCounts

class AnomalyRequest(CamelModel):
    current_data: dict[str, int]
    expected_rates: dict[str, float]
    threshold: float = Field(default=0.2, ge=0)

class FunnelAnalysis(CamelModel):
    major_drop_off: str | None = None
    drop_off_rate: float = Field(default=0.0, ge=0, le=1)
    avg_time_at_step: float = Field(default=0.0, ge=0, description="Milliseconds.")
    common_exit_reasons: list[str] = Field(default_factory=list)

class OptimizationSnapshot(CamelModel):
    conversion_rate: float = Field(..., ge=0)
    avg_time: float = Field(..., ge=0, description="Milliseconds.")

class OptimizationResults(CamelModel):
    before_optimization: OptimizationSnapshot
    after_optimization: OptimizationSnapshot
    sample_size: int | None = None
    confidence_level: float | None = None


# --- Outputs ---

Severity = Literal["low", "medium", "high", "critical"]
Trend = Literal["improving", "declining", "stable"]

class DropOffPoint(CamelModel):
    from_step: str
    to_step: str
    drop_off_rate: float
    users_lost: int

class UserProgression(CamelModel):
    user_id: str
    current_step: int
    current_step_name: str | None
    completed_steps: list[str]
    progress_percentage: float
    time_in_funnel: int = Field(..., description="Milliseconds between the first and last funnel event.")

class CohortComparison(CamelModel):
    trend: Trend
    avg_activation_rate: float
    best_performing_cohort: str
    worst_performing_cohort: str
    improvement_rate: float

class ExperimentImpact(CamelModel):
    control_activation_rate: float
    treatment_activation_rate: float
    relative_improvement: float
    absolute_improvement: float
    statistical_significance: float = Field(..., description="Two-sided p-value of a pooled two-proportion z-test.")

class Anomaly(CamelModel):
    step: str
    expected_rate: float
    actual_rate: float
    deviation: float
    severity: Severity

class DropAlert(CamelModel):
    """A reported funnel drop. Only `severity` decides whether it alerts; the rest is carried along when present."""
    severity: Severity | None = None
    step: str | None = None
    deviation: float | None = None
    expected_rate: float | None = None
    actual_rate: float | None = None

class AnomalyReport(CamelModel):
    anomalies: list[Anomaly]
    alerts_triggered: int

class FunnelReport(CamelModel):
    """Step counts read from stored funnel events, with the rates derived from them."""
    steps: list[FunnelStepCount]
    conversion_rates: dict[str, float] | None
    total_users: int
    activation_rate: float
    generated_at: datetime
