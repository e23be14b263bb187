from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Any
from models.funnel import (
    AnomalyReport, AnomalyRequest, CohortComparison, CohortData, CohortSnapshot, DropOffPoint, DropOffRequest,
    ExperimentImpact, ExperimentResults, FunnelAnalysis, FunnelReport, FunnelStepCount, OptimizationResults,
    UserProgression,
)
from services import funnel_queries
from services.funnel import FunnelAnalyzer
from api.depends import DB_DEPENDENCY, FUNNEL_ANALYZER, resolve_start_datetime

import logging

logger = logging.getLogger(__name__)

# FunnelDataError raised by the analyzer is turned into a 400 by the handler registered in main
funnel_router = APIRouter(
    prefix="/analytics/funnel",
    tags=["funnel"],
)


# GET /analytics/funnel
@funnel_router.get("", response_model=FunnelReport)
def get_funnel_report_route(
    db: Session = DB_DEPENDENCY,
    analyzer: FunnelAnalyzer = FUNNEL_ANALYZER,
    start_date: str | None = None,      # YYYY-MM-DDTHH:MM:SS
    last_day: int | None = None         # eg: 7 for 7day
):
    """Users per funnel step from stored funnel events, with conversion and activation rates."""
    try:
        start_datetime = resolve_start_datetime(start_date, last_day)
    except ValueError as e:
        logger.info("datetime conversion ValueError error: %s", str(e))
        return JSONResponse(content={"status": "failed", "error": str(e)}, status_code=status.HTTP_400_BAD_REQUEST)

    return funnel_queries.build_funnel_report(db=db, analyzer=analyzer, start_datetime=start_datetime)


@funnel_router.post("/conversion-rates", response_model=dict[str, float])
def conversion_rates_route(funnel_data: list[FunnelStepCount], analyzer: FunnelAnalyzer = FUNNEL_ANALYZER):
    return analyzer.calculate_conversion_rates(funnel_data)


@funnel_router.post("/drop-offs", response_model=list[DropOffPoint])
def drop_offs_route(body: DropOffRequest, analyzer: FunnelAnalyzer = FUNNEL_ANALYZER):
    return analyzer.identify_drop_off_points(body.funnel_data, body.threshold)


@funnel_router.get("/progression/{user_id}", response_model=UserProgression)
def progression_route(user_id: str, analyzer: FunnelAnalyzer = FUNNEL_ANALYZER):
    """Where a user stands in the funnel, derived from their stored funnel events."""
    return analyzer.get_user_progression(user_id)


@funnel_router.post("/cohorts/compare", response_model=CohortComparison)
def compare_cohorts_route(cohorts: list[CohortSnapshot], analyzer: FunnelAnalyzer = FUNNEL_ANALYZER):
    return analyzer.compare_cohorts(cohorts)


@funnel_router.post("/cohorts/{cohort_id}/performance")
def cohort_performance_route(cohort_id: str, cohort: CohortData, analyzer: FunnelAnalyzer = FUNNEL_ANALYZER) -> dict[str, Any]:
    """Record a cohort's performance as a cohort_performance event and return what was recorded."""
    return analyzer.track_cohort_performance(cohort_id, cohort)


@funnel_router.post("/experiments/impact", response_model=ExperimentImpact)
def experiment_impact_route(results: ExperimentResults, analyzer: FunnelAnalyzer = FUNNEL_ANALYZER):
    return analyzer.calculate_experiment_impact(results)


@funnel_router.post("/anomalies", response_model=AnomalyReport)
def anomalies_route(body: AnomalyRequest, analyzer: FunnelAnalyzer = FUNNEL_ANALYZER):
    """Flag steps deviating from their expected rates; critical ones raise a funnel_alert event."""
    anomalies = analyzer.detect_anomalies(body.current_data, body.expected_rates, body.threshold)
    alerts_triggered = sum(1 for anomaly in anomalies if analyzer.should_trigger_alert(anomaly))
    return AnomalyReport(anomalies=anomalies, alerts_triggered=alerts_triggered)


@funnel_router.post("/recommendations", response_model=list[str])
def recommendations_route(analysis: FunnelAnalysis, analyzer: FunnelAnalyzer = FUNNEL_ANALYZER):
    return analyzer.generate_optimization_recommendations(analysis)


@funnel_router.post("/optimizations/{optimization_id}")
def optimization_results_route(optimization_id: str, results: OptimizationResults,
                               analyzer: FunnelAnalyzer = FUNNEL_ANALYZER) -> dict[str, Any]:
    return analyzer.track_optimization_results(optimization_id, results)
