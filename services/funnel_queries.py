from sqlalchemy.orm import Session
from sqlalchemy import func, distinct
from datetime import datetime, timezone
from data.database import AnalyticsEvent, to_utc_naive
from models.funnel import FunnelReport, FunnelStepCount
from services.funnel import FUNNEL_STEPS, FunnelAnalyzer, FunnelDataError, funnel_event_type
import logging

logger = logging.getLogger(__name__)


def count_funnel_users(db: Session, start_datetime: datetime | None = None) -> list[FunnelStepCount]:
    """Distinct users that reached each canonical funnel step, in funnel order."""
    event_types = [funnel_event_type(step) for step in FUNNEL_STEPS]

    query = db.query(
        AnalyticsEvent.event_type,
        func.count(distinct(AnalyticsEvent.user_id)).label('users')
    ).filter(
        AnalyticsEvent.event_type.in_(event_types),
        # anonymous events cannot be attributed to a funnel position
        AnalyticsEvent.user_id.isnot(None)
    )

    if start_datetime:
        logger.debug("count funnel users from start_datetime %s", start_datetime)
        query = query.filter(AnalyticsEvent.timestamp >= to_utc_naive(start_datetime))

    counts = dict(query.group_by(AnalyticsEvent.event_type).all())

    return [FunnelStepCount(step=step, users=counts.get(funnel_event_type(step), 0)) for step in FUNNEL_STEPS]


def build_funnel_report(db: Session, analyzer: FunnelAnalyzer, start_datetime: datetime | None = None) -> FunnelReport:
    steps = count_funnel_users(db, start_datetime)

    try:
        conversion_rates = analyzer.calculate_conversion_rates(steps)
    except FunnelDataError as e:
        # an empty or partially empty window is normal, report the counts without rates
        logger.info("Conversion rates unavailable: %s", e)
        conversion_rates = None

    total_users = steps[0].users
    activation_rate = round(steps[-1].users / total_users, 3) if total_users else 0.0

    return FunnelReport(
        steps=steps,
        conversion_rates=conversion_rates,
        total_users=total_users,
        activation_rate=activation_rate,
        generated_at=datetime.now(timezone.utc),
    )
