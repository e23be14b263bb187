from sqlalchemy.orm import Session
from datetime import datetime
from celery_tasks.event_tasks import insert_events_batch
from data.database import AnalyticsEvent, to_utc_naive
from models.events import StoredEventResponse, TrackedEvent, UserEventsResponse
from services.sanitize import normalize_event_data
import json
import logging

logger = logging.getLogger(__name__)


def to_task_payload(event: TrackedEvent) -> dict:
    """Celery requires plain JSON types, so the payload is pre-serialized here."""
    event_data = normalize_event_data(event.event_data)
    return {
        'user_id': event.user_id,
        'event_type': event.event_type,
        'event_data_json': json.dumps(event_data) if event_data else None,
        'timestamp': event.timestamp.isoformat(),
    }


def enqueue_events(events: list[TrackedEvent]) -> str:
    """Hand a batch to the insert worker and return the task id without waiting for the write."""
    task = insert_events_batch.delay([to_task_payload(event) for event in events])
    logger.info("Queued %d analytics events, task %s", len(events), task.id)
    return task.id


def get_user_events(
    db: Session,
    user_id: str,
    event_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
    start_datetime: datetime | None = None,
    end_datetime: datetime | None = None,
) -> UserEventsResponse:
    """Stored events of one user, newest first."""
    query = db.query(AnalyticsEvent).filter(AnalyticsEvent.user_id == user_id)

    if event_type:
        query = query.filter(AnalyticsEvent.event_type == event_type)
    if start_datetime:
        query = query.filter(AnalyticsEvent.timestamp >= to_utc_naive(start_datetime))
    if end_datetime:
        query = query.filter(AnalyticsEvent.timestamp <= to_utc_naive(end_datetime))

    total = query.count()
    rows = query.order_by(AnalyticsEvent.timestamp.desc(), AnalyticsEvent.id.desc()).offset(offset).limit(limit).all()

    return UserEventsResponse(
        events=[StoredEventResponse.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )
