from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from datetime import datetime
from data.database import to_utc_naive
from models.events import EventBatch, IngestResponse, TrackedEvent, UserEventsResponse
from services import ingestion
from api.depends import DB_DEPENDENCY

import logging

logger = logging.getLogger(__name__)

events_router = APIRouter(
    prefix="/analytics/events",
    tags=["events"],
)


# POST /analytics/events
@events_router.post("", response_model=IngestResponse, status_code=status.HTTP_200_OK)
def record_event_route(event: TrackedEvent):
    """
    Record a single analytics event.
    The event is normalized and handed to a celery worker; the response does not wait for the write.
    """
    task_id = ingestion.enqueue_events([event])
    return IngestResponse(status="success", task_id=task_id, accepted=1)


# POST /analytics/events/batch (the path the client EventBuffer flushes to)
@events_router.post("/batch", response_model=IngestResponse, status_code=status.HTTP_200_OK)
def record_batch_route(batch: EventBatch):
    """Record a batch of analytics events in one insert task."""
    task_id = ingestion.enqueue_events(batch.events)
    return IngestResponse(status="success", task_id=task_id, accepted=len(batch.events))


# GET /analytics/events/{user_id}
@events_router.get("/{user_id}", response_model=UserEventsResponse)
def get_user_events_route(
    user_id: str,
    db: Session = DB_DEPENDENCY,
    event_type: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    start_date: str | None = None,      # YYYY-MM-DDTHH:MM:SS
    end_date: str | None = None
):
    """Stored events of a user, newest first."""
    try:
        start_datetime = datetime.fromisoformat(start_date) if start_date else None
        end_datetime = datetime.fromisoformat(end_date) if end_date else None
    except ValueError as e:
        logger.info("datetime conversion ValueError error: %s", str(e))
        return JSONResponse(content={"status": "failed", "error": str(e)}, status_code=status.HTTP_400_BAD_REQUEST)

    if start_datetime and end_datetime and to_utc_naive(start_datetime) > to_utc_naive(end_datetime):
        return JSONResponse(content={"status": "failed", "error": "start_date must be before end_date"},
                            status_code=status.HTTP_400_BAD_REQUEST)

    return ingestion.get_user_events(
        db=db,
        user_id=user_id,
        event_type=event_type,
        limit=limit,
        offset=offset,
        start_datetime=start_datetime,
        end_datetime=end_datetime,
    )
