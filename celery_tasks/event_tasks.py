from celery_config import celery_app
from data.database import AnalyticsEvent, SessionLocal, to_utc_naive
from sqlalchemy.exc import OperationalError
from typing import Any
from datetime import datetime
from config import config # initialize logging
import logging

logger = logging.getLogger(__name__)


def build_rows(events: list[dict[str, Any]]) -> list[AnalyticsEvent]:
    return [
        AnalyticsEvent(
            user_id=event.get('user_id'),
            event_type=event['event_type'],
            event_data_json=event.get('event_data_json'),
            timestamp=to_utc_naive(datetime.fromisoformat(event['timestamp'])),
        )
        for event in events
    ]


# results are never read, storing them would only bloat the backend
@celery_app.task(bind=True, max_retries=3, default_retry_delay=30, ignore_result=True)
def insert_events_batch(self, events: list[dict[str, Any]]):
    """
    Inserts a batch of normalized analytics events in one transaction.
    Each item carries user_id, event_type, event_data_json and an ISO timestamp.
    The task opens and closes its own database session.
    """
    db = SessionLocal()
    try:
        db.add_all(build_rows(events))
        db.commit()
        logger.info("Task %s[%s]. Inserted %d analytics events.", self.name, self.request.id, len(events))
    except OperationalError as exc:
        db.rollback()
        logger.error("Database unavailable while inserting %d events. Retrying...", len(events))
        raise self.retry(exc=exc)
    except Exception as exc:
        db.rollback()
        logger.error("Failed to insert %d analytics events: %s", len(events), exc)
        raise  # re-raise so Celery marks FAILURE and we can debug it
    finally:
        db.close()
