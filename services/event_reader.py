from sqlalchemy.orm import Session
from data.database import AnalyticsEvent
from models.events import TrackedEvent

import logging

logger = logging.getLogger(__name__)


class DatabaseEventReader:
    """EventReader over the collector's events table."""

    def __init__(self, db: Session, event_type_prefix: str | None = None):
        self.db = db
        self.event_type_prefix = event_type_prefix

    def get_events_for_user(self, user_id: str) -> list[TrackedEvent]:
        query = self.db.query(AnalyticsEvent).filter(AnalyticsEvent.user_id == user_id)
        if self.event_type_prefix:
            query = query.filter(AnalyticsEvent.event_type.startswith(self.event_type_prefix))

        rows = query.order_by(AnalyticsEvent.timestamp, AnalyticsEvent.id).all()
        logger.debug("Loaded %d events for user %s", len(rows), user_id)

        return [
            TrackedEvent(
                user_id=row.user_id,
                event_type=row.event_type,
                event_data=row.event_data,
                timestamp=row.timestamp,
            )
            for row in rows
        ]
