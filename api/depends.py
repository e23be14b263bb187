from fastapi import Depends, Request
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
from data.database import get_db
from services.event_reader import DatabaseEventReader
from services.funnel import FUNNEL_EVENT_PREFIX, FunnelAnalyzer

# --- DEPENDENCY INJECTION SETUP ---

def get_tracker(request: Request):
    """The EventBuffer built by the application lifespan."""
    return request.app.state.event_buffer

def get_funnel_analyzer(tracker=Depends(get_tracker), db: Session = Depends(get_db)) -> FunnelAnalyzer:
    return FunnelAnalyzer(tracker=tracker, event_reader=DatabaseEventReader(db, event_type_prefix=FUNNEL_EVENT_PREFIX))

DB_DEPENDENCY = Depends(get_db)
FUNNEL_ANALYZER = Depends(get_funnel_analyzer)


def resolve_start_datetime(start_date: str | None, last_day: int | None) -> datetime | None:
    """last_day (e.g. 7 for the last 7 days) overrides start_date (YYYY-MM-DDTHH:MM:SS). Raises ValueError."""
    if last_day:
        if last_day < 0:
            raise ValueError(f"last_day must be positive, got {last_day}")
        return datetime.now(timezone.utc) - timedelta(days=last_day)
    if start_date:
        return datetime.fromisoformat(start_date)
    return None
