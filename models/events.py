from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any
from datetime import datetime, timezone

# Upper bound of events the collector accepts in one batch request
MAX_BATCH_EVENTS = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackedEvent(BaseModel):
    """A single observation of user action, as buffered on the client and posted to the collector."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str | None = Field(default=None, description="Acting user; absent for anonymous pre-auth events.")
    event_type: str = Field(..., min_length=1, description="Event tag (e.g. 'vtpr_start', 'funnel_activation').")
    event_data: dict[str, Any] = Field(default_factory=dict, description="Sanitized key/value payload.")
    timestamp: datetime = Field(default_factory=utcnow)


class EventBatch(BaseModel):
    """Body of POST /analytics/events/batch."""
    events: list[TrackedEvent] = Field(..., min_length=1, max_length=MAX_BATCH_EVENTS)


class IngestResponse(BaseModel):
    status: str
    task_id: str
    accepted: int


class StoredEventResponse(BaseModel):
    """An event as read back from the events table."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    user_id: str | None
    event_type: str
    event_data: dict[str, Any]
    timestamp: datetime


class UserEventsResponse(BaseModel):
    events: list[StoredEventResponse]
    total: int
    limit: int
    offset: int
