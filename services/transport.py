import httpx
import logging
from typing import Protocol
from models.events import EventBatch, TrackedEvent

logger = logging.getLogger(__name__)

BATCH_PATH = "/analytics/events/batch"
DEFAULT_TIMEOUT = 5.0  # seconds


class EventDeliveryError(Exception):
    """The collector did not accept a batch."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"collector responded {status_code}: {detail}")
        self.status_code = status_code


class EventSender(Protocol):
    async def send_batch(self, events: list[TrackedEvent]) -> None: ...

    async def aclose(self) -> None: ...


class HttpEventSender:
    """Posts event batches to the collector with httpx."""

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send_batch(self, events: list[TrackedEvent]) -> None:
        payload = EventBatch(events=events).model_dump(mode="json", by_alias=True)
        response = await self._client.post(f"{self.base_url}{BATCH_PATH}", json=payload)

        if not response.is_success:
            raise EventDeliveryError(response.status_code, response.text[:200])

        logger.debug("Delivered %d events to %s", len(events), self.base_url)

    async def aclose(self) -> None:
        await self._client.aclose()
