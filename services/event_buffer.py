"""
Client-side analytics event pipeline.

Events are accepted with ``track`` from anywhere in the host application,
sanitized, held in memory and delivered to the collector in batches, either
when ``batch_size`` events are waiting or when the periodic flush timer fires.
Delivery is at-least-once: a failed batch goes back to the front of the buffer
and is retried on a later trigger, after an exponential backoff. The buffer is
bounded; when it overflows the oldest events are dropped and counted.

Nothing here raises back into the caller of ``track`` or ``flush``. Analytics
must never crash or block the product.
"""
from collections import deque
from collections.abc import Callable, Mapping
from typing import Any
from pydantic import BaseModel, ConfigDict, Field, model_validator
from models.events import MAX_BATCH_EVENTS, TrackedEvent
from services.tracking import build_event
from services.transport import EventSender

import asyncio
import logging
import random
import threading
import time

logger = logging.getLogger(__name__)

# 2 ** 32 seconds is far beyond any interval_max, larger exponents would overflow a float
MAX_BACKOFF_EXPONENT = 32


class RetryPolicy(BaseModel):
    """Backoff between failed deliveries, in seconds."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    interval_start: float = Field(default=1.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1)
    interval_max: float = Field(default=60.0, gt=0)
    jitter: float = Field(default=0.1, ge=0, le=1, description="Upper bound of the random extra delay, as a fraction of the delay.")

    def next_delay(self, failures: int) -> float:
        exponent = min(max(failures - 1, 0), MAX_BACKOFF_EXPONENT)
        delay = min(self.interval_max, self.interval_start * self.multiplier ** exponent)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay


class BufferConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    batch_size: int = Field(default=10, gt=0)
    flush_interval: int = Field(default=5000, gt=0, description="Milliseconds between periodic flushes.")
    max_buffer_size: int = Field(default=MAX_BATCH_EVENTS, gt=0, le=MAX_BATCH_EVENTS)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)

    @model_validator(mode="after")
    def check_sizes(self):
        if self.max_buffer_size < self.batch_size:
            raise ValueError(f"max_buffer_size ({self.max_buffer_size}) must be >= batch_size ({self.batch_size})")
        return self


class EventBuffer:
    """Batched, bounded, at-least-once delivery of analytics events."""

    def __init__(self, sender: EventSender, clock: Callable[[], float] = time.monotonic, **options):
        self._sender = sender
        self._clock = clock
        self._config = BufferConfig(**options)
        self._queue: deque[TrackedEvent] = deque()
        # track() may run in FastAPI's threadpool while flush() runs on the loop
        self._lock = threading.Lock()
        self._flushing = False
        self._failures = 0
        self._retry_at = 0.0
        self._dropped = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()

    # --- Configuration and lifecycle ---

    @property
    def config(self) -> BufferConfig:
        return self._config

    def configure(self, **options) -> None:
        """Partially update the configuration. Invalid values raise ValueError."""
        self._config = BufferConfig.model_validate({**self._config.model_dump(), **options})
        logger.info("Analytics buffer configured: enabled=%s batch_size=%d flush_interval=%dms max_buffer_size=%d",
                    self._config.enabled, self._config.batch_size,
                    self._config.flush_interval, self._config.max_buffer_size)

        if self._loop is not None:
            self._cancel_timer()
            if self._config.enabled:
                self._start_timer()

    def start(self) -> None:
        """Start the periodic flush timer. Must be called from a running event loop."""
        self._loop = asyncio.get_running_loop()
        if self._config.enabled and self._timer is None:
            self._start_timer()

    def destroy(self) -> None:
        """Stop the periodic flush. Events still buffered are not delivered."""
        self._cancel_timer()
        self._loop = None

    async def aclose(self) -> None:
        self.destroy()
        await self._sender.aclose()

    def _start_timer(self) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._timer = self._loop.create_task(self._run_timer())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._config.flush_interval / 1000)
            await self.flush()

    # --- Read-only views ---

    def __len__(self) -> int:
        return len(self._queue)

    def snapshot(self) -> tuple[TrackedEvent, ...]:
        with self._lock:
            return tuple(self._queue)

    @property
    def dropped_events(self) -> int:
        return self._dropped

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    # --- Tracking ---

    def track(self, event_type: str, event_data: Mapping[str, Any] | None = None, user_id: str | None = None) -> None:
        if not self._config.enabled:
            return

        try:
            event = build_event(event_type, event_data, user_id)
            with self._lock:
                self._queue.append(event)
                dropped = self._trim_locked()
                size = len(self._queue)

            if dropped:
                self._log_overflow(dropped)

            if size >= self._config.batch_size:
                self._schedule_flush()
        except Exception:
            logger.exception("Failed to track analytics event %r", event_type)

    def _trim_locked(self) -> int:
        dropped = 0
        while len(self._queue) > self._config.max_buffer_size:
            self._queue.popleft()
            dropped += 1
        self._dropped += dropped
        return dropped

    def _log_overflow(self, dropped: int) -> None:
        logger.warning("Analytics buffer full (%d events): dropped %d oldest, %d dropped in total",
                       self._config.max_buffer_size, dropped, self._dropped)

    def _schedule_flush(self) -> None:
        if self._flushing:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self.flush())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        elif self._loop is not None and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(self.flush(), self._loop)
        else:
            logger.debug("No running event loop, size-triggered flush deferred to the next trigger")

    # --- Delivery ---

    async def flush(self) -> None:
        """Deliver every buffered event in one batch. Never raises on delivery failure."""
        if self._flushing:
            logger.debug("Flush already in progress, skipping")
            return

        if self._clock() < self._retry_at:
            logger.debug("Delivery backing off for another %.1fs", self._retry_at - self._clock())
            return

        with self._lock:
            if not self._queue:
                return
            batch = list(self._queue)
            self._queue.clear()

        self._flushing = True
        delivered = False
        try:
            await self._sender.send_batch(batch)
            delivered = True
        except Exception as e:
            self._failures += 1
            delay = self._config.retry_policy.next_delay(self._failures)
            self._retry_at = self._clock() + delay
            logger.warning("Failed to deliver %d analytics events (failure %d), next attempt in %.1fs: %s",
                           len(batch), self._failures, delay, e)
        finally:
            if not delivered:
                self._requeue(batch)
            self._flushing = False

        if delivered:
            self._failures = 0
            self._retry_at = 0.0
            logger.debug("Flushed %d analytics events", len(batch))

    def _requeue(self, batch: list[TrackedEvent]) -> None:
        with self._lock:
            self._queue.extendleft(reversed(batch))
            dropped = self._trim_locked()

        if dropped:
            self._log_overflow(dropped)
