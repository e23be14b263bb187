from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

# Internal imports
from config import config
from data.database import create_tables
from api.events_routes import events_router
from api.funnel_routes import funnel_router
from services.event_buffer import EventBuffer
from services.funnel import FunnelDataError
from services.transport import HttpEventSender

import contextlib
import logging
import middleware

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def build_event_buffer() -> EventBuffer:
    """The application's single EventBuffer, delivering to the configured collector."""
    sender = HttpEventSender(config.analytics_collector_url, timeout=config.analytics_request_timeout)
    return EventBuffer(
        sender,
        enabled=config.analytics_enabled,
        batch_size=config.analytics_batch_size,
        flush_interval=config.analytics_flush_interval_ms,
        max_buffer_size=config.analytics_max_buffer_size,
    )


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Code before 'yield' runs on startup, code after it on shutdown.
    The event buffer is created and started here so its flush timer lives on the server's loop.
    """
    try:
        logger.info("Application starting up: Initializing database schema...")
        create_tables()
        logger.info("Database tables initialized successfully.")
    except Exception as e:
        logger.error(f"Failed to initialize database tables: {e}")

    event_buffer = build_event_buffer()
    event_buffer.start()
    app.state.event_buffer = event_buffer
    logger.info("Event buffer started: %s", config)

    yield

    logger.info("Application shutting down: stopping event buffer with %d undelivered events...", len(event_buffer))
    await event_buffer.aclose()

# --- FastAPI App Initialization ---
app = FastAPI(
    lifespan=lifespan,
    title="SmarTalk Funnel Analytics API",
    version="1.0.0",
    description="Analytics event collection and conversion funnel analysis for the SmarTalk learning flow."
)

app.add_middleware(middleware.RequestIDMiddleware)

app.include_router(events_router, prefix=API_PREFIX)
app.include_router(funnel_router, prefix=API_PREFIX)


@app.exception_handler(FunnelDataError)
async def funnel_data_error_handler(request: Request, exc: FunnelDataError):
    logger.info("Rejected funnel input on %s: %s", request.url.path, exc)
    return JSONResponse(content={"status": "failed", "error": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)


@app.get("/health")
def health_check():
    return JSONResponse(content={"status": "healthy"}, status_code=200)
