import os
import log
from dotenv import load_dotenv

# Load .env file into environment
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    def __init__(self):
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./smartalk_analytics.db")
        self.log_level = os.getenv("LOG_LEVEL", default="INFO")
        self.log_file = os.getenv("LOG_FILE", "funnel_analytics.log")
        self.celery_broker_url = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
        self.celery_backend_url = os.getenv("CELERY_BACKEND_URL", "redis://localhost:6379/1")
        self.celery_task_always_eager = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)

        # Client-side event pipeline
        self.analytics_enabled = _env_bool("ANALYTICS_ENABLED", True)
        self.analytics_collector_url = os.getenv("ANALYTICS_COLLECTOR_URL", "http://localhost:8000/api/v1")
        self.analytics_batch_size = int(os.getenv("ANALYTICS_BATCH_SIZE", 10))
        self.analytics_flush_interval_ms = int(os.getenv("ANALYTICS_FLUSH_INTERVAL_MS", 5000))
        self.analytics_max_buffer_size = int(os.getenv("ANALYTICS_MAX_BUFFER_SIZE", 1000))
        self.analytics_request_timeout = float(os.getenv("ANALYTICS_REQUEST_TIMEOUT", 5.0))

        # Call setup_logging when the application starts
        log.setup_logging(self.log_level, log_filename=self.log_file or None)

    def __repr__(self):
        return (
            f"<Settings loglevel={self.log_level}, broker_url:{self.celery_broker_url}, "
            f"backend_url:{self.celery_backend_url}, collector_url:{self.analytics_collector_url}, "
            f"batch_size:{self.analytics_batch_size}, flush_interval_ms:{self.analytics_flush_interval_ms}>"
        )

config = Config()
