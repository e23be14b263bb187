import logging
import sys
from middleware import RequestIDMiddleware

class ContextualFilter(logging.Filter):
    """A logging filter that injects the request ID from ContextVar."""
    def filter(self, record: logging.LogRecord) -> bool:
        # Outside a request (celery worker, flush timer) the default "N/A" is used
        record.request_id = RequestIDMiddleware.request_id_context().get()
        return True

def setup_logging(log_level: str = "INFO", log_filename: str | None = "funnel_analytics.log"):
    log_filter = ContextualFilter()

    # The format must include the custom 'request_id' attribute
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(request_id)s] - %(name)s - %(message)s'
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_filename:
        handlers.append(logging.FileHandler(log_filename, mode='a'))

    for handler in handlers:
        handler.addFilter(log_filter)
        handler.setFormatter(formatter)

    logging.basicConfig(level=logging.getLevelName(log_level.upper()), handlers=handlers)

    # httpx logs every request at INFO, which floods the log on each flush
    logging.getLogger("httpx").setLevel(logging.WARNING)
