# app/utils/my_logging.py
"""Logging configuration shared by the API and the Celery worker"""
import logging
import sys
from contextvars import ContextVar

from app.config.settings import get_settings

# Set per request by the correlation middleware, per job by the calendar tasks
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s"

QUIET_LOGGERS = {
    "googleapiclient.discovery": logging.WARNING,
    "googleapiclient.discovery_cache": logging.ERROR,
    "google_auth_httplib2": logging.WARNING,
    "urllib3": logging.WARNING,
}


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def setup_logging(verbose=True):
    """Configure root logging; non-verbose mode only reports warnings and also mutes the frameworks"""
    settings = get_settings()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO) if verbose else logging.WARNING

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[handler], force=True)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    if not verbose:
        for name in ("sqlalchemy", "celery", "uvicorn.access"):
            logging.getLogger(name).setLevel(logging.ERROR)
