"""
Logging setup for the Sharely API.

Call setup_logging() once at startup; modules then use
logging.getLogger(__name__).
"""

import json
import logging
import sys

import sentry_sdk


class JsonFormatter(logging.Formatter):
    """One JSON object per line, safe for any message content."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", format: str = "simple") -> None:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format: "simple" for development or "json" for log aggregators
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if format == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # pymongo is chatty at DEBUG
    logging.getLogger("pymongo").setLevel(max(log_level, logging.INFO))


def init_sentry(settings) -> bool:
    """
    Start Sentry error and performance tracking when a DSN is configured.

    The FastAPI and Starlette integrations are enabled automatically once
    the SDK sees those packages installed. Returns True if Sentry was started.
    """
    if not settings.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        profiles_sample_rate=settings.sentry_profiles_sample_rate,
        send_default_pii=True,
    )
    logging.getLogger(__name__).info("Sentry error tracking enabled")
    return True
