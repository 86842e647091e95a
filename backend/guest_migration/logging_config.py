import logging
import os
from logging.config import dictConfig
from typing import Any, Dict

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
SESSION_LOG_FORMAT = "%(asctime)s %(levelname)s [migration-session] %(message)s"
SESSION_LOGGER = "guest_migration.session"


def _flag(name: str) -> bool:
    return os.getenv(name, "0") == "1"


def configure_logging() -> None:
    """Configure service logging from ``FATHOM_*`` environment flags.

    Session audit lines get their own handler and format so they can be
    shipped apart from application logs.
    """
    level = os.getenv("FATHOM_LOG_LEVEL", "INFO").upper()
    loggers: Dict[str, Dict[str, Any]] = {
        SESSION_LOGGER: {
            "handlers": ["session"],
            "level": os.getenv("FATHOM_SESSION_LOG_LEVEL", "INFO").upper(),
            "propagate": False,
        },
    }
    if _flag("FATHOM_DEBUG_HTTP"):
        loggers["uvicorn.access"] = {"level": "DEBUG"}
    if _flag("FATHOM_DEBUG_SQL"):
        loggers["sqlalchemy.engine"] = {"level": "INFO"}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": DEFAULT_LOG_FORMAT},
                "session": {"format": SESSION_LOG_FORMAT},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
                "session": {
                    "class": "logging.StreamHandler",
                    "formatter": "session",
                },
            },
            "loggers": loggers,
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )
    logging.getLogger(__name__).debug("Logging configured at %s", level)
