"""Application-wide logging setup.

One stdout handler on the root logger; the ``formaticapi`` tree follows the
configured level and uvicorn keeps its own loggers on the same handler.
"""
import logging
from logging.config import dictConfig

from formaticapi.config import config


def _dict_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s:%(name)s:%(message)s",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "DEBUG",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            }
        },
        "root": {"level": "INFO", "handlers": ["console"]},
        "loggers": {
            "formaticapi": {"level": level, "handlers": [], "propagate": True},
            "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "uvicorn.error": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "uvicorn.access": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "passlib": {"level": "ERROR"},
            "databases": {"level": "WARNING"},
        },
    }


def configure_logging() -> None:
    """Configure logging once.

    Returns early when the root logger already has handlers, so reloaders
    and test runners do not stack duplicate output.
    """
    root = logging.getLogger()
    if root.handlers:
        logging.getLogger("formaticapi").setLevel(config.LOG_LEVEL)
        return
    dictConfig(_dict_config(config.LOG_LEVEL))
