"""Logging configuration"""

import logging
import logging.config

from .config import settings

def setup_logging(level: str = None) -> None:
    """Configure root logging once for the process"""
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": settings.LOG_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "root": {
            "level": (level or settings.LOG_LEVEL).upper(),
            "handlers": ["console"],
        },
        "loggers": {
            "sqlalchemy.engine": {
                "level": "INFO" if settings.DATABASE_ECHO else "WARNING",
            },
        },
    })
