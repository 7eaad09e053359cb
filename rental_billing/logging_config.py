"""
Logging configuration for the rental billing service
"""

import logging
import logging.config
import sys
from pathlib import Path
from typing import Any, Dict

from .config import settings


def setup_logging() -> logging.Logger:
    """Setup logging configuration."""

    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": settings.LOG_LEVEL,
            "formatter": "simple",
            "stream": sys.stdout,
        }
    }
    service_handlers = ["console"]

    if settings.LOG_DIR:
        logs_dir = Path(settings.LOG_DIR)
        logs_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "INFO",
            "formatter": "detailed",
            "filename": str(logs_dir / "rental_billing.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8",
        }
        handlers["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "ERROR",
            "formatter": "detailed",
            "filename": str(logs_dir / "errors.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8",
        }
        service_handlers += ["file", "error_file"]

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": "%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "simple": {
                "format": "%(levelname)s | %(name)s | %(message)s"
            },
        },
        "handlers": handlers,
        "loggers": {
            "": {
                "level": settings.LOG_LEVEL,
                "handlers": ["console"],
            },
            "rental_billing": {
                "level": settings.LOG_LEVEL,
                "handlers": service_handlers,
                "propagate": False,
            },
        },
    }

    logging.config.dictConfig(logging_config)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger = logging.getLogger("rental_billing")
    logger.info("Logging configured with level: %s", settings.LOG_LEVEL)
    return logger
