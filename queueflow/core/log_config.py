"""Logging set-up shared by the API process and scripts."""
from __future__ import annotations

import logging.config
from typing import Any

from queueflow.core.config import Settings

AUDIT_LOGGER = "audit"


def build_logging_config(settings: Settings) -> dict[str, Any]:
    handlers: dict[str, dict[str, Any]] = {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    }
    if settings.log_dir is not None:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(settings.log_dir / "queueflow.log"),
            "maxBytes": 5_000_000,
            "backupCount": 5,
            "encoding": "utf-8",
            "formatter": "verbose",
        }
    handler_names = list(handlers)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "verbose": {
                "format": "[{asctime}] [{levelname}] {name}: {message}",
                "style": "{",
            },
            "simple": {"format": "{levelname} {name}: {message}", "style": "{"},
        },
        "handlers": handlers,
        "loggers": {
            "queueflow": {
                "handlers": handler_names,
                "level": settings.log_level,
            },
            AUDIT_LOGGER: {
                "handlers": handler_names,
                "level": "INFO",
                "propagate": False,
            },
        },
    }


def configure_logging(settings: Settings) -> None:
    logging.config.dictConfig(build_logging_config(settings))
