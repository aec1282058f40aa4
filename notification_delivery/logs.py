"""Logging setup and log-safe payload masking.

Every line carries the service metadata so logs from the front door and the
fallback worker can be told apart once they are aggregated.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Mapping

from .config import LogSettings

LOGGER_NAME = "notification_delivery"
MASK = "****"

SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "confirm_password",
        "access_token",
        "refresh_token",
        "token",
        "otp",
        "pin",
        "credit_card",
        "cvv",
        "authorization",
        "set-cookie",
    }
)


def configure_logging(settings: LogSettings) -> logging.Logger:
    """Attach one stdout handler to the package logger and return it."""
    formatter = logging.Formatter(
        fmt=(
            "%(asctime)s %(levelname)s "
            f"service={settings.service_name} environment={settings.environment} "
            f"version={settings.version} "
            "logger=%(name)s %(message)s"
        )
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logger = logging.getLogger(LOGGER_NAME)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(settings.level)
    logger.propagate = False
    return logger


def mask_sensitive_data(value: Any) -> Any:
    """Return a copy of `value` with sensitive keys masked at any depth."""
    if isinstance(value, Mapping):
        return {
            key: MASK if str(key).lower() in SENSITIVE_FIELDS else mask_sensitive_data(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [mask_sensitive_data(item) for item in value]
    return value
