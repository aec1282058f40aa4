"""Notification identifier generation."""

from __future__ import annotations

import secrets

NOTIFICATION_ID_BYTES = 16


def new_notification_id() -> str:
    """Return a 128-bit random id, hex-encoded (32 lowercase chars)."""
    return secrets.token_hex(NOTIFICATION_ID_BYTES)
