"""Shared type aliases for the notification_delivery package."""

from __future__ import annotations

from typing import Any, Callable

ProcessingResult = dict[str, Any]

SendEmailFn = Callable[..., None]
SendPushFn = Callable[..., None]
