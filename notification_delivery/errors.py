"""Error taxonomy shared by the dispatcher, the consumer and the front door.

Mental model refresher:
- `retryable` is the only thing the consumer looks at when deciding between
  "schedule another attempt" and "dead-letter now".
- Adapters translate library errors (Kafka, SMTP, HTTP) into these classes at
  their boundary; the front door translates these into RPC status codes.
"""

from __future__ import annotations

from typing import Any, Mapping


class NotificationError(Exception):
    """Base class for every error the delivery pipeline raises on purpose."""

    retryable = False


class ValidationError(NotificationError):
    """Bad input. Never retried and never queued."""

    def __init__(self, message: str, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})


class ChannelDeliveryError(NotificationError):
    """Transport-level send failure.

    Triggers the fallback decision on the synchronous path and a retry on the
    asynchronous path.
    """

    retryable = True

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(f"{kind} delivery failed: {message}")
        self.kind = kind


class EnqueueError(NotificationError):
    """The queue producer could not accept the envelope."""


class UnsupportedKind(NotificationError):
    """Notification kind is unknown or has no registered channel."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"unsupported notification type: {kind!r}")
        self.kind = kind


class DecodeError(NotificationError):
    """Envelope or payload bytes cannot be decoded. Can never succeed."""


class DeadLetterError(NotificationError):
    """Publishing to the dead-letter topic failed; the source stays uncommitted."""
