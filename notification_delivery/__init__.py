"""Dual-path notification delivery: direct send with a Kafka fallback queue."""

from .application.dispatcher import DeliveryDispatcher
from .domain.models import DeliveryOutcome, NotificationKind, NotificationRequest, QueuedEnvelope
from .domain.retry import RetryPolicy
from .errors import (
    ChannelDeliveryError,
    DeadLetterError,
    DecodeError,
    EnqueueError,
    NotificationError,
    UnsupportedKind,
    ValidationError,
)

__all__ = [
    "ChannelDeliveryError",
    "DeadLetterError",
    "DecodeError",
    "DeliveryDispatcher",
    "DeliveryOutcome",
    "EnqueueError",
    "NotificationError",
    "NotificationKind",
    "NotificationRequest",
    "QueuedEnvelope",
    "RetryPolicy",
    "UnsupportedKind",
    "ValidationError",
]
