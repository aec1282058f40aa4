"""Immutable data model for the delivery pipeline.

Mental model refresher:
- `NotificationRequest` is what a caller asks for.
- `QueuedEnvelope` is what sits on the fallback topic; it keeps the raw
  `notification_type` string so kinds added later still decode here and get
  dead-lettered instead of crashing the consumer.
- `DeliveryOutcome` is what a synchronous caller gets back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from ..errors import UnsupportedKind, ValidationError


class NotificationKind(str, Enum):
    EMAIL = "email"
    PUSH = "push"

    @classmethod
    def parse(cls, raw: str) -> "NotificationKind":
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise UnsupportedKind(str(raw)) from None


@dataclass(frozen=True)
class NotificationRequest:
    recipient: str
    kind: NotificationKind
    template: str | None = None
    data: Mapping[str, str] = field(default_factory=dict)
    subject: str | None = None
    body: str | None = None
    allow_fallback: bool = False

    def __post_init__(self) -> None:
        # Freeze the mapping too; the request is shared with the queue path.
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))


@dataclass(frozen=True)
class QueuedEnvelope:
    message_id: str
    created_at: datetime
    notification_type: str
    payload: bytes


@dataclass(frozen=True)
class DeliveryOutcome:
    success: bool
    used_fallback: bool
    notification_id: str
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "notification_id": self.notification_id,
            "used_fallback": self.used_fallback,
        }


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def validate_request(request: NotificationRequest) -> None:
    """Check the fields every kind needs. Kind-specific rules live on channels."""
    errors: dict[str, str] = {}
    if not isinstance(request.kind, NotificationKind):
        errors["kind"] = "must be one of: " + ", ".join(kind.value for kind in NotificationKind)
    if not request.recipient or not request.recipient.strip():
        errors["recipient"] = "required"
    has_template = bool(request.template and request.template.strip())
    has_raw_content = bool(request.subject) and bool(request.body)
    if not has_template and not has_raw_content:
        errors["template"] = "required unless subject and body are given"
    if errors:
        raise ValidationError("invalid notification request", errors)
