"""Push channel variant.

Same shape as the email channel: the recipient is a device token, the
subject is the push title, and `data` travels as the push data payload.
"""

from __future__ import annotations

from ..errors import ChannelDeliveryError, ValidationError
from ..types import SendPushFn
from .models import NotificationKind, NotificationRequest


class PushChannel:
    kind = NotificationKind.PUSH

    def __init__(self, send_push: SendPushFn) -> None:
        self._send_push = send_push

    def validate(self, request: NotificationRequest) -> None:
        if not (request.subject and request.body):
            raise ValidationError(
                "invalid push request",
                {"title": "required", "body": "required"},
            )

    def send(self, request: NotificationRequest, *, timeout: float | None = None) -> None:
        try:
            self._send_push(
                device_token=request.recipient,
                title=request.subject or "",
                body=request.body or "",
                data=dict(request.data),
                timeout=timeout,
            )
        except Exception as exc:
            raise ChannelDeliveryError(self.kind.value, str(exc)) from exc
