"""Transport-neutral RPC front door.

Mental model refresher:
- This is the controller-like entrypoint for synchronous callers.
- It turns call arguments into a `NotificationRequest`, hands it to the
  dispatcher, and turns the pipeline's error taxonomy into status codes.
- It owns no delivery rules; the HTTP binding in `http_api` only maps
  status codes onto HTTP statuses.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Mapping

from ..application.dispatcher import DeliveryDispatcher
from ..codec import decode_envelope
from ..domain.models import NotificationKind, NotificationRequest, QueuedEnvelope
from ..errors import (
    ChannelDeliveryError,
    DecodeError,
    NotificationError,
    UnsupportedKind,
    ValidationError,
)
from ..logs import mask_sensitive_data


class StatusCode(str, Enum):
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    CANCELED = "CANCELED"
    INTERNAL = "INTERNAL"


class RpcError(Exception):
    def __init__(self, code: StatusCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class NotificationRpcService:
    def __init__(self, dispatcher: DeliveryDispatcher, *, logger: logging.Logger | None = None) -> None:
        self._dispatcher = dispatcher
        self._logger = logger or logging.getLogger(__name__)
        self._stopping = threading.Event()

    @property
    def accepting(self) -> bool:
        return not self._stopping.is_set()

    def shutdown(self) -> None:
        """Refuse new calls. In-flight calls run to completion."""
        if not self._stopping.is_set():
            self._stopping.set()
            self._logger.info("[RPC SHUTDOWN] new calls will be refused")

    def send_email(
        self,
        *,
        to: str,
        email_type: str | None,
        template_data: Mapping[str, str] | None = None,
        allow_fallback: bool = False,
        subject: str | None = None,
        body: str | None = None,
        deadline: float | None = None,
    ) -> dict[str, Any]:
        self._logger.info(
            "[RPC] method=SendEmail to=%s email_type=%s allow_fallback=%s template_data=%s",
            to,
            email_type,
            allow_fallback,
            mask_sensitive_data(dict(template_data or {})),
        )
        request = NotificationRequest(
            recipient=to,
            kind=NotificationKind.EMAIL,
            template=email_type,
            data=dict(template_data or {}),
            subject=subject,
            body=body,
            allow_fallback=allow_fallback,
        )
        return self._send(request, deadline)

    def send_push(
        self,
        *,
        device_token: str,
        title: str,
        body: str,
        data: Mapping[str, str] | None = None,
        allow_fallback: bool = False,
        deadline: float | None = None,
    ) -> dict[str, Any]:
        self._logger.info(
            "[RPC] method=SendPush title=%s allow_fallback=%s data=%s",
            title,
            allow_fallback,
            mask_sensitive_data(dict(data or {})),
        )
        request = NotificationRequest(
            recipient=device_token,
            kind=NotificationKind.PUSH,
            data=dict(data or {}),
            subject=title,
            body=body,
            allow_fallback=allow_fallback,
        )
        return self._send(request, deadline)

    def process_queued_envelope(
        self, envelope: QueuedEnvelope | Mapping[str, Any] | bytes | str
    ) -> dict[str, Any]:
        self._ensure_accepting()
        try:
            if not isinstance(envelope, QueuedEnvelope):
                envelope = decode_envelope(envelope)
            self._logger.info(
                "[RPC] method=ProcessQueuedEnvelope notification_id=%s kind=%s",
                envelope.message_id,
                envelope.notification_type,
            )
            outcome = self._dispatcher.reprocess(envelope)
        except NotificationError as exc:
            raise self._to_rpc_error(exc) from exc
        return outcome.as_dict()

    def _send(self, request: NotificationRequest, deadline: float | None) -> dict[str, Any]:
        self._ensure_accepting()
        if deadline is not None and deadline <= 0:
            raise RpcError(StatusCode.DEADLINE_EXCEEDED, "deadline exceeded before send")
        try:
            outcome = self._dispatcher.send(request, timeout=deadline)
        except NotificationError as exc:
            raise self._to_rpc_error(exc) from exc
        return outcome.as_dict()

    def _ensure_accepting(self) -> None:
        if self._stopping.is_set():
            raise RpcError(StatusCode.CANCELED, "service is shutting down")

    def _to_rpc_error(self, exc: NotificationError) -> RpcError:
        code = status_code_for(exc)
        if code is StatusCode.INVALID_ARGUMENT:
            details = getattr(exc, "details", None)
            self._logger.warning("[RPC REJECTED] error=%s details=%s", exc, details)
        else:
            self._logger.error("[RPC FAILED] code=%s error=%s", code.value, exc)
        return RpcError(code, str(exc))


def status_code_for(exc: BaseException) -> StatusCode:
    if isinstance(exc, (ValidationError, UnsupportedKind, DecodeError)):
        return StatusCode.INVALID_ARGUMENT
    if isinstance(exc, ChannelDeliveryError) and _caused_by_timeout(exc):
        return StatusCode.DEADLINE_EXCEEDED
    return StatusCode.INTERNAL


def _caused_by_timeout(exc: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, TimeoutError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False
