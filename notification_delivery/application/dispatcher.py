"""Application orchestration for the dual-path delivery pipeline.

Mental model refresher:
- `send` is the synchronous path: one direct attempt, then (if the caller
  allowed it) one enqueue onto the fallback topic. No retry loop here;
  retries belong to the consumer.
- `reprocess` is what the consumer calls for each queued envelope. It never
  re-enqueues: fallback is a single hop.
- The dispatcher holds no mutable state, so concurrent front-door calls and
  the consumer thread can share one instance.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Protocol

from ..codec import build_envelope, decode_request
from ..domain.channels import ChannelRegistry, resolve_channel
from ..domain.ids import new_notification_id
from ..domain.models import (
    DeliveryOutcome,
    NotificationKind,
    NotificationRequest,
    QueuedEnvelope,
    utcnow,
    validate_request,
)
from ..errors import ChannelDeliveryError, DecodeError, EnqueueError
from ..metrics import DeliveryMetrics


class QueueProducer(Protocol):
    def enqueue(self, envelope: QueuedEnvelope) -> None: ...


class DeliveryDispatcher:
    def __init__(
        self,
        channels: ChannelRegistry,
        producer: QueueProducer,
        *,
        logger: logging.Logger | None = None,
        metrics: DeliveryMetrics | None = None,
        id_factory: Callable[[], str] = new_notification_id,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._channels = channels
        self._producer = producer
        self._logger = logger or logging.getLogger(__name__)
        self._metrics = metrics
        self._id_factory = id_factory
        self._clock = clock

    def send(self, request: NotificationRequest, *, timeout: float | None = None) -> DeliveryOutcome:
        """Deliver now, or queue for later when the caller allows fallback.

        Raises `ValidationError` / `UnsupportedKind` before any side effect,
        `ChannelDeliveryError` when the direct attempt fails without fallback,
        and `EnqueueError` when both paths fail.
        """
        validate_request(request)
        channel = resolve_channel(self._channels, request.kind)
        channel.validate(request)
        notification_id = self._id_factory()
        kind = request.kind.value

        try:
            channel.send(request, timeout=timeout)
        except ChannelDeliveryError as exc:
            self._count_direct(kind, "failed")
            if not request.allow_fallback:
                self._logger.error(
                    "[DIRECT FAILED] notification_id=%s kind=%s fallback=disabled error=%s",
                    notification_id,
                    kind,
                    exc,
                )
                raise
            self._logger.warning(
                "[DIRECT FAILED] notification_id=%s kind=%s fallback=enabled error=%s",
                notification_id,
                kind,
                exc,
            )
            return self._enqueue_fallback(request, notification_id)

        self._count_direct(kind, "success")
        self._logger.info("[DIRECT] notification_id=%s kind=%s", notification_id, kind)
        return DeliveryOutcome(
            success=True,
            used_fallback=False,
            notification_id=notification_id,
            message=f"{kind.capitalize()} sent successfully",
        )

    def reprocess(self, envelope: QueuedEnvelope) -> DeliveryOutcome:
        """Deliver one queued envelope.

        `ChannelDeliveryError` is the only retryable error raised here;
        `UnsupportedKind`, `DecodeError` and `ValidationError` are terminal.
        """
        kind = NotificationKind.parse(envelope.notification_type)
        channel = resolve_channel(self._channels, kind)
        request = decode_request(envelope.payload)
        if request.kind is not kind:
            raise DecodeError(
                f"envelope {envelope.message_id} is typed {kind.value} "
                f"but carries a {request.kind.value} request"
            )
        channel.validate(request)

        try:
            channel.send(request)
        except ChannelDeliveryError:
            self._count_reprocessed(kind.value, "failed")
            raise

        self._count_reprocessed(kind.value, "success")
        self._logger.info(
            "[REPROCESSED] notification_id=%s kind=%s", envelope.message_id, kind.value
        )
        return DeliveryOutcome(
            success=True,
            used_fallback=True,
            notification_id=envelope.message_id,
            message=f"Queued {kind.value} delivered",
        )

    def _enqueue_fallback(self, request: NotificationRequest, notification_id: str) -> DeliveryOutcome:
        envelope = build_envelope(request, message_id=notification_id, created_at=self._clock())
        try:
            self._producer.enqueue(envelope)
        except EnqueueError:
            self._logger.error(
                "[FALLBACK FAILED] notification_id=%s kind=%s",
                notification_id,
                envelope.notification_type,
            )
            raise
        except Exception as exc:
            self._logger.error(
                "[FALLBACK FAILED] notification_id=%s kind=%s error=%s",
                notification_id,
                envelope.notification_type,
                exc,
            )
            raise EnqueueError(f"both direct send and fallback failed: {exc}") from exc

        if self._metrics is not None:
            self._metrics.fallback_enqueued(envelope.notification_type)
        self._logger.info(
            "[FALLBACK] notification_id=%s kind=%s queued for later processing",
            notification_id,
            envelope.notification_type,
        )
        return DeliveryOutcome(
            success=True,
            used_fallback=True,
            notification_id=notification_id,
            message=f"{request.kind.value.capitalize()} queued for later processing",
        )

    def _count_direct(self, kind: str, result: str) -> None:
        if self._metrics is not None:
            self._metrics.direct_sent(kind, result)

    def _count_reprocessed(self, kind: str, result: str) -> None:
        if self._metrics is not None:
            self._metrics.reprocessed(kind, result)
