"""Process wiring shared by the scripts."""

from __future__ import annotations

import logging

from ..application.dispatcher import DeliveryDispatcher, QueueProducer
from ..config import Settings
from ..domain.channels import Channel, build_channel_registry
from ..domain.models import NotificationKind
from ..domain.email import EmailChannel
from ..domain.push import PushChannel
from ..metrics import DeliveryMetrics
from .fake_senders import send_push_via_console
from .real_senders import build_email_sender


def build_channels(settings: Settings) -> dict[NotificationKind, Channel]:
    channels: list[Channel] = [EmailChannel(build_email_sender(settings.email))]
    if settings.push_backend == "console":
        channels.append(PushChannel(send_push_via_console))
    return build_channel_registry(channels)


def build_dispatcher(
    settings: Settings,
    producer: QueueProducer,
    *,
    logger: logging.Logger | None = None,
    metrics: DeliveryMetrics | None = None,
) -> DeliveryDispatcher:
    return DeliveryDispatcher(
        build_channels(settings),
        producer,
        logger=logger,
        metrics=metrics,
    )
