"""Channel capability and the kind -> channel registry.

Mental model refresher:
- A channel is one variant per notification kind (email, push, ...).
- Each variant owns its kind-specific validation and content rules, and wraps
  provider failures into `ChannelDeliveryError`.
- Adding a kind means adding a variant and registering it; the dispatcher
  never switches on kind itself.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Protocol

from ..errors import UnsupportedKind
from .models import NotificationKind, NotificationRequest


class Channel(Protocol):
    kind: NotificationKind

    def validate(self, request: NotificationRequest) -> None: ...

    def send(self, request: NotificationRequest, *, timeout: float | None = None) -> None: ...


ChannelRegistry = Mapping[NotificationKind, Channel]


def build_channel_registry(channels: Iterable[Channel]) -> dict[NotificationKind, Channel]:
    registry: dict[NotificationKind, Channel] = {}
    for channel in channels:
        if channel.kind in registry:
            raise ValueError(f"duplicate channel for kind: {channel.kind.value}")
        registry[channel.kind] = channel
    return registry


def resolve_channel(registry: ChannelRegistry, kind: NotificationKind) -> Channel:
    channel = registry.get(kind)
    if channel is None:
        raise UnsupportedKind(kind.value)
    return channel
