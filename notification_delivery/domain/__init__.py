"""Domain layer: request model, retry rules and channel variants."""

from .channels import Channel, build_channel_registry, resolve_channel
from .email import EMAIL_TEMPLATES, EmailChannel, render_email
from .ids import new_notification_id
from .push import PushChannel
from .retry import RetryPolicy, RetryState

__all__ = [
    "Channel",
    "EMAIL_TEMPLATES",
    "EmailChannel",
    "PushChannel",
    "RetryPolicy",
    "RetryState",
    "build_channel_registry",
    "new_notification_id",
    "render_email",
    "resolve_channel",
]
