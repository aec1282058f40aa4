"""Adapter layer: queue transport, sender implementations and the front door.

`kafka_runtime` and `http_api` are imported by module path so the rest of the
package stays importable without a broker client or web stack loaded.
"""

from .consumer_handler import MessageState, QueueConsumer, QueueRecord
from .fake_senders import send_email_via_console, send_push_via_console
from .memory_queue import InMemoryQueue
from .real_senders import build_email_sender, send_email_via_mailgun, send_email_via_smtp
from .rpc import NotificationRpcService, RpcError, StatusCode
from .wiring import build_channels, build_dispatcher

__all__ = [
    "InMemoryQueue",
    "MessageState",
    "NotificationRpcService",
    "QueueConsumer",
    "QueueRecord",
    "RpcError",
    "StatusCode",
    "build_channels",
    "build_dispatcher",
    "build_email_sender",
    "send_email_via_console",
    "send_email_via_mailgun",
    "send_email_via_smtp",
    "send_push_via_console",
]
