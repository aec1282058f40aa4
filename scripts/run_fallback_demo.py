#!/usr/bin/env python3
"""Run the direct-send -> fallback -> retry -> dead-letter flow without Kafka."""

from __future__ import annotations

import sys
from pathlib import Path

# Allow running this file directly from repository root.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from notification_delivery.adapters.consumer_handler import QueueConsumer  # noqa: E402
from notification_delivery.adapters.fake_senders import send_email_via_console  # noqa: E402
from notification_delivery.adapters.memory_queue import InMemoryQueue  # noqa: E402
from notification_delivery.application.dispatcher import DeliveryDispatcher  # noqa: E402
from notification_delivery.config import LogSettings  # noqa: E402
from notification_delivery.domain.channels import build_channel_registry  # noqa: E402
from notification_delivery.domain.email import EmailChannel  # noqa: E402
from notification_delivery.domain.models import NotificationKind, NotificationRequest  # noqa: E402
from notification_delivery.domain.retry import RetryPolicy  # noqa: E402
from notification_delivery.logs import configure_logging  # noqa: E402

# Provider is down for the direct attempt and the first queued attempt.
FLAKY_FAILURES_LEFT = {"flaky@example.com": 2}


def main() -> int:
    logger = configure_logging(
        LogSettings(service_name="fallback-demo", environment="local", version="dev", level="INFO")
    )
    queue = InMemoryQueue()
    dispatcher = DeliveryDispatcher(
        build_channel_registry([EmailChannel(send_email_maybe_fail)]),
        queue,
        logger=logger,
    )
    consumer = QueueConsumer(
        queue,
        dispatcher,
        queue,
        policy=RetryPolicy(max_attempts=3, base_delay=0.2),
        logger=logger,
        poll_timeout=0.1,
    )

    for recipient in ("ok@example.com", "flaky@example.com", "down@example.com"):
        outcome = dispatcher.send(
            NotificationRequest(
                recipient=recipient,
                kind=NotificationKind.EMAIL,
                template="REGISTER",
                data={"name": "Demo", "otp": "123456"},
                allow_fallback=True,
            )
        )
        print(f"[SEND] to={recipient} {outcome.as_dict()}")

    while queue.lag() or consumer.pending_retries:
        consumer.run_once()
    consumer.close()

    print("")
    print("[SUMMARY]")
    print(f"committed={queue.commits}")
    for dead_letter in queue.dead_letters:
        print(
            f"dead_letter id={dead_letter.get('source_message_id')} "
            f"attempts={dead_letter['attempts']} reason={dead_letter['failure_reason']}"
        )
    return 0


def send_email_maybe_fail(*, to_email: str, subject: str, body: str, timeout: float | None = None) -> None:
    if to_email == "down@example.com":
        raise RuntimeError("email provider unavailable")
    if FLAKY_FAILURES_LEFT.get(to_email, 0) > 0:
        FLAKY_FAILURES_LEFT[to_email] -= 1
        raise RuntimeError("email provider flaking")
    send_email_via_console(to_email=to_email, subject=subject, body=body, timeout=timeout)


if __name__ == "__main__":
    sys.exit(main())
