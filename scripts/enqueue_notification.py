#!/usr/bin/env python3
"""Publish one queued envelope to the fallback topic for local testing."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Allow running this file directly from repository root.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from notification_delivery.adapters.kafka_runtime import (  # noqa: E402
    KafkaEnvelopeProducer,
    build_kafka_producer,
)
from notification_delivery.codec import build_envelope  # noqa: E402
from notification_delivery.config import Settings, load_env_file  # noqa: E402
from notification_delivery.domain.ids import new_notification_id  # noqa: E402
from notification_delivery.domain.models import (  # noqa: E402
    NotificationKind,
    NotificationRequest,
    utcnow,
)
from notification_delivery.errors import EnqueueError  # noqa: E402


def main() -> int:
    load_env_file(REPO_ROOT / ".env")
    args = parse_args()
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log.level)

    envelope = build_envelope(
        build_request(args),
        message_id=args.message_id or new_notification_id(),
        created_at=utcnow(),
    )
    topic = args.topic or settings.kafka.topic
    kafka_producer = build_kafka_producer(settings.kafka)
    try:
        KafkaEnvelopeProducer(
            kafka_producer,
            topic,
            send_timeout=settings.kafka.send_timeout_seconds,
        ).enqueue(envelope)
    except EnqueueError as exc:
        print(f"[ENQUEUE FAILED] {exc}", file=sys.stderr)
        return 1
    finally:
        kafka_producer.close()

    print("[ENQUEUED]")
    print(f"topic={topic}")
    print(f"notification_id={envelope.message_id}")
    print(f"notification_type={envelope.notification_type}")
    return 0


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Publish one notification envelope to the fallback topic."
    )
    parser.add_argument(
        "--kind",
        choices=[kind.value for kind in NotificationKind],
        default=NotificationKind.EMAIL.value,
        help="Notification kind. Default: email.",
    )
    parser.add_argument(
        "--to",
        required=True,
        help="Recipient: an email address, or a device token for push.",
    )
    parser.add_argument(
        "--email-type",
        default=None,
        help="Email template (REGISTER, FORGET_PASSWORD, RESET_PASSWORD).",
    )
    parser.add_argument(
        "--data",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Template or push data entry. Repeatable.",
    )
    parser.add_argument("--subject", default=None, help="Raw subject (push title).")
    parser.add_argument("--body", default=None, help="Raw body.")
    parser.add_argument(
        "--message-id",
        default=None,
        help="Optional notification id. Default: generated 32-char hex id.",
    )
    parser.add_argument(
        "--topic",
        default=None,
        help="Override Kafka topic (defaults to KAFKA_TOPIC_NOTIFICATIONS_FALLBACK).",
    )
    return parser.parse_args()


def build_request(args: argparse.Namespace) -> NotificationRequest:
    data: dict[str, str] = {}
    for item in args.data:
        if "=" not in item:
            raise SystemExit(f"--data expects KEY=VALUE, got {item!r}")
        key, value = item.split("=", 1)
        data[key.strip()] = value.strip()

    return NotificationRequest(
        recipient=args.to,
        kind=NotificationKind(args.kind),
        template=args.email_type,
        data=data,
        subject=args.subject,
        body=args.body,
        allow_fallback=True,
    )


if __name__ == "__main__":
    sys.exit(main())
