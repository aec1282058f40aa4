#!/usr/bin/env python3
"""Run the fallback-topic worker on its own.

Consumes `KAFKA_TOPIC_NOTIFICATIONS_FALLBACK`, retries failed deliveries with
linear backoff, and dead-letters what cannot be delivered. Queued envelopes
are never re-enqueued, so the worker needs no fallback producer.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path

# Allow running this file directly from repository root.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from notification_delivery.adapters.kafka_runtime import run_fallback_worker  # noqa: E402
from notification_delivery.adapters.wiring import build_dispatcher  # noqa: E402
from notification_delivery.config import Settings, load_env_file  # noqa: E402
from notification_delivery.domain.models import QueuedEnvelope  # noqa: E402
from notification_delivery.errors import EnqueueError  # noqa: E402
from notification_delivery.logs import configure_logging  # noqa: E402
from notification_delivery.metrics import DeliveryMetrics  # noqa: E402


class _NoFallbackProducer:
    def enqueue(self, envelope: QueuedEnvelope) -> None:
        raise EnqueueError("fallback worker does not re-enqueue")


def main() -> int:
    parse_args()
    load_env_file(REPO_ROOT / ".env")
    try:
        settings = Settings.from_env()
    except RuntimeError as exc:
        print(f"[CONFIG ERROR] {exc}", file=sys.stderr)
        return 2

    logger = configure_logging(settings.log)
    metrics = DeliveryMetrics()
    dispatcher = build_dispatcher(settings, _NoFallbackProducer(), logger=logger, metrics=metrics)

    stop_event = threading.Event()

    def _request_stop(signum, _frame) -> None:
        logger.info("[WORKER STOP] signal=%s", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    return run_fallback_worker(
        settings.kafka,
        dispatcher,
        policy=settings.retry_policy(),
        stop_event=stop_event,
        logger=logger,
        metrics=metrics,
    )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the Kafka consumer loop for queued notifications."
    )
    return parser.parse_args()


if __name__ == "__main__":
    sys.exit(main())
