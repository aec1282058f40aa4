#!/usr/bin/env python3
"""Run the notification service: HTTP front door plus the fallback worker.

The fallback consumer runs on its own thread; uvicorn owns the main thread
and its SIGINT/SIGTERM handling. When uvicorn returns, the front door stops
accepting calls, the consumer is stopped, and the producer is flushed.
A worker that ends on its own (crash or dead-letter failure) stops the
front door as well, and the process exits with the worker's code.
"""

from __future__ import annotations

import argparse
import sys
import threading
from pathlib import Path

# Allow running this file directly from repository root.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import uvicorn  # noqa: E402

from notification_delivery.adapters.http_api import create_app  # noqa: E402
from notification_delivery.adapters.kafka_runtime import (  # noqa: E402
    KafkaEnvelopeProducer,
    SupervisedWorker,
    build_kafka_producer,
    run_fallback_worker,
)
from notification_delivery.adapters.rpc import NotificationRpcService  # noqa: E402
from notification_delivery.adapters.wiring import build_dispatcher  # noqa: E402
from notification_delivery.config import Settings, load_env_file  # noqa: E402
from notification_delivery.logs import configure_logging  # noqa: E402
from notification_delivery.metrics import DeliveryMetrics  # noqa: E402


def main() -> int:
    args = parse_args()
    load_env_file(REPO_ROOT / ".env")
    try:
        settings = Settings.from_env()
    except RuntimeError as exc:
        print(f"[CONFIG ERROR] {exc}", file=sys.stderr)
        return 2

    logger = configure_logging(settings.log)
    metrics = DeliveryMetrics()
    kafka_producer = build_kafka_producer(settings.kafka)
    dispatcher = build_dispatcher(
        settings,
        KafkaEnvelopeProducer(
            kafka_producer,
            settings.kafka.topic,
            send_timeout=settings.kafka.send_timeout_seconds,
            logger=logger,
        ),
        logger=logger,
        metrics=metrics,
    )
    service = NotificationRpcService(dispatcher, logger=logger)

    stop_event = threading.Event()
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(service, metrics.registry),
            host=settings.rpc_host,
            port=settings.rpc_port,
            log_config=None,
        )
    )

    def stop_serving(exit_code: int) -> None:
        # Nothing in this process drains the fallback topic any more.
        service.shutdown()
        server.should_exit = True

    worker = None
    if not args.no_worker:
        worker = SupervisedWorker(
            lambda: run_fallback_worker(
                settings.kafka,
                dispatcher,
                policy=settings.retry_policy(),
                stop_event=stop_event,
                logger=logger,
                metrics=metrics,
            ),
            stop_event=stop_event,
            on_early_exit=stop_serving,
            logger=logger,
        )
        worker.start()

    logger.info("[SERVICE START] host=%s port=%s", settings.rpc_host, settings.rpc_port)
    try:
        server.run()
    finally:
        service.shutdown()
        stop_event.set()
        if worker is not None:
            worker.join(timeout=settings.kafka.poll_timeout_seconds + 5)
        kafka_producer.flush(timeout=settings.kafka.send_timeout_seconds)
        kafka_producer.close()
        logger.info("[SERVICE STOP]")

    if worker is None or worker.exit_code is None:
        return 0
    return worker.exit_code


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Serve the notification front door and run the fallback worker."
    )
    parser.add_argument(
        "--no-worker",
        action="store_true",
        help="Serve the front door only; run the fallback worker elsewhere.",
    )
    return parser.parse_args()


if __name__ == "__main__":
    sys.exit(main())
