"""Kafka transport adapters for the fallback topic.

Mental model refresher:
- This module is transport glue to Kafka itself (kafka-python).
- `KafkaQueueReader` maps polled Kafka records onto the consumer-handler
  reader contract; `KafkaEnvelopeProducer` is the dispatcher's queue
  producer; `KafkaDeadLetterPublisher` is the dead-letter sink.
- Retry/commit/dead-letter decisions still live in `consumer_handler`.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Mapping

from kafka import ConsumerRebalanceListener, KafkaConsumer, KafkaProducer, TopicPartition
from kafka.errors import KafkaError
from kafka.structs import OffsetAndMetadata

from ..codec import build_dead_letter_payload, encode_envelope
from ..config import KafkaSettings
from ..domain.models import QueuedEnvelope
from ..domain.retry import RetryPolicy
from ..errors import DeadLetterError, EnqueueError
from ..metrics import DeliveryMetrics
from .consumer_handler import QueueConsumer, QueueRecord, Reprocessor


class KafkaQueueReader:
    def __init__(self, consumer: Any, *, logger: logging.Logger | None = None) -> None:
        self._consumer = consumer
        self._logger = logger or logging.getLogger(__name__)

    def fetch(self, timeout: float, max_records: int) -> list[QueueRecord]:
        try:
            batches = self._consumer.poll(
                timeout_ms=int(timeout * 1000), max_records=max_records
            )
        except KafkaError as exc:
            self._logger.error("[FETCH ERROR] error=%s", exc)
            return []

        records: list[QueueRecord] = []
        for _topic_partition, messages in batches.items():
            for message in messages:
                records.append(
                    QueueRecord(
                        topic=message.topic,
                        partition=int(message.partition),
                        offset=int(message.offset),
                        value=message.value,
                        key=message.key,
                    )
                )
        return records

    def commit(self, record: QueueRecord) -> bool:
        offsets = {
            TopicPartition(record.topic, record.partition): _offset_and_metadata(
                OffsetAndMetadata, record.offset + 1
            )
        }
        try:
            self._consumer.commit(offsets=offsets)
        except KafkaError as exc:
            self._logger.error(
                "[COMMIT ERROR] topic=%s partition=%s offset=%s error=%s",
                record.topic,
                record.partition,
                record.offset,
                exc,
            )
            return False
        return True

    def hold(self, record: QueueRecord) -> None:
        partition = TopicPartition(record.topic, record.partition)
        if not self._owns(partition, record, action="hold"):
            return
        self._consumer.pause(partition)
        self._consumer.seek(partition, record.offset + 1)

    def release(self, record: QueueRecord) -> None:
        partition = TopicPartition(record.topic, record.partition)
        if not self._owns(partition, record, action="release"):
            return
        self._consumer.resume(partition)

    def close(self) -> None:
        self._consumer.close()

    def _owns(self, partition: TopicPartition, record: QueueRecord, *, action: str) -> bool:
        # pause/seek/resume raise on partitions lost in a rebalance.
        if partition in self._consumer.assignment():
            return True
        self._logger.warning(
            "[NOT ASSIGNED] action=%s topic=%s partition=%s offset=%s",
            action,
            record.topic,
            record.partition,
            record.offset,
        )
        return False


class RevokedPartitionListener(ConsumerRebalanceListener):
    """Drops parked retries of revoked partitions before the rebalance completes."""

    def __init__(self, queue_consumer: QueueConsumer) -> None:
        self._queue_consumer = queue_consumer

    def on_partitions_revoked(self, revoked: Any) -> None:
        self._queue_consumer.forget_partitions(
            (partition.topic, partition.partition) for partition in revoked
        )

    def on_partitions_assigned(self, assigned: Any) -> None:
        pass


class KafkaEnvelopeProducer:
    """Queue producer used by the dispatcher on fallback."""

    def __init__(
        self,
        producer: Any,
        topic: str,
        *,
        send_timeout: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._producer = producer
        self._topic = topic
        self._send_timeout = send_timeout
        self._logger = logger or logging.getLogger(__name__)

    def enqueue(self, envelope: QueuedEnvelope) -> None:
        try:
            future = self._producer.send(
                self._topic,
                key=envelope.message_id.encode("utf-8"),
                value=encode_envelope(envelope),
            )
            metadata = future.get(timeout=self._send_timeout)
        except KafkaError as exc:
            raise EnqueueError(f"failed to enqueue notification {envelope.message_id}: {exc}") from exc

        self._logger.info(
            "[ENQUEUED] notification_id=%s topic=%s partition=%s offset=%s",
            envelope.message_id,
            metadata.topic,
            metadata.partition,
            metadata.offset,
        )


class KafkaDeadLetterPublisher:
    def __init__(
        self,
        producer: Any,
        topic: str,
        *,
        send_timeout: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._producer = producer
        self._topic = topic
        self._send_timeout = send_timeout
        self._logger = logger or logging.getLogger(__name__)

    def publish(
        self,
        record: QueueRecord,
        *,
        reason: str,
        attempts: int,
        envelope: QueuedEnvelope | None,
    ) -> None:
        payload = build_dead_letter_payload(
            source_topic=record.topic,
            source_partition=record.partition,
            source_offset=record.offset,
            source_payload=record.value,
            failure_reason=reason,
            attempts=attempts,
            envelope=envelope,
        )
        try:
            future = self._producer.send(
                self._topic,
                key=record.key,
                value=_serialize_json_object(payload),
            )
            metadata = future.get(timeout=self._send_timeout)
        except KafkaError as exc:
            self._logger.error(
                "[DLQ ERROR] source_topic=%s source_partition=%s source_offset=%s reason=%s error=%s",
                record.topic,
                record.partition,
                record.offset,
                reason,
                exc,
            )
            raise DeadLetterError(f"dead-letter publish failed: {exc}") from exc

        self._logger.info(
            "[DLQ PUBLISHED] source_offset=%s dlq_topic=%s dlq_partition=%s dlq_offset=%s",
            record.offset,
            metadata.topic,
            metadata.partition,
            metadata.offset,
        )


def build_kafka_producer(settings: KafkaSettings) -> KafkaProducer:
    return KafkaProducer(
        bootstrap_servers=list(settings.bootstrap_servers),
        acks=_producer_acks(settings.producer_acks),
    )


def build_kafka_consumer(settings: KafkaSettings) -> KafkaConsumer:
    """Build an unsubscribed consumer; `run_fallback_worker` subscribes it."""
    return KafkaConsumer(
        bootstrap_servers=list(settings.bootstrap_servers),
        group_id=settings.group_id,
        enable_auto_commit=False,
        auto_offset_reset=settings.auto_offset_reset,
    )


def run_fallback_worker(
    settings: KafkaSettings,
    dispatcher: Reprocessor,
    *,
    policy: RetryPolicy,
    stop_event: threading.Event,
    logger: logging.Logger | None = None,
    metrics: DeliveryMetrics | None = None,
) -> int:
    """Run the fallback consumer loop until `stop_event` is set.

    Returns a process exit code: 0 on a clean stop, 1 when the loop died.
    """
    logger = logger or logging.getLogger(__name__)
    dlq_producer = build_kafka_producer(settings)
    kafka_consumer = build_kafka_consumer(settings)
    consumer = QueueConsumer(
        KafkaQueueReader(kafka_consumer, logger=logger),
        dispatcher,
        KafkaDeadLetterPublisher(
            dlq_producer,
            settings.dlq_topic,
            send_timeout=settings.send_timeout_seconds,
            logger=logger,
        ),
        policy=policy,
        logger=logger,
        metrics=metrics,
        poll_timeout=settings.poll_timeout_seconds,
        max_records=settings.max_records_per_poll,
    )
    kafka_consumer.subscribe(
        topics=[settings.topic], listener=RevokedPartitionListener(consumer)
    )
    logger.info(
        "[WORKER START] topic=%s group_id=%s dlq_topic=%s",
        settings.topic,
        settings.group_id,
        settings.dlq_topic,
    )

    try:
        consumer.run(stop_event)
    except DeadLetterError as exc:
        logger.error("[WORKER ERROR] %s; stopping with the record uncommitted", exc)
        return 1
    except KafkaError as exc:
        logger.error("[WORKER ERROR] %s", exc)
        return 1
    finally:
        try:
            dlq_producer.flush(timeout=settings.send_timeout_seconds)
        except KafkaError as exc:
            logger.warning("[WORKER STOP] dlq producer flush failed: %s", exc)
        dlq_producer.close()

    logger.info("[WORKER STOP] stop requested")
    return 0


class SupervisedWorker:
    """Runs the fallback worker on a daemon thread and reports how it ended.

    Any exception escaping `run` is logged and recorded as exit code 1. When
    the worker ends before `stop_event` is set, `on_early_exit` is called
    with the exit code so the host process can stop serving too.
    """

    def __init__(
        self,
        run: Callable[[], int],
        *,
        stop_event: threading.Event,
        on_early_exit: Callable[[int], None],
        logger: logging.Logger | None = None,
        name: str = "fallback-worker",
    ) -> None:
        self._run = run
        self._stop_event = stop_event
        self._on_early_exit = on_early_exit
        self._logger = logger or logging.getLogger(__name__)
        self._thread = threading.Thread(target=self._supervise, name=name, daemon=True)
        self.exit_code: int | None = None

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _supervise(self) -> None:
        try:
            exit_code = self._run()
        except Exception:
            self._logger.exception("[WORKER CRASH] fallback worker raised")
            exit_code = 1
        self.exit_code = exit_code
        if self._stop_event.is_set():
            return
        self._logger.error("[WORKER EXIT] exit_code=%s before stop was requested", exit_code)
        self._on_early_exit(exit_code)


def _producer_acks(raw: str) -> int | str:
    return int(raw) if raw.lstrip("-").isdigit() else raw


def _serialize_json_object(payload: Mapping[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def _offset_and_metadata(offset_and_metadata_type: Any, offset: int) -> Any:
    """Build kafka-python OffsetAndMetadata across version signatures."""
    try:
        return offset_and_metadata_type(offset, "", -1)
    except TypeError:
        try:
            return offset_and_metadata_type(offset, "", None)
        except TypeError:
            return offset_and_metadata_type(offset, "")
