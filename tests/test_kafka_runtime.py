from __future__ import annotations

import json
import logging
import threading
import unittest
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest import mock

from kafka import TopicPartition
from kafka.errors import KafkaError, KafkaTimeoutError

from notification_delivery.adapters import kafka_runtime
from notification_delivery.adapters.consumer_handler import MessageState, QueueConsumer, QueueRecord
from notification_delivery.adapters.rpc import NotificationRpcService
from notification_delivery.codec import build_envelope, decode_envelope, encode_envelope
from notification_delivery.config import Settings
from notification_delivery.domain.models import NotificationKind, NotificationRequest
from notification_delivery.domain.retry import RetryPolicy
from notification_delivery.errors import ChannelDeliveryError, DeadLetterError, EnqueueError


def _record(offset: int = 7) -> QueueRecord:
    return QueueRecord(
        topic="notification-fallback", partition=1, offset=offset, value=b"{}", key=b"abc"
    )


def _envelope():
    return build_envelope(
        NotificationRequest(
            recipient="user@example.com",
            kind=NotificationKind.EMAIL,
            template="RESET_PASSWORD",
            data={"name": "Ada"},
        ),
        message_id="abc",
        created_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


class KafkaQueueReaderTests(unittest.TestCase):
    def test_fetch_flattens_polled_batches(self) -> None:
        consumer = mock.Mock()
        consumer.poll.return_value = {
            TopicPartition("notification-fallback", 0): [
                SimpleNamespace(topic="notification-fallback", partition=0, offset=3, value=b"a", key=b"k1"),
                SimpleNamespace(topic="notification-fallback", partition=0, offset=4, value=b"b", key=None),
            ]
        }

        records = kafka_runtime.KafkaQueueReader(consumer).fetch(0.5, 10)

        consumer.poll.assert_called_once_with(timeout_ms=500, max_records=10)
        self.assertEqual([r.offset for r in records], [3, 4])
        self.assertEqual(records[0].key, b"k1")

    def test_fetch_error_returns_empty_batch(self) -> None:
        consumer = mock.Mock()
        consumer.poll.side_effect = KafkaError("broker gone")

        self.assertEqual(kafka_runtime.KafkaQueueReader(consumer).fetch(1.0, 10), [])

    def test_commit_uses_next_offset(self) -> None:
        consumer = mock.Mock()

        committed = kafka_runtime.KafkaQueueReader(consumer).commit(_record(offset=7))

        self.assertTrue(committed)
        offsets = consumer.commit.call_args.kwargs["offsets"]
        (partition, offset_and_metadata), = offsets.items()
        self.assertEqual(partition, TopicPartition("notification-fallback", 1))
        self.assertEqual(offset_and_metadata.offset, 8)

    def test_commit_failure_returns_false(self) -> None:
        consumer = mock.Mock()
        consumer.commit.side_effect = KafkaError("rebalance in progress")

        self.assertFalse(kafka_runtime.KafkaQueueReader(consumer).commit(_record()))

    def test_hold_pauses_and_seeks_past_record(self) -> None:
        consumer = mock.Mock()
        consumer.assignment.return_value = {TopicPartition("notification-fallback", 1)}
        reader = kafka_runtime.KafkaQueueReader(consumer)

        reader.hold(_record(offset=7))
        reader.release(_record(offset=7))

        partition = TopicPartition("notification-fallback", 1)
        consumer.pause.assert_called_once_with(partition)
        consumer.seek.assert_called_once_with(partition, 8)
        consumer.resume.assert_called_once_with(partition)

    def test_hold_and_release_skip_partitions_lost_in_a_rebalance(self) -> None:
        consumer = mock.Mock()
        consumer.assignment.return_value = set()
        consumer.resume.side_effect = KeyError(TopicPartition("notification-fallback", 1))
        logger = logging.getLogger("tests.kafka.reader")
        reader = kafka_runtime.KafkaQueueReader(consumer, logger=logger)

        with self.assertLogs(logger, level="WARNING") as captured:
            reader.hold(_record(offset=7))
            reader.release(_record(offset=7))

        consumer.pause.assert_not_called()
        consumer.seek.assert_not_called()
        consumer.resume.assert_not_called()
        self.assertEqual(sum("[NOT ASSIGNED]" in line for line in captured.output), 2)


class RevokedPartitionListenerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.partition = TopicPartition("notification-fallback", 0)
        self.kafka_consumer = mock.Mock()
        self.kafka_consumer.assignment.return_value = {self.partition}
        self.dispatcher = mock.Mock()
        self.dispatcher.reprocess.side_effect = ChannelDeliveryError("email", "provider down")
        self.dead_letters = mock.Mock()
        self.now = 0.0
        self.queue_consumer = QueueConsumer(
            kafka_runtime.KafkaQueueReader(self.kafka_consumer),
            self.dispatcher,
            self.dead_letters,
            policy=RetryPolicy(max_attempts=3, base_delay=1.0),
            clock=lambda: self.now,
            poll_timeout=0.01,
        )
        self.listener = kafka_runtime.RevokedPartitionListener(self.queue_consumer)

    def _message(self) -> SimpleNamespace:
        return SimpleNamespace(
            topic="notification-fallback",
            partition=0,
            offset=4,
            value=encode_envelope(_envelope()),
            key=b"abc",
        )

    def test_revocation_forgets_parked_retries(self) -> None:
        self.kafka_consumer.poll.return_value = {self.partition: [self._message()]}
        self.queue_consumer.run_once()
        self.assertEqual(self.queue_consumer.pending_retries, 1)

        self.listener.on_partitions_revoked([self.partition])

        self.assertEqual(self.queue_consumer.pending_retries, 0)

    def test_parked_retry_is_not_resent_after_partition_moves_away(self) -> None:
        polls: list[int] = []

        def poll(**_kwargs):
            polls.append(1)
            if len(polls) == 1:
                return {self.partition: [self._message()]}
            if len(polls) == 2:
                # Group rebalance: kafka-python revokes inside poll.
                self.kafka_consumer.assignment.return_value = set()
                self.listener.on_partitions_revoked([self.partition])
            return {}

        self.kafka_consumer.poll.side_effect = poll
        self.kafka_consumer.resume.side_effect = KeyError(self.partition)

        results = self.queue_consumer.run_once()
        self.assertEqual(results[0]["status"], MessageState.RETRY_SCHEDULED.value)
        self.kafka_consumer.pause.assert_called_once_with(self.partition)
        self.kafka_consumer.seek.assert_called_once_with(self.partition, 5)

        self.now = 0.5
        self.assertEqual(self.queue_consumer.run_once(), [])
        self.now = 5.0
        self.assertEqual(self.queue_consumer.run_once(), [])

        self.assertEqual(self.dispatcher.reprocess.call_count, 1)
        self.kafka_consumer.commit.assert_not_called()
        self.kafka_consumer.resume.assert_not_called()
        self.dead_letters.publish.assert_not_called()
        self.assertEqual(len(polls), 3)


class KafkaProducerAdapterTests(unittest.TestCase):
    def test_enqueue_keys_record_by_message_id(self) -> None:
        producer = mock.Mock()
        producer.send.return_value.get.return_value = SimpleNamespace(
            topic="notification-fallback", partition=0, offset=12
        )

        kafka_runtime.KafkaEnvelopeProducer(producer, "notification-fallback", send_timeout=3.0).enqueue(
            _envelope()
        )

        args, kwargs = producer.send.call_args
        self.assertEqual(args, ("notification-fallback",))
        self.assertEqual(kwargs["key"], b"abc")
        self.assertEqual(decode_envelope(kwargs["value"]).message_id, "abc")
        producer.send.return_value.get.assert_called_once_with(timeout=3.0)

    def test_enqueue_failure_is_enqueue_error(self) -> None:
        producer = mock.Mock()
        producer.send.return_value.get.side_effect = KafkaTimeoutError("no ack")

        with self.assertRaises(EnqueueError):
            kafka_runtime.KafkaEnvelopeProducer(producer, "notification-fallback").enqueue(_envelope())

    def test_dead_letter_publisher_writes_json_payload(self) -> None:
        producer = mock.Mock()
        producer.send.return_value.get.return_value = SimpleNamespace(
            topic="notification-fallback.dlq", partition=0, offset=1
        )

        kafka_runtime.KafkaDeadLetterPublisher(producer, "notification-fallback.dlq").publish(
            _record(), reason="retries_exhausted: down", attempts=3, envelope=_envelope()
        )

        args, kwargs = producer.send.call_args
        self.assertEqual(args, ("notification-fallback.dlq",))
        self.assertEqual(kwargs["key"], b"abc")
        payload = json.loads(kwargs["value"])
        self.assertEqual(payload["source"]["offset"], 7)
        self.assertEqual(payload["source_message_id"], "abc")
        self.assertEqual(payload["attempts"], 3)

    def test_dead_letter_failure_is_dead_letter_error(self) -> None:
        producer = mock.Mock()
        producer.send.side_effect = KafkaTimeoutError("metadata unavailable")

        with self.assertRaises(DeadLetterError):
            kafka_runtime.KafkaDeadLetterPublisher(producer, "dlq").publish(
                _record(), reason="decode_failed: x", attempts=0, envelope=None
            )


class RunFallbackWorkerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = Settings.from_env({"KAFKA_BOOTSTRAP_SERVERS": "localhost:9092"}).kafka

    @mock.patch.object(kafka_runtime, "build_kafka_consumer")
    @mock.patch.object(kafka_runtime, "build_kafka_producer")
    def test_clean_stop_returns_zero_and_closes_clients(
        self, build_producer: mock.Mock, build_consumer: mock.Mock
    ) -> None:
        stop_event = threading.Event()
        stop_event.set()

        exit_code = kafka_runtime.run_fallback_worker(
            self.settings, mock.Mock(), policy=RetryPolicy(), stop_event=stop_event
        )

        self.assertEqual(exit_code, 0)
        subscribe = build_consumer.return_value.subscribe
        subscribe.assert_called_once()
        self.assertEqual(subscribe.call_args.kwargs["topics"], ["notification-fallback"])
        self.assertIsInstance(
            subscribe.call_args.kwargs["listener"], kafka_runtime.RevokedPartitionListener
        )
        build_consumer.return_value.close.assert_called_once_with()
        build_producer.return_value.flush.assert_called_once()
        build_producer.return_value.close.assert_called_once_with()

    @mock.patch.object(kafka_runtime, "build_kafka_consumer")
    @mock.patch.object(kafka_runtime, "build_kafka_producer")
    def test_dead_letter_failure_stops_worker_with_error(
        self, build_producer: mock.Mock, build_consumer: mock.Mock
    ) -> None:
        build_consumer.return_value.poll.return_value = {
            TopicPartition("notification-fallback", 0): [
                SimpleNamespace(topic="notification-fallback", partition=0, offset=0, value=b"{", key=None)
            ]
        }
        build_producer.return_value.send.side_effect = KafkaTimeoutError("dlq down")

        exit_code = kafka_runtime.run_fallback_worker(
            self.settings, mock.Mock(), policy=RetryPolicy(), stop_event=threading.Event()
        )

        self.assertEqual(exit_code, 1)
        build_consumer.return_value.commit.assert_not_called()
        build_consumer.return_value.close.assert_called_once_with()


class SupervisedWorkerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.stop_event = threading.Event()
        self.early_exits: list[int] = []
        self.logger = logging.getLogger("tests.kafka.supervisor")

    def _worker(self, run) -> kafka_runtime.SupervisedWorker:
        return kafka_runtime.SupervisedWorker(
            run,
            stop_event=self.stop_event,
            on_early_exit=self.early_exits.append,
            logger=self.logger,
        )

    def test_crash_is_logged_and_reported_as_exit_code_one(self) -> None:
        def run() -> int:
            raise KeyError(TopicPartition("notification-fallback", 0))

        worker = self._worker(run)
        with self.assertLogs(self.logger, level="ERROR") as captured:
            worker.start()
            worker.join(timeout=5)

        self.assertFalse(worker.is_alive())
        self.assertEqual(worker.exit_code, 1)
        self.assertEqual(self.early_exits, [1])
        self.assertTrue(any("[WORKER CRASH]" in line for line in captured.output))

    def test_early_exit_shuts_the_front_door(self) -> None:
        service = NotificationRpcService(mock.Mock())
        worker = kafka_runtime.SupervisedWorker(
            lambda: 1,
            stop_event=self.stop_event,
            on_early_exit=lambda _exit_code: service.shutdown(),
            logger=self.logger,
        )

        with self.assertLogs(self.logger, level="ERROR"):
            worker.start()
            worker.join(timeout=5)

        self.assertEqual(worker.exit_code, 1)
        self.assertFalse(service.accepting)

    def test_requested_stop_is_not_an_early_exit(self) -> None:
        self.stop_event.set()
        worker = self._worker(lambda: 0)

        worker.start()
        worker.join(timeout=5)

        self.assertEqual(worker.exit_code, 0)
        self.assertEqual(self.early_exits, [])


class KafkaRuntimeHelperTests(unittest.TestCase):
    def test_producer_acks_parses_numeric_values(self) -> None:
        self.assertEqual(kafka_runtime._producer_acks("all"), "all")
        self.assertEqual(kafka_runtime._producer_acks("1"), 1)
        self.assertEqual(kafka_runtime._producer_acks("-1"), -1)

    def test_offset_and_metadata_prefers_three_arg_signature(self) -> None:
        calls: list[tuple[int, str, object | None]] = []

        def factory(offset: int, metadata: str, leader_epoch: object | None) -> tuple[int, str]:
            calls.append((offset, metadata, leader_epoch))
            return (offset, metadata)

        built = kafka_runtime._offset_and_metadata(factory, 99)
        self.assertEqual(built, (99, ""))
        self.assertEqual(calls, [(99, "", -1)])

    def test_offset_and_metadata_falls_back_to_two_arg_signature(self) -> None:
        calls: list[tuple[int, str]] = []

        def factory(offset: int, metadata: str) -> tuple[int, str]:
            calls.append((offset, metadata))
            return (offset, metadata)

        built = kafka_runtime._offset_and_metadata(factory, 42)
        self.assertEqual(built, (42, ""))
        self.assertEqual(calls, [(42, "")])


if __name__ == "__main__":
    unittest.main()
