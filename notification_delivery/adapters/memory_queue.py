"""In-process fallback queue (Kafka-like flow without Kafka).

Mental model refresher:
- One object plays all three broker roles: producer (`enqueue`), reader
  (`fetch`/`commit`/`hold`/`release`/`close`) and dead-letter sink
  (`publish`).
- Offsets, committed positions and paused partitions behave like a Kafka
  consumer group with a single member, which is enough for the local demo
  and for tests.
"""

from __future__ import annotations

import threading
import zlib
from typing import Any

from ..codec import build_dead_letter_payload, encode_envelope
from ..domain.models import QueuedEnvelope
from .consumer_handler import QueueRecord


class InMemoryQueue:
    def __init__(self, topic: str = "notification-fallback", *, partitions: int = 1) -> None:
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self.topic = topic
        self._logs: list[list[QueueRecord]] = [[] for _ in range(partitions)]
        self._positions = [0] * partitions
        self._committed = [0] * partitions
        self._paused: set[int] = set()
        self._cond = threading.Condition()
        self.dead_letters: list[dict[str, Any]] = []
        self.commits: list[tuple[int, int]] = []
        self.close_calls = 0

    # Producer role.
    def enqueue(self, envelope: QueuedEnvelope) -> None:
        self.append(encode_envelope(envelope), key=envelope.message_id.encode("utf-8"))

    def append(self, value: Any, *, key: bytes | None = None) -> QueueRecord:
        """Append a raw record value, e.g. a malformed one in tests."""
        with self._cond:
            partition = zlib.crc32(key) % len(self._logs) if key else 0
            log = self._logs[partition]
            record = QueueRecord(
                topic=self.topic,
                partition=partition,
                offset=len(log),
                value=value,
                key=key,
            )
            log.append(record)
            self._cond.notify_all()
            return record

    # Reader role.
    def fetch(self, timeout: float, max_records: int) -> list[QueueRecord]:
        with self._cond:
            if not self._has_available():
                self._cond.wait(timeout=max(timeout, 0.0))
            records: list[QueueRecord] = []
            for partition, log in enumerate(self._logs):
                if partition in self._paused:
                    continue
                while self._positions[partition] < len(log) and len(records) < max_records:
                    records.append(log[self._positions[partition]])
                    self._positions[partition] += 1
            return records

    def commit(self, record: QueueRecord) -> bool:
        with self._cond:
            self._committed[record.partition] = record.offset + 1
            self.commits.append((record.partition, record.offset))
        return True

    def hold(self, record: QueueRecord) -> None:
        with self._cond:
            self._paused.add(record.partition)
            self._positions[record.partition] = record.offset + 1

    def release(self, record: QueueRecord) -> None:
        with self._cond:
            self._paused.discard(record.partition)
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self.close_calls += 1
            self._paused.clear()

    def rewind_to_committed(self) -> None:
        """Forget uncommitted progress, as a restarted consumer group would."""
        with self._cond:
            self._positions = list(self._committed)
            self._paused.clear()

    # Dead-letter role.
    def publish(
        self,
        record: QueueRecord,
        *,
        reason: str,
        attempts: int,
        envelope: QueuedEnvelope | None,
    ) -> None:
        with self._cond:
            self.dead_letters.append(
                build_dead_letter_payload(
                    source_topic=record.topic,
                    source_partition=record.partition,
                    source_offset=record.offset,
                    source_payload=record.value,
                    failure_reason=reason,
                    attempts=attempts,
                    envelope=envelope,
                )
            )

    def committed_offset(self, partition: int = 0) -> int:
        with self._cond:
            return self._committed[partition]

    def lag(self) -> int:
        with self._cond:
            return sum(len(log) - committed for log, committed in zip(self._logs, self._committed))

    def _has_available(self) -> bool:
        return any(
            self._positions[partition] < len(log)
            for partition, log in enumerate(self._logs)
            if partition not in self._paused
        )
