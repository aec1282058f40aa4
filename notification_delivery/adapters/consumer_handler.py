"""Fallback-queue consumer: fetch -> process -> commit / retry / dead-letter.

Mental model refresher:
- This is the controller-like entrypoint for queued notifications.
- Flow per record:
  record -> decode envelope -> dispatcher.reprocess -> commit / schedule retry / dead-letter
- This module owns transport lifecycle behavior (decode errors, commits,
  retries, dead-lettering), not channel business rules.

Per-record states:
    fetched -> processing -> committed
                          -> retry_scheduled -> processing ...
                          -> dead_lettered

Backoff never sleeps inside the loop. A failing record's partition is held
(paused and repositioned just past the record) and the retry is parked with a
due time; the loop keeps fetching from other partitions and runs the retry
once it is due. Records of a held partition are refetched after release, so
each partition is still processed strictly in order. Parked retries of a
partition revoked by the broker are forgotten (`forget_partitions`), not run.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Protocol

from ..codec import decode_envelope
from ..domain.models import DeliveryOutcome, QueuedEnvelope
from ..domain.retry import RetryPolicy, RetryState
from ..errors import DecodeError, NotificationError, UnsupportedKind
from ..metrics import DeliveryMetrics
from ..types import ProcessingResult


@dataclass(frozen=True)
class QueueRecord:
    topic: str
    partition: int
    offset: int
    value: Any
    key: bytes | None = None


class QueueReader(Protocol):
    def fetch(self, timeout: float, max_records: int) -> list[QueueRecord]: ...

    def commit(self, record: QueueRecord) -> bool: ...

    def hold(self, record: QueueRecord) -> None: ...

    def release(self, record: QueueRecord) -> None: ...

    def close(self) -> None: ...


class DeadLetterSink(Protocol):
    def publish(
        self,
        record: QueueRecord,
        *,
        reason: str,
        attempts: int,
        envelope: QueuedEnvelope | None,
    ) -> None: ...


class Reprocessor(Protocol):
    def reprocess(self, envelope: QueuedEnvelope) -> DeliveryOutcome: ...


class MessageState(str, Enum):
    FETCHED = "fetched"
    PROCESSING = "processing"
    COMMITTED = "committed"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class _PendingRetry:
    record: QueueRecord
    envelope: QueuedEnvelope
    state: RetryState
    due_at: float


class QueueConsumer:
    def __init__(
        self,
        reader: QueueReader,
        dispatcher: Reprocessor,
        dead_letters: DeadLetterSink,
        *,
        policy: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
        metrics: DeliveryMetrics | None = None,
        clock: Callable[[], float] = time.monotonic,
        poll_timeout: float = 1.0,
        max_records: int = 50,
    ) -> None:
        self._reader = reader
        self._dispatcher = dispatcher
        self._dead_letters = dead_letters
        self._policy = policy or RetryPolicy()
        self._logger = logger or logging.getLogger(__name__)
        self._metrics = metrics
        self._clock = clock
        self._poll_timeout = poll_timeout
        self._max_records = max_records
        self._pending: dict[tuple[str, int], _PendingRetry] = {}
        self._closed = False

    @property
    def pending_retries(self) -> int:
        return len(self._pending)

    def run(self, stop_event: threading.Event) -> None:
        """Drain the queue until `stop_event` is set, then close the reader."""
        self._logger.info(
            "[CONSUMER START] max_attempts=%s base_delay=%s",
            self._policy.max_attempts,
            self._policy.base_delay,
        )
        try:
            while not stop_event.is_set():
                self.run_once(stop_event)
        finally:
            self.close()

    def run_once(self, stop_event: threading.Event | None = None) -> list[ProcessingResult]:
        """One loop turn: due retries first, then one fetch."""
        results = self._run_due_retries(stop_event)
        if _stopping(stop_event):
            return results

        records = self._reader.fetch(self._fetch_timeout(), self._max_records)
        for record in records:
            if _stopping(stop_event):
                # Left uncommitted; redelivered to whoever owns the partition next.
                break
            if _partition_key(record) in self._pending:
                continue
            results.append(self._handle_new(record, stop_event))
        return results

    def forget_partitions(self, partitions: Iterable[tuple[str, int]]) -> int:
        """Drop parked retries for partitions this consumer no longer owns.

        Called when the broker revokes partitions. The parked records stay
        uncommitted, so the partition's next owner redelivers them from the
        committed offset. The held partitions are not released: they are
        already gone from this consumer's assignment.
        """
        forgotten = 0
        for key in set(partitions):
            pending = self._pending.pop(key, None)
            if pending is None:
                continue
            forgotten += 1
            self._logger.warning(
                "[REVOKED] topic=%s partition=%s offset=%s notification_id=%s next_attempt=%s",
                pending.record.topic,
                pending.record.partition,
                pending.record.offset,
                pending.envelope.message_id,
                pending.state.attempt,
            )
        return forgotten

    def close(self) -> None:
        """Abandon parked retries and close the reader. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        for pending in self._pending.values():
            self._logger.warning(
                "[ABANDON] topic=%s partition=%s offset=%s notification_id=%s next_attempt=%s",
                pending.record.topic,
                pending.record.partition,
                pending.record.offset,
                pending.envelope.message_id,
                pending.state.attempt,
            )
        self._pending.clear()
        self._reader.close()
        self._logger.info("[CONSUMER STOP] reader closed")

    def _handle_new(self, record: QueueRecord, stop_event: threading.Event | None) -> ProcessingResult:
        try:
            envelope = decode_envelope(record.value)
        except DecodeError as exc:
            return self._dead_letter(
                record,
                None,
                attempts=0,
                reason=f"decode_failed: {exc}",
                category="decode_failed",
                held=False,
            )
        return self._attempt(record, envelope, self._policy.start(), held=False, stop_event=stop_event)

    def _run_due_retries(self, stop_event: threading.Event | None) -> list[ProcessingResult]:
        results: list[ProcessingResult] = []
        now = self._clock()
        due = sorted(
            (item for item in self._pending.items() if item[1].due_at <= now),
            key=lambda item: item[1].due_at,
        )
        for key, pending in due:
            if _stopping(stop_event):
                break
            del self._pending[key]
            results.append(
                self._attempt(
                    pending.record,
                    pending.envelope,
                    pending.state,
                    held=True,
                    stop_event=stop_event,
                )
            )
        return results

    def _attempt(
        self,
        record: QueueRecord,
        envelope: QueuedEnvelope,
        state: RetryState,
        *,
        held: bool,
        stop_event: threading.Event | None,
    ) -> ProcessingResult:
        self._logger.debug(
            "[PROCESSING] notification_id=%s attempt=%s/%s",
            envelope.message_id,
            state.attempt,
            state.max_attempts,
        )
        try:
            self._dispatcher.reprocess(envelope)
        except NotificationError as exc:
            if exc.retryable and self._policy.should_retry(state.attempt):
                if _stopping(stop_event):
                    # No new backoff once shutdown started; the message stays uncommitted.
                    return self._result(record, envelope, state.attempt, MessageState.ABANDONED, str(exc))
                return self._schedule_retry(record, envelope, state, exc, held=held)
            return self._dead_letter(
                record,
                envelope,
                attempts=state.attempt,
                reason=f"{_failure_category(exc)}: {exc}",
                category=_failure_category(exc),
                held=held,
            )

        self._commit(record)
        if held:
            self._reader.release(record)
        return self._result(record, envelope, state.attempt, MessageState.COMMITTED, None)

    def _schedule_retry(
        self,
        record: QueueRecord,
        envelope: QueuedEnvelope,
        state: RetryState,
        exc: NotificationError,
        *,
        held: bool,
    ) -> ProcessingResult:
        delay = self._policy.delay(state.attempt)
        self._pending[_partition_key(record)] = _PendingRetry(
            record=record,
            envelope=envelope,
            state=state.next(),
            due_at=self._clock() + delay,
        )
        if not held:
            self._reader.hold(record)
        if self._metrics is not None:
            self._metrics.retry_scheduled()
        self._logger.warning(
            "[RETRY] topic=%s partition=%s offset=%s notification_id=%s attempt=%s/%s delay=%.3fs error=%s",
            record.topic,
            record.partition,
            record.offset,
            envelope.message_id,
            state.attempt,
            state.max_attempts,
            delay,
            exc,
        )
        return self._result(record, envelope, state.attempt, MessageState.RETRY_SCHEDULED, str(exc))

    def _dead_letter(
        self,
        record: QueueRecord,
        envelope: QueuedEnvelope | None,
        *,
        attempts: int,
        reason: str,
        category: str,
        held: bool,
    ) -> ProcessingResult:
        # DeadLetterError propagates: without a dead-letter copy the record must stay uncommitted.
        self._dead_letters.publish(record, reason=reason, attempts=attempts, envelope=envelope)
        if self._metrics is not None:
            self._metrics.dead_lettered(category)
        self._logger.error(
            "[DLQ] topic=%s partition=%s offset=%s notification_id=%s attempts=%s reason=%s",
            record.topic,
            record.partition,
            record.offset,
            envelope.message_id if envelope else None,
            attempts,
            reason,
        )
        self._commit(record)
        if held:
            self._reader.release(record)
        return self._result(record, envelope, attempts, MessageState.DEAD_LETTERED, reason)

    def _commit(self, record: QueueRecord) -> None:
        if not self._reader.commit(record):
            self._logger.error(
                "[COMMIT FAILED] topic=%s partition=%s offset=%s; record may be redelivered",
                record.topic,
                record.partition,
                record.offset,
            )
            return
        if self._metrics is not None:
            self._metrics.committed()
        self._logger.info(
            "[COMMIT] topic=%s partition=%s offset=%s",
            record.topic,
            record.partition,
            record.offset,
        )

    def _fetch_timeout(self) -> float:
        if not self._pending:
            return self._poll_timeout
        next_due = min(pending.due_at for pending in self._pending.values())
        return max(0.0, min(self._poll_timeout, next_due - self._clock()))

    def _result(
        self,
        record: QueueRecord,
        envelope: QueuedEnvelope | None,
        attempt: int,
        status: MessageState,
        error: str | None,
    ) -> ProcessingResult:
        self._logger.info(
            "[RESULT] topic=%s partition=%s offset=%s status=%s attempt=%s error=%s",
            record.topic,
            record.partition,
            record.offset,
            status.value,
            attempt,
            error,
        )
        return {
            "status": status.value,
            "record_meta": _record_meta(record),
            "notification_id": envelope.message_id if envelope else None,
            "attempt": attempt,
            "error": error,
        }


def _failure_category(exc: NotificationError) -> str:
    if exc.retryable:
        return "retries_exhausted"
    if isinstance(exc, UnsupportedKind):
        return "unsupported_kind"
    if isinstance(exc, DecodeError):
        return "decode_failed"
    return "non_retryable"


def _partition_key(record: QueueRecord) -> tuple[str, int]:
    return (record.topic, record.partition)


def _record_meta(record: QueueRecord) -> dict[str, Any]:
    return {
        "topic": record.topic,
        "partition": record.partition,
        "offset": record.offset,
    }


def _stopping(stop_event: threading.Event | None) -> bool:
    return stop_event is not None and stop_event.is_set()
