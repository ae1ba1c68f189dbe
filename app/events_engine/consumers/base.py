"""Manual-acknowledgment consumer loop shared by every consumer group."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Set, Tuple

from pydantic import ValidationError

from app.events_engine.schemas import PatientEvent
from app.events_engine.transport import EventLog, InMemoryEventLog, LogRecord

LOGGER = logging.getLogger("app.events_engine.consumer")


class MessageState(str, Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    ACKNOWLEDGED = "acknowledged"
    UNACKNOWLEDGED = "unacknowledged"


class AcknowledgementError(RuntimeError):
    """Raised on an acknowledgment that does not follow successful processing."""


class MessageSource(Protocol):
    """Group member that yields records and commits read positions."""

    group_id: str

    def poll(self, timeout: float) -> List[LogRecord]:
        ...

    def commit(self, topic: str, partition: int, next_offset: int) -> None:
        ...

    def seek(self, topic: str, partition: int, offset: int) -> None:
        ...

    def close(self) -> None:
        ...


class ConsumedMessage:
    """One delivery of an envelope to a consumer group.

    Walks RECEIVED -> PROCESSING -> ACKNOWLEDGED, or ends UNACKNOWLEDGED
    and is redelivered. A declined message may still be acknowledged, for
    instance once it has been parked on a dead-letter stream. Acknowledging
    commits ``offset + 1`` for the group on the record's partition and may
    happen at most once; handlers may acknowledge themselves.
    """

    def __init__(
        self,
        *,
        envelope: PatientEvent,
        record: LogRecord,
        group_id: str,
        committer: Callable[[str, int, int], None],
        attempt: int = 1,
    ) -> None:
        self.envelope = envelope
        self.record = record
        self.group_id = group_id
        self.attempt = attempt
        self._committer = committer
        self._state = MessageState.RECEIVED

    @property
    def state(self) -> MessageState:
        return self._state

    @property
    def topic(self) -> str:
        return self.record.topic

    @property
    def partition(self) -> int:
        return self.record.partition

    @property
    def offset(self) -> int:
        return self.record.offset

    @property
    def timestamp(self) -> int:
        return self.record.timestamp

    def start_processing(self) -> None:
        if self._state is not MessageState.RECEIVED:
            raise AcknowledgementError(f"Cannot process a message in state {self._state.value}")
        self._state = MessageState.PROCESSING

    def acknowledge(self) -> None:
        if self._state not in (MessageState.PROCESSING, MessageState.UNACKNOWLEDGED):
            raise AcknowledgementError(f"Cannot acknowledge a message in state {self._state.value}")
        self._committer(self.topic, self.partition, self.offset + 1)
        self._state = MessageState.ACKNOWLEDGED

    def mark_unacknowledged(self) -> None:
        if self._state is MessageState.ACKNOWLEDGED:
            raise AcknowledgementError("Cannot withdraw an acknowledgment that was already committed")
        self._state = MessageState.UNACKNOWLEDGED


EventHandler = Callable[[ConsumedMessage], None]


class DeadLetterSink(Protocol):
    def park(self, record: LogRecord, *, group_id: str, error: BaseException, attempts: int) -> None:
        ...


class LogDeadLetterSink(DeadLetterSink):
    """Copies a poison record to a dead-letter stream, waiting for the broker ack."""

    def __init__(self, event_log: EventLog, topic: str, *, timeout: float = 10.0) -> None:
        self._log = event_log
        self._topic = topic
        self._timeout = timeout

    def park(self, record: LogRecord, *, group_id: str, error: BaseException, attempts: int) -> None:
        headers = dict(record.headers)
        headers.update(
            {
                "dlt_original_topic": record.topic,
                "dlt_original_partition": str(record.partition),
                "dlt_original_offset": str(record.offset),
                "dlt_group_id": group_id,
                "dlt_attempts": str(attempts),
                "dlt_error": f"{type(error).__name__}: {error}"[:1024],
            }
        )
        result = self._log.send(self._topic, record.key or "", record.value, headers).result(timeout=self._timeout)
        LOGGER.warning(
            "events_engine_message_dead_lettered",
            extra={
                "group_id": group_id,
                "topic": record.topic,
                "partition": record.partition,
                "offset": record.offset,
                "dead_letter_topic": result.topic,
                "dead_letter_offset": result.offset,
            },
        )


class InMemoryMessageSource(MessageSource):
    """Group member reading from an :class:`InMemoryEventLog`.

    Starts each partition at the group's committed offset, so a fresh
    source after a "restart" sees every unacknowledged record again.
    """

    def __init__(self, event_log: InMemoryEventLog, group_id: str, topics: Iterable[str], *, batch_size: int = 100) -> None:
        self.group_id = group_id
        self._log = event_log
        self._topics = list(topics)
        self._batch_size = batch_size
        self._positions: Dict[Tuple[str, int], int] = {}

    def _position(self, topic: str, partition: int) -> int:
        key = (topic, partition)
        if key not in self._positions:
            self._positions[key] = self._log.committed(self.group_id, topic, partition)
        return self._positions[key]

    def poll(self, timeout: float) -> List[LogRecord]:
        records: List[LogRecord] = []
        for topic in self._topics:
            for partition in range(self._log.partition_count(topic)):
                remaining = self._batch_size - len(records)
                if remaining <= 0:
                    return records
                batch = self._log.fetch(topic, partition, self._position(topic, partition), remaining)
                if batch:
                    self._positions[(topic, partition)] = batch[-1].offset + 1
                    records.extend(batch)
        if not records and timeout > 0:
            time.sleep(min(timeout, 0.1))
        return records

    def commit(self, topic: str, partition: int, next_offset: int) -> None:
        self._log.commit(self.group_id, topic, partition, next_offset)

    def seek(self, topic: str, partition: int, offset: int) -> None:
        self._positions[(topic, partition)] = offset

    def close(self) -> None:
        self._positions.clear()


class EventConsumer:
    """Polls a source and runs the handler registered for each record's topic.

    A record is acknowledged only after its handler returns. When the
    handler raises, the partition is rewound to the failed offset and the
    rest of that partition's batch is skipped, so the same record comes
    back on the next poll and later records of the same key never overtake
    it. With ``max_attempts`` and a dead-letter sink, a record failing that
    many times in a row is parked and acknowledged instead.
    """

    def __init__(
        self,
        *,
        name: str,
        source: MessageSource,
        handlers: Mapping[str, EventHandler],
        max_attempts: Optional[int] = None,
        dead_letter: Optional[DeadLetterSink] = None,
        poll_timeout: float = 1.0,
        error_backoff: float = 5.0,
    ) -> None:
        self.name = name
        self._source = source
        self._handlers = dict(handlers)
        self._max_attempts = max_attempts
        self._dead_letter = dead_letter
        self._poll_timeout = poll_timeout
        self._error_backoff = error_backoff
        self._failures: Dict[Tuple[str, int, int], int] = {}
        self._stopped = threading.Event()

    @property
    def group_id(self) -> str:
        return self._source.group_id

    @property
    def topics(self) -> List[str]:
        return list(self._handlers)

    def poll_once(self, timeout: Optional[float] = None) -> List[ConsumedMessage]:
        """Process one batch and return the messages that reached a handler."""

        records = self._source.poll(self._poll_timeout if timeout is None else timeout)
        blocked: Set[Tuple[str, int]] = set()
        processed: List[ConsumedMessage] = []
        for index, record in enumerate(records):
            topic_partition = (record.topic, record.partition)
            if topic_partition in blocked:
                continue
            try:
                message = self._deliver(record)
            except Exception:
                self._rewind(records[index:], blocked)
                raise
            if message is None:
                continue
            processed.append(message)
            if message.state is MessageState.UNACKNOWLEDGED:
                blocked.add(topic_partition)
                self._source.seek(record.topic, record.partition, record.offset)
        return processed

    def _rewind(self, pending: List[LogRecord], blocked: Set[Tuple[str, int]]) -> None:
        """Seek every partition with unprocessed records back to its first one."""

        seen = set(blocked)
        for record in pending:
            topic_partition = (record.topic, record.partition)
            if topic_partition not in seen:
                seen.add(topic_partition)
                self._source.seek(record.topic, record.partition, record.offset)

    def _deliver(self, record: LogRecord) -> Optional[ConsumedMessage]:
        handler = self._handlers.get(record.topic)
        if handler is None:
            LOGGER.warning(
                "events_engine_no_handler",
                extra={"group_id": self.group_id, "topic": record.topic, "offset": record.offset},
            )
            self._source.commit(record.topic, record.partition, record.offset + 1)
            return None

        try:
            envelope = PatientEvent.from_bytes(record.value)
        except (ValidationError, ValueError) as exc:
            self._discard_unreadable(record, exc)
            return None

        failure_key = (record.topic, record.partition, record.offset)
        message = ConsumedMessage(
            envelope=envelope,
            record=record,
            group_id=self.group_id,
            committer=self._source.commit,
            attempt=self._failures.get(failure_key, 0) + 1,
        )
        log_context = {
            "group_id": self.group_id,
            "consumer": self.name,
            "topic": record.topic,
            "partition": record.partition,
            "offset": record.offset,
            "event_id": str(envelope.event_id),
            "event_type": envelope.event_type.value,
            "patient_id": envelope.patient_id,
            "triggered_by": envelope.triggered_by,
            "attempt": message.attempt,
        }
        LOGGER.info("events_engine_message_received", extra=log_context)

        message.start_processing()
        try:
            handler(message)
        except Exception as exc:  # noqa: BLE001 - handler failures mean redelivery
            LOGGER.exception("events_engine_handler_failed", extra=log_context)
            if message.state is MessageState.ACKNOWLEDGED:
                # Already committed by the handler; nothing left to redeliver.
                self._failures.pop(failure_key, None)
                return message
            self._failures[failure_key] = message.attempt
            if self._should_dead_letter(message.attempt) and self._park(message, exc):
                # Parked records count as handled for the group.
                self._failures.pop(failure_key, None)
                message.acknowledge()
                return message
            message.mark_unacknowledged()
            return message

        if message.state is MessageState.UNACKNOWLEDGED:
            # The handler declined the message; it is redelivered like a failure.
            self._failures[failure_key] = message.attempt
            LOGGER.warning("events_engine_message_declined", extra=log_context)
            return message

        self._failures.pop(failure_key, None)
        if message.state is MessageState.PROCESSING:
            message.acknowledge()
        LOGGER.info("events_engine_message_acknowledged", extra=log_context)
        return message

    def _should_dead_letter(self, attempts: int) -> bool:
        return self._dead_letter is not None and self._max_attempts is not None and attempts >= self._max_attempts

    def _park(self, message: ConsumedMessage, error: BaseException) -> bool:
        assert self._dead_letter is not None
        try:
            self._dead_letter.park(message.record, group_id=self.group_id, error=error, attempts=message.attempt)
        except Exception:  # noqa: BLE001
            LOGGER.exception(
                "events_engine_dead_letter_failed",
                extra={"group_id": self.group_id, "topic": message.topic, "offset": message.offset},
            )
            return False
        return True

    def _discard_unreadable(self, record: LogRecord, error: Exception) -> None:
        LOGGER.error(
            "events_engine_unreadable_message",
            extra={
                "group_id": self.group_id,
                "topic": record.topic,
                "partition": record.partition,
                "offset": record.offset,
                "error": str(error),
            },
        )
        if self._dead_letter is not None:
            self._dead_letter.park(record, group_id=self.group_id, error=error, attempts=1)
        self._source.commit(record.topic, record.partition, record.offset + 1)

    def run_forever(self) -> None:
        LOGGER.info("Starting event consumer", extra={"group_id": self.group_id, "topics": self.topics})
        while not self._stopped.is_set():
            try:
                self.poll_once()
            except Exception as exc:  # noqa: BLE001 - keep the worker alive on transport errors
                LOGGER.exception("Failed to poll messages", extra={"group_id": self.group_id, "error": str(exc)})
                self._stopped.wait(self._error_backoff)
        self._source.close()
        LOGGER.info("Stopped event consumer", extra={"group_id": self.group_id})

    def stop(self) -> None:
        self._stopped.set()
