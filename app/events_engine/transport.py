"""Event log abstraction and the in-process partitioned log."""

from __future__ import annotations

import logging
import time
import zlib
from collections import defaultdict
from concurrent.futures import Future
from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, List, Mapping, Optional, Protocol, Tuple

LOGGER = logging.getLogger("app.events_engine.transport")


class EventPublishError(RuntimeError):
    """Raised when a record cannot be handed to the event log."""


@dataclass(frozen=True)
class DeliveryResult:
    """Broker acknowledgement for a single record."""

    topic: str
    partition: int
    offset: int


@dataclass(frozen=True)
class LogRecord:
    """A record as stored in (and read back from) a partition."""

    topic: str
    partition: int
    offset: int
    key: Optional[str]
    value: bytes
    timestamp: int
    headers: Dict[str, str] = field(default_factory=dict)


class EventLog(Protocol):
    """Ordered, partitioned, append-only transport used by the publisher."""

    def send(
        self,
        topic: str,
        key: str,
        value: bytes,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Future[DeliveryResult]":
        ...

    def flush(self, timeout: Optional[float] = None) -> int:
        ...

    def close(self) -> None:
        ...


def partition_for_key(key: str, partitions: int) -> int:
    """Stable key to partition mapping; equal keys always share a partition."""

    return zlib.crc32(key.encode("utf-8")) % partitions


class InMemoryEventLog(EventLog):
    """Partitioned log held in process memory.

    Used when no broker is configured and in tests. It keeps the delivery
    contract the consumers rely on: per-key ordering, per-group committed
    offsets and redelivery from the committed position.
    """

    def __init__(self, partitions: Optional[Mapping[str, int]] = None, default_partitions: int = 1) -> None:
        self._partitions: Dict[str, int] = dict(partitions or {})
        self._default_partitions = default_partitions
        self._records: Dict[Tuple[str, int], List[LogRecord]] = defaultdict(list)
        self._committed: Dict[Tuple[str, str, int], int] = {}
        self._lock = RLock()

    def create_topic(self, topic: str, partitions: int) -> None:
        with self._lock:
            self._partitions.setdefault(topic, partitions)

    def partition_count(self, topic: str) -> int:
        with self._lock:
            return self._partitions.setdefault(topic, self._default_partitions)

    def send(
        self,
        topic: str,
        key: str,
        value: bytes,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Future[DeliveryResult]":
        future: "Future[DeliveryResult]" = Future()
        with self._lock:
            partition = partition_for_key(key, self.partition_count(topic))
            log = self._records[(topic, partition)]
            record = LogRecord(
                topic=topic,
                partition=partition,
                offset=len(log),
                key=key,
                value=value,
                timestamp=int(time.time() * 1000),
                headers=dict(headers or {}),
            )
            log.append(record)
        future.set_result(DeliveryResult(topic=topic, partition=partition, offset=record.offset))
        return future

    def fetch(self, topic: str, partition: int, offset: int, max_records: int = 100) -> List[LogRecord]:
        with self._lock:
            return list(self._records[(topic, partition)][offset : offset + max_records])

    def records(self, topic: str) -> List[LogRecord]:
        """All records of ``topic`` across partitions, partition by partition."""

        with self._lock:
            result: List[LogRecord] = []
            for partition in range(self.partition_count(topic)):
                result.extend(self._records[(topic, partition)])
            return result

    def committed(self, group_id: str, topic: str, partition: int) -> int:
        with self._lock:
            return self._committed.get((group_id, topic, partition), 0)

    def commit(self, group_id: str, topic: str, partition: int, offset: int) -> None:
        with self._lock:
            self._committed[(group_id, topic, partition)] = offset
        LOGGER.debug(
            "events_engine_offset_committed",
            extra={"group_id": group_id, "topic": topic, "partition": partition, "offset": offset},
        )

    def flush(self, timeout: Optional[float] = None) -> int:
        return 0

    def close(self) -> None:
        return None
