"""Kafka-backed event log, consumer source and topic provisioning."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from confluent_kafka import Consumer, KafkaError, KafkaException, Message, Producer, TopicPartition
from confluent_kafka.admin import AdminClient, NewTopic

from app.events_engine.config import TopicSpec
from app.events_engine.transport import DeliveryResult, EventLog, EventPublishError, LogRecord

LOGGER = logging.getLogger("app.events_engine.kafka")


def _decode_headers(raw: Optional[List[tuple]]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for name, value in raw or []:
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        headers[name] = "" if value is None else str(value)
    return headers


class KafkaEventLog(EventLog):
    """Asynchronous producer; delivery reports resolve the returned futures.

    A daemon thread serves librdkafka callbacks so neither ``send`` nor the
    delivery continuation runs on the request thread.
    """

    def __init__(self, config: Mapping[str, Any], *, poll_interval: float = 0.1) -> None:
        producer_config = {key: value for key, value in config.items() if value is not None}
        producer_config.setdefault("logger", LOGGER)
        self._producer = Producer(producer_config)
        self._poll_interval = poll_interval
        self._stopped = threading.Event()
        self._poller = threading.Thread(target=self._poll_loop, name="kafka-delivery-poller", daemon=True)
        self._poller.start()

    def _poll_loop(self) -> None:
        while not self._stopped.is_set():
            self._producer.poll(self._poll_interval)

    def send(
        self,
        topic: str,
        key: str,
        value: bytes,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Future[DeliveryResult]":
        future: "Future[DeliveryResult]" = Future()

        def on_delivery(err: Optional[KafkaError], msg: Message) -> None:
            if err is not None:
                future.set_exception(KafkaException(err))
                return
            future.set_result(DeliveryResult(topic=msg.topic(), partition=msg.partition(), offset=msg.offset()))

        try:
            self._producer.produce(
                topic,
                key=key.encode("utf-8"),
                value=value,
                headers=list((headers or {}).items()),
                on_delivery=on_delivery,
            )
        except (BufferError, KafkaException) as exc:
            raise EventPublishError(f"Could not enqueue record for topic {topic}") from exc
        return future

    def flush(self, timeout: Optional[float] = None) -> int:
        return self._producer.flush(timeout if timeout is not None else -1)

    def close(self) -> None:
        remaining = self.flush(10.0)
        if remaining:
            LOGGER.warning("events_engine_flush_incomplete", extra={"undelivered": remaining})
        self._stopped.set()
        self._poller.join(timeout=1.0)


class KafkaMessageSource:
    """Consumer-group member with manual offset commits."""

    def __init__(self, config: Mapping[str, Any], topics: Iterable[str], *, batch_size: int = 100) -> None:
        consumer_config = {key: value for key, value in config.items() if value is not None}
        consumer_config.setdefault("logger", LOGGER)
        self.group_id = str(consumer_config["group.id"])
        self._consumer = Consumer(consumer_config)
        self._topics = list(topics)
        self._batch_size = batch_size
        self._consumer.subscribe(self._topics, on_assign=self._on_assign, on_revoke=self._on_revoke)

    def _on_assign(self, consumer: Consumer, partitions: List[TopicPartition]) -> None:
        LOGGER.info(
            "events_engine_partitions_assigned",
            extra={"group_id": self.group_id, "partitions": [(tp.topic, tp.partition) for tp in partitions]},
        )

    def _on_revoke(self, consumer: Consumer, partitions: List[TopicPartition]) -> None:
        LOGGER.info(
            "events_engine_partitions_revoked",
            extra={"group_id": self.group_id, "partitions": [(tp.topic, tp.partition) for tp in partitions]},
        )

    def poll(self, timeout: float) -> List[LogRecord]:
        """Return the readable records of one batch.

        Error events never discard records already fetched in the batch:
        non-fatal ones are logged and skipped, and a fatal one rewinds every
        partition to its first collected offset before raising.
        """

        records: List[LogRecord] = []
        fatal: Optional[KafkaError] = None
        for msg in self._consumer.consume(num_messages=self._batch_size, timeout=timeout):
            error = msg.error()
            if error is not None:
                if error.code() == KafkaError._PARTITION_EOF:
                    continue
                if error.fatal():
                    fatal = fatal or error
                    continue
                LOGGER.warning(
                    "events_engine_consume_error",
                    extra={"group_id": self.group_id, "error": error.str(), "code": error.code()},
                )
                continue
            key = msg.key()
            _, timestamp = msg.timestamp()
            records.append(
                LogRecord(
                    topic=msg.topic(),
                    partition=msg.partition(),
                    offset=msg.offset(),
                    key=key.decode("utf-8") if isinstance(key, bytes) else key,
                    value=msg.value() or b"",
                    timestamp=timestamp,
                    headers=_decode_headers(msg.headers()),
                )
            )

        if fatal is not None:
            self._rewind(records)
            raise KafkaException(fatal)
        return records

    def _rewind(self, records: List[LogRecord]) -> None:
        first_offsets: Dict[Tuple[str, int], int] = {}
        for record in records:
            first_offsets.setdefault((record.topic, record.partition), record.offset)
        for (topic, partition), offset in first_offsets.items():
            self.seek(topic, partition, offset)

    def commit(self, topic: str, partition: int, next_offset: int) -> None:
        self._consumer.commit(offsets=[TopicPartition(topic, partition, next_offset)], asynchronous=False)

    def seek(self, topic: str, partition: int, offset: int) -> None:
        self._consumer.seek(TopicPartition(topic, partition, offset))

    def close(self) -> None:
        self._consumer.close()


def ensure_topics(admin: AdminClient, specs: Iterable[TopicSpec], *, timeout: float = 30.0) -> List[str]:
    """Create missing topics; existing ones are left untouched."""

    new_topics = [
        NewTopic(spec.name, num_partitions=spec.partitions, replication_factor=spec.replication_factor)
        for spec in specs
    ]
    if not new_topics:
        return []

    created: List[str] = []
    for name, future in admin.create_topics(new_topics, request_timeout=timeout).items():
        try:
            future.result()
        except KafkaException as exc:
            error = exc.args[0] if exc.args else None
            if isinstance(error, KafkaError) and error.code() == KafkaError.TOPIC_ALREADY_EXISTS:
                LOGGER.debug("events_engine_topic_exists", extra={"topic": name})
                continue
            raise
        LOGGER.info("events_engine_topic_created", extra={"topic": name})
        created.append(name)
    return created


def build_admin_client(bootstrap_servers: str) -> AdminClient:
    return AdminClient({"bootstrap.servers": bootstrap_servers})
