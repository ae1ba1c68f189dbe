from __future__ import annotations

from concurrent.futures import Future

import pytest
from confluent_kafka import KafkaError, KafkaException

from app.events_engine import kafka as kafka_module
from app.events_engine.config import TopicSpec
from app.events_engine.consumers.base import EventConsumer
from app.events_engine.schemas import PatientEvent, PatientEventType
from app.events_engine.transport import EventPublishError


class FakeMessage:
    def __init__(self, topic, partition, offset) -> None:
        self._topic = topic
        self._partition = partition
        self._offset = offset

    def topic(self):
        return self._topic

    def partition(self):
        return self._partition

    def offset(self):
        return self._offset


class FakeProducer:
    instances = []

    def __init__(self, config) -> None:
        self.config = config
        self.produced = []
        self.full = False
        FakeProducer.instances.append(self)

    def produce(self, topic, key=None, value=None, headers=None, on_delivery=None):
        if self.full:
            raise BufferError("Local: Queue full")
        self.produced.append((topic, key, value, headers, on_delivery))

    def poll(self, timeout):
        return 0

    def flush(self, timeout=-1):
        return 0


class FakeAdmin:
    def __init__(self, failures) -> None:
        self.failures = failures
        self.requested = []

    def create_topics(self, new_topics, request_timeout=None):
        results = {}
        for topic in new_topics:
            self.requested.append((topic.topic, topic.num_partitions))
            future = Future()
            error = self.failures.get(topic.topic)
            if error is None:
                future.set_result(None)
            else:
                future.set_exception(KafkaException(KafkaError(error)))
            results[topic.topic] = future
        return results


@pytest.fixture()
def producer(monkeypatch):
    FakeProducer.instances.clear()
    monkeypatch.setattr(kafka_module, "Producer", FakeProducer)
    log = kafka_module.KafkaEventLog({"bootstrap.servers": "broker:9092", "acks": "all", "client.id": None})
    yield log, FakeProducer.instances[0]
    log.close()


def test_send_resolves_future_from_delivery_report(producer) -> None:
    log, fake = producer

    future = log.send("patient-created", "12", b"{}", {"event_type": "CREATED"})
    topic, key, value, headers, on_delivery = fake.produced[0]
    assert (topic, key, value) == ("patient-created", b"12", b"{}")
    assert headers == [("event_type", "CREATED")]
    assert "client.id" not in fake.config

    on_delivery(None, FakeMessage("patient-created", 1, 40))
    result = future.result(timeout=1)
    assert (result.partition, result.offset) == (1, 40)


def test_failed_delivery_report_fails_the_future(producer) -> None:
    log, fake = producer

    future = log.send("patient-created", "12", b"{}")
    fake.produced[0][4](KafkaError(KafkaError._MSG_TIMED_OUT), None)

    with pytest.raises(KafkaException):
        future.result(timeout=1)


def test_full_local_queue_raises_publish_error(producer) -> None:
    log, fake = producer
    fake.full = True

    with pytest.raises(EventPublishError):
        log.send("patient-created", "12", b"{}")


def test_ensure_topics_ignores_existing_topics() -> None:
    admin = FakeAdmin({"patient-created": KafkaError.TOPIC_ALREADY_EXISTS})
    specs = [TopicSpec("patient-created", 3, 1), TopicSpec("patient-events", 5, 1)]

    created = kafka_module.ensure_topics(admin, specs)

    assert created == ["patient-events"]
    assert admin.requested == [("patient-created", 3), ("patient-events", 5)]


def test_ensure_topics_raises_other_errors() -> None:
    admin = FakeAdmin({"patient-events": KafkaError.TOPIC_AUTHORIZATION_FAILED})

    with pytest.raises(KafkaException):
        kafka_module.ensure_topics(admin, [TopicSpec("patient-events", 5, 1)])


class FakeRecord:
    def __init__(self, offset, value, *, topic="patient-events", partition=0, key=b"7", headers=None, error=None):
        self._offset = offset
        self._value = value
        self._topic = topic
        self._partition = partition
        self._key = key
        self._headers = headers
        self._error = error

    def error(self):
        return self._error

    def topic(self):
        return self._topic

    def partition(self):
        return self._partition

    def offset(self):
        return self._offset

    def key(self):
        return self._key

    def value(self):
        return self._value

    def timestamp(self):
        return (1, 1_700_000_000_000 + self._offset)

    def headers(self):
        return self._headers


def _error_event(code, *, fatal=False) -> FakeRecord:
    return FakeRecord(-1, None, error=KafkaError(code, fatal=fatal))


class FakeConsumer:
    """Single-partition member whose fetch position advances on consume."""

    instances = []

    def __init__(self, config) -> None:
        self.config = config
        self.log = []
        self.position = 0
        self.pending_errors = []
        self.commits = []
        self.seeks = []
        self.subscribed = None
        self.closed = False
        FakeConsumer.instances.append(self)

    def subscribe(self, topics, on_assign=None, on_revoke=None):
        self.subscribed = list(topics)

    def consume(self, num_messages=1, timeout=-1):
        batch = self.log[self.position : self.position + num_messages]
        self.position += len(batch)
        batch = list(batch) + self.pending_errors
        self.pending_errors = []
        return batch

    def commit(self, offsets=None, asynchronous=True):
        self.commits.append(([(tp.topic, tp.partition, tp.offset) for tp in offsets], asynchronous))

    def seek(self, partition):
        self.seeks.append((partition.topic, partition.partition, partition.offset))
        self.position = partition.offset

    def close(self):
        self.closed = True


@pytest.fixture()
def consumer_source(monkeypatch):
    FakeConsumer.instances.clear()
    monkeypatch.setattr(kafka_module, "Consumer", FakeConsumer)
    source = kafka_module.KafkaMessageSource(
        {"bootstrap.servers": "broker:9092", "group.id": "patient-service-group-all-events", "client.id": None},
        ["patient-events"],
    )
    return source, FakeConsumer.instances[0]


def _envelope_bytes(patient_id: int = 7) -> bytes:
    return PatientEvent(event_type=PatientEventType.UPDATED, patient_id=patient_id).to_bytes()


def test_source_subscribes_with_group_config(consumer_source) -> None:
    source, fake = consumer_source

    assert source.group_id == "patient-service-group-all-events"
    assert fake.subscribed == ["patient-events"]
    assert "client.id" not in fake.config


def test_poll_decodes_records_and_skips_partition_eof(consumer_source) -> None:
    source, fake = consumer_source
    fake.log = [FakeRecord(0, b"{}", key=b"42", headers=[("event_type", b"CREATED"), ("trace", None)])]
    fake.pending_errors = [_error_event(KafkaError._PARTITION_EOF)]

    (record,) = source.poll(0)

    assert (record.topic, record.partition, record.offset) == ("patient-events", 0, 0)
    assert record.key == "42"
    assert record.value == b"{}"
    assert record.timestamp == 1_700_000_000_000
    assert record.headers == {"event_type": "CREATED", "trace": ""}


def test_commit_is_synchronous_for_the_next_offset(consumer_source) -> None:
    source, fake = consumer_source

    source.commit("patient-events", 3, 18)
    source.seek("patient-events", 3, 17)
    source.close()

    assert fake.commits == [([("patient-events", 3, 18)], False)]
    assert fake.seeks == [("patient-events", 3, 17)]
    assert fake.closed is True


def test_transient_error_event_keeps_the_batch(consumer_source) -> None:
    source, fake = consumer_source
    fake.log = [FakeRecord(0, b"a"), FakeRecord(1, b"b")]
    fake.pending_errors = [_error_event(KafkaError._TRANSPORT)]

    records = source.poll(0)

    assert [record.offset for record in records] == [0, 1]


def test_fatal_error_event_rewinds_before_raising(consumer_source) -> None:
    source, fake = consumer_source
    fake.log = [FakeRecord(0, b"a"), FakeRecord(1, b"b")]
    fake.pending_errors = [_error_event(KafkaError._FATAL, fatal=True)]

    with pytest.raises(KafkaException):
        source.poll(0)

    assert fake.seeks == [("patient-events", 0, 0)]
    assert [record.offset for record in source.poll(0)] == [0, 1]


def test_consumer_handles_every_record_around_an_error_event(monkeypatch) -> None:
    FakeConsumer.instances.clear()
    monkeypatch.setattr(kafka_module, "Consumer", FakeConsumer)
    source = kafka_module.KafkaMessageSource({"group.id": "all-events"}, ["patient-events"], batch_size=2)
    fake = FakeConsumer.instances[0]
    fake.log = [FakeRecord(offset, _envelope_bytes()) for offset in range(4)]
    handled = []
    consumer = EventConsumer(
        name="all-events",
        source=source,
        handlers={"patient-events": lambda message: handled.append(message.offset)},
        poll_timeout=0,
    )
    fake.pending_errors = [_error_event(KafkaError._TRANSPORT)]

    consumer.poll_once()
    consumer.poll_once()

    assert handled == [0, 1, 2, 3]
    assert fake.commits[-1] == ([("patient-events", 0, 4)], False)
