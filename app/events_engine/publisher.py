"""Publishers responsible for delivering patient events to the event log."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from functools import partial
from typing import List, Optional, Protocol

from app.events_engine.config import TopicNames
from app.events_engine.schemas import EventClass, PatientEvent
from app.events_engine.transport import DeliveryResult, EventLog

LOGGER = logging.getLogger("app.events_engine.publisher")


class EventPublisher(Protocol):
    """Fire-and-forget hand-off of an envelope to the event log."""

    def publish(self, envelope: PatientEvent, event_class: EventClass) -> List["Future[DeliveryResult]"]:
        ...


class NullEventPublisher(EventPublisher):
    """No-op publisher used when the engine is disabled."""

    def publish(self, envelope: PatientEvent, event_class: EventClass) -> List["Future[DeliveryResult]"]:  # noqa: D401
        LOGGER.debug(
            "events_engine_publish_skipped",
            extra={"event_id": str(envelope.event_id), "event_type": envelope.event_type.value},
        )
        return []


class LogEventPublisher(EventPublisher):
    """Sends each envelope to its type-specific stream and the merged stream.

    Both sends use the stringified patient id as key, so every event about
    one patient lands on the same partition of each stream. Send failures
    are logged and never raised; retries are left to the transport.
    """

    def __init__(self, *, event_log: EventLog, topics: TopicNames) -> None:
        self._log = event_log
        self._topics = topics

    @property
    def topics(self) -> TopicNames:
        return self._topics

    def publish(self, envelope: PatientEvent, event_class: EventClass) -> List["Future[DeliveryResult]"]:
        try:
            key = envelope.partition_key
            value = envelope.to_bytes()
            destinations = [self._topics.for_class(event_class), self._topics.merged]
        except Exception:  # noqa: BLE001
            LOGGER.exception(
                "events_engine_serialization_failed",
                extra={"event_id": str(envelope.event_id), "patient_id": envelope.patient_id},
            )
            return []

        headers = {"event_type": envelope.event_type.value, "event_id": str(envelope.event_id)}
        futures: List["Future[DeliveryResult]"] = []
        for topic in destinations:
            future = self._send(topic, key, value, headers, envelope)
            if future is not None:
                futures.append(future)
        return futures

    def _send(
        self,
        topic: str,
        key: str,
        value: bytes,
        headers: dict,
        envelope: PatientEvent,
    ) -> Optional["Future[DeliveryResult]"]:
        LOGGER.info(
            "events_engine_send_requested",
            extra={"topic": topic, "key": key, "event_type": envelope.event_type.value},
        )
        try:
            future = self._log.send(topic, key, value, headers)
        except Exception:  # noqa: BLE001
            LOGGER.exception(
                "events_engine_send_failed",
                extra={"topic": topic, "key": key, "event_id": str(envelope.event_id)},
            )
            return None
        future.add_done_callback(partial(_report_delivery, topic, key, str(envelope.event_id)))
        return future


def _report_delivery(topic: str, key: str, event_id: str, future: "Future[DeliveryResult]") -> None:
    error = future.exception()
    if error is not None:
        LOGGER.error(
            "events_engine_delivery_failed",
            extra={"topic": topic, "key": key, "event_id": event_id, "error": str(error)},
        )
        return
    result = future.result()
    LOGGER.info(
        "events_engine_delivery_succeeded",
        extra={
            "topic": topic,
            "key": key,
            "event_id": event_id,
            "partition": result.partition,
            "offset": result.offset,
        },
    )
