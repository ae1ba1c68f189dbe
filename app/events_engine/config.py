"""Configuration helpers for the events engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.core.config import AppSettings, get_settings
from app.events_engine.schemas import EventClass


@dataclass(frozen=True)
class TopicNames:
    """Stream names for the three event classes plus the merged stream."""

    created: str
    updated: str
    deleted: str
    merged: str

    def for_class(self, event_class: EventClass) -> str:
        return {
            EventClass.CREATED: self.created,
            EventClass.UPDATED: self.updated,
            EventClass.DELETED: self.deleted,
        }[EventClass(event_class)]

    @property
    def type_specific(self) -> List[str]:
        return [self.created, self.updated, self.deleted]


@dataclass(frozen=True)
class TopicSpec:
    name: str
    partitions: int
    replication_factor: int


@dataclass
class EventEngineConfig:
    """Resolved configuration values for the events engine."""

    topics: TopicNames
    topic_specs: List[TopicSpec]
    bootstrap_servers: Optional[str]
    producer_config: Dict[str, Any]
    consumer_base_config: Dict[str, Any]
    type_group_id: str
    all_events_group_id: str
    poll_timeout: float = 1.0
    max_attempts: Optional[int] = None
    dead_letter_topic: Optional[str] = None
    source: str = "patient-record-service"

    @property
    def uses_kafka(self) -> bool:
        return bool(self.bootstrap_servers)

    def consumer_config(self, group_id: str) -> Dict[str, Any]:
        config = dict(self.consumer_base_config)
        config["group.id"] = group_id
        return config

    def partitions_for(self, topic: str) -> int:
        for spec in self.topic_specs:
            if spec.name == topic:
                return spec.partitions
        return 1


def get_event_engine_config(settings: Optional[AppSettings] = None) -> EventEngineConfig:
    """Materialize events engine configuration from application settings."""

    settings = settings or get_settings()
    topics = TopicNames(
        created=settings.topic_patient_created,
        updated=settings.topic_patient_updated,
        deleted=settings.topic_patient_deleted,
        merged=settings.topic_patient_events,
    )

    specs = [
        TopicSpec(name, settings.topic_partitions, settings.topic_replication_factor)
        for name in topics.type_specific
    ]
    specs.append(TopicSpec(topics.merged, settings.merged_topic_partitions, settings.topic_replication_factor))

    dead_letter_topic = settings.dead_letter_topic if settings.consumer_max_attempts else None
    if dead_letter_topic:
        specs.append(TopicSpec(dead_letter_topic, 1, settings.topic_replication_factor))

    producer_config: Dict[str, Any] = {
        "bootstrap.servers": settings.kafka_bootstrap_servers,
        "client.id": settings.kafka_client_id,
        "enable.idempotence": settings.producer_enable_idempotence,
        "acks": settings.producer_acks,
        "retries": settings.producer_retries,
        "max.in.flight.requests.per.connection": settings.producer_max_in_flight,
        "delivery.timeout.ms": settings.producer_delivery_timeout_ms,
    }
    consumer_config: Dict[str, Any] = {
        "bootstrap.servers": settings.kafka_bootstrap_servers,
        "client.id": settings.kafka_client_id,
        "auto.offset.reset": settings.consumer_auto_offset_reset,
        "enable.auto.commit": False,
        "enable.auto.offset.store": False,
    }

    return EventEngineConfig(
        topics=topics,
        topic_specs=specs,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        producer_config=producer_config,
        consumer_base_config=consumer_config,
        type_group_id=settings.consumer_group_id,
        all_events_group_id=settings.all_events_group_id,
        poll_timeout=settings.consumer_poll_timeout,
        max_attempts=settings.consumer_max_attempts,
        dead_letter_topic=dead_letter_topic,
        source=settings.service_name,
    )
