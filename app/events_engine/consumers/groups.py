"""Wiring of the two consumer groups onto their streams."""

from __future__ import annotations

from typing import Iterable, List, Optional

from app.events_engine.config import EventEngineConfig
from app.events_engine.consumers.audit import AllEventsHandler
from app.events_engine.consumers.base import (
    DeadLetterSink,
    EventConsumer,
    InMemoryMessageSource,
    LogDeadLetterSink,
    MessageSource,
)
from app.events_engine.consumers.patients import PatientEventHandlers
from app.events_engine.transport import EventLog, InMemoryEventLog

TYPES_GROUP = "types"
ALL_EVENTS_GROUP = "all-events"


def build_message_source(
    config: EventEngineConfig,
    event_log: EventLog,
    group_id: str,
    topics: Iterable[str],
) -> MessageSource:
    if config.uses_kafka:
        from app.events_engine.kafka import KafkaMessageSource

        return KafkaMessageSource(config.consumer_config(group_id), topics)
    if not isinstance(event_log, InMemoryEventLog):
        raise TypeError("An in-memory consumer needs the in-memory event log")
    return InMemoryMessageSource(event_log, group_id, topics)


def build_dead_letter_sink(config: EventEngineConfig, event_log: EventLog) -> Optional[DeadLetterSink]:
    if not config.max_attempts or not config.dead_letter_topic:
        return None
    return LogDeadLetterSink(event_log, config.dead_letter_topic)


def build_patient_types_consumer(
    config: EventEngineConfig,
    event_log: EventLog,
    handlers: Optional[PatientEventHandlers] = None,
) -> EventConsumer:
    """Group reading the created/updated/deleted streams."""

    handlers = handlers or PatientEventHandlers()
    topics = config.topics
    topic_handlers = {
        topics.created: handlers.on_created,
        topics.updated: handlers.on_updated,
        topics.deleted: handlers.on_deleted,
    }
    return EventConsumer(
        name=TYPES_GROUP,
        source=build_message_source(config, event_log, config.type_group_id, topic_handlers),
        handlers=topic_handlers,
        max_attempts=config.max_attempts,
        dead_letter=build_dead_letter_sink(config, event_log),
        poll_timeout=config.poll_timeout,
    )


def build_all_events_consumer(
    config: EventEngineConfig,
    event_log: EventLog,
    handler: Optional[AllEventsHandler] = None,
) -> EventConsumer:
    """Independent group reading the merged stream for audit and analytics."""

    topic_handlers = {config.topics.merged: handler or AllEventsHandler()}
    return EventConsumer(
        name=ALL_EVENTS_GROUP,
        source=build_message_source(config, event_log, config.all_events_group_id, topic_handlers),
        handlers=topic_handlers,
        max_attempts=config.max_attempts,
        dead_letter=build_dead_letter_sink(config, event_log),
        poll_timeout=config.poll_timeout,
    )


def build_consumers(
    config: EventEngineConfig,
    event_log: EventLog,
    groups: Iterable[str] = (TYPES_GROUP, ALL_EVENTS_GROUP),
) -> List[EventConsumer]:
    builders = {TYPES_GROUP: build_patient_types_consumer, ALL_EVENTS_GROUP: build_all_events_consumer}
    consumers: List[EventConsumer] = []
    for group in groups:
        if group not in builders:
            raise ValueError(f"Unknown consumer group '{group}'")
        consumers.append(builders[group](config, event_log))
    return consumers
