"""Process-wide event log and publisher instances."""

from __future__ import annotations

import logging
from typing import Optional

from app.events_engine.config import EventEngineConfig, get_event_engine_config
from app.events_engine.publisher import EventPublisher, LogEventPublisher
from app.events_engine.transport import EventLog, InMemoryEventLog

_event_log: Optional[EventLog] = None
_publisher: Optional[EventPublisher] = None

LOGGER = logging.getLogger("app.events_engine.runtime")


def build_event_log(config: EventEngineConfig) -> EventLog:
    """Kafka when a broker is configured, otherwise the in-process log."""

    if config.uses_kafka:
        from app.events_engine.kafka import KafkaEventLog

        LOGGER.info("events_engine_kafka_enabled", extra={"bootstrap_servers": config.bootstrap_servers})
        return KafkaEventLog(config.producer_config)

    log = InMemoryEventLog()
    for spec in config.topic_specs:
        log.create_topic(spec.name, spec.partitions)
    LOGGER.info("events_engine_in_memory_log_enabled")
    return log


def get_event_log() -> EventLog:
    global _event_log
    if _event_log is None:
        _event_log = build_event_log(get_event_engine_config())
    return _event_log


def get_event_publisher() -> EventPublisher:
    """Return the singleton publisher for the application."""

    global _publisher
    if _publisher is not None:
        return _publisher

    config = get_event_engine_config()
    _publisher = LogEventPublisher(event_log=get_event_log(), topics=config.topics)
    return _publisher


def set_event_publisher(publisher: Optional[EventPublisher], event_log: Optional[EventLog] = None) -> None:
    """Override the cached publisher and log (primarily for tests)."""

    global _publisher, _event_log
    _publisher = publisher
    _event_log = event_log


def shutdown_event_log() -> None:
    """Flush pending sends and release the transport."""

    global _event_log, _publisher
    if _event_log is None:
        return
    try:
        _event_log.close()
    except Exception:  # noqa: BLE001
        LOGGER.exception("events_engine_shutdown_failed")
    _event_log = None
    _publisher = None
