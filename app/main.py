"""FastAPI application factory."""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from typing import List, Tuple

from fastapi import FastAPI

from app.api.error_handlers import register_exception_handlers
from app.api.routers import get_api_router
from app.core.config import AppSettings, get_settings
from app.core.logging import configure_logging
from app.events_engine.config import get_event_engine_config
from app.events_engine.consumers import EventConsumer, build_consumers
from app.events_engine.runtime import get_event_log, shutdown_event_log

LOGGER = logging.getLogger("app.main")


def _provision_topics() -> None:
    from app.events_engine.kafka import build_admin_client, ensure_topics

    config = get_event_engine_config()
    try:
        ensure_topics(build_admin_client(config.bootstrap_servers or ""), config.topic_specs)
    except Exception:  # noqa: BLE001 - the broker may manage topics itself
        LOGGER.exception("events_engine_topic_provisioning_failed")


def _start_embedded_consumers() -> List[Tuple[EventConsumer, threading.Thread]]:
    running = []
    for consumer in build_consumers(get_event_engine_config(), get_event_log()):
        thread = threading.Thread(target=consumer.run_forever, name=f"consumer-{consumer.name}", daemon=True)
        thread.start()
        running.append((consumer, thread))
    return running


def _stop_embedded_consumers(running: List[Tuple[EventConsumer, threading.Thread]], timeout: float = 10.0) -> None:
    for consumer, _ in running:
        consumer.stop()
    for consumer, thread in running:
        thread.join(timeout=timeout)
        if thread.is_alive():
            LOGGER.warning("embedded_consumer_stop_timed_out", extra={"consumer": consumer.name})


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: D401
    """Application lifespan context for startup/shutdown hooks."""

    settings = get_settings()
    if settings.kafka_bootstrap_servers and settings.kafka_create_topics:
        _provision_topics()

    running: List[Tuple[EventConsumer, threading.Thread]] = []
    if settings.embedded_consumers:
        running = _start_embedded_consumers()

    yield

    _stop_embedded_consumers(running)
    shutdown_event_log()


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Application factory."""

    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Patient Record Service",
        version="1.0.0",
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.include_router(get_api_router())
    return app


app = create_app()
