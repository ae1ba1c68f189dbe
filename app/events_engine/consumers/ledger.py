"""Processed-event ledger that makes consumer side effects idempotent."""

from __future__ import annotations

import logging
from typing import Callable, ContextManager

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.database import session_scope
from app.events_engine.consumers.base import ConsumedMessage
from app.events_engine.schemas import PatientEvent
from app.models.processed_event import ProcessedEvent

LOGGER = logging.getLogger("app.events_engine.consumers.ledger")

SessionFactory = Callable[[], ContextManager[Session]]
SideEffect = Callable[[Session, PatientEvent], None]


def run_once(
    message: ConsumedMessage,
    handler_name: str,
    side_effect: SideEffect,
    *,
    session_factory: SessionFactory = session_scope,
) -> bool:
    """Run ``side_effect`` unless this group already ran it for the envelope.

    The side effect and its ledger row share one transaction. Returns
    ``False`` when the envelope is a redelivery that was already handled.
    """

    envelope = message.envelope
    event_id = str(envelope.event_id)
    with session_factory() as session:
        already_done = session.scalar(
            select(ProcessedEvent.id)
            .where(ProcessedEvent.event_id == event_id)
            .where(ProcessedEvent.group_id == message.group_id)
            .where(ProcessedEvent.handler == handler_name)
        )
        if already_done is not None:
            LOGGER.info(
                "events_engine_duplicate_skipped",
                extra={"event_id": event_id, "group_id": message.group_id, "handler": handler_name},
            )
            return False

        side_effect(session, envelope)
        session.add(
            ProcessedEvent(
                event_id=event_id,
                group_id=message.group_id,
                handler=handler_name,
                event_type=envelope.event_type.value,
                patient_id=envelope.patient_id,
            )
        )
        session.flush()
    return True
