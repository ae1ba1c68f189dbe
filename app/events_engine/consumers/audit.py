"""Audit trail and analytics handler for the merged patient stream."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.core.database import session_scope
from app.events_engine.consumers.base import ConsumedMessage
from app.events_engine.consumers.ledger import SessionFactory, run_once
from app.events_engine.schemas import PatientEvent
from app.schemas.audit import AuditEvent
from app.services.audit import AuditService

LOGGER = logging.getLogger("app.events_engine.consumers.audit")

_SNAPSHOT_EXCLUDE = {"event_id", "event_type", "timestamp", "patient_id", "triggered_by"}


def build_audit_event(message: ConsumedMessage) -> AuditEvent:
    envelope = message.envelope
    return AuditEvent(
        event_id=envelope.event_id,
        source=message.group_id,
        action=envelope.event_type.value,
        patient_id=envelope.patient_id,
        triggered_by=envelope.triggered_by,
        occurred_at=envelope.timestamp,
        details=envelope.model_dump(mode="json", by_alias=True, exclude=_SNAPSHOT_EXCLUDE),
        topic=message.topic,
        partition=message.partition,
        offset=message.offset,
    )


class AllEventsHandler:
    """Appends every event to the audit trail, then updates analytics."""

    def __init__(self, *, session_factory: SessionFactory = session_scope) -> None:
        self._session_factory = session_factory

    def __call__(self, message: ConsumedMessage) -> None:
        event = build_audit_event(message)
        with self._session_factory() as session:
            entry = AuditService(session).record_event(event)
            LOGGER.info(
                "audit_event_ingested",
                extra={"sequence": entry.sequence, "event_id": str(event.event_id), "patient_id": event.patient_id},
            )
        run_once(message, "analytics", self._update_analytics, session_factory=self._session_factory)

    def _update_analytics(self, session: Session, envelope: PatientEvent) -> None:
        LOGGER.info(
            "patient_analytics_updated",
            extra={"event_type": envelope.event_type.value, "patient_id": envelope.patient_id},
        )
