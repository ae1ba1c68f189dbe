"""Audit trail service."""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog
from app.schemas.audit import AuditEvent

HASH_VERSION = 1
GENESIS_HASH = "0" * 64


def canonicalize_audit_entry_payload(
    *,
    sequence: int,
    hash_version: int,
    event_id: str,
    source: str,
    action: str,
    patient_id: int,
    triggered_by: str,
    details: Dict[str, Any],
    occurred_at: datetime,
    previous_hash: str,
) -> str:
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    payload = {
        "sequence": sequence,
        "hash_version": hash_version,
        "event_id": event_id,
        "source": source,
        "action": action,
        "patient_id": patient_id,
        "triggered_by": triggered_by,
        "details": details,
        "occurred_at": occurred_at.astimezone(timezone.utc).isoformat(),
        "previous_hash": previous_hash,
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_audit_entry_hash(previous_hash: str, canonical_payload: str) -> str:
    return hashlib.sha256((previous_hash + canonical_payload).encode("utf-8")).hexdigest()


class AuditService:
    """Appends patient events to a hash-chained audit trail."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._logger = logging.getLogger("app.audit")

    def record_event(self, event: AuditEvent) -> AuditLog:
        """Persist an audit entry, returning the existing one for a repeated event id."""

        event_id = str(event.event_id)
        existing = self._session.scalar(select(AuditLog).where(AuditLog.event_id == event_id))
        if existing:
            self._logger.info("audit_event_duplicate", extra={"event_id": event_id, "sequence": existing.sequence})
            return existing

        previous_sequence, previous_hash = self._lock_chain_tip()
        next_sequence = previous_sequence + 1

        canonical_payload = canonicalize_audit_entry_payload(
            sequence=next_sequence,
            hash_version=HASH_VERSION,
            event_id=event_id,
            source=event.source,
            action=event.action,
            patient_id=event.patient_id,
            triggered_by=event.triggered_by,
            details=event.details,
            occurred_at=event.occurred_at,
            previous_hash=previous_hash,
        )
        entry_hash = compute_audit_entry_hash(previous_hash, canonical_payload)

        entry = AuditLog(
            sequence=next_sequence,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            hash_version=HASH_VERSION,
            event_id=event_id,
            source=event.source,
            action=event.action,
            patient_id=event.patient_id,
            triggered_by=event.triggered_by,
            occurred_at=event.occurred_at,
            details=event.details,
            topic=event.topic,
            partition=event.partition,
            offset=event.offset,
        )
        self._session.add(entry)
        self._session.flush()

        self._logger.info(
            "audit_event",
            extra={
                "sequence": next_sequence,
                "entry_hash": entry_hash,
                "action": event.action,
                "patient_id": event.patient_id,
                "triggered_by": event.triggered_by,
                "event_id": event_id,
            },
        )
        return entry

    def list_entries(self, *, patient_id: Optional[int] = None, limit: int = 50) -> List[AuditLog]:
        stmt = select(AuditLog).order_by(AuditLog.sequence.desc()).limit(limit)
        if patient_id is not None:
            stmt = stmt.where(AuditLog.patient_id == patient_id)
        return list(self._session.scalars(stmt))

    def _lock_chain_tip(self) -> tuple[int, str]:
        stmt = select(AuditLog.sequence, AuditLog.entry_hash).order_by(AuditLog.sequence.desc()).limit(1)
        if self._session.get_bind().dialect.name != "sqlite":
            stmt = stmt.with_for_update()
        result = self._session.execute(stmt).first()
        if result is None:
            return 0, GENESIS_HASH
        sequence, entry_hash = result
        return int(sequence), str(entry_hash)
