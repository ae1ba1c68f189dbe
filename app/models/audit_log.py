"""Audit trail entries appended by the all-events consumer group."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin
from app.models.types import JSONType


class AuditLog(TimestampMixin, Base):
    """Hash-chained audit entry, one per distinct patient event."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_patient", "patient_id"),
        Index("ix_audit_logs_action", "action"),
        Index("ix_audit_logs_sequence", "sequence", unique=True),
        Index("ix_audit_logs_event_id", "event_id", unique=True),
    )

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    previous_hash: Mapped[str] = mapped_column(String(length=64), nullable=False)
    entry_hash: Mapped[str] = mapped_column(String(length=64), nullable=False)
    hash_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    event_id: Mapped[str] = mapped_column(String(length=64), nullable=False)
    source: Mapped[str] = mapped_column(String(length=128), nullable=False)
    action: Mapped[str] = mapped_column(String(length=32), nullable=False)
    patient_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    triggered_by: Mapped[str] = mapped_column(String(length=255), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    details: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    topic: Mapped[Optional[str]] = mapped_column(String(length=255), nullable=True)
    partition: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    offset: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
