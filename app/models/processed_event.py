"""Ledger of envelopes already handled by each consumer group."""

from __future__ import annotations

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class ProcessedEvent(TimestampMixin, Base):
    """Marks an (event, group, handler) triple as done so redeliveries become no-ops."""

    __tablename__ = "processed_events"
    __table_args__ = (
        UniqueConstraint("event_id", "group_id", "handler", name="uq_processed_events_event_group_handler"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(length=64), nullable=False)
    group_id: Mapped[str] = mapped_column(String(length=255), nullable=False)
    handler: Mapped[str] = mapped_column(String(length=128), nullable=False)
    event_type: Mapped[str] = mapped_column(String(length=32), nullable=False)
    patient_id: Mapped[int] = mapped_column(Integer, nullable=False)
