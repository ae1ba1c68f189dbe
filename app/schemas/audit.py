"""Schemas for the patient audit trail."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AuditEvent(BaseModel):
    """One patient event as recorded by the audit trail."""

    event_id: UUID = Field(..., description="Idempotency key taken from the patient event envelope.")
    source: str = Field(..., max_length=128, description="Consumer group that recorded the entry.")
    action: str = Field(..., max_length=32)
    patient_id: int
    triggered_by: str = Field(..., max_length=255)
    details: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime
    topic: Optional[str] = Field(default=None, max_length=255)
    partition: Optional[int] = None
    offset: Optional[int] = None

    @model_validator(mode="after")
    def _enforce_timezone(self) -> "AuditEvent":
        timestamp = self.occurred_at
        if timestamp.tzinfo is None:
            self.occurred_at = timestamp.replace(tzinfo=timezone.utc)
        else:
            self.occurred_at = timestamp.astimezone(timezone.utc)
        return self


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    event_id: str
    action: str
    patient_id: int
    triggered_by: str
    occurred_at: datetime
    details: Dict[str, Any]
    entry_hash: str
    previous_hash: str
