"""Pydantic models describing patient events on the wire."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models.patient import BloodGroup

if TYPE_CHECKING:  # pragma: no cover
    from app.models.patient import Patient, PatientDiagnosis

SYSTEM_PRINCIPAL = "system"


class PatientEventType(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"


class EventClass(str, Enum):
    """Logical stream an event is routed to besides the merged stream."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"

    @classmethod
    def for_event_type(cls, event_type: PatientEventType) -> "EventClass":
        return cls(event_type.value.lower())


class PatientEvent(BaseModel):
    """Immutable snapshot of a patient taken at the moment of a mutation.

    The envelope is denormalized so consumers never need to query the
    record store, and is serialized as camelCase JSON so consumers in any
    language can read it. ``patient_id`` doubles as the partition key.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    event_id: UUID = Field(default_factory=uuid4)
    event_type: PatientEventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    patient_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    blood_group: Optional[BloodGroup] = None
    diagnosis_details: Optional[str] = None
    diagnosis_date: Optional[date] = None
    triggered_by: str = SYSTEM_PRINCIPAL
    active: bool = True

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("triggered_by")
    @classmethod
    def _default_principal(cls, value: str) -> str:
        return value.strip() or SYSTEM_PRINCIPAL

    @property
    def partition_key(self) -> str:
        return str(self.patient_id)

    @property
    def event_class(self) -> EventClass:
        return EventClass.for_event_type(self.event_type)

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes | str) -> "PatientEvent":
        return cls.model_validate_json(raw)

    @classmethod
    def from_patient(
        cls,
        event_type: PatientEventType,
        patient: "Patient",
        *,
        diagnosis: Optional["PatientDiagnosis"] = None,
        triggered_by: Optional[str] = None,
    ) -> "PatientEvent":
        """Capture the observable state of ``patient`` into a new envelope."""

        if patient.id is None:
            raise ValueError("Cannot build a patient event before the record has an id")
        return cls(
            event_type=event_type,
            patient_id=patient.id,
            name=patient.name,
            email=patient.email,
            blood_group=patient.blood_group,
            diagnosis_details=diagnosis.diagnosis_details if diagnosis is not None else None,
            diagnosis_date=diagnosis.diagnosis_date if diagnosis is not None else None,
            triggered_by=triggered_by or SYSTEM_PRINCIPAL,
            active=patient.is_active,
        )
