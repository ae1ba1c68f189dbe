"""Pydantic schemas for API payloads."""

from app.schemas.audit import AuditEvent, AuditLogResponse
from app.schemas.patient import PatientPage, PatientRequest, PatientResponse

__all__ = [
    "AuditEvent",
    "AuditLogResponse",
    "PatientPage",
    "PatientRequest",
    "PatientResponse",
]
