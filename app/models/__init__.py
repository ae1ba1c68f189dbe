"""SQLAlchemy ORM models for the patient record service."""

from app.models.base import Base  # noqa: F401
from app.models.patient import BloodGroup, Patient, PatientDiagnosis  # noqa: F401
from app.models.audit_log import AuditLog  # noqa: F401
from app.models.processed_event import ProcessedEvent  # noqa: F401
