"""Dependency injection helpers for FastAPI routes."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.api.security import resolve_principal
from app.core.config import get_settings
from app.core.database import get_session
from app.events_engine import get_event_publisher
from app.services.audit import AuditService
from app.services.patients import PatientService


def get_db_session() -> Session:
    yield from get_session()


def get_patient_service(session: Session = Depends(get_db_session)) -> PatientService:
    return PatientService(
        session,
        publisher=get_event_publisher(),
        max_page_size=get_settings().paginate_max_size,
    )


def get_audit_service(session: Session = Depends(get_db_session)) -> AuditService:
    return AuditService(session)


def get_principal(request: Request) -> str:
    return resolve_principal(request)
