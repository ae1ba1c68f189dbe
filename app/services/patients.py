"""Patient domain service."""

from __future__ import annotations

import logging
import math
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.events_engine import EventPublisher, get_event_publisher
from app.events_engine.schemas import SYSTEM_PRINCIPAL, EventClass, PatientEvent, PatientEventType
from app.models.patient import Patient, PatientDiagnosis
from app.schemas.patient import PatientPage, PatientRequest, PatientResponse, SortDirection, SortField


class PatientServiceError(RuntimeError):
    """Base class for patient service errors."""


class PatientNotFoundError(PatientServiceError):
    """Raised when the target patient does not exist."""

    def __init__(self, patient_id: int) -> None:
        super().__init__(f"Patient with id {patient_id} not found")
        self.patient_id = patient_id


class PatientConflictError(PatientServiceError):
    """Raised when another patient already uses the email address."""


_SORT_COLUMNS = {"id": Patient.id, "name": Patient.name, "email": Patient.email}


class PatientService:
    """Patient CRUD with an event emitted for every mutation.

    Events are a best-effort side channel: building or publishing one may
    fail without affecting the mutation. ``principal`` is the caller's
    verified name; ``None`` is recorded as ``"system"``.
    """

    def __init__(
        self,
        session: Session,
        publisher: Optional[EventPublisher] = None,
        *,
        max_page_size: int = 100,
    ) -> None:
        self._session = session
        self._publisher = publisher or get_event_publisher()
        self._max_page_size = max_page_size
        self._logger = logging.getLogger("app.services.patients")

    def create_patient(self, payload: PatientRequest, *, principal: Optional[str] = None) -> Patient:
        self._logger.info("patient_create_requested", extra={"email": payload.email})
        patient = Patient(
            name=payload.name,
            email=payload.email,
            blood_group=payload.blood_group,
            is_active=True,
        )
        diagnosis = PatientDiagnosis(
            diagnosis_details=payload.patient_diagnosis,
            diagnosis_date=payload.diagnosis_date,
        )
        patient.add_diagnosis(diagnosis)
        self._session.add(patient)
        self._flush_or_conflict(payload.email)

        self._logger.info("patient_created", extra={"patient_id": patient.id, "principal": principal})
        self._emit(PatientEventType.CREATED, patient, diagnosis, principal)
        return patient

    def get_patient(self, patient_id: int) -> Patient:
        self._logger.info("patient_fetch_requested", extra={"patient_id": patient_id})
        patient = self._session.scalar(
            select(Patient).options(selectinload(Patient.diagnoses)).where(Patient.id == patient_id)
        )
        if patient is None:
            raise PatientNotFoundError(patient_id)
        return patient

    def list_patients(self) -> List[Patient]:
        stmt = select(Patient).options(selectinload(Patient.diagnoses)).order_by(Patient.id.asc())
        return list(self._session.scalars(stmt))

    def list_patients_paginated(
        self,
        *,
        page: int = 0,
        size: int = 20,
        sort_by: SortField = "id",
        sort_dir: SortDirection = "asc",
    ) -> PatientPage:
        size = max(1, min(size, self._max_page_size))
        page = max(page, 0)
        column = _SORT_COLUMNS.get(sort_by, Patient.id)
        order = column.desc() if sort_dir == "desc" else column.asc()

        total = self._session.scalar(select(func.count()).select_from(Patient)) or 0
        stmt = (
            select(Patient)
            .options(selectinload(Patient.diagnoses))
            .order_by(order)
            .offset(page * size)
            .limit(size)
        )
        items = [PatientResponse.from_patient(patient) for patient in self._session.scalars(stmt)]
        self._logger.info("patient_page_fetched", extra={"page": page, "size": size, "total": total})
        return PatientPage(items=items, page=page, size=size, total=total, total_pages=math.ceil(total / size))

    def update_patient(
        self,
        patient_id: int,
        payload: PatientRequest,
        *,
        principal: Optional[str] = None,
    ) -> Patient:
        patient = self.get_patient(patient_id)
        patient.name = payload.name
        patient.email = payload.email
        patient.blood_group = payload.blood_group

        diagnosis = patient.latest_diagnosis
        if diagnosis is None:
            diagnosis = PatientDiagnosis()
            patient.add_diagnosis(diagnosis)
        diagnosis.diagnosis_details = payload.patient_diagnosis
        diagnosis.diagnosis_date = payload.diagnosis_date

        self._session.add(patient)
        self._flush_or_conflict(payload.email)

        self._logger.info("patient_updated", extra={"patient_id": patient.id, "principal": principal})
        self._emit(PatientEventType.UPDATED, patient, diagnosis, principal)
        return patient

    def delete_patient(self, patient_id: int, *, principal: Optional[str] = None) -> None:
        patient = self.get_patient(patient_id)
        # Post-delete state is gone, so the event is built and handed off first.
        self._emit(PatientEventType.DELETED, patient, patient.latest_diagnosis, principal)

        self._session.delete(patient)
        self._session.flush()
        self._logger.info("patient_deleted", extra={"patient_id": patient_id, "principal": principal})

    def _flush_or_conflict(self, email: str) -> None:
        try:
            self._session.flush()
        except IntegrityError as exc:
            self._session.rollback()
            raise PatientConflictError(f"Patient with email '{email}' already exists") from exc

    def _emit(
        self,
        event_type: PatientEventType,
        patient: Patient,
        diagnosis: Optional[PatientDiagnosis],
        principal: Optional[str],
    ) -> None:
        try:
            envelope = PatientEvent.from_patient(
                event_type,
                patient,
                diagnosis=diagnosis,
                triggered_by=principal or SYSTEM_PRINCIPAL,
            )
            self._publisher.publish(envelope, EventClass.for_event_type(event_type))
        except Exception:  # noqa: BLE001 - events never fail the mutation
            self._logger.exception(
                "patient_event_publish_failed",
                extra={"patient_id": patient.id, "event_type": event_type.value},
            )
            return
        self._logger.info(
            "patient_event_published",
            extra={"patient_id": patient.id, "event_type": event_type.value, "event_id": str(envelope.event_id)},
        )
