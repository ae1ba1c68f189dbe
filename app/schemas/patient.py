"""Patient API schemas."""

from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.models.patient import BloodGroup, Patient, PatientDiagnosis


class PatientRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    blood_group: Optional[BloodGroup] = None
    patient_diagnosis: Optional[str] = None
    diagnosis_date: Optional[date] = None


class PatientResponse(BaseModel):
    id: int
    name: str
    email: str
    blood_group: Optional[BloodGroup] = None
    patient_diagnosis: Optional[str] = None
    diagnosis_date: Optional[date] = None
    active: bool = True

    @classmethod
    def from_patient(cls, patient: Patient, diagnosis: Optional[PatientDiagnosis] = None) -> "PatientResponse":
        diagnosis = diagnosis if diagnosis is not None else patient.latest_diagnosis
        return cls(
            id=patient.id,
            name=patient.name,
            email=patient.email,
            blood_group=patient.blood_group,
            patient_diagnosis=diagnosis.diagnosis_details if diagnosis is not None else None,
            diagnosis_date=diagnosis.diagnosis_date if diagnosis is not None else None,
            active=patient.is_active,
        )


SortField = Literal["id", "name", "email"]
SortDirection = Literal["asc", "desc"]


class PatientPage(BaseModel):
    items: List[PatientResponse]
    page: int
    size: int
    total: int
    total_pages: int
