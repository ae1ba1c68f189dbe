"""Patient records and their diagnoses."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy import Enum as SqlEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin


class BloodGroup(str, Enum):
    A_POSITIVE = "A_POSITIVE"
    A_NEGATIVE = "A_NEGATIVE"
    B_POSITIVE = "B_POSITIVE"
    B_NEGATIVE = "B_NEGATIVE"
    AB_POSITIVE = "AB_POSITIVE"
    AB_NEGATIVE = "AB_NEGATIVE"
    O_POSITIVE = "O_POSITIVE"
    O_NEGATIVE = "O_NEGATIVE"


class Patient(TimestampMixin, Base):
    """Primary record managed by the service."""

    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    email: Mapped[str] = mapped_column(String(length=255), nullable=False, unique=True)
    blood_group: Mapped[Optional[BloodGroup]] = mapped_column(
        SqlEnum(BloodGroup, name="blood_group", native_enum=False),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    diagnoses: Mapped[List["PatientDiagnosis"]] = relationship(
        "PatientDiagnosis",
        back_populates="patient",
        cascade="all, delete-orphan",
        order_by="PatientDiagnosis.diagnosis_date.desc()",
    )

    def add_diagnosis(self, diagnosis: "PatientDiagnosis") -> None:
        self.diagnoses.append(diagnosis)

    @property
    def latest_diagnosis(self) -> Optional["PatientDiagnosis"]:
        """Most recent diagnosis; the relationship is ordered newest first."""

        return self.diagnoses[0] if self.diagnoses else None


class PatientDiagnosis(Base):
    """Diagnosis entry attached to a patient."""

    __tablename__ = "patient_diagnoses"
    __table_args__ = (Index("ix_patient_diagnoses_patient", "patient_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    diagnosis_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    diagnosis_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    patient_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    )

    patient: Mapped[Patient] = relationship("Patient", back_populates="diagnoses")
