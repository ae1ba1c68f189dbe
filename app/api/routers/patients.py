"""Patient HTTP endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.dependencies import get_patient_service, get_principal
from app.schemas.patient import PatientPage, PatientRequest, PatientResponse, SortDirection, SortField
from app.services.patients import PatientService

router = APIRouter()


@router.post(
    "",
    response_model=PatientResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_patient(
    payload: PatientRequest,
    service: PatientService = Depends(get_patient_service),
    principal: str = Depends(get_principal),
) -> PatientResponse:
    patient = service.create_patient(payload, principal=principal)
    return PatientResponse.from_patient(patient)


@router.get(
    "",
    response_model=List[PatientResponse],
)
def list_patients(service: PatientService = Depends(get_patient_service)) -> List[PatientResponse]:
    return [PatientResponse.from_patient(patient) for patient in service.list_patients()]


@router.get(
    "/paginated",
    response_model=PatientPage,
)
def list_patients_paginated(
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1),
    sort_by: SortField = Query(default="id"),
    sort_dir: SortDirection = Query(default="asc"),
    service: PatientService = Depends(get_patient_service),
) -> PatientPage:
    return service.list_patients_paginated(page=page, size=size, sort_by=sort_by, sort_dir=sort_dir)


@router.get(
    "/{patient_id}",
    response_model=PatientResponse,
)
def get_patient(
    patient_id: int,
    service: PatientService = Depends(get_patient_service),
) -> PatientResponse:
    return PatientResponse.from_patient(service.get_patient(patient_id))


@router.put(
    "/{patient_id}",
    response_model=PatientResponse,
)
def update_patient(
    patient_id: int,
    payload: PatientRequest,
    service: PatientService = Depends(get_patient_service),
    principal: str = Depends(get_principal),
) -> PatientResponse:
    patient = service.update_patient(patient_id, payload, principal=principal)
    return PatientResponse.from_patient(patient)


@router.delete(
    "/{patient_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def delete_patient(
    patient_id: int,
    service: PatientService = Depends(get_patient_service),
    principal: str = Depends(get_principal),
) -> Response:
    service.delete_patient(patient_id, principal=principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
