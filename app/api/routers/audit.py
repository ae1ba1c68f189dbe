"""Read access to the audit trail written by the all-events consumer group."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_audit_service
from app.schemas.audit import AuditLogResponse
from app.services.audit import AuditService

router = APIRouter()


@router.get(
    "",
    response_model=List[AuditLogResponse],
)
def list_audit_entries(
    patient_id: Optional[int] = Query(default=None, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    service: AuditService = Depends(get_audit_service),
) -> List[AuditLogResponse]:
    entries = service.list_entries(patient_id=patient_id, limit=limit)
    return [AuditLogResponse.model_validate(entry, from_attributes=True) for entry in entries]
