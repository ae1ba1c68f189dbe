"""Exception handlers for the FastAPI app."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.services.patients import PatientConflictError, PatientNotFoundError, PatientServiceError


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PatientNotFoundError)
    async def patient_not_found_handler(request: Request, exc: PatientNotFoundError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(PatientConflictError)
    async def patient_conflict_handler(request: Request, exc: PatientConflictError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(PatientServiceError)
    async def patient_service_handler(request: Request, exc: PatientServiceError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})
