"""Resolution of the calling principal for mutation requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from fastapi import Request

from app.events_engine.schemas import SYSTEM_PRINCIPAL

LOGGER = logging.getLogger("app.api.security")

PRINCIPAL_HEADER = "X-Authenticated-User"


@dataclass(frozen=True)
class Principal:
    name: str
    authenticated: bool = True


class Authenticator(Protocol):
    """Identity verifier in front of the API; token validation lives there."""

    def authenticate(self, request: Request) -> Optional[Principal]:
        ...


class HeaderAuthenticator(Authenticator):
    """Trusts the principal name forwarded by the upstream identity gateway."""

    def __init__(self, header: str = PRINCIPAL_HEADER) -> None:
        self._header = header

    def authenticate(self, request: Request) -> Optional[Principal]:
        name = (request.headers.get(self._header) or "").strip()
        if not name:
            return None
        return Principal(name=name)


_authenticator: Authenticator = HeaderAuthenticator()


def get_authenticator() -> Authenticator:
    return _authenticator


def set_authenticator(authenticator: Optional[Authenticator]) -> None:
    """Override the authenticator (primarily for tests)."""

    global _authenticator
    _authenticator = authenticator or HeaderAuthenticator()


def resolve_principal(request: Request, authenticator: Optional[Authenticator] = None) -> str:
    """Return the authenticated principal name, or ``"system"``; never raises."""

    authenticator = authenticator or get_authenticator()
    try:
        principal = authenticator.authenticate(request)
        if principal is not None and principal.authenticated and principal.name:
            return principal.name
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("principal_resolution_failed", extra={"error": str(exc)})
    return SYSTEM_PRINCIPAL
