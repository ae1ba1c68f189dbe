"""Handlers for the type-specific patient streams."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from app.core.database import session_scope
from app.events_engine.consumers.base import ConsumedMessage
from app.events_engine.consumers.ledger import SessionFactory, run_once
from app.events_engine.schemas import PatientEvent

LOGGER = logging.getLogger("app.events_engine.consumers.patients")


class Notifier(Protocol):
    """Outbound notification channel (mail, SMS, ...)."""

    def notify(self, *, recipient: str, subject: str, body: str) -> None:
        ...


class LoggingNotifier(Notifier):
    """Default channel that only records the notification."""

    def notify(self, *, recipient: str, subject: str, body: str) -> None:
        LOGGER.info("notification_sent", extra={"recipient": recipient, "subject": subject})


class PatientEventHandlers:
    """Business reactions to created, updated and deleted patients."""

    def __init__(
        self,
        *,
        notifier: Optional[Notifier] = None,
        session_factory: SessionFactory = session_scope,
    ) -> None:
        self._notifier = notifier or LoggingNotifier()
        self._session_factory = session_factory

    def on_created(self, message: ConsumedMessage) -> None:
        run_once(message, "welcome_notification", self._send_welcome, session_factory=self._session_factory)

    def on_updated(self, message: ConsumedMessage) -> None:
        run_once(message, "external_sync", self._sync_external_systems, session_factory=self._session_factory)

    def on_deleted(self, message: ConsumedMessage) -> None:
        run_once(message, "archive", self._archive, session_factory=self._session_factory)

    def _send_welcome(self, session: Session, envelope: PatientEvent) -> None:
        if not envelope.email:
            LOGGER.info("welcome_notification_skipped", extra={"patient_id": envelope.patient_id})
            return
        self._notifier.notify(
            recipient=envelope.email,
            subject="Welcome",
            body=f"Hello {envelope.name}, your patient record has been created.",
        )

    def _sync_external_systems(self, session: Session, envelope: PatientEvent) -> None:
        LOGGER.info(
            "patient_sync_requested",
            extra={
                "patient_id": envelope.patient_id,
                "triggered_by": envelope.triggered_by,
                "diagnosis_date": envelope.diagnosis_date,
            },
        )

    def _archive(self, session: Session, envelope: PatientEvent) -> None:
        LOGGER.info(
            "patient_archived",
            extra={"patient_id": envelope.patient_id, "patient_name": envelope.name, "triggered_by": envelope.triggered_by},
        )
