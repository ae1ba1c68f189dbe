from __future__ import annotations

from sqlalchemy import func, select

from app.core.database import session_scope
from app.events_engine.consumers import build_all_events_consumer, build_consumers, build_patient_types_consumer
from app.events_engine.consumers.audit import AllEventsHandler
from app.events_engine.consumers.patients import PatientEventHandlers
from app.events_engine.schemas import PatientEvent, PatientEventType
from app.models.audit_log import AuditLog
from app.models.processed_event import ProcessedEvent
from app.services.audit_verifier import AuditVerifier


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent = []

    def notify(self, *, recipient: str, subject: str, body: str) -> None:
        self.sent.append(recipient)


def _count(model) -> int:
    with session_scope() as session:
        return session.scalar(select(func.count()).select_from(model))


def _send_twice(event_log, topic: str, envelope: PatientEvent) -> None:
    for _ in range(2):
        event_log.send(topic, envelope.partition_key, envelope.to_bytes())


def test_redelivered_created_event_notifies_once(event_log, engine_config) -> None:
    notifier = RecordingNotifier()
    consumer = build_patient_types_consumer(engine_config, event_log, PatientEventHandlers(notifier=notifier))
    envelope = PatientEvent(event_type=PatientEventType.CREATED, patient_id=1, name="Alice", email="alice@x.com")
    _send_twice(event_log, engine_config.topics.created, envelope)

    processed = consumer.poll_once()

    assert len(processed) == 2
    assert notifier.sent == ["alice@x.com"]
    with session_scope() as session:
        (entry,) = session.scalars(select(ProcessedEvent)).all()
        assert entry.event_id == str(envelope.event_id)
        assert entry.group_id == engine_config.type_group_id
        assert entry.handler == "welcome_notification"


def test_types_group_routes_by_stream(event_log, engine_config) -> None:
    consumer = build_patient_types_consumer(engine_config, event_log)
    topics = engine_config.topics
    for topic, event_type in [
        (topics.created, PatientEventType.CREATED),
        (topics.updated, PatientEventType.UPDATED),
        (topics.deleted, PatientEventType.DELETED),
    ]:
        envelope = PatientEvent(event_type=event_type, patient_id=2, name="Bob", email="bob@x.com")
        event_log.send(topic, envelope.partition_key, envelope.to_bytes())

    assert len(consumer.poll_once()) == 3

    with session_scope() as session:
        handlers = sorted(session.scalars(select(ProcessedEvent.handler)).all())
    assert handlers == ["archive", "external_sync", "welcome_notification"]


def test_all_events_group_audits_each_event_once(event_log, engine_config) -> None:
    consumer = build_all_events_consumer(engine_config, event_log, AllEventsHandler())
    envelope = PatientEvent(event_type=PatientEventType.UPDATED, patient_id=3, name="Carol", triggered_by="dr.jones")
    _send_twice(event_log, engine_config.topics.merged, envelope)

    consumer.poll_once()

    assert _count(AuditLog) == 1
    assert _count(ProcessedEvent) == 1
    with session_scope() as session:
        entry = session.scalars(select(AuditLog)).one()
        assert entry.action == "UPDATED"
        assert entry.triggered_by == "dr.jones"
        assert entry.source == engine_config.all_events_group_id
        assert entry.topic == engine_config.topics.merged
        assert entry.details["name"] == "Carol"


def test_patient_changes_flow_into_the_audit_trail(client, event_log, engine_config) -> None:
    created = client.post(
        "/api/v1/patients",
        json={"name": "Alice", "email": "alice@x.com", "patient_diagnosis": "Flu"},
        headers={"X-Authenticated-User": "dr.jones"},
    )
    patient_id = created.json()["id"]
    client.put(
        f"/api/v1/patients/{patient_id}",
        json={"name": "Alice", "email": "alice@x.com", "patient_diagnosis": "Recovered"},
    )
    client.delete(f"/api/v1/patients/{patient_id}")

    for consumer in build_consumers(engine_config, event_log):
        consumer.poll_once()

    response = client.get("/api/v1/audit", params={"patient_id": patient_id})
    assert response.status_code == 200
    entries = response.json()
    assert [entry["action"] for entry in entries] == ["DELETED", "UPDATED", "CREATED"]
    assert [entry["triggered_by"] for entry in entries] == ["system", "system", "dr.jones"]
    assert entries[1]["details"]["diagnosisDetails"] == "Recovered"

    with session_scope() as session:
        assert AuditVerifier(session).verify().checked == 3
    assert _count(ProcessedEvent) == 6
