from __future__ import annotations

import logging

from app.events_engine.schemas import EventClass, PatientEvent, PatientEventType


def _create(client, **overrides):
    payload = {
        "name": "Alice",
        "email": "alice@x.com",
        "blood_group": "O_POSITIVE",
        "patient_diagnosis": "Seasonal flu",
        "diagnosis_date": "2024-03-01",
    }
    payload.update(overrides)
    return client.post("/api/v1/patients", json=payload)


def _events(event_log, topic):
    return [PatientEvent.from_bytes(record.value) for record in event_log.records(topic)]


def test_patient_lifecycle(client) -> None:
    created = _create(client)
    assert created.status_code == 201
    body = created.json()
    patient_id = body["id"]
    assert body["name"] == "Alice"
    assert body["email"] == "alice@x.com"
    assert body["blood_group"] == "O_POSITIVE"
    assert body["patient_diagnosis"] == "Seasonal flu"
    assert body["diagnosis_date"] == "2024-03-01"
    assert body["active"] is True

    fetched = client.get(f"/api/v1/patients/{patient_id}")
    assert fetched.status_code == 200
    assert fetched.json() == body

    updated = client.put(
        f"/api/v1/patients/{patient_id}",
        json={
            "name": "Alice Smith",
            "email": "alice@x.com",
            "blood_group": "O_POSITIVE",
            "patient_diagnosis": "Recovered",
            "diagnosis_date": "2024-03-15",
        },
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "Alice Smith"
    assert updated.json()["patient_diagnosis"] == "Recovered"

    listing = client.get("/api/v1/patients")
    assert listing.status_code == 200
    assert [item["id"] for item in listing.json()] == [patient_id]

    deleted = client.delete(f"/api/v1/patients/{patient_id}")
    assert deleted.status_code == 204

    missing = client.get(f"/api/v1/patients/{patient_id}")
    assert missing.status_code == 404
    assert missing.json()["detail"] == f"Patient with id {patient_id} not found"


def test_create_publishes_to_created_and_merged_streams(client, event_log, engine_config) -> None:
    response = client.post(
        "/api/v1/patients",
        json={"name": "Alice", "email": "alice@x.com"},
        headers={"X-Authenticated-User": "dr.jones"},
    )
    assert response.status_code == 201
    patient_id = response.json()["id"]
    topics = engine_config.topics

    created_records = event_log.records(topics.created)
    merged_records = event_log.records(topics.merged)
    assert len(created_records) == 1
    assert len(merged_records) == 1
    assert created_records[0].key == str(patient_id)
    assert merged_records[0].key == str(patient_id)
    assert event_log.records(topics.updated) == []
    assert event_log.records(topics.deleted) == []

    envelope = PatientEvent.from_bytes(created_records[0].value)
    assert envelope.event_type == PatientEventType.CREATED
    assert envelope.patient_id == patient_id
    assert envelope.name == "Alice"
    assert envelope.email == "alice@x.com"
    assert envelope.triggered_by == "dr.jones"
    assert envelope.active is True
    assert PatientEvent.from_bytes(merged_records[0].value).event_id == envelope.event_id


def test_missing_principal_is_recorded_as_system(client, event_log, engine_config) -> None:
    assert _create(client).status_code == 201
    (envelope,) = _events(event_log, engine_config.topics.created)
    assert envelope.triggered_by == "system"


def test_update_publishes_new_diagnosis(client, event_log, engine_config) -> None:
    patient_id = _create(client).json()["id"]

    response = client.put(
        f"/api/v1/patients/{patient_id}",
        json={
            "name": "Alice",
            "email": "alice@x.com",
            "patient_diagnosis": "Bronchitis",
            "diagnosis_date": "2024-04-02",
        },
    )
    assert response.status_code == 200

    (envelope,) = _events(event_log, engine_config.topics.updated)
    assert envelope.event_type == PatientEventType.UPDATED
    assert envelope.diagnosis_details == "Bronchitis"
    assert envelope.diagnosis_date.isoformat() == "2024-04-02"
    assert envelope.blood_group is None

    merged = _events(event_log, engine_config.topics.merged)
    assert [event.event_type for event in merged] == [PatientEventType.CREATED, PatientEventType.UPDATED]


def test_delete_publishes_pre_delete_snapshot(client, event_log, engine_config) -> None:
    patient_id = _create(client).json()["id"]

    assert client.delete(f"/api/v1/patients/{patient_id}").status_code == 204

    (envelope,) = _events(event_log, engine_config.topics.deleted)
    assert envelope.event_type == PatientEventType.DELETED
    assert envelope.patient_id == patient_id
    assert envelope.name == "Alice"
    assert envelope.diagnosis_details == "Seasonal flu"


def test_delete_missing_patient_publishes_nothing(client, stub_publisher) -> None:
    response = client.delete("/api/v1/patients/7")
    assert response.status_code == 404
    assert response.json()["detail"] == "Patient with id 7 not found"
    assert stub_publisher.published == []


def test_update_missing_patient_returns_404(client, stub_publisher) -> None:
    response = client.put("/api/v1/patients/42", json={"name": "Bob", "email": "bob@x.com"})
    assert response.status_code == 404
    assert stub_publisher.published == []


def test_each_mutation_publishes_exactly_once(client, stub_publisher) -> None:
    patient_id = _create(client).json()["id"]
    client.put(f"/api/v1/patients/{patient_id}", json={"name": "Alice", "email": "alice@x.com"})
    client.delete(f"/api/v1/patients/{patient_id}")

    assert [event_class for _, event_class in stub_publisher.published] == [
        EventClass.CREATED,
        EventClass.UPDATED,
        EventClass.DELETED,
    ]
    assert {envelope.patient_id for envelope, _ in stub_publisher.published} == {patient_id}


def test_publish_failure_does_not_fail_mutation(client, failing_publisher, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="app.services.patients")

    response = _create(client)
    assert response.status_code == 201
    assert failing_publisher.calls == 1
    assert any(record.getMessage() == "patient_event_publish_failed" for record in caplog.records)

    patient_id = response.json()["id"]
    updated = client.put(
        f"/api/v1/patients/{patient_id}",
        json={"name": "Alice Smith", "email": "alice@x.com", "patient_diagnosis": "Recovered"},
    )
    assert updated.status_code == 200
    assert failing_publisher.calls == 2

    fetched = client.get(f"/api/v1/patients/{patient_id}")
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "Alice Smith"
    assert fetched.json()["patient_diagnosis"] == "Recovered"

    assert client.delete(f"/api/v1/patients/{patient_id}").status_code == 204
    assert failing_publisher.calls == 3
    assert client.get(f"/api/v1/patients/{patient_id}").status_code == 404


def test_duplicate_email_conflicts(client, stub_publisher) -> None:
    assert _create(client).status_code == 201
    response = _create(client, name="Other Alice")
    assert response.status_code == 409
    assert len(stub_publisher.published) == 1


def test_invalid_payload_is_rejected(client) -> None:
    response = client.post("/api/v1/patients", json={"name": "", "email": "alice@x.com"})
    assert response.status_code == 400

    response = client.post("/api/v1/patients", json={"name": "Alice", "email": "alice@x.com", "blood_group": "Z"})
    assert response.status_code == 400


def test_paginated_listing(client) -> None:
    for index, name in enumerate(["Carol", "Alice", "Bob"]):
        assert _create(client, name=name, email=f"p{index}@x.com").status_code == 201

    response = client.get("/api/v1/patients/paginated", params={"page": 0, "size": 2, "sort_by": "name"})
    assert response.status_code == 200
    body = response.json()
    assert [item["name"] for item in body["items"]] == ["Alice", "Bob"]
    assert body["total"] == 3
    assert body["total_pages"] == 2

    response = client.get(
        "/api/v1/patients/paginated",
        params={"page": 1, "size": 2, "sort_by": "name", "sort_dir": "desc"},
    )
    assert [item["name"] for item in response.json()["items"]] == ["Alice"]


def test_health(client) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}
    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.json()["event_log"] == "in-memory"
