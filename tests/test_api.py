"""Tests for the migrations API."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from record_migrator.api.main import app
from record_migrator.api.routes.migrations import get_orchestrator
from record_migrator.models.migration import MigrationConfig
from record_migrator.orchestrator import MigrationOrchestrator

from conftest import FakeSourceOrg, FakeTargetStore, SCHEMA, id_field, ref_field, text_field


@pytest.fixture
def orchestrator(tmp_path, source, store):
    source.add("Account", "001A", Name="Acme")
    source.add("Contact", "003A", LastName="Smith", AccountId="001A")
    return MigrationOrchestrator(MigrationConfig(output_dir=str(tmp_path), save_report=False), source, store)


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _contact_payload():
    return {
        "records": [{"attributes": {"type": "Contact"}, "Id": "003B", "LastName": "Jones", "AccountId": "001A"}],
    }


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_analyze_returns_plan_review(client):
    response = client.post("/api/migrations/analyze", json=_contact_payload())

    assert response.status_code == 200
    plan = response.json()
    assert plan["object_order"] == ["Account", "Contact"]
    assert plan["object_counts"] == {"Account": 1, "Contact": 1}
    assert plan["total_records"] == 2

    fetched = client.get(f"/api/migrations/plans/{plan['plan_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["plan_id"] == plan["plan_id"]


def test_analyze_by_record_ids(client):
    response = client.post("/api/migrations/analyze", json={"object_type": "Contact", "record_ids": ["003A"]})

    assert response.status_code == 200
    assert response.json()["object_order"] == ["Account", "Contact"]


def test_analyze_with_field_actions(client):
    payload = _contact_payload()
    payload["field_actions"] = [{"object_type": "Contact", "field_name": "AccountId", "action": "skip"}]

    response = client.post("/api/migrations/analyze", json=payload)

    assert response.json()["object_order"] == ["Contact"]


def test_analyze_without_roots_is_rejected(client):
    response = client.post("/api/migrations/analyze", json={"records": []})

    assert response.status_code == 400


def test_analyze_record_without_type_is_rejected(client):
    response = client.post("/api/migrations/analyze", json={"records": [{"Id": "003B"}]})

    assert response.status_code == 400


def test_unknown_plan_is_404(client):
    assert client.get("/api/migrations/plans/nope").status_code == 404
    assert client.post("/api/migrations/plans/nope/execute").status_code == 404


def test_cyclic_plan_is_409(tmp_path):
    schema = dict(SCHEMA)
    schema["Invoice__c"] = {"keyPrefix": "a01", "fields": [id_field(), text_field("Name"), ref_field("Order__c", ["Order__c"])]}
    schema["Order__c"] = {"keyPrefix": "a02", "fields": [id_field(), text_field("Name"), ref_field("Invoice__c", ["Invoice__c"])]}
    source = FakeSourceOrg(schema)
    source.add("Order__c", "a02A", Name="O-1", Invoice__c="a01A")
    orchestrator = MigrationOrchestrator(MigrationConfig(output_dir=str(tmp_path), save_report=False), source, FakeTargetStore())
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    try:
        response = TestClient(app).post("/api/migrations/analyze", json={
            "records": [{"attributes": {"type": "Invoice__c"}, "Id": "a01A", "Name": "I-1", "Order__c": "a02A"}],
        })
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 409
    assert set(response.json()["detail"]["object_types"]) == {"Invoice__c", "Order__c"}


def test_execute_runs_plan(client, store):
    plan_id = client.post("/api/migrations/analyze", json=_contact_payload()).json()["plan_id"]

    started = client.post(f"/api/migrations/plans/{plan_id}/execute", json={})
    assert started.status_code == 200
    run_id = started.json()["run_id"]

    # Background tasks run before the test client returns
    run = client.get(f"/api/migrations/runs/{run_id}").json()
    assert run["status"] == "completed"
    assert run["inserted_records"] == 2
    assert run["objects"]["Contact"]["inserted"] == 1
    assert run["id_mapping"]["Contact"]["003B"] == store.created["Contact"][0]["Id"]


def test_execute_dry_run(client, store):
    plan_id = client.post("/api/migrations/analyze", json=_contact_payload()).json()["plan_id"]

    run_id = client.post(f"/api/migrations/plans/{plan_id}/execute", json={"dry_run": True}).json()["run_id"]

    run = client.get(f"/api/migrations/runs/{run_id}").json()
    assert run["dry_run"] is True
    assert run["status"] == "completed"
    assert store.created == {}


def test_execute_with_issues_needs_acceptance(client):
    payload = {"records": [{"attributes": {"type": "Case"}, "Id": "500A", "Subject": "Broken", "ContactId": "003GONE"}]}
    plan_id = client.post("/api/migrations/analyze", json=payload).json()["plan_id"]

    assert client.post(f"/api/migrations/plans/{plan_id}/execute", json={}).status_code == 400
    accepted = client.post(f"/api/migrations/plans/{plan_id}/execute", json={"accept_issues": True})
    assert accepted.status_code == 200


def test_unreachable_target_is_502(client, orchestrator):
    orchestrator.store.validate_connection = MagicMock(return_value=False)
    plan_id = client.post("/api/migrations/analyze", json=_contact_payload()).json()["plan_id"]

    response = client.post(f"/api/migrations/plans/{plan_id}/execute", json={})

    assert response.status_code == 502


def test_unknown_run_is_404(client):
    assert client.get("/api/migrations/runs/nope").status_code == 404
    assert client.post("/api/migrations/runs/nope/cancel").status_code == 404


def test_cancel_finished_run_is_rejected(client):
    plan_id = client.post("/api/migrations/analyze", json=_contact_payload()).json()["plan_id"]
    run_id = client.post(f"/api/migrations/plans/{plan_id}/execute", json={}).json()["run_id"]

    response = client.post(f"/api/migrations/runs/{run_id}/cancel")

    assert response.status_code == 400
