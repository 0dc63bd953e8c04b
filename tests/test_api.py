"""HTTP API tests."""
from datetime import datetime, timedelta

import pytest
from conftest import ASSET_ID, CORRECTIVE_CATEGORY, REQUESTER, REQUIRED_TASKS, ROUTINE_ID, SUPERVISOR, TECHNICIAN
from fastapi.testclient import TestClient

from cmms_core import models
from cmms_core.api.main import app
from cmms_core.database import get_db


@pytest.fixture
def client(db, session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _headers(actor_id):
    return {"X-Actor-Id": str(actor_id)}


def _create(client, **overrides):
    payload = {
        "title": "Pump vibration",
        "work_order_category_id": CORRECTIVE_CATEGORY,
        "asset_id": ASSET_ID,
        "form_version_id": 1,
    }
    payload.update(overrides)
    response = client.post("/api/v1/work-orders/", json=payload, headers=_headers(REQUESTER))
    assert response.status_code == 201, response.text
    return response.json()


def _schedule(client, work_order_id):
    base = f"/api/v1/work-orders/{work_order_id}"
    assert client.post(f"{base}/approve", headers=_headers(SUPERVISOR)).status_code == 200
    assert client.post(f"{base}/plan", json={"estimated_hours": 2}, headers=_headers(SUPERVISOR)).status_code == 200
    start = datetime.utcnow() + timedelta(days=1)
    response = client.post(f"{base}/schedule", json={
        "scheduled_start_date": start.isoformat(),
        "scheduled_end_date": (start + timedelta(hours=2)).isoformat(),
        "assigned_technician_id": TECHNICIAN,
    }, headers=_headers(SUPERVISOR))
    assert response.status_code == 200, response.text
    return response.json()


class TestService:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_root(self, client):
        assert client.get("/").json()["name"] == "CMMS Core API"


class TestWorkOrderEndpoints:
    """Test the work order lifecycle over HTTP."""

    def test_create_and_get(self, client):
        created = _create(client)
        assert created["status"] == "requested"
        assert created["requested_by"] == REQUESTER

        response = client.get(f"/api/v1/work-orders/{created['id']}")
        assert response.status_code == 200
        assert response.json()["work_order_number"] == created["work_order_number"]

    def test_actor_header_required(self, client):
        response = client.post("/api/v1/work-orders/", json={"title": "x", "work_order_category_id": 2})
        assert response.status_code == 401

    def test_missing_order_is_404(self, client):
        response = client.get("/api/v1/work-orders/999")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_domain_validation_is_422(self, client):
        response = client.post(
            "/api/v1/work-orders/",
            json={"title": "No asset", "work_order_category_id": CORRECTIVE_CATEGORY},
            headers=_headers(REQUESTER),
        )
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "validation_error"
        assert "asset_id" in body["errors"]

    def test_duplicate_routine_order_refused(self, client):
        _create(client, work_order_category_id=1, source_type="routine", source_id=ROUTINE_ID)
        response = client.post("/api/v1/work-orders/", json={
            "title": "Again",
            "work_order_category_id": 1,
            "asset_id": ASSET_ID,
            "source_type": "routine",
            "source_id": ROUTINE_ID,
        }, headers=_headers(REQUESTER))
        assert response.status_code == 422
        assert "source_id" in response.json()["errors"]

    def test_invalid_transition_is_409(self, client):
        created = _create(client)
        response = client.post(
            f"/api/v1/work-orders/{created['id']}/transition",
            json={"new_status": "scheduled"},
            headers=_headers(SUPERVISOR),
        )
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "invalid_transition"
        assert body["allowed_transitions"] == ["approved", "rejected", "cancelled"]

    def test_reject_requires_reason(self, client):
        created = _create(client)
        response = client.post(
            f"/api/v1/work-orders/{created['id']}/reject", json={}, headers=_headers(SUPERVISOR)
        )
        assert response.status_code == 422
        assert "reason" in response.json()["errors"]

    def test_plan_total_cost(self, client):
        created = _create(client)
        base = f"/api/v1/work-orders/{created['id']}"
        client.post(f"{base}/approve", headers=_headers(SUPERVISOR))
        response = client.post(
            f"{base}/plan",
            json={"estimated_parts_cost": 100, "estimated_labor_cost": 50},
            headers=_headers(SUPERVISOR),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "planned"
        assert response.json()["estimated_total_cost"] == 150

    def test_history_and_transitions(self, client):
        created = _create(client)
        base = f"/api/v1/work-orders/{created['id']}"
        client.post(f"{base}/approve", json={"reason": "Looks right"}, headers=_headers(SUPERVISOR))

        history = client.get(f"{base}/history").json()
        assert [(row["from_status"], row["to_status"]) for row in history] == [
            (None, "requested"),
            ("requested", "approved"),
        ]
        assert history[1]["reason"] == "Looks right"
        assert client.get(f"{base}/transitions").json() == ["planned", "on_hold", "cancelled"]

    def test_list_paginates(self, client):
        for _ in range(3):
            _create(client)
        body = client.get("/api/v1/work-orders/", params={"page": 2, "page_size": 2}).json()
        assert body["total"] == 3
        assert body["total_pages"] == 2
        assert len(body["items"]) == 1

    def test_hold_and_resume(self, client):
        created = _create(client)
        base = f"/api/v1/work-orders/{created['id']}"
        _schedule(client, created["id"])

        response = client.post(f"{base}/hold", json={"reason": "Parts on order"}, headers=_headers(SUPERVISOR))
        assert response.json()["status"] == "on_hold"
        response = client.post(f"{base}/resume", json={"to_status": "scheduled"}, headers=_headers(SUPERVISOR))
        assert response.json()["status"] == "scheduled"


class TestExecutionEndpoints:
    """Test execution over HTTP."""

    def test_execute_and_complete(self, client):
        created = _create(client)
        _schedule(client, created["id"])

        response = client.post(
            "/api/v1/executions/", json={"work_order_id": created["id"]}, headers=_headers(TECHNICIAN)
        )
        assert response.status_code == 201, response.text
        execution = response.json()
        base = f"/api/v1/executions/{execution['id']}"

        response = client.post(f"{base}/complete", json={}, headers=_headers(TECHNICIAN))
        assert response.status_code == 409
        assert response.json()["missing_task_ids"] == list(REQUIRED_TASKS)

        for task_id in REQUIRED_TASKS:
            response = client.post(
                f"{base}/tasks", json={"task_id": task_id, "response": "ok"}, headers=_headers(TECHNICIAN)
            )
            assert response.status_code == 200

        assert client.get(f"{base}/stats").json()["completion_percentage"] == 100.0

        response = client.post(f"{base}/complete", json={"work_performed": "Aligned"}, headers=_headers(TECHNICIAN))
        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert client.get(f"/api/v1/work-orders/{created['id']}").json()["status"] == "completed"


class TestOtherEndpoints:
    def test_generation_run_and_preview(self, client):
        assert client.get("/api/v1/generation/preview").json()[0]["routine_id"] == ROUTINE_ID

        body = client.post("/api/v1/generation/run", headers=_headers(SUPERVISOR)).json()
        assert len(body["generated"]) == 1
        assert body["failures"] == []

    def test_generation_not_due_is_422(self, client, db):
        db.get(models.Routine, ROUTINE_ID).last_execution_completed_at = datetime.utcnow()
        db.commit()
        response = client.post(f"/api/v1/generation/routines/{ROUTINE_ID}", headers=_headers(SUPERVISOR))
        assert response.status_code == 422

    def test_batch_scheduling(self, client):
        created = _create(client)
        start = datetime.utcnow() + timedelta(days=2)
        response = client.post("/api/v1/scheduling/batch", json={"entries": [{
            "work_order_id": created["id"],
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(hours=1)).isoformat(),
        }]}, headers=_headers(SUPERVISOR))
        assert response.status_code == 200
        assert response.json()[0]["result"] == "skipped"

    def test_availability(self, client):
        start = datetime.utcnow()
        response = client.get(f"/api/v1/scheduling/availability/{TECHNICIAN}", params={
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(hours=2)).isoformat(),
        })
        assert response.status_code == 200
        assert response.json()["available"] is True

    def test_metrics_overview(self, client):
        _create(client)
        body = client.get("/api/v1/metrics/overview").json()
        assert body["total_work_orders"] == 1
        assert body["completion_rate"] == 0
