"""
Tests for the gate REST API (checkgate.api).

These tests verify:
1. Task creation, lookup and listing
2. Proof submission, advance and the handoff log
3. Structured error bodies (error / message / details)
4. Escalation listing and resolution
5. Abandon and archive
"""

from pathlib import Path

import pytest
import yaml
from fastapi.testclient import TestClient

from checkgate.api import create_app


@pytest.fixture
def fastapi_client(tasks_dir: Path) -> TestClient:
    """Client for an app serving an isolated task store."""
    return TestClient(create_app(tasks_dir=tasks_dir))


def _create(client: TestClient, title: str = "Fix flaky login test", **extra) -> dict:
    resp = client.post("/api/tasks", json={"title": title, **extra})
    assert resp.status_code == 201
    return resp.json()


def _scope_proof() -> dict:
    return {"kind": "scope-statement", "ref": "blob:scope-1", "submitted_by": "manager"}


def _pass_c0(client: TestClient, task_id: str) -> dict:
    resp = client.post(
        f"/api/tasks/{task_id}/proofs",
        json={"checkpoint": "C0", "proofs": [_scope_proof()]},
    )
    assert resp.status_code == 200
    resp = client.post(f"/api/tasks/{task_id}/advance")
    assert resp.status_code == 200
    return resp.json()


def _pass_c1(client: TestClient, task_id: str) -> dict:
    proofs = [
        {"kind": "plan-document", "ref": "blob:plan", "submitted_by": "planner"},
        {"kind": "risk-assessment", "ref": "blob:risk", "submitted_by": "planner"},
    ]
    client.post(f"/api/tasks/{task_id}/proofs", json={"checkpoint": "C1", "proofs": proofs})
    return client.post(f"/api/tasks/{task_id}/advance").json()


# =============================================================================
# Service Endpoints
# =============================================================================


class TestServiceEndpoints:
    """Tests for health and checklist endpoints."""

    def test_health(self, fastapi_client, tasks_dir):
        resp = fastapi_client.get("/api/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["tasks_dir"] == str(tasks_dir)
        assert data["open_escalations"] == 0

    def test_checkpoints(self, fastapi_client):
        resp = fastapi_client.get("/api/checkpoints")

        assert resp.status_code == 200
        data = resp.json()
        assert [c["id"] for c in data["checkpoints"]] == [
            "C0_COMPREHENSION",
            "C1_PLAN",
            "C2_IMPLEMENTATION",
            "C3_PR",
            "C4_POSTMERGE",
        ]
        assert data["completion_role"] == "manager"
        assert "planner" in data["role_transitions"]["manager"]


# =============================================================================
# Task Endpoints
# =============================================================================


class TestTaskEndpoints:
    """Tests for task creation and lookup."""

    def test_create_and_get(self, fastapi_client):
        task = _create(fastapi_client, labels=["auth"])

        assert task["current_checkpoint"] == "C0_COMPREHENSION"
        assert task["status"] == "active"
        assert task["labels"] == ["auth"]

        resp = fastapi_client.get(f"/api/tasks/{task['id']}")
        assert resp.status_code == 200
        assert resp.json()["id"] == task["id"]

    def test_unknown_task(self, fastapi_client):
        resp = fastapi_client.get("/api/tasks/task-20250101-000000-000000")

        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "task_not_found"

    def test_empty_title_rejected(self, fastapi_client):
        resp = fastapi_client.post("/api/tasks", json={"title": ""})

        assert resp.status_code == 422

    def test_list_filters_by_status(self, fastapi_client):
        first = _create(fastapi_client, "a")
        second = _create(fastapi_client, "b")
        fastapi_client.post(f"/api/tasks/{second['id']}/abandon")

        all_ids = [t["id"] for t in fastapi_client.get("/api/tasks").json()["tasks"]]
        abandoned = fastapi_client.get("/api/tasks", params={"status": "abandoned"}).json()["tasks"]

        assert all_ids == [first["id"], second["id"]]
        assert [t["id"] for t in abandoned] == [second["id"]]

    def test_unknown_status_filter(self, fastapi_client):
        resp = fastapi_client.get("/api/tasks", params={"status": "sleeping"})

        assert resp.status_code == 422
        assert resp.json()["detail"]["error"] == "invalid_request"


class TestProofsAndAdvance:
    """Tests for proof submission and advance."""

    def test_c0_to_c1(self, fastapi_client):
        task = _create(fastapi_client)

        resp = fastapi_client.post(
            f"/api/tasks/{task['id']}/proofs",
            json={"checkpoint": "C0", "proofs": [_scope_proof()]},
        )
        assert resp.status_code == 200
        evaluation = resp.json()
        assert evaluation["satisfied"] is True
        assert len(evaluation["proof_ids"]) == 1

        resp = fastapi_client.post(
            f"/api/tasks/{task['id']}/advance", json={"from_checkpoint": "C0"}
        )

        assert resp.status_code == 200
        assert resp.json()["current_checkpoint"] == "C1_PLAN"
        handoffs = fastapi_client.get(f"/api/tasks/{task['id']}/handoffs").json()["handoffs"]
        assert len(handoffs) == 1
        assert handoffs[0]["from_role"] == "manager"
        assert handoffs[0]["to_role"] == "planner"
        assert handoffs[0]["proof_refs"] == evaluation["proof_ids"]

    def test_handoffs_as_yaml(self, fastapi_client):
        task = _create(fastapi_client)
        _pass_c0(fastapi_client, task["id"])

        resp = fastapi_client.get(f"/api/tasks/{task['id']}/handoffs", params={"format": "yaml"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/x-yaml")
        documents = [d for d in yaml.safe_load_all(resp.text) if d]
        assert documents[0]["checkpoint_completed"] == "C0_COMPREHENSION"

    def test_advance_without_proofs(self, fastapi_client):
        task = _create(fastapi_client)

        resp = fastapi_client.post(f"/api/tasks/{task['id']}/advance")

        assert resp.status_code == 422
        detail = resp.json()["detail"]
        assert detail["error"] == "criteria_unsatisfied"
        assert detail["details"]["missing"] == ["scope_documented"]
        assert detail["details"]["missing_kinds"] == {"scope_documented": ["scope-statement"]}

    def test_wrong_checkpoint(self, fastapi_client):
        task = _create(fastapi_client)

        resp = fastapi_client.post(
            f"/api/tasks/{task['id']}/proofs",
            json={
                "checkpoint": "C2",
                "proofs": [{"kind": "diff", "ref": "blob:d", "submitted_by": "implementer"}],
            },
        )

        assert resp.status_code == 409
        detail = resp.json()["detail"]
        assert detail["error"] == "invalid_checkpoint"
        assert detail["details"]["current"] == "C0_COMPREHENSION"

    def test_unknown_proof_kind(self, fastapi_client):
        task = _create(fastapi_client)

        resp = fastapi_client.post(
            f"/api/tasks/{task['id']}/proofs",
            json={
                "checkpoint": "C0",
                "proofs": [{"kind": "vibes", "ref": "blob:x", "submitted_by": "manager"}],
            },
        )

        assert resp.status_code == 422

    def test_evaluation_endpoint(self, fastapi_client):
        task = _create(fastapi_client)

        resp = fastapi_client.get(f"/api/tasks/{task['id']}/evaluation")

        assert resp.status_code == 200
        assert resp.json()["satisfied"] is False

    def test_events(self, fastapi_client):
        task = _create(fastapi_client)
        _pass_c0(fastapi_client, task["id"])

        events = fastapi_client.get(f"/api/tasks/{task['id']}/events").json()["events"]

        assert [e["kind"] for e in events] == [
            "task_created",
            "proofs_submitted",
            "checkpoint_advanced",
        ]


# =============================================================================
# Escalation Endpoints
# =============================================================================


class TestEscalationEndpoints:
    """Tests for the attempt budget and escalation decisions over HTTP."""

    def _exhaust_c2(self, client: TestClient) -> dict:
        task = _create(client)
        _pass_c0(client, task["id"])
        _pass_c1(client, task["id"])
        failing = {"kind": "lint-output", "ref": "blob:lint", "submitted_by": "implementer", "passed": False}
        result = None
        for _ in range(3):
            result = client.post(
                f"/api/tasks/{task['id']}/proofs",
                json={"checkpoint": "C2", "proofs": [failing]},
            ).json()
        return {"task_id": task["id"], "evaluation": result}

    def test_rollback_then_approve(self, fastapi_client):
        exhausted = self._exhaust_c2(fastapi_client)
        task_id = exhausted["task_id"]

        assert exhausted["evaluation"]["outcome"] == "rollback"
        task = fastapi_client.get(f"/api/tasks/{task_id}").json()
        assert task["status"] == "rolled_back"
        assert task["attempts"]["C2_IMPLEMENTATION"] == 3

        listed = fastapi_client.get("/api/escalations", params={"open_only": True}).json()["escalations"]
        assert [e["id"] for e in listed] == [task["escalation_id"]]
        assert listed[0]["risk_tag"] == "attempts-exhausted"

        resp = fastapi_client.post(
            f"/api/escalations/{task['escalation_id']}/resolve",
            json={"decision": "approved", "resolved_by": "alice"},
        )

        assert resp.status_code == 200
        assert resp.json()["current_checkpoint"] == "C3_PR"
        escalation = fastapi_client.get(f"/api/escalations/{task['escalation_id']}").json()
        assert escalation["decision"] == "approved"

    def test_blocked_task_rejects_advance(self, fastapi_client):
        task_id = self._exhaust_c2(fastapi_client)["task_id"]

        resp = fastapi_client.post(f"/api/tasks/{task_id}/advance")

        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "task_blocked"

    def test_resolve_twice(self, fastapi_client):
        task_id = self._exhaust_c2(fastapi_client)["task_id"]
        escalation_id = fastapi_client.get(f"/api/tasks/{task_id}").json()["escalation_id"]
        fastapi_client.post(f"/api/escalations/{escalation_id}/resolve", json={"decision": "needs-rework"})

        resp = fastapi_client.post(f"/api/escalations/{escalation_id}/resolve", json={"decision": "approved"})

        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "already_resolved"

    def test_unknown_escalation(self, fastapi_client):
        resp = fastapi_client.post(
            "/api/escalations/esc-000000000000/resolve", json={"decision": "approved"}
        )

        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "escalation_not_found"

    def test_manual_escalation(self, fastapi_client):
        task = _create(fastapi_client)

        resp = fastapi_client.post(f"/api/tasks/{task['id']}/escalate", json={"reason": "scope unclear"})

        assert resp.status_code == 201
        assert resp.json()["risk_tag"] == "manual"
        again = fastapi_client.post(f"/api/tasks/{task['id']}/escalate", json={"reason": "still unclear"})
        assert again.status_code == 409
        assert again.json()["detail"]["error"] == "duplicate_escalation"


# =============================================================================
# Abandon / Archive
# =============================================================================


class TestAbandonAndArchive:
    """Tests for closing tasks."""

    def test_abandon_twice(self, fastapi_client):
        task = _create(fastapi_client)

        first = fastapi_client.post(f"/api/tasks/{task['id']}/abandon", json={"reason": "duplicate"})
        second = fastapi_client.post(f"/api/tasks/{task['id']}/abandon")

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["status"] == "abandoned"

    def test_archive_active_task_rejected(self, fastapi_client):
        task = _create(fastapi_client)

        resp = fastapi_client.post(f"/api/tasks/{task['id']}/archive")

        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "task_not_closed"

    def test_archive_abandoned_task(self, fastapi_client):
        task = _create(fastapi_client)
        fastapi_client.post(f"/api/tasks/{task['id']}/abandon")

        resp = fastapi_client.post(f"/api/tasks/{task['id']}/archive")

        assert resp.status_code == 200
        assert resp.json()["archived"] is True
        assert fastapi_client.get("/api/tasks").json()["tasks"] == []
        assert fastapi_client.get(f"/api/tasks/{task['id']}").status_code == 200
