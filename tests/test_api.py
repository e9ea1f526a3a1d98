"""
Tests for the HTTP API.

Verifies:
- Skill catalog browsing and enablement endpoints
- Plan submission, approval and status
- Standalone action confirmation round trip
- Settings validation, audit verification and thread progress
"""

import time

import pytest
from fastapi.testclient import TestClient

from opensesh.engine import ExecutionEngine
from opensesh.execution.mock import MockToolExecutor
from opensesh.main import create_app
from opensesh.settings_store import SettingsStore

THREAD = "api-thread"

EDIT_ACTION = {
    "thread_id": THREAD,
    "type": "file_edit",
    "title": "Edit app",
    "details": {"type": "file_edit", "file_path": "app.py", "proposed_content": "a = 1\n"},
}


@pytest.fixture
def mock_api_executor():
    return MockToolExecutor()


@pytest.fixture
def client(mock_api_executor):
    engine = ExecutionEngine(mock_api_executor, settings_store=SettingsStore())
    with TestClient(create_app(engine)) as client:
        yield client


def _wait_for(client, path, predicate, attempts=100):
    """Poll ``path`` until ``predicate(response)`` holds; the queue drains in the background."""
    for _ in range(attempts):
        response = client.get(path)
        if predicate(response):
            return response
        time.sleep(0.01)
    raise AssertionError(f"Condition not met for {path}: {response.status_code} {response.text}")


# =============================================================================
# Skills
# =============================================================================

class TestSkillsApi:
    """Catalog and enablement."""

    def test_list_skills(self, client):
        body = client.get("/api/skills").json()
        assert body["total"] == len(body["skills"]) == 7

        dangerous = client.get("/api/skills", params={"risk": "dangerous"}).json()
        assert {s["id"] for s in dangerous["skills"]} == {"terminal"}

    def test_invalid_filter(self, client):
        assert client.get("/api/skills", params={"category": "nope"}).status_code == 400
        assert client.get("/api/skills", params={"risk": "extreme"}).status_code == 400

    def test_get_skill(self, client):
        body = client.get("/api/skills/file_write").json()
        assert body["dependency_closure"] == ["file_read"]
        assert body["requires_confirmation"] is True
        assert client.get("/api/skills/file_read").json()["dependents"] == ["file_write"]
        assert client.get("/api/skills/missing").status_code == 404

    def test_global_settings(self, client):
        body = client.get("/api/skills/global").json()
        assert body["default_enabled_skill_ids"] == ["code_generation", "file_read", "git_read", "web_search"]

        response = client.post("/api/skills/global/require-confirmation/toggle", json={"skill_id": "web_search"})
        assert "web_search" in response.json()["require_confirmation_skill_ids"]

        response = client.put("/api/skills/global", json={
            "default_enabled_skill_ids": ["unknown"],
            "require_confirmation_skill_ids": [],
        })
        assert response.status_code == 422

    def test_thread_toggle_pulls_dependencies(self, client):
        client.post("/api/skills/global/toggle", json={"skill_id": "file_read"})
        response = client.post(f"/api/threads/{THREAD}/skills/toggle", json={"skill_id": "file_write"})
        body = response.json()
        assert body["use_custom_config"] is True
        assert {"file_read", "file_write"} <= set(body["enabled_skill_ids"])

        reset = client.post(f"/api/threads/{THREAD}/skills/reset").json()
        assert reset["use_custom_config"] is False
        assert "file_write" not in reset["enabled_skill_ids"]

    def test_toggle_unknown_skill(self, client):
        response = client.post(f"/api/threads/{THREAD}/skills/toggle", json={"skill_id": "nope"})
        assert response.status_code == 422


# =============================================================================
# Plans
# =============================================================================

class TestPlansApi:
    def _payload(self, plan_payload):
        payload = plan_payload([("ap1", "information", ()), ("ap2", "information", ("ap1",))], thread_id=THREAD)
        return payload

    def test_submit_approve_execute(self, client, plan_payload):
        payload = self._payload(plan_payload)
        response = client.post("/api/plans", json=payload, params={"start": False})
        assert response.status_code == 200
        plan_id = response.json()["id"]
        assert response.json()["status"] == "pending"
        assert response.json()["progress"] == {"completed": 0, "total": 2, "percentage": 0}

        assert client.post(f"/api/plans/{plan_id}/approve").json()["status"] == "approved"
        client.post(f"/api/plans/{plan_id}/execute")

        body = _wait_for(client, f"/api/plans/{plan_id}", lambda r: r.json()["status"] == "completed").json()
        assert body["completed_steps"] == 2
        assert body["progress"]["percentage"] == 100

        listed = client.get("/api/plans", params={"thread_id": THREAD}).json()
        assert listed["count"] == 1

    def test_reject_step_through_api(self, client, plan_payload):
        plan_id = client.post("/api/plans", json=self._payload(plan_payload)).json()["id"]
        _wait_for(client, f"/api/threads/{THREAD}/confirmation", lambda r: r.status_code == 200)

        step = client.post("/api/plans/steps/ap1/reject", json={"note": "no"}).json()
        assert step["id"] == "ap1"

        body = _wait_for(client, f"/api/plans/{plan_id}", lambda r: r.json()["status"] == "partial").json()
        assert body["rejected_steps"] == 1
        assert body["skipped_by_cause"] == {"rejected": 1}

    def test_reject_before_execute_rolls_up(self, client, plan_payload):
        plan_id = client.post("/api/plans", json=self._payload(plan_payload), params={"start": False}).json()["id"]
        assert client.post("/api/plans/steps/ap1/reject", json={"note": "no"}).status_code == 200
        assert client.post(f"/api/plans/{plan_id}/execute").status_code == 200

        body = _wait_for(client, f"/api/plans/{plan_id}", lambda r: r.json()["status"] == "partial").json()
        assert body["rejected_steps"] == 1
        assert body["skipped_by_cause"] == {"rejected": 1}

    def test_unknown_plan(self, client):
        assert client.get("/api/plans/missing").status_code == 404
        assert client.post("/api/plans/steps/missing/approve").status_code == 404

    def test_cyclic_plan_rejected(self, client, plan_payload):
        payload = plan_payload([("c1", "information", ("c2",)), ("c2", "information", ("c1",))], thread_id=THREAD)
        assert client.post("/api/plans", json=payload).status_code == 422


# =============================================================================
# Actions
# =============================================================================

class TestActionsApi:
    def test_confirm_round_trip(self, client, mock_api_executor):
        action_id = client.post("/api/actions", json=EDIT_ACTION).json()["id"]

        prompt = _wait_for(client, f"/api/threads/{THREAD}/confirmation", lambda r: r.status_code == 200).json()
        assert prompt["action"]["id"] == action_id
        assert prompt["show_diff"] is True
        assert prompt["summary"] == "Edit app.py"
        assert prompt["reasons"] == ["assisted_mode"]

        edited = {**EDIT_ACTION["details"], "proposed_content": "a = 2\n"}
        response = client.post(f"/api/actions/{action_id}/confirm", json={
            "decision": "edit_and_approve",
            "edited_details": edited,
        })
        assert response.status_code == 200

        body = _wait_for(client, f"/api/actions/{action_id}", lambda r: r.json()["status"] == "completed").json()
        assert body["edit_diff"] == {"proposed_content": {"before": "a = 1\n", "after": "a = 2\n"}}
        assert client.get(f"/api/threads/{THREAD}/confirmation").status_code == 404

        audit = client.get("/api/audit", params={"thread_id": THREAD}).json()
        assert audit["total"] == 1
        assert audit["entries"][0]["user_approved"] is True

    def test_second_decision_conflicts(self, client, mock_api_executor):
        action_id = client.post("/api/actions", json=EDIT_ACTION).json()["id"]
        _wait_for(client, f"/api/threads/{THREAD}/confirmation", lambda r: r.status_code == 200)

        assert client.post(f"/api/actions/{action_id}/confirm", json={"decision": "approve"}).status_code == 200
        second = client.post(f"/api/actions/{action_id}/confirm", json={"decision": "reject"})
        assert second.status_code == 409

        _wait_for(client, f"/api/actions/{action_id}", lambda r: r.json()["status"] == "completed")

    def test_mismatched_details(self, client):
        payload = {**EDIT_ACTION, "type": "terminal_command"}
        assert client.post("/api/actions", json=payload).status_code == 422

    def test_unknown_action(self, client):
        assert client.get("/api/actions/missing").status_code == 404
        response = client.post("/api/actions/missing/confirm", json={"decision": "approve"})
        assert response.status_code == 404

    def test_reject_all(self, client, mock_api_executor):
        client.post(f"/api/threads/{THREAD}/pause")
        client.post("/api/actions", json=EDIT_ACTION)
        client.post("/api/actions", json=EDIT_ACTION)

        body = client.post(f"/api/threads/{THREAD}/actions/reject-all", json={"note": "later"}).json()
        assert body["count"] == 2
        listing = client.get(f"/api/threads/{THREAD}/actions").json()
        assert listing["paused"] is True
        assert listing["queued"] == []
        actions = listing["actions"]
        assert {a["status"] for a in actions} == {"rejected"}
        assert mock_api_executor.calls == []

    def test_mode(self, client):
        assert client.get(f"/api/threads/{THREAD}/mode").json()["mode"] == "assisted"
        response = client.put(f"/api/threads/{THREAD}/mode", json={"mode": "autonomous"})
        assert response.json()["mode"] == "autonomous"
        assert client.put(f"/api/threads/{THREAD}/mode", json={"mode": "reckless"}).status_code == 422


# =============================================================================
# Settings, audit and progress
# =============================================================================

class TestSettingsApi:
    def test_patch_settings(self, client):
        response = client.patch("/api/execution/settings", json={"stop_on_error": False})
        assert response.status_code == 200
        assert response.json()["stop_on_error"] is False
        assert client.get("/api/execution/settings").json()["stop_on_error"] is False

    def test_invalid_settings_rejected(self, client):
        assert client.patch("/api/execution/settings", json={"max_actions_per_batch": 0}).status_code == 422
        assert client.patch("/api/execution/settings", json={"unknown": True}).status_code == 422
        assert client.patch("/api/execution/settings", json={"stop_on_error": None}).status_code == 422
        assert client.get("/api/execution/settings").json()["max_actions_per_batch"] == 50


class TestAuditAndProgressApi:
    def test_autonomous_plan_progress_and_audit(self, client, plan_payload):
        client.put(f"/api/threads/{THREAD}/mode", json={"mode": "autonomous"})
        payload = plan_payload([("pr1", "information", ()), ("pr2", "information", ())], thread_id=THREAD)
        plan_id = client.post("/api/plans", json=payload).json()["id"]

        _wait_for(client, f"/api/plans/{plan_id}", lambda r: r.json()["status"] == "completed")

        progress = client.get(f"/api/threads/{THREAD}/progress").json()
        assert progress["mode"] == "autonomous"
        assert progress["percentage"] == 100
        assert progress["plan"] is None

        verify = client.get("/api/audit/verify").json()
        assert verify == {"valid": True, "total_entries": 2, "violations": []}
        assert client.get("/api/audit/verify", params={"persisted": True}).json()["valid"] is True

        stats = client.get("/api/audit/stats").json()
        assert stats["by_mode"] == {"autonomous": 2}
        assert stats["user_approved"] == 0

        page = client.get("/api/audit", params={"plan_id": plan_id, "limit": 1}).json()
        assert page["total"] == 2
        assert len(page["entries"]) == 1

    def test_progress_for_unknown_thread(self, client):
        body = client.get("/api/threads/idle/progress").json()
        assert body["total_actions"] == 0
        assert body["plan"] is None

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
