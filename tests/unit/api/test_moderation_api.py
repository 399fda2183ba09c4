"""Unit tests for the moderation API router."""

import pytest
from fastapi.testclient import TestClient

from scamreg.api.app import app
from scamreg.api.moderation import get_scheduler
from scamreg.models import Actor, Role
from scamreg.services.factories import build_registry
from scamreg.services.intake import ReportSubmission
from scamreg.settings import reload_settings
from scamreg.store.sql import build_engine

MEMBER = {"X-API-KEY": "dev-member-token"}
MODERATOR = {"X-API-KEY": "dev-moderator-token"}
OTHER_MODERATOR = {"X-API-KEY": "dev-moderator-2-token"}
ADMIN = {"X-API-KEY": "dev-admin-token"}

NARRATIVE = "Caller said I won a lucky draw from a telecom company and needed to pay tax before the prize transfer."


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides = {}


def _client(tmp_path):
    settings = reload_settings(env="test")
    engine = build_engine(url=f"sqlite:///{tmp_path / 'registry.db'}", settings=settings)
    registry = build_registry(settings, engine=engine, async_index_refresh=False)
    app.dependency_overrides[get_scheduler] = lambda: registry.scheduler
    return TestClient(app), registry


def _seed(registry, value: str = "+977-9811111111") -> str:
    submission = ReportSubmission(
        identifier_type="phone",
        identifier_value=value,
        category="lottery",
        narrative=NARRATIVE,
        amount_lost=3000,
    )
    return registry.intake.submit(submission, Actor(user_id="member_1", role=Role.MEMBER))["task"].task_id


def test_queue_requires_moderator(tmp_path):
    client, registry = _client(tmp_path)

    assert client.get("/moderation/queue", headers=MEMBER).status_code == 403
    assert client.get("/moderation/queue").status_code == 401
    registry.close()


def test_queue_lists_tasks_with_priority(tmp_path):
    client, registry = _client(tmp_path)
    task_id = _seed(registry)

    r = client.get("/moderation/queue", headers=MODERATOR)

    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 1
    task = body["tasks"][0]
    assert task["id"] == task_id
    assert task["priorityScore"] == pytest.approx(45.0, abs=0.01)
    assert task["priority"] == "low"
    assert task["isOverdue"] is False
    assert task["report"]["category"] == "lottery"

    bad = client.get("/moderation/queue", params={"status": "asleep"}, headers=MODERATOR)
    assert bad.status_code == 422
    assert "status" in bad.json()["error"]["fields"]
    registry.close()


def test_second_claim_gets_conflict_with_current_assignee(tmp_path):
    client, registry = _client(tmp_path)
    task_id = _seed(registry)

    first = client.post(f"/moderation/tasks/{task_id}/claim", headers=MODERATOR)
    second = client.post(f"/moderation/tasks/{task_id}/claim", headers=OTHER_MODERATOR)

    assert first.status_code == 200
    assert first.json()["assignedTo"] == "moderator_1"
    assert second.status_code == 409
    error = second.json()["error"]
    assert error["kind"] == "conflict"
    assert error["currentAssignee"] == "moderator_1"
    registry.close()


def test_claim_on_behalf_needs_admin(tmp_path):
    client, registry = _client(tmp_path)
    task_id = _seed(registry)

    denied = client.post(
        f"/moderation/tasks/{task_id}/claim", json={"moderatorId": "moderator_2"}, headers=MODERATOR
    )
    assert denied.status_code == 403
    assert denied.json()["error"]["kind"] == "permission_denied"

    r = client.post(f"/moderation/tasks/{task_id}/claim", json={"moderatorId": "moderator_2"}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["assignedTo"] == "moderator_2"

    released = client.post(f"/moderation/tasks/{task_id}/unassign", headers=OTHER_MODERATOR)
    assert released.status_code == 200
    assert released.json()["status"] == "pending"
    registry.close()


def test_decision_closes_task_and_updates_report(tmp_path):
    client, registry = _client(tmp_path)
    task_id = _seed(registry)
    client.post(f"/moderation/tasks/{task_id}/claim", headers=MODERATOR)

    r = client.post(
        f"/moderation/tasks/{task_id}/decision",
        json={"decision": "approve", "reason": "telecom confirmed no such draw"},
        headers=MODERATOR,
    )

    assert r.status_code == 200
    body = r.json()
    assert body["task"]["status"] == "completed"
    assert body["decision"]["decision"] == "approve"
    assert body["decision"]["moderatorId"] == "moderator_1"
    assert body["report"]["status"] == "verified"
    assert body["entity"]["status"] == "confirmed"

    again = client.post(f"/moderation/tasks/{task_id}/decision", json={"decision": "reject"}, headers=MODERATOR)
    assert again.status_code == 409

    unknown = client.post(f"/moderation/tasks/{task_id}/decision", json={"decision": "maybe"}, headers=MODERATOR)
    assert unknown.status_code == 422
    registry.close()


def test_bulk_decision_and_stats(tmp_path):
    client, registry = _client(tmp_path)
    first = _seed(registry, "+977-9811111112")
    second = _seed(registry, "+977-9811111113")

    r = client.post(
        "/moderation/bulk-decision",
        json={"taskIds": [first, second, "task-missing"], "decision": "reject"},
        headers=MODERATOR,
    )

    assert r.status_code == 200
    body = r.json()
    assert body["successful"] == 2
    assert body["failed"] == 1
    assert body["results"][0]["taskId"] == first
    assert body["results"][0]["reportStatus"] == "rejected"
    assert body["results"][2]["error"]["kind"] == "not_found"

    stats = client.get("/moderation/stats", headers=MODERATOR).json()
    assert stats["completed"] == 2
    assert stats["activeTasks"] == 0
    assert stats["overdueTasks"] == 0

    assert client.get("/moderation/overdue", headers=MODERATOR).json()["count"] == 0
    assert client.get(f"/moderation/tasks/{first}", headers=MODERATOR).json()["status"] == "completed"
    assert client.get("/moderation/tasks/task-missing", headers=MODERATOR).status_code == 404
    registry.close()


def test_priority_override_is_admin_only(tmp_path):
    client, registry = _client(tmp_path)
    task_id = _seed(registry)

    denied = client.patch(f"/moderation/tasks/{task_id}/priority", json={"priority": "high"}, headers=MODERATOR)
    assert denied.status_code == 403

    r = client.patch(
        f"/moderation/tasks/{task_id}/priority",
        json={"priority": "high", "reason": "repeat offender"},
        headers=ADMIN,
    )
    assert r.status_code == 200
    assert r.json()["priorityScore"] == 100.0
    assert r.json()["priority"] == "high"

    bad = client.patch(f"/moderation/tasks/{task_id}/priority", json={"priority": "asap"}, headers=ADMIN)
    assert bad.status_code == 422
    assert "priority" in bad.json()["error"]["fields"]

    cleared = client.patch(f"/moderation/tasks/{task_id}/priority", json={"priority": None}, headers=ADMIN)
    assert cleared.json()["priorityOverride"] is None
    registry.close()


def test_moderator_stats_endpoint(tmp_path):
    client, registry = _client(tmp_path)
    task_id = _seed(registry)
    client.post(f"/moderation/tasks/{task_id}/claim", headers=MODERATOR)
    client.post(f"/moderation/tasks/{task_id}/decision", json={"decision": "require_info"}, headers=MODERATOR)

    own = client.get("/moderation/moderator-stats", headers=MODERATOR).json()
    assert own["moderatorId"] == "moderator_1"
    assert own["totalDecisions"] == 1
    assert own["byDecision"]["require_info"] == 1

    other = client.get("/moderation/moderator-stats", params={"moderatorId": "moderator_1"}, headers=OTHER_MODERATOR)
    assert other.status_code == 403
    as_admin = client.get("/moderation/moderator-stats", params={"moderatorId": "moderator_1"}, headers=ADMIN)
    assert as_admin.json()["totalDecisions"] == 1
    registry.close()
