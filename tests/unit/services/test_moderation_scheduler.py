"""Unit tests for the moderation queue scheduler."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from scamreg.errors import ConflictError, IllegalTransitionError, PermissionDeniedError, ValidationError
from scamreg.models import Actor, Decision, ReportStatus, Role, TaskKind, TaskStatus
from scamreg.services.factories import build_registry
from scamreg.services.intake import ReportSubmission
from scamreg.settings import reload_settings
from scamreg.store.sql import build_engine

NARRATIVE = "A recruiter offered remote data-entry work but first demanded a registration fee via mobile wallet."
MEMBER = Actor(user_id="member_1", role=Role.MEMBER)
MODERATOR = Actor(user_id="moderator_1", role=Role.MODERATOR)
OTHER_MODERATOR = Actor(user_id="moderator_2", role=Role.MODERATOR)
ADMIN = Actor(user_id="admin", role=Role.ADMIN)


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


def _registry(tmp_path, clock: _Clock | None = None):
    settings = reload_settings(env="test")
    engine = build_engine(url=f"sqlite:///{tmp_path / 'registry.db'}", settings=settings)
    return build_registry(settings, engine=engine, async_index_refresh=False, clock=clock or _Clock())


def _submit(registry, value: str, *, category: str = "job_scam", amount: float = 0.0):
    submission = ReportSubmission(
        identifier_type="phone",
        identifier_value=value,
        category=category,
        narrative=NARRATIVE,
        amount_lost=amount,
    )
    return registry.intake.submit(submission, MEMBER)


def test_queue_orders_by_priority_then_age(tmp_path):
    clock = _Clock()
    registry = _registry(tmp_path, clock)
    low_first = _submit(registry, "+977-9800000011")["task"]
    clock.advance(hours=1)
    low_second = _submit(registry, "+977-9800000012")["task"]
    high = _submit(registry, "+977-9800000013", category="investment", amount=25000)["task"]

    queue = registry.scheduler.list_queue()

    assert [task.task_id for task in queue["tasks"]] == [high.task_id, low_first.task_id, low_second.task_id]
    assert queue["total"] == 3
    top = queue["tasks"][0]
    assert top.priority_score == pytest.approx(75.0)
    assert top.priority == "medium"
    # 30 base + 0.5 per hour waited
    assert queue["tasks"][1].priority_score == pytest.approx(30.5)
    assert queue["tasks"][1].report["category"] == "job_scam"
    registry.close()


def test_queue_filters_and_paging(tmp_path):
    registry = _registry(tmp_path)
    for index in range(3):
        _submit(registry, f"+977-980000002{index}")
    _submit(registry, "+977-9800000029", category="lottery")

    assert registry.scheduler.list_queue(category="lottery")["total"] == 1
    page = registry.scheduler.list_queue(page=2, limit=3)
    assert page["total"] == 4
    assert len(page["tasks"]) == 1
    assert registry.scheduler.list_queue(status="completed")["total"] == 0
    with pytest.raises(ValidationError):
        registry.scheduler.list_queue(status="sleeping")
    registry.close()


def test_concurrent_claims_have_exactly_one_winner(tmp_path):
    registry = _registry(tmp_path)
    task = _submit(registry, "+977-9800000031")["task"]
    moderators = [Actor(user_id=f"moderator_{index}", role=Role.MODERATOR) for index in range(6)]

    def _attempt(actor):
        try:
            return registry.scheduler.claim(task.task_id, actor)
        except ConflictError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=len(moderators)) as pool:
        outcomes = list(pool.map(_attempt, moderators))

    winners = [outcome for outcome in outcomes if not isinstance(outcome, ConflictError)]
    losers = [outcome for outcome in outcomes if isinstance(outcome, ConflictError)]
    assert len(winners) == 1
    assert len(losers) == len(moderators) - 1
    assert {loser.current_assignee for loser in losers} == {winners[0].assigned_to}
    assert all(loser.http_status == 409 for loser in losers)
    registry.close()


def test_claim_moves_report_under_review_and_is_idempotent(tmp_path):
    registry = _registry(tmp_path)
    submitted = _submit(registry, "+977-9800000041")
    task_id = submitted["task"].task_id

    claimed = registry.scheduler.claim(task_id, MODERATOR)
    again = registry.scheduler.claim(task_id, MODERATOR)

    assert claimed.status is TaskStatus.CLAIMED
    assert claimed.assigned_to == "moderator_1"
    assert again.assigned_to == "moderator_1"
    report = registry.intake.get_report(submitted["report"].report_id)
    assert report.status is ReportStatus.UNDER_REVIEW
    history = registry.intake.history(report.report_id)
    assert history[-1].reason == "claimed"
    assert history[-1].actor_id == "moderator_1"
    with pytest.raises(ConflictError) as excinfo:
        registry.scheduler.claim(task_id, OTHER_MODERATOR)
    assert excinfo.value.to_dict()["currentAssignee"] == "moderator_1"
    registry.close()


def test_claim_permissions(tmp_path):
    registry = _registry(tmp_path)
    task_id = _submit(registry, "+977-9800000051")["task"].task_id

    with pytest.raises(PermissionDeniedError):
        registry.scheduler.claim(task_id, MEMBER)
    with pytest.raises(PermissionDeniedError):
        registry.scheduler.claim(task_id, MODERATOR, moderator_id="moderator_2")

    delegated = registry.scheduler.claim(task_id, ADMIN, moderator_id="moderator_2")
    assert delegated.assigned_to == "moderator_2"
    registry.close()


def test_unassign_rules(tmp_path):
    registry = _registry(tmp_path)
    submitted = _submit(registry, "+977-9800000061")
    task_id = submitted["task"].task_id

    with pytest.raises(IllegalTransitionError):
        registry.scheduler.unassign(task_id, MODERATOR)

    registry.scheduler.claim(task_id, MODERATOR)
    with pytest.raises(PermissionDeniedError):
        registry.scheduler.unassign(task_id, OTHER_MODERATOR)

    released = registry.scheduler.unassign(task_id, MODERATOR)
    assert released.status is TaskStatus.PENDING
    assert released.assigned_to is None
    assert registry.intake.get_report(submitted["report"].report_id).status is ReportStatus.UNDER_REVIEW

    registry.scheduler.claim(task_id, OTHER_MODERATOR)
    assert registry.scheduler.unassign(task_id, ADMIN).assigned_to is None
    registry.close()


def test_decide_approve_completes_task_and_confirms_entity(tmp_path):
    registry = _registry(tmp_path)
    submitted = _submit(registry, "+977-9800000071")
    task_id = submitted["task"].task_id
    registry.scheduler.claim(task_id, MODERATOR)

    with pytest.raises(ConflictError):
        registry.scheduler.decide(task_id, "approve", OTHER_MODERATOR)

    outcome = registry.scheduler.decide(task_id, Decision.APPROVE, MODERATOR, reason="matches bank records")

    assert outcome["task"].status is TaskStatus.COMPLETED
    assert outcome["decision"].decision is Decision.APPROVE
    assert outcome["decision"].moderator_id == "moderator_1"
    assert outcome["report"].status is ReportStatus.VERIFIED
    assert outcome["entity"].status.value == "confirmed"
    assert registry.scheduler.list_queue()["total"] == 0

    with pytest.raises(IllegalTransitionError):
        registry.scheduler.decide(task_id, "reject", MODERATOR)
    with pytest.raises(IllegalTransitionError):
        registry.scheduler.claim(task_id, OTHER_MODERATOR)
    registry.close()


def test_escalation_opens_a_new_task(tmp_path):
    registry = _registry(tmp_path)
    submitted = _submit(registry, "+977-9800000081")
    review_task = submitted["task"].task_id
    registry.scheduler.claim(review_task, MODERATOR)

    registry.scheduler.decide(review_task, "escalate", MODERATOR)

    queue = registry.scheduler.list_queue(kind="escalation")
    assert queue["total"] == 1
    escalation = queue["tasks"][0]
    assert escalation.kind is TaskKind.ESCALATION
    assert escalation.report_id == submitted["report"].report_id
    assert registry.scheduler.get_task(review_task).status is TaskStatus.COMPLETED

    outcome = registry.scheduler.decide(escalation.task_id, "approve", ADMIN)
    assert outcome["report"].status is ReportStatus.VERIFIED
    assert registry.scheduler.list_queue()["total"] == 0
    registry.close()


def test_bulk_decide_reports_per_item_outcomes(tmp_path):
    registry = _registry(tmp_path)
    first = _submit(registry, "+977-9800000091")["task"].task_id
    second = _submit(registry, "+977-9800000092")["task"].task_id

    outcome = registry.scheduler.bulk_decide([first, second, first, "task-missing"], "reject", MODERATOR)

    assert outcome["successful"] == 2
    assert outcome["failed"] == 1
    assert [item["task_id"] for item in outcome["results"]] == [first, second, "task-missing"]
    assert outcome["results"][0]["report_status"] == "rejected"
    assert outcome["results"][2]["error"]["kind"] == "not_found"

    with pytest.raises(ValidationError):
        registry.scheduler.bulk_decide([first], "shrug", MODERATOR)
    registry.close()


def test_stats_and_overdue_follow_the_clock(tmp_path):
    clock = _Clock()
    registry = _registry(tmp_path, clock)
    first = _submit(registry, "+977-9800000101")["task"].task_id
    _submit(registry, "+977-9800000102")
    registry.scheduler.claim(first, MODERATOR)

    stats = registry.scheduler.stats()
    assert stats["pending"] == 1
    assert stats["under_review"] == 1
    assert stats["total"] == 2
    assert stats["active_tasks"] == 2
    assert stats["overdue_tasks"] == 0
    assert registry.scheduler.list_overdue() == []

    clock.advance(hours=registry.settings.moderation.sla_hours + 1)

    overdue = registry.scheduler.list_overdue()
    assert len(overdue) == 2
    assert all(task.is_overdue for task in overdue)
    assert registry.scheduler.stats()["overdue_tasks"] == 2
    assert registry.scheduler.list_queue(overdue_only=True)["total"] == 2
    registry.close()


def test_admin_priority_override_pins_queue_position(tmp_path):
    clock = _Clock()
    registry = _registry(tmp_path, clock)
    low = _submit(registry, "+977-9800000111")["task"]
    high = _submit(registry, "+977-9800000112", category="investment", amount=25000)["task"]

    with pytest.raises(PermissionDeniedError):
        registry.scheduler.set_priority(low.task_id, "high", MODERATOR)
    with pytest.raises(ValidationError):
        registry.scheduler.set_priority(low.task_id, "urgent-ish", ADMIN)
    with pytest.raises(ValidationError):
        registry.scheduler.set_priority(low.task_id, 500, ADMIN)

    pinned = registry.scheduler.set_priority(low.task_id, "high", ADMIN, reason="victim is elderly")
    assert pinned.priority_score == pytest.approx(100.0)
    assert pinned.priority == "high"
    assert pinned.priority_override == pytest.approx(100.0)

    clock.advance(hours=10)
    queue = registry.scheduler.list_queue()
    assert [task.task_id for task in queue["tasks"]] == [low.task_id, high.task_id]
    assert queue["tasks"][0].priority_score == pytest.approx(100.0)
    assert queue["tasks"][1].priority_score == pytest.approx(80.0)

    restored = registry.scheduler.set_priority(low.task_id, None, ADMIN)
    assert restored.priority_override is None
    assert restored.priority_score == pytest.approx(35.0)

    registry.scheduler.decide(low.task_id, "reject", ADMIN)
    with pytest.raises(IllegalTransitionError):
        registry.scheduler.set_priority(low.task_id, 50, ADMIN)
    registry.close()


def test_moderator_stats_count_decisions_and_time_to_decide(tmp_path):
    clock = _Clock()
    registry = _registry(tmp_path, clock)
    first = _submit(registry, "+977-9800000121")["task"].task_id
    second = _submit(registry, "+977-9800000122")["task"].task_id
    third = _submit(registry, "+977-9800000123")["task"].task_id

    registry.scheduler.claim(first, MODERATOR)
    clock.advance(hours=2)
    registry.scheduler.decide(first, "approve", MODERATOR)
    registry.scheduler.claim(second, MODERATOR)
    clock.advance(hours=4)
    registry.scheduler.decide(second, "reject", MODERATOR)
    registry.scheduler.claim(third, MODERATOR)

    stats = registry.scheduler.moderator_stats(MODERATOR)
    assert stats["moderator_id"] == "moderator_1"
    assert stats["total_decisions"] == 2
    assert stats["by_decision"] == {"approve": 1, "reject": 1, "escalate": 0, "require_info": 0}
    assert stats["average_decision_hours"] == pytest.approx(3.0)
    assert stats["active_claims"] == 1

    idle = registry.scheduler.moderator_stats(OTHER_MODERATOR)
    assert idle["total_decisions"] == 0
    assert idle["average_decision_hours"] is None
    assert registry.scheduler.moderator_stats(ADMIN, moderator_id="moderator_1")["total_decisions"] == 2
    assert registry.scheduler.moderator_stats(MODERATOR, days=1)["total_decisions"] == 2

    with pytest.raises(PermissionDeniedError):
        registry.scheduler.moderator_stats(OTHER_MODERATOR, moderator_id="moderator_1")
    with pytest.raises(PermissionDeniedError):
        registry.scheduler.moderator_stats(MEMBER)
    registry.close()
