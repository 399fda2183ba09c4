"""Moderation queue scheduler: enqueue, prioritize, claim, and decide."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from scamreg.errors import (
    ConflictError,
    IllegalTransitionError,
    NotFoundError,
    PermissionDeniedError,
    RegistryError,
    ValidationError,
)
from scamreg.models import (
    Actor,
    Decision,
    DecisionRecord,
    ModerationTask,
    Report,
    ReportStatus,
    TaskKind,
    TaskStatus,
    utcnow,
)
from scamreg.observability import Observability, get_observability
from scamreg.services.lifecycle import StatusStateMachine
from scamreg.services.risk import priority_label, priority_score
from scamreg.services.unit_of_work import UnitOfWork, WorkContext
from scamreg.settings import Settings, get_settings
from scamreg.store.moderation_store import ACTIVE_STATUSES, ModerationStore, new_decision_id, new_task_id
from scamreg.store.report_store import ReportStore

LOGGER = logging.getLogger(__name__)

# Pinned queue scores for admin priority overrides.
PRIORITY_PINS: Dict[str, float] = {"high": 100.0, "medium": 70.0, "low": 30.0}
MAX_PRIORITY_SCORE = 200.0


class ModerationScheduler:
    """Arbitrate moderation work over the task queue.

    Priority is never stored: :func:`scamreg.services.risk.priority_score` is
    applied on read from the task's risk score and age, so the queue order
    drifts as tasks wait.
    """

    def __init__(
        self,
        *,
        unit_of_work: UnitOfWork,
        state_machine: StatusStateMachine,
        moderation_store: ModerationStore | None = None,
        report_store: ReportStore | None = None,
        settings: Settings | None = None,
        observability: Observability | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self._uow = unit_of_work
        self._machine = state_machine
        self._tasks = moderation_store or ModerationStore()
        self._reports = report_store or ReportStore()
        self._observability = observability or get_observability(component="moderation", settings=self.settings)
        self._clock = clock
        state_machine.add_listener(self._on_transition)

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    def enqueue(self, context: WorkContext, report: Report, *, kind: TaskKind = TaskKind.REVIEW) -> ModerationTask:
        """Create the task for a report entering ``pending`` (or ``escalated``)."""

        now = self._clock()
        task = ModerationTask(
            task_id=new_task_id(),
            report_id=report.report_id,
            kind=kind,
            status=TaskStatus.PENDING,
            risk_score=report.risk_score,
            enqueued_at=now,
            sla_deadline=now + timedelta(hours=self.settings.moderation.sla_hours),
        )
        self._tasks.insert_task(context.session, task)
        context.touch_report(report.report_id)
        self._observability.increment("moderation.enqueued", tags={"kind": kind.value})
        return self._hydrate(task, now)

    def list_queue(
        self,
        *,
        status: str | None = None,
        assigned_to: str | None = None,
        kind: str | None = None,
        category: str | None = None,
        overdue_only: bool = False,
        page: int = 1,
        limit: int | None = None,
    ) -> Dict[str, Any]:
        """Return active tasks ordered by priority (desc), oldest first on ties."""

        statuses = _queue_statuses(status)
        now = self._clock()
        with self._uow.read() as session:
            tasks = self._tasks.list_tasks(
                session,
                statuses=statuses,
                assigned_to=assigned_to,
                kind=kind,
                category=category,
                overdue_before=now if overdue_only else None,
            )
        hydrated = [self._hydrate(task, now) for task in tasks]
        hydrated.sort(key=lambda task: (-task.priority_score, task.enqueued_at, task.task_id))

        page = max(page, 1)
        size = max(1, limit or self.settings.moderation.queue_page_size)
        start = (page - 1) * size
        return {
            "tasks": hydrated[start : start + size],
            "total": len(hydrated),
            "page": page,
            "limit": size,
        }

    def list_overdue(self, *, limit: int = 100) -> List[ModerationTask]:
        now = self._clock()
        with self._uow.read() as session:
            tasks = self._tasks.list_tasks(session, overdue_before=now)
        hydrated = [self._hydrate(task, now) for task in tasks]
        hydrated.sort(key=lambda task: (task.sla_deadline, task.task_id))
        return hydrated[:limit]

    def get_task(self, task_id: str) -> ModerationTask:
        with self._uow.read() as session:
            task = self._tasks.get_task(session, task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return self._hydrate(task, self._clock())

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        with self._uow.read() as session:
            by_status = self._reports.status_counts(session)
            active = self._tasks.count_active(session)
            overdue = self._tasks.count_overdue(session, now=now)
        return {
            "pending": by_status.get(ReportStatus.PENDING.value, 0),
            "under_review": by_status.get(ReportStatus.UNDER_REVIEW.value, 0),
            "requires_info": by_status.get(ReportStatus.REQUIRES_INFO.value, 0),
            "escalated": by_status.get(ReportStatus.ESCALATED.value, 0),
            "completed": sum(count for status, count in by_status.items() if ReportStatus(status).is_terminal),
            "total": sum(by_status.values()),
            "active_tasks": active,
            "overdue_tasks": overdue,
        }

    def moderator_stats(self, actor: Actor, *, moderator_id: str | None = None, days: int | None = None) -> Dict[str, Any]:
        """Decision counts, mean claim-to-decision time, and open claims for one moderator.

        Moderators see their own numbers; admins may ask for anyone's.
        """

        if not actor.can_moderate:
            raise PermissionDeniedError("Only moderators and admins may view moderator stats", details={"role": actor.role.value})
        target = moderator_id or actor.user_id
        if target != actor.user_id and not actor.is_admin:
            raise PermissionDeniedError("Only admins may view another moderator's stats")

        since = self._clock() - timedelta(days=days) if days else None
        with self._uow.read() as session:
            rows = self._tasks.decisions_by_moderator(session, target, since=since)
            active_claims = self._tasks.count_claimed_by(session, target)

        by_decision = {decision.value: 0 for decision in Decision}
        hours: List[float] = []
        for decision, decided_at, started_at in rows:
            by_decision[decision] = by_decision.get(decision, 0) + 1
            hours.append(max((decided_at - started_at).total_seconds(), 0.0) / 3600.0)
        return {
            "moderator_id": target,
            "window_days": days,
            "total_decisions": len(rows),
            "by_decision": by_decision,
            "average_decision_hours": round(sum(hours) / len(hours), 2) if hours else None,
            "active_claims": active_claims,
        }

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(self, task_id: str, actor: Actor, *, moderator_id: str | None = None) -> ModerationTask:
        """Atomically assign ``task_id``; exactly one concurrent caller wins.

        Args:
            task_id: Task to claim.
            actor: Authenticated caller; must be a moderator or admin.
            moderator_id: Claim on behalf of another moderator (admins only).

        Raises:
            ConflictError: Someone else already holds the task (``current_assignee``).
        """

        assignee = self._resolve_assignee(actor, moderator_id)
        with self._uow.begin() as context:
            session = context.session
            now = self._clock()
            if not self._tasks.try_claim(session, task_id, assignee, timestamp=now):
                current = self._tasks.get_task(session, task_id)
                if current is None:
                    raise NotFoundError("task", task_id)
                if current.status is TaskStatus.COMPLETED:
                    raise IllegalTransitionError(
                        current.status.value, TaskStatus.CLAIMED.value, "Task is already completed"
                    )
                if current.assigned_to == assignee:
                    return self._hydrate(current, now)
                self._observability.increment("moderation.claim_conflict")
                raise ConflictError(
                    f"Task {task_id} is already claimed by {current.assigned_to}",
                    current_assignee=current.assigned_to,
                )

            task = self._tasks.get_task(session, task_id)
            report = self._reports.get_report(session, task.report_id)
            if task.kind is TaskKind.REVIEW and report is not None and report.status is ReportStatus.PENDING:
                claimer = Actor(user_id=assignee, role=actor.role)
                self._machine.transition(context, report.report_id, ReportStatus.UNDER_REVIEW, claimer, reason="claimed")
            context.touch_report(task.report_id)

        LOGGER.info("Claimed task task_id=%s moderator=%s", task_id, assignee)
        self._observability.emit_event("moderation.claimed", task_id=task_id, moderator_id=assignee)
        return self._hydrate(task, self._clock())

    def unassign(self, task_id: str, actor: Actor) -> ModerationTask:
        """Release a claim; only the claimant or an admin may do so. The report status is kept."""

        if not actor.can_moderate:
            raise PermissionDeniedError("Only moderators and admins may release tasks", details={"role": actor.role.value})
        with self._uow.begin() as context:
            session = context.session
            task = self._tasks.get_task(session, task_id, for_update=True)
            if task is None:
                raise NotFoundError("task", task_id)
            if task.status is not TaskStatus.CLAIMED or not task.assigned_to:
                raise IllegalTransitionError(task.status.value, TaskStatus.PENDING.value, "Task is not claimed")
            if task.assigned_to != actor.user_id and not actor.is_admin:
                raise PermissionDeniedError(
                    "Only the current claimant or an admin may unassign this task",
                    details={"currentAssignee": task.assigned_to},
                )
            now = self._clock()
            if not self._tasks.release(session, task_id, expected_assignee=task.assigned_to, timestamp=now):
                raise ConflictError("Task claim changed while releasing", current_assignee=task.assigned_to)
            released = self._tasks.get_task(session, task_id)
            context.touch_report(task.report_id)

        LOGGER.info("Released task task_id=%s by=%s previous=%s", task_id, actor.user_id, task.assigned_to)
        return self._hydrate(released, self._clock())

    def set_priority(
        self,
        task_id: str,
        priority: str | float | None,
        actor: Actor,
        *,
        reason: str | None = None,
    ) -> ModerationTask:
        """Pin an active task's queue priority (admins only); ``None`` restores ageing.

        ``priority`` is a label (``low``, ``medium``, ``high``) or a score
        between 0 and :data:`MAX_PRIORITY_SCORE`. A pinned score replaces the
        risk-and-age formula until it is cleared.
        """

        if not actor.is_admin:
            raise PermissionDeniedError("Only admins may override queue priority", details={"role": actor.role.value})
        value = _coerce_priority(priority)
        with self._uow.begin() as context:
            session = context.session
            task = self._tasks.get_task(session, task_id, for_update=True)
            if task is None:
                raise NotFoundError("task", task_id)
            if task.status is TaskStatus.COMPLETED:
                raise IllegalTransitionError(task.status.value, task.status.value, "Task is already completed")
            self._tasks.set_priority_override(session, task_id, value, timestamp=self._clock())
            updated = self._tasks.get_task(session, task_id)

        LOGGER.info("Priority override task_id=%s value=%s by=%s reason=%s", task_id, value, actor.user_id, reason)
        self._observability.emit_event(
            "moderation.priority_override",
            task_id=task_id,
            priority=value,
            actor_id=actor.user_id,
            reason=reason,
        )
        return self._hydrate(updated, self._clock())

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        task_id: str,
        decision: Decision | str,
        actor: Actor,
        *,
        reason: str | None = None,
        notes: str | None = None,
    ) -> Dict[str, Any]:
        """Apply a moderator decision to the task's report and close the task.

        Returns:
            ``{"task", "decision", "report", "entity"}`` with domain objects.
        """

        resolved = _coerce_decision(decision)
        if not actor.can_moderate:
            raise PermissionDeniedError("Only moderators and admins may decide tasks", details={"role": actor.role.value})

        with self._observability.timed("moderation.decide"), self._uow.begin() as context:
            session = context.session
            task = self._tasks.get_task(session, task_id, for_update=True)
            if task is None:
                raise NotFoundError("task", task_id)
            if task.status is TaskStatus.COMPLETED:
                raise IllegalTransitionError(task.status.value, resolved.target_status.value, "Task is already completed")
            if task.assigned_to and task.assigned_to != actor.user_id and not actor.is_admin:
                raise ConflictError(
                    f"Task {task_id} is claimed by {task.assigned_to}",
                    current_assignee=task.assigned_to,
                )

            result = self._machine.transition(
                context,
                task.report_id,
                resolved.target_status,
                actor,
                reason=reason,
                notes=notes,
            )
            now = self._clock()
            self._tasks.complete(session, task_id, timestamp=now)
            record = DecisionRecord(
                decision_id=new_decision_id(),
                task_id=task_id,
                report_id=task.report_id,
                decision=resolved,
                moderator_id=actor.user_id,
                reason=reason,
                notes=notes,
                created_at=now,
            )
            self._tasks.insert_decision(session, record)
            completed = self._tasks.get_task(session, task_id)

        self._observability.emit_event(
            "moderation.decided",
            task_id=task_id,
            report_id=task.report_id,
            decision=resolved.value,
            moderator_id=actor.user_id,
            new_status=result.new_status.value,
        )
        return {
            "task": self._hydrate(completed, self._clock()),
            "decision": record,
            "report": result.report,
            "entity": result.entity,
        }

    def bulk_decide(
        self,
        task_ids: Iterable[str],
        decision: Decision | str,
        actor: Actor,
        *,
        reason: str | None = None,
        notes: str | None = None,
    ) -> Dict[str, Any]:
        """Decide each task independently; failures are reported per item."""

        resolved = _coerce_decision(decision)
        results: List[Dict[str, Any]] = []
        seen: set[str] = set()
        for task_id in task_ids:
            if task_id in seen:
                continue
            seen.add(task_id)
            try:
                outcome = self.decide(task_id, resolved, actor, reason=reason, notes=notes)
            except RegistryError as exc:
                LOGGER.info("Bulk decision failed task_id=%s kind=%s reason=%s", task_id, exc.kind, exc.reason)
                results.append({"task_id": task_id, "success": False, "error": exc.to_dict()})
                continue
            results.append(
                {
                    "task_id": task_id,
                    "success": True,
                    "action_taken": resolved.value,
                    "report_status": outcome["report"].status.value,
                }
            )
        successful = sum(1 for item in results if item["success"])
        return {"successful": successful, "failed": len(results) - successful, "results": results}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _on_transition(self, context: WorkContext, report: Report, old_status: ReportStatus, actor: Actor) -> None:
        session = context.session
        new_status = report.status
        active = self._tasks.active_task_for_report(session, report.report_id)
        now = self._clock()

        if new_status.is_terminal or new_status in (ReportStatus.REQUIRES_INFO, ReportStatus.ESCALATED):
            if active is not None:
                self._tasks.complete(session, active.task_id, timestamp=now)
        if new_status is ReportStatus.ESCALATED:
            self.enqueue(context, report, kind=TaskKind.ESCALATION)
        elif new_status is ReportStatus.PENDING and active is None:
            self.enqueue(context, report, kind=TaskKind.REVIEW)

    def _resolve_assignee(self, actor: Actor, moderator_id: Optional[str]) -> str:
        if not actor.can_moderate:
            raise PermissionDeniedError("Only moderators and admins may claim tasks", details={"role": actor.role.value})
        if moderator_id and moderator_id != actor.user_id:
            if not actor.is_admin:
                raise PermissionDeniedError("Only admins may claim tasks on behalf of another moderator")
            return moderator_id
        return actor.user_id

    def _hydrate(self, task: ModerationTask, now: datetime) -> ModerationTask:
        if task.priority_override is not None:
            task.priority_score = task.priority_override
        else:
            age_hours = (now - task.enqueued_at).total_seconds() / 3600.0
            task.priority_score = round(
                priority_score(
                    task.risk_score,
                    age_hours,
                    age_cap_hours=self.settings.moderation.age_cap_hours,
                    age_weight=self.settings.moderation.age_weight,
                ),
                4,
            )
        task.priority = priority_label(task.priority_score)
        task.is_overdue = task.status is not TaskStatus.COMPLETED and task.sla_deadline < now
        return task


def _queue_statuses(status: str | None) -> tuple[str, ...]:
    if status is None or status == "active":
        return ACTIVE_STATUSES
    if status == "all":
        return ()
    try:
        return (TaskStatus(status).value,)
    except ValueError as exc:
        raise ValidationError(
            "Unknown task status filter",
            field_errors={"status": f"'{status}' is not one of: active, all, pending, claimed, completed"},
        ) from exc


def _coerce_priority(value: str | float | None) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str):
        key = value.strip().lower()
        if key in PRIORITY_PINS:
            return PRIORITY_PINS[key]
        try:
            value = float(key)
        except ValueError:
            value = None
    if isinstance(value, (int, float)) and 0 <= value <= MAX_PRIORITY_SCORE:
        return float(value)
    raise ValidationError(
        "Unknown priority",
        field_errors={"priority": f"Use low, medium, high, or a score between 0 and {MAX_PRIORITY_SCORE:.0f}"},
    )


def _coerce_decision(value: Decision | str) -> Decision:
    if isinstance(value, Decision):
        return value
    try:
        return Decision(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in Decision)
        raise ValidationError(
            "Unknown decision",
            field_errors={"decision": f"'{value}' is not one of: {allowed}"},
        ) from exc


__all__ = ["ModerationScheduler"]
