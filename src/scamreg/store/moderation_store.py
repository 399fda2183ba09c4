"""Moderation queue persistence: tasks, atomic claims, and the decision log."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

import sqlalchemy as sa
from sqlalchemy.orm import Session

from scamreg.models import Decision, DecisionRecord, ModerationTask, TaskKind, TaskStatus, ensure_utc
from scamreg.store import sql as sql_schema

LOGGER = logging.getLogger(__name__)

ACTIVE_STATUSES = (TaskStatus.PENDING.value, TaskStatus.CLAIMED.value)


class ModerationStore:
    """Core-statement helpers around ``moderation_tasks`` and ``moderation_decisions``."""

    # -------------------------------------------------------------------------
    # Queue management
    # -------------------------------------------------------------------------
    def insert_task(self, session: Session, task: ModerationTask) -> None:
        session.execute(
            sa.insert(sql_schema.moderation_tasks).values(
                task_id=task.task_id,
                report_id=task.report_id,
                kind=task.kind.value,
                status=task.status.value,
                risk_score=task.risk_score,
                priority_override=task.priority_override,
                assigned_to=task.assigned_to,
                assigned_at=task.assigned_at,
                enqueued_at=task.enqueued_at,
                sla_deadline=task.sla_deadline,
                completed_at=task.completed_at,
                updated_at=task.enqueued_at,
            )
        )
        LOGGER.info("Queued moderation task task_id=%s report_id=%s kind=%s", task.task_id, task.report_id, task.kind.value)

    def get_task(self, session: Session, task_id: str, *, for_update: bool = False) -> Optional[ModerationTask]:
        stmt = sa.select(sql_schema.moderation_tasks).where(sql_schema.moderation_tasks.c.task_id == task_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = session.execute(stmt).mappings().first()
        return _row_to_task(row) if row else None

    def active_task_for_report(self, session: Session, report_id: str) -> Optional[ModerationTask]:
        row = session.execute(
            sa.select(sql_schema.moderation_tasks).where(
                sql_schema.moderation_tasks.c.report_id == report_id,
                sql_schema.moderation_tasks.c.status.in_(ACTIVE_STATUSES),
            )
        ).mappings().first()
        return _row_to_task(row) if row else None

    def try_claim(self, session: Session, task_id: str, moderator_id: str, *, timestamp: datetime) -> bool:
        """Compare-and-set ``assigned_to`` from NULL to ``moderator_id``.

        Returns:
            ``True`` when this call won the claim.
        """

        result = session.execute(
            sa.update(sql_schema.moderation_tasks)
            .where(
                sql_schema.moderation_tasks.c.task_id == task_id,
                sql_schema.moderation_tasks.c.assigned_to.is_(None),
                sql_schema.moderation_tasks.c.status == TaskStatus.PENDING.value,
            )
            .values(
                assigned_to=moderator_id,
                assigned_at=timestamp,
                status=TaskStatus.CLAIMED.value,
                updated_at=timestamp,
            )
        )
        return result.rowcount == 1

    def release(self, session: Session, task_id: str, *, expected_assignee: str, timestamp: datetime) -> bool:
        result = session.execute(
            sa.update(sql_schema.moderation_tasks)
            .where(
                sql_schema.moderation_tasks.c.task_id == task_id,
                sql_schema.moderation_tasks.c.assigned_to == expected_assignee,
                sql_schema.moderation_tasks.c.status == TaskStatus.CLAIMED.value,
            )
            .values(assigned_to=None, assigned_at=None, status=TaskStatus.PENDING.value, updated_at=timestamp)
        )
        return result.rowcount == 1

    def complete(self, session: Session, task_id: str, *, timestamp: datetime) -> bool:
        result = session.execute(
            sa.update(sql_schema.moderation_tasks)
            .where(
                sql_schema.moderation_tasks.c.task_id == task_id,
                sql_schema.moderation_tasks.c.status.in_(ACTIVE_STATUSES),
            )
            .values(status=TaskStatus.COMPLETED.value, completed_at=timestamp, updated_at=timestamp)
        )
        return result.rowcount == 1

    def set_priority_override(
        self, session: Session, task_id: str, value: float | None, *, timestamp: datetime
    ) -> bool:
        """Pin (or, with ``None``, unpin) the queue priority of an active task."""

        result = session.execute(
            sa.update(sql_schema.moderation_tasks)
            .where(
                sql_schema.moderation_tasks.c.task_id == task_id,
                sql_schema.moderation_tasks.c.status.in_(ACTIVE_STATUSES),
            )
            .values(priority_override=value, updated_at=timestamp)
        )
        return result.rowcount == 1

    def list_tasks(
        self,
        session: Session,
        *,
        statuses: Sequence[str] = ACTIVE_STATUSES,
        assigned_to: str | None = None,
        kind: str | None = None,
        category: str | None = None,
        overdue_before: datetime | None = None,
        limit: int | None = None,
    ) -> List[ModerationTask]:
        """Return tasks matching the filters with a snapshot of their reports attached."""

        tasks = sql_schema.moderation_tasks
        reports = sql_schema.reports
        stmt = sa.select(
            tasks,
            reports.c.identifier_type,
            reports.c.identifier_value,
            reports.c.category,
            reports.c.narrative,
            reports.c.amount_lost,
            reports.c.currency,
            reports.c.status.label("report_status"),
            reports.c.reporter_id,
            reports.c.created_at.label("report_created_at"),
        ).join(reports, reports.c.report_id == tasks.c.report_id)
        if statuses:
            stmt = stmt.where(tasks.c.status.in_(list(statuses)))
        if assigned_to:
            stmt = stmt.where(tasks.c.assigned_to == assigned_to)
        if kind:
            stmt = stmt.where(tasks.c.kind == kind)
        if category:
            stmt = stmt.where(reports.c.category == category)
        if overdue_before is not None:
            stmt = stmt.where(tasks.c.sla_deadline < overdue_before)
        stmt = stmt.order_by(tasks.c.enqueued_at.asc(), tasks.c.task_id.asc())
        if limit:
            stmt = stmt.limit(limit)

        results: List[ModerationTask] = []
        for row in session.execute(stmt).mappings():
            task = _row_to_task(row)
            task.report = {
                "id": row["report_id"],
                "identifier_type": row["identifier_type"],
                "identifier_value": row["identifier_value"],
                "category": row["category"],
                "narrative": row["narrative"],
                "amount_lost": float(row["amount_lost"] or 0),
                "currency": row["currency"],
                "status": row["report_status"],
                "reporter_id": row["reporter_id"],
                "created_at": ensure_utc(row["report_created_at"]),
            }
            results.append(task)
        return results

    def count_active(self, session: Session) -> int:
        tasks = sql_schema.moderation_tasks
        return int(
            session.execute(
                sa.select(sa.func.count()).select_from(tasks).where(tasks.c.status.in_(ACTIVE_STATUSES))
            ).scalar_one()
        )

    def count_overdue(self, session: Session, *, now: datetime) -> int:
        tasks = sql_schema.moderation_tasks
        return int(
            session.execute(
                sa.select(sa.func.count())
                .select_from(tasks)
                .where(tasks.c.status.in_(ACTIVE_STATUSES), tasks.c.sla_deadline < now)
            ).scalar_one()
        )

    def count_claimed_by(self, session: Session, moderator_id: str) -> int:
        tasks = sql_schema.moderation_tasks
        return int(
            session.execute(
                sa.select(sa.func.count())
                .select_from(tasks)
                .where(tasks.c.assigned_to == moderator_id, tasks.c.status == TaskStatus.CLAIMED.value)
            ).scalar_one()
        )

    # -------------------------------------------------------------------------
    # Decision log
    # -------------------------------------------------------------------------
    def insert_decision(self, session: Session, record: DecisionRecord) -> None:
        session.execute(
            sa.insert(sql_schema.moderation_decisions).values(
                decision_id=record.decision_id,
                task_id=record.task_id,
                report_id=record.report_id,
                decision=record.decision.value,
                moderator_id=record.moderator_id,
                reason=record.reason,
                notes=record.notes,
                created_at=record.created_at,
            )
        )

    def list_decisions(self, session: Session, report_id: str) -> List[DecisionRecord]:
        rows = session.execute(
            sa.select(sql_schema.moderation_decisions)
            .where(sql_schema.moderation_decisions.c.report_id == report_id)
            .order_by(sql_schema.moderation_decisions.c.created_at.asc(), sql_schema.moderation_decisions.c.decision_id)
        ).mappings()
        return [
            DecisionRecord(
                decision_id=row["decision_id"],
                task_id=row["task_id"],
                report_id=row["report_id"],
                decision=Decision(row["decision"]),
                moderator_id=row["moderator_id"],
                reason=row["reason"],
                notes=row["notes"],
                created_at=ensure_utc(row["created_at"]),
            )
            for row in rows
        ]

    def decisions_by_moderator(
        self, session: Session, moderator_id: str, *, since: datetime | None = None
    ) -> List[Tuple[str, datetime, datetime]]:
        """Return ``(decision, decided_at, started_at)`` for a moderator's decisions.

        ``started_at`` is the claim time, or the enqueue time for tasks decided
        without a claim.
        """

        decisions = sql_schema.moderation_decisions
        tasks = sql_schema.moderation_tasks
        stmt = (
            sa.select(decisions.c.decision, decisions.c.created_at, tasks.c.assigned_at, tasks.c.enqueued_at)
            .join(tasks, tasks.c.task_id == decisions.c.task_id)
            .where(decisions.c.moderator_id == moderator_id)
            .order_by(decisions.c.created_at.asc())
        )
        if since is not None:
            stmt = stmt.where(decisions.c.created_at >= since)
        return [
            (row.decision, ensure_utc(row.created_at), ensure_utc(row.assigned_at or row.enqueued_at))
            for row in session.execute(stmt)
        ]


def new_task_id() -> str:
    return f"task-{uuid.uuid4().hex}"


def new_decision_id() -> str:
    return f"dec-{uuid.uuid4().hex}"


def _row_to_task(row: Any) -> ModerationTask:
    return ModerationTask(
        task_id=row["task_id"],
        report_id=row["report_id"],
        kind=TaskKind(row["kind"]),
        status=TaskStatus(row["status"]),
        risk_score=int(row["risk_score"]),
        enqueued_at=ensure_utc(row["enqueued_at"]),
        sla_deadline=ensure_utc(row["sla_deadline"]),
        assigned_to=row["assigned_to"],
        assigned_at=ensure_utc(row["assigned_at"]),
        completed_at=ensure_utc(row["completed_at"]),
        priority_override=row["priority_override"],
    )


__all__ = ["ACTIVE_STATUSES", "ModerationStore", "new_decision_id", "new_task_id"]
