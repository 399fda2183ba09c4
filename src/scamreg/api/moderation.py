"""Moderation API router.

Endpoints:
- GET /moderation/queue
- GET /moderation/stats
- GET /moderation/overdue
- GET /moderation/moderator-stats
- GET /moderation/tasks/{task_id}
- POST /moderation/tasks/{task_id}/claim
- POST /moderation/tasks/{task_id}/unassign
- PATCH /moderation/tasks/{task_id}/priority
- POST /moderation/tasks/{task_id}/decision
- POST /moderation/bulk-decision
"""

from __future__ import annotations

from typing import List, Optional, Union

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scamreg.api.auth import require_role
from scamreg.api.serializers import camelize, camelize_all
from scamreg.models import Actor
from scamreg.services.factories import get_registry
from scamreg.services.moderation import ModerationScheduler

router = APIRouter(prefix="/moderation", tags=["moderation"])

require_moderator = require_role("moderator")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClaimRequest(_CamelModel):
    moderator_id: Optional[str] = None


class PriorityRequest(_CamelModel):
    priority: Optional[Union[float, str]]  # low | medium | high | score; null clears
    reason: Optional[str] = None


class DecisionRequest(_CamelModel):
    decision: str  # approve | reject | escalate | require_info
    reason: Optional[str] = None
    notes: Optional[str] = None


class BulkDecisionRequest(_CamelModel):
    task_ids: List[str] = Field(min_length=1, max_length=200)
    decision: str
    reason: Optional[str] = None
    notes: Optional[str] = None


def get_scheduler() -> ModerationScheduler:
    return get_registry().scheduler


# -----------------------
# Routes
# -----------------------


@router.get("/queue", summary="List moderation tasks by priority")
def list_queue(
    status: Optional[str] = Query(None, description="active (default), all, pending, claimed, completed"),
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    kind: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    overdue_only: bool = Query(False, alias="overdueOnly"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(require_moderator),
    scheduler: ModerationScheduler = Depends(get_scheduler),
):
    result = scheduler.list_queue(
        status=status,
        assigned_to=assigned_to,
        kind=kind,
        category=category,
        overdue_only=overdue_only,
        page=page,
        limit=limit,
    )
    return camelize(result)


@router.get("/stats", summary="Queue counts per report status")
def queue_stats(
    actor: Actor = Depends(require_moderator),
    scheduler: ModerationScheduler = Depends(get_scheduler),
):
    return camelize(scheduler.stats())


@router.get("/overdue", summary="Active tasks past their SLA deadline")
def list_overdue(
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(require_moderator),
    scheduler: ModerationScheduler = Depends(get_scheduler),
):
    tasks = scheduler.list_overdue(limit=limit)
    return {"tasks": camelize_all(tasks), "count": len(tasks)}


@router.get("/moderator-stats", summary="Decision stats for one moderator")
def moderator_stats(
    moderator_id: Optional[str] = Query(None, alias="moderatorId"),
    days: Optional[int] = Query(None, ge=1, le=365),
    actor: Actor = Depends(require_moderator),
    scheduler: ModerationScheduler = Depends(get_scheduler),
):
    return camelize(scheduler.moderator_stats(actor, moderator_id=moderator_id, days=days))


@router.get("/tasks/{task_id}", summary="Fetch a moderation task")
def get_task(
    task_id: str,
    actor: Actor = Depends(require_moderator),
    scheduler: ModerationScheduler = Depends(get_scheduler),
):
    return camelize(scheduler.get_task(task_id))


@router.post("/tasks/{task_id}/claim", summary="Claim a task")
def claim_task(
    task_id: str,
    payload: Optional[ClaimRequest] = Body(None),
    actor: Actor = Depends(require_moderator),
    scheduler: ModerationScheduler = Depends(get_scheduler),
):
    moderator_id = payload.moderator_id if payload else None
    return camelize(scheduler.claim(task_id, actor, moderator_id=moderator_id))


@router.post("/tasks/{task_id}/unassign", summary="Release a claimed task")
def unassign_task(
    task_id: str,
    actor: Actor = Depends(require_moderator),
    scheduler: ModerationScheduler = Depends(get_scheduler),
):
    return camelize(scheduler.unassign(task_id, actor))


@router.patch("/tasks/{task_id}/priority", summary="Pin or clear a task's queue priority")
def set_task_priority(
    task_id: str,
    payload: PriorityRequest,
    actor: Actor = Depends(require_moderator),
    scheduler: ModerationScheduler = Depends(get_scheduler),
):
    return camelize(scheduler.set_priority(task_id, payload.priority, actor, reason=payload.reason))


@router.post("/tasks/{task_id}/decision", summary="Record a moderation decision")
def decide_task(
    task_id: str,
    payload: DecisionRequest,
    actor: Actor = Depends(require_moderator),
    scheduler: ModerationScheduler = Depends(get_scheduler),
):
    outcome = scheduler.decide(task_id, payload.decision, actor, reason=payload.reason, notes=payload.notes)
    return camelize(outcome)


@router.post("/bulk-decision", summary="Apply one decision to many tasks")
def bulk_decision(
    payload: BulkDecisionRequest,
    actor: Actor = Depends(require_moderator),
    scheduler: ModerationScheduler = Depends(get_scheduler),
):
    outcome = scheduler.bulk_decide(
        payload.task_ids, payload.decision, actor, reason=payload.reason, notes=payload.notes
    )
    return camelize(outcome)
