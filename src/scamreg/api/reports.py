"""FastAPI router exposing report submission and report lifecycle endpoints.

Endpoints:
- POST /reports
- GET /reports/mine
- GET /reports/{report_id}
- GET /reports/{report_id}/history
- GET /reports/{report_id}/similar
- PATCH /reports/{report_id}/status
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scamreg.api.auth import require_role, require_token
from scamreg.api.serializers import camelize, camelize_all
from scamreg.models import Actor
from scamreg.services.factories import get_registry
from scamreg.services.intake import ReportIntakeService, ReportSubmission
from scamreg.services.lifecycle import StatusStateMachine

router = APIRouter(prefix="/reports", tags=["reports"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReportCreateRequest(_CamelModel):
    identifier_type: str
    identifier_value: str
    category: str
    narrative: str
    amount_lost: Optional[float] = None
    currency: Optional[str] = None
    incident_date: Optional[datetime] = None
    incident_channel: Optional[str] = None
    country_code: Optional[str] = None
    evidence_refs: List[str] = Field(default_factory=list)


class StatusUpdateRequest(_CamelModel):
    status: str
    reason: Optional[str] = None
    notes: Optional[str] = None


def get_intake_service() -> ReportIntakeService:
    return get_registry().intake


def get_state_machine() -> StatusStateMachine:
    return get_registry().state_machine


# -----------------------
# Routes
# -----------------------


@router.post("", summary="Submit a scam report", status_code=201)
def submit_report(
    payload: ReportCreateRequest,
    actor: Actor = Depends(require_token),
    service: ReportIntakeService = Depends(get_intake_service),
):
    result = service.submit(ReportSubmission(**payload.model_dump()), actor)
    report = result["report"]
    return camelize(
        {
            "id": report.report_id,
            "status": report.status.value,
            "risk_score": report.risk_score,
            "created_at": report.created_at,
            "entity_id": report.entity_id,
            "task_id": result["task"].task_id,
        }
    )


@router.get("/mine", summary="List the caller's reports")
def list_my_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_token),
    service: ReportIntakeService = Depends(get_intake_service),
):
    reports = service.list_mine(actor, page=page, limit=limit)
    return {"reports": camelize_all(reports), "count": len(reports), "page": page, "limit": limit}


@router.get("/{report_id}", summary="Fetch a report")
def get_report(
    report_id: str,
    actor: Actor = Depends(require_token),
    service: ReportIntakeService = Depends(get_intake_service),
):
    return camelize(service.get_report(report_id))


@router.get("/{report_id}/history", summary="Status history of a report")
def get_report_history(
    report_id: str,
    actor: Actor = Depends(require_token),
    service: ReportIntakeService = Depends(get_intake_service),
):
    entries = service.history(report_id)
    return {"history": camelize_all(entries), "count": len(entries)}


@router.get("/{report_id}/similar", summary="Other reports in the same category")
def get_similar_reports(
    report_id: str,
    limit: int = Query(5, ge=1, le=50),
    actor: Actor = Depends(require_token),
    service: ReportIntakeService = Depends(get_intake_service),
):
    reports = service.similar(report_id, limit=limit)
    return {"reports": camelize_all(reports), "count": len(reports)}


@router.patch("/{report_id}/status", summary="Move a report to a new status")
def update_report_status(
    report_id: str,
    payload: StatusUpdateRequest,
    actor: Actor = Depends(require_role("moderator")),
    machine: StatusStateMachine = Depends(get_state_machine),
):
    result = machine.change_status(report_id, payload.status, actor, reason=payload.reason, notes=payload.notes)
    return camelize(
        {
            "report": result.report,
            "old_status": result.old_status.value,
            "new_status": result.new_status.value,
            "entity": result.entity,
        }
    )
