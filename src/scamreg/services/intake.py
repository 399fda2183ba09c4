"""Service layer coordinating report submission and report reads."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from scamreg.errors import NotFoundError, ValidationError
from scamreg.models import Actor, Category, Channel, Report, ReportStatus, StatusHistoryEntry, ensure_utc, utcnow
from scamreg.normalization import build_identifier
from scamreg.observability import Observability, get_observability
from scamreg.services.aggregator import EntityAggregator
from scamreg.services.moderation import ModerationScheduler
from scamreg.services.risk import report_risk_score
from scamreg.services.unit_of_work import UnitOfWork
from scamreg.settings import Settings, get_settings
from scamreg.store.report_store import ReportStore, new_report_id

LOGGER = logging.getLogger(__name__)

_CURRENCY_RE = re.compile(r"[A-Z]{3}")


@dataclass
class ReportSubmission:
    """Raw report fields as received from a client, before validation."""

    identifier_type: str
    identifier_value: str
    category: str
    narrative: str
    amount_lost: Optional[float] = None
    currency: Optional[str] = None
    incident_date: Optional[datetime] = None
    incident_channel: Optional[str] = None
    country_code: Optional[str] = None
    evidence_refs: List[str] = field(default_factory=list)


class ReportIntakeService:
    """Validate submissions and persist them with their entity link and queue task."""

    def __init__(
        self,
        *,
        unit_of_work: UnitOfWork,
        aggregator: EntityAggregator,
        scheduler: ModerationScheduler,
        report_store: ReportStore | None = None,
        settings: Settings | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._uow = unit_of_work
        self._aggregator = aggregator
        self._scheduler = scheduler
        self._reports = report_store or ReportStore()
        self._observability = observability or get_observability(component="intake", settings=self.settings)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def validate(self, submission: ReportSubmission, reporter: Actor) -> Report:
        """Return an unsaved :class:`Report` or raise with every failing field.

        Raises:
            InvalidIdentifierError: Only the identifier failed to normalize.
            ValidationError: One or more fields are invalid.
        """

        intake = self.settings.intake
        errors: Dict[str, str] = {}
        identifier_error: Optional[ValidationError] = None

        identifier = None
        try:
            identifier = build_identifier(
                submission.identifier_type,
                submission.identifier_value,
                country_code=submission.country_code,
                default_country=intake.default_country,
            )
        except ValidationError as exc:
            identifier_error = exc
            errors.update(exc.field_errors)

        category = None
        try:
            category = Category(str(submission.category or "").strip().lower())
        except ValueError:
            allowed = ", ".join(item.value for item in Category)
            errors["category"] = f"'{submission.category}' is not one of: {allowed}"

        narrative = (submission.narrative or "").strip()
        if len(narrative) < intake.narrative_min_length:
            errors["narrative"] = f"Narrative must be at least {intake.narrative_min_length} characters"
        elif len(narrative) > intake.narrative_max_length:
            errors["narrative"] = f"Narrative must be at most {intake.narrative_max_length} characters"

        amount = submission.amount_lost
        if amount is not None:
            try:
                amount = float(amount)
            except (TypeError, ValueError):
                errors["amountLost"] = "Amount lost must be a number"
                amount = None
            else:
                if not math.isfinite(amount) or amount < 0:
                    errors["amountLost"] = "Amount lost must be a non-negative number"
                elif amount > intake.max_amount_lost:
                    errors["amountLost"] = f"Amount lost cannot exceed {intake.max_amount_lost:.2f}"

        currency = (submission.currency or intake.default_currency).strip().upper()
        if not _CURRENCY_RE.fullmatch(currency):
            errors["currency"] = "Currency must be a 3-letter code"

        channel = None
        if submission.incident_channel:
            try:
                channel = Channel(str(submission.incident_channel).strip().lower())
            except ValueError:
                allowed = ", ".join(item.value for item in Channel)
                errors["incidentChannel"] = f"'{submission.incident_channel}' is not one of: {allowed}"

        incident_date = ensure_utc(submission.incident_date)
        now = utcnow()
        if incident_date is not None and incident_date > now:
            errors["incidentDate"] = "Incident date cannot be in the future"

        if errors or identifier is None or category is None:
            if identifier_error is not None and set(errors) == set(identifier_error.field_errors):
                raise identifier_error
            raise ValidationError("Report submission is invalid", field_errors=errors)

        amount_value = round(amount or 0.0, 2)
        return Report(
            report_id=new_report_id(),
            identifier=identifier,
            category=category,
            narrative=narrative,
            amount_lost=amount_value,
            currency=currency,
            channel=channel,
            incident_date=incident_date,
            risk_score=report_risk_score(category, amount_value),
            status=ReportStatus.PENDING,
            reporter_id=reporter.user_id,
            entity_id=None,
            evidence_refs=[ref for ref in (submission.evidence_refs or []) if ref],
            created_at=now,
            updated_at=now,
        )

    def submit(self, submission: ReportSubmission, reporter: Actor) -> Dict[str, Any]:
        """Validate and persist a report, link its entity, and queue it for review.

        All three writes share one transaction; a failure in any of them leaves
        nothing behind.

        Returns:
            ``{"report", "entity", "task"}`` with domain objects.
        """

        try:
            report = self.validate(submission, reporter)
        except ValidationError as exc:
            self._observability.increment("report.rejected_submission", tags={"kind": exc.kind})
            raise

        with self._observability.timed("report.submit"), self._uow.begin() as context:
            session = context.session
            self._reports.insert_report(session, report)
            self._reports.append_history(
                session,
                report_id=report.report_id,
                old_status="",
                new_status=ReportStatus.PENDING.value,
                actor_id=reporter.user_id,
                reason="submitted",
                timestamp=report.created_at,
            )
            entity = self._aggregator.link_report(session, report)
            task = self._scheduler.enqueue(context, report)
            context.touch_report(report.report_id)
            context.touch_entity(entity.entity_id)

        LOGGER.info(
            "Accepted report report_id=%s entity_id=%s task_id=%s risk=%d",
            report.report_id,
            entity.entity_id,
            task.task_id,
            report.risk_score,
        )
        self._observability.emit_event(
            "report.submitted",
            report_id=report.report_id,
            entity_id=entity.entity_id,
            category=report.category.value,
            identifier_type=report.identifier.type.value,
            risk_score=report.risk_score,
        )
        return {"report": report, "entity": entity, "task": task}

    # ------------------------------------------------------------------
    # Retrieval helpers for API wiring
    # ------------------------------------------------------------------
    def get_report(self, report_id: str) -> Report:
        with self._uow.read() as session:
            report = self._reports.get_report(session, report_id)
        if report is None:
            raise NotFoundError("report", report_id)
        return report

    def history(self, report_id: str) -> List[StatusHistoryEntry]:
        with self._uow.read() as session:
            if self._reports.get_report(session, report_id) is None:
                raise NotFoundError("report", report_id)
            return self._reports.list_history(session, report_id)

    def list_mine(self, reporter: Actor, *, page: int = 1, limit: int = 20) -> List[Report]:
        page = max(page, 1)
        limit = max(1, min(limit, self.settings.search.max_limit))
        with self._uow.read() as session:
            return self._reports.list_for_reporter(session, reporter.user_id, limit=limit, offset=(page - 1) * limit)

    def similar(self, report_id: str, *, limit: int = 5) -> List[Report]:
        """Other non-rejected reports in the same category as ``report_id``."""

        with self._uow.read() as session:
            report = self._reports.get_report(session, report_id)
            if report is None:
                raise NotFoundError("report", report_id)
            return self._reports.list_similar(session, report, limit=max(1, min(limit, 50)))


__all__ = ["ReportIntakeService", "ReportSubmission"]
