"""Report status state machine.

Every status change after submission goes through :meth:`StatusStateMachine.transition`,
which validates the edge, updates the report, appends the history entry,
re-syncs the owning entity, and notifies listeners (the moderation scheduler)
inside the caller's transaction. An illegal edge raises before anything is
written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional

from scamreg.errors import IllegalTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from scamreg.models import Actor, Entity, Report, ReportStatus, utcnow
from scamreg.observability import Observability, get_observability
from scamreg.services.aggregator import EntityAggregator
from scamreg.services.unit_of_work import UnitOfWork, WorkContext
from scamreg.settings import Settings, get_settings
from scamreg.store.report_store import ReportStore

LOGGER = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[ReportStatus, FrozenSet[ReportStatus]] = {
    ReportStatus.PENDING: frozenset(
        {ReportStatus.UNDER_REVIEW, ReportStatus.VERIFIED, ReportStatus.REJECTED, ReportStatus.REQUIRES_INFO}
    ),
    ReportStatus.UNDER_REVIEW: frozenset(
        {ReportStatus.VERIFIED, ReportStatus.REJECTED, ReportStatus.REQUIRES_INFO, ReportStatus.ESCALATED}
    ),
    ReportStatus.REQUIRES_INFO: frozenset({ReportStatus.PENDING, ReportStatus.REJECTED}),
    ReportStatus.ESCALATED: frozenset({ReportStatus.VERIFIED, ReportStatus.REJECTED}),
    ReportStatus.VERIFIED: frozenset(),
    ReportStatus.REJECTED: frozenset(),
}

TransitionListener = Callable[[WorkContext, Report, ReportStatus, Actor], None]


@dataclass(slots=True)
class TransitionResult:
    """Outcome of a committed (or about to be committed) transition."""

    report: Report
    old_status: ReportStatus
    new_status: ReportStatus
    entity: Optional[Entity]


def is_allowed(old_status: ReportStatus, new_status: ReportStatus) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(old_status, frozenset())


class StatusStateMachine:
    """Apply legal report transitions atomically with their side effects."""

    def __init__(
        self,
        *,
        unit_of_work: UnitOfWork,
        aggregator: EntityAggregator,
        report_store: ReportStore | None = None,
        settings: Settings | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._uow = unit_of_work
        self._aggregator = aggregator
        self._reports = report_store or ReportStore()
        self._observability = observability or get_observability(component="lifecycle", settings=self.settings)
        self._listeners: List[TransitionListener] = []

    def add_listener(self, listener: TransitionListener) -> None:
        """Register a callback run inside the transaction after each transition."""

        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def transition(
        self,
        context: WorkContext,
        report_id: str,
        new_status: ReportStatus | str,
        actor: Actor,
        *,
        reason: str | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """Move ``report_id`` to ``new_status`` inside ``context``'s transaction.

        Raises:
            PermissionDeniedError: The actor is not a moderator or admin.
            NotFoundError: The report does not exist.
            IllegalTransitionError: The edge is not in :data:`ALLOWED_TRANSITIONS`.
        """

        target = _coerce_status(new_status)
        if not actor.can_moderate:
            raise PermissionDeniedError(
                "Only moderators and admins may change report status",
                details={"role": actor.role.value},
            )

        session = context.session
        report = self._reports.get_report(session, report_id, for_update=True)
        if report is None:
            raise NotFoundError("report", report_id)

        old_status = report.status
        if old_status.is_terminal:
            self._observability.increment("report.transition_rejected")
            raise IllegalTransitionError(old_status.value, target.value, f"Report is already {old_status.value}")
        if not is_allowed(old_status, target):
            self._observability.increment("report.transition_rejected")
            raise IllegalTransitionError(old_status.value, target.value)

        now = utcnow()
        self._reports.update_status(session, report.report_id, target, timestamp=now)
        self._reports.append_history(
            session,
            report_id=report.report_id,
            old_status=old_status.value,
            new_status=target.value,
            actor_id=actor.user_id,
            reason=reason,
            notes=notes,
            timestamp=now,
        )
        report.status = target
        report.updated_at = now

        entity = self._aggregator.relink_on_status_change(session, report)
        context.touch_report(report.report_id)
        context.touch_entity(entity.entity_id)

        for listener in self._listeners:
            listener(context, report, old_status, actor)

        LOGGER.info(
            "Report transition report_id=%s %s->%s actor=%s",
            report.report_id,
            old_status.value,
            target.value,
            actor.user_id,
        )
        self._observability.emit_event(
            "report.transition",
            report_id=report.report_id,
            old_status=old_status.value,
            new_status=target.value,
            actor_id=actor.user_id,
            entity_id=entity.entity_id,
        )
        return TransitionResult(report=report, old_status=old_status, new_status=target, entity=entity)

    def change_status(
        self,
        report_id: str,
        new_status: ReportStatus | str,
        actor: Actor,
        *,
        reason: str | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """Run :meth:`transition` in its own transaction."""

        with self._uow.begin() as context:
            return self.transition(context, report_id, new_status, actor, reason=reason, notes=notes)


def _coerce_status(value: ReportStatus | str) -> ReportStatus:
    if isinstance(value, ReportStatus):
        return value
    try:
        return ReportStatus(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(status.value for status in ReportStatus)
        raise ValidationError(
            "Unknown report status",
            field_errors={"status": f"'{value}' is not one of: {allowed}"},
        ) from exc


__all__ = ["ALLOWED_TRANSITIONS", "StatusStateMachine", "TransitionResult", "is_allowed"]
