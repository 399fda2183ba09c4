"""Report persistence and the append-only status history."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.orm import Session

from scamreg.models import (
    Category,
    Channel,
    Identifier,
    IdentifierType,
    Report,
    ReportStatus,
    StatusHistoryEntry,
    ensure_utc,
    utcnow,
)
from scamreg.store import sql as sql_schema

LOGGER = logging.getLogger(__name__)


class ReportStore:
    """Core-statement helpers around ``reports`` and ``status_history``.

    Methods take the caller's :class:`~sqlalchemy.orm.Session` so that a report
    write, its history entry, and the entity resync share one transaction.
    """

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------
    def insert_report(self, session: Session, report: Report) -> None:
        session.execute(
            sa.insert(sql_schema.reports).values(
                report_id=report.report_id,
                identifier_type=report.identifier.type.value,
                identifier_value=report.identifier.raw_value,
                normalized_identifier=report.identifier.normalized_value,
                country_code=report.identifier.country_code,
                category=report.category.value,
                narrative=report.narrative,
                amount_lost=report.amount_lost,
                currency=report.currency,
                incident_channel=report.channel.value if report.channel else None,
                incident_date=report.incident_date,
                risk_score=report.risk_score,
                status=report.status.value,
                reporter_id=report.reporter_id,
                entity_id=report.entity_id,
                evidence_refs=list(report.evidence_refs),
                created_at=report.created_at,
                updated_at=report.updated_at,
            )
        )
        LOGGER.info(
            "Inserted report report_id=%s category=%s identifier=%s",
            report.report_id,
            report.category.value,
            report.identifier.normalized_value,
        )

    def get_report(self, session: Session, report_id: str, *, for_update: bool = False) -> Optional[Report]:
        stmt = sa.select(sql_schema.reports).where(sql_schema.reports.c.report_id == report_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = session.execute(stmt).mappings().first()
        return _row_to_report(row) if row else None

    def get_reports(self, session: Session, report_ids: Sequence[str]) -> List[Report]:
        if not report_ids:
            return []
        rows = session.execute(
            sa.select(sql_schema.reports).where(sql_schema.reports.c.report_id.in_(list(report_ids)))
        ).mappings()
        return [_row_to_report(row) for row in rows]

    def set_entity(self, session: Session, report_id: str, entity_id: str) -> None:
        session.execute(
            sa.update(sql_schema.reports)
            .where(sql_schema.reports.c.report_id == report_id)
            .values(entity_id=entity_id)
        )

    def update_status(self, session: Session, report_id: str, status: ReportStatus, *, timestamp: datetime) -> None:
        session.execute(
            sa.update(sql_schema.reports)
            .where(sql_schema.reports.c.report_id == report_id)
            .values(status=status.value, updated_at=timestamp)
        )

    def scores_and_statuses(self, session: Session, normalized_identifier: str) -> List[tuple[int, str, float]]:
        """Return ``(risk_score, status, amount_lost)`` for every report on an identifier."""

        rows = session.execute(
            sa.select(
                sql_schema.reports.c.risk_score,
                sql_schema.reports.c.status,
                sql_schema.reports.c.amount_lost,
            ).where(sql_schema.reports.c.normalized_identifier == normalized_identifier)
        ).all()
        return [(int(row.risk_score), row.status, float(row.amount_lost or 0)) for row in rows]

    def list_for_identifier(self, session: Session, normalized_identifier: str, *, limit: int = 50) -> List[Report]:
        rows = session.execute(
            sa.select(sql_schema.reports)
            .where(sql_schema.reports.c.normalized_identifier == normalized_identifier)
            .order_by(sql_schema.reports.c.created_at.desc(), sql_schema.reports.c.report_id.asc())
            .limit(limit)
        ).mappings()
        return [_row_to_report(row) for row in rows]

    def list_for_reporter(self, session: Session, reporter_id: str, *, limit: int = 50, offset: int = 0) -> List[Report]:
        rows = session.execute(
            sa.select(sql_schema.reports)
            .where(sql_schema.reports.c.reporter_id == reporter_id)
            .order_by(sql_schema.reports.c.created_at.desc(), sql_schema.reports.c.report_id.asc())
            .offset(offset)
            .limit(limit)
        ).mappings()
        return [_row_to_report(row) for row in rows]

    def list_similar(self, session: Session, report: Report, *, limit: int = 5) -> List[Report]:
        """Other reports in the same category, newest first."""

        rows = session.execute(
            sa.select(sql_schema.reports)
            .where(
                sql_schema.reports.c.category == report.category.value,
                sql_schema.reports.c.report_id != report.report_id,
                sql_schema.reports.c.status != ReportStatus.REJECTED.value,
            )
            .order_by(sql_schema.reports.c.created_at.desc(), sql_schema.reports.c.report_id.asc())
            .limit(limit)
        ).mappings()
        return [_row_to_report(row) for row in rows]

    def category_counts(self, session: Session, *, since: datetime | None = None) -> Dict[str, int]:
        stmt = sa.select(sql_schema.reports.c.category, sa.func.count().label("total")).group_by(
            sql_schema.reports.c.category
        )
        if since is not None:
            stmt = stmt.where(sql_schema.reports.c.created_at >= since)
        return {row.category: int(row.total) for row in session.execute(stmt)}

    def iter_all(self, session: Session, *, batch_size: int = 500) -> Iterable[Report]:
        offset = 0
        while True:
            rows = list(
                session.execute(
                    sa.select(sql_schema.reports)
                    .order_by(sql_schema.reports.c.report_id.asc())
                    .offset(offset)
                    .limit(batch_size)
                ).mappings()
            )
            if not rows:
                return
            for row in rows:
                yield _row_to_report(row)
            offset += len(rows)

    def list_updated_since(self, session: Session, since: datetime) -> List[Report]:
        rows = session.execute(
            sa.select(sql_schema.reports)
            .where(sql_schema.reports.c.updated_at >= since)
            .order_by(sql_schema.reports.c.report_id.asc())
        ).mappings()
        return [_row_to_report(row) for row in rows]

    def status_counts(self, session: Session) -> Dict[str, int]:
        stmt = sa.select(sql_schema.reports.c.status, sa.func.count().label("total")).group_by(
            sql_schema.reports.c.status
        )
        return {row.status: int(row.total) for row in session.execute(stmt)}

    def count(self, session: Session) -> int:
        return int(session.execute(sa.select(sa.func.count()).select_from(sql_schema.reports)).scalar_one())

    # -------------------------------------------------------------------------
    # Status history
    # -------------------------------------------------------------------------
    def append_history(
        self,
        session: Session,
        *,
        report_id: str,
        old_status: str,
        new_status: str,
        actor_id: str,
        reason: str | None = None,
        notes: str | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        session.execute(
            sa.insert(sql_schema.status_history).values(
                report_id=report_id,
                old_status=old_status or "",
                new_status=new_status,
                actor_id=actor_id,
                reason=reason,
                notes=notes,
                created_at=timestamp or utcnow(),
            )
        )

    def list_history(self, session: Session, report_id: str) -> List[StatusHistoryEntry]:
        rows = session.execute(
            sa.select(sql_schema.status_history)
            .where(sql_schema.status_history.c.report_id == report_id)
            .order_by(sql_schema.status_history.c.history_id.asc())
        ).mappings()
        return [
            StatusHistoryEntry(
                entry_id=str(row["history_id"]),
                report_id=row["report_id"],
                old_status=row["old_status"] or "",
                new_status=row["new_status"],
                actor_id=row["actor_id"],
                reason=row["reason"],
                notes=row["notes"],
                created_at=ensure_utc(row["created_at"]),
            )
            for row in rows
        ]


def new_report_id() -> str:
    return f"rpt-{uuid.uuid4().hex}"


def _row_to_report(row: Any) -> Report:
    channel = row["incident_channel"]
    return Report(
        report_id=row["report_id"],
        identifier=Identifier(
            type=IdentifierType(row["identifier_type"]),
            raw_value=row["identifier_value"],
            normalized_value=row["normalized_identifier"],
            country_code=row["country_code"],
        ),
        category=Category(row["category"]),
        narrative=row["narrative"],
        amount_lost=float(row["amount_lost"] or 0),
        currency=row["currency"],
        channel=Channel(channel) if channel else None,
        incident_date=ensure_utc(row["incident_date"]),
        risk_score=int(row["risk_score"]),
        status=ReportStatus(row["status"]),
        reporter_id=row["reporter_id"],
        entity_id=row["entity_id"],
        evidence_refs=list(row["evidence_refs"] or []),
        created_at=ensure_utc(row["created_at"]),
        updated_at=ensure_utc(row["updated_at"]),
    )


__all__ = ["ReportStore", "new_report_id"]
