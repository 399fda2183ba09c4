"""Entity resolution and aggregate risk maintenance."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scamreg.errors import ConflictError, ConsistencyViolationError
from scamreg.models import Entity, Report, ensure_utc, utcnow
from scamreg.observability import Observability, get_observability
from scamreg.services.risk import blend_entity_risk, derive_entity_status
from scamreg.settings import Settings, get_settings
from scamreg.store.entity_store import EntityStore, new_entity_id
from scamreg.store.report_store import ReportStore

LOGGER = logging.getLogger(__name__)


class EntityAggregator:
    """Keep each Entity consistent with the reports that share its identifier.

    Writes go through an optimistic version check. When another transaction
    bumped the version first, the aggregate is re-read and recomputed, up to
    ``moderation.aggregate_max_retries`` attempts with exponential backoff,
    before a :class:`ConflictError` is surfaced.
    """

    def __init__(
        self,
        *,
        entity_store: EntityStore | None = None,
        report_store: ReportStore | None = None,
        settings: Settings | None = None,
        observability: Observability | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self._entities = entity_store or EntityStore()
        self._reports = report_store or ReportStore()
        self._observability = observability or get_observability(component="aggregator", settings=self.settings)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def link_report(self, session: Session, report: Report) -> Entity:
        """Attach a freshly inserted report to its entity, creating it on first sighting."""

        key = report.identifier.normalized_value
        for attempt in range(self._max_attempts):
            entity = self._entities.get_by_identifier(session, key)
            if entity is None:
                created = self._try_create(session, report)
                if created is not None:
                    self._reports.set_entity(session, report.report_id, created.entity_id)
                    report.entity_id = created.entity_id
                    return created
                self._backoff(attempt, key)
                continue

            scores, statuses, _ = self._constituents(session, key)
            tags = sorted(set(entity.tags) | {report.category.value, report.identifier.type.value})
            values = {
                "report_count": entity.report_count + 1,
                "total_amount_lost": round(entity.total_amount_lost + report.amount_lost, 2),
                "risk_score": self._blend(scores),
                "status": derive_entity_status(statuses),
                "tags": tags,
            }
            now = utcnow()
            if self._entities.compare_and_set(
                session,
                entity_id=entity.entity_id,
                expected_version=entity.version,
                values=values,
                timestamp=now,
            ):
                self._reports.set_entity(session, report.report_id, entity.entity_id)
                report.entity_id = entity.entity_id
                self._observability.increment("entity.linked")
                return _apply(entity, values, now)
            self._backoff(attempt, key)

        raise self._exhausted(key)

    def relink_on_status_change(self, session: Session, report: Report) -> Entity:
        """Recompute status and risk of the report's entity; counts stay unchanged."""

        key = report.identifier.normalized_value
        for attempt in range(self._max_attempts):
            entity = self._find_owner(session, report)
            if entity is None:
                LOGGER.error(
                    "Entity missing for linked report report_id=%s identifier=%s entity_id=%s",
                    report.report_id,
                    key,
                    report.entity_id,
                )
                self._observability.emit_event(
                    "entity.consistency_violation",
                    report_id=report.report_id,
                    identifier=key,
                )
                raise ConsistencyViolationError(
                    f"Entity for identifier {key} is missing while report {report.report_id} is linked",
                    details={"reportId": report.report_id, "identifier": key},
                )

            scores, statuses, _ = self._constituents(session, key)
            values = {"risk_score": self._blend(scores), "status": derive_entity_status(statuses)}
            now = utcnow()
            if self._entities.compare_and_set(
                session,
                entity_id=entity.entity_id,
                expected_version=entity.version,
                values=values,
                timestamp=now,
            ):
                return _apply(entity, values, now)
            self._backoff(attempt, key)

        raise self._exhausted(key)

    def audit(self, session: Session, *, repair: bool = False) -> List[Dict[str, Any]]:
        """Compare every entity against its reports and optionally rewrite drifted aggregates.

        Returns:
            One dictionary per identifier whose stored aggregate differs from the
            value recomputed from reports (``expected`` vs ``actual``). With
            ``repair`` each entry also carries ``repaired``; it is ``False`` when
            concurrent writers kept moving the version past every retry.
        """

        grouped: Dict[str, List[Report]] = defaultdict(list)
        for report in self._reports.iter_all(session):
            grouped[report.identifier.normalized_value].append(report)

        drift: List[Dict[str, Any]] = []
        for key in sorted(grouped):
            reports = grouped[key]
            expected = self._expected_values(reports)
            entity = self._entities.get_by_identifier(session, key)
            if entity is None:
                entry: Dict[str, Any] = {"identifier": key, "entity_id": None, "expected": expected, "actual": None}
                if repair:
                    self._recreate(session, reports, expected)
                    entry["repaired"] = True
                drift.append(entry)
                continue
            actual = _aggregate_of(entity)
            if actual != expected:
                entry = {"identifier": key, "entity_id": entity.entity_id, "expected": expected, "actual": actual}
                if repair:
                    entry["repaired"] = self._repair(session, key)
                drift.append(entry)
        if drift:
            unrepaired = sum(1 for entry in drift if entry.get("repaired") is False)
            LOGGER.warning(
                "Entity audit found %d drifted aggregates (repair=%s unrepaired=%d)", len(drift), repair, unrepaired
            )
        return drift

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @property
    def _max_attempts(self) -> int:
        return max(1, self.settings.moderation.aggregate_max_retries)

    def _blend(self, scores: Sequence[int]) -> int:
        return blend_entity_risk(
            scores,
            max_weight=self.settings.risk.entity_max_weight,
            average_weight=self.settings.risk.entity_average_weight,
        )

    def _constituents(self, session: Session, key: str) -> Tuple[List[int], List[str], List[float]]:
        rows = self._reports.scores_and_statuses(session, key)
        return [row[0] for row in rows], [row[1] for row in rows], [row[2] for row in rows]

    def _find_owner(self, session: Session, report: Report) -> Optional[Entity]:
        if report.entity_id:
            return self._entities.get(session, report.entity_id)
        return self._entities.get_by_identifier(session, report.identifier.normalized_value)

    def _try_create(self, session: Session, report: Report) -> Optional[Entity]:
        now = utcnow()
        entity = Entity(
            entity_id=new_entity_id(),
            primary_identifier=report.identifier.normalized_value,
            identifier_type=report.identifier.type,
            display_name=report.identifier.raw_value or report.identifier.normalized_value,
            risk_score=self._blend([report.risk_score]),
            status=derive_entity_status([report.status]),
            report_count=1,
            total_amount_lost=round(report.amount_lost, 2),
            tags=sorted({report.category.value, report.identifier.type.value}),
            version=1,
            created_at=now,
            updated_at=now,
        )
        try:
            with session.begin_nested():
                self._entities.insert(session, entity)
        except IntegrityError:
            LOGGER.info("Entity creation raced identifier=%s; retrying as update", entity.primary_identifier)
            self._observability.increment("entity.create_race")
            return None
        self._observability.emit_event(
            "entity.created",
            entity_id=entity.entity_id,
            identifier=entity.primary_identifier,
            report_id=report.report_id,
        )
        return entity

    def _repair(self, session: Session, key: str) -> bool:
        """Rewrite one aggregate from a fresh read, retrying on version conflicts."""

        for attempt in range(self._max_attempts):
            entity = self._entities.get_by_identifier(session, key)
            rows = self._reports.scores_and_statuses(session, key)
            if entity is None or not rows:
                return False
            expected = self._expected_from_rows(rows)
            if _aggregate_of(entity) == expected:
                return True
            if self._entities.compare_and_set(
                session,
                entity_id=entity.entity_id,
                expected_version=entity.version,
                values=expected,
                timestamp=utcnow(),
            ):
                self._observability.increment("entity.repaired")
                return True
            self._backoff(attempt, key)

        LOGGER.warning("Entity repair did not settle identifier=%s", key)
        return False

    def _expected_values(self, reports: Sequence[Report]) -> Dict[str, Any]:
        return self._expected_from_rows(
            [(report.risk_score, report.status.value, report.amount_lost) for report in reports]
        )

    def _expected_from_rows(self, rows: Sequence[Tuple[int, str, float]]) -> Dict[str, Any]:
        return {
            "report_count": len(rows),
            "total_amount_lost": round(sum(row[2] for row in rows), 2),
            "risk_score": self._blend([row[0] for row in rows]),
            "status": derive_entity_status([row[1] for row in rows]).value,
        }

    def _recreate(self, session: Session, reports: Sequence[Report], expected: Dict[str, Any]) -> None:
        first = min(reports, key=lambda report: (ensure_utc(report.created_at), report.report_id))
        now = utcnow()
        entity = Entity(
            entity_id=new_entity_id(),
            primary_identifier=first.identifier.normalized_value,
            identifier_type=first.identifier.type,
            display_name=first.identifier.raw_value or first.identifier.normalized_value,
            risk_score=expected["risk_score"],
            status=derive_entity_status([report.status for report in reports]),
            report_count=expected["report_count"],
            total_amount_lost=expected["total_amount_lost"],
            tags=sorted({report.category.value for report in reports} | {first.identifier.type.value}),
            version=1,
            created_at=now,
            updated_at=now,
        )
        self._entities.insert(session, entity)
        for report in reports:
            self._reports.set_entity(session, report.report_id, entity.entity_id)

    def _backoff(self, attempt: int, key: str) -> None:
        self._observability.increment("entity.version_conflict")
        LOGGER.info("Entity aggregate conflict identifier=%s attempt=%d", key, attempt + 1)
        delay_ms = self.settings.moderation.aggregate_retry_backoff_ms * (2**attempt)
        if delay_ms > 0:
            self._sleep(delay_ms / 1000.0)

    def _exhausted(self, key: str) -> ConflictError:
        LOGGER.warning("Entity aggregate retries exhausted identifier=%s", key)
        return ConflictError(f"Concurrent updates to entity {key} did not settle; retry the request")


def _aggregate_of(entity: Entity) -> Dict[str, Any]:
    return {
        "report_count": entity.report_count,
        "total_amount_lost": round(entity.total_amount_lost, 2),
        "risk_score": entity.risk_score,
        "status": entity.status.value,
    }


def _apply(entity: Entity, values: Dict[str, Any], timestamp) -> Entity:
    for name, value in values.items():
        setattr(entity, name, value)
    entity.version += 1
    entity.updated_at = timestamp
    return entity


__all__ = ["EntityAggregator"]
