"""Read-side helpers for entity profiles."""

from __future__ import annotations

from typing import Any, Dict

from scamreg.errors import NotFoundError, ValidationError
from scamreg.services.unit_of_work import UnitOfWork
from scamreg.settings import Settings, get_settings
from scamreg.store.entity_store import EntityStore
from scamreg.store.report_store import ReportStore

ENTITY_SORT_FIELDS = {
    "risk_score": "risk_score",
    "riskScore": "risk_score",
    "report_count": "report_count",
    "reportCount": "report_count",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
    "total_amount_lost": "total_amount_lost",
    "totalAmountLost": "total_amount_lost",
}
ENTITY_STATUSES = ("alleged", "confirmed", "disputed", "cleared")


class EntityDirectory:
    """List, fetch, and summarize entities."""

    def __init__(
        self,
        *,
        unit_of_work: UnitOfWork,
        entity_store: EntityStore | None = None,
        report_store: ReportStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._uow = unit_of_work
        self._entities = entity_store or EntityStore()
        self._reports = report_store or ReportStore()

    def list_entities(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        status: str | None = None,
        search: str | None = None,
        sort_by: str = "risk_score",
    ) -> Dict[str, Any]:
        column = ENTITY_SORT_FIELDS.get(sort_by)
        errors: Dict[str, str] = {}
        if column is None:
            errors["sortBy"] = f"'{sort_by}' is not one of: risk_score, report_count, updated_at, total_amount_lost"
        if status and status not in ENTITY_STATUSES:
            errors["status"] = f"'{status}' is not one of: {', '.join(ENTITY_STATUSES)}"
        if errors:
            raise ValidationError("Invalid entity listing request", field_errors=errors)

        limit = max(1, min(limit, self.settings.search.max_limit))
        with self._uow.read() as session:
            return self._entities.list_entities(
                session, page=page, limit=limit, status=status, search=search, sort_by=column
            )

    def get_entity(self, entity_id: str, *, report_limit: int = 50) -> Dict[str, Any]:
        """Return ``{"entity", "reports"}`` for ``entity_id``."""

        with self._uow.read() as session:
            entity = self._entities.get(session, entity_id)
            if entity is None:
                raise NotFoundError("entity", entity_id)
            reports = self._reports.list_for_identifier(session, entity.primary_identifier, limit=report_limit)
        return {"entity": entity, "reports": reports}

    def stats(self) -> Dict[str, int]:
        with self._uow.read() as session:
            return self._entities.stats(session, high_risk_threshold=self.settings.risk.high_risk_threshold)


__all__ = ["EntityDirectory"]
