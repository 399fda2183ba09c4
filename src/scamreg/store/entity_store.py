"""Entity aggregate persistence with optimistic version stamps."""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session

from scamreg.models import Entity, EntityStatus, IdentifierType, ensure_utc
from scamreg.store import sql as sql_schema

LOGGER = logging.getLogger(__name__)

EntitySort = Literal["risk_score", "report_count", "updated_at", "total_amount_lost"]


class EntityStore:
    """Query and compare-and-set helpers for the ``entities`` table."""

    def get(self, session: Session, entity_id: str) -> Optional[Entity]:
        row = session.execute(
            sa.select(sql_schema.entities).where(sql_schema.entities.c.entity_id == entity_id)
        ).mappings().first()
        return _row_to_entity(row) if row else None

    def get_by_identifier(self, session: Session, primary_identifier: str) -> Optional[Entity]:
        row = session.execute(
            sa.select(sql_schema.entities).where(sql_schema.entities.c.primary_identifier == primary_identifier)
        ).mappings().first()
        return _row_to_entity(row) if row else None

    def insert(self, session: Session, entity: Entity) -> None:
        """Insert a new entity; raises ``IntegrityError`` if the identifier already exists."""

        session.execute(
            sa.insert(sql_schema.entities).values(
                entity_id=entity.entity_id,
                primary_identifier=entity.primary_identifier,
                identifier_type=entity.identifier_type.value,
                display_name=entity.display_name,
                risk_score=entity.risk_score,
                status=entity.status.value,
                report_count=entity.report_count,
                total_amount_lost=entity.total_amount_lost,
                tags=list(entity.tags),
                version=entity.version,
                created_at=entity.created_at,
                updated_at=entity.updated_at,
            )
        )
        LOGGER.info("Created entity entity_id=%s identifier=%s", entity.entity_id, entity.primary_identifier)

    def compare_and_set(
        self,
        session: Session,
        *,
        entity_id: str,
        expected_version: int,
        values: Dict[str, Any],
        timestamp: datetime,
    ) -> bool:
        """Apply ``values`` only if the row still carries ``expected_version``.

        Returns:
            ``True`` when exactly one row was updated (and its version bumped).
        """

        payload = dict(values)
        if "status" in payload and isinstance(payload["status"], EntityStatus):
            payload["status"] = payload["status"].value
        result = session.execute(
            sa.update(sql_schema.entities)
            .where(
                sql_schema.entities.c.entity_id == entity_id,
                sql_schema.entities.c.version == expected_version,
            )
            .values(**payload, version=expected_version + 1, updated_at=timestamp)
        )
        return result.rowcount == 1

    def list_entities(
        self,
        session: Session,
        *,
        page: int = 1,
        limit: int = 20,
        status: str | None = None,
        search: str | None = None,
        sort_by: EntitySort = "risk_score",
    ) -> Dict[str, Any]:
        """Return one page of entities plus pagination totals."""

        page = max(page, 1)
        limit = max(limit, 1)
        table = sql_schema.entities
        conditions = []
        if status:
            conditions.append(table.c.status == status)
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            conditions.append(
                sa.or_(
                    sa.func.lower(table.c.display_name).like(pattern),
                    table.c.primary_identifier.like(pattern),
                    sa.func.lower(sa.cast(table.c.tags, sa.Text())).like(pattern),
                )
            )

        count_stmt = sa.select(sa.func.count()).select_from(table)
        list_stmt = sa.select(table)
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            list_stmt = list_stmt.where(*conditions)

        sort_column = getattr(table.c, sort_by, table.c.risk_score)
        list_stmt = (
            list_stmt.order_by(sort_column.desc(), table.c.entity_id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        total = int(session.execute(count_stmt).scalar_one())
        rows = session.execute(list_stmt).mappings()
        return {
            "data": [_row_to_entity(row) for row in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def stats(self, session: Session, *, high_risk_threshold: int = 80) -> Dict[str, int]:
        table = sql_schema.entities
        row = session.execute(
            sa.select(
                sa.func.count().label("total"),
                sa.func.coalesce(
                    sa.func.sum(sa.case((table.c.risk_score >= high_risk_threshold, 1), else_=0)), 0
                ).label("high_risk"),
                sa.func.coalesce(
                    sa.func.sum(sa.case((table.c.status == EntityStatus.DISPUTED.value, 1), else_=0)), 0
                ).label("under_review"),
                sa.func.coalesce(sa.func.sum(table.c.report_count), 0).label("community_reports"),
            )
        ).one()
        return {
            "total_entities": int(row.total),
            "high_risk": int(row.high_risk),
            "under_review": int(row.under_review),
            "community_reports": int(row.community_reports),
        }

    def list_all(self, session: Session) -> List[Entity]:
        rows = session.execute(sa.select(sql_schema.entities).order_by(sql_schema.entities.c.entity_id)).mappings()
        return [_row_to_entity(row) for row in rows]

    def list_updated_since(self, session: Session, since: datetime) -> List[Entity]:
        rows = session.execute(
            sa.select(sql_schema.entities)
            .where(sql_schema.entities.c.updated_at >= since)
            .order_by(sql_schema.entities.c.entity_id)
        ).mappings()
        return [_row_to_entity(row) for row in rows]

    def get_many(self, session: Session, entity_ids: List[str]) -> List[Entity]:
        if not entity_ids:
            return []
        rows = session.execute(
            sa.select(sql_schema.entities).where(sql_schema.entities.c.entity_id.in_(entity_ids))
        ).mappings()
        return [_row_to_entity(row) for row in rows]


def new_entity_id() -> str:
    return f"ent-{uuid.uuid4().hex}"


def _row_to_entity(row: Any) -> Entity:
    return Entity(
        entity_id=row["entity_id"],
        primary_identifier=row["primary_identifier"],
        identifier_type=IdentifierType(row["identifier_type"]),
        display_name=row["display_name"],
        risk_score=int(row["risk_score"]),
        status=EntityStatus(row["status"]),
        report_count=int(row["report_count"]),
        total_amount_lost=float(row["total_amount_lost"] or 0),
        tags=list(row["tags"] or []),
        version=int(row["version"]),
        created_at=ensure_utc(row["created_at"]),
        updated_at=ensure_utc(row["updated_at"]),
    )


__all__ = ["EntityStore", "new_entity_id"]
