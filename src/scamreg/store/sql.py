"""SQLAlchemy metadata and engine helpers for the registry tables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Engine, event
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import URL
from sqlalchemy.orm import sessionmaker

from scamreg.settings import Settings, get_settings

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
TIMESTAMP = sa.DateTime(timezone=True)
UUID_TYPE = sa.String(length=64)
MONEY = sa.Numeric(14, 2, asdecimal=False)
MONEY_TOTAL = sa.Numeric(20, 2, asdecimal=False)

METADATA = sa.MetaData()

entities = sa.Table(
    "entities",
    METADATA,
    sa.Column("entity_id", UUID_TYPE, primary_key=True),
    sa.Column("primary_identifier", sa.Text(), nullable=False),
    sa.Column("identifier_type", sa.Text(), nullable=False),
    sa.Column("display_name", sa.Text(), nullable=False),
    sa.Column("risk_score", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("status", sa.Text(), nullable=False, server_default="alleged"),
    sa.Column("report_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("total_amount_lost", MONEY_TOTAL, nullable=False, server_default="0"),
    sa.Column("tags", JSON_TYPE, nullable=True),
    sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.UniqueConstraint("primary_identifier", name="uq_entities_primary_identifier"),
    sa.CheckConstraint("risk_score BETWEEN 0 AND 100", name="ck_entities_risk_score"),
    sa.CheckConstraint("report_count >= 0", name="ck_entities_report_count"),
)
sa.Index("idx_entities_risk_score", entities.c.risk_score)
sa.Index("idx_entities_status", entities.c.status)

reports = sa.Table(
    "reports",
    METADATA,
    sa.Column("report_id", UUID_TYPE, primary_key=True),
    sa.Column("identifier_type", sa.Text(), nullable=False),
    sa.Column("identifier_value", sa.Text(), nullable=False),
    sa.Column("normalized_identifier", sa.Text(), nullable=False),
    sa.Column("country_code", sa.Text(), nullable=True),
    sa.Column("category", sa.Text(), nullable=False),
    sa.Column("narrative", sa.Text(), nullable=False),
    sa.Column("amount_lost", MONEY, nullable=False, server_default="0"),
    sa.Column("currency", sa.String(length=3), nullable=False),
    sa.Column("incident_channel", sa.Text(), nullable=True),
    sa.Column("incident_date", TIMESTAMP, nullable=True),
    sa.Column("risk_score", sa.Integer(), nullable=False),
    sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
    sa.Column("reporter_id", sa.Text(), nullable=False),
    sa.Column("entity_id", UUID_TYPE, sa.ForeignKey("entities.entity_id", ondelete="RESTRICT"), nullable=True),
    sa.Column("evidence_refs", JSON_TYPE, nullable=True),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.CheckConstraint("risk_score BETWEEN 0 AND 100", name="ck_reports_risk_score"),
    sa.CheckConstraint("amount_lost >= 0", name="ck_reports_amount_lost"),
)
sa.Index("idx_reports_normalized_identifier", reports.c.normalized_identifier)
sa.Index("idx_reports_status", reports.c.status)
sa.Index("idx_reports_category_created", reports.c.category, reports.c.created_at)
sa.Index("idx_reports_reporter", reports.c.reporter_id)

moderation_tasks = sa.Table(
    "moderation_tasks",
    METADATA,
    sa.Column("task_id", UUID_TYPE, primary_key=True),
    sa.Column("report_id", UUID_TYPE, sa.ForeignKey("reports.report_id", ondelete="CASCADE"), nullable=False),
    sa.Column("kind", sa.Text(), nullable=False, server_default="review"),
    sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
    sa.Column("risk_score", sa.Integer(), nullable=False),
    sa.Column("priority_override", sa.Float(), nullable=True),
    sa.Column("assigned_to", sa.Text(), nullable=True),
    sa.Column("assigned_at", TIMESTAMP, nullable=True),
    sa.Column("enqueued_at", TIMESTAMP, nullable=False),
    sa.Column("sla_deadline", TIMESTAMP, nullable=False),
    sa.Column("completed_at", TIMESTAMP, nullable=True),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_moderation_tasks_status", moderation_tasks.c.status, moderation_tasks.c.sla_deadline)
sa.Index("idx_moderation_tasks_report", moderation_tasks.c.report_id)
sa.Index(
    "uq_moderation_tasks_active_report",
    moderation_tasks.c.report_id,
    unique=True,
    sqlite_where=moderation_tasks.c.status != "completed",
    postgresql_where=moderation_tasks.c.status != "completed",
)

status_history = sa.Table(
    "status_history",
    METADATA,
    sa.Column("history_id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("report_id", UUID_TYPE, sa.ForeignKey("reports.report_id", ondelete="CASCADE"), nullable=False),
    sa.Column("old_status", sa.Text(), nullable=False, server_default=""),
    sa.Column("new_status", sa.Text(), nullable=False),
    sa.Column("actor_id", sa.Text(), nullable=False),
    sa.Column("reason", sa.Text(), nullable=True),
    sa.Column("notes", sa.Text(), nullable=True),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_status_history_report", status_history.c.report_id, status_history.c.history_id)

moderation_decisions = sa.Table(
    "moderation_decisions",
    METADATA,
    sa.Column("decision_id", UUID_TYPE, primary_key=True),
    sa.Column("task_id", UUID_TYPE, sa.ForeignKey("moderation_tasks.task_id", ondelete="CASCADE"), nullable=False),
    sa.Column("report_id", UUID_TYPE, sa.ForeignKey("reports.report_id", ondelete="CASCADE"), nullable=False),
    sa.Column("decision", sa.Text(), nullable=False),
    sa.Column("moderator_id", sa.Text(), nullable=False),
    sa.Column("reason", sa.Text(), nullable=True),
    sa.Column("notes", sa.Text(), nullable=True),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_moderation_decisions_report", moderation_decisions.c.report_id)


def _resolve_database_url(settings: Settings | None = None) -> str:
    """Return the SQLAlchemy URL considering overrides and configured backend."""

    url_override = os.getenv("SCAMREG_DATABASE_URL")
    if url_override:
        return url_override

    resolved = settings or get_settings()
    if resolved.storage.database_url:
        return resolved.storage.database_url

    backend = resolved.storage.structured_backend
    if backend == "sqlite":
        sqlite_path = Path(resolved.storage.sqlite_path)
        sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        return URL.create("sqlite", database=sqlite_path.as_posix()).render_as_string(hide_password=False)

    raise NotImplementedError(f"Backend '{backend}' requires storage.database_url to be set")


def _configure_sqlite(engine: Engine) -> None:
    """Serialize SQLite writers with ``BEGIN IMMEDIATE`` and enable WAL for files."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        # Hand transaction control to SQLAlchemy so the "begin" hook below owns BEGIN.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            if engine.url.database and engine.url.database != ":memory:":
                cursor.execute("PRAGMA journal_mode=WAL")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection):  # pragma: no cover - driver hook
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    *,
    url: str | None = None,
    echo: bool = False,
    settings: Settings | None = None,
) -> Engine:
    """Instantiate a SQLAlchemy engine aligned with project settings.

    Args:
        url: Explicit database URL; defaults to the configured backend.
        echo: Whether to log emitted SQL.
        settings: Settings override used to resolve the URL and timeouts.
    """

    resolved = settings or get_settings()
    database_url = url or _resolve_database_url(resolved)
    connect_args: dict[str, Any] = {}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = resolved.storage.sqlite_busy_timeout_seconds
    engine = sa.create_engine(database_url, echo=echo, future=True, pool_pre_ping=True, connect_args=connect_args)
    if is_sqlite:
        _configure_sqlite(engine)
    return engine


def init_db(engine: Engine) -> None:
    """Create every registry table that does not exist yet."""

    METADATA.create_all(engine)


def session_factory(*, settings: Settings | None = None, engine: Engine | None = None) -> sessionmaker:
    """Return a configured sessionmaker bound to the active engine."""

    bound = engine or build_engine(settings=settings)
    return sessionmaker(bind=bound, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


__all__ = [
    "METADATA",
    "build_engine",
    "entities",
    "init_db",
    "moderation_decisions",
    "moderation_tasks",
    "reports",
    "session_factory",
    "status_history",
]
