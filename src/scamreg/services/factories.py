"""Factory helpers that assemble the registry services from configuration.

These helpers centralize how the engine, stores, and services are wired so
the API layer, scripts, and tests share one object graph. The SQL engine is
taken from :mod:`scamreg.store.sql`, which honors ``SCAMREG_DATABASE_URL``
and the storage settings.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from scamreg.models import utcnow
from scamreg.observability import get_observability
from scamreg.search.index import InvertedIndex
from scamreg.services.aggregator import EntityAggregator
from scamreg.services.entities import EntityDirectory
from scamreg.services.intake import ReportIntakeService
from scamreg.services.lifecycle import StatusStateMachine
from scamreg.services.moderation import ModerationScheduler
from scamreg.services.search import SearchIndexRefresher, SearchService
from scamreg.services.unit_of_work import UnitOfWork
from scamreg.settings import Settings, get_settings
from scamreg.store.entity_store import EntityStore
from scamreg.store.moderation_store import ModerationStore
from scamreg.store.report_store import ReportStore
from scamreg.store.sql import build_engine, init_db, session_factory

LOGGER = logging.getLogger(__name__)

_REGISTRY_LOCK = threading.Lock()
_REGISTRY: Optional["Registry"] = None


@dataclass
class Registry:
    """Fully wired service graph sharing one engine and one search index."""

    settings: Settings
    engine: Engine
    unit_of_work: UnitOfWork
    report_store: ReportStore
    entity_store: EntityStore
    moderation_store: ModerationStore
    aggregator: EntityAggregator
    state_machine: StatusStateMachine
    scheduler: ModerationScheduler
    intake: ReportIntakeService
    entities: EntityDirectory
    index: InvertedIndex
    refresher: SearchIndexRefresher
    search: SearchService

    def close(self) -> None:
        self.refresher.close()
        self.engine.dispose()


def build_registry(
    settings: Settings | None = None,
    *,
    engine: Engine | None = None,
    database_url: str | None = None,
    async_index_refresh: bool | None = None,
    index_sync_interval: float | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> Registry:
    """Create tables if needed and return a wired :class:`Registry`.

    Args:
        settings: Settings override; defaults to :func:`get_settings`.
        engine: Pre-built engine (tests pass one bound to ``tmp_path``).
        database_url: URL used when ``engine`` is not supplied.
        async_index_refresh: Override ``search.async_refresh``.
        index_sync_interval: Override ``search.sync_interval_seconds``; 0 disables polling.
        clock: Time source for queue ageing and search recency.
    """

    resolved = settings or get_settings()
    engine = engine or build_engine(url=database_url, settings=resolved)
    init_db(engine)

    uow = UnitOfWork(session_factory(settings=resolved, engine=engine))
    reports = ReportStore()
    entities = EntityStore()
    tasks = ModerationStore()

    aggregator = EntityAggregator(
        entity_store=entities,
        report_store=reports,
        settings=resolved,
        observability=get_observability(component="aggregator", settings=resolved),
    )
    machine = StatusStateMachine(
        unit_of_work=uow,
        aggregator=aggregator,
        report_store=reports,
        settings=resolved,
        observability=get_observability(component="lifecycle", settings=resolved),
    )
    scheduler = ModerationScheduler(
        unit_of_work=uow,
        state_machine=machine,
        moderation_store=tasks,
        report_store=reports,
        settings=resolved,
        observability=get_observability(component="moderation", settings=resolved),
        clock=clock,
    )
    intake = ReportIntakeService(
        unit_of_work=uow,
        aggregator=aggregator,
        scheduler=scheduler,
        report_store=reports,
        settings=resolved,
        observability=get_observability(component="intake", settings=resolved),
    )

    index = InvertedIndex(k1=resolved.search.bm25_k1, b=resolved.search.bm25_b)
    refresher = SearchIndexRefresher(
        index=index,
        unit_of_work=uow,
        report_store=reports,
        entity_store=entities,
        settings=resolved,
        asynchronous=async_index_refresh,
        sync_interval=index_sync_interval,
    )
    uow.add_commit_listener(refresher)
    refresher.rebuild()
    refresher.start_sync()
    search = SearchService(
        index=index,
        unit_of_work=uow,
        report_store=reports,
        settings=resolved,
        observability=get_observability(component="search", settings=resolved),
        clock=clock,
    )

    directory = EntityDirectory(unit_of_work=uow, entity_store=entities, report_store=reports, settings=resolved)

    LOGGER.info("Registry ready url=%s documents=%d", engine.url.render_as_string(hide_password=True), len(index))
    return Registry(
        settings=resolved,
        engine=engine,
        unit_of_work=uow,
        report_store=reports,
        entity_store=entities,
        moderation_store=tasks,
        aggregator=aggregator,
        state_machine=machine,
        scheduler=scheduler,
        intake=intake,
        entities=directory,
        index=index,
        refresher=refresher,
        search=search,
    )


def get_registry() -> Registry:
    """Return the process-wide registry, building it on first use."""

    global _REGISTRY
    with _REGISTRY_LOCK:
        if _REGISTRY is None:
            _REGISTRY = build_registry()
        return _REGISTRY


def reset_registry() -> None:
    """Dispose the process-wide registry (used in tests)."""

    global _REGISTRY
    with _REGISTRY_LOCK:
        if _REGISTRY is not None:
            _REGISTRY.close()
        _REGISTRY = None


__all__ = ["Registry", "build_registry", "get_registry", "reset_registry"]
