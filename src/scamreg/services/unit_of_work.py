"""Transaction scope shared by the registry services."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Set

from sqlalchemy.orm import Session, sessionmaker

LOGGER = logging.getLogger(__name__)

CommitListener = Callable[[Set[str], Set[str]], None]


@dataclass
class WorkContext:
    """Open transaction plus the report/entity ids it touched."""

    session: Session
    touched_reports: Set[str] = field(default_factory=set)
    touched_entities: Set[str] = field(default_factory=set)

    def touch_report(self, report_id: str) -> None:
        self.touched_reports.add(report_id)

    def touch_entity(self, entity_id: str | None) -> None:
        if entity_id:
            self.touched_entities.add(entity_id)


class UnitOfWork:
    """Open one transaction per mutation and announce what it committed.

    Listeners run only after a successful commit, receiving the touched report
    and entity ids. A failing listener is logged and does not undo the commit;
    derived state (the search index) can always be rebuilt from the store.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory
        self._listeners: List[CommitListener] = []

    def add_commit_listener(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    @contextmanager
    def begin(self) -> Iterator[WorkContext]:
        session = self._session_factory()
        context = WorkContext(session=session)
        try:
            yield context
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        self._notify(context)

    @contextmanager
    def read(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.rollback()
            session.close()

    def _notify(self, context: WorkContext) -> None:
        if not (context.touched_reports or context.touched_entities):
            return
        for listener in self._listeners:
            try:
                listener(set(context.touched_reports), set(context.touched_entities))
            except Exception:
                LOGGER.exception(
                    "Commit listener failed reports=%s entities=%s",
                    sorted(context.touched_reports),
                    sorted(context.touched_entities),
                )


__all__ = ["UnitOfWork", "WorkContext"]
