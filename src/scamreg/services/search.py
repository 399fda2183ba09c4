"""Search and ranking over the in-process index, plus its refresh pipeline."""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Literal, Optional, Set

from scamreg.errors import ValidationError
from scamreg.models import Category, IdentifierType, ReportStatus, ensure_utc, utcnow
from scamreg.observability import Observability, get_observability
from scamreg.search.index import (
    DOC_TYPE_ENTITY,
    DOC_TYPE_REPORT,
    IndexSnapshot,
    InvertedIndex,
    SearchDocument,
    document_from_entity,
    document_from_report,
    identifier_tokens,
    tokenize,
)
from scamreg.services.risk import risk_bucket
from scamreg.services.unit_of_work import UnitOfWork
from scamreg.settings import Settings, get_settings
from scamreg.store.entity_store import EntityStore
from scamreg.store.report_store import ReportStore

LOGGER = logging.getLogger(__name__)

SortBy = Literal["relevance", "date", "risk_score"]
SORT_OPTIONS = ("relevance", "date", "risk_score")
DOC_TYPE_OPTIONS = (DOC_TYPE_REPORT, DOC_TYPE_ENTITY, "all")


@dataclass
class SearchQuery:
    """Normalized search request."""

    text: str | None = None
    category: str | None = None
    status: str | None = None
    identifier_type: str | None = None
    risk_score_min: int | None = None
    risk_score_max: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    doc_type: str = DOC_TYPE_REPORT
    page: int = 1
    limit: int | None = None
    sort_by: str = "relevance"
    include_facets: bool = False
    include_suggestions: bool = False


@dataclass
class SearchHit:
    """Single ranked search result."""

    doc_id: str
    doc_type: str
    score: float
    relevance: float
    record: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.doc_id,
            "type": self.doc_type,
            "score": round(self.score, 6),
            "relevance": round(self.relevance, 6),
            **{key: value for key, value in self.record.items() if key != "id"},
        }


class SearchService:
    """Filter, score, and paginate index documents.

    ``final = w_rel * relevance + w_risk * risk / 100 + w_rec * 0.5 ** (age_days / half_life)``
    where relevance is BM25 normalized by the best hit (0 without query text).
    """

    def __init__(
        self,
        *,
        index: InvertedIndex,
        unit_of_work: UnitOfWork | None = None,
        report_store: ReportStore | None = None,
        settings: Settings | None = None,
        observability: Observability | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.index = index
        self._uow = unit_of_work
        self._reports = report_store or ReportStore()
        self._observability = observability or get_observability(component="search", settings=self.settings)
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def search(self, query: SearchQuery) -> Dict[str, Any]:
        """Execute ``query`` against a snapshot of the index."""

        self._validate(query)
        limit = self._effective_limit(query.limit)
        page = max(query.page or 1, 1)

        with self._observability.timed("search.query"):
            snapshot = self.index.snapshot()
            candidates = [doc for doc in snapshot.documents.values() if self._matches(doc, query)]
            hits = self._rank(snapshot, candidates, query)

        start = (page - 1) * limit
        total = len(hits)
        payload: Dict[str, Any] = {
            "results": [hit.to_dict() for hit in hits[start : start + limit]],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }
        if query.include_facets:
            payload["facets"] = _facets(candidates)
        if query.include_suggestions:
            payload["suggestions"] = self.autocomplete(query.text or "", limit=self.settings.search.suggestion_count)

        self._observability.increment("search.queries", tags={"sort_by": query.sort_by})
        LOGGER.debug("Search text=%r matched=%d page=%d limit=%d", query.text, total, page, limit)
        return payload

    def autocomplete(self, prefix: str, *, limit: int | None = None) -> List[str]:
        """Identifier values and category names starting with ``prefix``, most frequent first."""

        needle = (prefix or "").strip().lower()
        if len(needle) < self.settings.search.autocomplete_min_length:
            return []
        cap = self.settings.search.autocomplete_max_limit
        size = max(1, min(limit or 10, cap))
        matches = [
            (key, count)
            for key, count in self.index.suggestion_counts().items()
            if key.startswith(needle) or (key.startswith("+") and key[1:].startswith(needle))
        ]
        matches.sort(key=lambda item: (-item[1], item[0]))
        return [key for key, _ in matches[:size]]

    def trending(self, *, days: int | None = None, limit: int = 10) -> List[Dict[str, Any]]:
        """Report counts per category over the trailing window."""

        if self._uow is None:
            return []
        window = days or self.settings.search.trending_window_days
        since = self._clock() - timedelta(days=window)
        with self._uow.read() as session:
            counts = self._reports.category_counts(session, since=since)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [{"category": category, "count": count} for category, count in ranked[: max(limit, 1)]]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _effective_limit(self, requested: int | None) -> int:
        config = self.settings.search
        if not requested or requested < 1:
            return config.default_limit
        return min(requested, config.max_limit)

    def _validate(self, query: SearchQuery) -> None:
        errors: Dict[str, str] = {}
        if query.sort_by not in SORT_OPTIONS:
            errors["sortBy"] = f"'{query.sort_by}' is not one of: {', '.join(SORT_OPTIONS)}"
        if query.doc_type not in DOC_TYPE_OPTIONS:
            errors["type"] = f"'{query.doc_type}' is not one of: {', '.join(DOC_TYPE_OPTIONS)}"
        if query.category and query.category not in {item.value for item in Category}:
            errors["category"] = f"'{query.category}' is not a known category"
        if query.identifier_type and query.identifier_type not in {item.value for item in IdentifierType}:
            errors["identifierType"] = f"'{query.identifier_type}' is not a known identifier type"
        if query.status and query.doc_type == DOC_TYPE_REPORT and query.status not in {s.value for s in ReportStatus}:
            errors["status"] = f"'{query.status}' is not a report status"
        if (
            query.risk_score_min is not None
            and query.risk_score_max is not None
            and query.risk_score_min > query.risk_score_max
        ):
            errors["riskScoreMin"] = "riskScoreMin cannot exceed riskScoreMax"
        date_from, date_to = ensure_utc(query.date_from), ensure_utc(query.date_to)
        if date_from and date_to and date_from > date_to:
            errors["dateFrom"] = "dateFrom cannot be after dateTo"
        if errors:
            raise ValidationError("Invalid search query", field_errors=errors)

    @staticmethod
    def _matches(doc: SearchDocument, query: SearchQuery) -> bool:
        if query.doc_type != "all" and doc.doc_type != query.doc_type:
            return False
        if query.category and query.category not in doc.categories:
            return False
        if query.status and doc.status != query.status:
            return False
        if query.identifier_type and doc.identifier_type != query.identifier_type:
            return False
        if query.risk_score_min is not None and doc.risk_score < query.risk_score_min:
            return False
        if query.risk_score_max is not None and doc.risk_score > query.risk_score_max:
            return False
        created = ensure_utc(doc.created_at)
        if query.date_from is not None and created < ensure_utc(query.date_from):
            return False
        if query.date_to is not None and created > ensure_utc(query.date_to):
            return False
        return True

    def _rank(self, snapshot: IndexSnapshot, candidates: List[SearchDocument], query: SearchQuery) -> List[SearchHit]:
        config = self.settings.search
        terms = _query_terms(query.text)
        relevance: Dict[str, float] = {}
        if terms:
            raw = snapshot.bm25(terms, candidates=[doc.doc_id for doc in candidates])
            # Text queries only return documents that match at least one term.
            candidates = [doc for doc in candidates if raw.get(doc.doc_id, 0.0) > 0.0]
            top = max(raw.values(), default=0.0)
            if top > 0:
                relevance = {doc_id: score / top for doc_id, score in raw.items()}

        now = self._clock()
        hits: List[SearchHit] = []
        for doc in candidates:
            rel = relevance.get(doc.doc_id, 0.0)
            age_days = max((now - ensure_utc(doc.created_at)).total_seconds() / 86400.0, 0.0)
            recency = 0.5 ** (age_days / config.recency_half_life_days)
            final = (
                config.relevance_weight * rel
                + config.risk_weight * (doc.risk_score / 100.0)
                + config.recency_weight * recency
            )
            hits.append(SearchHit(doc_id=doc.doc_id, doc_type=doc.doc_type, score=final, relevance=rel, record=doc.payload))

        if query.sort_by == "date":
            by_id = sorted(hits, key=lambda hit: hit.doc_id)
            by_id.sort(key=lambda hit: ensure_utc(snapshot.documents[hit.doc_id].created_at), reverse=True)
            return by_id
        if query.sort_by == "risk_score":
            hits.sort(key=lambda hit: (-snapshot.documents[hit.doc_id].risk_score, -hit.score, hit.doc_id))
            return hits
        hits.sort(key=lambda hit: (-hit.score, hit.doc_id))
        return hits


def _query_terms(text: str | None) -> List[str]:
    if not text or not text.strip():
        return []
    terms = tokenize(text)
    for token in text.split():
        terms.extend(identifier_tokens(token))
    return terms


def _facets(documents: List[SearchDocument]) -> Dict[str, Dict[str, int]]:
    categories: Dict[str, int] = {}
    statuses: Dict[str, int] = {}
    identifier_types: Dict[str, int] = {}
    buckets: Dict[str, int] = {"low": 0, "medium": 0, "high": 0}
    for doc in documents:
        for category in doc.categories:
            categories[category] = categories.get(category, 0) + 1
        statuses[doc.status] = statuses.get(doc.status, 0) + 1
        identifier_types[doc.identifier_type] = identifier_types.get(doc.identifier_type, 0) + 1
        bucket = risk_bucket(doc.risk_score)
        buckets[bucket] += 1
    return {
        "categories": dict(sorted(categories.items())),
        "statuses": dict(sorted(statuses.items())),
        "identifier_types": dict(sorted(identifier_types.items())),
        "risk_levels": buckets,
    }


# ---------------------------------------------------------------------------
# Index refresh
# ---------------------------------------------------------------------------


class SearchIndexRefresher:
    """Re-project committed reports and entities into the index.

    Registered as a :class:`UnitOfWork` commit listener. With
    ``search.async_refresh`` the work runs on a single background thread, so
    results become visible shortly after commit; :meth:`flush` waits for
    everything queued so far.

    Commits made by other processes never reach the listener. :meth:`pull_changes`
    re-projects every row whose ``updated_at`` is past the last pull (minus
    ``search.sync_overlap_seconds`` for transactions still open at that time),
    and :meth:`start_sync` runs it every ``search.sync_interval_seconds``.
    """

    def __init__(
        self,
        *,
        index: InvertedIndex,
        unit_of_work: UnitOfWork,
        report_store: ReportStore | None = None,
        entity_store: EntityStore | None = None,
        settings: Settings | None = None,
        asynchronous: bool | None = None,
        sync_interval: float | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.index = index
        self._uow = unit_of_work
        self._reports = report_store or ReportStore()
        self._entities = entity_store or EntityStore()
        use_async = self.settings.search.async_refresh if asynchronous is None else asynchronous
        self._executor: Optional[ThreadPoolExecutor] = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="scamreg-index") if use_async else None
        )
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        # Held from store read to index write so an older snapshot never lands last.
        self._apply_lock = threading.Lock()
        self._watermark: Optional[datetime] = None
        self._sync_interval = self.settings.search.sync_interval_seconds if sync_interval is None else sync_interval
        self._sync_stop = threading.Event()
        self._sync_thread: Optional[threading.Thread] = None

    def __call__(self, report_ids: Set[str], entity_ids: Set[str]) -> None:
        if self._executor is None:
            self.refresh(report_ids, entity_ids)
            return
        future = self._executor.submit(self.refresh, set(report_ids), set(entity_ids))
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def refresh(self, report_ids: Set[str], entity_ids: Set[str]) -> None:
        """Load the given ids from the store and upsert (or drop) their documents."""

        with self._apply_lock:
            with self._uow.read() as session:
                reports = self._reports.get_reports(session, sorted(report_ids))
                linked = {report.entity_id for report in reports if report.entity_id}
                entities = self._entities.get_many(session, sorted(set(entity_ids) | linked))

            documents = [document_from_report(report) for report in reports]
            documents.extend(document_from_entity(entity) for entity in entities)
            self.index.upsert_many(documents)

            found = {doc.doc_id for doc in documents}
            for missing in (set(report_ids) | set(entity_ids)) - found:
                self.index.remove(missing)
        LOGGER.debug("Refreshed search index reports=%d entities=%d", len(reports), len(entities))

    def rebuild(self) -> int:
        """Reload the whole index from the store; returns the document count."""

        with self._apply_lock:
            started = utcnow()
            with self._uow.read() as session:
                documents = [document_from_report(report) for report in self._reports.iter_all(session)]
                documents.extend(document_from_entity(entity) for entity in self._entities.list_all(session))
            count = self.index.replace_all(documents)
            self._watermark = started
        LOGGER.info("Rebuilt search index documents=%d", count)
        return count

    def pull_changes(self) -> int:
        """Upsert documents for rows updated since the previous pull; returns how many."""

        with self._apply_lock:
            started = utcnow()
            since = (self._watermark or started) - timedelta(seconds=self.settings.search.sync_overlap_seconds)
            with self._uow.read() as session:
                documents = [
                    document_from_report(report) for report in self._reports.list_updated_since(session, since)
                ]
                documents.extend(
                    document_from_entity(entity) for entity in self._entities.list_updated_since(session, since)
                )
            self.index.upsert_many(documents)
            self._watermark = started
        if documents:
            LOGGER.debug("Pulled search index changes documents=%d since=%s", len(documents), since.isoformat())
        return len(documents)

    def start_sync(self) -> bool:
        """Start the background pull loop; returns ``False`` when polling is disabled."""

        if self._sync_interval <= 0:
            return False
        if self._sync_thread is None:
            self._sync_stop.clear()
            self._sync_thread = threading.Thread(target=self._sync_loop, name="scamreg-index-sync", daemon=True)
            self._sync_thread.start()
            LOGGER.info("Search index sync started interval=%.1fs", self._sync_interval)
        return True

    def stop_sync(self) -> None:
        if self._sync_thread is None:
            return
        self._sync_stop.set()
        self._sync_thread.join()
        self._sync_thread = None

    def flush(self, timeout: float | None = None) -> None:
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        self.stop_sync()
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _sync_loop(self) -> None:
        while not self._sync_stop.wait(self._sync_interval):
            try:
                self.pull_changes()
            except Exception:  # keep polling after a failed pull; the next one covers its window
                LOGGER.exception("Search index sync failed")

    def _on_done(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            LOGGER.error("Search index refresh failed: %s", exc, exc_info=exc)


__all__ = ["SearchHit", "SearchIndexRefresher", "SearchQuery", "SearchService", "SortBy"]
