"""In-process inverted index with BM25 scoring over reports and entities."""

from __future__ import annotations

import logging
import math
import re
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from scamreg.models import Entity, Report
from scamreg.normalization.identifiers import country_for_number, dialing_code_for

LOGGER = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

DOC_TYPE_REPORT = "report"
DOC_TYPE_ENTITY = "entity"


@dataclass
class SearchDocument:
    """Projection of a report or entity into the index."""

    doc_id: str
    doc_type: str
    identifier_type: str
    identifier_value: str
    normalized_identifier: str
    categories: List[str]
    status: str
    risk_score: int
    created_at: datetime
    narrative: str = ""
    tags: List[str] = field(default_factory=list)
    entity_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def text_tokens(self) -> List[str]:
        tokens = identifier_tokens(self.normalized_identifier)
        tokens.extend(tokenize(self.identifier_value))
        for category in self.categories:
            tokens.append(category)
            tokens.extend(tokenize(category))
        for tag in self.tags:
            tokens.extend(tokenize(tag))
        tokens.extend(tokenize(self.narrative))
        return tokens


def document_from_report(report: Report) -> SearchDocument:
    return SearchDocument(
        doc_id=report.report_id,
        doc_type=DOC_TYPE_REPORT,
        identifier_type=report.identifier.type.value,
        identifier_value=report.identifier.raw_value,
        normalized_identifier=report.identifier.normalized_value,
        categories=[report.category.value],
        status=report.status.value,
        risk_score=report.risk_score,
        created_at=report.created_at,
        narrative=report.narrative,
        entity_id=report.entity_id,
        payload=report.to_dict(),
    )


def document_from_entity(entity: Entity) -> SearchDocument:
    categories = sorted(tag for tag in entity.tags if tag != entity.identifier_type.value)
    return SearchDocument(
        doc_id=entity.entity_id,
        doc_type=DOC_TYPE_ENTITY,
        identifier_type=entity.identifier_type.value,
        identifier_value=entity.display_name,
        normalized_identifier=entity.primary_identifier,
        categories=categories,
        status=entity.status.value,
        risk_score=entity.risk_score,
        created_at=entity.created_at,
        tags=list(entity.tags),
        entity_id=entity.entity_id,
        payload=entity.to_dict(),
    )


def tokenize(text: str | None) -> List[str]:
    """Lowercase alphanumeric tokens of ``text``."""

    if not text:
        return []
    return _TOKEN_RE.findall(text.lower())


def identifier_tokens(value: str | None) -> List[str]:
    """Tokens that let a canonical identifier match how people type it.

    ``+9779841234567`` also yields ``9779841234567`` and the national
    ``9841234567``, so a query without the country code still hits.
    """

    if not value:
        return []
    lowered = value.strip().lower()
    tokens = [lowered]
    tokens.extend(token for token in tokenize(lowered) if token != lowered)
    if lowered.startswith("+") and lowered[1:].isdigit():
        digits = lowered[1:]
        country = country_for_number(digits)
        code = dialing_code_for(country)
        if code and digits.startswith(code) and len(digits) > len(code):
            tokens.append(digits[len(code) :])
    return tokens


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IndexSnapshot:
    """Point-in-time, read-only view of the index used by one query."""

    documents: Mapping[str, SearchDocument]
    postings: Mapping[str, Mapping[str, int]]
    lengths: Mapping[str, int]
    k1: float
    b: float

    def bm25(self, terms: Sequence[str], candidates: Iterable[str] | None = None) -> Dict[str, float]:
        """Return BM25 scores for ``terms`` restricted to ``candidates`` (all documents when ``None``)."""

        total_docs = len(self.documents)
        if not total_docs or not terms:
            return {}
        allowed = set(candidates) if candidates is not None else None
        average_length = (sum(self.lengths.values()) / total_docs) or 1.0
        scores: Dict[str, float] = {}
        for term in set(terms):
            posting = self.postings.get(term)
            if not posting:
                continue
            df = len(posting)
            idf = math.log(1.0 + (total_docs - df + 0.5) / (df + 0.5))
            for doc_id, frequency in posting.items():
                if allowed is not None and doc_id not in allowed:
                    continue
                length = self.lengths.get(doc_id, 0)
                norm = frequency + self.k1 * (1.0 - self.b + self.b * length / average_length)
                scores[doc_id] = scores.get(doc_id, 0.0) + idf * (frequency * (self.k1 + 1.0)) / norm
        return scores


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


class InvertedIndex:
    """Thread-safe inverted index.

    Writers hold the lock and replace posting dictionaries rather than mutate
    them, so :meth:`snapshot` only copies the outer mappings and readers score
    against a stable view without blocking further writes.
    """

    def __init__(self, *, k1: float = 1.2, b: float = 0.75) -> None:
        self.k1 = k1
        self.b = b
        self._lock = threading.RLock()
        self._documents: Dict[str, SearchDocument] = {}
        self._terms: Dict[str, Counter[str]] = {}
        self._postings: Dict[str, Dict[str, int]] = {}
        self._lengths: Dict[str, int] = {}
        self._suggestions: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._documents)

    def upsert(self, document: SearchDocument) -> None:
        with self._lock:
            self._remove_locked(document.doc_id)
            terms = Counter(document.text_tokens())
            self._documents[document.doc_id] = document
            self._terms[document.doc_id] = terms
            self._lengths[document.doc_id] = sum(terms.values())
            for term, frequency in terms.items():
                posting = dict(self._postings.get(term, {}))
                posting[document.doc_id] = frequency
                self._postings[term] = posting
            self._suggestions.update(_suggestion_keys(document))

    def upsert_many(self, documents: Iterable[SearchDocument]) -> None:
        with self._lock:
            for document in documents:
                self.upsert(document)

    def remove(self, doc_id: str) -> None:
        with self._lock:
            self._remove_locked(doc_id)

    def replace_all(self, documents: Iterable[SearchDocument]) -> int:
        """Swap the full index contents; returns the number of documents indexed."""

        fresh = InvertedIndex(k1=self.k1, b=self.b)
        fresh.upsert_many(documents)
        with self._lock:
            self._documents = fresh._documents
            self._terms = fresh._terms
            self._postings = fresh._postings
            self._lengths = fresh._lengths
            self._suggestions = fresh._suggestions
            return len(self._documents)

    def get(self, doc_id: str) -> Optional[SearchDocument]:
        with self._lock:
            return self._documents.get(doc_id)

    def snapshot(self) -> IndexSnapshot:
        with self._lock:
            return IndexSnapshot(
                documents=dict(self._documents),
                postings=dict(self._postings),
                lengths=dict(self._lengths),
                k1=self.k1,
                b=self.b,
            )

    def suggestion_counts(self) -> Dict[str, int]:
        with self._lock:
            return {key: count for key, count in self._suggestions.items() if count > 0}

    def _remove_locked(self, doc_id: str) -> None:
        existing = self._documents.pop(doc_id, None)
        if existing is None:
            return
        terms = self._terms.pop(doc_id, Counter())
        self._lengths.pop(doc_id, None)
        for term in terms:
            posting = dict(self._postings.get(term, {}))
            posting.pop(doc_id, None)
            if posting:
                self._postings[term] = posting
            else:
                self._postings.pop(term, None)
        self._suggestions.subtract(_suggestion_keys(existing))
        for key in [key for key, count in self._suggestions.items() if count <= 0]:
            del self._suggestions[key]


def _suggestion_keys(document: SearchDocument) -> List[str]:
    # Only reports feed autocomplete frequencies; entities would double count.
    if document.doc_type != DOC_TYPE_REPORT:
        return []
    keys = [document.normalized_identifier.lower()]
    keys.extend(document.categories)
    return [key for key in keys if key]


__all__ = [
    "DOC_TYPE_ENTITY",
    "DOC_TYPE_REPORT",
    "IndexSnapshot",
    "InvertedIndex",
    "SearchDocument",
    "document_from_entity",
    "document_from_report",
    "identifier_tokens",
    "tokenize",
]
