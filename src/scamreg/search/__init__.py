"""Search index primitives."""

from scamreg.search.index import (
    IndexSnapshot,
    InvertedIndex,
    SearchDocument,
    document_from_entity,
    document_from_report,
)

__all__ = [
    "IndexSnapshot",
    "InvertedIndex",
    "SearchDocument",
    "document_from_entity",
    "document_from_report",
]
