"""Search API router: ranked search, autocomplete, and trending categories."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from scamreg.api.auth import require_token
from scamreg.api.serializers import camelize
from scamreg.models import Actor
from scamreg.services.factories import get_registry
from scamreg.services.search import SearchQuery, SearchService

router = APIRouter(prefix="/search", tags=["search"])

_SORT_ALIASES = {"riskScore": "risk_score", "createdAt": "date"}


def get_search_service() -> SearchService:
    return get_registry().search


@router.get("", summary="Search reports and entities")
def search(
    text: Optional[str] = Query(None, description="Free text, identifiers included"),
    category: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    identifier_type: Optional[str] = Query(None, alias="identifierType"),
    risk_score_min: Optional[int] = Query(None, alias="riskScoreMin", ge=0, le=100),
    risk_score_max: Optional[int] = Query(None, alias="riskScoreMax", ge=0, le=100),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    doc_type: str = Query("report", alias="type", description="report, entity, or all"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    sort_by: str = Query("relevance", alias="sortBy"),
    include_facets: bool = Query(False, alias="includeFacets"),
    include_suggestions: bool = Query(False, alias="includeSuggestions"),
    actor: Actor = Depends(require_token),
    service: SearchService = Depends(get_search_service),
):
    query = SearchQuery(
        text=text,
        category=category,
        status=status,
        identifier_type=identifier_type,
        risk_score_min=risk_score_min,
        risk_score_max=risk_score_max,
        date_from=date_from,
        date_to=date_to,
        doc_type=doc_type,
        page=page,
        limit=limit,
        sort_by=_SORT_ALIASES.get(sort_by, sort_by),
        include_facets=include_facets,
        include_suggestions=include_suggestions,
    )
    return camelize(service.search(query))


@router.get("/autocomplete", summary="Prefix suggestions for identifiers and categories")
def autocomplete(
    q: str = Query("", description="Prefix typed so far"),
    limit: int = Query(10, ge=1, le=50),
    actor: Actor = Depends(require_token),
    service: SearchService = Depends(get_search_service),
):
    suggestions = service.autocomplete(q, limit=limit)
    return {"suggestions": suggestions, "count": len(suggestions)}


@router.get("/trending", summary="Most reported categories over a recent window")
def trending(
    days: Optional[int] = Query(None, ge=1, le=365),
    limit: int = Query(10, ge=1, le=50),
    actor: Actor = Depends(require_token),
    service: SearchService = Depends(get_search_service),
):
    items = service.trending(days=days, limit=limit)
    return {"trending": items, "count": len(items)}
