"""Entity directory API router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from scamreg.api.auth import require_token
from scamreg.api.serializers import camelize, camelize_all
from scamreg.models import Actor
from scamreg.services.entities import EntityDirectory
from scamreg.services.factories import get_registry

router = APIRouter(prefix="/entities", tags=["entities"])


def get_entity_directory() -> EntityDirectory:
    return get_registry().entities


@router.get("", summary="List entities, highest risk first")
def list_entities(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    sort_by: str = Query("risk_score", alias="sortBy"),
    actor: Actor = Depends(require_token),
    directory: EntityDirectory = Depends(get_entity_directory),
):
    result = directory.list_entities(page=page, limit=limit, status=status, search=search, sort_by=sort_by)
    return camelize(result)


@router.get("/stats", summary="Entity dashboard counters")
def entity_stats(
    actor: Actor = Depends(require_token),
    directory: EntityDirectory = Depends(get_entity_directory),
):
    return camelize(directory.stats())


@router.get("/{entity_id}", summary="Fetch an entity with its linked reports")
def get_entity(
    entity_id: str,
    actor: Actor = Depends(require_token),
    directory: EntityDirectory = Depends(get_entity_directory),
):
    result = directory.get_entity(entity_id)
    payload = camelize(result["entity"])
    payload["reports"] = camelize_all(result["reports"])
    return payload
