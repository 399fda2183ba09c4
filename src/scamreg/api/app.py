"""FastAPI app factory for the scamreg API."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from scamreg.api.entities import router as entities_router
from scamreg.api.moderation import router as moderation_router
from scamreg.api.reports import router as reports_router
from scamreg.api.search import router as search_router
from scamreg.errors import RegistryError

LOGGER = logging.getLogger(__name__)


async def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
    """Render any :class:`RegistryError` as ``{"error": {...}}`` with its HTTP status."""

    if exc.http_status >= 500:
        LOGGER.error("Request failed path=%s kind=%s reason=%s", request.url.path, exc.kind, exc.reason)
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = {}
    for item in exc.errors():
        location = [str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path")]
        fields[".".join(location) or "request"] = item.get("msg", "invalid")
    return JSONResponse(
        status_code=422,
        content={"error": {"kind": "validation", "reason": "Request payload is invalid", "fields": fields}},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(title="scamreg Community Scam Registry API", version="0.1")
    app.add_exception_handler(RegistryError, registry_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(reports_router)
    app.include_router(moderation_router)
    app.include_router(search_router)
    app.include_router(entities_router)

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    return app


# For uvicorn, expose `app` at module level
app = create_app()

__all__ = ["app", "create_app"]
