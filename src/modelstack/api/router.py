"""
FastAPI REST surface for public models.

Endpoints per model, mounted under ``/<plural>``:
- GET    /<plural>?filter=<json>        - List instances
- GET    /<plural>/count?where=<json>   - Count instances
- GET    /<plural>/{id}?filter=<json>   - Get one instance
- POST   /<plural>                      - Create instance
- PATCH  /<plural>/{id}                 - Update instance (partial)
- DELETE /<plural>/{id}                 - Delete instance

Errors render as {"error": {"status": ..., "name": ..., "message": ...}}.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..core.coercion import to_jsonable
from ..core.errors import InvalidFilterError, ModelStackError
from ..core.registry import ModelRegistry
from ..runtime.context import EventContext, Principal
from ..runtime.model import Model
from .auth import get_principal

logger = logging.getLogger(__name__)


def get_registry(request: Request) -> ModelRegistry:
    """Get the model registry bound to the app."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise RuntimeError("Model registry not initialized")
    return registry


def _parse_where(raw: Optional[str]) -> Optional[dict]:
    if not raw:
        return None
    try:
        where = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidFilterError(f"invalid where JSON: {e}")
    if not isinstance(where, dict):
        raise InvalidFilterError("where must be a JSON object")
    return where


def _respond(payload: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=to_jsonable(payload))


def build_model_router(model: Model) -> APIRouter:
    """Create the CRUD router of one model."""
    router = APIRouter(prefix=f"/{model.config.plural}", tags=[model.name])

    def context(principal: Principal) -> EventContext:
        return EventContext.for_principal(principal)

    @router.get("")
    async def find_many(
        filter: Optional[str] = Query(None),
        principal: Principal = Depends(get_principal),
    ) -> JSONResponse:
        instances = await model.find_many(filter, context(principal))
        return _respond([instance.to_json() for instance in instances])

    @router.get("/count")
    async def count(
        where: Optional[str] = Query(None),
        principal: Principal = Depends(get_principal),
    ) -> JSONResponse:
        total = await model.count(_parse_where(where), context(principal))
        return _respond({"count": total})

    @router.get("/{id}")
    async def find_by_id(
        id: str,
        filter: Optional[str] = Query(None),
        principal: Principal = Depends(get_principal),
    ) -> JSONResponse:
        instance = await model.find_by_id(id, filter, context(principal))
        return _respond(instance.to_json())

    @router.post("")
    async def create(
        data: dict[str, Any] = Body(...),
        principal: Principal = Depends(get_principal),
    ) -> JSONResponse:
        instance = await model.create(data, context(principal))
        return _respond(instance.to_json())

    @router.patch("/{id}")
    async def update_by_id(
        id: str,
        data: dict[str, Any] = Body(...),
        principal: Principal = Depends(get_principal),
    ) -> JSONResponse:
        instance = await model.update_by_id(id, data, context(principal))
        return _respond(instance.to_json())

    @router.delete("/{id}")
    async def delete_by_id(
        id: str,
        principal: Principal = Depends(get_principal),
    ) -> JSONResponse:
        result = await model.delete_by_id(id, context(principal))
        return _respond(result.to_dict())

    return router


def create_rest_router(registry: ModelRegistry, prefix: str = "/api/v1") -> APIRouter:
    """Mount a router for every public model under prefix."""
    root = APIRouter(prefix=prefix)
    for model in registry.public_models():
        root.include_router(build_model_router(model))
        logger.info(f"Mounted {model.name} at {prefix}/{model.config.plural}")
    return root


# =============================================================================
# Error handlers
# =============================================================================


def _error_response(status: int, name: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={"error": {"status": status, "name": name, "message": message}},
    )


def install_error_handlers(app: FastAPI) -> None:
    """Render errors as {"error": {...}} JSON documents."""

    @app.exception_handler(ModelStackError)
    async def handle_modelstack_error(request: Request, exc: ModelStackError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return _error_response(exc.status_code, exc.name, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        name = "not-found" if exc.status_code == 404 else "http"
        return _error_response(exc.status_code, name, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(400, "invalid-input", str(exc.errors()))
