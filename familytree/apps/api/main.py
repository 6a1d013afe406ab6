from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from familytree.apps.api.errors import (
    family_tree_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from familytree.apps.api.response import API_VERSION
from familytree.apps.api.routes.audit import router as audit_router
from familytree.apps.api.routes.health import router as health_router
from familytree.apps.api.routes.marriages import router as marriages_router
from familytree.apps.api.routes.moderation import router as moderation_router
from familytree.apps.api.routes.permissions import router as permissions_router
from familytree.apps.api.routes.profiles import router as profiles_router
from familytree.apps.api.routes.suggestions import router as suggestions_router
from familytree.apps.api.routes.undo import router as undo_router
from familytree.core.config import get_settings
from familytree.core.errors import FamilyTreeError
from familytree.core.logging import configure_logging


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title=settings.app_name, docs_url=None, redoc_url=None, openapi_url=None)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f actor_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            getattr(request.state, "actor_id", None),
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(FamilyTreeError)
    async def _family_tree_error_handler(request: Request, exc: FamilyTreeError):
        return await family_tree_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(permissions_router, prefix=f"/{API_VERSION}")
    app.include_router(profiles_router, prefix=f"/{API_VERSION}")
    app.include_router(marriages_router, prefix=f"/{API_VERSION}")
    # Audit reads and undo share the /audit prefix.
    app.include_router(audit_router, prefix=f"/{API_VERSION}")
    app.include_router(undo_router, prefix=f"/{API_VERSION}")
    app.include_router(suggestions_router, prefix=f"/{API_VERSION}")
    app.include_router(moderation_router, prefix=f"/{API_VERSION}")

    # Serve versioned OpenAPI JSON and docs endpoints for v1 consumers.
    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title=f"{settings.app_name} v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Inject bearer auth and version metadata into the OpenAPI schema.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title=settings.app_name, version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        public_paths = {"/v1/health"}
        for path, operations in schema.get("paths", {}).items():
            if path in public_paths:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
