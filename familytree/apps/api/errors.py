from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from familytree.apps.api.response import error_response
from familytree.core.errors import FamilyTreeError
from familytree.core.messages import message_for


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "validation_failed",
    401: "authentication_required",
    403: "permission_denied",
    404: "not_found",
    405: "validation_failed",
    409: "version_conflict",
    422: "validation_failed",
    423: "locked_by_other",
    500: "internal_error",
    504: "timeout",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "internal_error")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or message_for(code))
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    code = _default_code(status_code)
    return code, message_for(code), {"reason": detail} if isinstance(detail, str) else None


async def family_tree_error_handler(request: Request, exc: FamilyTreeError) -> JSONResponse:
    payload = error_response(request=request, code=exc.code, message=exc.message, details=exc.details or None)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(content=payload, status_code=exc.status_code, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Surface request-shape errors with structured details for client parsing.
    payload = error_response(
        request=request,
        code="validation_failed",
        message=message_for("validation_failed"),
        details={"errors": jsonable_errors(exc)},
    )
    return JSONResponse(content=payload, status_code=422)


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": str(error.get("msg")), "type": str(error.get("type"))}
        for error in exc.errors()
    ]


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Outermost boundary: keep the underlying message for diagnostics.
    logger.exception("unhandled_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="internal_error",
        message=message_for("internal_error"),
        details={"error": str(exc) or exc.__class__.__name__},
    )
    return JSONResponse(content=payload, status_code=500)
