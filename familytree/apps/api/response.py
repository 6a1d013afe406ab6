from __future__ import annotations

from typing import Any, Generic, Sequence, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field

from familytree.core.config import get_settings


API_VERSION = "v1"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = Field(default=API_VERSION)


class ErrorDetail(BaseModel):
    # Stable machine code plus a pre-localised message for the end user.
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


class Page(BaseModel, Generic[T]):
    items: list[T]
    # Offset of the next page, or null on the last one.
    next_offset: int | None = None


def page_size(limit: int | None) -> int:
    settings = get_settings()
    return min(limit or settings.default_page_size, settings.max_page_size)


def build_page(rows: Sequence[T], *, offset: int, size: int) -> tuple[list[T], int | None]:
    # Callers fetch size + 1 rows; the extra row only signals that another page exists.
    if len(rows) > size:
        return list(rows[:size]), offset + size
    return list(rows), None


def get_request_id(request: Request) -> str:
    # The middleware assigns one; fall back to the header for handlers reached before it.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    return request_id


def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [_dump(item) for item in data]
    return data


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    meta = ResponseMeta(request_id=get_request_id(request))
    return {"data": _dump(data), "meta": meta.model_dump()}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    meta = ResponseMeta(request_id=get_request_id(request))
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": meta.model_dump()}
