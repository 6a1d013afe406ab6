from __future__ import annotations

from typing import Any

from familytree.apps.api.response import ErrorEnvelope
from familytree.core.messages import message_for


def _error_example(*, code: str, message_key: str | None = None, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message_for(message_key or code)},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    401: _response("Authentication required", _error_example(code="authentication_required")),
    403: _response(
        "Permission denied",
        _error_example(code="permission_denied", details={"target_id": "p_123", "level": "suggest"}),
    ),
    404: _response("Not found", _error_example(code="not_found")),
    409: _response(
        "Version conflict or already undone",
        _error_example(
            code="version_conflict",
            details={"record_id": "p_123", "expected_version": 3, "current_version": 4},
        ),
    ),
    422: _response(
        "Validation failed or batch limit exceeded",
        _error_example(code="validation_failed", details={"field": "gender", "allowed": ["female", "male"]}),
    ),
    423: _response("Locked by another request", _error_example(code="locked_by_other")),
    500: _response("Internal error", _error_example(code="internal_error")),
    504: _response("Statement timeout", _error_example(code="timeout")),
}
