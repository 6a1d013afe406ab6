from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping

from familytree.core.errors import BatchLimitExceededError, ValidationFailedError
from familytree.core.messages import message_for


GENDERS = frozenset({"male", "female"})
PROFILE_STATUSES = frozenset({"alive", "deceased", "unknown"})
VISIBILITIES = frozenset({"public", "family", "private"})
MARRIAGE_STATUSES = frozenset({"current", "past"})

_TEXT_FIELDS = frozenset(
    {
        "kunya",
        "nickname",
        "bio",
        "birth_place",
        "current_residence",
        "occupation",
        "education",
        "phone",
        "email",
        "photo_url",
    }
)
_DATE_DATA_FIELDS = frozenset({"dob_data", "dod_data"})
_PARENT_FIELDS = frozenset({"father_id", "mother_id"})

# Fields a direct mutation may touch. hid, generation, role and ownership have dedicated flows.
EDITABLE_PROFILE_FIELDS = frozenset(
    {"name", "gender", "status", "profile_visibility", "sibling_order"}
    | _TEXT_FIELDS
    | _DATE_DATA_FIELDS
    | _PARENT_FIELDS
)
# Fields undo writes back from an update snapshot.
RESTORABLE_PROFILE_FIELDS = EDITABLE_PROFILE_FIELDS | {"hid", "generation"}
# Descriptive fields open to the suggestion path; lineage edits stay with direct editors.
SUGGESTABLE_FIELDS = frozenset({"name", "status"} | _TEXT_FIELDS | _DATE_DATA_FIELDS)
MARRIAGE_FIELDS = frozenset({"status", "start_date", "end_date"})
RESTORABLE_MARRIAGE_FIELDS = MARRIAGE_FIELDS

_MAX_NAME_LENGTH = 200
_MAX_TEXT_LENGTH = 5000


def _fail(message_key: str = "validation_failed", **details: Any) -> ValidationFailedError:
    return ValidationFailedError(message_for(message_key), details=details)


def _check_enum(field: str, value: Any, allowed: frozenset[str]) -> str:
    if not isinstance(value, str) or value not in allowed:
        raise _fail(field=field, allowed=sorted(allowed), value=value)
    return value


def _check_text(field: str, value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or len(value) > _MAX_TEXT_LENGTH:
        raise _fail(field=field, reason="invalid_text")
    return value


def validate_profile_patch(
    patch: Mapping[str, Any],
    *,
    allowed_fields: frozenset[str] = EDITABLE_PROFILE_FIELDS,
    require_non_empty: bool = True,
) -> dict[str, Any]:
    # Key presence decides what changes: absent leaves the field alone, present-with-None clears it.
    if not isinstance(patch, Mapping):
        raise _fail(reason="patch_must_be_object")
    if require_non_empty and not patch:
        raise _fail(reason="empty_patch")
    unknown = sorted(set(patch) - allowed_fields)
    if unknown:
        raise _fail("field_not_allowed", fields=unknown)

    clean: dict[str, Any] = {}
    for field in patch:
        value = patch[field]
        if field == "name":
            if not isinstance(value, str) or not value.strip() or len(value) > _MAX_NAME_LENGTH:
                raise _fail(field=field, reason="name_required")
            clean[field] = value.strip()
        elif field == "gender":
            clean[field] = _check_enum(field, value, GENDERS)
        elif field == "status":
            clean[field] = _check_enum(field, value, PROFILE_STATUSES)
        elif field == "profile_visibility":
            clean[field] = _check_enum(field, value, VISIBILITIES)
        elif field == "sibling_order":
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise _fail("negative_order", field=field, value=value)
            clean[field] = value
        elif field in _DATE_DATA_FIELDS:
            if value is not None and not isinstance(value, dict):
                raise _fail(field=field, reason="date_data_must_be_object")
            clean[field] = value
        elif field in _PARENT_FIELDS:
            if value is not None and (not isinstance(value, str) or not value):
                raise _fail("invalid_parent", field=field)
            clean[field] = value
        else:
            clean[field] = _check_text(field, value)
    return clean


def validate_new_profile(payload: Mapping[str, Any]) -> dict[str, Any]:
    # Creates need a name and gender; parent links are derived by the caller.
    if not isinstance(payload, Mapping):
        raise _fail(reason="payload_must_be_object")
    missing = [field for field in ("name", "gender") if payload.get(field) is None]
    if missing:
        raise _fail(reason="missing_fields", fields=missing)
    return validate_profile_patch(payload, allowed_fields=EDITABLE_PROFILE_FIELDS - _PARENT_FIELDS)


def _parse_date(field: str, value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise _fail(field=field, reason="invalid_date") from exc
    raise _fail(field=field, reason="invalid_date")


def validate_marriage_patch(patch: Mapping[str, Any], *, require_non_empty: bool = True) -> dict[str, Any]:
    if require_non_empty and not patch:
        raise _fail(reason="empty_patch")
    unknown = sorted(set(patch) - MARRIAGE_FIELDS)
    if unknown:
        raise _fail("field_not_allowed", fields=unknown)
    clean: dict[str, Any] = {}
    if "status" in patch:
        clean["status"] = _check_enum("status", patch["status"], MARRIAGE_STATUSES)
    for field in ("start_date", "end_date"):
        if field in patch:
            clean[field] = _parse_date(field, patch[field])
    return clean


def check_date_range(start: date | None, end: date | None) -> None:
    if start and end and end < start:
        raise _fail(reason="end_before_start")


def check_batch_size(count: int, cap: int) -> None:
    if count > cap:
        raise BatchLimitExceededError(details={"count": count, "max": cap})


@dataclass(frozen=True)
class ReorderOperation:
    child_id: str
    new_order: int
    expected_version: int


def validate_reorder_operations(operations: Any, *, cap: int) -> list[ReorderOperation]:
    # Everything here runs before any row is touched.
    if not operations:
        raise _fail("empty_batch")
    if not isinstance(operations, (list, tuple)):
        raise _fail(reason="operations_must_be_list")
    check_batch_size(len(operations), cap)

    parsed: list[ReorderOperation] = []
    for index, raw in enumerate(operations):
        if not isinstance(raw, Mapping):
            raise _fail(index=index, reason="operation_must_be_object")
        child_id = raw.get("child_id")
        new_order = raw.get("new_order")
        expected_version = raw.get("expected_version")
        if not isinstance(child_id, str) or not child_id:
            raise _fail(index=index, reason="child_id_required")
        if isinstance(new_order, bool) or not isinstance(new_order, int):
            raise _fail(index=index, reason="new_order_required")
        if new_order < 0:
            raise _fail("negative_order", child_id=child_id, new_order=new_order)
        if isinstance(expected_version, bool) or not isinstance(expected_version, int):
            raise _fail(index=index, reason="expected_version_required")
        parsed.append(ReorderOperation(child_id, new_order, expected_version))

    orders = [op.new_order for op in parsed]
    duplicates = sorted({order for order in orders if orders.count(order) > 1})
    if duplicates:
        raise _fail("duplicate_order", orders=duplicates)
    child_ids = [op.child_id for op in parsed]
    if len(set(child_ids)) != len(child_ids):
        raise _fail(reason="duplicate_child")
    return parsed


def require_version(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise _fail(reason="expected_version_required")
    return value
