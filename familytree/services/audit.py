from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from typing import Any, Iterable
from uuid import uuid4

from sqlalchemy import Date, DateTime
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.domain.actions import get_action, is_valid_action_kind
from familytree.domain.models import AuditLogEntry, Base, OperationGroup


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["authorization", "token", "secret", "password", "jwt"]
_REDACTED_VALUE = "[REDACTED]"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    return value


def snapshot(row: Base) -> dict[str, Any]:
    # Full-row image, JSON-safe; undo writes these values back verbatim.
    return {column.key: json_safe(getattr(row, column.key)) for column in row.__table__.columns}


def changed_fields(old: dict[str, Any] | None, new: dict[str, Any] | None) -> list[str]:
    old = old or {}
    new = new or {}
    ignored = {"version", "updated_at"}
    keys = sorted(set(old) | set(new))
    return [key for key in keys if key not in ignored and old.get(key) != new.get(key)]


def _coerce(column: Any, value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    if isinstance(column.type, DateTime):
        return datetime.fromisoformat(value)
    if isinstance(column.type, Date):
        return date.fromisoformat(value)
    return value


def restore_snapshot(row: Base, data: dict[str, Any], fields: Iterable[str]) -> list[str]:
    # Write snapshot values back onto the live row; returns the fields that differed.
    columns = row.__table__.columns
    restored: list[str] = []
    for field in fields:
        if field not in data or field not in columns:
            continue
        value = _coerce(columns[field], data[field])
        if getattr(row, field) != value:
            restored.append(field)
        setattr(row, field, value)
    return restored


async def create_group(
    session: AsyncSession,
    *,
    group_type: str,
    actor_id: str,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> OperationGroup:
    group = OperationGroup(
        id=uuid4().hex,
        created_by=actor_id,
        group_type=group_type,
        operation_count=0,
        undo_state="active",
        description=description,
        metadata_json=sanitize_metadata(metadata or {}),
        created_at=_utc_now(),
    )
    session.add(group)
    # Flush so entries can reference the group id.
    await session.flush()
    return group


async def append_entry(
    session: AsyncSession,
    *,
    action_kind: str,
    record_id: str,
    actor_id: str | None,
    old_data: dict[str, Any] | None,
    new_data: dict[str, Any] | None,
    table_name: str | None = None,
    description: str | None = None,
    severity: str | None = None,
    operation_group_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    undo_of_id: int | None = None,
) -> AuditLogEntry:
    # Same transaction as the mutation: if either fails, both roll back.
    if not is_valid_action_kind(action_kind):
        raise ValueError(f"Invalid action kind: {action_kind!r}")
    spec = get_action(action_kind)
    if spec is None:
        raise ValueError(f"Unregistered action kind: {action_kind}")
    entry = AuditLogEntry(
        created_at=_utc_now(),
        table_name=table_name or spec.table_name,
        record_id=record_id,
        action_kind=action_kind,
        actor_id=actor_id,
        old_data=old_data,
        new_data=new_data,
        changed_fields=changed_fields(old_data, new_data),
        description=description,
        severity=severity or spec.severity,
        operation_group_id=operation_group_id,
        metadata_json=sanitize_metadata(metadata or {}),
        is_undoable=spec.undoable,
        undo_of_id=undo_of_id,
    )
    session.add(entry)
    await session.flush()
    logger.debug("audit_entry_appended id=%s kind=%s record_id=%s", entry.id, action_kind, record_id)
    return entry
