from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.apps.api.deps import get_current_actor, get_db
from familytree.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from familytree.apps.api.response import Page, SuccessEnvelope, build_page, page_size, success_response
from familytree.core.errors import NotFoundError
from familytree.domain.models import AuditLogEntry
from familytree.persistence.repos import audit as audit_repo
from familytree.services.auth import Actor


router = APIRouter(prefix="/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditEntryResponse(BaseModel):
    id: int
    created_at: str
    table_name: str
    record_id: str
    action_kind: str
    actor_id: str | None
    old_data: dict[str, Any] | None
    new_data: dict[str, Any] | None
    changed_fields: list[str] | None
    description: str | None
    severity: str
    operation_group_id: str | None
    metadata_json: dict[str, Any] | None
    is_undoable: bool
    undo_of_id: int | None
    undone_at: str | None
    undone_by: str | None
    undo_reason: str | None


def _to_response(entry: AuditLogEntry) -> AuditEntryResponse:
    # Serialize audit datetimes to ISO 8601 for API clients.
    return AuditEntryResponse(
        id=entry.id,
        created_at=entry.created_at.isoformat(),
        table_name=entry.table_name,
        record_id=entry.record_id,
        action_kind=entry.action_kind,
        actor_id=entry.actor_id,
        old_data=entry.old_data,
        new_data=entry.new_data,
        changed_fields=entry.changed_fields,
        description=entry.description,
        severity=entry.severity,
        operation_group_id=entry.operation_group_id,
        metadata_json=entry.metadata_json,
        is_undoable=entry.is_undoable,
        undo_of_id=entry.undo_of_id,
        undone_at=entry.undone_at.isoformat() if entry.undone_at else None,
        undone_by=entry.undone_by,
        undo_reason=entry.undo_reason,
    )


@router.get("/entries", response_model=SuccessEnvelope[Page[AuditEntryResponse]])
async def list_audit_entries(
    request: Request,
    record_id: str | None = None,
    operation_group_id: str | None = None,
    actor_id: str | None = None,
    action_kind: str | None = None,
    created_from: datetime | None = Query(default=None, alias="from"),
    created_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    size = page_size(limit)
    # Fetch one extra row to know whether another page exists.
    entries = await audit_repo.list_entries(
        db,
        record_id=record_id,
        operation_group_id=operation_group_id,
        actor_id=actor_id,
        action_kind=action_kind,
        created_from=created_from,
        created_to=created_to,
        offset=offset,
        limit=size + 1,
    )
    rows, next_offset = build_page(entries, offset=offset, size=size)
    page = Page[AuditEntryResponse](items=[_to_response(entry) for entry in rows], next_offset=next_offset)
    return success_response(request=request, data=page)


@router.get("/entries/{entry_id}", response_model=SuccessEnvelope[AuditEntryResponse])
async def get_audit_entry(
    request: Request,
    entry_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    entry = await audit_repo.get_entry_by_id(db, entry_id)
    if entry is None:
        raise NotFoundError(details={"entry_id": entry_id})
    return success_response(request=request, data=_to_response(entry))
