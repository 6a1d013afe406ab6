from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.apps.api.deps import get_current_actor, get_db
from familytree.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from familytree.apps.api.response import SuccessEnvelope, success_response
from familytree.services.auth import Actor
from familytree.services import undo as undo_service


router = APIRouter(prefix="/audit", tags=["undo"], responses=DEFAULT_ERROR_RESPONSES)


class UndoRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class UndoPermissionResponse(BaseModel):
    can_undo: bool
    reason: str | None = None
    code: str | None = None
    requires_group_undo: bool = False


class UndoResponse(BaseModel):
    success: bool
    message: str
    entry_id: int
    compensation_entry_ids: list[int]
    operation_group_id: str | None
    restored_count: int
    failed_entry_ids: list[int]
    new_version: int | None


def _outcome_response(outcome: undo_service.UndoOutcome) -> UndoResponse:
    return UndoResponse(
        success=outcome.success,
        message=outcome.message,
        entry_id=outcome.entry_id,
        compensation_entry_ids=outcome.compensation_entry_ids,
        operation_group_id=outcome.operation_group_id,
        restored_count=outcome.restored_count,
        failed_entry_ids=outcome.failed_entry_ids,
        new_version=outcome.new_version,
    )


@router.get("/entries/{entry_id}/undo-permission", response_model=SuccessEnvelope[UndoPermissionResponse])
async def undo_permission(
    request: Request,
    entry_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Refusals are data here, not errors: the UI greys out the undo button.
    check = await undo_service.check_undo_permission(db, entry_id=entry_id, actor_id=actor.profile_id)
    response = UndoPermissionResponse(
        can_undo=check.can_undo,
        reason=check.reason,
        code=check.code,
        requires_group_undo=check.requires_group_undo,
    )
    return success_response(request=request, data=response)


@router.post("/entries/{entry_id}/undo", response_model=SuccessEnvelope[UndoResponse])
async def undo_entry(
    request: Request,
    entry_id: int,
    payload: UndoRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    outcome = await undo_service.undo(
        db, entry_id=entry_id, actor_id=actor.profile_id, reason=payload.reason if payload else None
    )
    return success_response(request=request, data=_outcome_response(outcome))


@router.post("/entries/{entry_id}/undo-cascade", response_model=SuccessEnvelope[UndoResponse])
async def undo_entry_group(
    request: Request,
    entry_id: int,
    payload: UndoRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    outcome = await undo_service.undo_cascade(
        db, entry_id=entry_id, actor_id=actor.profile_id, reason=payload.reason if payload else None
    )
    return success_response(request=request, data=_outcome_response(outcome))
