from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.apps.api.deps import get_current_actor, get_db
from familytree.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from familytree.apps.api.response import SuccessEnvelope, success_response
from familytree.core.errors import PermissionDeniedError
from familytree.domain.permissions import PermissionLevel, is_admin_role
from familytree.services.auth import Actor
from familytree.services.permissions import check_family_permission


router = APIRouter(prefix="/permissions", tags=["permissions"], responses=DEFAULT_ERROR_RESPONSES)


class PermissionCheckRequest(BaseModel):
    target_id: str
    # Defaults to the caller; checking someone else's access is an admin tool.
    actor_id: str | None = None


class PermissionCheckResponse(BaseModel):
    actor_id: str
    target_id: str
    level: PermissionLevel
    can_edit_directly: bool
    can_suggest: bool


@router.post("/check", response_model=SuccessEnvelope[PermissionCheckResponse])
async def check_permission(
    request: Request,
    payload: PermissionCheckRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    subject_id = payload.actor_id or actor.profile_id
    if subject_id != actor.profile_id and not is_admin_role(actor.role):
        raise PermissionDeniedError(details={"required_role": "admin"})
    level = await check_family_permission(db, actor_id=subject_id, target_id=payload.target_id)
    response = PermissionCheckResponse(
        actor_id=subject_id,
        target_id=payload.target_id,
        level=level,
        can_edit_directly=level.allows_direct_edit,
        can_suggest=level not in (PermissionLevel.BLOCKED, PermissionLevel.NONE),
    )
    return success_response(request=request, data=response)
