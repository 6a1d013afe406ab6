from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.apps.api.deps import get_db, require_admin
from familytree.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from familytree.apps.api.response import SuccessEnvelope, success_response
from familytree.domain.models import BranchModerator, SuggestionBlock
from familytree.services.auth import Actor
from familytree.services import moderation as moderation_service


router = APIRouter(prefix="/moderation", tags=["moderation"], responses=DEFAULT_ERROR_RESPONSES)


class BlockRequest(BaseModel):
    profile_id: str
    reason: str | None = Field(default=None, max_length=1000)


class BlockResponse(BaseModel):
    id: str
    blocked_profile_id: str
    blocked_by: str | None
    reason: str | None
    is_active: bool


class ModeratorAssignRequest(BaseModel):
    profile_id: str
    branch_hid: str = Field(min_length=1)


class ModeratorResponse(BaseModel):
    id: str
    profile_id: str
    branch_hid: str
    assigned_by: str | None
    is_active: bool


class RoleChangeRequest(BaseModel):
    role: str
    expected_version: int


class RoleChangeResponse(BaseModel):
    profile_id: str
    role: str
    version: int


def _block_response(block: SuggestionBlock) -> BlockResponse:
    return BlockResponse(
        id=block.id,
        blocked_profile_id=block.blocked_profile_id,
        blocked_by=block.blocked_by,
        reason=block.reason,
        is_active=block.is_active,
    )


def _moderator_response(assignment: BranchModerator) -> ModeratorResponse:
    return ModeratorResponse(
        id=assignment.id,
        profile_id=assignment.profile_id,
        branch_hid=assignment.branch_hid,
        assigned_by=assignment.assigned_by,
        is_active=assignment.is_active,
    )


@router.post("/blocks", response_model=SuccessEnvelope[BlockResponse])
async def block_actor(
    request: Request,
    payload: BlockRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    block = await moderation_service.block_actor(
        db, actor_id=actor.profile_id, profile_id=payload.profile_id, reason=payload.reason
    )
    return success_response(request=request, data=_block_response(block))


@router.delete("/blocks/{profile_id}", response_model=SuccessEnvelope[BlockResponse])
async def unblock_actor(
    request: Request,
    profile_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    block = await moderation_service.unblock_actor(db, actor_id=actor.profile_id, profile_id=profile_id)
    return success_response(request=request, data=_block_response(block))


@router.get("/branch-moderators", response_model=SuccessEnvelope[list[ModeratorResponse]])
async def list_branch_moderators(
    request: Request,
    branch_hid: str | None = None,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    assignments = await moderation_service.list_branch_moderators(db, branch_hid=branch_hid)
    return success_response(request=request, data=[_moderator_response(item) for item in assignments])


@router.post("/branch-moderators", response_model=SuccessEnvelope[ModeratorResponse])
async def assign_branch_moderator(
    request: Request,
    payload: ModeratorAssignRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    assignment = await moderation_service.assign_branch_moderator(
        db, actor_id=actor.profile_id, profile_id=payload.profile_id, branch_hid=payload.branch_hid
    )
    return success_response(request=request, data=_moderator_response(assignment))


@router.delete("/branch-moderators/{assignment_id}", response_model=SuccessEnvelope[ModeratorResponse])
async def revoke_branch_moderator(
    request: Request,
    assignment_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    assignment = await moderation_service.revoke_branch_moderator(
        db, actor_id=actor.profile_id, assignment_id=assignment_id
    )
    return success_response(request=request, data=_moderator_response(assignment))


@router.put("/roles/{profile_id}", response_model=SuccessEnvelope[RoleChangeResponse])
async def set_role(
    request: Request,
    profile_id: str,
    payload: RoleChangeRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    profile = await moderation_service.set_role(
        db,
        actor_id=actor.profile_id,
        profile_id=profile_id,
        role=payload.role,
        expected_version=payload.expected_version,
    )
    return success_response(
        request=request,
        data=RoleChangeResponse(profile_id=profile.id, role=profile.role, version=profile.version),
    )
