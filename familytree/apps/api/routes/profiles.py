from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.apps.api.deps import get_current_actor, get_db
from familytree.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from familytree.apps.api.response import SuccessEnvelope, success_response
from familytree.core.errors import NotFoundError
from familytree.domain.permissions import PermissionLevel
from familytree.domain.models import Profile
from familytree.services.audit import snapshot
from familytree.services.auth import Actor
from familytree.services.cascade import cascade_delete_profile
from familytree.services.gateway import batch_save, mutate_profile, soft_delete_profile
from familytree.services.permissions import check_family_permission
from familytree.services.reorder import batch_reorder_children


router = APIRouter(prefix="/profiles", tags=["profiles"], responses=DEFAULT_ERROR_RESPONSES)


class ProfileMutationRequest(BaseModel):
    expected_version: int
    # Sparse: a key that is present changes the field, null clears it.
    patch: dict[str, Any]
    description: str | None = None


class MutationResponse(BaseModel):
    new_version: int
    audit_entry_id: int


class BatchUpdate(BaseModel):
    id: str
    expected_version: int
    patch: dict[str, Any] = Field(default_factory=dict)


class BatchDelete(BaseModel):
    id: str
    expected_version: int


class BatchSaveRequest(BaseModel):
    creates: list[dict[str, Any]] = Field(default_factory=list)
    updates: list[BatchUpdate] = Field(default_factory=list)
    deletes: list[BatchDelete] = Field(default_factory=list)
    description: str | None = None
    selected_father_id: str | None = None
    selected_mother_id: str | None = None


class BatchSaveResponse(BaseModel):
    operation_group_id: str | None
    created: int
    updated: int
    deleted: int
    duration_ms: float
    created_ids: list[str]


class CascadeDeleteRequest(BaseModel):
    expected_version: int
    confirm: bool = False
    max_descendants: int = Field(default=100, ge=0)
    description: str | None = None


class CascadeDeleteResponse(BaseModel):
    operation_group_id: str
    deleted_ids: list[str]
    marriages_affected: int
    generations_affected: int
    duration_ms: float


class ReorderOperationIn(BaseModel):
    child_id: str
    new_order: int
    expected_version: int


class ReorderRequest(BaseModel):
    operations: list[ReorderOperationIn]


class ReorderResponse(BaseModel):
    operation_group_id: str
    updated_count: int
    duration_ms: float


# Contact details and the account link are shown to direct editors only.
_CONTACT_FIELDS = ("user_id", "phone", "email")


def _profile_view(profile: Profile, level: PermissionLevel) -> dict[str, Any] | None:
    if level.allows_direct_edit:
        return snapshot(profile)
    if profile.profile_visibility == "private":
        return None
    if profile.profile_visibility == "family" and level in (PermissionLevel.NONE, PermissionLevel.BLOCKED):
        return None
    data = snapshot(profile)
    for field_name in _CONTACT_FIELDS:
        data.pop(field_name, None)
    return data


@router.get("/{profile_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def get_profile(
    request: Request,
    profile_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    level = await check_family_permission(db, actor_id=actor.profile_id, target_id=profile_id)
    profile = await db.get(Profile, profile_id)
    view = None if profile is None or profile.deleted_at is not None else _profile_view(profile, level)
    if view is None:
        raise NotFoundError(details={"profile_id": profile_id})
    return success_response(request=request, data=view)


@router.patch("/{profile_id}", response_model=SuccessEnvelope[MutationResponse])
async def patch_profile(
    request: Request,
    profile_id: str,
    payload: ProfileMutationRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await mutate_profile(
        db,
        actor_id=actor.profile_id,
        target_id=profile_id,
        expected_version=payload.expected_version,
        patch=payload.patch,
        description=payload.description,
    )
    return success_response(
        request=request,
        data=MutationResponse(new_version=result.new_version, audit_entry_id=result.audit_entry_id),
    )


@router.delete("/{profile_id}", response_model=SuccessEnvelope[MutationResponse])
async def delete_profile(
    request: Request,
    profile_id: str,
    expected_version: int = Query(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await soft_delete_profile(
        db, actor_id=actor.profile_id, target_id=profile_id, expected_version=expected_version
    )
    return success_response(
        request=request,
        data=MutationResponse(new_version=result.new_version, audit_entry_id=result.audit_entry_id),
    )


@router.post("/{profile_id}/children/batch", response_model=SuccessEnvelope[BatchSaveResponse])
async def batch_save_children(
    request: Request,
    profile_id: str,
    payload: BatchSaveRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await batch_save(
        db,
        actor_id=actor.profile_id,
        parent_id=profile_id,
        creates=payload.creates,
        updates=[{**item.patch, "id": item.id, "expected_version": item.expected_version} for item in payload.updates],
        deletes=[{"id": item.id, "expected_version": item.expected_version} for item in payload.deletes],
        description=payload.description,
        selected_father_id=payload.selected_father_id,
        selected_mother_id=payload.selected_mother_id,
    )
    return success_response(
        request=request,
        data=BatchSaveResponse(
            operation_group_id=result.operation_group_id,
            created=result.created,
            updated=result.updated,
            deleted=result.deleted,
            duration_ms=result.duration_ms,
            created_ids=result.created_ids,
        ),
    )


@router.post("/{profile_id}/cascade-delete", response_model=SuccessEnvelope[CascadeDeleteResponse])
async def cascade_delete(
    request: Request,
    profile_id: str,
    payload: CascadeDeleteRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await cascade_delete_profile(
        db,
        actor_id=actor.profile_id,
        target_id=profile_id,
        expected_version=payload.expected_version,
        confirm=payload.confirm,
        max_descendants=payload.max_descendants,
        description=payload.description,
    )
    return success_response(
        request=request,
        data=CascadeDeleteResponse(
            operation_group_id=result.operation_group_id,
            deleted_ids=result.deleted_ids,
            marriages_affected=result.marriages_affected,
            generations_affected=result.generations_affected,
            duration_ms=result.duration_ms,
        ),
    )


@router.post("/{profile_id}/children/reorder", response_model=SuccessEnvelope[ReorderResponse])
async def reorder_children(
    request: Request,
    profile_id: str,
    payload: ReorderRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await batch_reorder_children(
        db,
        actor_id=actor.profile_id,
        parent_id=profile_id,
        operations=[operation.model_dump() for operation in payload.operations],
    )
    return success_response(
        request=request,
        data=ReorderResponse(
            operation_group_id=result.operation_group_id,
            updated_count=result.updated_count,
            duration_ms=result.duration_ms,
        ),
    )
