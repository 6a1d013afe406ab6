from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.apps.api.deps import get_current_actor, get_db
from familytree.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from familytree.apps.api.response import SuccessEnvelope, success_response
from familytree.domain.models import Marriage
from familytree.services.auth import Actor
from familytree.services import marriages as marriage_service


router = APIRouter(prefix="/marriages", tags=["marriages"], responses=DEFAULT_ERROR_RESPONSES)


class MarriageCreateRequest(BaseModel):
    husband_id: str
    wife_id: str
    status: str = "current"
    start_date: date | None = None
    end_date: date | None = None


class MarriageUpdateRequest(BaseModel):
    expected_version: int
    patch: dict[str, Any]


class MarriageMutationResponse(BaseModel):
    marriage_id: str
    version: int
    audit_entry_id: int
    auto_deleted_profile_ids: list[str]


class MarriageResponse(BaseModel):
    id: str
    husband_id: str
    wife_id: str
    status: str
    start_date: date | None
    end_date: date | None
    version: int
    deleted: bool


def _mutation_response(result: marriage_service.MarriageResult) -> MarriageMutationResponse:
    return MarriageMutationResponse(
        marriage_id=result.marriage_id,
        version=result.version,
        audit_entry_id=result.audit_entry_id,
        auto_deleted_profile_ids=result.auto_deleted_profile_ids,
    )


def _to_response(marriage: Marriage) -> MarriageResponse:
    return MarriageResponse(
        id=marriage.id,
        husband_id=marriage.husband_id,
        wife_id=marriage.wife_id,
        status=marriage.status,
        start_date=marriage.start_date,
        end_date=marriage.end_date,
        version=marriage.version,
        deleted=marriage.deleted_at is not None,
    )


@router.post("", response_model=SuccessEnvelope[MarriageMutationResponse])
async def create_marriage(
    request: Request,
    payload: MarriageCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await marriage_service.create_marriage(
        db,
        actor_id=actor.profile_id,
        husband_id=payload.husband_id,
        wife_id=payload.wife_id,
        status=payload.status,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    return success_response(request=request, data=_mutation_response(result))


@router.get("", response_model=SuccessEnvelope[list[MarriageResponse]])
async def list_marriages(
    request: Request,
    profile_id: str = Query(...),
    include_deleted: bool = False,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    marriages = await marriage_service.list_marriages(db, profile_id=profile_id, include_deleted=include_deleted)
    return success_response(request=request, data=[_to_response(marriage) for marriage in marriages])


@router.patch("/{marriage_id}", response_model=SuccessEnvelope[MarriageMutationResponse])
async def update_marriage(
    request: Request,
    marriage_id: str,
    payload: MarriageUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await marriage_service.update_marriage(
        db,
        actor_id=actor.profile_id,
        marriage_id=marriage_id,
        expected_version=payload.expected_version,
        patch=payload.patch,
    )
    return success_response(request=request, data=_mutation_response(result))


@router.delete("/{marriage_id}", response_model=SuccessEnvelope[MarriageMutationResponse])
async def delete_marriage(
    request: Request,
    marriage_id: str,
    expected_version: int = Query(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await marriage_service.delete_marriage(
        db, actor_id=actor.profile_id, marriage_id=marriage_id, expected_version=expected_version
    )
    return success_response(request=request, data=_mutation_response(result))
