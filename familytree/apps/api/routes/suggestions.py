from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.apps.api.deps import get_current_actor, get_db
from familytree.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from familytree.apps.api.response import Page, SuccessEnvelope, build_page, page_size, success_response
from familytree.domain.models import EditSuggestion
from familytree.services.auth import Actor
from familytree.services import suggestions as suggestion_service


router = APIRouter(prefix="/suggestions", tags=["suggestions"], responses=DEFAULT_ERROR_RESPONSES)


class SuggestionCreateRequest(BaseModel):
    profile_id: str
    field_name: str
    new_value: Any = None
    reason: str | None = Field(default=None, max_length=1000)


class ReviewRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


class SuggestionResponse(BaseModel):
    id: str
    profile_id: str
    submitter_id: str
    field_name: str
    old_value: Any
    new_value: Any
    reason: str | None
    status: str
    reviewed_by: str | None
    reviewed_at: str | None
    notes: str | None
    created_at: str


class ReviewResponse(BaseModel):
    suggestion_id: str
    status: str
    new_version: int | None
    audit_entry_id: int | None


def _to_response(suggestion: EditSuggestion) -> SuggestionResponse:
    return SuggestionResponse(
        id=suggestion.id,
        profile_id=suggestion.profile_id,
        submitter_id=suggestion.submitter_id,
        field_name=suggestion.field_name,
        old_value=suggestion.old_value,
        new_value=suggestion.new_value,
        reason=suggestion.reason,
        status=suggestion.status,
        reviewed_by=suggestion.reviewed_by,
        reviewed_at=suggestion.reviewed_at.isoformat() if suggestion.reviewed_at else None,
        notes=suggestion.notes,
        created_at=suggestion.created_at.isoformat(),
    )


def _review_response(result: suggestion_service.ReviewResult) -> ReviewResponse:
    return ReviewResponse(
        suggestion_id=result.suggestion_id,
        status=result.status,
        new_version=result.new_version,
        audit_entry_id=result.audit_entry_id,
    )


@router.post("", response_model=SuccessEnvelope[SuggestionResponse])
async def submit_suggestion(
    request: Request,
    payload: SuggestionCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    suggestion = await suggestion_service.submit_suggestion(
        db,
        actor_id=actor.profile_id,
        profile_id=payload.profile_id,
        field_name=payload.field_name,
        new_value=payload.new_value,
        reason=payload.reason,
    )
    return success_response(request=request, data=_to_response(suggestion))


@router.get("", response_model=SuccessEnvelope[Page[SuggestionResponse]])
async def list_suggestions(
    request: Request,
    status: str | None = None,
    profile_id: str | None = None,
    submitter_id: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    size = page_size(limit)
    suggestions = await suggestion_service.list_suggestions(
        db,
        status=status,
        profile_id=profile_id,
        submitter_id=submitter_id,
        offset=offset,
        limit=size + 1,
    )
    rows, next_offset = build_page(suggestions, offset=offset, size=size)
    page = Page[SuggestionResponse](items=[_to_response(item) for item in rows], next_offset=next_offset)
    return success_response(request=request, data=page)


@router.post("/{suggestion_id}/approve", response_model=SuccessEnvelope[ReviewResponse])
async def approve_suggestion(
    request: Request,
    suggestion_id: str,
    payload: ReviewRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await suggestion_service.approve_suggestion(
        db, actor_id=actor.profile_id, suggestion_id=suggestion_id, notes=payload.notes if payload else None
    )
    return success_response(request=request, data=_review_response(result))


@router.post("/{suggestion_id}/reject", response_model=SuccessEnvelope[ReviewResponse])
async def reject_suggestion(
    request: Request,
    suggestion_id: str,
    payload: ReviewRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await suggestion_service.reject_suggestion(
        db, actor_id=actor.profile_id, suggestion_id=suggestion_id, notes=payload.notes if payload else None
    )
    return success_response(request=request, data=_review_response(result))
