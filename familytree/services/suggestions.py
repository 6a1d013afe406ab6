from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import get_settings
from familytree.core.errors import ActorBlockedError, NotFoundError, PermissionDeniedError, ValidationFailedError
from familytree.core.messages import message_for
from familytree.domain import actions
from familytree.domain.models import EditSuggestion, Profile
from familytree.domain.permissions import PermissionLevel
from familytree.persistence.locks import atomic, lock_row
from familytree.persistence.repos.graph import SqlFamilyGraph
from familytree.services.audit import append_entry, json_safe, snapshot
from familytree.services.gateway import apply_profile_patch, require_actor, require_live_profile, utc_now
from familytree.services.permissions import resolve
from familytree.services.validation import SUGGESTABLE_FIELDS, validate_profile_patch


logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"


@dataclass(frozen=True)
class ReviewResult:
    suggestion_id: str
    status: str
    new_version: int | None = None
    audit_entry_id: int | None = None


async def _lock_pending(session: AsyncSession, suggestion_id: str) -> EditSuggestion:
    suggestion = await lock_row(session, EditSuggestion, suggestion_id)
    if suggestion is None:
        raise NotFoundError(details={"suggestion_id": suggestion_id})
    if suggestion.status != STATUS_PENDING:
        raise ValidationFailedError(message_for("suggestion_reviewed"), details={"status": suggestion.status})
    return suggestion


async def submit_suggestion(
    session: AsyncSession,
    *,
    actor_id: str | None,
    profile_id: str,
    field_name: str,
    new_value: Any,
    reason: str | None = None,
) -> EditSuggestion:
    actor_id = require_actor(actor_id)
    clean = validate_profile_patch({field_name: new_value}, allowed_fields=SUGGESTABLE_FIELDS)
    settings = get_settings()
    async with atomic(session, timeout_ms=settings.mutation_statement_timeout_ms):
        profile = require_live_profile(await session.get(Profile, profile_id), profile_id)
        graph = SqlFamilyGraph(session)
        level = await resolve(graph, actor_id, profile_id, max_depth=settings.graph_max_depth)
        if level is PermissionLevel.BLOCKED:
            raise ActorBlockedError()
        if level is PermissionLevel.NONE:
            raise PermissionDeniedError(details={"level": level.value})

        since = utc_now() - timedelta(days=1)
        result = await session.execute(
            select(func.count())
            .select_from(EditSuggestion)
            .where(EditSuggestion.submitter_id == actor_id, EditSuggestion.created_at >= since)
        )
        if int(result.scalar() or 0) >= settings.suggestion_daily_limit:
            raise ValidationFailedError(
                message_for("suggestion_rate_limited"), details={"limit": settings.suggestion_daily_limit}
            )

        suggestion = EditSuggestion(
            id=uuid4().hex,
            profile_id=profile_id,
            submitter_id=actor_id,
            field_name=field_name,
            old_value=json_safe(getattr(profile, field_name)),
            new_value=json_safe(clean[field_name]),
            reason=reason,
            status=STATUS_PENDING,
            created_at=utc_now(),
        )
        session.add(suggestion)
        await session.flush()
        await append_entry(
            session,
            action_kind=actions.SUGGESTION_SUBMITTED,
            record_id=suggestion.id,
            actor_id=actor_id,
            old_data=None,
            new_data=snapshot(suggestion),
            metadata={"profile_id": profile_id, "field_name": field_name},
        )
    logger.info("suggestion_submitted suggestion_id=%s profile_id=%s", suggestion.id, profile_id)
    return suggestion


async def approve_suggestion(
    session: AsyncSession,
    *,
    actor_id: str | None,
    suggestion_id: str,
    notes: str | None = None,
) -> ReviewResult:
    actor_id = require_actor(actor_id)
    settings = get_settings()
    async with atomic(session, timeout_ms=settings.mutation_statement_timeout_ms):
        suggestion = await _lock_pending(session, suggestion_id)
        profile = require_live_profile(await lock_row(session, Profile, suggestion.profile_id), suggestion.profile_id)
        graph = SqlFamilyGraph(session)
        level = await resolve(graph, actor_id, profile.id, max_depth=settings.graph_max_depth)
        if not level.allows_review:
            raise PermissionDeniedError(details={"level": level.value})

        old_data = snapshot(suggestion)
        clean = validate_profile_patch(
            {suggestion.field_name: suggestion.new_value}, allowed_fields=SUGGESTABLE_FIELDS
        )
        entry = await apply_profile_patch(
            session,
            profile,
            clean,
            actor_id=actor_id,
            description=notes,
            metadata={"suggestion_id": suggestion.id, "submitter_id": suggestion.submitter_id},
        )
        suggestion.status = STATUS_APPROVED
        suggestion.reviewed_by = actor_id
        suggestion.reviewed_at = utc_now()
        suggestion.notes = notes
        await session.flush()
        await append_entry(
            session,
            action_kind=actions.SUGGESTION_APPROVED,
            record_id=suggestion.id,
            actor_id=actor_id,
            old_data=old_data,
            new_data=snapshot(suggestion),
            metadata={"profile_update_entry_id": entry.id},
        )
        result = ReviewResult(
            suggestion_id=suggestion.id,
            status=suggestion.status,
            new_version=profile.version,
            audit_entry_id=entry.id,
        )
    return result


async def reject_suggestion(
    session: AsyncSession,
    *,
    actor_id: str | None,
    suggestion_id: str,
    notes: str | None = None,
) -> ReviewResult:
    actor_id = require_actor(actor_id)
    settings = get_settings()
    async with atomic(session, timeout_ms=settings.mutation_statement_timeout_ms):
        suggestion = await _lock_pending(session, suggestion_id)
        # The profile's own account may turn down suggestions about itself.
        if actor_id != suggestion.profile_id:
            graph = SqlFamilyGraph(session)
            level = await resolve(graph, actor_id, suggestion.profile_id, max_depth=settings.graph_max_depth)
            if not level.allows_review:
                raise PermissionDeniedError(details={"level": level.value})
        old_data = snapshot(suggestion)
        suggestion.status = STATUS_REJECTED
        suggestion.reviewed_by = actor_id
        suggestion.reviewed_at = utc_now()
        suggestion.notes = notes
        await session.flush()
        entry = await append_entry(
            session,
            action_kind=actions.SUGGESTION_REJECTED,
            record_id=suggestion.id,
            actor_id=actor_id,
            old_data=old_data,
            new_data=snapshot(suggestion),
        )
        result = ReviewResult(suggestion_id=suggestion.id, status=suggestion.status, audit_entry_id=entry.id)
    return result


async def list_suggestions(
    session: AsyncSession,
    *,
    status: str | None = None,
    profile_id: str | None = None,
    submitter_id: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[EditSuggestion]:
    stmt = select(EditSuggestion)
    if status:
        stmt = stmt.where(EditSuggestion.status == status)
    if profile_id:
        stmt = stmt.where(EditSuggestion.profile_id == profile_id)
    if submitter_id:
        stmt = stmt.where(EditSuggestion.submitter_id == submitter_id)
    stmt = stmt.order_by(EditSuggestion.created_at.desc(), EditSuggestion.id).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
