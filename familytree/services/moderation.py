from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import get_settings
from familytree.core.errors import NotFoundError, PermissionDeniedError, ValidationFailedError
from familytree.domain import actions
from familytree.domain.models import BranchModerator, Profile, SuggestionBlock
from familytree.domain.permissions import ADMIN_ROLES, ROLE_SUPER_ADMIN, is_admin_role, normalize_role
from familytree.persistence.locks import atomic, lock_row
from familytree.services.audit import append_entry, snapshot
from familytree.services.gateway import bump, check_version, require_actor, require_live_profile, utc_now
from familytree.services.validation import require_version


logger = logging.getLogger(__name__)


async def _require_admin(session: AsyncSession, actor_id: str) -> Profile:
    actor = await session.get(Profile, actor_id)
    if actor is None or actor.deleted_at is not None or not is_admin_role(actor.role):
        raise PermissionDeniedError(details={"required_role": "admin"})
    return actor


async def _active_block(session: AsyncSession, profile_id: str) -> SuggestionBlock | None:
    result = await session.execute(
        select(SuggestionBlock)
        .where(SuggestionBlock.blocked_profile_id == profile_id, SuggestionBlock.is_active.is_(True))
        .with_for_update(nowait=True)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def block_actor(
    session: AsyncSession, *, actor_id: str | None, profile_id: str, reason: str | None = None
) -> SuggestionBlock:
    actor_id = require_actor(actor_id)
    async with atomic(session, timeout_ms=get_settings().mutation_statement_timeout_ms):
        await _require_admin(session, actor_id)
        if profile_id == actor_id:
            raise ValidationFailedError(details={"reason": "cannot_block_self"})
        require_live_profile(await session.get(Profile, profile_id), profile_id)
        if await _active_block(session, profile_id) is not None:
            raise ValidationFailedError(details={"reason": "already_blocked"})
        block = SuggestionBlock(
            id=uuid4().hex,
            blocked_profile_id=profile_id,
            blocked_by=actor_id,
            reason=reason,
            is_active=True,
            created_at=utc_now(),
        )
        session.add(block)
        await session.flush()
        await append_entry(
            session,
            action_kind=actions.ACTOR_BLOCKED,
            record_id=block.id,
            actor_id=actor_id,
            old_data=None,
            new_data=snapshot(block),
            description=reason,
        )
    logger.info("actor_blocked profile_id=%s by=%s", profile_id, actor_id)
    return block


async def unblock_actor(session: AsyncSession, *, actor_id: str | None, profile_id: str) -> SuggestionBlock:
    actor_id = require_actor(actor_id)
    async with atomic(session, timeout_ms=get_settings().mutation_statement_timeout_ms):
        await _require_admin(session, actor_id)
        block = await _active_block(session, profile_id)
        if block is None:
            raise NotFoundError(details={"profile_id": profile_id})
        old_data = snapshot(block)
        block.is_active = False
        block.unblocked_at = utc_now()
        block.unblocked_by = actor_id
        await session.flush()
        await append_entry(
            session,
            action_kind=actions.ACTOR_UNBLOCKED,
            record_id=block.id,
            actor_id=actor_id,
            old_data=old_data,
            new_data=snapshot(block),
        )
    return block


async def assign_branch_moderator(
    session: AsyncSession, *, actor_id: str | None, profile_id: str, branch_hid: str
) -> BranchModerator:
    actor_id = require_actor(actor_id)
    async with atomic(session, timeout_ms=get_settings().mutation_statement_timeout_ms):
        await _require_admin(session, actor_id)
        require_live_profile(await session.get(Profile, profile_id), profile_id)
        root = await session.execute(
            select(Profile.id).where(Profile.hid == branch_hid, Profile.deleted_at.is_(None)).limit(1)
        )
        if root.scalar_one_or_none() is None:
            raise ValidationFailedError(details={"branch_hid": branch_hid, "reason": "unknown_branch"})

        # One active moderator per branch; the new assignment replaces the old one.
        existing = await session.execute(
            select(BranchModerator)
            .where(BranchModerator.branch_hid == branch_hid, BranchModerator.is_active.is_(True))
            .with_for_update(nowait=True)
        )
        now = utc_now()
        for previous in existing.scalars().all():
            previous.is_active = False
            previous.revoked_at = now
        assignment = BranchModerator(
            id=uuid4().hex,
            profile_id=profile_id,
            branch_hid=branch_hid,
            assigned_by=actor_id,
            is_active=True,
            created_at=now,
        )
        session.add(assignment)
        await session.flush()
        await append_entry(
            session,
            action_kind=actions.MODERATOR_ASSIGNED,
            record_id=assignment.id,
            actor_id=actor_id,
            old_data=None,
            new_data=snapshot(assignment),
        )
    logger.info("moderator_assigned profile_id=%s branch_hid=%s", profile_id, branch_hid)
    return assignment


async def revoke_branch_moderator(
    session: AsyncSession, *, actor_id: str | None, assignment_id: str
) -> BranchModerator:
    actor_id = require_actor(actor_id)
    async with atomic(session, timeout_ms=get_settings().mutation_statement_timeout_ms):
        await _require_admin(session, actor_id)
        assignment = await lock_row(session, BranchModerator, assignment_id)
        if assignment is None or not assignment.is_active:
            raise NotFoundError(details={"assignment_id": assignment_id})
        old_data = snapshot(assignment)
        assignment.is_active = False
        assignment.revoked_at = utc_now()
        await session.flush()
        await append_entry(
            session,
            action_kind=actions.MODERATOR_REVOKED,
            record_id=assignment.id,
            actor_id=actor_id,
            old_data=old_data,
            new_data=snapshot(assignment),
        )
    return assignment


async def list_branch_moderators(session: AsyncSession, *, branch_hid: str | None = None) -> list[BranchModerator]:
    stmt = select(BranchModerator).where(BranchModerator.is_active.is_(True))
    if branch_hid:
        stmt = stmt.where(BranchModerator.branch_hid == branch_hid)
    result = await session.execute(stmt.order_by(BranchModerator.branch_hid))
    return list(result.scalars().all())


async def set_role(
    session: AsyncSession,
    *,
    actor_id: str | None,
    profile_id: str,
    role: str,
    expected_version: int,
) -> Profile:
    actor_id = require_actor(actor_id)
    try:
        new_role = normalize_role(role)
    except ValueError as exc:
        raise ValidationFailedError(details={"role": role}) from exc
    async with atomic(session, timeout_ms=get_settings().mutation_statement_timeout_ms):
        actor = await _require_admin(session, actor_id)
        profile = require_live_profile(await lock_row(session, Profile, profile_id), profile_id)
        check_version(profile, require_version(expected_version))
        # Granting or revoking admin rights is reserved for super-admins.
        if (new_role in ADMIN_ROLES or profile.role in ADMIN_ROLES) and actor.role != ROLE_SUPER_ADMIN:
            raise PermissionDeniedError(details={"required_role": ROLE_SUPER_ADMIN})
        old_data = snapshot(profile)
        profile.role = new_role
        bump(profile)
        await session.flush()
        await append_entry(
            session,
            action_kind=actions.ROLE_CHANGED,
            record_id=profile.id,
            actor_id=actor_id,
            old_data=old_data,
            new_data=snapshot(profile),
        )
    logger.info("role_changed profile_id=%s role=%s", profile_id, new_role)
    return profile
