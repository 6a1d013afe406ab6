from __future__ import annotations

import pytest

from familytree.core.errors import NotFoundError, PermissionDeniedError, ValidationFailedError
from familytree.domain import actions
from familytree.domain.permissions import PermissionLevel
from familytree.persistence.db import SessionLocal
from familytree.services.moderation import (
    assign_branch_moderator,
    block_actor,
    list_branch_moderators,
    revoke_branch_moderator,
    set_role,
    unblock_actor,
)
from familytree.services.permissions import check_family_permission
from familytree.tests.utils.family import add_profile, fetch_entries, fetch_profile, seed_family


async def _level(actor_id: str, target_id: str) -> PermissionLevel:
    async with SessionLocal() as session:
        return await check_family_permission(session, actor_id=actor_id, target_id=target_id)


@pytest.mark.asyncio
async def test_block_and_unblock_toggle_the_resolver() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        block = await block_actor(session, actor_id=family.admin, profile_id=family.uncle, reason="إساءة")
    assert await _level(family.uncle, family.child_b) is PermissionLevel.BLOCKED
    [entry] = await fetch_entries(record_id=block.id)
    assert entry.action_kind == actions.ACTOR_BLOCKED

    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as exc:
            await block_actor(session, actor_id=family.admin, profile_id=family.uncle)
    assert exc.value.details["reason"] == "already_blocked"

    async with SessionLocal() as session:
        await unblock_actor(session, actor_id=family.admin, profile_id=family.uncle)
    assert await _level(family.uncle, family.child_b) is PermissionLevel.SUGGEST

    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await unblock_actor(session, actor_id=family.admin, profile_id=family.uncle)


@pytest.mark.asyncio
async def test_moderation_requires_admin() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError):
            await block_actor(session, actor_id=family.father, profile_id=family.uncle)
    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError):
            await assign_branch_moderator(session, actor_id=family.father, profile_id=family.cousin, branch_hid="1.1")
    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError):
            await block_actor(session, actor_id=family.admin, profile_id=family.admin)


@pytest.mark.asyncio
async def test_branch_moderator_assignment_lifecycle() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as exc:
            await assign_branch_moderator(
                session, actor_id=family.admin, profile_id=family.cousin, branch_hid="7.7"
            )
    assert exc.value.details["reason"] == "unknown_branch"

    async with SessionLocal() as session:
        assignment = await assign_branch_moderator(
            session, actor_id=family.admin, profile_id=family.cousin, branch_hid="1.1"
        )
    assert await _level(family.cousin, family.child_c) is PermissionLevel.MODERATOR

    # A second assignment replaces the first.
    async with SessionLocal() as session:
        replacement = await assign_branch_moderator(
            session, actor_id=family.admin, profile_id=family.uncle, branch_hid="1.1"
        )
    async with SessionLocal() as session:
        active = await list_branch_moderators(session, branch_hid="1.1")
    assert [row.id for row in active] == [replacement.id]
    assert await _level(family.cousin, family.child_c) is PermissionLevel.SUGGEST

    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await revoke_branch_moderator(session, actor_id=family.admin, assignment_id=assignment.id)
    async with SessionLocal() as session:
        await revoke_branch_moderator(session, actor_id=family.admin, assignment_id=replacement.id)
    async with SessionLocal() as session:
        assert await list_branch_moderators(session, branch_hid="1.1") == []


@pytest.mark.asyncio
async def test_admin_roles_are_granted_by_super_admins_only() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError):
            await set_role(session, actor_id=family.admin, profile_id=family.uncle, role="admin", expected_version=1)

    async with SessionLocal() as session:
        profile = await set_role(
            session, actor_id=family.admin, profile_id=family.uncle, role="Moderator", expected_version=1
        )
    assert (profile.role, profile.version) == ("moderator", 2)

    root_id = await add_profile("المالك", "male", role="super_admin")
    async with SessionLocal() as session:
        await set_role(session, actor_id=root_id, profile_id=family.uncle, role="admin", expected_version=2)
    uncle = await fetch_profile(family.uncle)
    assert uncle.role == "admin"
    assert [entry.action_kind for entry in await fetch_entries(record_id=family.uncle)] == [
        actions.ROLE_CHANGED,
        actions.ROLE_CHANGED,
    ]
