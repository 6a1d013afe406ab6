from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from familytree.core.errors import (
    ActorBlockedError,
    AlreadyUndoneError,
    PermissionDeniedError,
    ValidationFailedError,
    VersionConflictError,
)
from familytree.core.messages import message_for
from familytree.domain import actions
from familytree.persistence.db import SessionLocal
from familytree.services.audit import snapshot
from familytree.services.gateway import batch_save, mutate_profile, soft_delete_profile
from familytree.services.marriages import create_marriage
from familytree.services.undo import check_undo_permission, undo
from familytree.tests.utils.family import (
    add_profile,
    age_entry,
    block_profile,
    fetch_entries,
    fetch_entry,
    fetch_profile,
    seed_family,
)


def _days_ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


async def _edit_child_b(family, patch: dict | None = None) -> int:
    async with SessionLocal() as session:
        result = await mutate_profile(
            session,
            actor_id=family.father,
            target_id=family.child_b,
            expected_version=1,
            patch=patch or {"nickname": "سالم"},
        )
    return result.audit_entry_id


@pytest.mark.asyncio
async def test_undo_restores_old_values_and_appends_compensation() -> None:
    family = await seed_family()
    entry_id = await _edit_child_b(family)

    async with SessionLocal() as session:
        outcome = await undo(session, entry_id=entry_id, actor_id=family.father, reason="تعديل خاطئ")
    assert outcome.success is True
    assert outcome.new_version == 3
    assert len(outcome.compensation_entry_ids) == 1

    profile = await fetch_profile(family.child_b)
    assert profile.nickname is None
    assert profile.version == 3

    original = await fetch_entry(entry_id)
    assert original.undone_at is not None
    assert original.undone_by == family.father
    assert original.undo_reason == "تعديل خاطئ"

    clr = await fetch_entry(outcome.compensation_entry_ids[0])
    assert clr.action_kind == "undo_" + actions.PROFILE_UPDATE
    assert clr.undo_of_id == entry_id
    assert clr.is_undoable is False
    assert clr.old_data["nickname"] == "سالم"
    assert clr.new_data["nickname"] is None

    async with SessionLocal() as session:
        check = await check_undo_permission(session, entry_id=entry_id, actor_id=family.father)
    assert check.can_undo is False
    assert check.code == "already_undone"


@pytest.mark.asyncio
async def test_second_undo_is_rejected_without_side_effects() -> None:
    family = await seed_family()
    entry_id = await _edit_child_b(family)
    async with SessionLocal() as session:
        await undo(session, entry_id=entry_id, actor_id=family.father)

    async with SessionLocal() as session:
        with pytest.raises(AlreadyUndoneError):
            await undo(session, entry_id=entry_id, actor_id=family.father)
    assert (await fetch_profile(family.child_b)).version == 3
    assert len(await fetch_entries(record_id=family.child_b)) == 2


@pytest.mark.asyncio
async def test_compensation_records_are_not_undoable() -> None:
    family = await seed_family()
    entry_id = await _edit_child_b(family)
    async with SessionLocal() as session:
        outcome = await undo(session, entry_id=entry_id, actor_id=family.father)

    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as exc:
            await undo(session, entry_id=outcome.compensation_entry_ids[0], actor_id=family.admin)
    assert exc.value.message == message_for("not_undoable")


@pytest.mark.asyncio
async def test_undo_soft_delete_brings_profile_back() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        result = await soft_delete_profile(
            session, actor_id=family.father, target_id=family.child_c, expected_version=1
        )
    async with SessionLocal() as session:
        outcome = await undo(session, entry_id=result.audit_entry_id, actor_id=family.father)
    assert outcome.new_version == 3
    restored = await fetch_profile(family.child_c)
    assert restored.deleted_at is None


@pytest.mark.asyncio
async def test_undo_of_batch_create_removes_the_new_child() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        result = await batch_save(
            session,
            actor_id=family.father,
            parent_id=family.father,
            creates=[{"name": "مولود", "gender": "male"}],
        )
    [entry] = await fetch_entries(group_id=result.operation_group_id)
    assert entry.action_kind == actions.PROFILE_CREATE

    async with SessionLocal() as session:
        await undo(session, entry_id=entry.id, actor_id=family.father)
    assert (await fetch_profile(result.created_ids[0])).deleted_at is not None


@pytest.mark.asyncio
async def test_per_kind_window_binds_owner_and_admin() -> None:
    family = await seed_family()
    entry_id = await _edit_child_b(family)
    await age_entry(entry_id, _days_ago(31))

    for actor_id in (family.father, family.admin):
        async with SessionLocal() as session:
            check = await check_undo_permission(session, entry_id=entry_id, actor_id=actor_id)
        assert check.can_undo is False
        assert check.reason == message_for("undo_window_expired")

    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError):
            await undo(session, entry_id=entry_id, actor_id=family.admin)
    assert (await fetch_profile(family.child_b)).nickname == "سالم"


@pytest.mark.asyncio
async def test_admin_window_applies_to_kinds_without_their_own() -> None:
    family = await seed_family()
    wife_id = await add_profile("زوجة العم", "female")
    async with SessionLocal() as session:
        created = await create_marriage(session, actor_id=family.admin, husband_id=family.uncle, wife_id=wife_id)

    await age_entry(created.audit_entry_id, _days_ago(91))
    async with SessionLocal() as session:
        check = await check_undo_permission(session, entry_id=created.audit_entry_id, actor_id=family.admin)
    assert check.reason == message_for("undo_window_expired")

    await age_entry(created.audit_entry_id, _days_ago(60))
    async with SessionLocal() as session:
        outcome = await undo(session, entry_id=created.audit_entry_id, actor_id=family.admin)
    assert outcome.success is True


@pytest.mark.asyncio
async def test_undo_permission_falls_back_to_the_resolver() -> None:
    family = await seed_family()
    entry_id = await _edit_child_b(family)

    # A sibling has inner access to the edited profile.
    async with SessionLocal() as session:
        check = await check_undo_permission(session, entry_id=entry_id, actor_id=family.child_c)
    assert check.can_undo is True

    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError):
            await undo(session, entry_id=entry_id, actor_id=family.stranger)

    async with SessionLocal() as session:
        outcome = await undo(session, entry_id=entry_id, actor_id=family.child_c)
    assert outcome.success is True


@pytest.mark.asyncio
async def test_blocked_owner_cannot_undo() -> None:
    family = await seed_family()
    entry_id = await _edit_child_b(family)
    await block_profile(family.father)

    async with SessionLocal() as session:
        with pytest.raises(ActorBlockedError):
            await undo(session, entry_id=entry_id, actor_id=family.father)
    assert (await fetch_entry(entry_id)).undone_at is None


def _restorable(profile) -> dict:
    data = snapshot(profile)
    for column in ("version", "updated_at"):
        data.pop(column)
    return data


@pytest.mark.asyncio
async def test_undo_round_trip_restores_every_field() -> None:
    family = await seed_family()
    before = _restorable(await fetch_profile(family.child_b))
    entry_id = await _edit_child_b(family, {"nickname": "سالم", "bio": "نبذة", "phone": "0500000000"})

    async with SessionLocal() as session:
        await undo(session, entry_id=entry_id, actor_id=family.father)
    assert _restorable(await fetch_profile(family.child_b)) == before


@pytest.mark.asyncio
async def test_undo_refuses_to_overwrite_later_edits() -> None:
    family = await seed_family()
    entry_id = await _edit_child_b(family)
    async with SessionLocal() as session:
        await mutate_profile(
            session, actor_id=family.father, target_id=family.child_b, expected_version=2, patch={"bio": "نبذة"}
        )

    async with SessionLocal() as session:
        with pytest.raises(VersionConflictError) as exc:
            await undo(session, entry_id=entry_id, actor_id=family.father)
    assert exc.value.details["expected_version"] == 2
    assert exc.value.details["current_version"] == 3

    profile = await fetch_profile(family.child_b)
    assert (profile.nickname, profile.bio, profile.version) == ("سالم", "نبذة", 3)
    assert (await fetch_entry(entry_id)).undone_at is None


@pytest.mark.asyncio
async def test_undo_will_not_relink_to_a_deleted_parent() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        moved = await mutate_profile(
            session,
            actor_id=family.admin,
            target_id=family.cousin,
            expected_version=1,
            patch={"father_id": family.grandfather},
        )
    # The old father has no live children left, so a plain delete goes through.
    async with SessionLocal() as session:
        await soft_delete_profile(session, actor_id=family.admin, target_id=family.uncle, expected_version=1)

    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as exc:
            await undo(session, entry_id=moved.audit_entry_id, actor_id=family.admin)
    assert exc.value.message == message_for("invalid_parent")
    assert exc.value.details["parent_id"] == family.uncle

    cousin = await fetch_profile(family.cousin)
    assert cousin.father_id == family.grandfather
    assert cousin.version == 2
