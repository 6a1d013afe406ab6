from __future__ import annotations

import pytest
from sqlalchemy import func, select

from familytree.core.errors import (
    BatchLimitExceededError,
    HasDescendantsError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
    VersionConflictError,
)
from familytree.core.messages import message_for
from familytree.domain import actions
from familytree.domain.models import OperationGroup, Profile
from familytree.domain.permissions import PermissionLevel
from familytree.persistence.db import SessionLocal
from familytree.services.gateway import batch_save, mutate_profile, soft_delete_profile
from familytree.services.permissions import check_family_permission
from familytree.tests.utils.family import fetch_entries, fetch_profile, seed_family


async def _profile_count() -> int:
    async with SessionLocal() as session:
        result = await session.execute(select(func.count()).select_from(Profile))
        return int(result.scalar() or 0)


@pytest.mark.asyncio
async def test_mutation_bumps_version_and_appends_one_entry() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        result = await mutate_profile(
            session,
            actor_id=family.father,
            target_id=family.child_b,
            expected_version=1,
            patch={"nickname": "أبو سالم"},
        )
    assert result.new_version == 2

    profile = await fetch_profile(family.child_b)
    assert profile.nickname == "أبو سالم"
    assert profile.version == 2

    entries = await fetch_entries(record_id=family.child_b)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.id == result.audit_entry_id
    assert entry.action_kind == actions.PROFILE_UPDATE
    assert entry.actor_id == family.father
    assert entry.changed_fields == ["nickname"]
    assert entry.old_data["nickname"] is None
    assert entry.new_data["nickname"] == "أبو سالم"
    assert entry.is_undoable is True
    assert entry.undone_at is None


@pytest.mark.asyncio
async def test_second_writer_with_same_version_conflicts() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        await mutate_profile(
            session, actor_id=family.father, target_id=family.child_b, expected_version=1, patch={"bio": "first"}
        )
    async with SessionLocal() as session:
        with pytest.raises(VersionConflictError) as exc:
            await mutate_profile(
                session, actor_id=family.child_c, target_id=family.child_b, expected_version=1, patch={"bio": "second"}
            )
    assert exc.value.status_code == 409
    assert exc.value.details["current_version"] == 2

    profile = await fetch_profile(family.child_b)
    assert profile.bio == "first"
    assert len(await fetch_entries(record_id=family.child_b)) == 1


@pytest.mark.asyncio
async def test_denied_mutation_writes_nothing() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError):
            await mutate_profile(
                session, actor_id=family.stranger, target_id=family.child_b, expected_version=1, patch={"bio": "x"}
            )
    profile = await fetch_profile(family.child_b)
    assert profile.version == 1
    assert profile.bio is None
    assert await fetch_entries(record_id=family.child_b) == []


@pytest.mark.asyncio
async def test_suggest_level_relative_cannot_mutate_directly() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        assert await check_family_permission(
            session, actor_id=family.cousin, target_id=family.child_b
        ) is PermissionLevel.SUGGEST

    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError) as exc:
            await mutate_profile(
                session, actor_id=family.cousin, target_id=family.child_b, expected_version=1, patch={"bio": "x"}
            )
    assert exc.value.details["level"] == "suggest"
    profile = await fetch_profile(family.child_b)
    assert (profile.version, profile.bio) == (1, None)
    assert await fetch_entries(record_id=family.child_b) == []


@pytest.mark.asyncio
async def test_patch_null_clears_and_absent_keeps() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        await mutate_profile(
            session,
            actor_id=family.father,
            target_id=family.child_b,
            expected_version=1,
            patch={"nickname": "سالم", "bio": "نبذة"},
        )
    async with SessionLocal() as session:
        await mutate_profile(
            session, actor_id=family.father, target_id=family.child_b, expected_version=2, patch={"nickname": None}
        )
    profile = await fetch_profile(family.child_b)
    assert profile.nickname is None
    assert profile.bio == "نبذة"


@pytest.mark.asyncio
async def test_parent_change_rejects_cycles_and_wrong_gender() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as cycle:
            await mutate_profile(
                session,
                actor_id=family.father,
                target_id=family.father,
                expected_version=1,
                patch={"father_id": family.child_b},
            )
    assert cycle.value.message == message_for("parent_cycle")

    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as gender:
            await mutate_profile(
                session,
                actor_id=family.father,
                target_id=family.child_b,
                expected_version=1,
                patch={"mother_id": family.uncle},
            )
    assert gender.value.message == message_for("invalid_parent")


@pytest.mark.asyncio
async def test_single_delete_refuses_profiles_with_children() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(HasDescendantsError) as exc:
            await soft_delete_profile(session, actor_id=family.father, target_id=family.father, expected_version=1)
    assert exc.value.details["descendant_count"] == 2

    async with SessionLocal() as session:
        result = await soft_delete_profile(
            session, actor_id=family.father, target_id=family.child_c, expected_version=1
        )
    assert result.new_version == 2
    deleted = await fetch_profile(family.child_c)
    assert deleted.deleted_at is not None
    entries = await fetch_entries(record_id=family.child_c)
    assert [entry.action_kind for entry in entries] == [actions.PROFILE_SOFT_DELETE]

    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await mutate_profile(
                session, actor_id=family.father, target_id=family.child_c, expected_version=2, patch={"bio": "x"}
            )


@pytest.mark.asyncio
async def test_batch_save_applies_creates_updates_and_deletes_in_one_group() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        result = await batch_save(
            session,
            actor_id=family.father,
            parent_id=family.father,
            creates=[{"name": "مولود", "gender": "male"}],
            updates=[{"id": family.child_b, "expected_version": 1, "nickname": "الكبير"}],
            deletes=[{"id": family.child_c, "expected_version": 1}],
            selected_mother_id=family.father_wife,
        )
    assert (result.created, result.updated, result.deleted) == (1, 1, 1)
    assert result.operation_group_id is not None

    child = await fetch_profile(result.created_ids[0])
    assert child.father_id == family.father
    assert child.mother_id == family.father_wife
    assert child.hid == "1.1.3"
    assert child.generation == 3
    assert (await fetch_profile(family.child_b)).nickname == "الكبير"
    assert (await fetch_profile(family.child_c)).deleted_at is not None

    entries = await fetch_entries(group_id=result.operation_group_id)
    assert [entry.action_kind for entry in entries] == [
        actions.PROFILE_CREATE,
        actions.PROFILE_UPDATE,
        actions.PROFILE_SOFT_DELETE,
    ]
    async with SessionLocal() as session:
        group = await session.get(OperationGroup, result.operation_group_id)
    assert group.group_type == actions.GROUP_BATCH_SAVE
    assert group.operation_count == 3
    assert group.undo_state == "active"


@pytest.mark.asyncio
async def test_batch_save_is_all_or_nothing() -> None:
    family = await seed_family()
    before = await _profile_count()
    async with SessionLocal() as session:
        with pytest.raises(VersionConflictError):
            await batch_save(
                session,
                actor_id=family.father,
                parent_id=family.father,
                creates=[{"name": "مولود", "gender": "female"}],
                updates=[{"id": family.child_b, "expected_version": 7, "bio": "stale"}],
            )
    assert await _profile_count() == before
    assert (await fetch_profile(family.child_b)).bio is None
    async with SessionLocal() as session:
        groups = await session.execute(select(func.count()).select_from(OperationGroup))
    assert int(groups.scalar() or 0) == 0


@pytest.mark.asyncio
async def test_batch_save_rejects_non_children_and_oversized_batches() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as exc:
            await batch_save(
                session,
                actor_id=family.father,
                parent_id=family.father,
                updates=[{"id": family.cousin, "expected_version": 1, "bio": "x"}],
            )
    assert exc.value.message == message_for("not_a_child")

    creates = [{"name": f"طفل {index}", "gender": "male"} for index in range(51)]
    async with SessionLocal() as session:
        with pytest.raises(BatchLimitExceededError):
            await batch_save(session, actor_id=family.father, parent_id=family.father, creates=creates)


@pytest.mark.asyncio
async def test_empty_batch_is_a_no_op() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        result = await batch_save(session, actor_id=family.father, parent_id=family.father)
    assert result.operation_group_id is None
    assert result.created == result.updated == result.deleted == 0
