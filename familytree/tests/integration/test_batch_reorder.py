from __future__ import annotations

import pytest

from familytree.core.errors import PermissionDeniedError, ValidationFailedError, VersionConflictError
from familytree.core.messages import message_for
from familytree.domain import actions
from familytree.persistence.db import SessionLocal
from familytree.services.reorder import batch_reorder_children
from familytree.services.undo import undo_cascade
from familytree.tests.utils.family import fetch_entries, fetch_profile, seed_family


@pytest.mark.asyncio
async def test_swap_sibling_order_in_one_group() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        result = await batch_reorder_children(
            session,
            actor_id=family.father,
            parent_id=family.father,
            operations=[
                {"child_id": family.child_b, "new_order": 1, "expected_version": 1},
                {"child_id": family.child_c, "new_order": 0, "expected_version": 1},
            ],
        )
    assert result.updated_count == 2

    b = await fetch_profile(family.child_b)
    c = await fetch_profile(family.child_c)
    assert (b.sibling_order, b.version) == (1, 2)
    assert (c.sibling_order, c.version) == (0, 2)

    entries = await fetch_entries(group_id=result.operation_group_id)
    assert [entry.action_kind for entry in entries] == [actions.PROFILE_UPDATE, actions.PROFILE_UPDATE]
    assert all(entry.changed_fields == ["sibling_order"] for entry in entries)


@pytest.mark.asyncio
async def test_one_stale_version_aborts_the_whole_reorder() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(VersionConflictError):
            await batch_reorder_children(
                session,
                actor_id=family.father,
                parent_id=family.father,
                operations=[
                    {"child_id": family.child_b, "new_order": 1, "expected_version": 1},
                    {"child_id": family.child_c, "new_order": 0, "expected_version": 5},
                ],
            )
    assert (await fetch_profile(family.child_b)).sibling_order == 0
    assert (await fetch_profile(family.child_c)).sibling_order == 1
    assert await fetch_entries(record_id=family.child_b) == []


@pytest.mark.asyncio
async def test_duplicate_orders_and_foreign_children_are_rejected() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as duplicate:
            await batch_reorder_children(
                session,
                actor_id=family.father,
                parent_id=family.father,
                operations=[
                    {"child_id": family.child_b, "new_order": 2, "expected_version": 1},
                    {"child_id": family.child_c, "new_order": 2, "expected_version": 1},
                ],
            )
    assert duplicate.value.message == message_for("duplicate_order")

    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as foreign:
            await batch_reorder_children(
                session,
                actor_id=family.father,
                parent_id=family.father,
                operations=[{"child_id": family.cousin, "new_order": 0, "expected_version": 1}],
            )
    assert foreign.value.message == message_for("not_a_child")


@pytest.mark.asyncio
async def test_reorder_requires_direct_edit_on_parent() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError):
            await batch_reorder_children(
                session,
                actor_id=family.cousin,
                parent_id=family.father,
                operations=[{"child_id": family.child_b, "new_order": 3, "expected_version": 1}],
            )


@pytest.mark.asyncio
async def test_group_undo_restores_previous_order() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        result = await batch_reorder_children(
            session,
            actor_id=family.father,
            parent_id=family.father,
            operations=[
                {"child_id": family.child_b, "new_order": 1, "expected_version": 1},
                {"child_id": family.child_c, "new_order": 0, "expected_version": 1},
            ],
        )
    entries = await fetch_entries(group_id=result.operation_group_id)

    async with SessionLocal() as session:
        outcome = await undo_cascade(session, entry_id=entries[0].id, actor_id=family.father)
    assert outcome.success is True
    assert outcome.restored_count == 2
    assert outcome.failed_entry_ids == []
    assert len(outcome.compensation_entry_ids) == 2

    b = await fetch_profile(family.child_b)
    c = await fetch_profile(family.child_c)
    assert (b.sibling_order, b.version) == (0, 3)
    assert (c.sibling_order, c.version) == (1, 3)
