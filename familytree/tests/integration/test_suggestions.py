from __future__ import annotations

import pytest

from familytree.core.config import get_settings
from familytree.core.errors import ActorBlockedError, PermissionDeniedError, ValidationFailedError
from familytree.core.messages import message_for
from familytree.domain import actions
from familytree.persistence.db import SessionLocal
from familytree.services.suggestions import (
    approve_suggestion,
    list_suggestions,
    reject_suggestion,
    submit_suggestion,
)
from familytree.tests.utils.family import (
    assign_moderator,
    block_profile,
    fetch_entry,
    fetch_profile,
    seed_family,
)


async def _suggest_on_child_b(family, value: str = "أبو فهد") -> str:
    # The uncle only reaches his nephew at suggest level.
    async with SessionLocal() as session:
        suggestion = await submit_suggestion(
            session,
            actor_id=family.uncle,
            profile_id=family.child_b,
            field_name="nickname",
            new_value=value,
            reason="معروف بهذا الاسم",
        )
    return suggestion.id


@pytest.mark.asyncio
async def test_suggest_level_actor_submits_instead_of_editing() -> None:
    family = await seed_family()
    suggestion_id = await _suggest_on_child_b(family)

    async with SessionLocal() as session:
        pending = await list_suggestions(session, status="pending", profile_id=family.child_b)
    assert [row.id for row in pending] == [suggestion_id]
    assert pending[0].submitter_id == family.uncle
    assert pending[0].new_value == "أبو فهد"
    assert (await fetch_profile(family.child_b)).nickname is None


@pytest.mark.asyncio
async def test_unrelated_and_blocked_actors_cannot_suggest() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError):
            await submit_suggestion(
                session, actor_id=family.stranger, profile_id=family.father_wife, field_name="bio", new_value="x"
            )

    await block_profile(family.uncle)
    async with SessionLocal() as session:
        with pytest.raises(ActorBlockedError):
            await submit_suggestion(
                session, actor_id=family.uncle, profile_id=family.child_b, field_name="bio", new_value="x"
            )


@pytest.mark.asyncio
async def test_lineage_fields_are_not_suggestable() -> None:
    family = await seed_family()
    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError):
            await submit_suggestion(
                session,
                actor_id=family.uncle,
                profile_id=family.child_b,
                field_name="father_id",
                new_value=family.uncle,
            )


@pytest.mark.asyncio
async def test_approval_needs_a_reviewer_and_happens_once() -> None:
    family = await seed_family()
    suggestion_id = await _suggest_on_child_b(family)

    # Inner kinship is not a review right.
    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError):
            await approve_suggestion(session, actor_id=family.father, suggestion_id=suggestion_id)

    async with SessionLocal() as session:
        result = await approve_suggestion(
            session, actor_id=family.admin, suggestion_id=suggestion_id, notes="تم التحقق"
        )
    assert result.status == "approved"
    assert result.new_version == 2

    profile = await fetch_profile(family.child_b)
    assert profile.nickname == "أبو فهد"
    entry = await fetch_entry(result.audit_entry_id)
    assert entry.action_kind == actions.PROFILE_UPDATE
    assert entry.actor_id == family.admin

    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as exc:
            await approve_suggestion(session, actor_id=family.admin, suggestion_id=suggestion_id)
    assert exc.value.message == message_for("suggestion_reviewed")


@pytest.mark.asyncio
async def test_branch_moderator_can_approve() -> None:
    family = await seed_family()
    await assign_moderator(family.cousin, "1.1")
    suggestion_id = await _suggest_on_child_b(family)

    async with SessionLocal() as session:
        result = await approve_suggestion(session, actor_id=family.cousin, suggestion_id=suggestion_id)
    assert result.status == "approved"
    assert (await fetch_profile(family.child_b)).nickname == "أبو فهد"


@pytest.mark.asyncio
async def test_profile_owner_may_reject() -> None:
    family = await seed_family()
    suggestion_id = await _suggest_on_child_b(family)

    async with SessionLocal() as session:
        result = await reject_suggestion(session, actor_id=family.child_b, suggestion_id=suggestion_id, notes="لا")
    assert result.status == "rejected"
    assert (await fetch_profile(family.child_b)).nickname is None

    async with SessionLocal() as session:
        rejected = await list_suggestions(session, status="rejected", submitter_id=family.uncle)
    assert [row.id for row in rejected] == [suggestion_id]
    assert rejected[0].reviewed_by == family.child_b


@pytest.mark.asyncio
async def test_daily_suggestion_limit(monkeypatch) -> None:
    family = await seed_family()
    monkeypatch.setattr(get_settings(), "suggestion_daily_limit", 2)
    await _suggest_on_child_b(family, "أ")
    await _suggest_on_child_b(family, "ب")

    async with SessionLocal() as session:
        with pytest.raises(ValidationFailedError) as exc:
            await submit_suggestion(
                session, actor_id=family.uncle, profile_id=family.child_b, field_name="nickname", new_value="ج"
            )
    assert exc.value.message == message_for("suggestion_rate_limited")
