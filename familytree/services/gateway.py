from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import time
from typing import Any, Mapping, Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import get_settings
from familytree.core.errors import (
    AuthenticationRequiredError,
    HasDescendantsError,
    NotFoundError,
    ValidationFailedError,
    VersionConflictError,
)
from familytree.core.messages import message_for
from familytree.domain import actions
from familytree.domain.models import Profile
from familytree.persistence.locks import advisory_key, atomic, lock_row, lock_rows, try_advisory_lock
from familytree.persistence.repos.graph import SqlFamilyGraph, collect_ancestors, get_node, is_child_of
from familytree.services.audit import append_entry, create_group, snapshot
from familytree.services.permissions import require_direct_edit
from familytree.services.validation import (
    check_batch_size,
    require_version,
    validate_new_profile,
    validate_profile_patch,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutationResult:
    new_version: int
    audit_entry_id: int


@dataclass(frozen=True)
class BatchSaveResult:
    operation_group_id: str | None
    created: int
    updated: int
    deleted: int
    duration_ms: float
    created_ids: list[str] = field(default_factory=list)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def require_actor(actor_id: str | None) -> str:
    # Identity is resolved once at the service boundary and passed in explicitly.
    if not actor_id:
        raise AuthenticationRequiredError()
    return actor_id


def check_version(row: Any, expected_version: int) -> None:
    if row.version != expected_version:
        raise VersionConflictError(
            details={"record_id": row.id, "expected_version": expected_version, "current_version": row.version}
        )


def bump(row: Any) -> None:
    row.version += 1
    row.updated_at = utc_now()


def require_live_profile(profile: Profile | None, profile_id: str) -> Profile:
    if profile is None or profile.deleted_at is not None:
        raise NotFoundError(details={"profile_id": profile_id})
    return profile


async def _check_parent_reference(
    graph: SqlFamilyGraph,
    profile: Profile,
    field_name: str,
    parent_id: str,
) -> None:
    # Parent must exist, be live, carry the slot's gender, and not descend from the profile.
    expected_gender = "male" if field_name == "father_id" else "female"
    if parent_id == profile.id:
        raise ValidationFailedError(message_for("parent_cycle"), details={"field": field_name})
    parent = await get_node(graph, parent_id)
    if parent is None or parent.deleted or parent.gender != expected_gender:
        raise ValidationFailedError(
            message_for("invalid_parent"),
            details={"field": field_name, "parent_id": parent_id, "expected_gender": expected_gender},
        )
    ancestors = await collect_ancestors(graph, parent_id, max_depth=get_settings().graph_max_depth)
    if profile.id in ancestors:
        raise ValidationFailedError(message_for("parent_cycle"), details={"field": field_name})


async def validate_parent_changes(graph: SqlFamilyGraph, profile: Profile, clean: Mapping[str, Any]) -> None:
    for field_name in ("father_id", "mother_id"):
        if field_name in clean and clean[field_name] is not None and clean[field_name] != getattr(profile, field_name):
            await _check_parent_reference(graph, profile, field_name, clean[field_name])


async def apply_profile_patch(
    session: AsyncSession,
    profile: Profile,
    clean: Mapping[str, Any],
    *,
    actor_id: str,
    description: str | None = None,
    operation_group_id: str | None = None,
    metadata: dict[str, Any] | None = None,
):
    # Snapshot first, then write; both land in the caller's transaction.
    old_data = snapshot(profile)
    for field_name, value in clean.items():
        setattr(profile, field_name, value)
    bump(profile)
    await session.flush()
    return await append_entry(
        session,
        action_kind=actions.PROFILE_UPDATE,
        record_id=profile.id,
        actor_id=actor_id,
        old_data=old_data,
        new_data=snapshot(profile),
        description=description,
        operation_group_id=operation_group_id,
        metadata=metadata,
    )


async def count_live_children(graph: SqlFamilyGraph, profile_id: str) -> int:
    children = await graph.children_of([profile_id], live_only=True)
    return len(children.get(profile_id, []))


async def soft_delete(
    session: AsyncSession,
    profile: Profile,
    *,
    actor_id: str,
    action_kind: str = actions.PROFILE_SOFT_DELETE,
    description: str | None = None,
    operation_group_id: str | None = None,
    metadata: dict[str, Any] | None = None,
):
    old_data = snapshot(profile)
    profile.deleted_at = utc_now()
    bump(profile)
    await session.flush()
    return await append_entry(
        session,
        action_kind=action_kind,
        record_id=profile.id,
        actor_id=actor_id,
        old_data=old_data,
        new_data=snapshot(profile),
        description=description,
        operation_group_id=operation_group_id,
        metadata=metadata,
    )


async def mutate_profile(
    session: AsyncSession,
    *,
    actor_id: str | None,
    target_id: str,
    expected_version: int,
    patch: Mapping[str, Any],
    description: str | None = None,
) -> MutationResult:
    actor_id = require_actor(actor_id)
    settings = get_settings()
    async with atomic(session, timeout_ms=settings.mutation_statement_timeout_ms):
        profile = require_live_profile(await lock_row(session, Profile, target_id), target_id)
        graph = SqlFamilyGraph(session)
        await require_direct_edit(graph, actor_id, target_id, max_depth=settings.graph_max_depth)
        check_version(profile, require_version(expected_version))
        clean = validate_profile_patch(patch)
        await validate_parent_changes(graph, profile, clean)
        entry = await apply_profile_patch(
            session, profile, clean, actor_id=actor_id, description=description
        )
        result = MutationResult(new_version=profile.version, audit_entry_id=entry.id)
    logger.info("profile_mutated profile_id=%s version=%s entry_id=%s", target_id, result.new_version, result.audit_entry_id)
    return result


async def soft_delete_profile(
    session: AsyncSession,
    *,
    actor_id: str | None,
    target_id: str,
    expected_version: int,
) -> MutationResult:
    actor_id = require_actor(actor_id)
    settings = get_settings()
    async with atomic(session, timeout_ms=settings.mutation_statement_timeout_ms):
        profile = require_live_profile(await lock_row(session, Profile, target_id), target_id)
        graph = SqlFamilyGraph(session)
        await require_direct_edit(graph, actor_id, target_id, max_depth=settings.graph_max_depth)
        check_version(profile, require_version(expected_version))
        # Single delete never cascades; descendants go through cascade delete.
        children = await count_live_children(graph, target_id)
        if children:
            raise HasDescendantsError(details={"profile_id": target_id, "descendant_count": children})
        entry = await soft_delete(session, profile, actor_id=actor_id)
        result = MutationResult(new_version=profile.version, audit_entry_id=entry.id)
    logger.info("profile_soft_deleted profile_id=%s entry_id=%s", target_id, result.audit_entry_id)
    return result


async def next_child_hid(session: AsyncSession, parent: Profile) -> str | None:
    # Children extend the lineage parent's HID with the next free sibling slot.
    if not parent.hid:
        return None
    prefix = parent.hid + "."
    depth = parent.hid.count(".") + 1
    result = await session.execute(select(Profile.hid).where(Profile.hid.like(prefix + "%")))
    highest = 0
    for hid in result.scalars().all():
        if not hid or hid.count(".") != depth:
            continue
        suffix = hid.rsplit(".", 1)[-1]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1}"


def _split_update(raw: Any, index: int) -> tuple[str, int, dict[str, Any]]:
    if not isinstance(raw, Mapping) or not isinstance(raw.get("id"), str):
        raise ValidationFailedError(details={"index": index, "reason": "update_requires_id"})
    payload = {key: value for key, value in raw.items() if key not in {"id", "expected_version"}}
    return raw["id"], require_version(raw.get("expected_version")), payload


async def _resolve_other_parent(
    graph: SqlFamilyGraph,
    parent: Profile,
    selected_father_id: str | None,
    selected_mother_id: str | None,
) -> dict[str, str | None]:
    # The clicked parent fills its own slot; the other slot comes from the caller's selection.
    if parent.gender == "male":
        links: dict[str, str | None] = {"father_id": parent.id, "mother_id": selected_mother_id}
        other_field, other_id, other_gender = "mother_id", selected_mother_id, "female"
    else:
        links = {"father_id": selected_father_id, "mother_id": parent.id}
        other_field, other_id, other_gender = "father_id", selected_father_id, "male"
    if other_id:
        other = await get_node(graph, other_id)
        if other is None or other.deleted or other.gender != other_gender:
            raise ValidationFailedError(
                message_for("invalid_parent"),
                details={"field": other_field, "parent_id": other_id, "expected_gender": other_gender},
            )
    return links


async def batch_save(
    session: AsyncSession,
    *,
    actor_id: str | None,
    parent_id: str,
    creates: Sequence[Mapping[str, Any]] = (),
    updates: Sequence[Mapping[str, Any]] = (),
    deletes: Sequence[Mapping[str, Any]] = (),
    description: str | None = None,
    selected_father_id: str | None = None,
    selected_mother_id: str | None = None,
) -> BatchSaveResult:
    actor_id = require_actor(actor_id)
    settings = get_settings()
    started = time.monotonic()
    total = len(creates) + len(updates) + len(deletes)
    check_batch_size(total, settings.batch_max_operations)
    if total == 0:
        return BatchSaveResult(operation_group_id=None, created=0, updated=0, deleted=0, duration_ms=0.0)

    parsed_updates = [_split_update(raw, index) for index, raw in enumerate(updates)]
    parsed_deletes = [_split_update(raw, index) for index, raw in enumerate(deletes)]
    clean_creates = [validate_new_profile(raw) for raw in creates]

    created_ids: list[str] = []
    async with atomic(session, timeout_ms=settings.bulk_statement_timeout_ms):
        parent = require_live_profile(await lock_row(session, Profile, parent_id), parent_id)
        graph = SqlFamilyGraph(session)
        await require_direct_edit(graph, actor_id, parent_id, max_depth=settings.graph_max_depth)
        links = await _resolve_other_parent(graph, parent, selected_father_id, selected_mother_id)
        await try_advisory_lock(session, advisory_key("batch_save", parent_id))

        row_ids = [row_id for row_id, _, _ in parsed_updates + parsed_deletes]
        if len(set(row_ids)) != len(row_ids):
            raise ValidationFailedError(details={"reason": "duplicate_child"})
        rows = await lock_rows(session, Profile, row_ids)
        for row_id in row_ids:
            row = require_live_profile(rows.get(row_id), row_id)
            if not is_child_of(row, parent_id):
                raise ValidationFailedError(message_for("not_a_child"), details={"child_id": row_id})
            await require_direct_edit(graph, actor_id, row_id, max_depth=settings.graph_max_depth)

        group = await create_group(
            session,
            group_type=actions.GROUP_BATCH_SAVE,
            actor_id=actor_id,
            description=description,
            metadata={"parent_id": parent_id, "creates": len(creates), "updates": len(updates), "deletes": len(deletes)},
        )
        entry_count = 0

        for clean in clean_creates:
            child = Profile(
                id=uuid4().hex,
                hid=await next_child_hid(session, parent),
                generation=parent.generation + 1,
                sibling_order=clean.pop("sibling_order", 0),
                version=1,
                **links,
                **clean,
            )
            session.add(child)
            await session.flush()
            await append_entry(
                session,
                action_kind=actions.PROFILE_CREATE,
                record_id=child.id,
                actor_id=actor_id,
                old_data=None,
                new_data=snapshot(child),
                description=description,
                operation_group_id=group.id,
            )
            created_ids.append(child.id)
            entry_count += 1

        for row_id, expected_version, payload in parsed_updates:
            row = rows[row_id]
            check_version(row, expected_version)
            clean = validate_profile_patch(payload)
            await validate_parent_changes(graph, row, clean)
            await apply_profile_patch(
                session, row, clean, actor_id=actor_id, description=description, operation_group_id=group.id
            )
            entry_count += 1

        for row_id, expected_version, _payload in parsed_deletes:
            row = rows[row_id]
            check_version(row, expected_version)
            children = await count_live_children(graph, row_id)
            if children:
                raise HasDescendantsError(details={"profile_id": row_id, "descendant_count": children})
            await soft_delete(
                session, row, actor_id=actor_id, description=description, operation_group_id=group.id
            )
            entry_count += 1

        group.operation_count = entry_count
        group_id = group.id

    duration_ms = (time.monotonic() - started) * 1000.0
    logger.info(
        "batch_save_completed parent_id=%s group_id=%s operations=%s duration_ms=%.1f",
        parent_id,
        group_id,
        total,
        duration_ms,
    )
    return BatchSaveResult(
        operation_group_id=group_id,
        created=len(created_ids),
        updated=len(parsed_updates),
        deleted=len(parsed_deletes),
        duration_ms=duration_ms,
        created_ids=created_ids,
    )
