from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import get_settings
from familytree.core.errors import ValidationFailedError
from familytree.core.messages import message_for
from familytree.domain import actions
from familytree.domain.models import Profile
from familytree.persistence.locks import advisory_key, atomic, lock_row, lock_rows, try_advisory_lock
from familytree.persistence.repos.graph import SqlFamilyGraph, is_child_of
from familytree.services.audit import create_group
from familytree.services.gateway import apply_profile_patch, check_version, require_actor, require_live_profile
from familytree.services.permissions import require_direct_edit
from familytree.services.validation import validate_reorder_operations


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReorderResult:
    operation_group_id: str
    updated_count: int
    duration_ms: float


async def batch_reorder_children(
    session: AsyncSession,
    *,
    actor_id: str | None,
    parent_id: str,
    operations: list[dict[str, Any]],
) -> ReorderResult:
    actor_id = require_actor(actor_id)
    settings = get_settings()
    started = time.monotonic()
    parsed = validate_reorder_operations(operations, cap=settings.batch_max_operations)

    async with atomic(session, timeout_ms=settings.bulk_statement_timeout_ms):
        require_live_profile(await lock_row(session, Profile, parent_id), parent_id)
        graph = SqlFamilyGraph(session)
        await require_direct_edit(graph, actor_id, parent_id, max_depth=settings.graph_max_depth)
        # The sibling-order invariant spans rows, so serialise reorders per parent.
        await try_advisory_lock(session, advisory_key("batch_reorder", parent_id))

        rows = await lock_rows(session, Profile, [op.child_id for op in parsed])
        for op in parsed:
            child = rows.get(op.child_id)
            if child is None or child.deleted_at is not None or not is_child_of(child, parent_id):
                raise ValidationFailedError(message_for("not_a_child"), details={"child_id": op.child_id})
        # All versions are checked before the first write; one stale row aborts the batch.
        for op in parsed:
            check_version(rows[op.child_id], op.expected_version)

        group = await create_group(
            session,
            group_type=actions.GROUP_BATCH_REORDER,
            actor_id=actor_id,
            metadata={"parent_id": parent_id, "batch_size": len(parsed)},
        )
        for op in parsed:
            await apply_profile_patch(
                session,
                rows[op.child_id],
                {"sibling_order": op.new_order},
                actor_id=actor_id,
                operation_group_id=group.id,
                metadata={"parent_id": parent_id},
            )
        group.operation_count = len(parsed)
        group_id = group.id

    duration_ms = (time.monotonic() - started) * 1000.0
    logger.info(
        "batch_reorder_completed parent_id=%s group_id=%s updated=%s duration_ms=%.1f",
        parent_id,
        group_id,
        len(parsed),
        duration_ms,
    )
    return ReorderResult(operation_group_id=group_id, updated_count=len(parsed), duration_ms=duration_ms)
