from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import get_settings
from familytree.core.errors import BatchLimitExceededError, PermissionDeniedError
from familytree.core.messages import message_for
from familytree.domain import actions
from familytree.domain.models import Marriage, Profile
from familytree.persistence.locks import atomic, lock_row, lock_rows
from familytree.persistence.repos.graph import SqlFamilyGraph, collect_descendants
from familytree.services.audit import append_entry, create_group, snapshot
from familytree.services.gateway import bump, check_version, require_actor, require_live_profile, soft_delete, utc_now
from familytree.services.permissions import require_direct_edit, resolve_many
from familytree.services.validation import require_version


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeDeleteResult:
    operation_group_id: str
    deleted_ids: list[str]
    marriages_affected: int
    generations_affected: int
    duration_ms: float
    audit_entry_ids: list[int] = field(default_factory=list)


async def cascade_delete_profile(
    session: AsyncSession,
    *,
    actor_id: str | None,
    target_id: str,
    expected_version: int,
    confirm: bool = False,
    max_descendants: int | None = None,
    description: str | None = None,
) -> CascadeDeleteResult:
    actor_id = require_actor(actor_id)
    settings = get_settings()
    limit = settings.cascade_default_max_descendants if max_descendants is None else max_descendants
    started = time.monotonic()

    async with atomic(session, timeout_ms=settings.mutation_statement_timeout_ms):
        root = require_live_profile(await lock_row(session, Profile, target_id), target_id)
        graph = SqlFamilyGraph(session)
        # Root access is settled before the version or the subtree size is revealed.
        await require_direct_edit(graph, actor_id, target_id, max_depth=settings.graph_max_depth)
        check_version(root, require_version(expected_version))

        depths = await collect_descendants(graph, target_id, max_depth=settings.graph_max_depth)
        if len(depths) > limit and not confirm:
            raise BatchLimitExceededError(
                message_for("cascade_confirm_required"),
                details={"descendant_count": len(depths), "max_descendants": limit},
            )

        rows = await lock_rows(session, Profile, depths)
        rows[root.id] = root
        levels = await resolve_many(graph, actor_id, rows, max_depth=settings.graph_max_depth)
        denied = sorted(profile_id for profile_id, level in levels.items() if not level.allows_direct_edit)
        if denied:
            raise PermissionDeniedError(details={"denied_ids": denied[:20], "denied_count": len(denied)})

        group = await create_group(
            session,
            group_type=actions.GROUP_CASCADE_DELETE,
            actor_id=actor_id,
            description=description,
            metadata={
                "root_id": target_id,
                "descendant_count": len(depths),
                "max_depth": max(depths.values(), default=0),
            },
        )

        member_ids = list(rows)
        marriage_result = await session.execute(
            select(Marriage.id).where(
                or_(Marriage.husband_id.in_(member_ids), Marriage.wife_id.in_(member_ids)),
                Marriage.deleted_at.is_(None),
            )
        )
        marriages = await lock_rows(session, Marriage, marriage_result.scalars().all())

        # Marriages first, then profiles deepest-first with the root last: group undo
        # walks newest-first, so the root is restored before its descendants.
        entry_ids: list[int] = []
        for marriage in sorted(marriages.values(), key=lambda row: row.id):
            old_data = snapshot(marriage)
            marriage.deleted_at = utc_now()
            bump(marriage)
            await session.flush()
            entry = await append_entry(
                session,
                action_kind=actions.MARRIAGE_CASCADE_DELETE,
                record_id=marriage.id,
                actor_id=actor_id,
                old_data=old_data,
                new_data=snapshot(marriage),
                description=description,
                operation_group_id=group.id,
                metadata={"root_id": target_id},
            )
            entry_ids.append(entry.id)

        ordered = sorted(depths, key=lambda profile_id: (-depths[profile_id], profile_id))
        ordered.append(root.id)
        for profile_id in ordered:
            entry = await soft_delete(
                session,
                rows[profile_id],
                actor_id=actor_id,
                action_kind=actions.PROFILE_CASCADE_DELETE,
                description=description,
                operation_group_id=group.id,
                metadata={"root_id": target_id, "depth": depths.get(profile_id, 0)},
            )
            entry_ids.append(entry.id)

        group.operation_count = len(entry_ids)
        group_id = group.id

    duration_ms = (time.monotonic() - started) * 1000.0
    generations = len(set(depths.values())) + 1
    logger.info(
        "cascade_delete_completed root_id=%s group_id=%s profiles=%s marriages=%s duration_ms=%.1f",
        target_id,
        group_id,
        len(ordered),
        len(marriages),
        duration_ms,
    )
    return CascadeDeleteResult(
        operation_group_id=group_id,
        deleted_ids=list(reversed(ordered)),
        marriages_affected=len(marriages),
        generations_affected=generations,
        duration_ms=duration_ms,
        audit_entry_ids=entry_ids,
    )
