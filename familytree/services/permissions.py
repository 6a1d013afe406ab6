from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import MAX_GRAPH_DEPTH, get_settings
from familytree.core.errors import ActorBlockedError, PermissionDeniedError
from familytree.domain.permissions import PermissionLevel, is_admin_role
from familytree.persistence.locks import set_statement_timeout
from familytree.persistence.repos.graph import (
    FamilyGraph,
    PersonNode,
    SqlFamilyGraph,
    collect_ancestors,
    get_node,
)


logger = logging.getLogger(__name__)


def hid_in_branch(hid: str | None, branch_hid: str) -> bool:
    # Branch scope is the branch root and every HID below it, split on dot boundaries.
    if not hid or not branch_hid:
        return False
    return hid == branch_hid or hid.startswith(branch_hid + ".")


def _share_parent(a: PersonNode, b: PersonNode) -> bool:
    if a.id == b.id:
        return False
    return bool(set(a.parent_ids) & set(b.parent_ids))


async def _is_grandparent(graph: FamilyGraph, elder: PersonNode, person: PersonNode) -> bool:
    parents = await graph.get_nodes(person.parent_ids)
    return any(elder.id in parent.parent_ids for parent in parents.values())


async def _is_parent_sibling(graph: FamilyGraph, person: PersonNode, other: PersonNode) -> bool:
    # True when `other` is a sibling of one of `person`'s parents (aunt/uncle of person).
    parents = await graph.get_nodes(person.parent_ids)
    return any(_share_parent(parent, other) for parent in parents.values())


async def _are_first_cousins(graph: FamilyGraph, actor: PersonNode, target: PersonNode) -> bool:
    # Two independent parent chains meeting at a shared grandparent.
    actor_parents = await graph.get_nodes(actor.parent_ids)
    target_parents = await graph.get_nodes(target.parent_ids)
    for actor_parent in actor_parents.values():
        for target_parent in target_parents.values():
            if _share_parent(actor_parent, target_parent):
                return True
    return False


class _ActorContext:
    """Actor-side lookups, loaded on first use and shared by every target of one pass."""

    def __init__(self, graph: FamilyGraph, actor: PersonNode, *, max_depth: int) -> None:
        self.graph = graph
        self.actor = actor
        self.max_depth = max_depth
        self._blocked: bool | None = None
        self._branches: list[str] | None = None
        self._spouses: set[str] | None = None
        self._ancestors: dict[str, int] | None = None

    async def blocked(self) -> bool:
        if self._blocked is None:
            self._blocked = await self.graph.is_blocked(self.actor.id)
        return self._blocked

    async def branches(self) -> list[str]:
        if self._branches is None:
            self._branches = await self.graph.moderated_branches(self.actor.id)
        return self._branches

    async def spouses(self) -> set[str]:
        if self._spouses is None:
            self._spouses = await self.graph.current_spouse_ids(self.actor.id)
        return self._spouses

    async def ancestors(self) -> dict[str, int]:
        if self._ancestors is None:
            self._ancestors = await collect_ancestors(self.graph, self.actor.id, max_depth=self.max_depth)
        return self._ancestors


async def _load_actor(graph: FamilyGraph, actor_id: str | None, *, max_depth: int) -> _ActorContext | None:
    actor = await get_node(graph, actor_id)
    if actor is None or actor.deleted:
        return None
    return _ActorContext(graph, actor, max_depth=max_depth)


async def _resolve_target(ctx: _ActorContext, target: PersonNode) -> PermissionLevel:
    # Ordered checks, first match wins. Read-only and deterministic for a fixed graph.
    graph, actor = ctx.graph, ctx.actor
    if await ctx.blocked():
        return PermissionLevel.BLOCKED
    if is_admin_role(actor.role):
        return PermissionLevel.ADMIN
    if target.hid:
        for branch_hid in await ctx.branches():
            if hid_in_branch(target.hid, branch_hid):
                return PermissionLevel.MODERATOR

    if actor.id == target.id:
        return PermissionLevel.INNER
    if target.id in await ctx.spouses():
        return PermissionLevel.INNER
    if actor.id in target.parent_ids or target.id in actor.parent_ids:
        return PermissionLevel.INNER
    if _share_parent(actor, target):
        return PermissionLevel.INNER

    if target.id in await ctx.ancestors():
        return PermissionLevel.INNER
    target_ancestors = await collect_ancestors(graph, target.id, max_depth=ctx.max_depth)
    if actor.id in target_ancestors:
        return PermissionLevel.INNER

    # Subsumed by the ancestor walk unless graph_max_depth is below two.
    if await _is_grandparent(graph, target, actor) or await _is_grandparent(graph, actor, target):
        return PermissionLevel.SUGGEST
    if await _is_parent_sibling(graph, actor, target) or await _is_parent_sibling(graph, target, actor):
        return PermissionLevel.SUGGEST
    if await _are_first_cousins(graph, actor, target):
        return PermissionLevel.SUGGEST
    if target.hid:
        return PermissionLevel.SUGGEST
    return PermissionLevel.NONE


async def resolve(
    graph: FamilyGraph,
    actor_id: str | None,
    target_id: str | None,
    *,
    max_depth: int = MAX_GRAPH_DEPTH,
) -> PermissionLevel:
    ctx = await _load_actor(graph, actor_id, max_depth=max_depth)
    target = await get_node(graph, target_id)
    if ctx is None or target is None:
        return PermissionLevel.NONE
    return await _resolve_target(ctx, target)


async def resolve_many(
    graph: FamilyGraph,
    actor_id: str | None,
    target_ids: Iterable[str],
    *,
    max_depth: int = MAX_GRAPH_DEPTH,
) -> dict[str, PermissionLevel]:
    # One query for the target set; actor lookups run once for the whole batch.
    ids = list(dict.fromkeys(target_ids))
    nodes = await graph.get_nodes([actor_id, *ids] if actor_id else ids)
    ctx = await _load_actor(graph, actor_id, max_depth=max_depth)
    levels: dict[str, PermissionLevel] = {}
    for target_id in ids:
        target = nodes.get(target_id)
        if ctx is None or target is None:
            levels[target_id] = PermissionLevel.NONE
        else:
            levels[target_id] = await _resolve_target(ctx, target)
    return levels


async def require_direct_edit(
    graph: FamilyGraph,
    actor_id: str,
    target_id: str,
    *,
    max_depth: int = MAX_GRAPH_DEPTH,
) -> PermissionLevel:
    # Direct mutation needs inner/moderator/admin; suggest-level actors use the suggestion path.
    level = await resolve(graph, actor_id, target_id, max_depth=max_depth)
    if level is PermissionLevel.BLOCKED:
        raise ActorBlockedError(details={"target_id": target_id, "level": level.value})
    if not level.allows_direct_edit:
        logger.info(
            "direct_edit_denied actor_id=%s target_id=%s level=%s", actor_id, target_id, level.value
        )
        raise PermissionDeniedError(details={"target_id": target_id, "level": level.value})
    return level


async def check_family_permission(session: AsyncSession, *, actor_id: str, target_id: str) -> PermissionLevel:
    settings = get_settings()
    await set_statement_timeout(session, settings.permission_statement_timeout_ms)
    graph = SqlFamilyGraph(session)
    level = await resolve(graph, actor_id, target_id, max_depth=settings.graph_max_depth)
    # Release the read transaction; nothing was written.
    await session.rollback()
    return level
