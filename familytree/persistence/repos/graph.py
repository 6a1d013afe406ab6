from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import MAX_GRAPH_DEPTH
from familytree.domain.models import BranchModerator, Marriage, Profile, SuggestionBlock


@dataclass(frozen=True)
class PersonNode:
    id: str
    hid: str | None
    gender: str
    father_id: str | None
    mother_id: str | None
    role: str
    deleted: bool = False

    @property
    def parent_ids(self) -> tuple[str, ...]:
        return tuple(pid for pid in (self.father_id, self.mother_id) if pid)


class FamilyGraph(Protocol):
    """Read-only view over the parent/spouse edges the resolver walks."""

    async def get_nodes(self, ids: Iterable[str]) -> dict[str, PersonNode]: ...

    async def children_of(self, ids: Iterable[str], *, live_only: bool = True) -> dict[str, list[str]]: ...

    async def current_spouse_ids(self, profile_id: str) -> set[str]: ...

    async def is_blocked(self, profile_id: str) -> bool: ...

    async def moderated_branches(self, profile_id: str) -> list[str]: ...


async def get_node(graph: FamilyGraph, profile_id: str | None) -> PersonNode | None:
    if not profile_id:
        return None
    nodes = await graph.get_nodes([profile_id])
    return nodes.get(profile_id)


async def collect_ancestors(
    graph: FamilyGraph, start_id: str, *, max_depth: int = MAX_GRAPH_DEPTH
) -> dict[str, int]:
    # Breadth-first walk up both parent slots; returns ancestor id -> hop count.
    # Cousin marriages give one person two paths to the same ancestor, so track visited ids.
    found: dict[str, int] = {}
    visited = {start_id}
    frontier = [start_id]
    depth = 0
    while frontier and depth < max_depth:
        depth += 1
        nodes = await graph.get_nodes(frontier)
        next_frontier: list[str] = []
        for node_id in frontier:
            node = nodes.get(node_id)
            if node is None:
                continue
            for parent_id in node.parent_ids:
                if parent_id in visited:
                    continue
                visited.add(parent_id)
                found[parent_id] = depth
                next_frontier.append(parent_id)
        frontier = next_frontier
    return found


async def collect_descendants(
    graph: FamilyGraph,
    root_id: str,
    *,
    max_depth: int = MAX_GRAPH_DEPTH,
    live_only: bool = True,
) -> dict[str, int]:
    # Breadth-first walk down through either parent slot; returns descendant id -> depth.
    found: dict[str, int] = {}
    visited = {root_id}
    frontier = [root_id]
    depth = 0
    while frontier and depth < max_depth:
        depth += 1
        children = await graph.children_of(frontier, live_only=live_only)
        next_frontier: list[str] = []
        for parent_id in frontier:
            for child_id in children.get(parent_id, []):
                if child_id in visited:
                    continue
                visited.add(child_id)
                found[child_id] = depth
                next_frontier.append(child_id)
        frontier = next_frontier
    return found


def _to_node(profile: Profile) -> PersonNode:
    return PersonNode(
        id=profile.id,
        hid=profile.hid,
        gender=profile.gender,
        father_id=profile.father_id,
        mother_id=profile.mother_id,
        role=profile.role,
        deleted=profile.deleted_at is not None,
    )


class SqlFamilyGraph:
    """FamilyGraph backed by the profiles table.

    Nodes are cached for the lifetime of the instance, which is one operation;
    reads take no locks, the mutation that follows is version-gated anyway.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._nodes: dict[str, PersonNode | None] = {}

    async def get_nodes(self, ids: Iterable[str]) -> dict[str, PersonNode]:
        wanted = {node_id for node_id in ids if node_id}
        missing = [node_id for node_id in wanted if node_id not in self._nodes]
        if missing:
            result = await self._session.execute(select(Profile).where(Profile.id.in_(missing)))
            loaded = {profile.id: _to_node(profile) for profile in result.scalars().all()}
            for node_id in missing:
                self._nodes[node_id] = loaded.get(node_id)
        return {node_id: self._nodes[node_id] for node_id in wanted if self._nodes.get(node_id) is not None}

    async def prefetch(self, ids: Iterable[str]) -> None:
        await self.get_nodes(ids)

    def forget(self, ids: Iterable[str]) -> None:
        # Drop cached nodes after this operation rewrote them.
        for node_id in ids:
            self._nodes.pop(node_id, None)

    async def children_of(self, ids: Iterable[str], *, live_only: bool = True) -> dict[str, list[str]]:
        parent_ids = list({node_id for node_id in ids if node_id})
        children: dict[str, list[str]] = {parent_id: [] for parent_id in parent_ids}
        if not parent_ids:
            return children
        stmt = select(Profile).where(
            or_(Profile.father_id.in_(parent_ids), Profile.mother_id.in_(parent_ids))
        )
        if live_only:
            stmt = stmt.where(Profile.deleted_at.is_(None))
        stmt = stmt.order_by(Profile.sibling_order, Profile.id)
        result = await self._session.execute(stmt)
        for profile in result.scalars().all():
            self._nodes.setdefault(profile.id, _to_node(profile))
            for parent_id in profile_parent_ids(profile):
                if parent_id in children:
                    children[parent_id].append(profile.id)
        return children

    async def current_spouse_ids(self, profile_id: str) -> set[str]:
        result = await self._session.execute(
            select(Marriage.husband_id, Marriage.wife_id).where(
                or_(Marriage.husband_id == profile_id, Marriage.wife_id == profile_id),
                Marriage.status == "current",
                Marriage.deleted_at.is_(None),
            )
        )
        spouses: set[str] = set()
        for husband_id, wife_id in result.all():
            spouses.add(wife_id if husband_id == profile_id else husband_id)
        return spouses

    async def is_blocked(self, profile_id: str) -> bool:
        result = await self._session.execute(
            select(SuggestionBlock.id)
            .where(
                SuggestionBlock.blocked_profile_id == profile_id,
                SuggestionBlock.is_active.is_(True),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def moderated_branches(self, profile_id: str) -> list[str]:
        result = await self._session.execute(
            select(BranchModerator.branch_hid).where(
                BranchModerator.profile_id == profile_id,
                BranchModerator.is_active.is_(True),
            )
        )
        return [branch_hid for branch_hid in result.scalars().all() if branch_hid]


def profile_parent_ids(profile: Profile) -> tuple[str, ...]:
    return tuple(pid for pid in (profile.father_id, profile.mother_id) if pid)


def is_child_of(profile: Profile, parent_id: str) -> bool:
    return parent_id in profile_parent_ids(profile)
