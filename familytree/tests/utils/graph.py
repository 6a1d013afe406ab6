from __future__ import annotations

from typing import Iterable

from familytree.persistence.repos.graph import PersonNode


class InMemoryFamilyGraph:
    """FamilyGraph over plain dicts for resolver unit tests."""

    def __init__(self) -> None:
        self.nodes: dict[str, PersonNode] = {}
        self.marriages: list[tuple[str, str, str]] = []
        self.blocked: set[str] = set()
        self.moderators: dict[str, list[str]] = {}

    def add(
        self,
        node_id: str,
        *,
        gender: str = "male",
        hid: str | None = None,
        father: str | None = None,
        mother: str | None = None,
        role: str = "user",
        deleted: bool = False,
    ) -> PersonNode:
        node = PersonNode(
            id=node_id,
            hid=hid,
            gender=gender,
            father_id=father,
            mother_id=mother,
            role=role,
            deleted=deleted,
        )
        self.nodes[node_id] = node
        return node

    def marry(self, husband_id: str, wife_id: str, status: str = "current") -> None:
        self.marriages.append((husband_id, wife_id, status))

    async def get_nodes(self, ids: Iterable[str]) -> dict[str, PersonNode]:
        return {node_id: self.nodes[node_id] for node_id in ids if node_id in self.nodes}

    async def children_of(self, ids: Iterable[str], *, live_only: bool = True) -> dict[str, list[str]]:
        wanted = set(ids)
        children: dict[str, list[str]] = {node_id: [] for node_id in wanted}
        for node in self.nodes.values():
            if live_only and node.deleted:
                continue
            for parent_id in node.parent_ids:
                if parent_id in wanted:
                    children[parent_id].append(node.id)
        return children

    async def current_spouse_ids(self, profile_id: str) -> set[str]:
        spouses: set[str] = set()
        for husband_id, wife_id, status in self.marriages:
            if status != "current":
                continue
            if husband_id == profile_id:
                spouses.add(wife_id)
            elif wife_id == profile_id:
                spouses.add(husband_id)
        return spouses

    async def is_blocked(self, profile_id: str) -> bool:
        return profile_id in self.blocked

    async def moderated_branches(self, profile_id: str) -> list[str]:
        return list(self.moderators.get(profile_id, []))
