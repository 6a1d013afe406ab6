from __future__ import annotations

import pytest

from familytree.core.errors import ActorBlockedError, PermissionDeniedError
from familytree.domain.permissions import PermissionLevel
from familytree.persistence.repos.graph import collect_ancestors, collect_descendants
from familytree.services.permissions import hid_in_branch, require_direct_edit, resolve, resolve_many
from familytree.tests.utils.graph import InMemoryFamilyGraph


def _family() -> InMemoryFamilyGraph:
    # G + GM -> A, U; A + AW -> B, C; U -> K; X is unrelated.
    graph = InMemoryFamilyGraph()
    graph.add("G", hid="1")
    graph.add("GM", gender="female")
    graph.add("A", hid="1.1", father="G", mother="GM")
    graph.add("U", hid="1.2", father="G", mother="GM")
    graph.add("AW", gender="female")
    graph.add("B", hid="1.1.1", father="A", mother="AW")
    graph.add("C", hid="1.1.2", gender="female", father="A", mother="AW")
    graph.add("K", hid="1.2.1", father="U")
    graph.add("X", hid="9")
    graph.add("ADMIN", role="admin")
    graph.marry("G", "GM")
    graph.marry("A", "AW")
    return graph


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("actor", "target", "expected"),
    [
        ("B", "B", PermissionLevel.INNER),
        ("A", "AW", PermissionLevel.INNER),
        ("AW", "A", PermissionLevel.INNER),
        ("A", "B", PermissionLevel.INNER),
        ("B", "A", PermissionLevel.INNER),
        ("B", "AW", PermissionLevel.INNER),
        ("B", "C", PermissionLevel.INNER),
        ("B", "G", PermissionLevel.INNER),
        ("G", "B", PermissionLevel.INNER),
        ("B", "U", PermissionLevel.SUGGEST),
        ("U", "B", PermissionLevel.SUGGEST),
        ("B", "K", PermissionLevel.SUGGEST),
        ("X", "B", PermissionLevel.SUGGEST),
        ("X", "AW", PermissionLevel.NONE),
        ("ADMIN", "X", PermissionLevel.ADMIN),
    ],
)
async def test_resolver_levels_for_standard_family(actor: str, target: str, expected: PermissionLevel) -> None:
    graph = _family()
    assert await resolve(graph, actor, target) is expected


@pytest.mark.asyncio
async def test_resolver_is_deterministic() -> None:
    graph = _family()
    first = await resolve(graph, "B", "K")
    second = await resolve(graph, "B", "K")
    assert first is second is PermissionLevel.SUGGEST


@pytest.mark.asyncio
async def test_past_marriage_does_not_grant_inner() -> None:
    graph = InMemoryFamilyGraph()
    graph.add("H")
    graph.add("W", gender="female")
    graph.marry("H", "W", status="past")
    assert await resolve(graph, "H", "W") is PermissionLevel.NONE


@pytest.mark.asyncio
async def test_blocked_actor_overrides_everything() -> None:
    graph = _family()
    graph.add("ADMIN", role="super_admin")
    graph.blocked.update({"B", "ADMIN"})
    assert await resolve(graph, "B", "B") is PermissionLevel.BLOCKED
    assert await resolve(graph, "ADMIN", "A") is PermissionLevel.BLOCKED


@pytest.mark.asyncio
async def test_missing_or_deleted_actor_resolves_none() -> None:
    graph = _family()
    graph.add("GONE", hid="1.3", father="G", deleted=True)
    assert await resolve(graph, None, "A") is PermissionLevel.NONE
    assert await resolve(graph, "NOBODY", "A") is PermissionLevel.NONE
    assert await resolve(graph, "GONE", "A") is PermissionLevel.NONE
    assert await resolve(graph, "A", "NOBODY") is PermissionLevel.NONE


@pytest.mark.asyncio
async def test_moderator_scope_follows_dot_boundaries() -> None:
    graph = _family()
    graph.add("Z", hid="1.10", father="G")
    graph.moderators["X"] = ["1.1"]
    assert await resolve(graph, "X", "A") is PermissionLevel.MODERATOR
    assert await resolve(graph, "X", "B") is PermissionLevel.MODERATOR
    # "1.10" shares the text prefix "1.1" but sits outside the branch.
    assert await resolve(graph, "X", "Z") is PermissionLevel.SUGGEST
    assert await resolve(graph, "X", "U") is PermissionLevel.SUGGEST


def test_hid_in_branch() -> None:
    assert hid_in_branch("1.1", "1.1")
    assert hid_in_branch("1.1.4.2", "1.1")
    assert not hid_in_branch("1.10", "1.1")
    assert not hid_in_branch(None, "1")
    assert not hid_in_branch("1.1", "")


@pytest.mark.asyncio
async def test_grandparent_is_suggest_when_walk_is_shallow() -> None:
    graph = _family()
    assert await resolve(graph, "B", "G", max_depth=1) is PermissionLevel.SUGGEST
    assert await resolve(graph, "G", "B", max_depth=1) is PermissionLevel.SUGGEST


@pytest.mark.asyncio
async def test_distant_ancestor_is_inner_within_depth_bound() -> None:
    graph = InMemoryFamilyGraph()
    graph.add("P0", hid="1")
    for index in range(1, 6):
        graph.add(f"P{index}", hid="1" + ".1" * index, father=f"P{index - 1}")
    assert await resolve(graph, "P5", "P0") is PermissionLevel.INNER
    # Beyond the bound the lineage fallback applies.
    assert await resolve(graph, "P5", "P0", max_depth=3) is PermissionLevel.SUGGEST


@pytest.mark.asyncio
async def test_cousin_marriage_and_cycles_terminate() -> None:
    graph = InMemoryFamilyGraph()
    graph.add("R", hid="1")
    graph.add("S1", hid="1.1", father="R")
    graph.add("S2", hid="1.2", gender="female", father="R")
    graph.add("C1", hid="1.1.1", father="S1")
    graph.add("C2", hid="1.2.1", gender="female", mother="S2")
    # Child of first cousins reaches R through both parents.
    graph.add("D", hid="1.1.1.1", father="C1", mother="C2")
    ancestors = await collect_ancestors(graph, "D")
    assert ancestors == {"C1": 1, "C2": 1, "S1": 2, "S2": 2, "R": 3}

    # Corrupt data: a parent loop must not spin forever.
    graph.add("L1", father="L2")
    graph.add("L2", father="L1")
    assert await collect_ancestors(graph, "L1") == {"L2": 1}
    assert await collect_descendants(graph, "L1") == {"L2": 1}


@pytest.mark.asyncio
async def test_resolve_many_matches_single_calls() -> None:
    graph = _family()
    levels = await resolve_many(graph, "B", ["A", "U", "X", "A"])
    assert levels == {
        "A": PermissionLevel.INNER,
        "U": PermissionLevel.SUGGEST,
        "X": PermissionLevel.SUGGEST,
    }


class _CountingGraph(InMemoryFamilyGraph):
    def __init__(self) -> None:
        super().__init__()
        self.calls: dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    async def is_blocked(self, profile_id: str) -> bool:
        self._count("is_blocked")
        return await super().is_blocked(profile_id)

    async def moderated_branches(self, profile_id: str) -> list[str]:
        self._count("moderated_branches")
        return await super().moderated_branches(profile_id)

    async def current_spouse_ids(self, profile_id: str) -> set[str]:
        self._count("current_spouse_ids")
        return await super().current_spouse_ids(profile_id)


@pytest.mark.asyncio
async def test_resolve_many_loads_actor_facts_once() -> None:
    graph = _CountingGraph()
    graph.add("G", hid="1")
    graph.add("A", hid="1.1", father="G")
    graph.add("U", hid="1.2", father="G")
    graph.add("K", hid="1.2.1", father="U")
    graph.add("B", hid="1.1.1", father="A")
    graph.add("X", hid="9")

    levels = await resolve_many(graph, "B", ["A", "U", "K", "X", "G"])
    assert levels == {
        "A": PermissionLevel.INNER,
        "U": PermissionLevel.SUGGEST,
        "K": PermissionLevel.SUGGEST,
        "X": PermissionLevel.SUGGEST,
        "G": PermissionLevel.INNER,
    }
    assert graph.calls == {"is_blocked": 1, "moderated_branches": 1, "current_spouse_ids": 1}


@pytest.mark.asyncio
async def test_require_direct_edit_raises_by_level() -> None:
    graph = _family()
    assert await require_direct_edit(graph, "A", "B") is PermissionLevel.INNER
    with pytest.raises(PermissionDeniedError) as denied:
        await require_direct_edit(graph, "B", "U")
    assert denied.value.code == "permission_denied"
    assert denied.value.details["level"] == "suggest"
    graph.blocked.add("A")
    with pytest.raises(ActorBlockedError):
        await require_direct_edit(graph, "A", "B")
