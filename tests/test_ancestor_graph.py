from __future__ import annotations

import copy
from collections import Counter
from typing import Any, Optional

import pytest

from kennel_pedigree.ancestor_graph import (
    build_ancestor_graph,
    build_litter_graph,
    generation_summary,
    litter_id,
)
from kennel_pedigree.errors import DogNotFound, RegistryError, StaleSessionError
from kennel_pedigree.models import DogNode, LinkState, ParentType


def _rec(dog_id: str, sex: str, sire: Optional[str] = None, dam: Optional[str] = None) -> dict[str, Any]:
    return {"id": dog_id, "name": dog_id.upper(), "gender": sex, "sireId": sire, "damId": dam}


class SingleLookup:
    """Only the single-dog call; returns a fresh object per call like the API does."""

    def __init__(self, records: list[dict[str, Any]]) -> None:
        self.nodes = {r["id"]: DogNode.from_record(r) for r in records}
        self.calls: list[str] = []

    def fetch_dog_by_id(self, dog_id: str) -> Optional[DogNode]:
        self.calls.append(dog_id)
        node = self.nodes.get(dog_id)
        return copy.deepcopy(node) if node else None


class BatchLookup(SingleLookup):
    def __init__(self, records: list[dict[str, Any]]) -> None:
        super().__init__(records)
        self.batches: list[list[str]] = []

    def fetch_dogs_by_ids(self, dog_ids: list[str]) -> dict[str, Optional[DogNode]]:
        self.batches.append(list(dog_ids))
        return {i: self.fetch_dog_by_id(i) for i in dog_ids}


# R is out of full siblings S x D, both by G out of H
FULL_SIBS = [
    _rec("r", "male", "s", "d"),
    _rec("s", "male", "g", "h"),
    _rec("d", "female", "g", "h"),
    _rec("g", "male"),
    _rec("h", "female"),
]


def test_depth_zero_returns_root_only_flagged_truncated() -> None:
    graph = build_ancestor_graph("r", 0, SingleLookup(FULL_SIBS))

    assert list(graph.nodes) == ["r"]
    assert graph.link_state("r", ParentType.SIRE) is LinkState.TRUNCATED
    assert graph.link_state("r", ParentType.DAM) is LinkState.TRUNCATED
    assert "r" in graph.truncated


def test_shared_ancestor_is_one_node_fetched_once() -> None:
    lookup = SingleLookup(FULL_SIBS)
    graph = build_ancestor_graph("r", 3, lookup)

    assert len(graph) == 5
    # Reached through both parents, but the same object
    assert graph.parent("s", ParentType.SIRE) is graph.parent("d", ParentType.SIRE)
    assert graph.parent("s", ParentType.DAM) is graph.nodes["h"]
    assert set(Counter(lookup.calls).values()) == {1}
    assert graph.depths == {"r": 0, "s": 1, "d": 1, "g": 2, "h": 2}
    assert graph.ancestors("r") == {"s", "d", "g", "h"}
    assert not graph.truncated
    assert not graph.warnings


def test_batch_lookup_uses_one_round_trip_per_generation() -> None:
    lookup = BatchLookup(FULL_SIBS)
    build_ancestor_graph("r", 5, lookup)

    assert lookup.batches == [["r"], ["s", "d"], ["g", "h"]]


def test_missing_parent_record_is_not_found_and_build_continues() -> None:
    records = [
        _rec("r", "male", "ghost", "d"),
        _rec("d", "female"),
    ]
    graph = build_ancestor_graph("r", 3, SingleLookup(records))

    assert graph.link_state("r", ParentType.SIRE) is LinkState.NOT_FOUND
    assert graph.parent_id("r", ParentType.SIRE) is None
    assert graph.parent_id("r", ParentType.DAM) == "d"
    assert [w.kind for w in graph.warnings] == ["not_found"]


def test_unknown_parent_is_not_truncated() -> None:
    graph = build_ancestor_graph("g", 3, SingleLookup(FULL_SIBS))

    assert graph.link_state("g", ParentType.SIRE) is LinkState.UNKNOWN
    assert not graph.truncated


def test_cycle_is_rejected_with_warning() -> None:
    records = [
        _rec("a", "male", "b", None),
        _rec("b", "male", "a", None),
    ]
    graph = build_ancestor_graph("a", 5, SingleLookup(records))

    assert set(graph.nodes) == {"a", "b"}
    assert graph.link_state("b", ParentType.SIRE) is LinkState.CYCLE
    assert "a" not in graph.ancestors("a")
    assert [w.kind for w in graph.warnings] == ["cycle"]


def test_nodes_at_generation_bound_are_truncated_not_unknown() -> None:
    graph = build_ancestor_graph("r", 1, SingleLookup(FULL_SIBS))

    assert set(graph.nodes) == {"r", "s", "d"}
    assert graph.truncated == {"s", "d"}
    assert graph.link_state("s", ParentType.SIRE) is LinkState.TRUNCATED
    assert "g" not in graph


def test_sex_mismatch_is_reported_as_warning() -> None:
    records = [
        _rec("r", "male", None, "d"),
        _rec("d", "male"),
    ]
    graph = build_ancestor_graph("r", 2, SingleLookup(records))

    assert graph.parent_id("r", ParentType.DAM) == "d"
    assert [w.kind for w in graph.warnings] == ["sex_mismatch"]


def test_invalid_arguments() -> None:
    with pytest.raises(ValueError):
        build_ancestor_graph("r", -1, SingleLookup(FULL_SIBS))
    with pytest.raises(DogNotFound):
        build_ancestor_graph("nobody", 3, SingleLookup(FULL_SIBS))


def test_stale_session_discards_build() -> None:
    checks = iter([True, False])

    with pytest.raises(StaleSessionError):
        build_ancestor_graph("r", 3, SingleLookup(FULL_SIBS), is_current=lambda: next(checks))


def test_registry_failure_propagates() -> None:
    class Failing(SingleLookup):
        def fetch_dog_by_id(self, dog_id: str) -> Optional[DogNode]:
            if dog_id == "d":
                raise RegistryError("boom")
            return super().fetch_dog_by_id(dog_id)

    with pytest.raises(RegistryError):
        build_ancestor_graph("r", 3, Failing(FULL_SIBS))


def test_litter_graph_puts_both_partners_at_generation_one() -> None:
    lookup = SingleLookup(FULL_SIBS)
    graph = build_litter_graph("s", "d", 3, lookup)

    assert graph.root_id == litter_id("s", "d")
    assert graph.root.is_placeholder
    assert graph.depths == {graph.root_id: 0, "s": 1, "d": 1, "g": 2, "h": 2}
    assert graph.root_id not in lookup.calls
    assert not graph.truncated


def test_generation_summary_counts_unique_dogs() -> None:
    graph = build_ancestor_graph("r", 3, SingleLookup(FULL_SIBS))
    summary, gen_counts = generation_summary(graph)

    assert gen_counts == {0: 1, 1: 2, 2: 2}
    assert summary["total_nodes"] == 5
    assert summary["max_generation"] == 2
    assert summary["closed_nodes"] == 2
    assert summary["open_nodes"] == 0
