from __future__ import annotations

from typing import Any, Optional

import pytest

from kennel_pedigree.ancestor_graph import build_ancestor_graph
from kennel_pedigree.dog_store import JsonDogStore
from kennel_pedigree.errors import DogNotFound
from kennel_pedigree.models import AncestorGraph, ChartOptions, DogNode, LinkState, ParentType, Sex
from kennel_pedigree.pedigree_layout import (
    SlotState,
    layout_horizontal,
    layout_vertical,
    node_labels,
    placeholder_columns,
)


def _rec(dog_id: str, sex: str, sire: Optional[str] = None, dam: Optional[str] = None) -> dict[str, Any]:
    return {"id": dog_id, "name": dog_id.upper(), "gender": sex, "sireId": sire, "damId": dam}


FULL_SIBS = [
    _rec("r", "male", "s", "d"),
    _rec("s", "male", "g", "h"),
    _rec("d", "female", "g", "h"),
    _rec("g", "male"),
    _rec("h", "female"),
]


def _graph(tmp_path, records: list[dict[str, Any]], generations: int = 3) -> AncestorGraph:
    return build_ancestor_graph("r", generations, JsonDogStore(tmp_path / "dogs.json", records=records))


@pytest.mark.parametrize("generations", [0, 1, 3, 5])
def test_columns_have_fixed_shape(tmp_path, generations: int) -> None:
    graph = _graph(tmp_path, FULL_SIBS, generations)
    columns = layout_horizontal("r", graph, generations)

    assert len(columns) == generations + 1
    assert [len(c) for c in columns] == [2 ** g for g in range(generations + 1)]


def test_slot_parents_follow_position_rule(tmp_path) -> None:
    graph = _graph(tmp_path, FULL_SIBS)
    columns = layout_horizontal("r", graph, 3)

    sire, dam = columns.parents_of(1, 1)   # parents of d
    assert sire.node.id == "g" and sire.parent_type is ParentType.SIRE
    assert dam.node.id == "h" and dam.parent_type is ParentType.DAM
    assert columns.parents_of(3, 0) is None


def test_shared_ancestor_is_same_object_in_both_layouts(tmp_path) -> None:
    graph = _graph(tmp_path, FULL_SIBS)
    columns = layout_horizontal("r", graph, 3)
    tree = layout_vertical("r", graph, 3)

    g = graph.nodes["g"]
    assert columns.slot(2, 0).node is g
    assert columns.slot(2, 2).node is g
    assert tree.sire.sire.node is g
    assert tree.dam.sire.node is g
    assert tree.dam.sire.position == 2


def test_empty_slots_are_typed_placeholders(tmp_path) -> None:
    graph = _graph(tmp_path, FULL_SIBS)
    columns = layout_horizontal("r", graph, 3)

    # g and h are founders: generation 3 is all unknown
    assert {s.state for s in columns[3]} == {SlotState.UNKNOWN}
    assert all(s.node is None for s in columns[3])


def test_truncated_state_propagates_beyond_the_fetched_bound(tmp_path) -> None:
    graph = _graph(tmp_path, FULL_SIBS, generations=1)
    columns = layout_horizontal("r", graph, 3)

    assert {s.state for s in columns[2]} == {SlotState.TRUNCATED}
    assert {s.state for s in columns[3]} == {SlotState.TRUNCATED}


def test_pending_link_renders_as_loading() -> None:
    graph = AncestorGraph(root_id="r", max_generations=2)
    graph.nodes["r"] = DogNode(id="r", sex=Sex.MALE, sire_id="s")
    graph.links[("r", ParentType.DAM)] = LinkState.UNKNOWN

    columns = layout_horizontal("r", graph, 2)
    assert columns.slot(1, 0).state is SlotState.PENDING
    assert columns.slot(1, 1).state is SlotState.UNKNOWN
    assert [s.state for s in columns[2]] == [
        SlotState.PENDING,
        SlotState.PENDING,
        SlotState.UNKNOWN,
        SlotState.UNKNOWN,
    ]


def test_has_more_marks_last_column_with_known_ancestry(tmp_path) -> None:
    graph = _graph(tmp_path, FULL_SIBS)
    columns = layout_horizontal("r", graph, 1)

    assert all(s.has_more for s in columns[1])
    assert not columns[0][0].has_more


def test_vertical_tree_states_and_flatten(tmp_path) -> None:
    graph = _graph(tmp_path, [_rec("r", "male", "s", None), _rec("s", "male")])
    tree = layout_vertical("r", graph, 2)

    assert tree.sire.node.id == "s"
    assert tree.dam is None
    assert tree.dam_state is SlotState.UNKNOWN
    assert tree.sire.sire_state is SlotState.UNKNOWN
    assert [v.node.id for v in tree.flatten()] == ["r", "s"]


def test_layout_errors(tmp_path) -> None:
    graph = _graph(tmp_path, FULL_SIBS)

    with pytest.raises(ValueError):
        layout_horizontal("r", graph, -1)
    with pytest.raises(ValueError):
        layout_vertical("r", graph, -1)
    with pytest.raises(DogNotFound):
        layout_horizontal("nobody", graph, 2)


def test_placeholder_columns() -> None:
    columns = placeholder_columns("r", 2, SlotState.PENDING)

    assert [len(c) for c in columns] == [1, 2, 4]
    assert {s.state for c in columns for s in c} == {SlotState.PENDING}
    assert list(columns.iter_nodes()) == []


def test_node_labels_follow_display_options() -> None:
    node = DogNode(
        id="1",
        name="Aria",
        registration_number="SE12345/2019",
        is_champion=True,
        is_health_tested=True,
        owner_name="Kennel North",
    )

    assert node_labels(node, ChartOptions()) == ["Aria", "SE12345/2019", "CH | Health tested"]
    assert node_labels(node, ChartOptions(show_champions=False, show_owners=True)) == [
        "Aria",
        "SE12345/2019",
        "Health tested",
        "Owner: Kennel North",
    ]
