from __future__ import annotations

import json
from pathlib import Path

import pytest

from kennel_pedigree.ancestor_graph import build_ancestor_graph
from kennel_pedigree.dog_store import JsonDogStore
from kennel_pedigree.graph_store import load_graph_snapshot, save_graph_snapshot
from kennel_pedigree.models import LinkState, ParentType


def _graph(tmp_path: Path):
    records = [
        {"id": "r", "name": "Root", "gender": "male", "sireId": "s", "damId": "ghost", "dateOfBirth": "2020-03-01"},
        {"id": "s", "name": "Sire", "gender": "male", "sireId": "g", "titles": ["Champion"]},
        {"id": "g", "name": "Grandsire", "gender": "male"},
    ]
    return build_ancestor_graph("r", 1, JsonDogStore(tmp_path / "dogs.json", records=records))


def test_snapshot_survives_save_and_load(tmp_path: Path) -> None:
    graph = _graph(tmp_path)
    path = save_graph_snapshot(graph, tmp_path / "graphs" / "r.json")

    assert path.exists()
    assert not path.with_suffix(".json.tmp").exists()

    loaded = load_graph_snapshot(path)
    assert loaded == graph
    assert loaded.link_state("r", ParentType.DAM) is LinkState.NOT_FOUND
    assert loaded.truncated == {"s"}
    assert loaded.nodes["s"].is_champion
    assert [w.kind for w in loaded.warnings] == ["not_found"]


def test_load_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_graph_snapshot(tmp_path / "nope.json")


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"schema_version": 99, "root_id": "r", "nodes": []},
        {"schema_version": 1, "root_id": "r", "nodes": "not-a-list"},
        {"schema_version": 1, "root_id": "r", "nodes": [{"id": "x"}]},
        {"schema_version": 1, "root_id": "r", "nodes": [{"id": "r"}], "links": [{"child": "r"}]},
    ],
)
def test_malformed_snapshot_raises_value_error(tmp_path: Path, payload) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(ValueError):
        load_graph_snapshot(path)


def test_invalid_json_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ValueError):
        load_graph_snapshot(path)
