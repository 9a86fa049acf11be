from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from .models import AncestorGraph, DogNode, GraphWarning, LinkState, ParentType

SCHEMA_VERSION = 1
DEFAULT_GRAPH_DIR = Path(".cache") / "graphs"


def default_graph_path(root_id: str, cache_dir: Path = DEFAULT_GRAPH_DIR) -> Path:
    return Path(cache_dir) / f"pedigree_{root_id}.json"


# ---------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------


def graph_to_payload(graph: AncestorGraph) -> Dict[str, Any]:
    nodes: List[Dict[str, Any]] = []
    for node in graph.nodes.values():
        rec = node.to_record()
        rec["isPlaceholder"] = node.is_placeholder
        nodes.append(rec)

    return {
        "schema_version": SCHEMA_VERSION,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "root_id": graph.root_id,
        "max_generations": graph.max_generations,
        "node_count": len(graph),
        "nodes": nodes,
        "links": [
            {"child": child, "parent_type": pt.value, "state": state.value}
            for (child, pt), state in graph.links.items()
        ],
        "depths": dict(graph.depths),
        "truncated": sorted(graph.truncated),
        "warnings": [
            {
                "kind": w.kind,
                "dog_id": w.dog_id,
                "parent_type": w.parent_type.value if w.parent_type else None,
                "message": w.message,
            }
            for w in graph.warnings
        ],
    }


def graph_from_payload(payload: Any) -> AncestorGraph:
    """
    Rebuild an AncestorGraph from graph_to_payload() output.

    Raises ValueError if the payload is malformed or has an unsupported schema.
    """
    if not isinstance(payload, dict):
        raise ValueError("Malformed graph snapshot: expected an object")

    schema_version = payload.get("schema_version")
    if schema_version != SCHEMA_VERSION:
        raise ValueError(f"Unsupported graph snapshot schema_version: {schema_version}")

    root_id = payload.get("root_id")
    nodes_raw = payload.get("nodes")
    if not isinstance(root_id, str) or not root_id:
        raise ValueError("Malformed graph snapshot: 'root_id' must be a non-empty string")
    if not isinstance(nodes_raw, list):
        raise ValueError("Malformed graph snapshot: 'nodes' must be a list")

    try:
        max_generations = int(payload.get("max_generations", 0))
    except (TypeError, ValueError) as e:
        raise ValueError("Malformed graph snapshot: 'max_generations' must be an integer") from e

    graph = AncestorGraph(root_id=root_id, max_generations=max_generations)

    for rec in nodes_raw:
        if not isinstance(rec, dict) or "id" not in rec:
            raise ValueError(f"Malformed graph snapshot node: {rec!r}")
        node = DogNode.from_record(rec)
        node.is_placeholder = bool(rec.get("isPlaceholder", False))
        graph.nodes[node.id] = node

    if root_id not in graph.nodes:
        raise ValueError(f"Malformed graph snapshot: root {root_id!r} is not among the nodes")

    try:
        for link in payload.get("links") or []:
            key = (str(link["child"]), ParentType(link["parent_type"]))
            graph.links[key] = LinkState(link["state"])
        for dog_id, depth in (payload.get("depths") or {}).items():
            graph.depths[str(dog_id)] = int(depth)
        graph.truncated.update(str(x) for x in payload.get("truncated") or [])
        for w in payload.get("warnings") or []:
            graph.warnings.append(
                GraphWarning(
                    kind=str(w["kind"]),
                    dog_id=str(w["dog_id"]),
                    parent_type=ParentType(w["parent_type"]) if w.get("parent_type") else None,
                    message=str(w.get("message", "")),
                )
            )
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Malformed graph snapshot: {e}") from e

    return graph


# ---------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------


def save_graph_snapshot(graph: AncestorGraph, path: Path) -> Path:
    """
    Write the graph as JSON. Writes to a temporary file and atomically
    replaces the target.
    """
    target_path = Path(path)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target_path.with_suffix(target_path.suffix + ".tmp")

    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(graph_to_payload(graph), f, ensure_ascii=False, indent=2)

    tmp_path.replace(target_path)
    print(f"[graph-store] Saved {len(graph)} nodes to: {target_path}")
    return target_path


def load_graph_snapshot(path: Path) -> AncestorGraph:
    """
    Raises:
      - FileNotFoundError if the file does not exist
      - ValueError if the file is not valid JSON, malformed or has an unsupported schema
    """
    target_path = Path(path)
    if not target_path.exists():
        raise FileNotFoundError(f"Graph snapshot not found: {target_path}")

    try:
        with open(target_path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Graph snapshot is not valid JSON: {target_path}") from e

    return graph_from_payload(payload)
