from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import DogNotFound, StaleSessionError
from .models import PARENT_TYPES, AncestorGraph, DogNode, LinkState, ParentType

DEFAULT_MAX_WORKERS = 8

# (child_id, lineage, parent_type, parent_id)
_Edge = Tuple[str, Tuple[str, ...], ParentType, str]


def _fetch_generation(lookup: Any, dog_ids: List[str], max_workers: int) -> Dict[str, Optional[DogNode]]:
    """
    Fan out all lookups for one generation and fan in before returning.

    Uses the lookup's batch variant when it has one (one round trip),
    otherwise concurrent single lookups.
    """
    if not dog_ids:
        return {}

    batch = getattr(lookup, "fetch_dogs_by_ids", None)
    if callable(batch):
        return dict(batch(dog_ids))

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(dog_ids)))) as pool:
        results = list(pool.map(lookup.fetch_dog_by_id, dog_ids))
    return dict(zip(dog_ids, results))


def _ensure_current(is_current: Optional[Callable[[], bool]], root_id: str) -> None:
    if is_current is not None and not is_current():
        print(f"[ancestor-graph] Session for {root_id!r} is no longer current; discarding fetched ancestors")
        raise StaleSessionError(f"Chart session for {root_id!r} closed while ancestors were loading")


def _reject_cycle(graph: AncestorGraph, child_id: str, parent_type: ParentType, parent_id: str) -> None:
    graph.links[(child_id, parent_type)] = LinkState.CYCLE
    graph.add_warning(
        "cycle",
        child_id,
        parent_type,
        f"{parent_type.value} {parent_id!r} of {child_id!r} is already its descendant; edge ignored",
    )
    print(f"[ancestor-graph] WARNING: cycle at {child_id!r} -> {parent_id!r} ({parent_type.value}); edge ignored")


def _mark_bound(graph: AncestorGraph, child_id: str) -> None:
    """
    Node at the generation bound: record its parent edges as truncated
    (when it names parents) without fetching them.
    """
    node = graph.nodes[child_id]
    for pt in PARENT_TYPES:
        if node.parent_ref(pt) is None:
            graph.links[(child_id, pt)] = LinkState.UNKNOWN
        else:
            graph.links[(child_id, pt)] = LinkState.TRUNCATED
            graph.truncated.add(child_id)


def build_ancestor_graph(
    root_id: str,
    max_generations: int,
    lookup: Any,
    *,
    is_current: Optional[Callable[[], bool]] = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
    root: Optional[DogNode] = None,
) -> AncestorGraph:
    """
    Resolve a dog and its sire/dam chain into an AncestorGraph.

    root, when given, is used as the root record instead of looking
    root_id up (e.g. an unregistered litter).

    lookup must provide fetch_dog_by_id(id) -> DogNode | None and may
    provide fetch_dogs_by_ids(ids) -> {id: DogNode | None}.

    Traversal is breadth-first by generation; every parent needed at depth
    d+1 is requested in one fan-out, so network round trips are
    O(max_generations). IDs already in the map are linked by reference and
    never refetched.

    Soft failures do not abort the build:
      - parent ID that does not resolve -> LinkState.NOT_FOUND + warning
      - parent already on the active lineage (or already descending from
        the child) -> LinkState.CYCLE + warning
    Nodes at depth == max_generations keep their records but their parents
    are not fetched; they are flagged in graph.truncated.

    is_current is polled after every generation; once it returns False
    the fetched data is discarded and StaleSessionError is raised.
    """
    if max_generations < 0:
        raise ValueError("max_generations must be >= 0")

    root_id = str(root_id)
    print(f"[ancestor-graph] Building ancestry for {root_id!r} (max_generations={max_generations})")

    if root is None:
        fetched = _fetch_generation(lookup, [root_id], max_workers)
        _ensure_current(is_current, root_id)
        root = fetched.get(root_id)
        if root is None:
            raise DogNotFound(root_id)

    graph = AncestorGraph(root_id=root_id, max_generations=max_generations)
    graph.nodes[root_id] = root
    graph.depths[root_id] = 0

    # Each frontier entry carries its lineage (root .. node), the active path for cycle checks.
    frontier: List[Tuple[str, Tuple[str, ...]]] = [(root_id, (root_id,))]

    for depth in range(max_generations + 1):
        if not frontier:
            break

        if depth == max_generations:
            for child_id, _ in frontier:
                _mark_bound(graph, child_id)
            break

        edges: List[_Edge] = []
        to_fetch: Dict[str, None] = {}

        for child_id, lineage in frontier:
            node = graph.nodes[child_id]
            for pt in PARENT_TYPES:
                pid = node.parent_ref(pt)
                if pid is None:
                    graph.links[(child_id, pt)] = LinkState.UNKNOWN
                    continue
                if pid in lineage:
                    _reject_cycle(graph, child_id, pt, pid)
                    continue
                edges.append((child_id, lineage, pt, pid))
                if pid not in graph.nodes:
                    to_fetch[pid] = None

        fetched = _fetch_generation(lookup, list(to_fetch), max_workers)
        _ensure_current(is_current, root_id)

        next_frontier: List[Tuple[str, Tuple[str, ...]]] = []

        for child_id, lineage, pt, pid in edges:
            if pid in graph.nodes:
                # Shared ancestor (seen earlier, or fetched for a sibling edge this generation)
                if graph.descends_from(pid, child_id):
                    _reject_cycle(graph, child_id, pt, pid)
                    continue
                graph.links[(child_id, pt)] = LinkState.RESOLVED
                continue

            parent = fetched.get(pid)
            if parent is None:
                graph.links[(child_id, pt)] = LinkState.NOT_FOUND
                graph.add_warning(
                    "not_found",
                    child_id,
                    pt,
                    f"{pt.value} {pid!r} of {child_id!r} was not found in the registry",
                )
                continue

            if parent.sex is not None and parent.sex is not pt.expected_sex:
                graph.add_warning(
                    "sex_mismatch",
                    child_id,
                    pt,
                    f"{pt.value} {pid!r} of {child_id!r} is recorded as {parent.sex.value}",
                )

            graph.nodes[pid] = parent
            graph.depths[pid] = depth + 1
            graph.links[(child_id, pt)] = LinkState.RESOLVED
            next_frontier.append((pid, lineage + (pid,)))

        frontier = next_frontier

    print(
        f"[ancestor-graph] Built graph for {root_id!r}: nodes={len(graph)} "
        f"truncated={len(graph.truncated)} warnings={len(graph.warnings)}"
    )
    return graph


def litter_id(sire_id: str, dam_id: str) -> str:
    return f"litter:{sire_id}x{dam_id}"


def build_litter_graph(
    sire_id: str,
    dam_id: str,
    max_generations: int,
    lookup: Any,
    **kwargs: Any,
) -> AncestorGraph:
    """
    Ancestry of an imaginary litter of sire_id x dam_id.

    Both partners hang off one placeholder root at generation 1, so an
    ancestor shared by the two sides is one node at its shallowest depth.
    """
    litter = DogNode(
        id=litter_id(str(sire_id), str(dam_id)),
        name="Trial litter",
        sire_id=str(sire_id),
        dam_id=str(dam_id),
        is_placeholder=True,
    )
    return build_ancestor_graph(litter.id, max_generations, lookup, root=litter, **kwargs)


def generation_summary(graph: AncestorGraph) -> Tuple[Dict[str, int], Dict[int, int]]:
    """
    UNIQUE ancestor summary (deduplicated by dog ID, at minimum depth).

    Returns:
      summary: {total_nodes, max_generation, open_nodes, closed_nodes, truncated_nodes}
      gen_counts: {generation: count}
    """
    gen_counts = Counter(graph.depths.values())

    open_nodes = 0
    closed_nodes = 0
    for dog_id in graph.nodes:
        known = len(graph.parent_ids(dog_id))
        if known == 0:
            closed_nodes += 1
        elif known == 1:
            open_nodes += 1

    summary = {
        "total_nodes": len(graph),
        "max_generation": max(gen_counts) if gen_counts else 0,
        "open_nodes": open_nodes,
        "closed_nodes": closed_nodes,
        "truncated_nodes": len(graph.truncated),
    }
    return summary, dict(sorted(gen_counts.items()))
