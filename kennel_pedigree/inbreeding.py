from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .errors import DogNotFound, ValidationError
from .models import (
    PARENT_TYPES,
    AncestorGraph,
    COIResult,
    COIStatus,
    DogNode,
    LinkState,
    ParentType,
    PathContribution,
    Sex,
    risk_level,
)

__all__ = [
    "CommonAncestor",
    "common_ancestors",
    "compute_inbreeding_coefficient",
    "compute_mating_coefficient",
    "risk_level",
]

Path = Tuple[str, ...]


class _PathIndex:
    """
    Memoized path sets and ancestor COIs over one AncestorGraph.

    paths_from(x, budget) maps every ancestor reachable from x (x itself
    included, at length 0) to all distinct paths x .. ancestor using at
    most `budget` parent edges. Each (node, budget) pair is expanded once,
    so shared ancestors are not re-walked per lineage path. This is top-down
    recursion with memoization rather than an explicit bottom-up generation
    loop: it bottoms out at the deepest resolved generation and results are
    assembled inward from there.
    """

    def __init__(self, graph: AncestorGraph) -> None:
        self.graph = graph
        self._paths: Dict[Tuple[str, int], Tuple[Dict[str, List[Path]], bool]] = {}
        self._coi: Dict[str, float] = {}
        self._in_progress: Set[str] = set()
        # Common ancestors whose own COI had to be taken as 0
        self.approximated: Set[str] = set()
        # A DAG never has a path longer than its node count
        self.unbounded = max(len(graph.nodes), 1)

    def paths_from(self, start: str, budget: int) -> Tuple[Dict[str, List[Path]], bool]:
        key = (start, budget)
        cached = self._paths.get(key)
        if cached is not None:
            return cached

        out: Dict[str, List[Path]] = {start: [(start,)]}
        truncated = start in self.graph.truncated
        parents = self.graph.parent_ids(start)

        if budget <= 0:
            if parents:
                truncated = True
        else:
            for pid in parents:
                sub, sub_truncated = self.paths_from(pid, budget - 1)
                truncated = truncated or sub_truncated
                for anc, paths in sub.items():
                    out.setdefault(anc, []).extend((start,) + p for p in paths)

        self._paths[key] = (out, truncated)
        return out, truncated

    def ancestor_coi(self, dog_id: str) -> float:
        """
        COI of an ancestor over its own sub-graph. Taken as 0 when either of
        its parents is unknown or was not fetched (depth-truncated), and when
        its record names the same dog as sire and dam.
        """
        if dog_id in self._coi:
            return self._coi[dog_id]
        if dog_id in self._in_progress:
            return 0.0

        sire = self.graph.parent_id(dog_id, ParentType.SIRE)
        dam = self.graph.parent_id(dog_id, ParentType.DAM)
        if sire is None or dam is None or sire == dam:
            self._coi[dog_id] = 0.0
            return 0.0

        self._in_progress.add(dog_id)
        try:
            value, _, _ = self.pair(sire, dam, self.unbounded)
        finally:
            self._in_progress.discard(dog_id)

        self._coi[dog_id] = value
        return value

    def _needs_approximation(self, dog_id: str) -> bool:
        if dog_id in self.graph.truncated:
            return True
        sire = self.graph.parent_id(dog_id, ParentType.SIRE)
        if sire is not None and sire == self.graph.parent_id(dog_id, ParentType.DAM):
            return True
        return any(
            self.graph.link_state(dog_id, pt) is not LinkState.RESOLVED for pt in PARENT_TYPES
        )

    def pair(self, sire_id: str, dam_id: str, budget: int) -> Tuple[float, List[PathContribution], bool]:
        """
        Wright's sum for an (imaginary) offspring of sire_id x dam_id.

        Only path pairs that meet at the common ancestor and nowhere else
        contribute; for each such pair the term is
        (1/2)^(n1+n2+1) * (1 + F_ancestor).
        """
        s_paths, s_truncated = self.paths_from(sire_id, budget)
        d_paths, d_truncated = self.paths_from(dam_id, budget)

        total = 0.0
        contributions: List[PathContribution] = []

        for anc in sorted(set(s_paths) & set(d_paths)):
            f_anc: Optional[float] = None

            for p1 in s_paths[anc]:
                on_sire_side = set(p1)
                for p2 in d_paths[anc]:
                    if on_sire_side.intersection(p2) != {anc}:
                        continue
                    if f_anc is None:
                        f_anc = self.ancestor_coi(anc)
                        if f_anc == 0.0 and self._needs_approximation(anc):
                            self.approximated.add(anc)
                    n1 = len(p1) - 1
                    n2 = len(p2) - 1
                    value = 0.5 ** (n1 + n2 + 1) * (1.0 + f_anc)
                    total += value
                    contributions.append(
                        PathContribution(
                            ancestor_id=anc,
                            n1=n1,
                            n2=n2,
                            sire_path=p1,
                            dam_path=p2,
                            ancestor_coi=f_anc,
                            value=value,
                        )
                    )

        return total, contributions, s_truncated or d_truncated


def _clamp(v: float) -> float:
    return min(max(v, 0.0), 1.0)


def _missing_parent_reason(graph: AncestorGraph, dog_id: str, parent_type: ParentType) -> str:
    state = graph.link_state(dog_id, parent_type)
    reasons = {
        LinkState.UNKNOWN: "is not recorded",
        LinkState.NOT_FOUND: "was not found in the registry",
        LinkState.PENDING: "has not been loaded yet",
        LinkState.CYCLE: "was rejected (pedigree loop)",
        LinkState.TRUNCATED: "lies beyond the generation limit",
    }
    return f"{parent_type.label} {reasons.get(state, 'is unavailable')}"


def _result(
    index: _PathIndex,
    value: float,
    contributions: List[PathContribution],
    truncated: bool,
) -> COIResult:
    approximated = tuple(sorted(index.approximated))
    notes: List[str] = [f"{len(contributions)} contributing path pair(s)"]
    if truncated:
        notes.append("ancestry beyond the generation limit was not considered")
    if approximated:
        notes.append(f"{len(approximated)} common ancestor(s) with incomplete or inconsistent ancestry taken as non-inbred")
    return COIResult(
        status=COIStatus.OK,
        value=_clamp(value),
        explanation="; ".join(notes),
        contributions=tuple(contributions),
        truncated=truncated,
        approximated_ancestors=approximated,
    )


def compute_inbreeding_coefficient(
    root_id: str,
    graph: AncestorGraph,
    *,
    max_generations: Optional[int] = None,
) -> COIResult:
    """
    Wright's coefficient of inbreeding for root_id.

    Paths are enumerated within the generation bound (default: the graph's
    max_generations; the root is generation 0, so paths from its sire or
    dam have at most max_generations - 1 edges). A common ancestor's own
    COI comes from its own sub-graph, and is 0 where that ancestry is
    unknown or truncated; such ancestors are listed in
    result.approximated_ancestors.

    Returns an INSUFFICIENT_DATA result (value None, never 0) when the sire
    or dam is unknown. Raises ValidationError if the root's sire and dam
    are the same dog.
    """
    node = graph.get(root_id)
    if node is None:
        raise DogNotFound(root_id)

    if node.sire_id is not None and node.sire_id == node.dam_id:
        raise ValidationError(f"Dog {root_id!r} has the same sire and dam ({node.sire_id!r})")

    sire_id = graph.parent_id(root_id, ParentType.SIRE)
    dam_id = graph.parent_id(root_id, ParentType.DAM)

    if sire_id is None or dam_id is None:
        missing = [
            _missing_parent_reason(graph, root_id, pt)
            for pt, pid in ((ParentType.SIRE, sire_id), (ParentType.DAM, dam_id))
            if pid is None
        ]
        return COIResult(
            status=COIStatus.INSUFFICIENT_DATA,
            value=None,
            explanation="Insufficient data: " + "; ".join(missing),
            truncated=any(graph.link_state(root_id, pt) is LinkState.TRUNCATED for pt in PARENT_TYPES),
        )

    bound = graph.max_generations if max_generations is None else max_generations
    index = _PathIndex(graph)
    value, contributions, truncated = index.pair(sire_id, dam_id, max(bound - 1, 0))
    return _result(index, value, contributions, truncated)


def compute_mating_coefficient(
    sire_id: str,
    dam_id: str,
    graph: AncestorGraph,
    *,
    max_generations: Optional[int] = None,
) -> COIResult:
    """
    Trial mating: the COI a litter of sire_id x dam_id would have.

    Both dogs must be in the graph (e.g. a graph built for one of them, with
    the other added, or a graph for a shared descendant).
    """
    sire = graph.get(sire_id)
    dam = graph.get(dam_id)
    if sire is None:
        raise DogNotFound(sire_id)
    if dam is None:
        raise DogNotFound(dam_id)
    if sire_id == dam_id:
        raise ValidationError("A dog cannot be mated with itself")
    if sire.sex is Sex.FEMALE:
        raise ValidationError(f"Sire {sire_id!r} is female")
    if dam.sex is Sex.MALE:
        raise ValidationError(f"Dam {dam_id!r} is male")

    bound = graph.max_generations if max_generations is None else max_generations
    index = _PathIndex(graph)
    value, contributions, truncated = index.pair(sire_id, dam_id, max(bound - 1, 0))
    return _result(index, value, contributions, truncated)


# ---------------------------------------------------------------------------
# Explainability
# ---------------------------------------------------------------------------

@dataclass
class CommonAncestor:
    node: DogNode
    occurrences: int = 0
    pathways: List[List[str]] = field(default_factory=list)
    ancestor_coi: float = 0.0
    coi_contribution: float = 0.0
    genetic_contribution: float = 0.0


def _pathway_labels(graph: AncestorGraph, side: ParentType, path: Path) -> List[str]:
    """
    ("S", "x", "A") on the sire side -> ["Sire", <role of x under S>, <role of A under x>].
    """
    labels = [side.label]
    for child, parent in zip(path, path[1:]):
        if graph.parent_id(child, ParentType.SIRE) == parent:
            labels.append(ParentType.SIRE.label)
        else:
            labels.append(ParentType.DAM.label)
    return labels


def common_ancestors(result: COIResult, graph: AncestorGraph) -> List[CommonAncestor]:
    """
    Group a result's contributions per common ancestor.

    Pathways are labelled from the analysed dog ("Sire", "Dam", ...), one
    label per generation. genetic_contribution = sum over distinct pathways
    of (1/2)^len(pathway). Sorted by COI contribution, largest first.
    """
    grouped: Dict[str, CommonAncestor] = {}
    seen_paths: Dict[str, Set[Tuple[ParentType, Path]]] = {}

    for c in result.contributions:
        node = graph.get(c.ancestor_id)
        if node is None:
            continue
        entry = grouped.get(c.ancestor_id)
        if entry is None:
            entry = grouped[c.ancestor_id] = CommonAncestor(node=node, ancestor_coi=c.ancestor_coi)
            seen_paths[c.ancestor_id] = set()
        entry.coi_contribution += c.value

        for side, path in ((ParentType.SIRE, c.sire_path), (ParentType.DAM, c.dam_path)):
            if (side, path) in seen_paths[c.ancestor_id]:
                continue
            seen_paths[c.ancestor_id].add((side, path))
            labels = _pathway_labels(graph, side, path)
            entry.pathways.append(labels)
            entry.occurrences += 1
            entry.genetic_contribution += 0.5 ** len(labels)

    return sorted(grouped.values(), key=lambda a: (-a.coi_contribution, a.node.id))
