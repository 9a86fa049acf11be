from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from .errors import DogNotFound
from .models import PARENT_TYPES, AncestorGraph, ChartOptions, DogNode, LinkState, ParentType


class SlotState(str, Enum):
    """
    What a chart slot holds.

    FILLED is a real dog; everything else is a typed empty placeholder so a
    renderer can tell "no ancestor" apart from "still loading" or "failed".
    """
    FILLED = "filled"
    UNKNOWN = "unknown"
    NOT_FOUND = "not_found"
    PENDING = "pending"          # loading
    TRUNCATED = "truncated"      # beyond the fetched generation bound
    CYCLE = "cycle"
    ERROR = "error"


_LINK_TO_SLOT = {
    LinkState.UNKNOWN: SlotState.UNKNOWN,
    LinkState.NOT_FOUND: SlotState.NOT_FOUND,
    LinkState.PENDING: SlotState.PENDING,
    LinkState.CYCLE: SlotState.CYCLE,
    LinkState.TRUNCATED: SlotState.TRUNCATED,
}

# Placeholder states that carry over to the slots above them
_PROPAGATING = (SlotState.PENDING, SlotState.TRUNCATED, SlotState.ERROR)


@dataclass(frozen=True)
class PedigreeSlot:
    generation: int
    position: int
    state: SlotState
    node: Optional[DogNode] = None
    parent_type: Optional[ParentType] = None   # role towards the child slot; None for the root
    has_more: bool = False                     # last column only: ancestry continues beyond the chart

    @property
    def is_empty(self) -> bool:
        return self.node is None

    @property
    def dog_id(self) -> Optional[str]:
        return self.node.id if self.node is not None else None


@dataclass
class GenerationColumns:
    """
    Horizontal layout: columns[g] has exactly 2**g slots; the parents of
    columns[g][i] are columns[g+1][2i] (sire) and columns[g+1][2i+1] (dam).
    """
    root_id: str
    max_generations: int
    columns: List[List[PedigreeSlot]]

    def __len__(self) -> int:
        return len(self.columns)

    def __iter__(self) -> Iterator[List[PedigreeSlot]]:
        return iter(self.columns)

    def __getitem__(self, generation: int) -> List[PedigreeSlot]:
        return self.columns[generation]

    def slot(self, generation: int, position: int) -> PedigreeSlot:
        return self.columns[generation][position]

    def parents_of(self, generation: int, position: int) -> Optional[Tuple[PedigreeSlot, PedigreeSlot]]:
        if generation + 1 >= len(self.columns):
            return None
        nxt = self.columns[generation + 1]
        return nxt[2 * position], nxt[2 * position + 1]

    def iter_nodes(self) -> Iterator[PedigreeSlot]:
        for column in self.columns:
            for s in column:
                if s.state is SlotState.FILLED:
                    yield s


@dataclass
class PedigreeTreeView:
    """
    Vertical layout: a dog plus optional sire / dam subtrees.

    sire_state / dam_state say what the missing side means; both are None
    at the chart's last generation, where parents are not displayed.
    position matches the dog's slot index in the horizontal layout.
    """
    node: DogNode
    generation: int
    position: int
    parent_type: Optional[ParentType] = None
    sire: Optional["PedigreeTreeView"] = None
    dam: Optional["PedigreeTreeView"] = None
    sire_state: Optional[SlotState] = None
    dam_state: Optional[SlotState] = None
    has_more: bool = False

    def flatten(self) -> List["PedigreeTreeView"]:
        """
        Depth-first (self, sire subtree, dam subtree) list of all shown nodes.
        """
        out: List[PedigreeTreeView] = [self]
        if self.sire is not None:
            out.extend(self.sire.flatten())
        if self.dam is not None:
            out.extend(self.dam.flatten())
        return out


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _check(root_id: str, graph: AncestorGraph, max_generations: int) -> DogNode:
    if max_generations < 0:
        raise ValueError("max_generations must be >= 0")
    root = graph.get(root_id)
    if root is None:
        raise DogNotFound(root_id)
    return root


def _resolve(graph: AncestorGraph, child_id: str, parent_type: ParentType) -> Tuple[SlotState, Optional[DogNode]]:
    state = graph.link_state(child_id, parent_type)
    if state is LinkState.RESOLVED:
        parent = graph.parent(child_id, parent_type)
        if parent is None:
            return SlotState.ERROR, None
        return SlotState.FILLED, parent
    return _LINK_TO_SLOT.get(state, SlotState.ERROR), None


def _has_more(graph: AncestorGraph, node: DogNode) -> bool:
    return bool(graph.parent_ids(node.id)) or node.id in graph.truncated


# ---------------------------------------------------------------------------
# Layouts
# ---------------------------------------------------------------------------

def layout_horizontal(root_id: str, graph: AncestorGraph, max_generations: int) -> GenerationColumns:
    """
    Column layout of the graph. Always max_generations + 1 columns, with
    2**g slots in column g whatever the number of known ancestors.

    Filled slots hold the graph's own DogNode objects, so a shared
    ancestor is the same object in every slot (and in layout_vertical).
    """
    root = _check(root_id, graph, max_generations)

    columns: List[List[PedigreeSlot]] = [[
        PedigreeSlot(
            generation=0,
            position=0,
            state=SlotState.FILLED,
            node=root,
            has_more=max_generations == 0 and _has_more(graph, root),
        )
    ]]

    for g in range(1, max_generations + 1):
        last = g == max_generations
        column: List[PedigreeSlot] = []
        for child in columns[-1]:
            for pt in PARENT_TYPES:
                if child.node is not None:
                    state, node = _resolve(graph, child.node.id, pt)
                elif child.state in _PROPAGATING:
                    state, node = child.state, None
                else:
                    state, node = SlotState.UNKNOWN, None

                column.append(
                    PedigreeSlot(
                        generation=g,
                        position=len(column),
                        state=state,
                        node=node,
                        parent_type=pt,
                        has_more=last and node is not None and _has_more(graph, node),
                    )
                )
        columns.append(column)

    return GenerationColumns(root_id=root_id, max_generations=max_generations, columns=columns)


def placeholder_columns(root_id: str, max_generations: int, state: SlotState) -> GenerationColumns:
    """
    Full-shape layout of empty slots, for charts that are still loading
    (PENDING) or failed to load (ERROR).
    """
    if max_generations < 0:
        raise ValueError("max_generations must be >= 0")
    columns = [
        [
            PedigreeSlot(
                generation=g,
                position=i,
                state=state,
                parent_type=None if g == 0 else PARENT_TYPES[i % 2],
            )
            for i in range(2 ** g)
        ]
        for g in range(max_generations + 1)
    ]
    return GenerationColumns(root_id=root_id, max_generations=max_generations, columns=columns)


def layout_vertical(root_id: str, graph: AncestorGraph, max_generations: int) -> PedigreeTreeView:
    """
    Recursive tree layout (self + sire subtree + dam subtree), built
    depth-first over the same graph as layout_horizontal.
    """
    root = _check(root_id, graph, max_generations)

    def build(node: DogNode, generation: int, position: int, parent_type: Optional[ParentType]) -> PedigreeTreeView:
        view = PedigreeTreeView(node=node, generation=generation, position=position, parent_type=parent_type)

        if generation >= max_generations:
            view.has_more = _has_more(graph, node)
            return view

        for offset, pt in enumerate(PARENT_TYPES):
            state, parent = _resolve(graph, node.id, pt)
            subtree = build(parent, generation + 1, 2 * position + offset, pt) if parent is not None else None
            if pt is ParentType.SIRE:
                view.sire, view.sire_state = subtree, state
            else:
                view.dam, view.dam_state = subtree, state

        return view

    return build(root, 0, 0, None)


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

def node_labels(node: DogNode, options: ChartOptions) -> List[str]:
    """
    Text lines a chart card shows for one dog under the given display options.
    """
    lines: List[str] = [node.name or node.id]
    if node.registration_number:
        lines.append(node.registration_number)

    badges: List[str] = []
    if options.show_champions and node.is_champion:
        badges.append("CH")
    if options.show_health_tests and node.is_health_tested:
        badges.append("Health tested")
    if badges:
        lines.append(" | ".join(badges))

    if options.show_dates and node.date_of_birth is not None:
        lines.append(f"b. {node.date_of_birth.isoformat()}")
    if options.show_owners and node.owner_name:
        lines.append(f"Owner: {node.owner_name}")
    return lines
