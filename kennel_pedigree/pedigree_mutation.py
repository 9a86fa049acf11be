from __future__ import annotations

import uuid
from dataclasses import dataclass, fields as dc_fields
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from .errors import PersistenceError, ValidationError
from .models import (
    EDITABLE_FIELDS,
    PARENT_TYPES,
    AncestorGraph,
    DogNode,
    LinkState,
    ParentType,
    Sex,
    coerce_field,
)


class MutationState(str, Enum):
    VALIDATING = "validating"
    APPLYING = "applying"
    PERSISTING = "persisting"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    REJECTED = "rejected"


@dataclass(frozen=True)
class MutationOutcome:
    operation: str                      # "add_parent" | "edit_parent"
    dog_id: str
    parent_type: Optional[ParentType]
    parent_id: Optional[str]
    state: MutationState
    phases: Tuple[MutationState, ...]   # path taken, ending in a terminal state
    changed_fields: Tuple[str, ...] = ()
    error: Optional[str] = None


# Registry / form aliases accepted in parent data
_ALIASES = {
    "gender": "sex",
    "breedName": "breed",
    "dateOfBirth": "date_of_birth",
    "dateOfDeath": "date_of_death",
    "isChampion": "is_champion",
    "hasHealthTests": "is_health_tested",
    "registrationNumber": "registration_number",
    "ownerId": "owner_id",
    "ownerName": "owner_name",
}

_MISSING = object()

ParentData = Union[Mapping[str, Any], DogNode]


def _normalize_parent_data(parent_data: ParentData) -> Tuple[Optional[str], Dict[str, Any]]:
    """
    Split parent data into (id, {DogNode field: coerced value}).

    Raises ValidationError for unsupported fields or an unrecognised sex.
    """
    if isinstance(parent_data, DogNode):
        raw: Dict[str, Any] = {f.name: getattr(parent_data, f.name) for f in dc_fields(parent_data)}
        raw = {k: v for k, v in raw.items() if k == "id" or k in EDITABLE_FIELDS}
    else:
        raw = dict(parent_data)

    parent_id: Optional[str] = None
    data: Dict[str, Any] = {}

    for key, value in raw.items():
        if key == "id":
            parent_id = str(value).strip() if value not in (None, "") else None
            continue
        name = _ALIASES.get(key, key)
        if name not in EDITABLE_FIELDS:
            raise ValidationError(f"Unsupported parent field: {key!r}")
        coerced = coerce_field(name, value)
        if name == "sex" and coerced is None and value not in (None, ""):
            raise ValidationError(f"Unrecognised sex: {value!r}")
        data[name] = coerced

    return parent_id, data


def _check_sex(parent_type: ParentType, sex: Optional[Sex], who: str) -> None:
    if sex is not None and sex is not parent_type.expected_sex:
        raise ValidationError(
            f"{parent_type.label} must be {parent_type.expected_sex.value}; {who} is {sex.value}"
        )


class _UndoLog:
    """
    Inverse operations recorded while a mutation is applied; replayed in
    reverse order to restore the exact prior graph state.
    """

    def __init__(self) -> None:
        self._steps: List[Callable[[], None]] = []

    def record(self, step: Callable[[], None]) -> None:
        self._steps.append(step)

    def set_attr(self, obj: Any, name: str, value: Any) -> None:
        prior = getattr(obj, name)
        self.record(lambda: setattr(obj, name, prior))
        setattr(obj, name, value)

    def set_item(self, mapping: Dict[Any, Any], key: Any, value: Any) -> None:
        prior = mapping.get(key, _MISSING)

        def undo() -> None:
            if prior is _MISSING:
                mapping.pop(key, None)
            else:
                mapping[key] = prior

        self.record(undo)
        mapping[key] = value

    def pop_item(self, mapping: Dict[Any, Any], key: Any) -> None:
        if key not in mapping:
            return
        prior = mapping.pop(key)
        self.record(lambda: mapping.__setitem__(key, prior))

    def discard(self, members: Set[Any], item: Any) -> None:
        if item not in members:
            return
        members.discard(item)
        self.record(lambda: members.add(item))

    def rollback(self) -> None:
        while self._steps:
            self._steps.pop()()


def _prune_unreachable(graph: AncestorGraph, undo: _UndoLog) -> None:
    """
    Drop nodes the root no longer reaches (e.g. a replaced parent and the
    ancestry only it carried) and reset depths to the shortest resolved
    path from the root.
    """
    depths = {graph.root_id: 0}
    frontier = [graph.root_id]
    while frontier:
        nxt: List[str] = []
        for dog_id in frontier:
            for pid in graph.parent_ids(dog_id):
                if pid not in depths:
                    depths[pid] = depths[dog_id] + 1
                    nxt.append(pid)
        frontier = nxt

    for dog_id in [d for d in graph.nodes if d not in depths]:
        print(f"[pedigree-mutation] Dropping {dog_id!r}: no longer an ancestor of {graph.root_id!r}")
        undo.pop_item(graph.nodes, dog_id)
        undo.pop_item(graph.depths, dog_id)
        for pt in PARENT_TYPES:
            undo.pop_item(graph.links, (dog_id, pt))
        undo.discard(graph.truncated, dog_id)

    for dog_id, depth in depths.items():
        if graph.depths.get(dog_id) != depth:
            undo.set_item(graph.depths, dog_id, depth)


class PedigreeMutationCoordinator:
    """
    Validates and applies ancestor add / edit operations on one graph.

    Each mutation runs VALIDATING -> APPLYING (optimistic, in memory) ->
    PERSISTING -> COMMITTED | ROLLED_BACK. A validation failure is
    REJECTED before anything changes. Only the terminal outcome is exposed
    (last_outcome); mutations are serialized on the coordinator's lock.

    persistence, when given, must provide:
      create_dog(fields) -> id
      update_dog(dog_id, fields)
      update_dog_parent(dog_id, parent_type, parent_id)
    """

    def __init__(
        self,
        graph: AncestorGraph,
        persistence: Any = None,
        *,
        lock: Optional[RLock] = None,
    ) -> None:
        self.graph = graph
        self.persistence = persistence
        self.lock = lock or RLock()
        self.last_outcome: Optional[MutationOutcome] = None
        self._listeners: List[Callable[[MutationOutcome], None]] = []

    def on_change(self, listener: Callable[[MutationOutcome], None]) -> None:
        """
        Register a callback run after every committed change (COI / layout invalidation).
        """
        self._listeners.append(listener)

    @property
    def last_state(self) -> Optional[MutationState]:
        return self.last_outcome.state if self.last_outcome else None

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    def _finish(self, outcome: MutationOutcome) -> None:
        self.last_outcome = outcome
        if outcome.state is MutationState.COMMITTED and (outcome.changed_fields or outcome.operation == "add_parent"):
            for listener in self._listeners:
                listener(outcome)

    def _reject(self, operation: str, dog_id: str, parent_type: Optional[ParentType], err: Exception) -> None:
        self._finish(
            MutationOutcome(
                operation=operation,
                dog_id=dog_id,
                parent_type=parent_type,
                parent_id=None,
                state=MutationState.REJECTED,
                phases=(MutationState.VALIDATING, MutationState.REJECTED),
                error=str(err),
            )
        )

    def _persist(self, undo: _UndoLog, steps: List[Callable[[], None]]) -> None:
        """
        Run persistence steps; on any failure restore the graph and raise a
        retryable PersistenceError.
        """
        try:
            for step in steps:
                step()
        except Exception as e:
            undo.rollback()
            print(f"[pedigree-mutation] WARNING: persistence failed, change rolled back: {e}")
            raise PersistenceError(f"Could not save pedigree change: {e}", retryable=True) from e

    # ------------------------------------------------------------------
    # add_parent
    # ------------------------------------------------------------------

    def add_parent(self, dog_id: str, parent_type: Any, parent_data: ParentData) -> AncestorGraph:
        """
        Set dog_id's sire or dam.

        parent_data is a mapping of DogNode fields (registry camelCase names
        accepted) or a DogNode. With an "id" that is already in the graph the
        existing node is linked and the supplied fields are written onto it;
        with an unknown id the node is inserted; without an id a new dog is
        created (provisional id until the registry assigns one).
        """
        with self.lock:
            graph = self.graph
            pt: Optional[ParentType] = None
            try:
                pt = ParentType.parse(parent_type)
                child = graph.get(dog_id)
                if child is None:
                    raise ValidationError(f"Dog {dog_id!r} is not in the pedigree")
                parent_id, data = _normalize_parent_data(parent_data)

                _check_sex(pt, data.get("sex"), "the supplied parent")
                existing = graph.get(parent_id) if parent_id is not None else None

                if parent_id is not None:
                    if parent_id == dog_id:
                        raise ValidationError(f"Dog {dog_id!r} cannot be its own {pt.value}")
                    other = PARENT_TYPES[1] if pt is ParentType.SIRE else PARENT_TYPES[0]
                    if child.parent_ref(other) == parent_id:
                        raise ValidationError(f"{parent_id!r} is already the {other.value} of {dog_id!r}")
                    if existing is not None:
                        _check_sex(pt, existing.sex, f"{parent_id!r}")
                        if graph.descends_from(parent_id, dog_id):
                            raise ValidationError(
                                f"{parent_id!r} descends from {dog_id!r}; linking it as {pt.value} would create a loop"
                            )
            except ValidationError as e:
                self._reject("add_parent", str(dog_id), pt, e)
                raise

            # ---- Applying (optimistic) ----
            undo = _UndoLog()
            provisional = parent_id is None
            if provisional:
                parent_id = f"{pt.value}-{uuid.uuid4().hex[:12]}"

            if existing is not None:
                changed = {k: v for k, v in data.items() if getattr(existing, k) != v}
                for name, value in changed.items():
                    undo.set_attr(existing, name, value)
                parent = existing
            else:
                changed = dict(data)
                changed.setdefault("sex", pt.expected_sex)
                parent = DogNode(id=parent_id, is_placeholder=provisional, **changed)
                undo.set_item(graph.nodes, parent_id, parent)
                for gpt in PARENT_TYPES:
                    undo.set_item(graph.links, (parent_id, gpt), LinkState.UNKNOWN)

            undo.set_attr(child, pt.value + "_id", parent_id)
            undo.set_item(graph.links, (dog_id, pt), LinkState.RESOLVED)

            if not any(graph.link_state(dog_id, p) is LinkState.TRUNCATED for p in PARENT_TYPES):
                undo.discard(graph.truncated, dog_id)
            _prune_unreachable(graph, undo)

            # ---- Persisting ----
            phases = [MutationState.VALIDATING, MutationState.APPLYING]
            if self.persistence is not None:
                phases.append(MutationState.PERSISTING)
                steps: List[Callable[[], None]] = []

                if provisional:
                    def create() -> None:
                        nonlocal parent_id
                        new_id = self.persistence.create_dog(
                            {name: getattr(parent, name) for name in EDITABLE_FIELDS}
                        )
                        old_id = parent_id
                        if new_id != old_id:
                            graph.rekey(old_id, new_id)
                            undo.record(lambda: graph.rekey(new_id, old_id))
                            parent_id = new_id
                        undo.set_attr(parent, "is_placeholder", False)

                    steps.append(create)
                elif changed and (existing is not None or set(changed) - {"sex"}):
                    steps.append(lambda: self.persistence.update_dog(parent_id, dict(changed)))

                steps.append(lambda: self.persistence.update_dog_parent(dog_id, pt, parent_id))

                try:
                    self._persist(undo, steps)
                except PersistenceError as e:
                    self._finish(
                        MutationOutcome(
                            operation="add_parent",
                            dog_id=dog_id,
                            parent_type=pt,
                            parent_id=None,
                            state=MutationState.ROLLED_BACK,
                            phases=tuple(phases) + (MutationState.ROLLED_BACK,),
                            error=str(e),
                        )
                    )
                    raise

            self._finish(
                MutationOutcome(
                    operation="add_parent",
                    dog_id=dog_id,
                    parent_type=pt,
                    parent_id=parent_id,
                    state=MutationState.COMMITTED,
                    phases=tuple(phases) + (MutationState.COMMITTED,),
                    changed_fields=tuple(sorted(changed)),
                )
            )
            return graph

    # ------------------------------------------------------------------
    # edit_parent
    # ------------------------------------------------------------------

    def edit_parent(self, dog_id: str, parent_type: Any, parent_data: ParentData) -> AncestorGraph:
        """
        Partial update of dog_id's existing sire or dam.

        Only the supplied fields change; the parent's own ancestry is kept.
        Supplying an id other than the current parent's is rejected (use
        add_parent to replace a parent). Identical data is a no-op.
        """
        with self.lock:
            graph = self.graph
            pt: Optional[ParentType] = None
            try:
                pt = ParentType.parse(parent_type)
                if graph.get(dog_id) is None:
                    raise ValidationError(f"Dog {dog_id!r} is not in the pedigree")
                current_id = graph.parent_id(dog_id, pt)
                if current_id is None:
                    raise ValidationError(f"Dog {dog_id!r} has no {pt.value} to edit")
                parent_id, data = _normalize_parent_data(parent_data)
                if parent_id is not None and parent_id != current_id:
                    raise ValidationError(
                        f"Cannot change {pt.value} of {dog_id!r} from {current_id!r} to {parent_id!r} with edit_parent"
                    )
                _check_sex(pt, data.get("sex"), "the supplied parent")
            except ValidationError as e:
                self._reject("edit_parent", str(dog_id), pt, e)
                raise

            parent = graph.nodes[current_id]
            changed = {k: v for k, v in data.items() if getattr(parent, k) != v}
            phases = [MutationState.VALIDATING, MutationState.APPLYING]

            if not changed:
                self._finish(
                    MutationOutcome(
                        operation="edit_parent",
                        dog_id=dog_id,
                        parent_type=pt,
                        parent_id=current_id,
                        state=MutationState.COMMITTED,
                        phases=tuple(phases) + (MutationState.COMMITTED,),
                    )
                )
                return graph

            undo = _UndoLog()
            for name, value in changed.items():
                undo.set_attr(parent, name, value)

            if self.persistence is not None:
                phases.append(MutationState.PERSISTING)
                try:
                    self._persist(undo, [lambda: self.persistence.update_dog(current_id, dict(changed))])
                except PersistenceError as e:
                    self._finish(
                        MutationOutcome(
                            operation="edit_parent",
                            dog_id=dog_id,
                            parent_type=pt,
                            parent_id=current_id,
                            state=MutationState.ROLLED_BACK,
                            phases=tuple(phases) + (MutationState.ROLLED_BACK,),
                            error=str(e),
                        )
                    )
                    raise

            self._finish(
                MutationOutcome(
                    operation="edit_parent",
                    dog_id=dog_id,
                    parent_type=pt,
                    parent_id=current_id,
                    state=MutationState.COMMITTED,
                    phases=tuple(phases) + (MutationState.COMMITTED,),
                    changed_fields=tuple(sorted(changed)),
                )
            )
            return graph


# ---------------------------------------------------------------------------
# Functional entry points
# ---------------------------------------------------------------------------

def add_parent(
    graph: AncestorGraph,
    dog_id: str,
    parent_type: Any,
    parent_data: ParentData,
    *,
    persistence: Any = None,
) -> AncestorGraph:
    return PedigreeMutationCoordinator(graph, persistence).add_parent(dog_id, parent_type, parent_data)


def edit_parent(
    graph: AncestorGraph,
    dog_id: str,
    parent_type: Any,
    parent_data: ParentData,
    *,
    persistence: Any = None,
) -> AncestorGraph:
    return PedigreeMutationCoordinator(graph, persistence).edit_parent(dog_id, parent_type, parent_data)
