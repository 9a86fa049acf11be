from __future__ import annotations

import copy
from dataclasses import dataclass
from threading import RLock
from typing import Any, Dict, Optional

from .ancestor_graph import DEFAULT_MAX_WORKERS, build_ancestor_graph
from .errors import PedigreeError, StaleSessionError
from .inbreeding import compute_inbreeding_coefficient
from .models import AncestorGraph, ChartOptions, COIResult, COIStatus
from .pedigree_layout import (
    GenerationColumns,
    PedigreeTreeView,
    SlotState,
    layout_horizontal,
    layout_vertical,
    placeholder_columns,
)
from .pedigree_mutation import MutationOutcome, PedigreeMutationCoordinator


@dataclass(frozen=True)
class ChartSnapshot:
    """
    Stable, self-contained view of a chart for export: the layouts and COI
    are derived from (and reference) this snapshot's own graph copy.
    """
    root_id: str
    generations: int
    graph: AncestorGraph
    horizontal: GenerationColumns
    vertical: PedigreeTreeView
    coi: COIResult
    options: ChartOptions


class ChartSession:
    """
    One pedigree chart: loads the ancestor graph, serves COI and layouts
    computed lazily from it, and routes edits through a mutation
    coordinator that shares the session lock.

    Every load() takes a new liveness token; close() or a newer load()
    invalidates older tokens so their late fetches are dropped.
    """

    def __init__(
        self,
        lookup: Any,
        persistence: Any = None,
        options: Optional[ChartOptions] = None,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.lookup = lookup
        self.persistence = persistence
        self.options = (options or ChartOptions()).validate()
        self.max_workers = max_workers
        self.lock = RLock()

        self.root_id: Optional[str] = None
        self.generations = self.options.generations
        self.graph: Optional[AncestorGraph] = None
        self.error: Optional[Exception] = None

        self._token = 0
        self._loading = False
        self._closed = False
        self._coordinator: Optional[PedigreeMutationCoordinator] = None
        self._cache: Dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _is_current(self, token: int) -> bool:
        return not self._closed and token == self._token

    @property
    def state(self) -> str:
        if self._closed:
            return "closed"
        if self._loading:
            return "loading"
        if self.error is not None:
            return "error"
        if self.graph is not None:
            return "ready"
        return "idle"

    def load(self, root_id: str, generations: Optional[int] = None) -> Optional[AncestorGraph]:
        """
        Build the chart for root_id. Returns None if the session was closed
        or reloaded while the build was in flight; registry errors and an
        unknown root are re-raised after being recorded in self.error.
        """
        gens = self.options.generations if generations is None else generations
        if gens < 0:
            raise ValueError("generations must be >= 0")

        with self.lock:
            self._token += 1
            token = self._token
            self._closed = False
            self._loading = True
            self.root_id = str(root_id)
            self.generations = gens
            self.graph = None
            self.error = None
            self._coordinator = None
            self._cache.clear()

        try:
            graph = build_ancestor_graph(
                root_id,
                gens,
                self.lookup,
                is_current=lambda: self._is_current(token),
                max_workers=self.max_workers,
            )
        except StaleSessionError:
            return None
        except PedigreeError as e:
            with self.lock:
                if self._is_current(token):
                    self._loading = False
                    self.error = e
            raise

        with self.lock:
            if not self._is_current(token):
                print(f"[chart-session] Dropping superseded build for {root_id!r}")
                return None
            self.graph = graph
            self._loading = False
            self._coordinator = PedigreeMutationCoordinator(graph, self.persistence, lock=self.lock)
            self._coordinator.on_change(self._invalidate)
        return graph

    def close(self) -> None:
        with self.lock:
            self._token += 1
            self._closed = True
            self._loading = False
            self._cache.clear()

    def _invalidate(self, outcome: MutationOutcome) -> None:
        self._cache.clear()
        print(
            f"[chart-session] {outcome.operation} on {outcome.dog_id!r} committed; "
            "COI and layouts marked stale"
        )

    def _require_graph(self) -> AncestorGraph:
        if self.graph is None or self.root_id is None:
            raise PedigreeError(f"No pedigree loaded (session state: {self.state})")
        return self.graph

    # ------------------------------------------------------------------
    # Derived views (cached until the next committed mutation)
    # ------------------------------------------------------------------

    def coi(self) -> COIResult:
        with self.lock:
            if self.graph is None:
                return COIResult(
                    status=COIStatus.INSUFFICIENT_DATA,
                    value=None,
                    explanation=f"Pedigree not available (session state: {self.state})",
                )
            if "coi" not in self._cache:
                self._cache["coi"] = compute_inbreeding_coefficient(
                    self.root_id, self.graph, max_generations=self.generations
                )
            return self._cache["coi"]

    def horizontal(self) -> GenerationColumns:
        """
        Column layout; while loading (or after a failed load) every slot is
        a PENDING (resp. ERROR) placeholder.
        """
        with self.lock:
            if self.graph is None:
                if self.root_id is None:
                    raise PedigreeError("No pedigree requested")
                state = SlotState.PENDING if self._loading else SlotState.ERROR
                return placeholder_columns(self.root_id, self.generations, state)
            if "horizontal" not in self._cache:
                self._cache["horizontal"] = layout_horizontal(self.root_id, self.graph, self.generations)
            return self._cache["horizontal"]

    def vertical(self) -> PedigreeTreeView:
        with self.lock:
            graph = self._require_graph()
            if "vertical" not in self._cache:
                self._cache["vertical"] = layout_vertical(self.root_id, graph, self.generations)
            return self._cache["vertical"]

    def layout(self) -> Any:
        """
        Layout for the configured orientation.
        """
        if self.options.orientation == "vertical":
            return self.vertical()
        return self.horizontal()

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def add_parent(self, dog_id: str, parent_type: Any, parent_data: Any) -> AncestorGraph:
        with self.lock:
            self._require_graph()
            return self._coordinator.add_parent(dog_id, parent_type, parent_data)

    def edit_parent(self, dog_id: str, parent_type: Any, parent_data: Any) -> AncestorGraph:
        with self.lock:
            self._require_graph()
            return self._coordinator.edit_parent(dog_id, parent_type, parent_data)

    @property
    def last_mutation(self) -> Optional[MutationOutcome]:
        return self._coordinator.last_outcome if self._coordinator else None

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def snapshot(self) -> ChartSnapshot:
        """
        Deep-copied graph plus layouts and COI derived from the copy. Waits
        for any in-progress mutation (session lock).
        """
        with self.lock:
            graph = self._require_graph().copy()
            root_id = self.root_id
            gens = self.generations
            options = copy.deepcopy(self.options)

        return ChartSnapshot(
            root_id=root_id,
            generations=gens,
            graph=graph,
            horizontal=layout_horizontal(root_id, graph, gens),
            vertical=layout_vertical(root_id, graph, gens),
            coi=compute_inbreeding_coefficient(root_id, graph, max_generations=gens),
            options=options,
        )
