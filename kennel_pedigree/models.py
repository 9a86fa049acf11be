from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from .errors import ValidationError


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Sex(str, Enum):
    MALE = "male"
    FEMALE = "female"

    @classmethod
    def parse(cls, raw: Any) -> Optional["Sex"]:
        """
        Lenient sex parsing for registry records and form input.

        Returns None for missing / unrecognised values; placeholders are
        allowed to have an unknown sex until they are resolved.
        """
        if raw is None:
            return None
        if isinstance(raw, Sex):
            return raw
        s = str(raw).strip().lower()
        if s in ("m", "male", "dog", "stud", "sire"):
            return cls.MALE
        if s in ("f", "female", "bitch", "dam"):
            return cls.FEMALE
        return None


class ParentType(str, Enum):
    SIRE = "sire"
    DAM = "dam"

    @property
    def expected_sex(self) -> Sex:
        return Sex.MALE if self is ParentType.SIRE else Sex.FEMALE

    @property
    def label(self) -> str:
        return "Sire" if self is ParentType.SIRE else "Dam"

    @classmethod
    def parse(cls, raw: Any) -> "ParentType":
        if isinstance(raw, ParentType):
            return raw
        s = str(raw or "").strip().lower()
        if s in ("sire", "father"):
            return cls.SIRE
        if s in ("dam", "mother"):
            return cls.DAM
        raise ValidationError(f"parent_type must be 'sire' or 'dam', got {raw!r}")


PARENT_TYPES: Tuple[ParentType, ParentType] = (ParentType.SIRE, ParentType.DAM)


class LinkState(str, Enum):
    """
    State of one child -> parent edge in an AncestorGraph.

      RESOLVED   parent node is in the graph
      UNKNOWN    the record names no parent ("unknown ancestor")
      NOT_FOUND  the record names a parent ID that did not resolve
      PENDING    a parent ID is recorded but has not been fetched yet
      CYCLE      the edge was rejected because it would close a loop
      TRUNCATED  child sits at the generation bound; parent deliberately not fetched
    """
    RESOLVED = "resolved"
    UNKNOWN = "unknown"
    NOT_FOUND = "not_found"
    PENDING = "pending"
    CYCLE = "cycle"
    TRUNCATED = "truncated"


# ---------------------------------------------------------------------------
# Dog records
# ---------------------------------------------------------------------------

def _parse_date(v: Any) -> Optional[date]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, str):
        try:
            return date.fromisoformat(v.strip()[:10])
        except ValueError:
            return None
    return None


def _ref(v: Any) -> Optional[str]:
    """
    Normalise a sire/dam reference: nested {"id": ...} objects, ints and
    blank strings all map to Optional[str].
    """
    if isinstance(v, dict):
        v = v.get("id")
    if v is None:
        return None
    s = str(v).strip()
    return s or None


@dataclass
class DogNode:
    """
    One dog in an ancestor graph.

    sire_id / dam_id are lookup keys into the graph's node map, never owned
    copies of the parent. The same DogNode instance is shared by every
    lineage path (and every layout) that reaches this dog.
    """
    id: str
    name: str = ""
    sex: Optional[Sex] = None
    breed: str = ""
    date_of_birth: Optional[date] = None
    sire_id: Optional[str] = None
    dam_id: Optional[str] = None
    is_champion: bool = False
    is_health_tested: bool = False
    registration_number: str = ""
    owner_id: str = ""
    owner_name: str = ""
    color: str = ""
    date_of_death: Optional[date] = None
    is_placeholder: bool = False

    def parent_ref(self, parent_type: ParentType) -> Optional[str]:
        return self.sire_id if parent_type is ParentType.SIRE else self.dam_id

    def set_parent_ref(self, parent_type: ParentType, parent_id: Optional[str]) -> None:
        if parent_type is ParentType.SIRE:
            self.sire_id = parent_id
        else:
            self.dam_id = parent_id

    def label(self) -> str:
        parts: List[str] = [self.name or self.id]
        if self.registration_number:
            parts.append(f"({self.registration_number})")
        return " ".join(parts)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "DogNode":
        """
        Build a node from a registry record (GraphQL camelCase payload).

        Accepts both the nested form ({"sire": {"id": ...}}) and the flat
        form ({"sireId": ...}). Champion status comes from titles, health
        tested from health records, as in the registry's own transform.
        """
        titles = record.get("titles") or []
        if "isChampion" in record:
            is_champion = bool(record.get("isChampion"))
        else:
            is_champion = any("champion" in str(t).lower() for t in titles)

        if "hasHealthTests" in record:
            is_health_tested = bool(record.get("hasHealthTests"))
        else:
            is_health_tested = bool(record.get("healthRecords"))

        owner = record.get("currentOwner") or {}

        sire = record.get("sireId") if "sireId" in record else record.get("sire")
        dam = record.get("damId") if "damId" in record else record.get("dam")

        return cls(
            id=str(record["id"]),
            name=record.get("name") or "",
            sex=Sex.parse(record.get("gender", record.get("sex"))),
            breed=record.get("breed") or record.get("breedName") or "",
            date_of_birth=_parse_date(record.get("dateOfBirth")),
            sire_id=_ref(sire),
            dam_id=_ref(dam),
            is_champion=is_champion,
            is_health_tested=is_health_tested,
            registration_number=record.get("registrationNumber") or "",
            owner_id=str(owner.get("id") or record.get("ownerId") or ""),
            owner_name=owner.get("name") or record.get("ownerName") or "",
            color=record.get("color") or "",
            date_of_death=_parse_date(record.get("dateOfDeath")),
        )

    def to_record(self) -> Dict[str, Any]:
        """
        Inverse of from_record() using the flat camelCase form.
        """
        return {
            "id": self.id,
            "name": self.name,
            "gender": self.sex.value if self.sex else None,
            "breed": self.breed,
            "dateOfBirth": self.date_of_birth.isoformat() if self.date_of_birth else None,
            "sireId": self.sire_id,
            "damId": self.dam_id,
            "isChampion": self.is_champion,
            "hasHealthTests": self.is_health_tested,
            "registrationNumber": self.registration_number,
            "ownerId": self.owner_id,
            "ownerName": self.owner_name,
            "color": self.color,
            "dateOfDeath": self.date_of_death.isoformat() if self.date_of_death else None,
        }


# Fields a parent add/edit may set directly on a node.
EDITABLE_FIELDS: Tuple[str, ...] = tuple(
    f.name for f in fields(DogNode) if f.name not in ("id", "sire_id", "dam_id", "is_placeholder")
)


def coerce_field(name: str, value: Any) -> Any:
    """
    Coerce form / record input for one DogNode field to its stored type.
    """
    if name == "sex":
        return Sex.parse(value)
    if name in ("date_of_birth", "date_of_death"):
        return _parse_date(value)
    if name in ("is_champion", "is_health_tested"):
        return bool(value)
    return "" if value is None else str(value)


# ---------------------------------------------------------------------------
# Ancestor graph
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GraphWarning:
    kind: str                          # "cycle" | "not_found"
    dog_id: str
    parent_type: Optional[ParentType]
    message: str


@dataclass
class AncestorGraph:
    """
    Identity-preserving ancestry map for one root dog.

    nodes is keyed by dog ID; an ancestor reachable through several lineage
    paths appears exactly once. Edges are the nodes' sire_id / dam_id
    references, qualified by links[(child_id, parent_type)].
    """
    root_id: str
    max_generations: int
    nodes: Dict[str, DogNode] = field(default_factory=dict)
    links: Dict[Tuple[str, ParentType], LinkState] = field(default_factory=dict)
    depths: Dict[str, int] = field(default_factory=dict)
    truncated: Set[str] = field(default_factory=set)
    warnings: List[GraphWarning] = field(default_factory=list)

    def __contains__(self, dog_id: object) -> bool:
        return dog_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[DogNode]:
        return iter(self.nodes.values())

    @property
    def root(self) -> Optional[DogNode]:
        return self.nodes.get(self.root_id)

    def get(self, dog_id: Optional[str]) -> Optional[DogNode]:
        if dog_id is None:
            return None
        return self.nodes.get(dog_id)

    def link_state(self, child_id: str, parent_type: ParentType) -> LinkState:
        state = self.links.get((child_id, parent_type))
        if state is not None:
            return state
        node = self.nodes.get(child_id)
        ref = node.parent_ref(parent_type) if node else None
        if ref is None:
            return LinkState.UNKNOWN
        return LinkState.RESOLVED if ref in self.nodes else LinkState.PENDING

    def parent_id(self, child_id: str, parent_type: ParentType) -> Optional[str]:
        """
        ID of the resolved parent, or None for any non-resolved link state.
        """
        if self.link_state(child_id, parent_type) is not LinkState.RESOLVED:
            return None
        node = self.nodes.get(child_id)
        ref = node.parent_ref(parent_type) if node else None
        return ref if ref in self.nodes else None

    def parent(self, child_id: str, parent_type: ParentType) -> Optional[DogNode]:
        pid = self.parent_id(child_id, parent_type)
        return self.nodes.get(pid) if pid is not None else None

    def parent_ids(self, child_id: str) -> List[str]:
        out: List[str] = []
        for pt in PARENT_TYPES:
            pid = self.parent_id(child_id, pt)
            if pid is not None:
                out.append(pid)
        return out

    def recorded_parent_ids(self, child_id: str) -> List[str]:
        """
        Parents named on the node that are present in the graph, whatever
        the link state (TRUNCATED or PENDING included). Rejected CYCLE edges
        are left out.
        """
        node = self.nodes.get(child_id)
        if node is None:
            return []
        out: List[str] = []
        for pt in PARENT_TYPES:
            ref = node.parent_ref(pt)
            if ref in self.nodes and self.links.get((child_id, pt)) is not LinkState.CYCLE:
                out.append(ref)
        return out

    def descends_from(self, dog_id: str, ancestor_id: str) -> bool:
        """
        Loop guard: True if ancestor_id is reachable from dog_id through any
        recorded parent reference inside the graph.
        """
        stack = self.recorded_parent_ids(dog_id)
        seen: Set[str] = set()
        while stack:
            cur = stack.pop()
            if cur == ancestor_id:
                return True
            if cur in seen:
                continue
            seen.add(cur)
            stack.extend(self.recorded_parent_ids(cur))
        return False

    def ancestors(self, dog_id: str) -> Set[str]:
        out: Set[str] = set()
        stack = self.parent_ids(dog_id)
        while stack:
            cur = stack.pop()
            if cur in out:
                continue
            out.add(cur)
            stack.extend(self.parent_ids(cur))
        return out

    def add_warning(
        self,
        kind: str,
        dog_id: str,
        parent_type: Optional[ParentType],
        message: str,
    ) -> None:
        self.warnings.append(GraphWarning(kind=kind, dog_id=dog_id, parent_type=parent_type, message=message))

    def rekey(self, old_id: str, new_id: str) -> None:
        """
        Rename a node in place (e.g. provisional ID -> registry ID).
        """
        if old_id == new_id:
            return
        if new_id in self.nodes:
            raise ValueError(f"Cannot rekey {old_id!r}: {new_id!r} already exists")

        node = self.nodes.pop(old_id)
        node.id = new_id
        self.nodes[new_id] = node

        for other in self.nodes.values():
            for pt in PARENT_TYPES:
                if other.parent_ref(pt) == old_id:
                    other.set_parent_ref(pt, new_id)

        # In place: callers may hold references to these containers
        for (child, pt) in [k for k in self.links if k[0] == old_id]:
            self.links[(new_id, pt)] = self.links.pop((child, pt))
        if old_id in self.depths:
            self.depths[new_id] = self.depths.pop(old_id)
        if old_id in self.truncated:
            self.truncated.discard(old_id)
            self.truncated.add(new_id)
        if self.root_id == old_id:
            self.root_id = new_id

    def copy(self) -> "AncestorGraph":
        """
        Frozen-in-time deep copy (node identity preserved within the copy).
        """
        return copy.deepcopy(self)


# ---------------------------------------------------------------------------
# Inbreeding results
# ---------------------------------------------------------------------------

class COIStatus(str, Enum):
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"


# Upper bounds (exclusive) of the COI guideline bands.
RISK_BANDS: Tuple[Tuple[float, str], ...] = (
    (0.05, "Low"),
    (0.10, "Moderate"),
    (0.20, "High"),
)


def risk_level(value: Optional[float]) -> str:
    """
    Guideline band for a COI value: Low (<5%), Moderate (<10%), High (<20%),
    Very High otherwise. None maps to "N/A".
    """
    if value is None:
        return "N/A"
    for upper, label in RISK_BANDS:
        if value < upper:
            return label
    return "Very High"


@dataclass(frozen=True)
class PathContribution:
    """
    One (common ancestor, sire-side path, dam-side path) term of Wright's sum.

    Paths run from the sire (resp. dam) of the analysed dog up to and
    including the common ancestor; n1 / n2 are their edge counts.
    """
    ancestor_id: str
    n1: int
    n2: int
    sire_path: Tuple[str, ...]
    dam_path: Tuple[str, ...]
    ancestor_coi: float
    value: float


@dataclass(frozen=True)
class COIResult:
    status: COIStatus
    value: Optional[float]
    explanation: str = ""
    contributions: Tuple[PathContribution, ...] = ()
    truncated: bool = False
    approximated_ancestors: Tuple[str, ...] = ()

    @property
    def is_available(self) -> bool:
        return self.status is COIStatus.OK and self.value is not None

    @property
    def percent(self) -> Optional[float]:
        return self.value * 100.0 if self.value is not None else None

    @property
    def risk_level(self) -> str:
        return risk_level(self.value)

    def display(self) -> str:
        if not self.is_available:
            return "N/A"
        suffix = " (truncated)" if self.truncated else ""
        return f"{self.percent:.2f}%{suffix}"


# ---------------------------------------------------------------------------
# Chart display options
# ---------------------------------------------------------------------------

ORIENTATIONS = ("horizontal", "vertical")
THEMES = ("standard", "classic", "modern", "minimal")


@dataclass
class ChartOptions:
    generations: int = 3
    orientation: str = "horizontal"
    show_champions: bool = True
    show_health_tests: bool = True
    show_dates: bool = True
    show_owners: bool = False
    theme: str = "modern"

    def validate(self) -> "ChartOptions":
        if self.generations < 0:
            raise ValueError("generations must be >= 0")
        if self.orientation not in ORIENTATIONS:
            raise ValueError(f"orientation must be one of {ORIENTATIONS}, got {self.orientation!r}")
        if self.theme not in THEMES:
            raise ValueError(f"theme must be one of {THEMES}, got {self.theme!r}")
        return self
