from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import RegistryError
from .models import DogNode, ParentType, Sex

# Default registry file (relative to project root)
DEFAULT_STORE_PATH = Path(".cache") / "dogs.json"

STORE_SCHEMA_VERSION = 1


class JsonDogStore:
    """
    Local dog registry kept in a single JSON file.

    Serves as both the lookup and the persistence collaborator, so charts
    can be built and edited offline. File format:

      {"schema_version": 1, "dogs": [ {registry record}, ... ]}

    A bare top-level list of records is also accepted on load.
    """

    def __init__(self, path: Path = DEFAULT_STORE_PATH, records: Optional[List[Dict[str, Any]]] = None) -> None:
        self.path = Path(path)
        self._records: Dict[str, Dict[str, Any]] = {}
        if records is not None:
            for r in records:
                self._records[str(r["id"])] = dict(r)
        elif self.path.exists():
            self._records = self._load()

    # ---- file I/O ----

    def _load(self) -> Dict[str, Dict[str, Any]]:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RegistryError(f"Cannot read dog store {self.path}: {e}") from e

        if isinstance(data, dict):
            if data.get("schema_version") != STORE_SCHEMA_VERSION:
                raise RegistryError(f"Unsupported dog store schema_version: {data.get('schema_version')}")
            data = data.get("dogs")

        if not isinstance(data, list):
            raise RegistryError(f"Malformed dog store {self.path}: expected a list of dogs")

        out: Dict[str, Dict[str, Any]] = {}
        for record in data:
            if not isinstance(record, dict) or "id" not in record:
                raise RegistryError(f"Malformed dog record in {self.path}: {record!r}")
            out[str(record["id"])] = record
        return out

    def save(self) -> None:
        """
        Persist the registry (atomic replace).
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "schema_version": STORE_SCHEMA_VERSION,
            "dogs": list(self._records.values()),
        }

        # Write atomically to avoid partial files on crash
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        tmp_path.replace(self.path)

    def __len__(self) -> int:
        return len(self._records)

    # ---- lookup ----

    def fetch_dog_by_id(self, dog_id: str) -> Optional[DogNode]:
        record = self._records.get(str(dog_id))
        return DogNode.from_record(record) if record else None

    def fetch_dogs_by_ids(self, dog_ids: Iterable[str]) -> Dict[str, Optional[DogNode]]:
        return {i: self.fetch_dog_by_id(i) for i in dict.fromkeys(dog_ids)}

    # ---- persistence ----

    def create_dog(self, fields: Dict[str, Any]) -> str:
        new_id = str(fields.get("id") or uuid.uuid4().hex[:12])
        if new_id in self._records:
            raise RegistryError(f"Dog already exists: {new_id!r}")
        node = DogNode(id=new_id)
        for name, value in fields.items():
            if name != "id" and hasattr(node, name):
                setattr(node, name, value)
        self._records[new_id] = node.to_record()
        self.save()
        return new_id

    def update_dog(self, dog_id: str, fields: Dict[str, Any]) -> None:
        record = self._records.get(dog_id)
        if record is None:
            raise RegistryError(f"Cannot update unknown dog {dog_id!r}")
        node = DogNode.from_record(record)
        for name, value in fields.items():
            if name != "id" and hasattr(node, name):
                setattr(node, name, value)
        self._records[dog_id] = {**record, **node.to_record()}
        self.save()

    def update_dog_parent(self, dog_id: str, parent_type: ParentType, parent_id: Optional[str]) -> None:
        record = self._records.get(dog_id)
        if record is None:
            raise RegistryError(f"Cannot link parent of unknown dog {dog_id!r}")
        if parent_id is not None and parent_id not in self._records:
            raise RegistryError(f"Cannot link unknown {parent_type.value} {parent_id!r}")

        if parent_id is not None:
            parent_sex = Sex.parse(self._records[parent_id].get("gender"))
            if parent_sex is not None and parent_sex is not parent_type.expected_sex:
                raise RegistryError(f"{parent_type.value} {parent_id!r} has sex {parent_sex.value}")

        key = "sireId" if parent_type is ParentType.SIRE else "damId"
        record.pop(parent_type.value, None)
        record[key] = parent_id
        self.save()
