from __future__ import annotations

import json
from pathlib import Path

import pytest

from kennel_pedigree.dog_store import JsonDogStore
from kennel_pedigree.errors import RegistryError
from kennel_pedigree.models import ParentType, Sex


def _write(path: Path, payload) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_loads_schema_file_and_maps_records(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "dogs.json",
        {
            "schema_version": 1,
            "dogs": [
                {
                    "id": 7,
                    "name": "Aria",
                    "gender": "female",
                    "breed": "Border Collie",
                    "sire": {"id": 3},
                    "titles": ["Nordic Champion"],
                    "healthRecords": [{"type": "HD"}],
                    "currentOwner": {"id": "o1", "name": "Kennel North"},
                },
            ],
        },
    )
    store = JsonDogStore(path)

    aria = store.fetch_dog_by_id("7")
    assert aria.sex is Sex.FEMALE
    assert aria.sire_id == "3"
    assert aria.dam_id is None
    assert aria.is_champion and aria.is_health_tested
    assert aria.owner_name == "Kennel North"
    assert store.fetch_dogs_by_ids(["7", "404"]) == {"7": aria, "404": None}


def test_legacy_list_file_is_accepted(tmp_path: Path) -> None:
    path = _write(tmp_path / "dogs.json", [{"id": "a", "gender": "m"}])

    assert len(JsonDogStore(path)) == 1


@pytest.mark.parametrize("payload", [{"schema_version": 2, "dogs": []}, {"schema_version": 1, "dogs": [{}]}, "x"])
def test_malformed_file_raises_registry_error(tmp_path: Path, payload) -> None:
    path = _write(tmp_path / "dogs.json", payload)

    with pytest.raises(RegistryError):
        JsonDogStore(path)


def test_create_update_and_link_persist_to_disk(tmp_path: Path) -> None:
    path = tmp_path / "dogs.json"
    store = JsonDogStore(path, records=[{"id": "pup", "name": "Pup", "gender": "male"}])

    sire_id = store.create_dog({"name": "Rex", "sex": Sex.MALE})
    store.update_dog(sire_id, {"color": "black"})
    store.update_dog_parent("pup", ParentType.SIRE, sire_id)

    reloaded = JsonDogStore(path)
    assert reloaded.fetch_dog_by_id("pup").sire_id == sire_id
    assert reloaded.fetch_dog_by_id(sire_id).color == "black"
    assert not path.with_suffix(".json.tmp").exists()


def test_link_validation(tmp_path: Path) -> None:
    store = JsonDogStore(
        tmp_path / "dogs.json",
        records=[{"id": "pup", "gender": "male"}, {"id": "bitch", "gender": "female"}],
    )

    with pytest.raises(RegistryError):
        store.update_dog_parent("pup", ParentType.SIRE, "bitch")
    with pytest.raises(RegistryError):
        store.update_dog_parent("pup", ParentType.DAM, "nobody")
    with pytest.raises(RegistryError):
        store.update_dog("nobody", {"name": "x"})
    with pytest.raises(RegistryError):
        store.create_dog({"id": "pup"})
