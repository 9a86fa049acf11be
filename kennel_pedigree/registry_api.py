# kennel_pedigree/registry_api.py

from __future__ import annotations

import os
from typing import Any, Dict, Iterable, Optional

import requests

from .errors import RegistryError
from .models import DogNode, ParentType


# -------------------------------
# Configuration
# -------------------------------

DEFAULT_API_URL = "http://localhost:5005/graphql"
REQUEST_TIMEOUT = 10


def api_url_from_env() -> str:
    return os.environ.get("KENNEL_API_URL") or DEFAULT_API_URL


# -------------------------------
# HTTP Client Builder
# -------------------------------

def build_client(token: Optional[str] = None) -> requests.Session:
    """
    Build and return a configured HTTP session for registry API calls.

    The bearer token defaults to $KENNEL_AUTH_TOKEN.
    """
    session = requests.Session()
    session.headers.update({
        "User-Agent": "kennel-pedigree/1.0",
        "Accept": "application/json",
        "Content-Type": "application/json",
    })
    token = token if token is not None else os.environ.get("KENNEL_AUTH_TOKEN")
    if token:
        session.headers["Authorization"] = f"Bearer {token}"
    return session


# -------------------------------
# GraphQL documents
# -------------------------------

_DOG_FIELDS = """
      id
      name
      breed
      gender
      dateOfBirth
      dateOfDeath
      registrationNumber
      color
      titles
      healthRecords { id }
      currentOwner { id name }
      sire { id }
      dam { id }
"""

GET_DOG = "query GetDogById($id: ID!) {\n  dog(id: $id) {" + _DOG_FIELDS + "  }\n}"

GET_DOGS = "query GetDogsByIds($ids: [ID!]!) {\n  dogsByIds(ids: $ids) {" + _DOG_FIELDS + "  }\n}"

CREATE_DOG = """
mutation CreateDog($input: CreateDogInput!) {
  createDog(input: $input) { id }
}
"""

UPDATE_DOG = """
mutation UpdateDog($id: ID!, $input: UpdateDogInput!) {
  updateDog(id: $id, input: $input) { id }
}
"""

LINK_DOG_TO_PARENTS = """
mutation linkDogToParents($dogId: ID!, $sireId: ID, $damId: ID) {
  linkDogToParents(dogId: $dogId, sireId: $sireId, damId: $damId) { id }
}
"""

# DogNode field -> registry input field
_INPUT_FIELDS = {
    "name": "name",
    "sex": "gender",
    "breed": "breed",
    "date_of_birth": "dateOfBirth",
    "date_of_death": "dateOfDeath",
    "registration_number": "registrationNumber",
    "color": "color",
    "is_champion": "isChampion",
    "is_health_tested": "hasHealthTests",
    "owner_id": "ownerId",
}


def to_registry_input(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map DogNode field values to the registry's CreateDogInput / UpdateDogInput.
    Fields the registry does not accept are dropped.
    """
    out: Dict[str, Any] = {}
    for name, value in fields.items():
        key = _INPUT_FIELDS.get(name)
        if key is None:
            continue
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        elif hasattr(value, "value"):
            value = value.value
        out[key] = value
    return out


# -------------------------------
# Registry client
# -------------------------------

class RegistryClient:
    """
    Dog lookup + persistence collaborator backed by the registry's GraphQL API.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        url: Optional[str] = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.session = session or build_client()
        self.url = url or api_url_from_env()
        self.timeout = timeout

    def _execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = self.session.post(
                self.url,
                json={"query": query, "variables": variables},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise RegistryError(f"Registry request failed: {e}") from e

        if not isinstance(payload, dict):
            raise RegistryError(
                f"Unexpected registry response structure: expected object, got {type(payload)}"
            )

        errors = payload.get("errors")
        if errors:
            messages = "; ".join(str(err.get("message", err)) for err in errors if err)
            raise RegistryError(f"Registry returned errors: {messages}")

        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    # ---- lookup ----

    def fetch_dog_by_id(self, dog_id: str) -> Optional[DogNode]:
        """
        Fetch one dog. Returns None when the registry does not know the ID.
        """
        data = self._execute(GET_DOG, {"id": dog_id})
        record = data.get("dog")
        if not record:
            return None
        return DogNode.from_record(record)

    def fetch_dogs_by_ids(self, dog_ids: Iterable[str]) -> Dict[str, Optional[DogNode]]:
        """
        Batch variant: one round trip for a whole generation.
        IDs the registry does not return map to None.
        """
        ids = list(dict.fromkeys(dog_ids))
        if not ids:
            return {}

        data = self._execute(GET_DOGS, {"ids": ids})
        records = data.get("dogsByIds") or []
        if not isinstance(records, list):
            raise RegistryError(
                f"Unexpected dogsByIds structure: expected list, got {type(records)}"
            )

        found: Dict[str, Optional[DogNode]] = {i: None for i in ids}
        for record in records:
            if not record:
                continue
            node = DogNode.from_record(record)
            if node.id in found:
                found[node.id] = node
        return found

    # ---- persistence ----

    def create_dog(self, fields: Dict[str, Any]) -> str:
        data = self._execute(CREATE_DOG, {"input": to_registry_input(fields)})
        created = data.get("createDog") or {}
        new_id = created.get("id")
        if not new_id:
            raise RegistryError("createDog returned no id")
        return str(new_id)

    def update_dog(self, dog_id: str, fields: Dict[str, Any]) -> None:
        self._execute(UPDATE_DOG, {"id": dog_id, "input": to_registry_input(fields)})

    def update_dog_parent(self, dog_id: str, parent_type: ParentType, parent_id: Optional[str]) -> None:
        variables: Dict[str, Any] = {"dogId": dog_id}
        if parent_type is ParentType.SIRE:
            variables["sireId"] = parent_id
        else:
            variables["damId"] = parent_id
        data = self._execute(LINK_DOG_TO_PARENTS, variables)
        if not data.get("linkDogToParents"):
            raise RegistryError(f"linkDogToParents returned nothing for dog {dog_id!r}")
