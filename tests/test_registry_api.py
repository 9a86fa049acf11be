from __future__ import annotations

from datetime import date
from typing import Any

import pytest
import requests

from kennel_pedigree.errors import RegistryError
from kennel_pedigree.models import ParentType, Sex
from kennel_pedigree.registry_api import (
    DEFAULT_API_URL,
    GET_DOGS,
    LINK_DOG_TO_PARENTS,
    RegistryClient,
    api_url_from_env,
    build_client,
    to_registry_input,
)


class FakeResponse:
    def __init__(self, payload: Any, status: int = 200) -> None:
        self.payload = payload
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        return self.payload


class FakeSession:
    def __init__(self, *responses: FakeResponse) -> None:
        self.responses = list(responses)
        self.posts: list[dict[str, Any]] = []

    def post(self, url: str, json: Any = None, timeout: Any = None) -> FakeResponse:
        self.posts.append({"url": url, "json": json, "timeout": timeout})
        return self.responses.pop(0)


def _client(*responses: FakeResponse) -> tuple[RegistryClient, FakeSession]:
    session = FakeSession(*responses)
    return RegistryClient(session=session, url="http://registry.test/graphql"), session


def test_build_client_sets_bearer_token() -> None:
    session = build_client(token="abc")

    assert session.headers["Authorization"] == "Bearer abc"
    assert session.headers["Content-Type"] == "application/json"


def test_api_url_from_env(monkeypatch) -> None:
    monkeypatch.delenv("KENNEL_API_URL", raising=False)
    assert api_url_from_env() == DEFAULT_API_URL

    monkeypatch.setenv("KENNEL_API_URL", "https://kennel.example/graphql")
    assert api_url_from_env() == "https://kennel.example/graphql"


def test_fetch_dog_by_id_maps_record() -> None:
    client, session = _client(
        FakeResponse(
            {
                "data": {
                    "dog": {
                        "id": "12",
                        "name": "Bruno",
                        "gender": "male",
                        "dateOfBirth": "2018-04-02T00:00:00Z",
                        "sire": {"id": "3"},
                        "dam": None,
                    }
                }
            }
        )
    )

    dog = client.fetch_dog_by_id("12")

    assert dog.sex is Sex.MALE
    assert dog.date_of_birth == date(2018, 4, 2)
    assert (dog.sire_id, dog.dam_id) == ("3", None)
    assert session.posts[0]["json"]["variables"] == {"id": "12"}
    assert session.posts[0]["timeout"] == 10


def test_fetch_dog_by_id_unknown_returns_none() -> None:
    client, _ = _client(FakeResponse({"data": {"dog": None}}))

    assert client.fetch_dog_by_id("404") is None


def test_batch_fetch_fills_missing_ids_with_none() -> None:
    client, session = _client(FakeResponse({"data": {"dogsByIds": [{"id": "1", "gender": "female"}]}}))

    found = client.fetch_dogs_by_ids(["1", "2", "1"])

    assert set(found) == {"1", "2"}
    assert found["1"].sex is Sex.FEMALE
    assert found["2"] is None
    assert session.posts[0]["json"]["query"] == GET_DOGS
    assert session.posts[0]["json"]["variables"] == {"ids": ["1", "2"]}


def test_graphql_errors_become_registry_error() -> None:
    client, _ = _client(FakeResponse({"errors": [{"message": "Not authorised"}]}))

    with pytest.raises(RegistryError, match="Not authorised"):
        client.fetch_dog_by_id("1")


def test_http_errors_become_registry_error() -> None:
    client, _ = _client(FakeResponse({}, status=502))

    with pytest.raises(RegistryError):
        client.fetch_dog_by_id("1")


def test_persistence_calls() -> None:
    client, session = _client(
        FakeResponse({"data": {"createDog": {"id": "99"}}}),
        FakeResponse({"data": {"updateDog": {"id": "99"}}}),
        FakeResponse({"data": {"linkDogToParents": {"id": "12"}}}),
    )

    new_id = client.create_dog({"name": "Rex", "sex": Sex.MALE, "date_of_birth": date(2020, 1, 2), "owner_name": "x"})
    client.update_dog("99", {"is_champion": True})
    client.update_dog_parent("12", ParentType.SIRE, "99")

    assert new_id == "99"
    assert session.posts[0]["json"]["variables"]["input"] == {
        "name": "Rex",
        "gender": "male",
        "dateOfBirth": "2020-01-02",
    }
    assert session.posts[1]["json"]["variables"] == {"id": "99", "input": {"isChampion": True}}
    assert session.posts[2]["json"]["query"] == LINK_DOG_TO_PARENTS
    assert session.posts[2]["json"]["variables"] == {"dogId": "12", "sireId": "99"}


def test_create_without_id_is_an_error() -> None:
    client, _ = _client(FakeResponse({"data": {"createDog": None}}))

    with pytest.raises(RegistryError):
        client.create_dog({"name": "Rex"})


def test_to_registry_input_drops_unknown_fields() -> None:
    assert to_registry_input({"owner_name": "x", "color": "red"}) == {"color": "red"}
