from typing import Any

from fastapi.testclient import TestClient

from api.main import app
from api.routes import data as data_routes
from connectors.models import EntityKind


client = TestClient(app)


class FakeRecordStore:
    def __init__(self, documents: list[dict[str, Any]] | None = None, total: int = 0) -> None:
        self.documents = documents or []
        self.total = total
        self.queries: list[tuple[EntityKind, dict[str, Any]]] = []
        self.searches: list[EntityKind] = []

    async def query(self, kind: EntityKind, **kwargs: Any):
        self.queries.append((kind, kwargs))
        if kwargs.get("sort_field") == "":
            raise ValueError("Empty field path")
        return self.documents, self.total

    async def search(self, kind: EntityKind, search_term: str, **kwargs: Any):
        self.searches.append(kind)
        if kind is EntityKind.ISSUE:
            return 2, [{"title": f"{search_term} crash"}]
        return 0, []


def test_collections_lists_every_mirrored_kind() -> None:
    response = client.get("/api/data/collections")

    assert response.status_code == 200
    assert response.json()["collections"] == [
        "organizations",
        "repositories",
        "commits",
        "pull-requests",
        "issues",
        "issue-changelogs",
        "users",
    ]


def test_query_unknown_collection_is_not_found(monkeypatch) -> None:
    monkeypatch.setattr(data_routes, "record_store", FakeRecordStore())

    response = client.post("/api/data/query/gists", json={})

    assert response.status_code == 404


def test_query_returns_page_with_fields(monkeypatch) -> None:
    documents = [
        {"_id": "u1", "title": "Crash on start", "number": 7, "locked": False, "labels": [], "user": {"login": "a"}},
    ]
    store = FakeRecordStore(documents=documents, total=251)
    monkeypatch.setattr(data_routes, "record_store", store)

    response = client.post(
        "/api/data/query/issues",
        json={
            "page": 2,
            "pageSize": 50,
            "sortField": "number",
            "sortOrder": "desc",
            "filters": {"state": {"type": "equals", "value": "open"}},
            "searchTerm": "crash",
            "userId": "42",
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["totalCount"] == 251
    assert payload["totalPages"] == 6
    assert payload["page"] == 2
    assert payload["pageSize"] == 50
    assert payload["fields"] == [
        {"field": "title", "type": "string"},
        {"field": "number", "type": "number"},
        {"field": "locked", "type": "boolean"},
        {"field": "labels", "type": "array"},
        {"field": "user", "type": "object"},
    ]

    kind, kwargs = store.queries[0]
    assert kind is EntityKind.ISSUE
    assert kwargs["user_id"] == "42"
    assert kwargs["page_size"] == 50
    assert kwargs["sort_order"] == "desc"
    assert kwargs["search_term"] == "crash"


def test_query_empty_collection_has_no_fields(monkeypatch) -> None:
    monkeypatch.setattr(data_routes, "record_store", FakeRecordStore())

    response = client.post("/api/data/query/pull-requests", json={})

    payload = response.json()
    assert payload["data"] == []
    assert payload["totalPages"] == 0
    assert payload["fields"] == []


def test_query_page_size_is_bounded(monkeypatch) -> None:
    monkeypatch.setattr(data_routes, "record_store", FakeRecordStore())

    response = client.post("/api/data/query/commits", json={"pageSize": 5000})

    assert response.status_code == 422


def test_query_invalid_field_is_bad_request(monkeypatch) -> None:
    monkeypatch.setattr(data_routes, "record_store", FakeRecordStore())

    response = client.post("/api/data/query/commits", json={"sortField": ""})

    assert response.status_code == 400


def test_search_without_term_returns_nothing(monkeypatch) -> None:
    store = FakeRecordStore()
    monkeypatch.setattr(data_routes, "record_store", store)

    response = client.post("/api/data/search", json={"searchTerm": ""})

    assert response.json() == {"results": []}
    assert store.searches == []


def test_search_reports_only_collections_with_matches(monkeypatch) -> None:
    store = FakeRecordStore()
    monkeypatch.setattr(data_routes, "record_store", store)

    response = client.post(
        "/api/data/search",
        json={"searchTerm": "segfault", "collections": ["issues", "commits", "gists"]},
    )

    assert response.status_code == 200
    assert response.json()["results"] == [
        {"collection": "issues", "count": 2, "samples": [{"title": "segfault crash"}]},
    ]
    assert store.searches == [EntityKind.ISSUE, EntityKind.COMMIT]
