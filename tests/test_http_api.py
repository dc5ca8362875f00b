"""Smoke tests for the FastAPI adapter."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import journal_entry, write_jsonl
from mnemo.api import http_api
from mnemo.core.engine import MemoryEngine
from mnemo.core.errors import CollaboratorUnavailable, IndexBusyError


@pytest.fixture
def client(engine):
    http_api.app.dependency_overrides[http_api.get_engine] = lambda: engine
    try:
        yield TestClient(http_api.app)
    finally:
        http_api.app.dependency_overrides.clear()


def test_search_on_empty_index_returns_hint(client: TestClient) -> None:
    response = client.post("/search", json={"query": "anything"})

    assert response.status_code == 200
    assert response.json()["results"] == []
    assert "rebuild" in response.json()["hint"].lower()


def test_update_then_search(client: TestClient, mnemo_root: Path) -> None:
    write_jsonl(mnemo_root / "journal" / "2024-05-01.jsonl", [journal_entry("decision", "Use FAISS for vectors")])

    update = client.post("/index/update", json={"target": "memory"})
    search = client.post("/search", json={"query": "[decision] Use FAISS for vectors", "limit": 1})

    assert update.status_code == 200
    assert update.json()["memory"]["item_count"] == 1
    body = search.json()
    assert body["results"][0]["id"] == "journal-2024-05-01.jsonl-0"
    assert body["results"][0]["content"] == "[decision] Use FAISS for vectors"
    assert "adjusted_score" in body["results"][0]


def test_rebuild_all_targets(client: TestClient) -> None:
    response = client.post("/index/rebuild", json={"target": "all"})

    assert response.status_code == 200
    assert response.json() == {"memory": {"item_count": 0}, "conversations": {"item_count": 0}}


def test_journal_round_trip(client: TestClient) -> None:
    created = client.post("/journal", json={"topic": "note", "content": "Ship on Friday"})
    listed = client.get("/journal", params={"count": 5})

    assert created.status_code == 200
    assert listed.json()["entries"][0]["content"] == "Ship on Friday"


def test_stats(client: TestClient) -> None:
    response = client.get("/stats")

    assert response.status_code == 200
    assert set(response.json()) == {"memory", "conversations"}


def test_validation_errors(client: TestClient) -> None:
    assert client.post("/search", json={"limit": 3}).status_code == 422
    assert client.post("/search", json={"query": "x", "type": "bogus"}).status_code == 422
    assert client.post("/search", json={"query": "x", "since": "yesterday-ish"}).status_code == 400
    assert client.post("/journal", json={"topic": "note", "content": "  "}).status_code == 400


def test_missing_session_is_404(client: TestClient, tmp_path: Path) -> None:
    response = client.post(
        "/conversations/expand",
        json={"session_path": str(tmp_path / "nope.jsonl"), "message_uuid": "u1"},
    )

    assert response.status_code == 404


def test_busy_maps_to_409(client: TestClient, engine, monkeypatch: pytest.MonkeyPatch) -> None:
    async def busy():
        raise IndexBusyError("memory index build already in progress")

    monkeypatch.setattr(engine, "update_index", busy)

    response = client.post("/index/update", json={})

    assert response.status_code == 409


def test_collaborator_failure_maps_to_503(client: TestClient, engine, monkeypatch: pytest.MonkeyPatch) -> None:
    async def down(*args, **kwargs):
        raise CollaboratorUnavailable("embedding model unavailable")

    monkeypatch.setattr(engine, "search", down)

    response = client.post("/search", json={"query": "x"})

    assert response.status_code == 503
    assert "embedding" in response.json()["error"]


def test_engine_is_created_once_on_app_state(mnemo_root: Path) -> None:
    client = TestClient(http_api.app)
    try:
        client.get("/journal")
        first = http_api.app.state.engine
        client.get("/journal")

        assert isinstance(first, MemoryEngine)
        assert http_api.app.state.engine is first
    finally:
        del http_api.app.state.engine
