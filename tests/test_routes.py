"""HTTP route tests using FastAPI's TestClient."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from soulpack_reader import __version__, routes
from soulpack_reader.models import CharacterDefinition
from soulpack_reader.registry import InstallResult, UpdateInfo
from soulpack_reader.routes import ROUTE_PREFIX, create_app
from soulpack_reader.session import NO_ACTIVE_PACK


def url(path: str) -> str:
    return f"{ROUTE_PREFIX}{path}"


@pytest.fixture
def client(session) -> TestClient:
    return TestClient(create_app(session))


@pytest.fixture
def active_client(session, pack_data) -> TestClient:
    session.pack_store.import_pack(pack_data)
    session.select("jarvis-v1")
    return TestClient(create_app(session))


# ---------------------------------------------------------------------------
# Packs
# ---------------------------------------------------------------------------


def test_ping_without_pack(client):
    response = client.get(url("/ping"))
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "plugin": "soulpack-reader",
        "version": __version__,
        "activePack": None,
    }


def test_ping_with_pack(active_client):
    body = active_client.get(url("/ping")).json()
    assert body["activePack"] == {"characterId": "jarvis-v1", "name": "Jarvis"}


def test_import_activates(client, session, pack_data):
    response = client.post(url("/import"), json=pack_data)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["characterId"] == "jarvis-v1"
    assert body["activated"] is True
    assert body["message"] == 'Soul Pack "Jarvis" imported successfully and activated.'
    assert session.active_character_id == "jarvis-v1"


def test_import_without_activation_keeps_current(active_client, session, pack_factory):
    data = pack_factory(characterId="friday", displayName="Friday", __activate=False)
    body = active_client.post(url("/import"), json=data).json()

    assert body["activated"] is False
    assert body["message"] == 'Soul Pack "Friday" imported successfully.'
    assert session.active_character_id == "jarvis-v1"
    assert session.pack_store.has_pack("friday")


def test_import_invalid_pack(client):
    response = client.post(url("/import"), json={"specVersion": "0.1.0"})
    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid Soul Pack:")


def test_import_bad_json(client):
    response = client.post(
        url("/import"), content=b"{nope", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert "not valid JSON" in response.json()["error"]


def test_import_non_object(client):
    response = client.post(url("/import"), json=[1, 2])
    assert response.status_code == 400


def test_list_marks_active(active_client, session, pack_factory):
    session.pack_store.import_pack(pack_factory(characterId="alpha", displayName="Alpha"))
    body = active_client.get(url("/list")).json()

    assert body["activeCharacterId"] == "jarvis-v1"
    assert [(p["characterId"], p["active"]) for p in body["packs"]] == [
        ("alpha", False),
        ("jarvis-v1", True),
    ]
    assert body["packs"][1]["displayName"] == "Jarvis"


def test_activate(client, session, pack_data):
    session.pack_store.import_pack(pack_data)
    response = client.post(url("/activate"), json={"characterId": "jarvis-v1"})
    assert response.status_code == 200
    assert response.json()["message"] == 'Soul Pack "Jarvis" activated.'
    assert session.active_character_id == "jarvis-v1"


def test_activate_accepts_pack_id(client, session, pack_data):
    session.pack_store.import_pack(pack_data)
    assert client.post(url("/activate"), json={"packId": "jarvis-v1"}).status_code == 200


def test_activate_errors(client):
    assert client.post(url("/activate"), json={}).status_code == 400
    response = client.post(url("/activate"), json={"characterId": "ghost"})
    assert response.status_code == 404
    assert response.json()["error"] == 'Pack "ghost" not found. Install it first.'


def test_remove(active_client, session, pack_factory):
    session.pack_store.import_pack(pack_factory(characterId="alpha", displayName="Alpha"))
    response = active_client.post(url("/remove"), json={"characterId": "alpha"})
    assert response.status_code == 200
    assert not session.pack_store.has_pack("alpha")


def test_remove_errors(active_client):
    assert active_client.post(url("/remove"), json={}).status_code == 400
    assert active_client.post(url("/remove"), json={"characterId": "jarvis-v1"}).status_code == 409
    assert active_client.post(url("/remove"), json={"characterId": "ghost"}).status_code == 404


# ---------------------------------------------------------------------------
# Install
# ---------------------------------------------------------------------------


def test_install_from_url(client, session, definition, monkeypatch):
    calls = []

    async def fake_install(store, source, timeout=None, **kwargs):
        calls.append(source)
        return InstallResult(ok=True, pack=definition, file_path="/tmp/x.soulpack.json")

    monkeypatch.setattr(routes, "install_from_url", fake_install)
    response = client.post(url("/install"), json={"url": "https://cdn.test/jarvis.json"})

    assert response.status_code == 200
    assert calls == ["https://cdn.test/jarvis.json"]
    assert response.json()["activated"] is True
    assert session.active_character_id == "jarvis-v1"


def test_install_from_registry(active_client, session, pack_factory, monkeypatch):
    friday = CharacterDefinition.model_validate(
        pack_factory(characterId="friday", displayName="Friday")
    )
    calls = []

    async def fake_install(store, registry_url, character_id, timeout=None, **kwargs):
        calls.append((registry_url, character_id))
        return InstallResult(ok=True, pack=friday, file_path="/tmp/f.soulpack.json")

    monkeypatch.setattr(routes, "install_from_registry", fake_install)
    body = active_client.post(url("/install"), json={"characterId": "friday"}).json()

    assert calls == [("https://registry.test", "friday")]
    assert body["activated"] is False
    assert session.active_character_id == "jarvis-v1"


def test_install_failure(client, monkeypatch):
    async def fake_install(store, source, timeout=None, **kwargs):
        return InstallResult(ok=False, error="Failed to fetch pack: 404 Not Found")

    monkeypatch.setattr(routes, "install_from_url", fake_install)
    response = client.post(url("/install"), json={"url": "https://cdn.test/x"})
    assert response.status_code == 400
    assert response.json() == {"error": "Failed to fetch pack: 404 Not Found"}


def test_install_needs_source(client):
    assert client.post(url("/install"), json={}).status_code == 400


def test_install_without_registry(session, soul_config):
    session.config = soul_config.model_copy(update={"registry_url": None})
    client = TestClient(create_app(session))
    response = client.post(url("/install"), json={"characterId": "friday"})
    assert response.status_code == 503


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


def test_memory_endpoints_need_active_pack(client):
    for path in ("/memory/status", "/memory/search", "/memory/export"):
        response = client.get(url(path))
        assert response.status_code == 503
        assert response.json() == {"error": NO_ACTIVE_PACK}
    assert client.post(url("/record"), json={"userInput": "a", "aiOutput": "b"}).status_code == 503
    assert client.post(url("/memory/import"), content=b"{}").status_code == 503


def test_record_single_exchange(active_client, session):
    response = active_client.post(
        url("/record"),
        json={"userInput": "I'm a pilot", "aiOutput": "Nice!", "conversationId": "c1"},
    )
    body = response.json()

    assert response.status_code == 200
    assert body["success"] is True
    assert body["memoriesAdded"] == 2
    assert body["totalMemories"] == 2
    assert body["message"] == "Recorded 1 exchange, 2 memories extracted."
    assert session.engine.active_conversation == "c1"


def test_record_accepts_session_id(active_client, session):
    active_client.post(
        url("/record"), json={"userInput": "hi", "aiOutput": "hello", "sessionId": "s1"}
    )
    assert session.engine.active_conversation == "s1"


def test_record_batch(active_client, session):
    messages = [
        {"role": "user", "content": "I like hiking"},
        {"role": "assistant", "content": "Great."},
        {"role": "system", "content": "ignored"},
        "not a message",
    ]
    body = active_client.post(url("/record"), json={"messages": messages}).json()

    assert body["success"] is True
    assert body["message"].startswith("Recorded 2 messages,")
    assert session.engine.get_memories_by_tag("session_summary")


def test_record_rejects_bad_payloads(active_client):
    assert active_client.post(url("/record"), json={"messages": []}).status_code == 400
    assert (
        active_client.post(url("/record"), json={"messages": [{"role": "x"}]}).status_code
        == 400
    )
    assert active_client.post(url("/record"), json={"userInput": "only"}).status_code == 400
    assert active_client.post(url("/record"), content=b"").status_code == 400


def test_memory_status(active_client):
    active_client.post(url("/record"), json={"userInput": "hello", "aiOutput": "hi"})
    body = active_client.get(url("/memory/status")).json()
    assert body["characterId"] == "jarvis-v1"
    assert body["totalMemories"] == 1
    assert body["maxMemories"] == 200


def test_memory_search(active_client, session):
    engine = session.engine
    engine.add_manual_memory("likes astronomy", tags=["topic"])
    engine.add_manual_memory("likes cooking", tags=["topic"])
    engine.add_manual_memory("pinned", tags=["pin"])

    by_text = active_client.get(url("/memory/search"), params={"q": "ASTRO"}).json()
    assert [m["content"] for m in by_text["memories"]] == ["likes astronomy"]

    by_tag = active_client.get(url("/memory/search"), params={"tag": "topic"}).json()
    assert [m["content"] for m in by_tag["memories"]] == ["likes cooking", "likes astronomy"]

    recent = active_client.get(url("/memory/search"), params={"limit": 1}).json()
    assert [m["content"] for m in recent["memories"]] == ["pinned"]


def test_memory_export_import(active_client, session):
    active_client.post(url("/record"), json={"userInput": "I'm a pilot", "aiOutput": "Nice!"})
    exported = active_client.get(url("/memory/export"))
    assert exported.json()["characterId"] == "jarvis-v1"

    session.engine.clear_memories()
    response = active_client.post(url("/memory/import"), content=exported.content)
    assert response.status_code == 200
    assert response.json() == {"success": True, "characterId": "jarvis-v1", "totalMemories": 2}


def test_memory_import_rejects_foreign_state(active_client, session):
    foreign = (
        '{"stateVersion": "0.1.0", "characterId": "friday", "memories": []}'
    )
    response = active_client.post(url("/memory/import"), content=foreign.encode())
    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid Soul State:")


# ---------------------------------------------------------------------------
# Version check
# ---------------------------------------------------------------------------


def test_version_check_update_available(client, monkeypatch):
    async def fake_check(release_url, current_version, **kwargs):
        assert release_url == "https://releases.test/latest"
        return UpdateInfo(
            current_version=current_version,
            latest_version="9.0.0",
            has_update=True,
            download_url="https://releases.test/v9",
        )

    monkeypatch.setattr(routes, "check_for_update", fake_check)
    body = client.get(url("/version-check")).json()

    assert body["hasUpdate"] is True
    assert body["latestVersion"] == "9.0.0"
    assert body["message"] == "Update available: v9.0.0. Download: https://releases.test/v9"


def test_version_check_failure(client, monkeypatch):
    async def fake_check(release_url, current_version, **kwargs):
        return None

    monkeypatch.setattr(routes, "check_for_update", fake_check)
    body = client.get(url("/version-check")).json()
    assert body == {
        "currentVersion": __version__,
        "status": "check_failed",
        "message": "Could not reach the release server.",
    }


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def test_create_app_exposes_session(session):
    app = create_app(session)
    assert app.state.soul_session is session


def test_cors_headers(client):
    response = client.get(url("/ping"), headers={"Origin": "https://host.test"})
    assert response.headers["access-control-allow-origin"] == "*"
