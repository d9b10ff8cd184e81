"""Tests for SoulSession: activation, lifecycle adapters and overlays."""

from __future__ import annotations

import json

from soulpack_reader.models import CharacterDefinition, Overlay
from soulpack_reader.session import NO_ACTIVE_PACK, TAG_SESSION_END, SoulSession


# ---------------------------------------------------------------------------
# Nothing active
# ---------------------------------------------------------------------------


def test_inactive_session_is_inert(session):
    assert session.active_character_id is None
    assert session.view() is None
    assert session.build_context() is None
    assert session.tts_config() is None
    assert session.on_exchange("hi", "hello") is None
    assert session.on_conversation_end() is None
    assert session.export_state() is None


def test_inactive_import_and_overlay_fail(session):
    result = session.import_state("{}")
    assert not result.ok
    assert result.errors == [NO_ACTIVE_PACK]
    assert session.set_overlay({"characterId": "jarvis-v1"}).errors == [NO_ACTIVE_PACK]
    assert session.clear_overlay() is False


# ---------------------------------------------------------------------------
# Activation
# ---------------------------------------------------------------------------


def test_activate_creates_engine(session, definition):
    engine = session.activate(definition)
    assert session.engine is engine
    assert engine.character_id == "jarvis-v1"
    assert session.active_character_id == "jarvis-v1"


def test_reactivating_same_character_keeps_buffer(session, definition):
    engine = session.activate(definition)
    session.on_exchange("hello", "hi", conversation_id="c1")

    assert session.activate(definition) is engine
    assert len(engine.buffer) == 2


def test_switching_character_replaces_engine(session, definition, pack_factory):
    first = session.activate(definition)
    other = CharacterDefinition.model_validate(
        pack_factory(characterId="friday", displayName="Friday")
    )
    second = session.activate(other)

    assert second is not first
    assert second.character_id == "friday"
    assert session.build_context().startswith("[Soul Pack: Friday]")


def test_select_installed_pack(session, pack_data):
    session.pack_store.import_pack(pack_data)
    selected = session.select("jarvis-v1")
    assert selected.display_name == "Jarvis"
    assert session.active_character_id == "jarvis-v1"


def test_select_unknown_pack(session):
    assert session.select("nobody") is None
    assert session.active_character_id is None


def test_deactivate(session, definition):
    session.activate(definition)
    session.deactivate()
    assert session.engine is None
    assert session.build_context() is None


def test_auto_load_from_file(session, pack_data, tmp_path):
    path = tmp_path / "jarvis.soulpack.json"
    path.write_text(json.dumps(pack_data), encoding="utf-8")

    loaded = session.auto_load(path)
    assert loaded.character_id == "jarvis-v1"
    assert session.active_character_id == "jarvis-v1"


def test_auto_load_uses_configured_path(soul_config, pack_data, tmp_path):
    path = tmp_path / "configured.json"
    path.write_text(json.dumps(pack_data), encoding="utf-8")
    session = SoulSession(soul_config.model_copy(update={"pack_path": path}))

    assert session.auto_load() is not None
    assert session.active_character_id == "jarvis-v1"


def test_auto_load_missing_or_invalid(session, tmp_path):
    assert session.auto_load() is None
    assert session.auto_load(tmp_path / "missing.json") is None

    bad = tmp_path / "bad.json"
    bad.write_text('{"specVersion": "0.1.0"}', encoding="utf-8")
    assert session.auto_load(bad) is None
    assert session.active_character_id is None


# ---------------------------------------------------------------------------
# Context and lifecycle
# ---------------------------------------------------------------------------


def test_build_context_includes_memories(session, definition):
    session.activate(definition)
    session.on_exchange("I'm a pilot", "Nice!")

    context = session.build_context()
    assert context.startswith("[Soul Pack: Jarvis]")
    assert "--- Soul Memories (from previous sessions) ---" in context
    assert "User shared: I'm a pilot" in context


def test_tts_config_for_active_pack(session, definition):
    session.activate(definition)
    assert session.tts_config() == {
        "provider": "edge",
        "edge": {
            "enabled": True,
            "voice": "en-GB-RyanNeural",
            "lang": "en-GB",
            "rate": "+10%",
        },
    }


def test_on_conversation_end_records_marker(session, definition):
    session.activate(definition)
    session.on_exchange("hello", "hi", conversation_id="c1")

    marker = session.on_conversation_end(message_count=2, duration_ms=65_000)

    assert marker.content == "Session completed (2 messages, 65s). Session ID: c1."
    assert marker.tags == [TAG_SESSION_END]
    assert marker.session_id == "c1"
    assert session.engine.active_conversation is None
    assert session.engine.buffer == []


def test_on_conversation_end_without_duration(session, definition):
    session.activate(definition)
    marker = session.on_conversation_end(conversation_id="x")
    assert marker.content == "Session completed (0 messages). Session ID: x."


def test_memories_survive_new_session(soul_config, definition):
    first = SoulSession(soul_config)
    first.activate(definition)
    first.on_exchange("I'm a pilot", "Nice!")

    second = SoulSession(soul_config)
    second.activate(definition)
    assert second.engine.get_memory_count() == 2


def test_export_import_through_session(session, definition):
    session.activate(definition)
    session.on_exchange("I'm a pilot", "Nice!")
    exported = session.export_state()

    session.engine.clear_memories()
    assert session.import_state(exported).ok
    assert session.engine.get_memory_count() == 2


# ---------------------------------------------------------------------------
# Overlays
# ---------------------------------------------------------------------------


def test_set_overlay_applies_and_persists(session, definition):
    session.activate(definition)
    result = session.set_overlay(
        Overlay(character_id="jarvis-v1", display_name="JJ", voice_id="en-US-GuyNeural")
    )

    assert result.ok
    assert session.build_context().startswith("[Soul Pack: JJ]")
    assert session.tts_config()["edge"]["voice"] == "en-US-GuyNeural"
    assert session.pack_store.load_overlay("jarvis-v1").display_name == "JJ"


def test_overlay_loaded_on_activation(session, definition):
    session.pack_store.save_overlay(Overlay(character_id="jarvis-v1", display_name="JJ"))
    session.activate(definition)
    assert session.view().name == "JJ"


def test_set_overlay_rejects_other_character(session, definition):
    session.activate(definition)
    result = session.set_overlay({"overlayVersion": "0.1.0", "characterId": "friday"})
    assert not result.ok
    assert "mismatch" in result.message
    assert session.overlay is None


def test_set_overlay_requires_version(session, definition):
    session.activate(definition)
    result = session.set_overlay({"characterId": "jarvis-v1", "displayName": "JJ"})
    assert not result.ok
    assert "overlayVersion" in result.message


def test_clear_overlay(session, definition):
    session.activate(definition)
    session.set_overlay(Overlay(character_id="jarvis-v1", display_name="JJ"))

    assert session.clear_overlay() is True
    assert session.view().name == "Jarvis"
    assert session.pack_store.load_overlay("jarvis-v1") is None


def test_conversation_duration_rounds_half_up(session, definition):
    session.activate(definition)
    marker = session.on_conversation_end(conversation_id="x", duration_ms=2_500)
    assert marker.content == "Session completed (0 messages, 3s). Session ID: x."
