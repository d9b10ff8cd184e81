"""
Soul Pack Reader test fixtures.
"""

from __future__ import annotations

import copy

import pytest

from soulpack_reader.config import MemoryEngineConfig, SoulpackConfig
from soulpack_reader.memory import MemoryEngine
from soulpack_reader.models import CharacterDefinition
from soulpack_reader.pack_store import PackStore
from soulpack_reader.session import SoulSession

SAMPLE_PACK = {
    "specVersion": "0.1.0",
    "characterId": "jarvis-v1",
    "displayName": "Jarvis",
    "persona": {
        "systemPrompt": "You are Jarvis, a calm and precise assistant.",
        "description": "Butler AI",
        "contextNotes": ["Prefers concise answers", "Loves astronomy"],
    },
    "voice": {
        "provider": "edge",
        "voiceId": "en-GB-RyanNeural",
        "language": "en-GB",
        "speed": 1.1,
    },
    "appearance": {
        "avatarUrl": "https://cdn.test/jarvis.png",
        "emoji": "🤖",
        "themeColor": "#1e90ff",
        "expressions": {"happy": "https://cdn.test/happy.png"},
    },
    "assets": [
        {
            "type": "avatar-expression",
            "label": "happy",
            "url": "https://cdn.test/asset-happy.png",
        },
        {
            "type": "avatar-expression",
            "label": "sad",
            "url": "https://cdn.test/sad.png",
        },
    ],
    "extensions": {"com.example.mood": {"default": "calm"}},
    "author": "Soul Lab",
}


def make_pack(**overrides) -> dict:
    """Deep copy of the sample pack with top-level keys replaced."""
    data = copy.deepcopy(SAMPLE_PACK)
    data.update(overrides)
    return data


@pytest.fixture
def pack_factory():
    return make_pack


@pytest.fixture
def pack_data() -> dict:
    return make_pack()


@pytest.fixture
def definition(pack_data) -> CharacterDefinition:
    return CharacterDefinition.model_validate(pack_data)


@pytest.fixture
def engine_config(tmp_path) -> MemoryEngineConfig:
    return MemoryEngineConfig(storage_root=tmp_path)


@pytest.fixture
def engine(engine_config) -> MemoryEngine:
    return MemoryEngine("jarvis-v1", engine_config)


@pytest.fixture
def soul_config(tmp_path) -> SoulpackConfig:
    return SoulpackConfig(
        state_dir=tmp_path,
        registry_url="https://registry.test",
        update_check_url="https://releases.test/latest",
    )


@pytest.fixture
def pack_store(tmp_path) -> PackStore:
    return PackStore(tmp_path)


@pytest.fixture
def session(soul_config) -> SoulSession:
    return SoulSession(soul_config)
