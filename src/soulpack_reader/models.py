"""Soul Pack data models.

Three layers describe a character:

* **Pack** (``CharacterDefinition``) - static, distributable persona and assets.
* **State** (``MemoryStore``) - private, portable soul memories.
* **Overlay** (``Overlay``) - user edits applied on top of a pack in the host.

All models read and write camelCase JSON. Open bags (``extensions``, ``extra``,
``meta``, ``custom``) and unknown keys are kept as-is so a round trip never
drops fields written by a newer producer.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SPEC_VERSION = "0.1.0"
STATE_VERSION = "0.1.0"
OVERLAY_VERSION = "0.1.0"

RECOGNIZED_ASSET_TYPES = (
    "avatar",
    "avatar-expression",
    "voice",
    "background",
    "model3d",
    "live2d",
    "bgm",
    "emoji",
)
RECOGNIZED_VOICE_PROVIDERS = ("openai", "elevenlabs", "edge")


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, ``Z`` suffixed."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class SoulModel(BaseModel):
    """Base for all persisted models: camelCase aliases, unknown keys preserved."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Pack (static layer)
# ---------------------------------------------------------------------------


class Persona(SoulModel):
    system_prompt: str
    name: str | None = None
    description: str | None = None
    context_notes: list[str] = Field(default_factory=list)


class Voice(SoulModel):
    """TTS preferences. Hosts consume what they support and ignore the rest."""

    provider: str | None = None
    voice_id: str | None = None
    model_id: str | None = None
    language: str | None = None
    speed: float | None = Field(default=None, ge=0.5, le=2.0)
    stability: float | None = Field(default=None, ge=0.0, le=1.0)
    extra: dict[str, Any] = Field(default_factory=dict)


class Appearance(SoulModel):
    avatar_url: str | None = None
    emoji: str | None = None
    theme_color: str | None = None
    expressions: dict[str, str] = Field(default_factory=dict)
    extra: dict[str, Any] = Field(default_factory=dict)


class Asset(SoulModel):
    type: str
    url: str
    label: str | None = None
    mime_type: str | None = None
    required: bool | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class CharacterDefinition(SoulModel):
    """A Soul Pack: the immutable description of a character."""

    spec_version: str
    character_id: str = Field(
        validation_alias=AliasChoices("characterId", "packId", "character_id"),
        serialization_alias="characterId",
    )
    display_name: str = Field(
        validation_alias=AliasChoices("displayName", "name", "display_name"),
        serialization_alias="displayName",
    )
    persona: Persona
    voice: Voice | None = None
    appearance: Appearance | None = None
    assets: list[Asset] = Field(default_factory=list)
    extensions: dict[str, Any] = Field(default_factory=dict)
    author: str | None = None
    license: str | None = None
    created_at: str | None = None


# ---------------------------------------------------------------------------
# State (soul memory layer)
# ---------------------------------------------------------------------------


class MemoryRecord(SoulModel):
    id: str
    content: str
    timestamp: str = Field(default_factory=utc_now_iso)
    session_id: str | None = None
    tags: list[str] | None = None

    def has_tag(self, tag: str) -> bool:
        return bool(self.tags) and tag in self.tags


class MemoryStore(SoulModel):
    """All memories of one character, oldest first."""

    state_version: str = STATE_VERSION
    character_id: str = Field(
        validation_alias=AliasChoices("characterId", "packId", "character_id"),
        serialization_alias="characterId",
    )
    memories: list[MemoryRecord] = Field(default_factory=list)
    last_updated: str = Field(default_factory=utc_now_iso)


# ---------------------------------------------------------------------------
# Overlay (user edit layer)
# ---------------------------------------------------------------------------


class Overlay(SoulModel):
    overlay_version: str = OVERLAY_VERSION
    character_id: str = Field(
        validation_alias=AliasChoices("characterId", "packId", "character_id"),
        serialization_alias="characterId",
    )
    display_name: str | None = None
    avatar_url: str | None = None
    voice_id: str | None = None
    theme: str | None = None
    preferred_language: str | None = None
    custom: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Conversation / transcript
# ---------------------------------------------------------------------------


class ConversationMessage(SoulModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: str = Field(default_factory=utc_now_iso)


class Transcript(SoulModel):
    character_id: str = Field(
        validation_alias=AliasChoices("characterId", "packId", "character_id"),
        serialization_alias="characterId",
    )
    conversation_id: str = Field(
        validation_alias=AliasChoices(
            "conversationId", "sessionId", "conversation_id"
        ),
        serialization_alias="conversationId",
    )
    started_at: str
    ended_at: str
    message_count: int = 0
    messages: list[ConversationMessage] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Normalized runtime view
# ---------------------------------------------------------------------------


class NormalizedView(BaseModel):
    """Definition + overlay + memory merged into one read-only view."""

    model_config = ConfigDict(frozen=True)

    character_id: str
    name: str
    system_prompt: str
    context_notes: list[str] = Field(default_factory=list)
    avatar_url: str | None = None
    emoji: str | None = None
    theme_color: str | None = None
    expressions: dict[str, str] = Field(default_factory=dict)
    voice: Voice | None = None
    assets: list[Asset] = Field(default_factory=list)
    extensions: dict[str, Any] = Field(default_factory=dict)
    preferred_language: str | None = None
    custom: dict[str, Any] = Field(default_factory=dict)
    memories: list[MemoryRecord] = Field(default_factory=list)
