"""
Soul Session - the active-character context.

One ``SoulSession`` holds everything a host needs for the character that is
currently active: its definition, its overlay and its single
``MemoryEngine``. Hosts (lifecycle hooks, tool calls, HTTP routes) share one
session object instead of module-level globals.

Lifecycle adapters:

- ``build_context()`` - text to prepend to the system prompt
- ``on_exchange()`` - one user/assistant exchange was produced
- ``on_conversation_end()`` - the host closed a conversation
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger

from .config import SoulpackConfig, load_config
from .file_utils import ensure_directory_exists
from .memory import FactExtractor, MemoryEngine, RecordResult
from .models import CharacterDefinition, MemoryRecord, NormalizedView, Overlay
from .normalizer import build_prompt_injection, build_tts_config_override, normalize
from .pack_store import PackStore
from .validation import ValidationResult, parse_pack, validate_overlay

TAG_SESSION_END = "session_end"
NO_ACTIVE_PACK = "No Soul Pack is active. Load a pack first."


class SoulSession:
    """Explicit context for the active Soul Pack and its memory engine."""

    def __init__(
        self,
        config: SoulpackConfig | None = None,
        pack_store: PackStore | None = None,
        extractor: FactExtractor | None = None,
    ):
        self.config = config or load_config()
        self.pack_store = pack_store or PackStore(self.config.state_dir)
        self.extractor = extractor

        self._definition: CharacterDefinition | None = None
        self._overlay: Overlay | None = None
        self._engine: MemoryEngine | None = None

        ensure_directory_exists(self.config.state_dir)

    # ==========================================================================
    # Active character
    # ==========================================================================

    @property
    def definition(self) -> CharacterDefinition | None:
        return self._definition

    @property
    def overlay(self) -> Overlay | None:
        return self._overlay

    @property
    def engine(self) -> MemoryEngine | None:
        return self._engine

    @property
    def active_character_id(self) -> str | None:
        return self._definition.character_id if self._definition else None

    def activate(self, definition: CharacterDefinition) -> MemoryEngine:
        """Make ``definition`` the active character.

        Re-activating the same character keeps its engine (and conversation
        buffer). Switching to another character discards the previous buffer.
        """
        if self._engine and self._engine.character_id == definition.character_id:
            self._definition = definition
            self._overlay = self.pack_store.load_overlay(definition.character_id)
            return self._engine

        if self._engine is not None:
            logger.info(
                f"[SoulSession] Switching from {self._engine.character_id!r} "
                f"to {definition.character_id!r}"
            )

        self._definition = definition
        self._overlay = self.pack_store.load_overlay(definition.character_id)
        self._engine = MemoryEngine(
            definition.character_id,
            self.config.engine_config(),
            extractor=self.extractor,
        )

        features = []
        if definition.voice:
            features.append("voice")
        if definition.appearance and definition.appearance.avatar_url:
            features.append("avatar")
        if definition.appearance and definition.appearance.expressions:
            features.append(f"{len(definition.appearance.expressions)} expressions")
        logger.info(
            f"[SoulSession] Soul Pack active: {definition.display_name!r} "
            f"({definition.character_id})"
            + (f" [{', '.join(features)}]" if features else "")
        )
        return self._engine

    def select(self, character_id: str) -> CharacterDefinition | None:
        """Activate an installed pack by id. ``None`` if it is not installed."""
        definition = self.pack_store.load_pack(character_id)
        if definition is None:
            logger.warning(f"[SoulSession] Pack {character_id!r} is not installed")
            return None
        self.activate(definition)
        return definition

    def deactivate(self) -> None:
        if self._engine is not None:
            logger.info(f"[SoulSession] Deactivated {self._engine.character_id!r}")
        self._definition = None
        self._overlay = None
        self._engine = None

    def auto_load(self, pack_path: str | Path | None = None) -> CharacterDefinition | None:
        """Activate the pack file at ``pack_path`` (or the configured one)."""
        path = pack_path or self.config.pack_path
        if not path:
            return None

        path = Path(path).expanduser().resolve()
        if not path.is_file():
            logger.warning(f"[SoulSession] Auto-load pack not found: {path}")
            return None

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"[SoulSession] Cannot read auto-load pack {path}: {e}")
            return None

        result = parse_pack(raw)
        if not result.ok:
            logger.warning(f"[SoulSession] Invalid auto-load pack {path}: {result.message}")
            return None

        self.activate(result.value)
        return result.value

    # ==========================================================================
    # Runtime view
    # ==========================================================================

    def view(self) -> NormalizedView | None:
        if self._definition is None or self._engine is None:
            return None
        return normalize(self._definition, self._engine.load_state(), self._overlay)

    def build_context(self) -> str | None:
        """Prompt text for the active character, or ``None`` when none is active."""
        view = self.view()
        if view is None:
            return None
        return build_prompt_injection(view)

    def tts_config(self) -> dict[str, Any] | None:
        view = self.view()
        if view is None:
            return None
        return build_tts_config_override(view.voice)

    # ==========================================================================
    # Lifecycle adapters
    # ==========================================================================

    def on_exchange(
        self,
        user_text: str,
        assistant_text: str,
        conversation_id: str | None = None,
    ) -> RecordResult | None:
        if self._engine is None:
            return None
        return self._engine.record(user_text, assistant_text, conversation_id)

    def on_conversation_end(
        self,
        conversation_id: str | None = None,
        message_count: int = 0,
        duration_ms: int | None = None,
    ) -> MemoryRecord | None:
        """Close the conversation and remember that it happened."""
        if self._engine is None:
            return None

        session_id = conversation_id or self._engine.active_conversation
        self._engine.end_conversation()

        content = f"Session completed ({message_count} messages"
        if duration_ms:
            content += f", {int(duration_ms / 1000 + 0.5)}s"
        content += f"). Session ID: {session_id or 'unknown'}."

        return self._engine.add_manual_memory(
            content, tags=[TAG_SESSION_END], session_id=session_id
        )

    # ==========================================================================
    # Tool operations
    # ==========================================================================

    def export_state(self) -> str | None:
        if self._engine is None:
            return None
        return self._engine.export_state()

    def import_state(self, raw: str | bytes) -> ValidationResult:
        if self._engine is None:
            return ValidationResult.failure([NO_ACTIVE_PACK])
        return self._engine.import_state(raw)

    def set_overlay(self, data: Overlay | dict[str, Any]) -> ValidationResult[Overlay]:
        """Validate and persist an overlay for the active character."""
        if self._definition is None:
            return ValidationResult.failure([NO_ACTIVE_PACK])

        if isinstance(data, Overlay):
            data = data.to_json_dict()
        result = validate_overlay(data, expected_character_id=self.active_character_id)
        if not result.ok:
            return result

        self.pack_store.save_overlay(result.value)
        self._overlay = result.value
        return result

    def clear_overlay(self) -> bool:
        if self._definition is None:
            return False
        self._overlay = None
        return self.pack_store.delete_overlay(self._definition.character_id)
