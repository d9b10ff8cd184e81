"""Memory Engine - the single authority over one character's soul memory.

Any host can feed conversations in through ``record()`` (one exchange) or
``record_batch()`` (a whole conversation). Each call persists the literal
transcript, extracts memory records, enforces the memory cap and saves the
state before returning, so nothing depends on a clean shutdown.

The engine keeps no cached copy of the state: every operation re-reads the
state file. Calls against one character must be serialized by the caller.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Sequence

from loguru import logger

from ..config import MemoryEngineConfig
from ..file_utils import ensure_directory_exists
from ..models import (
    ConversationMessage,
    MemoryRecord,
    MemoryStore,
    SoulModel,
    utc_now_iso,
)
from ..validation import ValidationResult
from .fact_extractor import FactExtractor
from .state_store import (
    StateStore,
    add_record,
    enforce_limit,
    export_state,
    import_state,
)
from .transcript_log import TranscriptLog

DEFAULT_QUERY_LIMIT = 10
MAX_QUERY_LIMIT = 50


class RecordResult(SoulModel):
    memories_added: int
    total_memories: int
    transcript_path: str | None = None


class ConversationEnd(SoulModel):
    conversation_id: str | None = None
    transcript_path: str | None = None
    transcripts_removed: int = 0


class EngineStatus(SoulModel):
    character_id: str
    total_memories: int
    max_memories: int
    active_conversation: str | None = None
    buffer_size: int
    transcript_count: int


def _clamp_limit(limit: int | None, default: int = DEFAULT_QUERY_LIMIT) -> int:
    if limit is None:
        limit = default
    return max(0, min(limit, MAX_QUERY_LIMIT))


def _most_recent(records: list[MemoryRecord], limit: int) -> list[MemoryRecord]:
    if limit <= 0:
        return []
    return list(reversed(records[-limit:]))


class MemoryEngine:
    """Owns the memory store and transcript log of one character.

    Example:
        >>> engine = MemoryEngine("jarvis-v1", MemoryEngineConfig(storage_root=root))
        >>> engine.record("我叫小明", "你好小明！")
        RecordResult(memories_added=2, total_memories=2, ...)
    """

    def __init__(
        self,
        character_id: str,
        config: MemoryEngineConfig,
        extractor: FactExtractor | None = None,
    ):
        """Initialize the engine and create its storage directories.

        Args:
            character_id: Character whose memory this engine owns
            config: Storage root and size limits
            extractor: Fact extractor (uses the default rule set if not provided)
        """
        self.character_id = character_id
        self.config = config
        self.extractor = extractor or FactExtractor()
        self.states = StateStore(config.storage_root)
        self.transcripts = TranscriptLog(
            config.storage_root, character_id, config.max_transcripts
        )

        self._buffer: list[ConversationMessage] = []
        self._conversation_id: str | None = None
        self._conversation_started_at: str | None = None

        ensure_directory_exists(self.states.states_dir)
        if config.save_transcripts:
            self.transcripts.ensure_directory()

        logger.info(
            f"[MemoryEngine] Initialized for {character_id!r} "
            f"(max_memories={config.max_memories}, "
            f"max_transcripts={config.max_transcripts}, "
            f"storage_root={config.storage_root})"
        )

    @property
    def max_memories(self) -> int:
        return self.config.max_memories

    @property
    def active_conversation(self) -> str | None:
        return self._conversation_id

    @property
    def buffer(self) -> list[ConversationMessage]:
        return list(self._buffer)

    @property
    def storage_root(self) -> Path:
        return self.config.storage_root

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(
        self,
        user_text: str,
        assistant_text: str,
        conversation_id: str | None = None,
    ) -> RecordResult:
        """Record one exchange (user input + assistant reply).

        Args:
            user_text: What the user said
            assistant_text: What the assistant replied
            conversation_id: Conversation the exchange belongs to. Defaults to
                the active conversation, or a generated id when none is active.

        Returns:
            RecordResult with the number of records added and the new total
        """
        if conversation_id and conversation_id != self._conversation_id:
            self._switch_conversation(conversation_id)
        elif self._conversation_id is None:
            self.start_conversation(f"session_{int(time.time() * 1000)}")
        sid = self._conversation_id

        now = utc_now_iso()
        pair = [
            ConversationMessage(role="user", content=user_text, timestamp=now),
            ConversationMessage(role="assistant", content=assistant_text, timestamp=now),
        ]
        self._buffer.extend(pair)

        transcript_path = None
        if self.config.save_transcripts:
            is_new = not self.transcripts.path_for(sid).exists()
            try:
                transcript_path = str(self.transcripts.append(sid, pair))
            except OSError as e:
                logger.warning(
                    f"[MemoryEngine] Transcript write failed for {sid!r}: {e}"
                )
            if is_new:
                self.transcripts.enforce_retention()

        store = self.states.load(self.character_id)
        candidates = self.extractor.from_exchange(user_text, assistant_text)
        for candidate in candidates:
            add_record(store, candidate.content, sid, list(candidate.tags))
        evicted = enforce_limit(store, self.max_memories)
        self.states.save(store)

        logger.debug(
            f"[MemoryEngine] record: +{len(candidates)} memories, "
            f"evicted={evicted}, total={len(store.memories)}"
        )
        return RecordResult(
            memories_added=len(candidates),
            total_memories=len(store.memories),
            transcript_path=transcript_path,
        )

    def record_batch(
        self,
        messages: Sequence[ConversationMessage],
        conversation_id: str | None = None,
    ) -> RecordResult:
        """Record a whole conversation at once (e.g. an import).

        Derives one summary record plus fact, preference and key-exchange
        records, then writes one full transcript file. A conversation that
        already has a transcript gets the batch appended to it instead.
        """
        messages = list(messages)
        if not messages:
            return RecordResult(
                memories_added=0, total_memories=self.get_memory_count()
            )

        sid = conversation_id or f"batch_{int(time.time() * 1000)}"
        if sid != self._conversation_id:
            self._switch_conversation(sid)
        self._buffer.extend(messages)

        store = self.states.load(self.character_id)
        candidates = self.extractor.from_conversation(messages)
        for candidate in candidates:
            add_record(store, candidate.content, sid, list(candidate.tags))
        enforce_limit(store, self.max_memories)
        self.states.save(store)

        transcript_path = None
        if self.config.save_transcripts:
            try:
                if self.transcripts.path_for(sid).exists():
                    path = self.transcripts.append(sid, messages)
                else:
                    path = self.transcripts.write(sid, messages)
                transcript_path = str(path)
            except OSError as e:
                logger.warning(
                    f"[MemoryEngine] Transcript write failed for {sid!r}: {e}"
                )
            self.transcripts.enforce_retention()

        logger.info(
            f"[MemoryEngine] record_batch: {len(messages)} messages, "
            f"+{len(candidates)} memories, total={len(store.memories)}"
        )
        return RecordResult(
            memories_added=len(candidates),
            total_memories=len(store.memories),
            transcript_path=transcript_path,
        )

    # ------------------------------------------------------------------
    # Conversation lifecycle
    # ------------------------------------------------------------------

    def start_conversation(self, conversation_id: str) -> None:
        self._conversation_id = conversation_id
        self._conversation_started_at = utc_now_iso()
        self._buffer = []
        logger.debug(f"[MemoryEngine] Conversation started: {conversation_id}")

    def _switch_conversation(self, conversation_id: str) -> None:
        """Close the active conversation (if any) and start ``conversation_id``."""
        if self._conversation_id is not None:
            self.end_conversation()
        self.start_conversation(conversation_id)

    def end_conversation(self) -> ConversationEnd:
        """Close the active conversation.

        Transcripts were already written by ``record()``; this only clears the
        buffer and applies transcript retention.
        """
        conversation_id = self._conversation_id
        transcript_path = None
        removed = 0

        if self.config.save_transcripts:
            if conversation_id and self._buffer:
                path = self.transcripts.path_for(conversation_id)
                transcript_path = str(path) if path.exists() else None
            removed = self.transcripts.enforce_retention()

        self._buffer = []
        self._conversation_id = None
        self._conversation_started_at = None

        logger.debug(f"[MemoryEngine] Conversation ended: {conversation_id}")
        return ConversationEnd(
            conversation_id=conversation_id,
            transcript_path=transcript_path,
            transcripts_removed=removed,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def load_state(self) -> MemoryStore:
        return self.states.load(self.character_id)

    def get_memories(self, limit: int | None = None) -> list[MemoryRecord]:
        """All memories (or the latest ``limit``), most recent first."""
        memories = self.load_state().memories
        if limit is None:
            return list(reversed(memories))
        return _most_recent(memories, _clamp_limit(limit))

    def get_memory_count(self) -> int:
        return len(self.load_state().memories)

    def search_memories(
        self, query: str, limit: int = DEFAULT_QUERY_LIMIT
    ) -> list[MemoryRecord]:
        """Case-insensitive substring search over memory content."""
        needle = query.casefold()
        matches = [
            m for m in self.load_state().memories if needle in m.content.casefold()
        ]
        return _most_recent(matches, _clamp_limit(limit))

    def get_memories_by_tag(
        self, tag: str, limit: int = DEFAULT_QUERY_LIMIT
    ) -> list[MemoryRecord]:
        matches = [m for m in self.load_state().memories if m.has_tag(tag)]
        return _most_recent(matches, _clamp_limit(limit))

    # ------------------------------------------------------------------
    # Direct mutation
    # ------------------------------------------------------------------

    def add_manual_memory(
        self,
        content: str,
        tags: list[str] | None = None,
        session_id: str | None = None,
    ) -> MemoryRecord:
        """Store ``content`` verbatim, bypassing extraction.

        The record is attributed to ``session_id`` or, if omitted, to the
        active conversation.
        """
        store = self.load_state()
        record = add_record(store, content, session_id or self._conversation_id, tags)
        enforce_limit(store, self.max_memories)
        self.states.save(store)
        logger.info(f"[MemoryEngine] Manual memory added: {record.id}")
        return record

    def delete_memory(self, memory_id: str) -> bool:
        """Delete one record. Returns ``False`` (and writes nothing) if absent."""
        store = self.load_state()
        for index, record in enumerate(store.memories):
            if record.id == memory_id:
                del store.memories[index]
                self.states.save(store)
                logger.info(f"[MemoryEngine] Memory deleted: {memory_id}")
                return True
        return False

    def clear_memories(self) -> None:
        store = self.load_state()
        count = len(store.memories)
        store.memories = []
        self.states.save(store)
        logger.info(f"[MemoryEngine] Cleared {count} memories for {self.character_id!r}")

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_state(self) -> str:
        return export_state(self.load_state())

    def import_state(self, raw: str | bytes) -> ValidationResult[MemoryStore]:
        """Replace the stored state with exported JSON of the same character.

        A malformed state or one that belongs to another character is rejected
        and the existing state file is left untouched.
        """
        result = import_state(raw, expected_character_id=self.character_id)
        if not result.ok:
            logger.warning(f"[MemoryEngine] State import rejected: {result.message}")
            return result

        store = result.value
        enforce_limit(store, self.max_memories)
        self.states.save(store)
        logger.info(
            f"[MemoryEngine] Imported {len(store.memories)} memories for "
            f"{self.character_id!r}"
        )
        return result

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> EngineStatus:
        return EngineStatus(
            character_id=self.character_id,
            total_memories=self.get_memory_count(),
            max_memories=self.max_memories,
            active_conversation=self._conversation_id,
            buffer_size=len(self._buffer),
            transcript_count=self.transcripts.count(),
        )
