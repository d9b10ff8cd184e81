"""Soul State persistence: one JSON file per character.

Layout: ``<root>/soulpack-states/<safe-character-id>.state.json``.

Writes replace the whole file (temp file + ``os.replace``). A missing,
unreadable or foreign state file loads as an empty store.
"""

from __future__ import annotations

import itertools
import json
import time
from pathlib import Path

from loguru import logger

from ..file_utils import safe_id, write_json_atomic
from ..models import MemoryRecord, MemoryStore, utc_now_iso
from ..validation import ValidationResult, parse_state

STATES_DIRNAME = "soulpack-states"

_memory_sequence = itertools.count(1)


def generate_memory_id() -> str:
    """``mem_<epoch-ms>_<seq>``, unique and increasing within a process."""
    return f"mem_{int(time.time() * 1000)}_{next(_memory_sequence)}"


class StateStore:
    """Reads and writes Soul State files under a storage root."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.states_dir = self.root / STATES_DIRNAME

    def path_for(self, character_id: str) -> Path:
        return self.states_dir / f"{safe_id(character_id)}.state.json"

    @staticmethod
    def create_empty(character_id: str) -> MemoryStore:
        return MemoryStore(character_id=character_id)

    def load(self, character_id: str) -> MemoryStore:
        path = self.path_for(character_id)
        if not path.exists():
            return self.create_empty(character_id)

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(
                f"[StateStore] Cannot read state for {character_id!r} at {path}, "
                f"starting empty: {e}"
            )
            return self.create_empty(character_id)

        result = parse_state(raw)
        if not result.ok:
            logger.warning(
                f"[StateStore] Corrupt state for {character_id!r} at {path}, "
                f"starting empty: {result.message}"
            )
            return self.create_empty(character_id)

        store = result.value
        if store.character_id != character_id:
            logger.warning(
                f"[StateStore] State file {path} belongs to "
                f"{store.character_id!r}, not {character_id!r}; starting empty"
            )
            return self.create_empty(character_id)
        return store

    def save(self, store: MemoryStore) -> Path:
        store.last_updated = utc_now_iso()
        path = self.path_for(store.character_id)
        write_json_atomic(path, store.to_json_dict())
        logger.debug(
            f"[StateStore] Saved {len(store.memories)} memories for "
            f"{store.character_id!r}"
        )
        return path

    def delete(self, character_id: str) -> bool:
        path = self.path_for(character_id)
        if not path.exists():
            return False
        path.unlink()
        return True


def add_record(
    store: MemoryStore,
    content: str,
    session_id: str | None = None,
    tags: list[str] | None = None,
) -> MemoryRecord:
    record = MemoryRecord(
        id=generate_memory_id(),
        content=content,
        session_id=session_id,
        tags=list(tags) if tags else None,
    )
    store.memories.append(record)
    store.last_updated = record.timestamp
    return record


def enforce_limit(store: MemoryStore, max_memories: int) -> int:
    """Drop the oldest records beyond ``max_memories``; return how many."""
    excess = len(store.memories) - max_memories
    if excess <= 0:
        return 0
    del store.memories[:excess]
    return excess


def export_state(store: MemoryStore) -> str:
    return json.dumps(store.to_json_dict(), ensure_ascii=False, indent=2)


def import_state(
    raw: str | bytes, expected_character_id: str | None = None
) -> ValidationResult[MemoryStore]:
    """Parse exported state JSON; never raises."""
    return parse_state(raw, expected_character_id)
