"""Literal conversation transcripts, one JSON file per conversation.

Layout: ``<root>/transcripts/<safe-character-id>/<safe-conversation-id>.json``.

``append`` rewrites the file on every call so each exchange is on disk
before ``record()`` returns. Retention keeps the newest ``max_transcripts``
files per character by modification time.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Sequence

from loguru import logger
from pydantic import ValidationError

from ..file_utils import ensure_directory_exists, safe_id, write_json_atomic
from ..models import ConversationMessage, Transcript, utc_now_iso

TRANSCRIPTS_DIRNAME = "transcripts"


class TranscriptLog:
    """Transcript files of one character."""

    def __init__(self, root: str | Path, character_id: str, max_transcripts: int = 50):
        self.character_id = character_id
        self.max_transcripts = max_transcripts
        self.directory = Path(root) / TRANSCRIPTS_DIRNAME / safe_id(character_id)

    def path_for(self, conversation_id: str) -> Path:
        name = safe_id(conversation_id) or f"s_{int(time.time() * 1000)}"
        return self.directory / f"{name}.json"

    def _new_transcript(
        self, conversation_id: str, messages: Sequence[ConversationMessage]
    ) -> Transcript:
        now = utc_now_iso()
        return Transcript(
            character_id=self.character_id,
            conversation_id=conversation_id,
            started_at=messages[0].timestamp if messages else now,
            ended_at=messages[-1].timestamp if messages else now,
            message_count=len(messages),
            messages=list(messages),
        )

    def load(self, conversation_id: str) -> Transcript | None:
        path = self.path_for(conversation_id)
        if not path.exists():
            return None
        try:
            return Transcript.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"[TranscriptLog] Unreadable transcript {path}: {e}")
            return None

    def append(
        self, conversation_id: str, messages: Sequence[ConversationMessage]
    ) -> Path:
        """Add ``messages`` to the conversation's file, creating it if needed."""
        path = self.path_for(conversation_id)
        transcript = self.load(conversation_id) if path.exists() else None
        if transcript is None:
            transcript = self._new_transcript(conversation_id, messages)
        else:
            transcript.messages.extend(messages)

        if messages:
            transcript.ended_at = messages[-1].timestamp
        transcript.message_count = len(transcript.messages)

        write_json_atomic(path, transcript.to_json_dict())
        logger.debug(
            f"[TranscriptLog] {path.name}: {transcript.message_count} messages"
        )
        return path

    def write(
        self, conversation_id: str, messages: Sequence[ConversationMessage]
    ) -> Path:
        """Write a complete transcript, replacing any previous file."""
        path = self.path_for(conversation_id)
        transcript = self._new_transcript(conversation_id, messages)
        write_json_atomic(path, transcript.to_json_dict())
        logger.debug(f"[TranscriptLog] Wrote {path.name} ({len(messages)} messages)")
        return path

    def list_files(self) -> list[Path]:
        """Transcript files, least recently modified first."""
        if not self.directory.is_dir():
            return []
        files = [p for p in self.directory.glob("*.json") if p.is_file()]
        return sorted(files, key=lambda p: p.stat().st_mtime)

    def count(self) -> int:
        if not self.directory.is_dir():
            return 0
        return sum(1 for _ in self.directory.glob("*.json"))

    def enforce_retention(self) -> int:
        """Delete the oldest files beyond ``max_transcripts``; return how many."""
        files = self.list_files()
        removed = 0
        while len(files) > self.max_transcripts:
            oldest = files.pop(0)
            try:
                oldest.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"[TranscriptLog] Could not delete {oldest}: {e}")
        if removed:
            logger.info(
                f"[TranscriptLog] Removed {removed} old transcripts for "
                f"{self.character_id!r}"
            )
        return removed

    def ensure_directory(self) -> Path:
        return ensure_directory_exists(self.directory)
