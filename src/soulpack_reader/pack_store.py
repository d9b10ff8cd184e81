"""
Local Soul Pack store.

Installed packs and their user overlays live under the storage root:

- ``packs/<safe-id>.soulpack.json``
- ``overlays/<safe-id>.overlay.json``
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger

from .file_utils import ensure_directory_exists, safe_id, write_json_atomic
from .models import CharacterDefinition, Overlay, SoulModel
from .validation import parse_overlay, parse_pack, validate_pack

PACKS_DIRNAME = "packs"
OVERLAYS_DIRNAME = "overlays"
PACK_SUFFIX = ".soulpack.json"
OVERLAY_SUFFIX = ".overlay.json"


class PackSummary(SoulModel):
    """One installed pack as shown in listings."""

    character_id: str
    display_name: str
    author: str | None = None
    description: str | None = None
    has_voice: bool = False
    has_appearance: bool = False
    file_path: str


class PackImportResult(SoulModel):
    ok: bool
    pack: CharacterDefinition | None = None
    file_path: str | None = None
    errors: list[str] = []

    @property
    def error(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


class PackStore:
    """Installed packs and overlays under one storage root."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.packs_dir = self.root / PACKS_DIRNAME
        self.overlays_dir = self.root / OVERLAYS_DIRNAME

    def pack_path(self, character_id: str) -> Path:
        return self.packs_dir / f"{safe_id(character_id)}{PACK_SUFFIX}"

    def overlay_path(self, character_id: str) -> Path:
        return self.overlays_dir / f"{safe_id(character_id)}{OVERLAY_SUFFIX}"

    # ------------------------------------------------------------------
    # Packs
    # ------------------------------------------------------------------

    def list_packs(self) -> list[PackSummary]:
        """All readable installed packs, sorted by file name. Corrupt files are skipped."""
        ensure_directory_exists(self.packs_dir)
        summaries = []
        for path in sorted(self.packs_dir.glob(f"*{PACK_SUFFIX}")):
            try:
                raw = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning(f"[PackStore] Cannot read {path}: {e}")
                continue

            result = parse_pack(raw)
            if not result.ok:
                logger.warning(f"[PackStore] Skipping invalid pack {path.name}: {result.message}")
                continue

            pack = result.value
            summaries.append(
                PackSummary(
                    character_id=pack.character_id,
                    display_name=pack.display_name,
                    author=pack.author,
                    description=pack.persona.description,
                    has_voice=pack.voice is not None,
                    has_appearance=bool(pack.appearance and pack.appearance.avatar_url),
                    file_path=str(path),
                )
            )
        return summaries

    def save_pack(self, pack: CharacterDefinition) -> Path:
        path = self.pack_path(pack.character_id)
        write_json_atomic(path, pack.to_json_dict())
        logger.info(f"[PackStore] Saved pack {pack.character_id!r} to {path}")
        return path

    def load_pack(self, character_id: str) -> CharacterDefinition | None:
        path = self.pack_path(character_id)
        if not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"[PackStore] Cannot read {path}: {e}")
            return None

        result = parse_pack(raw)
        if not result.ok:
            logger.warning(f"[PackStore] Invalid pack file {path}: {result.message}")
            return None
        return result.value

    def has_pack(self, character_id: str) -> bool:
        return self.pack_path(character_id).exists()

    def delete_pack(self, character_id: str) -> bool:
        path = self.pack_path(character_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"[PackStore] Deleted pack {character_id!r}")
        return True

    def import_pack(self, data: Any) -> PackImportResult:
        """Validate a decoded pack object and install it.

        ``data`` may also be a raw JSON string or bytes.
        """
        if isinstance(data, (str, bytes)):
            result = parse_pack(data)
        else:
            result = validate_pack(data)

        if not result.ok:
            logger.warning(f"[PackStore] Pack import rejected: {result.message}")
            return PackImportResult(ok=False, errors=result.errors)

        path = self.save_pack(result.value)
        return PackImportResult(ok=True, pack=result.value, file_path=str(path))

    # ------------------------------------------------------------------
    # Overlays
    # ------------------------------------------------------------------

    def save_overlay(self, overlay: Overlay) -> Path:
        path = self.overlay_path(overlay.character_id)
        write_json_atomic(path, overlay.to_json_dict())
        logger.info(f"[PackStore] Saved overlay for {overlay.character_id!r}")
        return path

    def load_overlay(self, character_id: str) -> Overlay | None:
        path = self.overlay_path(character_id)
        if not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"[PackStore] Cannot read {path}: {e}")
            return None

        result = parse_overlay(raw, expected_character_id=character_id)
        if not result.ok:
            logger.warning(f"[PackStore] Ignoring invalid overlay {path}: {result.message}")
            return None
        return result.value

    def delete_overlay(self, character_id: str) -> bool:
        path = self.overlay_path(character_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"[PackStore] Deleted overlay for {character_id!r}")
        return True
