"""Configuration for Soul Pack Reader.

Values come from environment variables (optionally loaded from a ``.env``
file) and can be overridden with keyword arguments to ``load_config``.

Environment variables:

- ``SOULPACK_STATE_DIR``: storage root (default ``~/.soulpack/soulpack-data``)
- ``SOULPACK_MAX_MEMORIES``: memory records kept per character (default 200)
- ``SOULPACK_MAX_TRANSCRIPTS``: transcript files kept per character (default 50)
- ``SOULPACK_SAVE_TRANSCRIPTS``: write conversation transcripts (default true)
- ``SOULPACK_PACK_PATH``: pack file activated on startup
- ``SOULPACK_REGISTRY_URL``: registry base URL for search/install
- ``SOULPACK_UPDATE_URL``: release endpoint used by the update check
- ``SOULPACK_HTTP_TIMEOUT``: timeout in seconds for install/registry calls
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_MAX_MEMORIES = 200
DEFAULT_MAX_TRANSCRIPTS = 50
DEFAULT_UPDATE_URL = (
    "https://api.github.com/repos/Brant123451/soulpack-reader/releases/latest"
)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default fallback."""
    return os.getenv(key, default)


def get_env_int(key: str, default: int = 0) -> int:
    """Get environment variable as integer with default fallback."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get environment variable as boolean with default fallback."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def default_state_dir() -> Path:
    return Path.home() / ".soulpack" / "soulpack-data"


class MemoryEngineConfig(BaseModel):
    """Per-character memory engine settings."""

    storage_root: Path
    max_memories: int = Field(default=DEFAULT_MAX_MEMORIES, ge=1)
    max_transcripts: int = Field(default=DEFAULT_MAX_TRANSCRIPTS, ge=1)
    save_transcripts: bool = True


class SoulpackConfig(BaseModel):
    """Top-level Soul Pack Reader configuration."""

    state_dir: Path = Field(default_factory=default_state_dir)
    max_memories: int = Field(default=DEFAULT_MAX_MEMORIES, ge=1)
    max_transcripts: int = Field(default=DEFAULT_MAX_TRANSCRIPTS, ge=1)
    save_transcripts: bool = True
    pack_path: Path | None = None
    registry_url: str | None = None
    update_check_url: str = DEFAULT_UPDATE_URL
    http_timeout: float = Field(default=10.0, gt=0)
    update_check_timeout: float = Field(default=5.0, gt=0)

    def engine_config(self) -> MemoryEngineConfig:
        return MemoryEngineConfig(
            storage_root=self.state_dir,
            max_memories=self.max_memories,
            max_transcripts=self.max_transcripts,
            save_transcripts=self.save_transcripts,
        )


def load_config(**overrides: Any) -> SoulpackConfig:
    """Build a ``SoulpackConfig`` from the environment plus explicit overrides."""
    values: dict[str, Any] = {
        "max_memories": get_env_int("SOULPACK_MAX_MEMORIES", DEFAULT_MAX_MEMORIES),
        "max_transcripts": get_env_int(
            "SOULPACK_MAX_TRANSCRIPTS", DEFAULT_MAX_TRANSCRIPTS
        ),
        "save_transcripts": get_env_bool("SOULPACK_SAVE_TRANSCRIPTS", True),
        "update_check_url": get_env("SOULPACK_UPDATE_URL", DEFAULT_UPDATE_URL),
        "http_timeout": get_env_float("SOULPACK_HTTP_TIMEOUT", 10.0),
    }
    state_dir = get_env("SOULPACK_STATE_DIR")
    if state_dir:
        values["state_dir"] = Path(state_dir).expanduser()
    pack_path = get_env("SOULPACK_PACK_PATH")
    if pack_path:
        values["pack_path"] = Path(pack_path).expanduser()
    registry_url = get_env("SOULPACK_REGISTRY_URL")
    if registry_url:
        values["registry_url"] = registry_url

    values.update(overrides)
    return SoulpackConfig(**values)
