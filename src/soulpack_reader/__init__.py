"""
Soul Pack Reader

Portable character identity for AI agents: persona packs, bounded soul
memory with literal transcripts, user overlays and prompt injection.
"""

__version__ = "0.1.0"

from .config import MemoryEngineConfig, SoulpackConfig, load_config
from .memory import FactExtractor, MemoryEngine
from .models import (
    CharacterDefinition,
    ConversationMessage,
    MemoryRecord,
    MemoryStore,
    NormalizedView,
    Overlay,
)
from .normalizer import build_prompt_injection, build_tts_config_override, normalize
from .pack_store import PackStore
from .session import SoulSession
from .validation import ValidationResult, validate_overlay, validate_pack, validate_state

__all__ = [
    "__version__",
    "MemoryEngineConfig",
    "SoulpackConfig",
    "load_config",
    "FactExtractor",
    "MemoryEngine",
    "CharacterDefinition",
    "ConversationMessage",
    "MemoryRecord",
    "MemoryStore",
    "NormalizedView",
    "Overlay",
    "normalize",
    "build_prompt_injection",
    "build_tts_config_override",
    "PackStore",
    "SoulSession",
    "ValidationResult",
    "validate_pack",
    "validate_state",
    "validate_overlay",
]
