"""
Soul Memory

Turns conversations into bounded, persisted memory records and keeps the
literal transcripts next to them.
"""

from .fact_extractor import FactCandidate, FactExtractor, RegexFactRules, TextToFacts
from .memory_engine import ConversationEnd, EngineStatus, MemoryEngine, RecordResult
from .state_store import StateStore
from .transcript_log import TranscriptLog

__all__ = [
    "FactCandidate",
    "FactExtractor",
    "RegexFactRules",
    "TextToFacts",
    "MemoryEngine",
    "RecordResult",
    "ConversationEnd",
    "EngineStatus",
    "StateStore",
    "TranscriptLog",
]
