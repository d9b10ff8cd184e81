"""Rule-based memory extraction.

Runs synchronously with zero LLM dependency. Scans user text for
self-disclosures and requests (Chinese and English) and produces bounded
memory candidates, plus one summary per exchange or conversation.

The per-text rule sets sit behind the ``TextToFacts`` protocol so another
language or another strategy can be plugged into ``FactExtractor`` without
touching the memory engine.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol, Sequence, runtime_checkable

from ..models import ConversationMessage

TAG_USER_FACT = "user_fact"
TAG_PREFERENCE = "preference"
TAG_EXCHANGE = "exchange"
TAG_SESSION_SUMMARY = "session_summary"
TAG_KEY_EXCHANGE = "key_exchange"

SENTENCE_TERMINATORS = "。！？.!?\n"
SENTENCE_WINDOW = 60
SNIPPET_LENGTH = 80
FACT_LENGTH = 120
KEY_EXCHANGE_LENGTH = 150
KEY_EXCHANGE_MIN_MESSAGES = 6
KEY_EXCHANGE_MIN_LENGTH = 50
MAX_USER_FACTS = 5
MAX_PREFERENCES = 3
MAX_KEY_EXCHANGES = 2


# ---------------------------------------------------------------------------
# String helpers
# ---------------------------------------------------------------------------


def truncate(text: str, max_len: int) -> str:
    """Collapse newlines and cut to ``max_len`` characters with ``...``."""
    clean = re.sub(r"\n+", " ", text).strip()
    if len(clean) <= max_len:
        return clean
    return clean[: max_len - 3] + "..."


def sentence_around(text: str, index: int, match_len: int) -> str:
    """Expand a match to its sentence, looking at most 60 characters each way."""
    start = index
    for i in range(index - 1, max(0, index - SENTENCE_WINDOW) - 1, -1):
        if text[i] in SENTENCE_TERMINATORS:
            start = i + 1
            break
        start = i

    end = index + match_len
    for i in range(end, min(len(text), end + SENTENCE_WINDOW)):
        end = i + 1
        if text[i] in SENTENCE_TERMINATORS:
            break

    return text[start:end].strip()


# ---------------------------------------------------------------------------
# Strategy interface
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FactCandidate:
    content: str
    tags: tuple[str, ...] = ()


@runtime_checkable
class TextToFacts(Protocol):
    """Turns one piece of user text into memory candidates."""

    def __call__(self, text: str) -> list[FactCandidate]: ...


@dataclass(frozen=True, slots=True)
class _Rule:
    pattern: re.Pattern[str]
    category: str


def _compile(raw: Sequence[tuple[str, str, int]]) -> tuple[_Rule, ...]:
    return tuple(
        _Rule(pattern=re.compile(pattern, flags), category=category)
        for pattern, category, flags in raw
    )


def _build_self_disclosure_rules() -> tuple[_Rule, ...]:
    return _compile(
        [
            # Chinese
            (r"我(?:是|叫|的名字是|姓)\s*(.{2,30})", "identity", 0),
            (r"我(?:喜欢|爱好|热爱|对.{1,6}感兴趣)\s*(.{2,50})", "preference", 0),
            (r"我(?:在|住在|来自)\s*(.{2,30})", "location", 0),
            (r"我(?:今年|现在)\s*(.{2,20})", "age_time", 0),
            (r"我的(?:工作|职业|专业)(?:是)?\s*(.{2,30})", "occupation", 0),
            # English
            (r"(?:I am|I'm|I’m)\s+(.{2,50})", "identity", re.IGNORECASE),
            (r"my name is\s+(.{2,30})", "identity", re.IGNORECASE),
            (r"I (?:like|love|enjoy)\s+(.{2,50})", "preference", re.IGNORECASE),
            (
                r"I (?:live in|work (?:at|as|in))\s+(.{2,50})",
                "location_occupation",
                re.IGNORECASE,
            ),
        ]
    )


def _build_preference_rules() -> tuple[_Rule, ...]:
    return _compile(
        [
            # Chinese
            (r"(?:请|帮我|能不能|可以).{2,8}(?:用|改成|换成|说)\s*(.{2,40})", "request", 0),
            (r"我(?:想|要|希望|觉得)\s*(.{2,50})", "want", 0),
            (r"(?:不要|别|不用)\s*(.{2,30})", "negation", 0),
            # English
            (r"(?:please|could you|can you)\s+(.{2,60})", "request", re.IGNORECASE),
            (
                r"I (?:want|need|prefer|would like)\s+(.{2,50})",
                "want",
                re.IGNORECASE,
            ),
            (r"(?:don't|do not)\s+(.{2,40})", "negation", re.IGNORECASE),
        ]
    )


_SELF_DISCLOSURE_RULES = _build_self_disclosure_rules()
_PREFERENCE_RULES = _build_preference_rules()


@dataclass
class RegexFactRules:
    """A ``TextToFacts`` strategy backed by an ordered list of regex rules.

    Every match is widened to its surrounding sentence, prefixed, truncated
    and deduplicated; at most ``limit`` candidates are returned per call.
    """

    rules: Sequence[_Rule]
    prefix: str
    tag: str
    limit: int

    def __call__(self, text: str) -> list[FactCandidate]:
        if not text or not text.strip():
            return []

        contents: list[str] = []
        for rule in self.rules:
            for match in rule.pattern.finditer(text):
                sentence = sentence_around(text, match.start(), len(match.group(0)))
                content = f"{self.prefix}: {truncate(sentence, FACT_LENGTH)}"
                if content not in contents:
                    contents.append(content)

        return [FactCandidate(c, (self.tag,)) for c in contents[: self.limit]]

    @property
    def rule_count(self) -> int:
        return len(self.rules)


def self_disclosure_rules() -> RegexFactRules:
    return RegexFactRules(
        rules=_SELF_DISCLOSURE_RULES,
        prefix="User shared",
        tag=TAG_USER_FACT,
        limit=MAX_USER_FACTS,
    )


def preference_rules() -> RegexFactRules:
    return RegexFactRules(
        rules=_PREFERENCE_RULES,
        prefix="User preference",
        tag=TAG_PREFERENCE,
        limit=MAX_PREFERENCES,
    )


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


@dataclass
class FactExtractor:
    """Produces memory candidates for one exchange or a whole conversation.

    ``facts`` runs over each user message; ``preferences`` only runs in batch
    mode, where its candidates are capped across the whole conversation.
    """

    facts: TextToFacts = field(default_factory=self_disclosure_rules)
    preferences: TextToFacts = field(default_factory=preference_rules)

    def from_exchange(self, user_text: str, assistant_text: str) -> list[FactCandidate]:
        """Facts from the user's text followed by one exchange summary."""
        candidates = list(self.facts(user_text))
        candidates.append(
            FactCandidate(
                f'Conversation: User said "{truncate(user_text, SNIPPET_LENGTH)}" '
                f'→ AI responded "{truncate(assistant_text, SNIPPET_LENGTH)}"',
                (TAG_EXCHANGE,),
            )
        )
        return candidates

    def from_conversation(
        self, messages: Sequence[ConversationMessage]
    ) -> list[FactCandidate]:
        """Summary, per-message facts, preferences and key exchanges."""
        if not messages:
            return []

        user_msgs = [m for m in messages if m.role == "user"]
        candidates = [FactCandidate(self.summarize(messages), (TAG_SESSION_SUMMARY,))]

        for msg in user_msgs:
            candidates.extend(self.facts(msg.content))

        preferences: list[FactCandidate] = []
        for msg in user_msgs:
            for pref in self.preferences(msg.content):
                if pref not in preferences:
                    preferences.append(pref)
        candidates.extend(preferences[:MAX_PREFERENCES])

        if len(messages) >= KEY_EXCHANGE_MIN_MESSAGES:
            candidates.extend(self.key_exchanges(user_msgs))

        return candidates

    @staticmethod
    def summarize(messages: Sequence[ConversationMessage]) -> str:
        user_msgs = [m for m in messages if m.role == "user"]
        ai_msgs = [m for m in messages if m.role == "assistant"]
        total_chars = sum(len(m.content) for m in messages)

        summary = (
            f"Session: {len(user_msgs)} user msgs, {len(ai_msgs)} AI msgs "
            f"(~{total_chars} chars)."
        )
        if not user_msgs:
            return summary

        first = truncate(user_msgs[0].content, SNIPPET_LENGTH)
        last = (
            truncate(user_msgs[-1].content, SNIPPET_LENGTH) if len(user_msgs) > 1 else ""
        )
        summary += f' Started: "{first}"'
        if last and last != first:
            summary += f' → ended: "{last}"'
        return summary + "."

    @staticmethod
    def key_exchanges(user_msgs: Sequence[ConversationMessage]) -> list[FactCandidate]:
        if not user_msgs:
            return []
        longest = max(user_msgs, key=lambda m: len(m.content))
        if len(longest.content) <= KEY_EXCHANGE_MIN_LENGTH:
            return []
        exchanges = [
            FactCandidate(
                f'Important user message: "{truncate(longest.content, KEY_EXCHANGE_LENGTH)}"',
                (TAG_KEY_EXCHANGE,),
            )
        ]
        return exchanges[:MAX_KEY_EXCHANGES]
