"""Validation and parsing of Soul Pack, Soul State and Overlay JSON.

Nothing here raises for bad input. Every entry point returns a
``ValidationResult`` carrying either the parsed model or a list of
human-readable reasons, and the caller decides what to surface.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from .models import CharacterDefinition, MemoryStore, Overlay
from .versioning import check_major

SUPPORTED_SPEC_MAJOR = 0
SUPPORTED_STATE_MAJOR = 0
SUPPORTED_OVERLAY_MAJOR = 0

T = TypeVar("T", bound=BaseModel)


@dataclass
class ValidationResult(Generic[T]):
    ok: bool
    errors: list[str] = field(default_factory=list)
    value: T | None = None

    @classmethod
    def success(cls, value: T) -> "ValidationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, errors: list[str]) -> "ValidationResult[T]":
        return cls(ok=False, errors=errors)

    @property
    def message(self) -> str:
        return "; ".join(self.errors)


def format_validation_errors(error: ValidationError) -> list[str]:
    """Turn a pydantic ``ValidationError`` into one reason per failing location."""
    messages = []
    for err in error.errors():
        location = ".".join(str(loc) for loc in err["loc"]) or "<root>"
        error_type = err["type"]
        if error_type == "missing":
            messages.append(f"missing {location}")
        elif "greater_than" in error_type or "less_than" in error_type:
            messages.append(f"{location} out of range: {err['msg']}")
        else:
            messages.append(f"invalid {location}: {err['msg']}")
    return messages


def _non_empty_str(data: dict, *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _check_version(data: dict, key: str, supported: int, errors: list[str]) -> None:
    version = data.get(key)
    if not isinstance(version, str) or not version:
        errors.append(f"missing or invalid {key}")
        return
    problem = check_major(version, supported, key)
    if problem:
        errors.append(problem)


def _build(model: type[T], data: dict, kind: str) -> ValidationResult[T]:
    try:
        return ValidationResult.success(model.model_validate(data))
    except ValidationError as e:
        errors = format_validation_errors(e)
        logger.debug(f"[Validation] {kind} rejected: {errors}")
        return ValidationResult.failure(errors)


def _load_json(raw: str | bytes, kind: str) -> tuple[Any, list[str]]:
    try:
        return json.loads(raw), []
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        return None, [f"{kind} is not valid JSON: {e}"]


# ---------------------------------------------------------------------------
# Pack
# ---------------------------------------------------------------------------


def validate_pack(data: Any) -> ValidationResult[CharacterDefinition]:
    """Validate a decoded Soul Pack object.

    A pack must carry ``specVersion`` (supported major), ``characterId``,
    ``displayName`` and ``persona.systemPrompt``. The legacy keys ``packId``
    and ``name`` are accepted for the id and display name.
    """
    if not isinstance(data, dict):
        return ValidationResult.failure(["pack must be a JSON object"])

    errors: list[str] = []
    _check_version(data, "specVersion", SUPPORTED_SPEC_MAJOR, errors)
    if _non_empty_str(data, "characterId", "packId") is None:
        errors.append("missing or invalid characterId")
    if _non_empty_str(data, "displayName", "name") is None:
        errors.append("missing or invalid displayName")

    persona = data.get("persona")
    if not isinstance(persona, dict):
        errors.append("missing persona object (persona.systemPrompt is required)")
    elif _non_empty_str(persona, "systemPrompt") is None:
        errors.append("missing persona.systemPrompt")

    if errors:
        return ValidationResult.failure(errors)
    return _build(CharacterDefinition, data, "pack")


def parse_pack(raw: str | bytes) -> ValidationResult[CharacterDefinition]:
    data, errors = _load_json(raw, "pack")
    if errors:
        return ValidationResult.failure(errors)
    return validate_pack(data)


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


def validate_state(
    data: Any, expected_character_id: str | None = None
) -> ValidationResult[MemoryStore]:
    """Validate a decoded Soul State object.

    When ``expected_character_id`` is given, a state belonging to another
    character is rejected with a mismatch reason.
    """
    if not isinstance(data, dict):
        return ValidationResult.failure(["state must be a JSON object"])

    errors: list[str] = []
    _check_version(data, "stateVersion", SUPPORTED_STATE_MAJOR, errors)
    character_id = _non_empty_str(data, "characterId", "packId")
    if character_id is None:
        errors.append("missing or invalid characterId")
    elif expected_character_id and character_id != expected_character_id:
        errors.append(
            f"characterId mismatch: expected {expected_character_id!r}, "
            f"got {character_id!r}"
        )
    if not isinstance(data.get("memories"), list):
        errors.append("missing memories array")

    if errors:
        return ValidationResult.failure(errors)
    return _build(MemoryStore, data, "state")


def parse_state(
    raw: str | bytes, expected_character_id: str | None = None
) -> ValidationResult[MemoryStore]:
    data, errors = _load_json(raw, "state")
    if errors:
        return ValidationResult.failure(errors)
    return validate_state(data, expected_character_id)


# ---------------------------------------------------------------------------
# Overlay
# ---------------------------------------------------------------------------


def validate_overlay(
    data: Any, expected_character_id: str | None = None
) -> ValidationResult[Overlay]:
    if not isinstance(data, dict):
        return ValidationResult.failure(["overlay must be a JSON object"])

    errors: list[str] = []
    _check_version(data, "overlayVersion", SUPPORTED_OVERLAY_MAJOR, errors)
    character_id = _non_empty_str(data, "characterId", "packId")
    if character_id is None:
        errors.append("missing or invalid characterId")
    elif expected_character_id and character_id != expected_character_id:
        errors.append(
            f"characterId mismatch: expected {expected_character_id!r}, "
            f"got {character_id!r}"
        )

    if errors:
        return ValidationResult.failure(errors)
    return _build(Overlay, data, "overlay")


def parse_overlay(
    raw: str | bytes, expected_character_id: str | None = None
) -> ValidationResult[Overlay]:
    data, errors = _load_json(raw, "overlay")
    if errors:
        return ValidationResult.failure(errors)
    return validate_overlay(data, expected_character_id)
