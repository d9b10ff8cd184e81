"""Normalizer: Pack + State + Overlay -> one runtime view -> prompt text.

Everything here is a pure function. Nothing is read from or written to disk.
"""

from __future__ import annotations

from typing import Any

from .models import (
    CharacterDefinition,
    MemoryStore,
    NormalizedView,
    Overlay,
    Voice,
)

PROMPT_MEMORY_WINDOW = 20


def normalize(
    definition: CharacterDefinition,
    store: MemoryStore | None = None,
    overlay: Overlay | None = None,
) -> NormalizedView:
    """Merge a character definition, its memory store and a user overlay.

    Precedence, lowest first:
        1. the definition's own fields
        2. first ``avatar`` asset when ``appearance.avatarUrl`` is absent
        3. ``avatar-expression`` assets, then ``appearance.expressions`` on top
        4. overlay fields that are set

    Memories are taken from ``store`` as-is, oldest first.
    """
    appearance = definition.appearance
    assets = list(definition.assets)

    name = definition.display_name
    avatar_url = appearance.avatar_url if appearance else None
    emoji = appearance.emoji if appearance else None
    theme_color = appearance.theme_color if appearance else None
    voice = definition.voice

    if not avatar_url:
        avatar_url = next((a.url for a in assets if a.type == "avatar"), None)

    expressions: dict[str, str] = {}
    for asset in assets:
        if asset.type == "avatar-expression" and asset.label:
            expressions.setdefault(asset.label, asset.url)
    if appearance:
        expressions.update(appearance.expressions)

    preferred_language = None
    custom: dict[str, Any] = {}
    if overlay:
        if overlay.display_name:
            name = overlay.display_name
        if overlay.avatar_url:
            avatar_url = overlay.avatar_url
        if overlay.voice_id:
            voice = (
                voice.model_copy(update={"voice_id": overlay.voice_id})
                if voice
                else Voice(voice_id=overlay.voice_id)
            )
        if overlay.theme:
            theme_color = overlay.theme
        preferred_language = overlay.preferred_language
        custom = dict(overlay.custom)

    return NormalizedView(
        character_id=definition.character_id,
        name=name,
        system_prompt=definition.persona.system_prompt,
        context_notes=list(definition.persona.context_notes),
        avatar_url=avatar_url,
        emoji=emoji,
        theme_color=theme_color,
        expressions=expressions,
        voice=voice,
        assets=assets,
        extensions=dict(definition.extensions),
        preferred_language=preferred_language,
        custom=custom,
        memories=list(store.memories) if store else [],
    )


def build_prompt_injection(view: NormalizedView) -> str:
    """Render the view as the text injected into the system prompt."""
    parts = [f"[Soul Pack: {view.name}]", "", view.system_prompt]

    if view.context_notes:
        parts += ["", "--- Context Notes ---"]
        parts += [f"- {note}" for note in view.context_notes]

    if view.voice:
        parts += [
            "",
            "--- Voice Configuration ---",
            "You have a voice identity. When the host supports TTS, "
            "your replies will be spoken aloud.",
        ]
        if view.voice.provider:
            parts.append(f"- TTS provider: {view.voice.provider}")
        if view.voice.voice_id:
            parts.append(f"- Voice: {view.voice.voice_id}")
        if view.voice.language:
            parts.append(f"- Language: {view.voice.language}")
        parts.append(
            "Adjust your speaking style to be natural for voice output: use "
            "shorter sentences, avoid excessive markdown formatting when voice "
            "is active."
        )

    if view.avatar_url or view.expressions:
        parts += ["", "--- Appearance ---"]
        if view.avatar_url:
            parts.append(f"- Avatar: {view.avatar_url}")
        if view.expressions:
            parts.append(f"- Available expressions: {', '.join(view.expressions)}")
            parts.append(
                "You may reference an expression by wrapping it in double "
                "brackets, e.g. [[happy]], [[angry]], to signal your current "
                "mood to the host UI."
            )

    if view.memories:
        parts += ["", "--- Soul Memories (from previous sessions) ---"]
        for memory in view.memories[-PROMPT_MEMORY_WINDOW:]:
            stamp = f"[{memory.timestamp}] " if memory.timestamp else ""
            parts.append(f"- {stamp}{memory.content}")

    return "\n".join(parts)


def _edge_rate(speed: float) -> str:
    percent = int((speed - 1) * 100 + (0.5 if speed >= 1 else -0.5))
    return f"{'+' if speed > 1 else ''}{percent}%"


def build_tts_config_override(voice: Voice | None) -> dict[str, Any] | None:
    """Map voice preferences onto a host TTS config block.

    Returns ``None`` when there is no voice or its provider is not one of
    ``openai``, ``elevenlabs`` or ``edge``.

    Example:
        >>> build_tts_config_override(Voice(provider="edge", voice_id="zh-CN-XiaoxiaoNeural", speed=1.2))
        {'provider': 'edge', 'edge': {'enabled': True, 'voice': 'zh-CN-XiaoxiaoNeural', 'rate': '+20%'}}
    """
    if voice is None:
        return None

    if voice.provider == "openai":
        settings: dict[str, Any] = {}
        if voice.voice_id:
            settings["voice"] = voice.voice_id
        if voice.model_id:
            settings["model"] = voice.model_id
        return {"provider": "openai", "openai": settings}

    if voice.provider == "elevenlabs":
        settings = {}
        if voice.voice_id:
            settings["voiceId"] = voice.voice_id
        if voice.model_id:
            settings["modelId"] = voice.model_id
        if voice.language:
            settings["languageCode"] = voice.language
        if voice.stability is not None:
            settings["voiceSettings"] = {
                "stability": voice.stability,
                "speed": voice.speed if voice.speed is not None else 1.0,
            }
        return {"provider": "elevenlabs", "elevenlabs": settings}

    if voice.provider == "edge":
        settings = {"enabled": True}
        if voice.voice_id:
            settings["voice"] = voice.voice_id
        if voice.language:
            settings["lang"] = voice.language
        if voice.speed is not None:
            settings["rate"] = _edge_rate(voice.speed)
        return {"provider": "edge", "edge": settings}

    return None
