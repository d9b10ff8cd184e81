"""Soul Pack HTTP routes.

Thin transport over ``SoulSession``. Mounted under ``/plugins/soulpack-reader``:

- ``POST /import``: install a pack from the request body (optionally activate)
- ``POST /install``: install a pack from a URL or from the registry
- ``GET  /list``: installed packs
- ``POST /activate``: switch the active pack
- ``GET  /ping``: health check
- ``POST /remove``: delete an installed (inactive) pack
- ``POST /record``: push one exchange or a whole conversation into memory
- ``GET  /memory/status``: memory overview
- ``GET  /memory/search``: search memories by text or tag
- ``GET  /memory/export``: the active character's Soul State
- ``POST /memory/import``: replace the Soul State
- ``GET  /version-check``: best-effort release check

Errors are returned as ``{"error": ...}`` with a 400, 404, 409 or 503 status.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import ValidationError
from starlette.responses import JSONResponse

from . import __version__
from .memory.memory_engine import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT
from .models import ConversationMessage
from .registry import check_for_update, install_from_registry, install_from_url
from .session import NO_ACTIVE_PACK, SoulSession

ROUTE_PREFIX = "/plugins/soulpack-reader"
PLUGIN_NAME = "soulpack-reader"


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _read_json(request: Request) -> Any:
    """Decoded request body, ``None`` for an empty body. Raises ``ValueError``."""
    raw = await request.body()
    if not raw.strip():
        return None
    return json.loads(raw)


def _character_id_from(body: Any) -> str:
    if not isinstance(body, dict):
        return ""
    for key in ("characterId", "packId"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _parse_messages(raw_messages: list) -> list[ConversationMessage]:
    messages = []
    for entry in raw_messages:
        if not isinstance(entry, dict):
            continue
        try:
            messages.append(ConversationMessage.model_validate(entry))
        except ValidationError:
            continue
    return messages


def init_soulpack_routes(session: SoulSession) -> APIRouter:
    """
    Create routes exposing Soul Pack management and memory operations.

    Args:
        session: Shared session holding the active pack and its memory engine.

    Returns:
        APIRouter: Router with all Soul Pack endpoints.
    """
    router = APIRouter(prefix=ROUTE_PREFIX, tags=["soulpack"])

    # ------------------------------------------------------------------
    # Packs
    # ------------------------------------------------------------------

    @router.post("/import")
    async def import_pack(request: Request):
        try:
            body = await _read_json(request)
        except ValueError as e:
            return _error(f"Request body is not valid JSON: {e}", 400)
        if not isinstance(body, dict):
            return _error("Request body must be a Soul Pack JSON object", 400)

        activate_flag = body.pop("__activate", True)
        result = session.pack_store.import_pack(body)
        if not result.ok:
            return _error(f"Invalid Soul Pack: {result.error}", 400)

        pack = result.pack
        should_activate = activate_flag is not False or session.definition is None
        if should_activate:
            session.activate(pack)

        suffix = " and activated" if should_activate else ""
        return JSONResponse(
            {
                "success": True,
                "characterId": pack.character_id,
                "name": pack.display_name,
                "activated": should_activate,
                "filePath": result.file_path,
                "message": f'Soul Pack "{pack.display_name}" imported successfully{suffix}.',
            }
        )

    @router.post("/install")
    async def install_pack(request: Request):
        try:
            body = await _read_json(request)
        except ValueError as e:
            return _error(f"Request body is not valid JSON: {e}", 400)
        if not isinstance(body, dict):
            return _error("Request body must be a JSON object", 400)

        timeout = session.config.http_timeout
        url = body.get("url")
        character_id = _character_id_from(body)
        if isinstance(url, str) and url:
            result = await install_from_url(session.pack_store, url, timeout=timeout)
        elif character_id:
            registry_url = session.config.registry_url
            if not registry_url:
                return _error("No registry is configured", 503)
            result = await install_from_registry(
                session.pack_store, registry_url, character_id, timeout=timeout
            )
        else:
            return _error("Provide either url or characterId in request body", 400)

        if not result.ok:
            return _error(result.error or "Install failed", 400)

        should_activate = body.get("activate") is True or session.definition is None
        if should_activate:
            session.activate(result.pack)
        return JSONResponse(
            {
                "success": True,
                "characterId": result.pack.character_id,
                "name": result.pack.display_name,
                "activated": should_activate,
                "filePath": result.file_path,
            }
        )

    @router.get("/list")
    async def list_packs():
        active_id = session.active_character_id
        packs = []
        for summary in session.pack_store.list_packs():
            entry = summary.to_json_dict()
            entry["active"] = summary.character_id == active_id
            packs.append(entry)
        return JSONResponse({"packs": packs, "activeCharacterId": active_id})

    @router.post("/activate")
    async def activate_pack(request: Request):
        try:
            body = await _read_json(request)
        except ValueError as e:
            return _error(f"Request body is not valid JSON: {e}", 400)

        character_id = _character_id_from(body)
        if not character_id:
            return _error("Missing characterId in request body", 400)

        pack = session.select(character_id)
        if pack is None:
            return _error(f'Pack "{character_id}" not found. Install it first.', 404)

        return JSONResponse(
            {
                "success": True,
                "characterId": pack.character_id,
                "name": pack.display_name,
                "message": f'Soul Pack "{pack.display_name}" activated.',
            }
        )

    @router.get("/ping")
    async def ping():
        definition = session.definition
        active = (
            {"characterId": definition.character_id, "name": definition.display_name}
            if definition
            else None
        )
        return JSONResponse(
            {
                "status": "ok",
                "plugin": PLUGIN_NAME,
                "version": __version__,
                "activePack": active,
            }
        )

    @router.post("/remove")
    async def remove_pack(request: Request):
        try:
            body = await _read_json(request)
        except ValueError as e:
            return _error(f"Request body is not valid JSON: {e}", 400)

        character_id = _character_id_from(body)
        if not character_id:
            return _error("Missing characterId in request body", 400)

        if session.active_character_id == character_id:
            return _error(
                f'Cannot remove active pack "{character_id}". '
                "Activate a different pack first.",
                409,
            )

        if not session.pack_store.delete_pack(character_id):
            return _error(f'Pack "{character_id}" not found.', 404)

        return JSONResponse(
            {
                "success": True,
                "characterId": character_id,
                "message": f'Pack "{character_id}" removed.',
            }
        )

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    @router.post("/record")
    async def record(request: Request):
        """
        Push conversation data into the active character's memory.

        Accepts either a single exchange
        ``{"userInput": ..., "aiOutput": ..., "conversationId"?: ...}`` or a
        batch ``{"messages": [{"role", "content", "timestamp"?}], ...}``.
        ``sessionId`` is accepted in place of ``conversationId``.
        """
        engine = session.engine
        if engine is None:
            return _error(NO_ACTIVE_PACK, 503)

        try:
            body = await _read_json(request)
        except ValueError as e:
            return _error(f"Request body is not valid JSON: {e}", 400)
        if not isinstance(body, dict):
            return _error("Request body required", 400)

        conversation_id = body.get("conversationId") or body.get("sessionId")
        if not isinstance(conversation_id, str):
            conversation_id = None

        user_input, ai_output = body.get("userInput"), body.get("aiOutput")
        if isinstance(user_input, str) and isinstance(ai_output, str):
            result = engine.record(user_input, ai_output, conversation_id)
            return JSONResponse(
                {
                    "success": True,
                    **result.to_json_dict(),
                    "message": f"Recorded 1 exchange, {result.memories_added} memories extracted.",
                }
            )

        if isinstance(body.get("messages"), list):
            messages = _parse_messages(body["messages"])
            if not messages:
                return _error("No valid messages found in batch", 400)

            result = engine.record_batch(messages, conversation_id)
            return JSONResponse(
                {
                    "success": True,
                    **result.to_json_dict(),
                    "message": (
                        f"Recorded {len(messages)} messages, "
                        f"{result.memories_added} memories extracted."
                    ),
                }
            )

        return _error(
            "Invalid format. Use { userInput, aiOutput } for single exchange, "
            "or { messages: [{role, content}] } for batch.",
            400,
        )

    @router.get("/memory/status")
    async def memory_status():
        engine = session.engine
        if engine is None:
            return _error(NO_ACTIVE_PACK, 503)
        return JSONResponse(engine.get_status().to_json_dict())

    @router.get("/memory/search")
    async def memory_search(q: str = "", tag: str = "", limit: int = DEFAULT_QUERY_LIMIT):
        engine = session.engine
        if engine is None:
            return _error(NO_ACTIVE_PACK, 503)

        limit = min(limit, MAX_QUERY_LIMIT)
        if q:
            memories = engine.search_memories(q, limit)
        elif tag:
            memories = engine.get_memories_by_tag(tag, limit)
        else:
            memories = engine.get_memories(limit)
        return JSONResponse({"memories": [m.to_json_dict() for m in memories]})

    @router.get("/memory/export")
    async def memory_export():
        engine = session.engine
        if engine is None:
            return _error(NO_ACTIVE_PACK, 503)
        return JSONResponse(engine.load_state().to_json_dict())

    @router.post("/memory/import")
    async def memory_import(request: Request):
        engine = session.engine
        if engine is None:
            return _error(NO_ACTIVE_PACK, 503)

        result = engine.import_state(await request.body())
        if not result.ok:
            return _error(f"Invalid Soul State: {result.message}", 400)

        return JSONResponse(
            {
                "success": True,
                "characterId": engine.character_id,
                "totalMemories": engine.get_memory_count(),
            }
        )

    # ------------------------------------------------------------------
    # Version
    # ------------------------------------------------------------------

    @router.get("/version-check")
    async def version_check():
        info = await check_for_update(
            session.config.update_check_url,
            __version__,
            timeout=session.config.update_check_timeout,
        )
        if info is None:
            return JSONResponse(
                {
                    "currentVersion": __version__,
                    "status": "check_failed",
                    "message": "Could not reach the release server.",
                }
            )

        message = (
            f"Update available: v{info.latest_version}. Download: {info.download_url}"
            if info.has_update
            else "You are on the latest version."
        )
        return JSONResponse({**info.to_json_dict(), "message": message})

    return router


def create_app(session: SoulSession | None = None) -> FastAPI:
    """Build a standalone FastAPI app serving the Soul Pack routes."""
    session = session or SoulSession()
    if session.definition is None:
        session.auto_load()

    app = FastAPI(
        title="Soul Pack Reader",
        description="Soul Pack management and portable character memory",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(init_soulpack_routes(session))
    app.state.soul_session = session

    logger.info(f"[Routes] Soul Pack routes mounted at {ROUTE_PREFIX}")
    return app
