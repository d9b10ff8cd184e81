"""
Network side of Soul Pack installation.

- ``install_from_url``: download a pack JSON and install it into a ``PackStore``
- ``search_registry`` / ``install_from_registry``: talk to a pack registry
- ``check_for_update``: best-effort release check against a GitHub-style API

Install and search are foreground user actions, so failures come back as
typed results with an ``error`` message. The update check degrades to
``None`` on any failure.

Every function accepts an optional ``httpx.AsyncClient`` (tests inject one
built on ``httpx.MockTransport``); otherwise a short-lived client with an
explicit timeout is used.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import AliasChoices, Field, ValidationError

from .models import CharacterDefinition, SoulModel
from .pack_store import PackStore
from .versioning import is_newer, parse_version

DEFAULT_TIMEOUT = 10.0
UPDATE_CHECK_TIMEOUT = 5.0
REGISTRY_PACKS_PATH = "/api/registry/packs"


class InstallResult(SoulModel):
    ok: bool
    pack: CharacterDefinition | None = None
    file_path: str | None = None
    error: str | None = None


class RegistryPackInfo(SoulModel):
    """One registry search hit, as published by the registry (camelCase)."""

    character_id: str = Field(
        validation_alias=AliasChoices("characterId", "packId", "character_id"),
        serialization_alias="characterId",
    )
    name: str
    author: str | None = None
    description: str | None = None
    download_url: str


class RegistrySearchResult(SoulModel):
    ok: bool
    packs: list[RegistryPackInfo] = []
    error: str | None = None


class UpdateInfo(SoulModel):
    current_version: str
    latest_version: str
    has_update: bool
    download_url: str = ""


@asynccontextmanager
async def _client_scope(
    client: httpx.AsyncClient | None, timeout: float
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as owned:
        yield owned


def registry_packs_url(registry_url: str) -> httpx.URL:
    return httpx.URL(registry_url).join(REGISTRY_PACKS_PATH)


def registry_download_url(registry_url: str, character_id: str) -> httpx.URL:
    return httpx.URL(registry_url).join(
        f"{REGISTRY_PACKS_PATH}/{quote(character_id, safe='')}/download"
    )


async def install_from_url(
    store: PackStore,
    url: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> InstallResult:
    """Fetch a pack from ``url``, validate it and save it to ``store``."""
    try:
        async with _client_scope(client, timeout) as http:
            response = await http.get(str(url))
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as e:
        logger.warning(
            f"[Registry] Failed to fetch pack from {url}: {e.response.status_code}"
        )
        return InstallResult(
            ok=False,
            error=f"Failed to fetch pack: {e.response.status_code} {e.response.reason_phrase}",
        )
    except httpx.HTTPError as e:
        logger.warning(f"[Registry] Network error fetching {url}: {e}")
        return InstallResult(ok=False, error=f"Failed to fetch pack: {e}")
    except ValueError as e:
        logger.warning(f"[Registry] Response from {url} is not JSON: {e}")
        return InstallResult(ok=False, error=f"Pack response is not valid JSON: {e}")

    imported = store.import_pack(data)
    if not imported.ok:
        return InstallResult(ok=False, error=f"Invalid Soul Pack: {imported.error}")

    logger.info(f"[Registry] Installed {imported.pack.character_id!r} from {url}")
    return InstallResult(ok=True, pack=imported.pack, file_path=imported.file_path)


async def search_registry(
    registry_url: str,
    query: str | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> RegistrySearchResult:
    params = {"q": query} if query else None
    url = registry_packs_url(registry_url)
    try:
        async with _client_scope(client, timeout) as http:
            response = await http.get(url, params=params)
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as e:
        return RegistrySearchResult(
            ok=False,
            error=f"Registry search failed: {e.response.status_code} {e.response.reason_phrase}",
        )
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"[Registry] Search against {registry_url} failed: {e}")
        return RegistrySearchResult(ok=False, error=f"Registry search failed: {e}")

    raw_packs = data.get("packs") if isinstance(data, dict) else None
    packs = []
    for entry in raw_packs or []:
        try:
            packs.append(RegistryPackInfo.model_validate(entry))
        except ValidationError as e:
            logger.debug(f"[Registry] Skipping malformed registry entry: {e}")

    logger.debug(f"[Registry] Search {query!r}: {len(packs)} results")
    return RegistrySearchResult(ok=True, packs=packs)


async def install_from_registry(
    store: PackStore,
    registry_url: str,
    character_id: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> InstallResult:
    url = registry_download_url(registry_url, character_id)
    return await install_from_url(store, str(url), client=client, timeout=timeout)


async def check_for_update(
    release_url: str,
    current_version: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = UPDATE_CHECK_TIMEOUT,
) -> UpdateInfo | None:
    """Compare the latest release tag with ``current_version``.

    Returns ``None`` when the endpoint is unreachable, errors, or publishes a
    tag that is not a semantic version.
    """
    try:
        async with _client_scope(client, timeout) as http:
            response = await http.get(
                release_url, headers={"Accept": "application/vnd.github.v3+json"}
            )
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.debug(f"[Registry] Update check failed: {e}")
        return None

    if not isinstance(data, dict):
        return None
    tag = str(data.get("tag_name") or "").lstrip("v")
    if parse_version(tag) is None:
        return None

    return UpdateInfo(
        current_version=current_version,
        latest_version=tag,
        has_update=is_newer(tag, current_version),
        download_url=str(data.get("html_url") or ""),
    )
