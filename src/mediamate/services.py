from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx

from .agent import Agent
from .claude_client import ClaudeClient
from .config import AppConfig
from .jellyfin_client import JellyfinClient
from .qbittorrent_client import QBittorrentClient
from .radarr_client import RadarrClient
from .tmdb_client import TMDbClient

LOGGER = logging.getLogger(__name__)

AgentFactory = Callable[[], Awaitable[Agent | None]]


async def build_agent(config: AppConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> Agent:
    """Build an Agent with one fresh client per configured service.

    Sections missing from the config leave that collaborator out; the agent
    reports those tools as unavailable instead of failing. If any client
    fails to build, the ones already created are closed before re-raising.
    """
    timeout = config.http.timeout_seconds
    retries = config.http.retries
    created: list[Any] = []

    try:
        llm = ClaudeClient(
            config.llm.api_key,
            model=config.llm.model,
            base_url=config.llm.base_url,
            max_tokens=config.llm.max_tokens,
            timeout_seconds=max(timeout, 60),
            retries=retries,
            transport=transport,
        )
        created.append(llm)

        metadata = None
        if config.tmdb.api_key:
            metadata = TMDbClient(
                config.tmdb.api_key,
                base_url=config.tmdb.base_url,
                cache_ttl_seconds=config.tmdb.cache_ttl_seconds,
                timeout_seconds=timeout,
                retries=retries,
                transport=transport,
            )
            created.append(metadata)

        backend = None
        if config.radarr is not None:
            backend = RadarrClient(
                config.radarr.url,
                config.radarr.api_key,
                quality_profile=config.radarr.quality_profile,
                root_folder=config.radarr.root_folder,
                timeout_seconds=timeout,
                retries=retries,
                transport=transport,
            )
            created.append(backend)

        torrent = None
        if config.qbittorrent is not None:
            torrent = QBittorrentClient(
                config.qbittorrent.url,
                config.qbittorrent.username,
                config.qbittorrent.password,
                timeout_seconds=timeout,
                retries=retries,
                transport=transport,
            )
            created.append(torrent)

        media_server = None
        if config.jellyfin is not None:
            media_server = JellyfinClient(
                config.jellyfin.url,
                config.jellyfin.api_key,
                timeout_seconds=timeout,
                retries=retries,
                transport=transport,
            )
            created.append(media_server)

        return Agent(
            llm,
            metadata=metadata,
            backend=backend,
            torrent=torrent,
            media_server=media_server,
        )
    except Exception:
        for client in reversed(created):
            try:
                await client.aclose()
            except Exception:  # noqa: BLE001
                LOGGER.exception("failed to close %s", type(client).__name__)
        raise


def make_agent_factory(
    config: AppConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AgentFactory:
    async def factory() -> Agent | None:
        try:
            return await build_agent(config, transport=transport)
        except Exception:  # noqa: BLE001
            LOGGER.exception("failed to build agent services")
            return None

    return factory


def describe_services(config: AppConfig) -> dict[str, bool]:
    return {
        "llm": True,
        "tmdb": bool(config.tmdb.api_key),
        "radarr": config.radarr is not None,
        "qbittorrent": config.qbittorrent is not None,
        "jellyfin": config.jellyfin is not None,
    }
