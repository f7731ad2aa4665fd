from __future__ import annotations

import logging
from typing import Any

import httpx

from .http_client import RequestFailedError, RetryingClient, safe_json
from .protocol import MediaItem, MediaStatus

LOGGER = logging.getLogger(__name__)


class RadarrClient:
    """Radarr v3 media backend: queues movies and reports their state."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        quality_profile: str = "",
        root_folder: str = "",
        timeout_seconds: float = 30,
        retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url:
            raise ValueError("base_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        self._quality_profile = quality_profile.strip()
        self._root_folder = root_folder.strip()
        self._http = RetryingClient(
            name="radarr",
            base_url=base_url.rstrip("/"),
            timeout_seconds=timeout_seconds,
            retries=retries,
            headers={"X-Api-Key": api_key, "Accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def add(self, item: MediaItem) -> None:
        raw_id = item.metadata.get("tmdbId")
        if raw_id is None:
            raise ValueError("item metadata 'tmdbId' is required")
        try:
            tmdb_id = int(raw_id)
        except ValueError as exc:
            raise ValueError(f"invalid tmdbId {raw_id!r}") from exc

        quality_profile_id = await self._resolve_quality_profile_id()
        root_folder = await self._resolve_root_folder()

        payload = {
            "title": item.title,
            "year": item.year,
            "tmdbId": tmdb_id,
            "qualityProfileId": quality_profile_id,
            "rootFolderPath": root_folder,
            "monitored": True,
            "addOptions": {"searchForMovie": True},
        }
        response = await self._http.request("POST", "/api/v3/movie", action="add movie", json=payload)
        if not 200 <= response.status_code < 300:
            raise RequestFailedError(
                f"radarr add movie: radarr API error {response.status_code}",
                status_code=response.status_code,
                response_body=safe_json(response),
            )
        LOGGER.info("queued movie tmdb_id=%s title=%r", tmdb_id, item.title)

    async def get_status(self, item_id: str) -> MediaStatus:
        try:
            radarr_id = int(item_id)
        except ValueError as exc:
            raise ValueError(f"invalid radarr item id {item_id!r}") from exc

        movie = await self._get(f"/api/v3/movie/{radarr_id}", action="get status")
        if not isinstance(movie, dict):
            raise RequestFailedError("radarr get status: unexpected response shape")
        return to_media_status(movie)

    async def _resolve_quality_profile_id(self) -> int:
        profiles = await self._get("/api/v3/qualityprofile", action="list quality profiles")
        if not isinstance(profiles, list) or not profiles:
            raise RequestFailedError("resolve quality profile: no quality profiles found")

        if self._quality_profile:
            wanted = self._quality_profile.casefold()
            for profile in profiles:
                if str(profile.get("name", "")).casefold() == wanted:
                    return int(profile["id"])
            raise RequestFailedError(
                f"resolve quality profile: quality profile {self._quality_profile!r} not found"
            )
        return int(profiles[0]["id"])

    async def _resolve_root_folder(self) -> str:
        if self._root_folder:
            return self._root_folder

        folders = await self._get("/api/v3/rootfolder", action="list root folders")
        if not isinstance(folders, list) or not folders:
            raise RequestFailedError("resolve root folder: no root folders found")
        return str(folders[0].get("path", ""))

    async def _get(self, path: str, *, action: str) -> Any:
        response = await self._http.request("GET", path, action=action)
        if response.status_code != 200:
            raise RequestFailedError(
                f"radarr {action}: radarr API error {response.status_code}",
                status_code=response.status_code,
                response_body=safe_json(response),
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RequestFailedError(f"radarr {action}: invalid JSON response") from exc


def to_media_status(movie: dict[str, Any]) -> MediaStatus:
    if movie.get("hasFile"):
        status = "downloaded"
    elif movie.get("monitored"):
        status = "wanted"
    else:
        status = "unmonitored"
    return MediaStatus(item_id=str(movie.get("id", "")), status=status)
