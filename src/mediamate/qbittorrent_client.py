from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .http_client import RequestFailedError, RetryingClient
from .protocol import Torrent

LOGGER = logging.getLogger(__name__)

# qBittorrent reports this ETA for torrents that will never finish.
ETA_INFINITY = 8640000

_STATE_MAP = {
    "downloading": "downloading",
    "forcedDL": "downloading",
    "stalledDL": "downloading",
    "metaDL": "downloading",
    "allocating": "downloading",
    "queuedDL": "downloading",
    "checkingDL": "downloading",
    "uploading": "seeding",
    "forcedUP": "seeding",
    "stalledUP": "seeding",
    "queuedUP": "seeding",
    "checkingUP": "seeding",
    "pausedDL": "paused",
    "pausedUP": "paused",
    "error": "error",
    "missingFiles": "error",
    "unknown": "error",
}


class AuthenticationError(RuntimeError):
    pass


class QBittorrentClient:
    """qBittorrent Web API v2 client with a cookie session.

    Logs in lazily and logs in again once when a request comes back 403.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        timeout_seconds: float = 30,
        retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url:
            raise ValueError("base_url is required")
        self._username = username
        self._password = password
        self._logged_in = False
        self._login_lock = asyncio.Lock()
        self._http = RetryingClient(
            name="qbittorrent",
            base_url=base_url.rstrip("/"),
            timeout_seconds=timeout_seconds,
            retries=retries,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def list(self) -> list[Torrent]:
        payload = await self._get_json("/api/v2/torrents/info", action="list torrents")
        if not isinstance(payload, list):
            raise RequestFailedError("list torrents: unexpected response shape")
        return [to_torrent(item) for item in payload if isinstance(item, dict)]

    async def _login(self) -> None:
        response = await self._http.request(
            "POST",
            "/api/v2/auth/login",
            action="login",
            data={"username": self._username, "password": self._password},
        )
        body = response.text.strip()
        if response.status_code != 200 or body != "Ok.":
            raise AuthenticationError(f"login failed: status {response.status_code}, body: {body}")
        self._logged_in = True
        LOGGER.debug("qbittorrent login succeeded")

    async def _ensure_logged_in(self) -> None:
        async with self._login_lock:
            if not self._logged_in:
                await self._login()

    async def _relogin(self) -> None:
        async with self._login_lock:
            self._logged_in = False
            try:
                await self._login()
            except AuthenticationError as exc:
                raise AuthenticationError(f"re-login failed: {exc}") from exc

    async def _get_json(self, path: str, *, action: str, params: dict[str, Any] | None = None) -> Any:
        await self._ensure_logged_in()
        response = await self._http.request("GET", path, action=action, params=params)
        if response.status_code == 403:
            LOGGER.info("qbittorrent session expired, logging in again")
            await self._relogin()
            response = await self._http.request("GET", path, action=action, params=params)

        if response.status_code != 200:
            raise RequestFailedError(
                f"{action}: qbittorrent API error {response.status_code}",
                status_code=response.status_code,
                response_body={"raw_text": response.text[:500]},
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RequestFailedError(f"{action}: invalid JSON from qbittorrent") from exc


def map_state(state: str) -> str:
    return _STATE_MAP.get(state, state)


def to_torrent(item: dict[str, Any]) -> Torrent:
    eta = int(item.get("eta") or 0)
    if eta >= ETA_INFINITY:
        eta = 0
    return Torrent(
        hash=str(item.get("hash", "")),
        name=str(item.get("name", "")),
        size=int(item.get("size") or 0),
        progress=float(item.get("progress") or 0.0) * 100,
        status=map_state(str(item.get("state", ""))),
        download_speed=int(item.get("dlspeed") or 0),
        upload_speed=int(item.get("upspeed") or 0),
        eta=eta,
    )
