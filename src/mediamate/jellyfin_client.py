from __future__ import annotations

import logging
from typing import Any

import httpx

from .http_client import RequestFailedError, RetryingClient

LOGGER = logging.getLogger(__name__)


class ItemNotFoundError(RuntimeError):
    pass


class JellyfinClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_seconds: float = 30,
        retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url:
            raise ValueError("base_url is required")
        self._base_url = base_url.rstrip("/")
        self._http = RetryingClient(
            name="jellyfin",
            base_url=self._base_url,
            timeout_seconds=timeout_seconds,
            retries=retries,
            headers={"X-Emby-Token": api_key, "Accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def is_available(self, title: str) -> bool:
        payload = await self._search(title)
        return int(payload.get("TotalRecordCount") or 0) > 0

    async def get_link(self, title: str) -> str:
        payload = await self._search(title)
        items = payload.get("Items") or []
        if not int(payload.get("TotalRecordCount") or 0) or not items:
            raise ItemNotFoundError(f"jellyfin search: item {title!r} not found")
        item_id = items[0].get("Id", "")
        return f"{self._base_url}/web/index.html#!/details?id={item_id}"

    async def _search(self, title: str) -> dict[str, Any]:
        params = {
            "SearchTerm": title,
            "IncludeItemTypes": "Movie",
            "Recursive": "true",
            "Limit": "1",
        }
        response = await self._http.request("GET", "/Items", action="search items", params=params)
        if response.status_code != 200:
            raise RequestFailedError(
                f"jellyfin search: jellyfin API error {response.status_code}",
                status_code=response.status_code,
                response_body={"raw_text": response.text[:4096]},
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise RequestFailedError("jellyfin search: invalid JSON response") from exc
        if not isinstance(payload, dict):
            raise RequestFailedError("jellyfin search: unexpected response shape")
        return payload
