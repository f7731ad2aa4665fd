from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from .http_client import RequestFailedError, RetryingClient, safe_json
from .protocol import Movie, MovieDetails

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.themoviedb.org/3"
CACHE_TTL_SECONDS = 15 * 60


class TTLCache:
    """Small expiring key/value store; expired entries are dropped on read."""

    # Full sweep of expired entries every this many writes.
    _SWEEP_EVERY = 100

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._writes = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() > expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        now = self._clock()
        self._writes += 1
        if self._writes % self._SWEEP_EVERY == 0:
            expired = [k for k, (expires_at, _) in self._entries.items() if now > expires_at]
            for k in expired:
                del self._entries[k]
        self._entries[key] = (now + self._ttl, value)


class TMDbClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        cache_ttl_seconds: float = CACHE_TTL_SECONDS,
        timeout_seconds: float = 30,
        retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._cache = TTLCache(cache_ttl_seconds, clock=clock)
        self._http = RetryingClient(
            name="tmdb",
            base_url=base_url.rstrip("/"),
            timeout_seconds=timeout_seconds,
            retries=retries,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def search_movies(self, query: str, year: int = 0) -> list[Movie]:
        cache_key = f"search:{query}:{year}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        params: dict[str, Any] = {"query": query}
        if year > 0:
            params["year"] = str(year)
        payload = await self._get("/search/movie", params, action="search movies")
        movies = _parse_movies(payload)
        self._cache.set(cache_key, movies)
        return movies

    async def get_movie(self, movie_id: int) -> MovieDetails:
        cache_key = f"movie:{movie_id}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        payload = await self._get(f"/movie/{movie_id}", None, action=f"get movie {movie_id}")
        details = MovieDetails.model_validate(payload)
        self._cache.set(cache_key, details)
        return details

    async def get_recommendations(self, movie_id: int) -> list[Movie]:
        return await self._movie_list(
            f"recs:{movie_id}",
            f"/movie/{movie_id}/recommendations",
            action=f"get recommendations for {movie_id}",
        )

    async def _movie_list(self, cache_key: str, path: str, *, action: str) -> list[Movie]:
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        payload = await self._get(path, None, action=action)
        movies = _parse_movies(payload)
        self._cache.set(cache_key, movies)
        return movies

    async def _get(self, path: str, params: dict[str, Any] | None, *, action: str) -> Any:
        query = {"api_key": self._api_key}
        if params:
            query.update(params)

        response = await self._http.request("GET", path, action=action, params=query)
        if response.status_code != 200:
            raise RequestFailedError(
                f"{action}: tmdb API error {response.status_code}",
                status_code=response.status_code,
                response_body=safe_json(response),
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RequestFailedError(f"{action}: invalid JSON from tmdb") from exc


def _parse_movies(payload: Any) -> list[Movie]:
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list):
        return []
    return [Movie.model_validate(item) for item in results if isinstance(item, dict)]
