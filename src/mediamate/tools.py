from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from .protocol import (
    MediaBackend,
    MediaItem,
    MediaServer,
    MetadataProvider,
    Tool,
    ToolCall,
    TorrentClient,
)

_INT_STRING_PATTERN = re.compile(r"[+-]?\d+")


class ToolError(RuntimeError):
    pass


@dataclass(slots=True)
class Collaborators:
    """Optional capability clients a tool handler may need.

    Any of them may be ``None``; handlers report the absence as a tool error.
    """

    metadata: MetadataProvider | None = None
    backend: MediaBackend | None = None
    torrent: TorrentClient | None = None
    media_server: MediaServer | None = None


ToolHandler = Callable[[Collaborators, dict[str, Any]], Awaitable[str]]


def _tmdb_id_params(description: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "tmdb_id": {"type": "integer", "description": description},
        },
        "required": ["tmdb_id"],
    }


def _title_params(description: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": description},
        },
        "required": ["title"],
    }


TOOL_DEFINITIONS: tuple[Tool, ...] = (
    Tool(
        name="search_movie",
        description=(
            "Search for a movie by title. Returns a list of matching movies "
            "with their TMDb IDs, titles, years, and ratings."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The movie title to search for"},
                "year": {"type": "integer", "description": "Optional release year to filter results"},
            },
            "required": ["query"],
        },
    ),
    Tool(
        name="get_movie_details",
        description=(
            "Get detailed information about a movie by its TMDb ID. "
            "Returns runtime, genres, tagline, full overview, and ratings."
        ),
        parameters=_tmdb_id_params("The TMDb ID of the movie"),
    ),
    Tool(
        name="download_movie",
        description=(
            "Add a movie to the download queue via Radarr. "
            "Searches for releases and starts downloading automatically."
        ),
        parameters={
            "type": "object",
            "properties": {
                "tmdb_id": {"type": "integer", "description": "The TMDb ID of the movie to download"},
                "title": {"type": "string", "description": "The movie title (for display purposes)"},
            },
            "required": ["tmdb_id", "title"],
        },
    ),
    Tool(
        name="get_download_status",
        description=(
            "Check the download status of a movie in Radarr by its Radarr ID. "
            "Returns whether it's wanted or downloaded."
        ),
        parameters={
            "type": "object",
            "properties": {
                "radarr_id": {"type": "integer", "description": "The Radarr ID of the movie"},
            },
            "required": ["radarr_id"],
        },
    ),
    Tool(
        name="recommend_similar",
        description=(
            "Get movie recommendations similar to a given movie. "
            "Returns a list of recommended movies from TMDb."
        ),
        parameters=_tmdb_id_params("The TMDb ID of the movie to get recommendations for"),
    ),
    Tool(
        name="list_downloads",
        description="List all active torrent downloads with their progress, speed, and ETA.",
        parameters={"type": "object", "properties": {}},
    ),
    Tool(
        name="check_availability",
        description="Check if a movie is available to watch on the media server (Jellyfin).",
        parameters=_title_params("The movie title to check availability for"),
    ),
    Tool(
        name="get_watch_link",
        description="Get a direct link to watch a movie on the media server (Jellyfin).",
        parameters=_title_params("The movie title to get the watch link for"),
    ),
)


def tool_definitions() -> list[Tool]:
    return list(TOOL_DEFINITIONS)


async def dispatch(collaborators: Collaborators, call: ToolCall) -> str:
    handler = _HANDLERS.get(call.name)
    if handler is None:
        raise ToolError(f"unknown tool: {call.name}")
    args = call.arguments if isinstance(call.arguments, dict) else {}
    return await handler(collaborators, args)


async def _search_movie(collaborators: Collaborators, args: dict[str, Any]) -> str:
    if collaborators.metadata is None:
        raise ToolError("TMDb client not configured")

    query = _required_str(args, "query", tool_name="search_movie")
    year = extract_int_arg(args, "year") if _has_value(args, "year") else 0

    try:
        movies = await collaborators.metadata.search_movies(query, year)
    except Exception as exc:  # noqa: BLE001
        raise ToolError(f"tmdb search failed: {exc}") from exc
    return _to_json(movies)


async def _get_movie_details(collaborators: Collaborators, args: dict[str, Any]) -> str:
    if collaborators.metadata is None:
        raise ToolError("TMDb client not configured")

    tmdb_id = extract_int_arg(args, "tmdb_id")
    try:
        details = await collaborators.metadata.get_movie(tmdb_id)
    except Exception as exc:  # noqa: BLE001
        raise ToolError(f"tmdb get movie failed: {exc}") from exc
    return _to_json(details)


async def _download_movie(collaborators: Collaborators, args: dict[str, Any]) -> str:
    if collaborators.backend is None:
        raise ToolError("no media backend configured for downloading")

    tmdb_id = extract_int_arg(args, "tmdb_id")
    title = _required_str(args, "title", tool_name="download_movie")
    item = MediaItem(title=title, type="movie", metadata={"tmdbId": str(tmdb_id)})

    try:
        await collaborators.backend.add(item)
    except Exception as exc:  # noqa: BLE001
        raise ToolError(f"failed to add movie: {exc}") from exc
    return _to_json({"status": "added", "title": title, "tmdb_id": tmdb_id})


async def _get_download_status(collaborators: Collaborators, args: dict[str, Any]) -> str:
    if collaborators.backend is None:
        raise ToolError("no media backend configured")

    radarr_id = extract_int_arg(args, "radarr_id")
    try:
        status = await collaborators.backend.get_status(str(radarr_id))
    except Exception as exc:  # noqa: BLE001
        raise ToolError(f"get status failed: {exc}") from exc
    return _to_json(status)


async def _recommend_similar(collaborators: Collaborators, args: dict[str, Any]) -> str:
    if collaborators.metadata is None:
        raise ToolError("TMDb client not configured")

    tmdb_id = extract_int_arg(args, "tmdb_id")
    try:
        movies = await collaborators.metadata.get_recommendations(tmdb_id)
    except Exception as exc:  # noqa: BLE001
        raise ToolError(f"tmdb recommendations failed: {exc}") from exc
    return _to_json(movies)


async def _list_downloads(collaborators: Collaborators, args: dict[str, Any]) -> str:
    del args
    if collaborators.torrent is None:
        raise ToolError("no torrent client configured")

    try:
        torrents = await collaborators.torrent.list()
    except Exception as exc:  # noqa: BLE001
        raise ToolError(f"list torrents failed: {exc}") from exc
    return _to_json(torrents)


async def _check_availability(collaborators: Collaborators, args: dict[str, Any]) -> str:
    if collaborators.media_server is None:
        raise ToolError("no media server configured")

    title = _required_str(args, "title", tool_name="check_availability")
    try:
        available = await collaborators.media_server.is_available(title)
    except Exception as exc:  # noqa: BLE001
        raise ToolError(f"check availability failed: {exc}") from exc
    return _to_json({"title": title, "available": bool(available)})


async def _get_watch_link(collaborators: Collaborators, args: dict[str, Any]) -> str:
    if collaborators.media_server is None:
        raise ToolError("no media server configured")

    title = _required_str(args, "title", tool_name="get_watch_link")
    try:
        link = await collaborators.media_server.get_link(title)
    except Exception as exc:  # noqa: BLE001
        raise ToolError(f"get watch link failed: {exc}") from exc
    return _to_json({"title": title, "link": link})


_HANDLERS: dict[str, ToolHandler] = {
    "search_movie": _search_movie,
    "get_movie_details": _get_movie_details,
    "download_movie": _download_movie,
    "get_download_status": _get_download_status,
    "recommend_similar": _recommend_similar,
    "list_downloads": _list_downloads,
    "check_availability": _check_availability,
    "get_watch_link": _get_watch_link,
}


def extract_int_arg(args: dict[str, Any], key: str) -> int:
    """Read an integer argument the way models actually send them.

    Accepts ints, floats with an integral value and base-10 numeric strings.
    """
    if key not in args:
        raise ToolError(f"{key} is required")

    value = args[key]
    # bool is an int subclass but never a valid id or year.
    if isinstance(value, bool):
        raise ToolError(f"{key} must be a number, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ToolError(f"{key} must be an integer, got {value:g}")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not _INT_STRING_PATTERN.fullmatch(text):
            raise ToolError(f"{key} must be a number: invalid syntax {value!r}")
        return int(text)
    raise ToolError(f"{key} must be a number, got {type(value).__name__}")


def _required_str(args: dict[str, Any], key: str, *, tool_name: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolError(f"{tool_name} requires a '{key}' string argument")
    return value.strip()


def _has_value(args: dict[str, Any], key: str) -> bool:
    return args.get(key) is not None


def _to_json(payload: Any) -> str:
    return json.dumps(_jsonable(payload), ensure_ascii=False, separators=(",", ":"))


def _jsonable(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, (list, tuple)):
        return [_jsonable(item) for item in payload]
    if isinstance(payload, dict):
        return {key: _jsonable(value) for key, value in payload.items()}
    return payload
