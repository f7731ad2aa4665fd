from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"


@dataclass(slots=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Message:
    role: str
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    # Non-empty when this message answers the tool call with that id.
    tool_result_id: str = ""
    is_error: bool = False

    @property
    def is_tool_result(self) -> bool:
        return bool(self.tool_result_id)


@dataclass(frozen=True, slots=True)
class Tool:
    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(slots=True)
class Response:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    done: bool = False


def _null_to_empty(value: Any) -> Any:
    return "" if value is None else value


class Genre(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""


class Movie(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    title: str = ""
    overview: str = ""
    release_date: str = ""
    poster_path: str | None = None
    vote_average: float = 0.0
    genre_ids: list[int] = Field(default_factory=list)

    @field_validator("title", "overview", "release_date", mode="before")
    @classmethod
    def null_strings_to_empty(cls, value: Any) -> Any:
        return _null_to_empty(value)


class MovieDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    title: str = ""
    overview: str = ""
    release_date: str = ""
    poster_path: str | None = None
    vote_average: float = 0.0
    runtime: int | None = None
    status: str = ""
    tagline: str = ""
    imdb_id: str | None = None
    genres: list[Genre] = Field(default_factory=list)

    @field_validator("title", "overview", "release_date", "status", "tagline", mode="before")
    @classmethod
    def null_strings_to_empty(cls, value: Any) -> Any:
        return _null_to_empty(value)


class MediaItem(BaseModel):
    id: str = ""
    title: str = ""
    year: int = 0
    type: str = ""
    description: str = ""
    poster_url: str = ""
    rating: float = 0.0
    metadata: dict[str, str] = Field(default_factory=dict)


class MediaStatus(BaseModel):
    item_id: str
    status: str
    progress: float = 0.0
    eta: int = 0
    quality_profile: str = ""


class Torrent(BaseModel):
    hash: str
    name: str = ""
    size: int = 0
    progress: float = 0.0
    status: str = ""
    download_speed: int = 0
    upload_speed: int = 0
    eta: int = 0


class LanguageModel(Protocol):
    name: str

    async def chat(self, messages: list[Message], tools: list[Tool]) -> Response: ...

    async def aclose(self) -> None: ...


class MetadataProvider(Protocol):
    async def search_movies(self, query: str, year: int = 0) -> list[Movie]: ...

    async def get_movie(self, movie_id: int) -> MovieDetails: ...

    async def get_recommendations(self, movie_id: int) -> list[Movie]: ...


class MediaBackend(Protocol):
    async def add(self, item: MediaItem) -> None: ...

    async def get_status(self, item_id: str) -> MediaStatus: ...


class TorrentClient(Protocol):
    async def list(self) -> list[Torrent]: ...


class MediaServer(Protocol):
    async def is_available(self, title: str) -> bool: ...

    async def get_link(self, title: str) -> str: ...
