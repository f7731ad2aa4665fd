from __future__ import annotations

import json
import unittest
from typing import Any

from mediamate.protocol import MediaItem, MediaStatus, Movie, MovieDetails, Torrent, ToolCall
from mediamate.tools import Collaborators, ToolError, dispatch, extract_int_arg, tool_definitions


class FakeMetadata:
    def __init__(self) -> None:
        self.searches: list[tuple[str, int]] = []

    async def search_movies(self, query: str, year: int = 0) -> list[Movie]:
        self.searches.append((query, year))
        return [Movie(id=27205, title="Inception", release_date="2010-07-15", vote_average=8.4)]

    async def get_movie(self, movie_id: int) -> MovieDetails:
        return MovieDetails(id=movie_id, title="Inception", runtime=148)

    async def get_recommendations(self, movie_id: int) -> list[Movie]:
        raise RuntimeError("tmdb API error 500")


class FakeBackend:
    def __init__(self) -> None:
        self.added: list[MediaItem] = []

    async def add(self, item: MediaItem) -> None:
        self.added.append(item)

    async def get_status(self, item_id: str) -> MediaStatus:
        return MediaStatus(item_id=item_id, status="downloaded")


class FakeTorrents:
    async def list(self) -> list[Torrent]:
        return [Torrent(hash="abc", name="Inception.2010", progress=42.0, status="downloading")]


class FakeMediaServer:
    async def is_available(self, title: str) -> bool:
        return title == "Inception"

    async def get_link(self, title: str) -> str:
        raise RuntimeError(f"jellyfin search: item {title!r} not found")


def _call(name: str, **arguments: Any) -> ToolCall:
    return ToolCall(id="call-1", name=name, arguments=arguments)


class ToolDefinitionTests(unittest.TestCase):
    def test_registry_exposes_eight_tools(self) -> None:
        names = [tool.name for tool in tool_definitions()]
        self.assertEqual(
            names,
            [
                "search_movie",
                "get_movie_details",
                "download_movie",
                "get_download_status",
                "recommend_similar",
                "list_downloads",
                "check_availability",
                "get_watch_link",
            ],
        )

    def test_schemas_declare_required_arguments(self) -> None:
        by_name = {tool.name: tool for tool in tool_definitions()}
        self.assertEqual(by_name["download_movie"].parameters["required"], ["tmdb_id", "title"])
        self.assertEqual(by_name["search_movie"].parameters["required"], ["query"])
        self.assertNotIn("required", by_name["list_downloads"].parameters)


class ExtractIntArgTests(unittest.TestCase):
    def test_accepts_numeric_forms(self) -> None:
        self.assertEqual(extract_int_arg({"id": 42}, "id"), 42)
        self.assertEqual(extract_int_arg({"id": 42.0}, "id"), 42)
        self.assertEqual(extract_int_arg({"id": "42"}, "id"), 42)
        self.assertEqual(extract_int_arg({"id": " -7 "}, "id"), -7)

    def test_rejects_fractional_float(self) -> None:
        with self.assertRaisesRegex(ToolError, "must be an integer"):
            extract_int_arg({"id": 3.14}, "id")

    def test_rejects_missing_and_wrong_types(self) -> None:
        with self.assertRaisesRegex(ToolError, "id is required"):
            extract_int_arg({}, "id")
        with self.assertRaisesRegex(ToolError, "must be a number"):
            extract_int_arg({"id": "forty-two"}, "id")
        with self.assertRaisesRegex(ToolError, "must be a number"):
            extract_int_arg({"id": True}, "id")
        with self.assertRaisesRegex(ToolError, "must be a number"):
            extract_int_arg({"id": [1]}, "id")


class DispatchTests(unittest.IsolatedAsyncioTestCase):
    async def test_unknown_tool(self) -> None:
        with self.assertRaisesRegex(ToolError, "unknown tool: rm_rf"):
            await dispatch(Collaborators(), _call("rm_rf"))

    async def test_missing_collaborators_are_reported(self) -> None:
        expectations = {
            "search_movie": "TMDb client not configured",
            "get_movie_details": "TMDb client not configured",
            "recommend_similar": "TMDb client not configured",
            "download_movie": "no media backend configured for downloading",
            "get_download_status": "no media backend configured",
            "list_downloads": "no torrent client configured",
            "check_availability": "no media server configured",
            "get_watch_link": "no media server configured",
        }
        for name, message in expectations.items():
            with self.subTest(tool=name):
                with self.assertRaises(ToolError) as ctx:
                    await dispatch(Collaborators(), _call(name))
                self.assertEqual(str(ctx.exception), message)

    async def test_search_passes_optional_year(self) -> None:
        metadata = FakeMetadata()
        collaborators = Collaborators(metadata=metadata)

        await dispatch(collaborators, _call("search_movie", query="Inception"))
        await dispatch(collaborators, _call("search_movie", query="Inception", year=None))
        result = await dispatch(collaborators, _call("search_movie", query="Inception", year="2010"))

        self.assertEqual(metadata.searches, [("Inception", 0), ("Inception", 0), ("Inception", 2010)])
        payload = json.loads(result)
        self.assertEqual(payload[0]["id"], 27205)
        self.assertTrue(result.startswith('[{"id":27205,"title":"Inception"'))

    async def test_search_requires_query(self) -> None:
        with self.assertRaisesRegex(ToolError, "search_movie requires a 'query' string argument"):
            await dispatch(Collaborators(metadata=FakeMetadata()), _call("search_movie", query="  "))

    async def test_movie_details(self) -> None:
        result = await dispatch(Collaborators(metadata=FakeMetadata()), _call("get_movie_details", tmdb_id=27205))
        self.assertEqual(json.loads(result)["runtime"], 148)

    async def test_collaborator_failure_is_prefixed(self) -> None:
        with self.assertRaisesRegex(ToolError, "^tmdb recommendations failed: tmdb API error 500"):
            await dispatch(Collaborators(metadata=FakeMetadata()), _call("recommend_similar", tmdb_id=1))

    async def test_download_requires_title(self) -> None:
        backend = FakeBackend()
        with self.assertRaisesRegex(ToolError, "download_movie requires a 'title' string argument"):
            await dispatch(Collaborators(backend=backend), _call("download_movie", tmdb_id=27205))
        self.assertEqual(backend.added, [])

    async def test_download_status_uses_radarr_id(self) -> None:
        result = await dispatch(Collaborators(backend=FakeBackend()), _call("get_download_status", radarr_id=12))
        payload = json.loads(result)
        self.assertEqual(payload["item_id"], "12")
        self.assertEqual(payload["status"], "downloaded")

    async def test_list_downloads(self) -> None:
        result = await dispatch(Collaborators(torrent=FakeTorrents()), _call("list_downloads"))
        payload = json.loads(result)
        self.assertEqual(payload[0]["hash"], "abc")
        self.assertEqual(payload[0]["progress"], 42.0)

    async def test_availability_and_watch_link(self) -> None:
        collaborators = Collaborators(media_server=FakeMediaServer())

        result = await dispatch(collaborators, _call("check_availability", title="Inception"))
        self.assertEqual(json.loads(result), {"title": "Inception", "available": True})

        with self.assertRaisesRegex(ToolError, "^get watch link failed: jellyfin search"):
            await dispatch(collaborators, _call("get_watch_link", title="Alien"))


if __name__ == "__main__":
    unittest.main()
