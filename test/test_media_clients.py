from __future__ import annotations

import json
import unittest

import httpx

from mediamate.http_client import RequestFailedError
from mediamate.jellyfin_client import ItemNotFoundError, JellyfinClient
from mediamate.protocol import MediaItem
from mediamate.qbittorrent_client import AuthenticationError, QBittorrentClient, map_state
from mediamate.radarr_client import RadarrClient


class RadarrClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_add_resolves_profile_and_root_folder(self) -> None:
        posted: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(request.headers["X-Api-Key"], "radarr-key")
            if request.url.path == "/api/v3/qualityprofile":
                return httpx.Response(200, json=[{"id": 1, "name": "Any"}, {"id": 4, "name": "HD-1080p"}])
            if request.url.path == "/api/v3/rootfolder":
                return httpx.Response(200, json=[{"id": 1, "path": "/movies"}])
            if request.url.path == "/api/v3/movie" and request.method == "POST":
                posted.append(json.loads(request.content))
                return httpx.Response(201, json={"id": 9})
            return httpx.Response(404)

        client = RadarrClient(
            "http://radarr.local/",
            "radarr-key",
            quality_profile="hd-1080p",
            transport=httpx.MockTransport(handler),
        )
        try:
            await client.add(MediaItem(title="Inception", type="movie", metadata={"tmdbId": "27205"}))
        finally:
            await client.aclose()

        self.assertEqual(len(posted), 1)
        body = posted[0]
        self.assertEqual(body["tmdbId"], 27205)
        self.assertEqual(body["qualityProfileId"], 4)
        self.assertEqual(body["rootFolderPath"], "/movies")
        self.assertTrue(body["monitored"])
        self.assertEqual(body["addOptions"], {"searchForMovie": True})

    async def test_add_requires_tmdb_id(self) -> None:
        client = RadarrClient("http://radarr.local", "k", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        try:
            with self.assertRaisesRegex(ValueError, "tmdbId"):
                await client.add(MediaItem(title="Inception"))
        finally:
            await client.aclose()

    async def test_unknown_quality_profile_fails(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"id": 1, "name": "Any"}])

        client = RadarrClient(
            "http://radarr.local",
            "k",
            quality_profile="Ultra",
            root_folder="/data",
            transport=httpx.MockTransport(handler),
        )
        try:
            with self.assertRaisesRegex(RequestFailedError, "not found"):
                await client.add(MediaItem(title="X", metadata={"tmdbId": "1"}))
        finally:
            await client.aclose()

    async def test_get_status_mapping(self) -> None:
        movies = {
            "1": {"id": 1, "hasFile": True, "monitored": True},
            "2": {"id": 2, "hasFile": False, "monitored": True},
            "3": {"id": 3, "hasFile": False, "monitored": False},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=movies[request.url.path.rsplit("/", 1)[-1]])

        client = RadarrClient("http://radarr.local", "k", transport=httpx.MockTransport(handler))
        try:
            statuses = [(await client.get_status(key)).status for key in ("1", "2", "3")]
        finally:
            await client.aclose()

        self.assertEqual(statuses, ["downloaded", "wanted", "unmonitored"])


class QBittorrentClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_list_logs_in_and_maps_torrents(self) -> None:
        logins = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal logins
            if request.url.path == "/api/v2/auth/login":
                logins += 1
                self.assertIn(b"username=admin", request.content)
                return httpx.Response(200, text="Ok.", headers={"set-cookie": "SID=abc; path=/"})
            if request.url.path == "/api/v2/torrents/info":
                return httpx.Response(
                    200,
                    json=[
                        {
                            "hash": "h1",
                            "name": "Inception.2010",
                            "size": 1000,
                            "progress": 0.5,
                            "state": "stalledDL",
                            "dlspeed": 200,
                            "upspeed": 10,
                            "eta": 8640000,
                        }
                    ],
                )
            return httpx.Response(404)

        client = QBittorrentClient("http://qbit.local", "admin", "secret", transport=httpx.MockTransport(handler))
        try:
            torrents = await client.list()
            await client.list()
        finally:
            await client.aclose()

        self.assertEqual(logins, 1)
        torrent = torrents[0]
        self.assertEqual(torrent.status, "downloading")
        self.assertEqual(torrent.progress, 50.0)
        self.assertEqual(torrent.eta, 0)
        self.assertEqual(torrent.download_speed, 200)

    async def test_relogin_once_on_forbidden(self) -> None:
        logins = 0
        info_calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal logins, info_calls
            if request.url.path == "/api/v2/auth/login":
                logins += 1
                return httpx.Response(200, text="Ok.")
            info_calls += 1
            if info_calls == 1:
                return httpx.Response(403, text="Forbidden")
            return httpx.Response(200, json=[])

        client = QBittorrentClient("http://qbit.local", "admin", "secret", transport=httpx.MockTransport(handler))
        try:
            self.assertEqual(await client.list(), [])
        finally:
            await client.aclose()

        self.assertEqual(logins, 2)
        self.assertEqual(info_calls, 2)

    async def test_rejected_login(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="Fails.")

        client = QBittorrentClient("http://qbit.local", "admin", "bad", transport=httpx.MockTransport(handler))
        try:
            with self.assertRaisesRegex(AuthenticationError, "login failed"):
                await client.list()
        finally:
            await client.aclose()

    def test_state_mapping(self) -> None:
        self.assertEqual(map_state("uploading"), "seeding")
        self.assertEqual(map_state("pausedDL"), "paused")
        self.assertEqual(map_state("missingFiles"), "error")
        self.assertEqual(map_state("moving"), "moving")


class JellyfinClientTests(unittest.IsolatedAsyncioTestCase):
    def _client(self, payload: dict) -> JellyfinClient:
        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(request.headers["X-Emby-Token"], "jf-key")
            self.assertEqual(request.url.params["IncludeItemTypes"], "Movie")
            self.assertEqual(request.url.params["Limit"], "1")
            return httpx.Response(200, json=payload)

        return JellyfinClient("http://jellyfin.local/", "jf-key", transport=httpx.MockTransport(handler))

    async def test_available_and_link(self) -> None:
        client = self._client({"Items": [{"Id": "abc123", "Name": "Inception"}], "TotalRecordCount": 1})
        try:
            self.assertTrue(await client.is_available("Inception"))
            link = await client.get_link("Inception")
        finally:
            await client.aclose()

        self.assertEqual(link, "http://jellyfin.local/web/index.html#!/details?id=abc123")

    async def test_missing_item(self) -> None:
        client = self._client({"Items": [], "TotalRecordCount": 0})
        try:
            self.assertFalse(await client.is_available("Nope"))
            with self.assertRaisesRegex(ItemNotFoundError, "not found"):
                await client.get_link("Nope")
        finally:
            await client.aclose()


if __name__ == "__main__":
    unittest.main()
