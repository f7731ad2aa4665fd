from __future__ import annotations

import asyncio
import unittest

from mediamate.agent import Agent
from mediamate.protocol import Message, Response, Tool
from mediamate.sessions import SessionManager


class FakeSession:
    def __init__(self, label: str) -> None:
        self.label = label
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


class HeldModel:
    name = "held"

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.closed = False

    async def chat(self, messages: list[Message], tools: list[Tool]) -> Response:
        del messages, tools
        self.entered.set()
        await self.release.wait()
        if self.closed:
            raise RuntimeError("Cannot send a request, as the client has been closed.")
        return Response(content="Found it.", done=True)

    async def aclose(self) -> None:
        self.closed = True


class CountingFactory:
    def __init__(self) -> None:
        self.built: list[FakeSession] = []

    async def __call__(self) -> FakeSession:
        await asyncio.sleep(0)
        session = FakeSession(f"s{len(self.built)}")
        self.built.append(session)
        return session


class SessionManagerTests(unittest.IsolatedAsyncioTestCase):
    async def test_empty_allow_list_allows_everyone(self) -> None:
        sessions: SessionManager[FakeSession] = SessionManager()
        self.assertTrue(sessions.is_allowed("anyone"))
        self.assertTrue(sessions.is_allowed(12345))

    async def test_allow_list_restricts(self) -> None:
        sessions: SessionManager[FakeSession] = SessionManager(["alice", "bob"])
        self.assertTrue(sessions.is_allowed("alice"))
        self.assertFalse(sessions.is_allowed("mallory"))

    async def test_same_user_gets_same_session(self) -> None:
        sessions: SessionManager[FakeSession] = SessionManager()
        factory = CountingFactory()

        first = await sessions.get_or_create("alice", factory)
        second = await sessions.get_or_create("alice", factory)

        self.assertIs(first, second)
        self.assertEqual(len(factory.built), 1)

    async def test_distinct_users_get_distinct_sessions_concurrently(self) -> None:
        sessions: SessionManager[FakeSession] = SessionManager()
        factory = CountingFactory()

        alice, bob = await asyncio.gather(
            sessions.get_or_create("alice", factory),
            sessions.get_or_create("bob", factory),
        )

        self.assertIsNot(alice, bob)
        self.assertEqual(len(sessions), 2)

    async def test_concurrent_creation_keeps_one_and_closes_loser(self) -> None:
        sessions: SessionManager[FakeSession] = SessionManager()
        factory = CountingFactory()

        results = await asyncio.gather(
            sessions.get_or_create("alice", factory),
            sessions.get_or_create("alice", factory),
        )

        self.assertIs(results[0], results[1])
        self.assertEqual(len(factory.built), 2)
        losers = [s for s in factory.built if s is not results[0]]
        self.assertEqual(len(losers), 1)
        self.assertTrue(losers[0].closed)
        self.assertFalse(results[0].closed)

    async def test_failed_factory_is_not_cached(self) -> None:
        sessions: SessionManager[FakeSession] = SessionManager()
        attempts = 0

        async def flaky() -> FakeSession | None:
            nonlocal attempts
            attempts += 1
            return None if attempts == 1 else FakeSession("ok")

        self.assertIsNone(await sessions.get_or_create("alice", flaky))
        self.assertEqual(len(sessions), 0)
        session = await sessions.get_or_create("alice", flaky)
        self.assertIsNotNone(session)
        self.assertEqual(attempts, 2)

    async def test_reset_drops_and_closes_session(self) -> None:
        sessions: SessionManager[FakeSession] = SessionManager()
        factory = CountingFactory()
        first = await sessions.get_or_create("alice", factory)

        self.assertTrue(await sessions.reset("alice"))
        self.assertFalse(await sessions.reset("alice"))

        self.assertTrue(first.closed)
        second = await sessions.get_or_create("alice", factory)
        self.assertIsNot(first, second)

    async def test_reset_during_turn_lets_the_turn_finish(self) -> None:
        model = HeldModel()
        sessions: SessionManager[Agent] = SessionManager()

        async def factory() -> Agent:
            return Agent(model)

        agent = await sessions.get_or_create("alice", factory)
        turn = asyncio.create_task(agent.handle_message("find Inception"))
        await model.entered.wait()

        self.assertTrue(await sessions.reset("alice"))
        self.assertFalse(model.closed)
        model.release.set()

        self.assertEqual(await turn, "Found it.")
        self.assertTrue(model.closed)
        self.assertEqual(len(sessions), 0)

    async def test_aclose_releases_everything(self) -> None:
        sessions: SessionManager[FakeSession] = SessionManager()
        factory = CountingFactory()
        await sessions.get_or_create("alice", factory)
        await sessions.get_or_create("bob", factory)

        await sessions.aclose()

        self.assertEqual(len(sessions), 0)
        self.assertTrue(all(s.closed for s in factory.built))


if __name__ == "__main__":
    unittest.main()
