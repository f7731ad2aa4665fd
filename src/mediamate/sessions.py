from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Hashable, Iterable, Protocol, TypeVar

LOGGER = logging.getLogger(__name__)


class SessionResource(Protocol):
    async def aclose(self) -> None: ...


SessionT = TypeVar("SessionT", bound=SessionResource)


class SessionManager(Generic[SessionT]):
    """Maps user identities to one lazily created session each.

    The lock only guards the mapping. Factories run outside it, so a slow
    session build for one user never delays another user's request.
    """

    def __init__(self, allowed_user_ids: Iterable[Hashable] | None = None):
        self._allowed = frozenset(allowed_user_ids or ())
        self._sessions: dict[Hashable, SessionT] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def is_allowed(self, user_id: Hashable) -> bool:
        if not self._allowed:
            return True
        return user_id in self._allowed

    async def get_or_create(
        self,
        user_id: Hashable,
        factory: Callable[[], Awaitable[SessionT | None]],
    ) -> SessionT | None:
        async with self._lock:
            existing = self._sessions.get(user_id)
        if existing is not None:
            return existing

        created = await factory()
        if created is None:
            LOGGER.warning("session factory failed for user %s", user_id)
            return None

        async with self._lock:
            existing = self._sessions.get(user_id)
            if existing is None:
                self._sessions[user_id] = created
                LOGGER.info("created session for user %s", user_id)
                return created

        # Another request for the same user installed its session first.
        await _close_quietly(created)
        return existing

    async def reset(self, user_id: Hashable) -> bool:
        async with self._lock:
            removed = self._sessions.pop(user_id, None)
        if removed is None:
            return False
        LOGGER.info("reset session for user %s", user_id)
        await _close_quietly(removed)
        return True

    async def aclose(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await _close_quietly(session)


async def _close_quietly(session: SessionResource) -> None:
    try:
        await session.aclose()
    except Exception:  # noqa: BLE001
        LOGGER.exception("failed to close session")
