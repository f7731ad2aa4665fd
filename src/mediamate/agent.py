from __future__ import annotations

import asyncio
import logging

from .protocol import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_USER,
    LanguageModel,
    MediaBackend,
    MediaServer,
    Message,
    MetadataProvider,
    Response,
    ToolCall,
    TorrentClient,
)
from .tools import Collaborators, ToolError, dispatch, tool_definitions

LOGGER = logging.getLogger(__name__)

# Consecutive tool-call rounds allowed for a single user message.
MAX_TOOL_ITERATIONS = 10

SYSTEM_PROMPT = """You are MediaMate, a helpful AI assistant for managing a personal media server.
You help users search for movies, get recommendations, check download status, and manage their media library.

When a user asks about a movie, use the search_movie tool to find it.
When they want to download something, use download_movie with the TMDb ID.
When they want recommendations, use recommend_similar.
When they ask about active downloads, use list_downloads.
When they ask if a movie is available to watch, use check_availability.
When they want a link to watch a movie, use get_watch_link.

Be concise but friendly. Format movie information clearly with title, year, and rating.
When presenting search results, number them for easy reference."""


class AgentError(RuntimeError):
    pass


class ModelCallError(AgentError):
    pass


class IterationLimitError(AgentError):
    def __init__(self, limit: int):
        super().__init__(f"agent exceeded maximum tool iterations ({limit})")
        self.limit = limit


class Agent:
    """One conversation with the language model and the media tools.

    The history is not safe for concurrent ``handle_message`` calls; callers
    deliver one message at a time per agent.
    """

    def __init__(
        self,
        llm: LanguageModel,
        *,
        metadata: MetadataProvider | None = None,
        backend: MediaBackend | None = None,
        torrent: TorrentClient | None = None,
        media_server: MediaServer | None = None,
        max_iterations: int = MAX_TOOL_ITERATIONS,
    ):
        self._llm = llm
        self._collaborators = Collaborators(
            metadata=metadata,
            backend=backend,
            torrent=torrent,
            media_server=media_server,
        )
        self._tools = tool_definitions()
        self._max_iterations = max_iterations
        self._history: list[Message] = [_system_message()]
        self._active_turns = 0
        self._close_requested = False
        self._closed = False

    @property
    def history(self) -> list[Message]:
        return list(self._history)

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    async def handle_message(self, user_message: str) -> str:
        self._active_turns += 1
        try:
            return await self._run_turn(user_message)
        finally:
            self._active_turns -= 1
            if self._active_turns == 0 and self._close_requested:
                await self._release()

    def reset(self) -> None:
        self._history = [_system_message()]

    async def aclose(self) -> None:
        """Release the model and collaborator clients.

        While a turn is still running the release waits for it to finish,
        so dropping a session never breaks a reply already in progress.
        """
        self._close_requested = True
        if self._active_turns:
            LOGGER.debug("deferring close until %d turn(s) finish", self._active_turns)
            return
        await self._release()

    async def _run_turn(self, user_message: str) -> str:
        checkpoint = len(self._history)
        self._history.append(Message(role=ROLE_USER, content=user_message))

        for step_idx in range(self._max_iterations):
            response = await self._chat(checkpoint)

            if not response.tool_calls:
                self._history.append(Message(role=ROLE_ASSISTANT, content=response.content))
                return response.content

            LOGGER.debug(
                "step %d: model requested %d tool call(s)",
                step_idx + 1,
                len(response.tool_calls),
            )
            await self._run_tool_round(response)

        del self._history[checkpoint:]
        LOGGER.warning("tool loop stopped after %d rounds", self._max_iterations)
        raise IterationLimitError(self._max_iterations)

    async def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        for resource in (
            self._llm,
            self._collaborators.metadata,
            self._collaborators.backend,
            self._collaborators.torrent,
            self._collaborators.media_server,
        ):
            close = getattr(resource, "aclose", None)
            if close is None:
                continue
            try:
                await close()
            except Exception:  # noqa: BLE001
                LOGGER.exception("failed to close %s", type(resource).__name__)

    async def _chat(self, checkpoint: int) -> Response:
        try:
            return await self._llm.chat(list(self._history), self._tools)
        except asyncio.CancelledError:
            del self._history[checkpoint:]
            raise
        except Exception as exc:  # noqa: BLE001
            del self._history[checkpoint:]
            raise ModelCallError(f"llm chat: {exc}") from exc

    async def _run_tool_round(self, response: Response) -> None:
        round_start = len(self._history)
        self._history.append(
            Message(
                role=ROLE_ASSISTANT,
                content=response.content,
                tool_calls=list(response.tool_calls),
            )
        )
        try:
            for call in response.tool_calls:
                content, is_error = await self._execute_tool(call)
                self._history.append(
                    Message(
                        role=ROLE_USER,
                        content=content,
                        tool_result_id=call.id,
                        is_error=is_error,
                    )
                )
        except asyncio.CancelledError:
            # Drop the unfinished round so every recorded call keeps its result.
            del self._history[round_start:]
            raise

    async def _execute_tool(self, call: ToolCall) -> tuple[str, bool]:
        LOGGER.debug("executing tool %s args=%s", call.name, call.arguments)
        try:
            return await dispatch(self._collaborators, call), False
        except ToolError as exc:
            LOGGER.info("tool %s failed: %s", call.name, exc)
            return str(exc), True
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("tool %s raised unexpectedly", call.name)
            return f"tool execution failed: {exc}", True


def _system_message() -> Message:
    return Message(role=ROLE_SYSTEM, content=SYSTEM_PROMPT)
