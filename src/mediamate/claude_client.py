from __future__ import annotations

import logging
from typing import Any

import httpx

from .http_client import RequestFailedError, RetryingClient, safe_json
from .protocol import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Message, Response, Tool, ToolCall

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 4096
API_VERSION = "2023-06-01"


class ClaudeAPIError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ClaudeClient:
    name = "claude"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "",
        base_url: str = "",
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout_seconds: float = 60,
        retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        self._model = model or DEFAULT_MODEL
        self._max_tokens = max_tokens
        self._http = RetryingClient(
            name="claude",
            base_url=(base_url or DEFAULT_BASE_URL).rstrip("/"),
            timeout_seconds=timeout_seconds,
            retries=retries,
            headers={
                "Content-Type": "application/json",
                "x-api-key": api_key,
                "anthropic-version": API_VERSION,
            },
            transport=transport,
        )

    @property
    def model(self) -> str:
        return self._model

    async def aclose(self) -> None:
        await self._http.aclose()

    async def chat(self, messages: list[Message], tools: list[Tool]) -> Response:
        payload = self.build_request(messages, tools)
        try:
            response = await self._http.request("POST", "/v1/messages", action="chat", json=payload)
        except RequestFailedError as exc:
            raise ClaudeAPIError(f"claude API request: {exc}") from exc

        if response.status_code != 200:
            raise _api_error(response)

        try:
            body = response.json()
        except ValueError as exc:
            raise ClaudeAPIError(f"decode response: {exc}") from exc
        if not isinstance(body, dict):
            raise ClaudeAPIError("decode response: expected a JSON object")

        usage = body.get("usage") or {}
        LOGGER.debug(
            "claude response model=%s stop_reason=%s input_tokens=%s output_tokens=%s",
            body.get("model"),
            body.get("stop_reason"),
            usage.get("input_tokens"),
            usage.get("output_tokens"),
        )
        return parse_response(body)

    def build_request(self, messages: list[Message], tools: list[Tool]) -> dict[str, Any]:
        system, api_messages = convert_messages(messages)
        payload: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": api_messages,
        }
        if system:
            payload["system"] = system
        if tools:
            payload["tools"] = convert_tools(tools)
        return payload


def convert_messages(messages: list[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Translate history into the Messages API shape.

    System messages are joined into the top-level system prompt. Consecutive
    tool results collapse into one user message of ``tool_result`` blocks.
    """
    system_parts: list[str] = []
    api_messages: list[dict[str, Any]] = []
    pending_results: list[dict[str, Any]] = []

    def flush_results() -> None:
        if pending_results:
            api_messages.append({"role": ROLE_USER, "content": list(pending_results)})
            pending_results.clear()

    for message in messages:
        if message.role == ROLE_SYSTEM:
            system_parts.append(message.content)
            continue

        if message.is_tool_result:
            block: dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": message.tool_result_id,
                "content": message.content,
            }
            if message.is_error:
                block["is_error"] = True
            pending_results.append(block)
            continue

        flush_results()

        if message.role == ROLE_ASSISTANT and message.tool_calls:
            api_messages.append(_tool_use_message(message))
            continue

        api_messages.append({"role": message.role, "content": message.content})

    flush_results()
    return "\n\n".join(system_parts), api_messages


def _tool_use_message(message: Message) -> dict[str, Any]:
    blocks: list[dict[str, Any]] = []
    if message.content:
        blocks.append({"type": "text", "text": message.content})
    for call in message.tool_calls:
        blocks.append(
            {
                "type": "tool_use",
                "id": call.id,
                "name": call.name,
                "input": dict(call.arguments),
            }
        )
    return {"role": ROLE_ASSISTANT, "content": blocks}


def convert_tools(tools: list[Tool]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for tool in tools:
        schema: dict[str, Any] = {"type": "object"}
        properties = tool.parameters.get("properties")
        if isinstance(properties, dict) and properties:
            schema["properties"] = properties
        required = tool.parameters.get("required")
        if isinstance(required, (list, tuple)):
            names = [item for item in required if isinstance(item, str)]
            if names:
                schema["required"] = names
        converted.append(
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": schema,
            }
        )
    return converted


def parse_response(body: dict[str, Any]) -> Response:
    result = Response(done=body.get("stop_reason") == "end_turn")
    texts: list[str] = []

    for block in body.get("content") or []:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            texts.append(str(block.get("text", "")))
        elif block_type == "tool_use":
            arguments = block.get("input")
            result.tool_calls.append(
                ToolCall(
                    id=str(block.get("id", "")),
                    name=str(block.get("name", "")),
                    arguments=arguments if isinstance(arguments, dict) else {},
                )
            )

    result.content = "\n".join(texts)
    return result


def _api_error(response: httpx.Response) -> ClaudeAPIError:
    body = safe_json(response)
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        message = f"claude API error {response.status_code}: {error.get('type', '')}: {error['message']}"
    else:
        message = f"claude API error {response.status_code}: {response.text}"
    return ClaudeAPIError(message, status_code=response.status_code)
