from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any

import httpx

LOGGER = logging.getLogger(__name__)

_IDEMPOTENT_METHODS = {"GET", "HEAD", "PUT", "DELETE", "OPTIONS"}
_RETRYABLE_STATUS_CODES = {500, 502, 503, 504}


class RequestFailedError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_body: Any | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    def __str__(self) -> str:
        base = super().__str__()
        details = _extract_error_detail(self.response_body)
        if self.status_code is not None:
            base = f"{base} (status: {self.status_code})"
        if details:
            base = f"{base}: {details}"
        return base


class RetryingClient:
    """httpx.AsyncClient wrapper with retries, backoff and request logging.

    Every method is retried on 429. Idempotent methods are also retried on
    500/502/503/504 and on transport errors; POST and PATCH are not, so a
    request with side effects is never sent twice.
    """

    def __init__(
        self,
        *,
        name: str,
        base_url: str = "",
        timeout_seconds: float = 30,
        retries: int = 3,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 10.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._name = name
        self._attempts = max(retries, 0) + 1
        self._base_delay = base_delay_seconds
        self._max_delay = max_delay_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        action: str,
        **kwargs: Any,
    ) -> httpx.Response:
        method = method.upper()
        idempotent = method in _IDEMPOTENT_METHODS
        last_response: httpx.Response | None = None

        for attempt in range(self._attempts):
            if attempt > 0:
                await asyncio.sleep(self._retry_delay(attempt, last_response))

            started_at = time.perf_counter()
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.RequestError as exc:
                duration_ms = int((time.perf_counter() - started_at) * 1000)
                self._log_request(action, url, None, duration_ms, error_code=exc.__class__.__name__)
                if not idempotent or attempt >= self._attempts - 1:
                    raise RequestFailedError(
                        f"Network error talking to {self._name}: {_request_error_message(exc)}"
                    ) from exc
                last_response = None
                continue

            duration_ms = int((time.perf_counter() - started_at) * 1000)
            self._log_request(action, url, response.status_code, duration_ms, error_code=None)

            if _should_retry(response.status_code, idempotent) and attempt < self._attempts - 1:
                last_response = response
                continue
            return response

        raise RequestFailedError(f"Unexpected retry flow talking to {self._name}")

    def _retry_delay(self, attempt: int, last_response: httpx.Response | None) -> float:
        delay = min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)
        delay += delay * 0.2 * random.random()
        retry_after = _retry_after_seconds(last_response)
        if retry_after > delay:
            delay = retry_after
        return min(delay, self._max_delay)

    def _log_request(
        self,
        action: str,
        endpoint: str,
        status_code: int | None,
        duration_ms: int,
        error_code: str | None,
    ) -> None:
        payload = {
            "timestamp": _utc_now_iso(),
            "client": self._name,
            "action": action,
            "endpoint": endpoint,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "error_code": error_code,
        }
        LOGGER.info(json.dumps(payload, ensure_ascii=True))


def safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw_text": response.text[:500]}


def _should_retry(status_code: int, idempotent: bool) -> bool:
    if status_code == 429:
        return True
    return idempotent and status_code in _RETRYABLE_STATUS_CODES


def _retry_after_seconds(response: httpx.Response | None) -> float:
    if response is None:
        return 0.0
    value = response.headers.get("Retry-After", "").strip()
    if not value.isdigit():
        return 0.0
    return float(value)


def _request_error_message(exc: httpx.RequestError) -> str:
    error_type = exc.__class__.__name__
    detail = str(exc).strip()
    target = ""
    try:
        target = str(exc.request.url)
    except RuntimeError:
        target = ""
    message = f"{error_type} while requesting {target}" if target else error_type
    if detail and detail != error_type:
        message = f"{message}: {detail}"
    return message


def _extract_error_detail(payload: Any) -> str | None:
    if isinstance(payload, dict):
        for key in ("detail", "error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        raw = payload.get("raw_text")
        if isinstance(raw, str) and raw.strip():
            return raw.strip()
    return None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
