from __future__ import annotations

import asyncio
import json
import os
import random
from dataclasses import dataclass

import httpx

from cellcheck.core.config import get_float_env, get_int_env

from .errors import CellcheckHTTPNetworkError, CellcheckHTTPStatusError

RATE_LIMITED = 429
_TRANSIENT_STATUSES = frozenset({500, 502, 503, 504})
_RETRYABLE_EXCEPTIONS = (httpx.ConnectError, httpx.ReadTimeout, httpx.RemoteProtocolError)


@dataclass(frozen=True)
class RetryPolicy:
    retries: int = 2
    backoff_base_s: float = 0.25
    backoff_max_s: float = 2.0
    retry_rate_limited: bool = True

    @classmethod
    def from_env(cls, retries: int | None = None, *, retry_rate_limited: bool = True) -> "RetryPolicy":
        return cls(
            retries=get_int_env("CELLCHECK_HTTP_RETRIES", 2) if retries is None else max(0, retries),
            backoff_base_s=get_float_env("CELLCHECK_HTTP_BACKOFF_BASE_S", 0.25, minimum=0.01),
            backoff_max_s=get_float_env("CELLCHECK_HTTP_BACKOFF_MAX_S", 2.0, minimum=0.01),
            retry_rate_limited=retry_rate_limited,
        )

    def should_retry(self, status_code: int) -> bool:
        if status_code == RATE_LIMITED:
            return self.retry_rate_limited
        return status_code in _TRANSIENT_STATUSES

    def delay_s(self, attempt: int) -> float:
        return min(self.backoff_max_s, self.backoff_base_s * (2**attempt)) * (0.5 + random.random())


def build_timeout(total_s: float | None = None) -> httpx.Timeout:
    total = total_s if total_s is not None else get_float_env("CELLCHECK_HTTP_TIMEOUT_S", 15.0)
    total = max(0.1, total)
    connect = get_float_env("CELLCHECK_HTTP_CONNECT_TIMEOUT_S", 5.0, minimum=0.1)
    return httpx.Timeout(total, connect=min(connect, total))


def build_http_client(base_url: str, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=build_timeout(),
        headers={
            "User-Agent": os.getenv("CELLCHECK_HTTP_USER_AGENT", "cellcheck/1.0"),
            "Content-Type": "application/json",
        },
        transport=transport,
    )


def error_message(response: httpx.Response) -> str:
    """Prefer the ``error`` field of a JSON error body, else the raw text."""
    text = response.text
    fallback = text or response.reason_phrase or f"HTTP {response.status_code}"
    try:
        payload = json.loads(text)
    except ValueError:
        return fallback
    if isinstance(payload, dict) and payload.get("error"):
        error = payload["error"]
        return error if isinstance(error, str) else json.dumps(error)
    return fallback


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    json: object | None = None,
    params: dict[str, str] | None = None,
    timeout_override: float | None = None,
    retries: int | None = None,
    retry_rate_limited: bool = True,
) -> httpx.Response:
    policy = RetryPolicy.from_env(retries, retry_rate_limited=retry_rate_limited)
    timeout = build_timeout(timeout_override) if timeout_override is not None else httpx.USE_CLIENT_DEFAULT

    attempt = 0
    while True:
        try:
            response = await client.request(method, url, json=json, params=params, timeout=timeout)
        except _RETRYABLE_EXCEPTIONS as exc:
            if attempt >= policy.retries:
                raise CellcheckHTTPNetworkError(
                    f"HTTP request failed after retries for {url}: {exc.__class__.__name__}"
                ) from exc
        except httpx.HTTPError as exc:
            raise CellcheckHTTPNetworkError(f"HTTP request error for {url}: {exc.__class__.__name__}") from exc
        else:
            status = response.status_code
            if 200 <= status < 300:
                return response
            if not policy.should_retry(status) or attempt >= policy.retries:
                raise CellcheckHTTPStatusError(f"HTTP {status}: {error_message(response)}", status_code=status)
        await _sleep_for_retry(policy, attempt)
        attempt += 1


async def _sleep_for_retry(policy: RetryPolicy, attempt: int) -> None:
    await asyncio.sleep(policy.delay_s(attempt))
