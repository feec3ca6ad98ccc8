"""
Process-wide httpx.AsyncClient for outbound Strava calls (token endpoint and API).
Created in the app lifespan so requests share one connection pool; every call is bounded by its timeout.
"""
from __future__ import annotations

import httpx

from runsync.config import Settings

USER_AGENT = "runsync/0.1"

_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    if _http_client is None:
        raise RuntimeError("HTTP client not initialized; ensure app lifespan has run init_http_client().")
    return _http_client


def init_http_client(settings: Settings) -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_seconds),
            headers={"User-Agent": USER_AGENT},
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
