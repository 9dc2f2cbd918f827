"""Process-wide ``httpx.AsyncClient`` shared by the provider clients.

Clients take an explicit ``http_client`` in tests; production code falls back
to this single pooled client.
"""

from __future__ import annotations

import httpx

_shared_async_client: httpx.AsyncClient | None = None


def shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


def _reset_shared_async_client_for_tests() -> None:
    global _shared_async_client
    _shared_async_client = None
