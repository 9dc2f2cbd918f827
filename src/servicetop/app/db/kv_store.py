"""Cloudflare Workers KV-backed key-value store.

Implements the KeyValueStore protocol using CloudflareClient against a single
KV namespace. Holds the listener-rule priority counter between runs.

Reads and writes are independent requests with no compare-and-swap; the last
writer wins. Callers must treat stored values as hints.
"""

from __future__ import annotations

from ..providers.cloudflare_client import CloudflareClient


class CloudflareKVStore:
    """Satisfies the ``KeyValueStore`` protocol from ``protocols.py``."""

    def __init__(
        self,
        client: CloudflareClient,
        *,
        account_id: str,
        namespace_id: str,
    ) -> None:
        self._client = client
        self._account_id = account_id
        self._namespace_id = namespace_id

    async def get(self, key: str) -> str | None:
        return await self._client.kv_get(self._account_id, self._namespace_id, key)

    async def put(self, key: str, value: str) -> None:
        await self._client.kv_put(self._account_id, self._namespace_id, key, value)
