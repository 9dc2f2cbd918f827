"""Async client for the Cloudflare v4 API: DNS records and Workers KV values.

JSON endpoints answer with ``{"success", "errors", "messages", "result"}``;
``_unwrap`` is the one place that reads that envelope. KV value reads are the
exception: a hit returns the raw stored value, a missing key returns a 404
envelope.

Retries depend on whether a request can be repeated:

* KV ``GET`` and ``PUT`` are idempotent and retried on 429, 5xx and transport
  errors.
* The DNS record ``POST`` is retried only on 429, which Cloudflare sends
  before doing any work. A 5xx or a dropped connection may still have created
  the record, so it is surfaced to the caller instead of being replayed.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any
from urllib.parse import quote

import httpx

from ..resources import DnsRecord
from .http import shared_async_client

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
_IDEMPOTENT_METHODS = frozenset({"GET", "PUT"})
_TOO_MANY_REQUESTS = 429


class CloudflareAPIError(Exception):
    """Cloudflare answered with an error, or with something that is not JSON."""

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        errors: list[dict[str, Any]] | None = None,
        response_body: str = "",
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.errors = list(errors or [])
        self.response_body = response_body
        super().__init__(f"Cloudflare {status_code}: {message}")

    @property
    def codes(self) -> frozenset[int]:
        return frozenset(e["code"] for e in self.errors if "code" in e)


class CloudflareTransportError(CloudflareAPIError):
    """No response was received (timeout, refused connection, reset)."""

    def __init__(self, message: str) -> None:
        super().__init__(0, message)


def _unwrap(resp: httpx.Response) -> Any:
    """Return the envelope's ``result`` or raise CloudflareAPIError."""
    try:
        payload = resp.json()
    except ValueError as exc:
        raise CloudflareAPIError(
            resp.status_code,
            f"expected a JSON envelope, got {resp.headers.get('content-type', 'no content type')}",
            response_body=resp.text,
        ) from exc
    if not isinstance(payload, dict):
        raise CloudflareAPIError(
            resp.status_code, "expected a JSON object", response_body=resp.text,
        )

    errors = [e for e in payload.get("errors") or [] if isinstance(e, dict)]
    if resp.is_error or payload.get("success") is not True:
        message = "; ".join(
            f"{e.get('code')}: {e.get('message')}" for e in errors
        ) or f"HTTP {resp.status_code}"
        raise CloudflareAPIError(
            resp.status_code, message, errors=errors, response_body=resp.text,
        )
    return payload.get("result")


class CloudflareClient:
    """DNS and Workers KV calls authenticated with an account email + API key."""

    def __init__(
        self,
        *,
        api_key: str,
        email: str,
        base_url: str = "https://api.cloudflare.com/client",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 20.0,
    ) -> None:
        if not api_key or not email:
            raise ValueError("api_key and email are required")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._headers = {"X-Auth-Email": email, "X-Auth-Key": api_key}
        self._base_url = base_url.rstrip("/")
        self._client = http_client or shared_async_client()
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay

    # ── Request loop ─────────────────────────────────────────────

    def _may_retry(self, method: str, status_code: int | None, attempt: int) -> bool:
        # status_code is None when the request never got a response.
        if attempt > self._max_retries:
            return False
        if status_code == _TOO_MANY_REQUESTS:
            return True
        if method not in _IDEMPOTENT_METHODS:
            return False
        return status_code is None or status_code in _RETRYABLE_STATUS

    def _delay(self, attempt: int, retry_after: str | None) -> float:
        try:
            return min(max(float(retry_after or ""), 0.0), self._max_delay)
        except ValueError:
            # Absent, or an HTTP-date: use jittered backoff.
            ceiling = min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)
            return ceiling * random.uniform(0.5, 1.0)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}/{path.lstrip('/')}"
        attempt = 1
        while True:
            try:
                resp = await self._client.request(
                    method, url,
                    headers=self._headers,
                    json=json,
                    content=content,
                    timeout=self._timeout,
                )
            except httpx.HTTPError as exc:
                if not self._may_retry(method, None, attempt):
                    raise CloudflareTransportError(
                        f"{method} {path}: {type(exc).__name__}: {exc}",
                    ) from exc
                reason, delay = type(exc).__name__, self._delay(attempt, None)
            else:
                if not self._may_retry(method, resp.status_code, attempt):
                    return resp
                reason = f"HTTP {resp.status_code}"
                delay = self._delay(attempt, resp.headers.get("retry-after"))

            logger.warning(
                "Cloudflare %s %s failed (%s), retry %d/%d in %.1fs",
                method, path, reason, attempt, self._max_retries, delay,
            )
            await asyncio.sleep(delay)
            attempt += 1

    # ── DNS ──────────────────────────────────────────────────────

    async def create_record(self, record: DnsRecord) -> dict[str, Any]:
        """Create a DNS record and return the envelope's ``result``."""
        resp = await self._send("POST", record.endpoint(), json=record.record())
        result = _unwrap(resp)
        logger.info(
            "DNS record created: name=%s",
            record.record()["name"],
            extra={"workspace_name": record.name},
        )
        return result if isinstance(result, dict) else {"result": result}

    # ── Workers KV ───────────────────────────────────────────────

    @staticmethod
    def _kv_path(account_id: str, namespace_id: str, key: str) -> str:
        return (
            f"v4/accounts/{account_id}/storage/kv/namespaces/"
            f"{namespace_id}/values/{quote(key, safe='')}"
        )

    async def kv_get(self, account_id: str, namespace_id: str, key: str) -> str | None:
        """Read a KV value; None when the key does not exist."""
        resp = await self._send("GET", self._kv_path(account_id, namespace_id, key))
        if resp.status_code == 404:
            return None
        if resp.is_error:
            _unwrap(resp)
        return resp.text

    async def kv_put(
        self, account_id: str, namespace_id: str, key: str, value: str,
    ) -> None:
        resp = await self._send(
            "PUT",
            self._kv_path(account_id, namespace_id, key),
            content=value.encode(),
        )
        _unwrap(resp)
