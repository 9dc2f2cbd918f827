"""Collaborator protocol interfaces for dependency injection.

These protocols define the contracts that concrete implementations (InMemory
for local dev and tests, AWS/Cloudflare for non-local) must satisfy. The app
factory accepts any implementation that matches these protocols.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .provisioning.decoder import RawResponse
from .resources import DnsRecord, ResourceDescriptor


@runtime_checkable
class Transport(Protocol):
    """Sign and execute one resource descriptor against its remote API."""

    async def fetch(self, resource: ResourceDescriptor) -> RawResponse: ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Persisted string key-value store (holds the priority counter)."""

    async def get(self, key: str) -> str | None: ...
    async def put(self, key: str, value: str) -> None: ...


@runtime_checkable
class DnsClient(Protocol):
    """DNS record creation."""

    async def create_record(self, record: DnsRecord) -> dict[str, Any]: ...


@runtime_checkable
class NameGenerator(Protocol):
    """Random human-readable workspace names."""

    def __call__(self) -> str: ...
