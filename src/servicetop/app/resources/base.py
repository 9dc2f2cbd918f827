"""Shared pieces of the resource-descriptor contract.

A resource descriptor is a frozen value object describing exactly one remote
call. Every variant exposes the same four methods so the orchestrator and the
transport can treat all resource kinds uniformly:

    endpoint() -> str          absolute URL
    method()   -> 'GET'|'POST'
    body()     -> bytes | None (None for GET)
    headers()  -> dict[str, str]

Variants also carry two class-level tags: ``kind`` (stable name used in logs,
fakes and tests) and ``service`` (the SigV4 signing name).
"""

from __future__ import annotations

import json
from typing import Any, ClassVar, Literal, Protocol, runtime_checkable
from urllib.parse import urlencode

HttpMethod = Literal['GET', 'POST']

DEPLOYED_BY = 'servicetop'
AMZ_JSON = 'application/x-amz-json-1.1'
ECS_TARGET_PREFIX = 'AmazonEC2ContainerServiceV20141113'


@runtime_checkable
class ResourceDescriptor(Protocol):
    """Common capability of every resource kind."""

    kind: ClassVar[str]
    service: ClassVar[str]

    def endpoint(self) -> str: ...
    def method(self) -> HttpMethod: ...
    def body(self) -> bytes | None: ...
    def headers(self) -> dict[str, str]: ...


def default_headers() -> dict[str, str]:
    return {'Accept': AMZ_JSON}


def ecs_headers(action: str) -> dict[str, str]:
    return {
        'X-Amz-Target': f'{ECS_TARGET_PREFIX}.{action}',
        'Content-Type': AMZ_JSON,
    }


def json_body(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(',', ':')).encode()


def query_url(host: str, params: list[tuple[str, str]]) -> str:
    """Build a Query-API URL; parameter order is kept as given."""
    return f'https://{host}/?{urlencode(params)}'
