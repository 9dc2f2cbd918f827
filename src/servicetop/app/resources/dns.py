"""Cloudflare DNS record descriptor.

Unlike the AWS kinds this is not signed with SigV4; ``endpoint`` is the path
relative to the Cloudflare API root and the DNS client adds the auth headers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from .base import HttpMethod, json_body


@dataclass(frozen=True, slots=True)
class DnsRecord:
    """Proxied CNAME ``{name}.{suffix}`` pointing at the shared ingress."""

    kind: ClassVar[str] = 'dns_record'
    service: ClassVar[str] = 'cloudflare'

    name: str
    zone_id: str
    target: str
    suffix: str = 'cuckoo'

    def endpoint(self) -> str:
        return f'v4/zones/{self.zone_id}/dns_records'

    def method(self) -> HttpMethod:
        return 'POST'

    def headers(self) -> dict[str, str]:
        return {'Content-Type': 'application/json'}

    def record(self) -> dict[str, Any]:
        return {
            'type': 'CNAME',
            'name': f'{self.name}.{self.suffix}',
            'content': self.target,
            'proxied': True,
            'ttl': 1,
        }

    def body(self) -> bytes:
        return json_body(self.record())
