"""EC2 subnet lookup for the workspace VPC."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from .base import HttpMethod, default_headers, query_url

EC2_API_VERSION = '2016-11-15'


@dataclass(frozen=True, slots=True)
class Subnet:
    """Private subnets (no public IP on launch) of ``vpc_id``."""

    kind: ClassVar[str] = 'subnet'
    service: ClassVar[str] = 'ec2'

    name: str
    region: str
    vpc_id: str

    def endpoint(self) -> str:
        return query_url(f'ec2.{self.region}.amazonaws.com', [
            ('Action', 'DescribeSubnets'),
            ('Filter.1.Name', 'vpc-id'),
            ('Filter.1.Value.1', self.vpc_id),
            ('Filter.2.Name', 'map-public-ip-on-launch'),
            ('Filter.2.Value.1', 'false'),
            ('Version', EC2_API_VERSION),
        ])

    def method(self) -> HttpMethod:
        return 'GET'

    def headers(self) -> dict[str, str]:
        return default_headers()

    def body(self) -> None:
        return None
