"""ELBv2 descriptors: target group and host-header listener rule.

Both use the Query API; every parameter travels in the URL and the POST body
is empty.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from .base import DEPLOYED_BY, HttpMethod, default_headers, query_url

ELB_API_VERSION = '2015-12-01'
AUTH_HEADER_NAME = 'x-st-auth'
CONTAINER_PORT = 3000


def _elb_host(region: str) -> str:
    return f'elasticloadbalancing.{region}.amazonaws.com'


@dataclass(frozen=True, slots=True)
class TargetGroup:
    kind: ClassVar[str] = 'target_group'
    service: ClassVar[str] = 'elasticloadbalancing'

    name: str
    region: str
    vpc_id: str

    def endpoint(self) -> str:
        return query_url(_elb_host(self.region), [
            ('Action', 'CreateTargetGroup'),
            ('Name', self.name),
            ('TargetType', 'ip'),
            ('Protocol', 'HTTP'),
            ('Port', str(CONTAINER_PORT)),
            ('VpcId', self.vpc_id),
            ('Version', ELB_API_VERSION),
        ])

    def method(self) -> HttpMethod:
        return 'POST'

    def headers(self) -> dict[str, str]:
        return default_headers()

    def body(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class ListenerRule:
    """Forward ``host`` to the target group when the shared auth header matches.

    ``priority`` is part of the value: the allocator derives a new descriptor
    per candidate with ``dataclasses.replace``.
    """

    kind: ClassVar[str] = 'listener_rule'
    service: ClassVar[str] = 'elasticloadbalancing'

    host: str
    region: str
    listener_arn: str
    target_group_arn: str
    auth_token: str
    priority: int = 1

    def endpoint(self) -> str:
        return query_url(_elb_host(self.region), [
            ('Action', 'CreateRule'),
            ('ListenerArn', self.listener_arn),
            ('Priority', str(self.priority)),
            ('Conditions.member.1.Field', 'host-header'),
            ('Conditions.member.1.Values.member.1', self.host),
            ('Conditions.member.2.Field', 'http-header'),
            ('Conditions.member.2.HttpHeaderConfig.HttpHeaderName', AUTH_HEADER_NAME),
            ('Conditions.member.2.HttpHeaderConfig.Values.member.1', self.auth_token),
            ('Actions.member.1.Type', 'forward'),
            ('Actions.member.1.TargetGroupArn', self.target_group_arn),
            ('Tags.member.1.Key', 'deployed-by'),
            ('Tags.member.1.Value', DEPLOYED_BY),
            ('Version', ELB_API_VERSION),
        ])

    def method(self) -> HttpMethod:
        return 'POST'

    def headers(self) -> dict[str, str]:
        return default_headers()

    def body(self) -> None:
        return None
