"""In-memory collaborator implementations for local development and tests.

These are used when ENVIRONMENT=local. They satisfy the protocol interfaces
but keep everything in dicts (no persistence across restarts). The fake cloud
answers in the same dialects as AWS (XML for ELBv2/EC2, JSON for EFS/ECS) so
the real decoder and workflows run unchanged against it.
"""

from __future__ import annotations

import hashlib
import json
from collections import deque
from typing import Any, Iterable

from .provisioning.decoder import RawResponse
from .resources import DnsRecord, ResourceDescriptor

_XMLNS = {
    'elb': 'http://elasticloadbalancing.amazonaws.com/doc/2015-12-01/',
    'ec2': 'http://ec2.amazonaws.com/doc/2016-11-15/',
}


# ── Response builders ───────────────────────────────────────────────


def json_response(status_code: int, payload: Any) -> RawResponse:
    return RawResponse(
        status_code=status_code,
        headers={'content-type': 'application/json'},
        body=json.dumps(payload).encode(),
    )


def xml_response(status_code: int, text: str) -> RawResponse:
    return RawResponse(
        status_code=status_code,
        headers={'content-type': 'text/xml'},
        body=text.encode(),
    )


def text_response(status_code: int, text: str) -> RawResponse:
    return RawResponse(
        status_code=status_code,
        headers={'content-type': 'text/plain'},
        body=text.encode(),
    )


def xml_error(code: str, message: str = '', status_code: int = 400) -> RawResponse:
    return xml_response(status_code, (
        f'<ErrorResponse xmlns="{_XMLNS["elb"]}">'
        f'<Error><Type>Sender</Type><Code>{code}</Code>'
        f'<Message>{message}</Message></Error>'
        '<RequestId>00000000-0000-0000-0000-000000000000</RequestId>'
        '</ErrorResponse>'
    ))


def json_error(code: str, message: str = '', status_code: int = 400) -> RawResponse:
    return json_response(status_code, {'ErrorCode': code, 'Message': message})


def _short_hash(value: str) -> str:
    return hashlib.sha1(value.encode()).hexdigest()[:17]


# ── Key-value store ─────────────────────────────────────────────────


class InMemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self.writes: list[tuple[str, str]] = []

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def put(self, key: str, value: str) -> None:
        self._values[key] = value
        self.writes.append((key, value))


# ── DNS ─────────────────────────────────────────────────────────────


class InMemoryDnsClient:
    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []

    async def create_record(self, record: DnsRecord) -> dict[str, Any]:
        created = {'id': _short_hash(record.record()['name']), **record.record()}
        self.records.append(created)
        return created


# ── Cloud transport ─────────────────────────────────────────────────


class InMemoryCloudTransport:
    """Fake AWS control planes keyed on descriptor ``kind``.

    Behavior knobs:
      claimed_priorities  listener priorities already taken; CreateRule at one
                          of them answers ``PriorityInUse``.
      not_ready_times     number of initial mount-target submissions answered
                          with ``IncorrectFileSystemLifeCycleState``.
      failures            kind -> response returned instead of success.
      scripted            kind -> queue of responses served before the fakes.

    Every call is appended to ``calls`` as ``(kind, descriptor)``.
    """

    def __init__(
        self,
        *,
        subnet_ids: Iterable[str] = ('subnet-0a1', 'subnet-0b2', 'subnet-0c3'),
        claimed_priorities: Iterable[int] = (),
        not_ready_times: int = 0,
        failures: dict[str, RawResponse] | None = None,
        scripted: dict[str, Iterable[RawResponse]] | None = None,
        region: str = 'us-east-1',
        account_id: str = '123456789012',
    ) -> None:
        self.subnet_ids = list(subnet_ids)
        self.claimed_priorities = set(claimed_priorities)
        self.not_ready_times = not_ready_times
        self.failures = dict(failures or {})
        self.scripted = {k: deque(v) for k, v in (scripted or {}).items()}
        self.region = region
        self.account_id = account_id
        self.calls: list[tuple[str, ResourceDescriptor]] = []
        self.task_definitions: dict[str, list[dict[str, Any]]] = {}
        self.services: set[str] = set()

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.calls]

    async def fetch(self, resource: ResourceDescriptor) -> RawResponse:
        kind = resource.kind
        self.calls.append((kind, resource))
        queue = self.scripted.get(kind)
        if queue:
            return queue.popleft()
        if kind in self.failures:
            return self.failures[kind]
        handler = getattr(self, f'_{kind}', None)
        if handler is None:
            return text_response(400, f'unsupported resource kind {kind}')
        return handler(resource)

    def _arn(self, service: str, resource: str) -> str:
        return f'arn:aws:{service}:{self.region}:{self.account_id}:{resource}'

    def _file_system(self, resource: Any) -> RawResponse:
        return json_response(201, {
            'FileSystemId': f'fs-{_short_hash(resource.name)}',
            'CreationToken': resource.name,
            'LifeCycleState': 'creating',
            'Encrypted': True,
            'ThroughputMode': 'elastic',
        })

    def _target_group(self, resource: Any) -> RawResponse:
        arn = self._arn(
            'elasticloadbalancing',
            f'targetgroup/{resource.name}/{_short_hash(resource.name)[:16]}',
        )
        return xml_response(200, (
            f'<CreateTargetGroupResponse xmlns="{_XMLNS["elb"]}">'
            '<CreateTargetGroupResult><TargetGroups><member>'
            f'<TargetGroupArn>{arn}</TargetGroupArn>'
            f'<TargetGroupName>{resource.name}</TargetGroupName>'
            '<Protocol>HTTP</Protocol><Port>3000</Port>'
            '</member></TargetGroups></CreateTargetGroupResult>'
            '</CreateTargetGroupResponse>'
        ))

    def _listener_rule(self, resource: Any) -> RawResponse:
        if resource.priority in self.claimed_priorities:
            return xml_error('PriorityInUse', f'Priority {resource.priority} is currently in use')
        self.claimed_priorities.add(resource.priority)
        arn = self._arn(
            'elasticloadbalancing',
            f'listener-rule/app/shared/{_short_hash(resource.host)[:16]}',
        )
        return xml_response(200, (
            f'<CreateRuleResponse xmlns="{_XMLNS["elb"]}">'
            '<CreateRuleResult><Rules><member>'
            f'<RuleArn>{arn}</RuleArn>'
            f'<Priority>{resource.priority}</Priority>'
            '</member></Rules></CreateRuleResult>'
            '</CreateRuleResponse>'
        ))

    def _task_definition(self, resource: Any) -> RawResponse:
        definition = json.loads(resource.body())
        revisions = self.task_definitions.setdefault(resource.name, [])
        definition['revision'] = len(revisions) + 1
        definition['taskDefinitionArn'] = self._arn(
            'ecs', f'task-definition/{resource.name}:{definition["revision"]}',
        )
        definition['status'] = 'ACTIVE'
        revisions.append(definition)
        return json_response(200, {'taskDefinition': definition})

    def _describe_task_definition(self, resource: Any) -> RawResponse:
        revisions = self.task_definitions.get(resource.name)
        if not revisions:
            return json_response(400, {
                '__type': 'ClientException',
                'message': 'Unable to describe task definition.',
            })
        return json_response(200, {'taskDefinition': revisions[-1]})

    def _subnet(self, resource: Any) -> RawResponse:
        items = ''.join(
            f'<item><subnetId>{subnet_id}</subnetId><vpcId>{resource.vpc_id}</vpcId>'
            '<mapPublicIpOnLaunch>false</mapPublicIpOnLaunch></item>'
            for subnet_id in self.subnet_ids
        )
        return xml_response(200, (
            f'<DescribeSubnetsResponse xmlns="{_XMLNS["ec2"]}">'
            '<requestId>00000000-0000-0000-0000-000000000000</requestId>'
            f'<subnetSet>{items}</subnetSet>'
            '</DescribeSubnetsResponse>'
        ))

    def _mount_target(self, resource: Any) -> RawResponse:
        if self.not_ready_times > 0:
            self.not_ready_times -= 1
            return json_error(
                'IncorrectFileSystemLifeCycleState',
                f'File system {resource.file_system_id} is in creating state',
                status_code=409,
            )
        return json_response(200, {
            'MountTargetId': f'fsmt-{_short_hash(resource.subnet_id + resource.file_system_id)}',
            'FileSystemId': resource.file_system_id,
            'SubnetId': resource.subnet_id,
            'LifeCycleState': 'creating',
        })

    def _service(self, resource: Any) -> RawResponse:
        self.services.add(resource.name)
        return json_response(200, {'service': {
            'serviceName': resource.name,
            'serviceArn': self._arn('ecs', f'service/{resource.cluster}/{resource.name}'),
            'taskDefinition': resource.task_definition,
            'desiredCount': 1,
            'status': 'ACTIVE',
        }})

    def _restart_service(self, resource: Any) -> RawResponse:
        if resource.name not in self.services:
            return json_response(400, {
                '__type': 'ServiceNotFoundException',
                'message': 'Service not found.',
            })
        return json_response(200, {'service': {
            'serviceName': resource.name,
            'status': 'ACTIVE',
            'deployments': [{'status': 'PRIMARY', 'rolloutState': 'IN_PROGRESS'}],
        }})
