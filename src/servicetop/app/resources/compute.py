"""ECS descriptors: task definitions and the Fargate service.

ECS speaks the JSON 1.1 protocol: every call is a POST to the regional
endpoint with the action named in ``X-Amz-Target``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from .base import DEPLOYED_BY, HttpMethod, ecs_headers, json_body
from .load_balancer import CONTAINER_PORT

CONTAINER_NAME = 'webtop'
IMAGE_REPOSITORY = 'linuxserver/webtop'
VOLUME_NAME = 'fm_home'
PROXY_EXIT_VARIABLE = 'OXYLABS_EXIT'

_DOCKER_MODS = (
    'ghcr.io/throneless-tech/docker-mods:webtop-oxylabs'
    '|ghcr.io/throneless-tech/docker-mods:webtop-proot'
)


def _ecs_url(region: str) -> str:
    return f'https://ecs.{region}.amazonaws.com/'


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    """Fargate task running one webtop container with the EFS home mounted."""

    kind: ClassVar[str] = 'task_definition'
    service: ClassVar[str] = 'ecs'

    name: str
    region: str
    version: str
    file_system_id: str
    execution_role_arn: str
    proxy_user: str = ''
    proxy_pass: str = ''
    proxy_exit: str = ''

    def endpoint(self) -> str:
        return _ecs_url(self.region)

    def method(self) -> HttpMethod:
        return 'POST'

    def headers(self) -> dict[str, str]:
        return ecs_headers('RegisterTaskDefinition')

    def image(self) -> str:
        return f'{IMAGE_REPOSITORY}:{self.version}'

    def _environment(self) -> list[dict[str, str]]:
        pairs = (
            ('TITLE', 'Cuckoo'),
            ('DOCKER_MODS', _DOCKER_MODS),
            ('PUID', '1000'),
            ('TZ', 'America/New_York'),
            ('PGID', '1000'),
            ('OXYLABS_USER', self.proxy_user),
            ('OXYLABS_PASS', self.proxy_pass),
            (PROXY_EXIT_VARIABLE, self.proxy_exit),
            ('INSTALL_APPS', 'telegram|chromium'),
        )
        return [{'name': k, 'value': v} for k, v in pairs]

    def _container(self) -> dict[str, Any]:
        return {
            'name': CONTAINER_NAME,
            'image': self.image(),
            'cpu': 0,
            'portMappings': [{
                'name': f'{CONTAINER_NAME}-{CONTAINER_PORT}-tcp',
                'containerPort': CONTAINER_PORT,
                'hostPort': CONTAINER_PORT,
                'protocol': 'tcp',
                'appProtocol': 'http',
            }],
            'essential': True,
            'environment': self._environment(),
            'mountPoints': [{
                'sourceVolume': VOLUME_NAME,
                'containerPath': '/config',
                'readOnly': False,
            }],
            'ulimits': [{'name': 'nofile', 'softLimit': 65536, 'hardLimit': 65536}],
            'logConfiguration': {
                'logDriver': 'awslogs',
                'options': {
                    'awslogs-create-group': 'true',
                    'awslogs-group': f'/ecs/{CONTAINER_NAME}',
                    'awslogs-region': self.region,
                    'awslogs-stream-prefix': 'ecs',
                },
            },
            'healthCheck': {
                'command': [
                    'CMD-SHELL',
                    f'curl http://localhost:{CONTAINER_PORT} || exit 1',
                ],
                'interval': 30,
                'timeout': 5,
                'retries': 3,
            },
        }

    def body(self) -> bytes:
        return json_body({
            'family': self.name,
            'executionRoleArn': self.execution_role_arn,
            'containerDefinitions': [self._container()],
            'networkMode': 'awsvpc',
            'volumes': [{
                'name': VOLUME_NAME,
                'efsVolumeConfiguration': {
                    'fileSystemId': self.file_system_id,
                    'rootDirectory': '/',
                    'transitEncryption': 'ENABLED',
                },
            }],
            'requiresCompatibilities': ['FARGATE'],
            'cpu': '1024',
            'memory': '8192',
            'runtimePlatform': {
                'cpuArchitecture': 'X86_64',
                'operatingSystemFamily': 'LINUX',
            },
            'tags': [{'key': 'deployed-by', 'value': DEPLOYED_BY}],
        })


@dataclass(frozen=True, slots=True)
class DescribeTaskDefinition:
    """Latest active revision of the task-definition family ``name``."""

    kind: ClassVar[str] = 'describe_task_definition'
    service: ClassVar[str] = 'ecs'

    name: str
    region: str

    def endpoint(self) -> str:
        return _ecs_url(self.region)

    def method(self) -> HttpMethod:
        return 'POST'

    def headers(self) -> dict[str, str]:
        return ecs_headers('DescribeTaskDefinition')

    def body(self) -> bytes:
        return json_body({'taskDefinition': self.name})


@dataclass(frozen=True, slots=True)
class Service:
    kind: ClassVar[str] = 'service'
    service: ClassVar[str] = 'ecs'

    name: str
    region: str
    cluster: str
    task_definition: str
    target_group_arn: str
    subnet_ids: tuple[str, ...]
    security_group: str

    def endpoint(self) -> str:
        return _ecs_url(self.region)

    def method(self) -> HttpMethod:
        return 'POST'

    def headers(self) -> dict[str, str]:
        return ecs_headers('CreateService')

    def body(self) -> bytes:
        return json_body({
            'serviceName': self.name,
            'taskDefinition': self.task_definition,
            'cluster': self.cluster,
            'desiredCount': 1,
            'healthCheckGracePeriodSeconds': 300,
            'launchType': 'FARGATE',
            'loadBalancers': [{
                'containerName': CONTAINER_NAME,
                'containerPort': CONTAINER_PORT,
                'targetGroupArn': self.target_group_arn,
            }],
            'networkConfiguration': {
                'awsvpcConfiguration': {
                    'assignPublicIp': 'ENABLED',
                    'subnets': list(self.subnet_ids),
                    'securityGroups': [self.security_group],
                },
            },
        })


@dataclass(frozen=True, slots=True)
class RestartService:
    """Force a new deployment of service ``name`` on its latest task revision."""

    kind: ClassVar[str] = 'restart_service'
    service: ClassVar[str] = 'ecs'

    name: str
    region: str
    cluster: str

    def endpoint(self) -> str:
        return _ecs_url(self.region)

    def method(self) -> HttpMethod:
        return 'POST'

    def headers(self) -> dict[str, str]:
        return ecs_headers('UpdateService')

    def body(self) -> bytes:
        return json_body({
            'service': self.name,
            'cluster': self.cluster,
            'taskDefinition': self.name,
            'forceNewDeployment': True,
        })
