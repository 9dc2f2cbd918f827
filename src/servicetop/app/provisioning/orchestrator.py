"""Workspace provisioning orchestrator: drives the state machine through steps.

Orchestrates the full create flow for one workspace:
  init -> create_storage -> create_target_group -> allocate_listener_rules
  -> create_task_definition -> describe_subnets -> create_mount_targets
  -> create_service -> create_dns_record -> done

At each step the orchestrator:
  1. Advances the state machine.
  2. Builds the step's resource descriptor from the request and the outputs
     of earlier steps (``ProvisioningContext``).
  3. Sends it through the injected transport and decodes the response.
  4. Transitions to error and re-raises on any fatal outcome.

Nothing already created is rolled back. Every resource is keyed by the
workspace name, so the caller recovers by re-running with the same name.

Two batch workflows share the same transport: ``restart`` (force a new
deployment per workspace) and ``update`` (re-register the task definition at
a new image version, keeping its file system and proxy exit, then redeploy).
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from ..protocols import DnsClient, KeyValueStore, Transport
from ..providers.cloudflare_client import CloudflareAPIError
from ..resources import (
    DescribeTaskDefinition,
    DnsRecord,
    FileSystem,
    ListenerRule,
    MountTarget,
    RestartService,
    Service,
    Subnet,
    TargetGroup,
    TaskDefinition,
)
from ..resources.compute import CONTAINER_NAME, PROXY_EXIT_VARIABLE, VOLUME_NAME
from ..settings import ServicetopSettings
from .context import ProvisioningContext
from .decoder import as_list, decode_response, unwrap
from .errors import BatchAborted, MissingContextField, UpstreamFatal
from .priority import PriorityAllocator
from .readiness import ReadinessPoller
from .request import WorkspaceRequest, validate_version, validate_workspace_list
from .state_machine import (
    PROVISIONING_SEQUENCE,
    WorkflowState,
    advance_state,
    create_workflow,
    transition_to_error,
)

logger = logging.getLogger(__name__)

SubnetChooser = Callable[[Sequence[str], int], list[str]]


def choose_random_subnets(subnet_ids: Sequence[str], count: int) -> list[str]:
    """Pick ``count`` distinct subnets (fewer if the VPC has fewer)."""
    return random.sample(list(subnet_ids), min(count, len(subnet_ids)))


# ── Configuration and results ───────────────────────────────────────


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    """The settings subset the workflows read."""

    region: str
    ecs_cluster: str
    execution_role_arn: str
    listener_arn: str
    security_group_id: str
    vpc_id: str
    elb_token: str
    parent_domains: tuple[str, ...]
    dns_zone_id: str
    dns_target: str
    dns_record_suffix: str = 'cuckoo'
    mount_target_count: int = 1
    proxy_user: str = ''
    proxy_pass: str = ''

    @classmethod
    def from_settings(cls, settings: ServicetopSettings) -> OrchestratorConfig:
        return cls(
            region=settings.aws_region,
            ecs_cluster=settings.ecs_cluster_name,
            execution_role_arn=settings.ecs_execution_role_arn,
            listener_arn=settings.elb_listener_arn,
            security_group_id=settings.elb_security_group_id,
            vpc_id=settings.elb_vpc_id,
            elb_token=settings.elb_token,
            parent_domains=settings.parent_domains,
            dns_zone_id=settings.cf_zone_id,
            dns_target=settings.cf_target,
            dns_record_suffix=settings.dns_record_suffix,
            mount_target_count=settings.mount_target_count,
            proxy_user=settings.proxy_user,
            proxy_pass=settings.proxy_pass,
        )


@dataclass(frozen=True, slots=True)
class ProvisioningResult:
    """Outcome of a successful provisioning run."""

    name: str
    responses: list[Any]
    run: WorkflowState
    listener_priorities: list[int] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {'name': self.name, 'responses': self.responses}


@dataclass(frozen=True, slots=True)
class BatchResult:
    """Per-workspace responses of a restart/update batch, in request order."""

    items: list[dict[str, Any]]

    def to_payload(self) -> dict[str, Any]:
        return {
            'workspaces': [item['name'] for item in self.items],
            'responses': self.items,
        }


# ── Orchestrator ────────────────────────────────────────────────────


class ProvisioningOrchestrator:
    """Runs the provisioning, restart and update workflows.

    Every collaborator is injected; one instance is safe to share between
    concurrent runs because all per-run state lives in the run's context.
    """

    def __init__(
        self,
        *,
        config: OrchestratorConfig,
        transport: Transport,
        store: KeyValueStore,
        dns_client: DnsClient,
        priority_max_attempts: int = 100,
        readiness_max_attempts: int = 120,
        readiness_interval_seconds: float = 1.0,
        allocator: PriorityAllocator | None = None,
        poller: ReadinessPoller | None = None,
        choose_subnets: SubnetChooser = choose_random_subnets,
    ) -> None:
        self._config = config
        self._transport = transport
        self._dns = dns_client
        self._allocator = allocator or PriorityAllocator(
            transport=transport,
            store=store,
            max_attempts=priority_max_attempts,
        )
        self._poller = poller or ReadinessPoller(
            transport=transport,
            interval_seconds=readiness_interval_seconds,
            max_attempts=readiness_max_attempts,
        )
        self._choose_subnets = choose_subnets
        self._steps = {
            'create_storage': self._create_storage,
            'create_target_group': self._create_target_group,
            'allocate_listener_rules': self._allocate_listener_rules,
            'create_task_definition': self._create_task_definition,
            'describe_subnets': self._describe_subnets,
            'create_mount_targets': self._create_mount_targets,
            'create_service': self._create_service,
            'create_dns_record': self._create_dns_record,
        }

    # ── Provisioning ────────────────────────────────────────────────

    async def provision(self, request: WorkspaceRequest) -> ProvisioningResult:
        """Create every resource of a workspace, in order.

        Raises:
            UpstreamFatal: a step failed; later steps were not started.
        """
        run = create_workflow(workspace_name=request.name, now=_now())
        ctx = ProvisioningContext(workspace_name=request.name)
        logger.info(
            "Starting deployment of instance %r",
            request.name,
            extra={'workspace_name': request.name},
        )

        for state in PROVISIONING_SEQUENCE[1:-1]:
            run = advance_state(run, now=_now())
            logger.info("Deploying step %s", state, extra={'workspace_name': request.name})
            try:
                await self._steps[state](request, ctx)
            except (UpstreamFatal, MissingContextField) as exc:
                run = transition_to_error(run, now=_now(), error_detail=str(exc))
                logger.error(
                    "Deployment of %r failed at %s: %s",
                    request.name,
                    state,
                    exc,
                    extra={'workspace_name': request.name, 'step': state},
                )
                raise

        run = advance_state(run, now=_now())
        logger.info("Instance %r deployed", request.name)
        return ProvisioningResult(
            name=request.name,
            responses=list(ctx.responses),
            run=run,
            listener_priorities=list(ctx.listener_priorities),
        )

    async def _call(self, resource: Any, *, step: str) -> Any:
        response = await self._transport.fetch(resource)
        return unwrap(decode_response(response, step=step))

    async def _create_storage(self, request: WorkspaceRequest, ctx: ProvisioningContext) -> None:
        step = 'create_storage'
        payload = await self._call(FileSystem(request.name, self._config.region), step=step)
        ctx.record(payload)
        ctx.file_system_id = _extract(lambda: payload['FileSystemId'], step)

    async def _create_target_group(self, request: WorkspaceRequest, ctx: ProvisioningContext) -> None:
        step = 'create_target_group'
        payload = await self._call(
            TargetGroup(request.name, self._config.region, self._config.vpc_id),
            step=step,
        )
        ctx.record(payload)
        ctx.target_group_arn = _extract(
            lambda: as_list(
                payload['CreateTargetGroupResponse']['CreateTargetGroupResult']
                ['TargetGroups']['member']
            )[0]['TargetGroupArn'],
            step,
        )

    async def _allocate_listener_rules(
        self, request: WorkspaceRequest, ctx: ProvisioningContext,
    ) -> None:
        target_group_arn = ctx.require('target_group_arn', step='allocate_listener_rules')
        for domain in self._config.parent_domains:
            rule = ListenerRule(
                host=f'{request.name}.{domain}',
                region=self._config.region,
                listener_arn=self._config.listener_arn,
                target_group_arn=target_group_arn,
                auth_token=self._config.elb_token,
            )
            allocation = await self._allocator.allocate(rule)
            ctx.listener_priorities.append(allocation.priority)
            ctx.record(allocation.payload)

    async def _create_task_definition(
        self, request: WorkspaceRequest, ctx: ProvisioningContext,
    ) -> None:
        step = 'create_task_definition'
        definition = self._task_definition(
            request.name,
            version=request.image_version,
            file_system_id=ctx.require('file_system_id', step=step),
            proxy_exit=request.exit_region,
        )
        payload = await self._call(definition, step=step)
        ctx.record(payload)
        ctx.task_definition_arn = _extract(
            lambda: payload['taskDefinition']['taskDefinitionArn'], step,
        )

    async def _describe_subnets(self, request: WorkspaceRequest, ctx: ProvisioningContext) -> None:
        step = 'describe_subnets'
        payload = await self._call(
            Subnet(request.name, self._config.region, self._config.vpc_id),
            step=step,
        )
        ctx.record(payload)
        subnet_set = _extract(lambda: payload['DescribeSubnetsResponse']['subnetSet'], step)
        items = as_list(subnet_set.get('item') if isinstance(subnet_set, dict) else subnet_set)
        subnet_ids = tuple(_extract(lambda: item['subnetId'], step) for item in items)
        if not subnet_ids:
            raise UpstreamFatal(
                f'no private subnets found in VPC {self._config.vpc_id}', step=step,
            )
        logger.info("Retrieved subnet IDs: %s", ', '.join(subnet_ids))
        ctx.subnet_ids = subnet_ids

    async def _create_mount_targets(
        self, request: WorkspaceRequest, ctx: ProvisioningContext,
    ) -> None:
        step = 'create_mount_targets'
        file_system_id = ctx.require('file_system_id', step=step)
        subnet_ids = ctx.require('subnet_ids', step=step)
        for subnet_id in self._choose_subnets(subnet_ids, self._config.mount_target_count):
            mount = MountTarget(
                name=request.name,
                region=self._config.region,
                file_system_id=file_system_id,
                subnet_id=subnet_id,
                security_group=self._config.security_group_id,
            )
            payload = await self._poller.create(mount, step=step)
            ctx.record(payload)
            if isinstance(payload, dict) and payload.get('MountTargetId'):
                ctx.mount_target_ids.append(payload['MountTargetId'])

    async def _create_service(self, request: WorkspaceRequest, ctx: ProvisioningContext) -> None:
        step = 'create_service'
        ctx.require('task_definition_arn', step=step)
        service = Service(
            name=request.name,
            region=self._config.region,
            cluster=self._config.ecs_cluster,
            task_definition=request.name,
            target_group_arn=ctx.require('target_group_arn', step=step),
            subnet_ids=ctx.require('subnet_ids', step=step),
            security_group=self._config.security_group_id,
        )
        ctx.record(await self._call(service, step=step))

    async def _create_dns_record(self, request: WorkspaceRequest, ctx: ProvisioningContext) -> None:
        record = DnsRecord(
            name=request.name,
            zone_id=self._config.dns_zone_id,
            target=self._config.dns_target,
            suffix=self._config.dns_record_suffix,
        )
        try:
            ctx.record(await self._dns.create_record(record))
        except CloudflareAPIError as exc:
            raise UpstreamFatal(
                exc.message or str(exc),
                step='create_dns_record',
                status_code=exc.status_code,
                response_body=exc.response_body,
            ) from exc

    def _task_definition(
        self, name: str, *, version: str, file_system_id: str, proxy_exit: str,
    ) -> TaskDefinition:
        return TaskDefinition(
            name=name,
            region=self._config.region,
            version=version,
            file_system_id=file_system_id,
            execution_role_arn=self._config.execution_role_arn,
            proxy_user=self._config.proxy_user,
            proxy_pass=self._config.proxy_pass,
            proxy_exit=proxy_exit,
        )

    # ── Batch workflows ─────────────────────────────────────────────

    async def restart(self, workspaces: list[str]) -> BatchResult:
        """Force a new deployment of each workspace's service.

        Raises:
            BatchAborted: at the first failure, listing completed workspaces.
        """
        names = validate_workspace_list(workspaces)
        return await self._run_batch(names, self._restart_one)

    async def update(self, workspaces: list[str], version: str) -> BatchResult:
        """Roll each workspace to image ``version``.

        Raises:
            BatchAborted: at the first failure, listing completed workspaces.
        """
        names = validate_workspace_list(workspaces)
        version = validate_version(version)

        async def update_one(name: str) -> list[Any]:
            return await self._update_one(name, version)

        return await self._run_batch(names, update_one)

    async def _run_batch(self, names: list[str], action) -> BatchResult:
        items: list[dict[str, Any]] = []
        for name in names:
            try:
                responses = await action(name)
            except UpstreamFatal as exc:
                logger.error(
                    "Batch stopped at %r after %d workspace(s): %s",
                    name,
                    len(items),
                    exc,
                    extra={'workspace_name': name},
                )
                raise BatchAborted(
                    failed=name,
                    completed=[item['name'] for item in items],
                    cause=exc,
                ) from exc
            items.append({'name': name, 'responses': responses})
        return BatchResult(items=items)

    async def _restart_one(self, name: str) -> list[Any]:
        logger.info("Restarting service %r", name)
        payload = await self._call(
            RestartService(name, self._config.region, self._config.ecs_cluster),
            step='restart_service',
        )
        return [payload]

    async def _update_one(self, name: str, version: str) -> list[Any]:
        logger.info("Updating %r to version %s", name, version)
        described = await self._call(
            DescribeTaskDefinition(name, self._config.region),
            step='describe_task_definition',
        )
        file_system_id, proxy_exit = extract_update_inputs(described)
        registered = await self._call(
            self._task_definition(
                name,
                version=version,
                file_system_id=file_system_id,
                proxy_exit=proxy_exit,
            ),
            step='create_task_definition',
        )
        restarted = await self._restart_one(name)
        return [described, registered, *restarted]


# ── Helpers ─────────────────────────────────────────────────────────


def extract_update_inputs(described: Any) -> tuple[str, str]:
    """Return ``(file_system_id, proxy_exit)`` from a DescribeTaskDefinition payload.

    The file system comes from the workspace volume (falling back to any EFS
    volume); the exit from the ``OXYLABS_EXIT`` variable of the webtop
    container, empty when unset.
    """
    step = 'describe_task_definition'
    definition = _extract(lambda: described['taskDefinition'], step)

    efs_volumes = [
        v for v in definition.get('volumes', [])
        if v.get('efsVolumeConfiguration', {}).get('fileSystemId')
    ]
    if not efs_volumes:
        raise UpstreamFatal('task definition has no EFS volume', step=step)
    volume = next((v for v in efs_volumes if v.get('name') == VOLUME_NAME), efs_volumes[0])
    file_system_id = volume['efsVolumeConfiguration']['fileSystemId']

    containers = definition.get('containerDefinitions', [])
    container = next(
        (c for c in containers if c.get('name') == CONTAINER_NAME),
        containers[0] if containers else {},
    )
    proxy_exit = next(
        (
            env.get('value', '')
            for env in container.get('environment', [])
            if env.get('name') == PROXY_EXIT_VARIABLE
        ),
        '',
    )
    return file_system_id, proxy_exit


def _extract(getter: Callable[[], Any], step: str) -> Any:
    """Read a field out of a decoded payload; missing shape is fatal."""
    try:
        return getter()
    except (KeyError, IndexError, TypeError) as exc:
        raise UpstreamFatal(f'unexpected response shape: missing {exc}', step=step) from exc


def _now() -> datetime:
    """UTC-aware now for state transitions."""
    return datetime.now(timezone.utc)
