"""Provisioning orchestrator tests: create flow against the in-memory cloud."""

from __future__ import annotations

import json
from dataclasses import replace

import pytest

from servicetop.app.inmemory import (
    InMemoryCloudTransport,
    InMemoryDnsClient,
    InMemoryKeyValueStore,
    json_response,
    xml_response,
)
from servicetop.app.providers.cloudflare_client import CloudflareAPIError
from servicetop.app.provisioning.context import ProvisioningContext
from servicetop.app.provisioning.errors import MissingContextField, UpstreamFatal
from servicetop.app.provisioning.orchestrator import ProvisioningOrchestrator
from servicetop.app.provisioning.priority import PRIORITY_KEY
from servicetop.app.provisioning.request import WorkspaceRequest

CREATE_ORDER = [
    'file_system',
    'target_group',
    'listener_rule',
    'task_definition',
    'subnet',
    'mount_target',
    'service',
]


def _first_subnets(subnet_ids, count):
    return list(subnet_ids[:count])


def _make_orchestrator(
    config,
    *,
    transport: InMemoryCloudTransport | None = None,
    store: InMemoryKeyValueStore | None = None,
    dns_client=None,
):
    transport = transport or InMemoryCloudTransport()
    store = store or InMemoryKeyValueStore()
    dns_client = dns_client or InMemoryDnsClient()
    orchestrator = ProvisioningOrchestrator(
        config=config,
        transport=transport,
        store=store,
        dns_client=dns_client,
        readiness_interval_seconds=0,
        choose_subnets=_first_subnets,
    )
    return orchestrator, transport, store, dns_client


def _request(name: str = 'ws1', version: str = '4.16', exit_region: str = 'us_texas'):
    return WorkspaceRequest(name=name, image_version=version, exit_region=exit_region)


# ── Happy path ───────────────────────────────────────────────────────


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_runs_every_step_in_order(self, orchestrator_config):
        orchestrator, transport, _, dns = _make_orchestrator(orchestrator_config)

        result = await orchestrator.provision(_request())

        assert transport.kinds == CREATE_ORDER
        assert len(dns.records) == 1
        assert dns.records[0]['name'] == 'ws1.cuckoo'
        assert result.run.state == 'done'
        assert result.run.finished_at is not None

    @pytest.mark.asyncio
    async def test_returns_one_response_per_remote_call(self, orchestrator_config):
        orchestrator, _, _, _ = _make_orchestrator(orchestrator_config)

        result = await orchestrator.provision(_request())
        payload = result.to_payload()

        assert payload['name'] == 'ws1'
        assert len(payload['responses']) == len(CREATE_ORDER) + 1
        assert payload['responses'][0]['FileSystemId'].startswith('fs-')

    @pytest.mark.asyncio
    async def test_outputs_flow_into_later_steps(self, orchestrator_config):
        orchestrator, transport, _, _ = _make_orchestrator(orchestrator_config)

        result = await orchestrator.provision(_request())

        fs_id = result.responses[0]['FileSystemId']
        by_kind = {kind: d for kind, d in transport.calls}
        assert by_kind['task_definition'].file_system_id == fs_id
        assert by_kind['mount_target'].file_system_id == fs_id
        assert by_kind['listener_rule'].target_group_arn == by_kind['service'].target_group_arn
        assert by_kind['service'].subnet_ids == ('subnet-0a1', 'subnet-0b2', 'subnet-0c3')
        assert by_kind['service'].task_definition == 'ws1'
        assert by_kind['task_definition'].proxy_exit == 'us_texas'
        assert by_kind['task_definition'].image() == 'linuxserver/webtop:4.16'

    @pytest.mark.asyncio
    async def test_rule_per_parent_domain(self, orchestrator_config):
        config = replace(orchestrator_config, parent_domains=('a.example', 'b.example'))
        orchestrator, transport, store, _ = _make_orchestrator(config)

        result = await orchestrator.provision(_request())

        rules = [d for kind, d in transport.calls if kind == 'listener_rule']
        assert [r.host for r in rules] == ['ws1.a.example', 'ws1.b.example']
        assert result.listener_priorities == [1, 2]
        assert await store.get(PRIORITY_KEY) == '3'

    @pytest.mark.asyncio
    async def test_two_mount_targets_use_distinct_subnets(self, orchestrator_config):
        config = replace(orchestrator_config, mount_target_count=2)
        orchestrator, transport, _, _ = _make_orchestrator(config)

        await orchestrator.provision(_request())

        mounts = [d for kind, d in transport.calls if kind == 'mount_target']
        assert [m.subnet_id for m in mounts] == ['subnet-0a1', 'subnet-0b2']

    @pytest.mark.asyncio
    async def test_waits_for_file_system_before_mounting(self, orchestrator_config):
        transport = InMemoryCloudTransport(not_ready_times=2)
        orchestrator, _, _, _ = _make_orchestrator(orchestrator_config, transport=transport)

        await orchestrator.provision(_request())

        assert transport.kinds.count('mount_target') == 3
        assert transport.kinds[-1] == 'service'

    @pytest.mark.asyncio
    async def test_claimed_priorities_are_skipped(self, orchestrator_config):
        transport = InMemoryCloudTransport(claimed_priorities=(5, 6))
        store = InMemoryKeyValueStore({PRIORITY_KEY: '5'})
        orchestrator, _, _, _ = _make_orchestrator(
            orchestrator_config, transport=transport, store=store,
        )

        result = await orchestrator.provision(_request())

        assert result.listener_priorities == [7]
        assert store.writes == [(PRIORITY_KEY, '8')]


# ── Failures ─────────────────────────────────────────────────────────


class TestFailures:
    @pytest.mark.parametrize('failing_kind', CREATE_ORDER)
    @pytest.mark.asyncio
    async def test_fatal_step_halts_later_steps(self, orchestrator_config, failing_kind):
        transport = InMemoryCloudTransport(
            failures={failing_kind: json_response(500, {'message': 'boom'})},
        )
        orchestrator, _, _, dns = _make_orchestrator(orchestrator_config, transport=transport)

        with pytest.raises(UpstreamFatal) as exc_info:
            await orchestrator.provision(_request())

        assert exc_info.value.status_code == 500
        assert transport.kinds == CREATE_ORDER[: CREATE_ORDER.index(failing_kind) + 1]
        assert dns.records == []

    @pytest.mark.asyncio
    async def test_dns_failure_is_upstream_fatal(self, orchestrator_config):
        class FailingDns:
            async def create_record(self, record):
                raise CloudflareAPIError(400, 'record already exists', response_body='{}')

        orchestrator, transport, _, _ = _make_orchestrator(
            orchestrator_config, dns_client=FailingDns(),
        )

        with pytest.raises(UpstreamFatal) as exc_info:
            await orchestrator.provision(_request())

        assert exc_info.value.step == 'create_dns_record'
        assert exc_info.value.status_code == 400
        assert transport.kinds == CREATE_ORDER

    @pytest.mark.asyncio
    async def test_no_private_subnets_is_fatal(self, orchestrator_config):
        transport = InMemoryCloudTransport(subnet_ids=())
        orchestrator, _, _, _ = _make_orchestrator(orchestrator_config, transport=transport)

        with pytest.raises(UpstreamFatal, match='no private subnets'):
            await orchestrator.provision(_request())

        assert 'mount_target' not in transport.kinds

    @pytest.mark.asyncio
    async def test_unexpected_response_shape_is_fatal(self, orchestrator_config):
        transport = InMemoryCloudTransport(
            scripted={'target_group': [xml_response(200, '<CreateTargetGroupResponse/>')]},
        )
        orchestrator, _, _, _ = _make_orchestrator(orchestrator_config, transport=transport)

        with pytest.raises(UpstreamFatal, match='unexpected response shape') as exc_info:
            await orchestrator.provision(_request())

        assert exc_info.value.step == 'create_target_group'
        assert transport.kinds == ['file_system', 'target_group']

    @pytest.mark.asyncio
    async def test_step_refuses_to_run_without_earlier_output(self, orchestrator_config):
        orchestrator, transport, _, _ = _make_orchestrator(orchestrator_config)

        with pytest.raises(MissingContextField) as exc_info:
            await orchestrator._create_service(_request(), ProvisioningContext('ws1'))

        assert exc_info.value.field == 'task_definition_arn'
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_rerun_with_same_name_reuses_creation_token(self, orchestrator_config):
        orchestrator, transport, _, _ = _make_orchestrator(orchestrator_config)
        await orchestrator.provision(_request())
        await orchestrator.provision(_request())

        tokens = {
            json.loads(d.body())['CreationToken']
            for kind, d in transport.calls
            if kind == 'file_system'
        }
        assert tokens == {'ws1'}
