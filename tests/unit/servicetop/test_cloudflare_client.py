"""Unit tests for CloudflareClient and the KV-backed store.

Tests the HTTP client for the Cloudflare v4 API with mocked httpx transport.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from servicetop.app.db.kv_store import CloudflareKVStore
from servicetop.app.providers.cloudflare_client import (
    CloudflareAPIError,
    CloudflareClient,
    CloudflareTransportError,
)
from servicetop.app.resources import DnsRecord

_KV_URL = (
    'https://api.cloudflare.com/client/v4/accounts/acct-1/storage/kv/'
    'namespaces/ns-1/values/priority'
)
_SLEEP = 'servicetop.app.providers.cloudflare_client.asyncio.sleep'


def _make_client(handler, **kwargs) -> tuple[CloudflareClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def capture(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = CloudflareClient(
        api_key='cf-key',
        email='ops@example.com',
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(capture)),
        **kwargs,
    )
    return client, seen


def _sequence(*responses: httpx.Response):
    queue = list(responses)
    return lambda request: queue.pop(0)


def _record() -> DnsRecord:
    return DnsRecord('ws1', 'zone-1', 'ingress.example.com')


# ── DNS ──────────────────────────────────────────────────────────


class TestCreateRecord:
    @pytest.mark.asyncio
    async def test_sends_record_with_auth_headers(self):
        client, seen = _make_client(lambda r: httpx.Response(
            200, json={'success': True, 'result': {'id': 'rec-1', 'name': 'ws1.cuckoo'}},
        ))

        result = await client.create_record(_record())

        assert result == {'id': 'rec-1', 'name': 'ws1.cuckoo'}
        request = seen[0]
        assert request.method == 'POST'
        assert str(request.url) == 'https://api.cloudflare.com/client/v4/zones/zone-1/dns_records'
        assert request.headers['x-auth-email'] == 'ops@example.com'
        assert request.headers['x-auth-key'] == 'cf-key'
        body = json.loads(request.content)
        assert body['type'] == 'CNAME'
        assert body['name'] == 'ws1.cuckoo'
        assert body['proxied'] is True

    @pytest.mark.asyncio
    async def test_api_errors_are_joined_into_message(self):
        client, _ = _make_client(lambda r: httpx.Response(400, json={
            'success': False,
            'errors': [{'code': 81053, 'message': 'record already exists'}],
        }))

        with pytest.raises(CloudflareAPIError) as exc_info:
            await client.create_record(_record())

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == '81053: record already exists'
        assert exc_info.value.codes == {81053}

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope_with_200_is_an_error(self):
        client, _ = _make_client(lambda r: httpx.Response(200, json={
            'success': False,
            'errors': [{'code': 1004, 'message': 'DNS Validation Error'}],
            'result': None,
        }))

        with pytest.raises(CloudflareAPIError, match='1004: DNS Validation Error'):
            await client.create_record(_record())

    @pytest.mark.asyncio
    async def test_non_json_success_body_is_an_error(self):
        client, _ = _make_client(lambda r: httpx.Response(
            200, text='<html>edge page</html>', headers={'content-type': 'text/html'},
        ))

        with pytest.raises(CloudflareAPIError) as exc_info:
            await client.create_record(_record())

        assert exc_info.value.status_code == 200
        assert 'text/html' in exc_info.value.message
        assert exc_info.value.response_body == '<html>edge page</html>'

    @pytest.mark.asyncio
    async def test_server_error_is_not_replayed(self):
        client, seen = _make_client(lambda r: httpx.Response(503, json={
            'success': False, 'errors': [{'code': 10000, 'message': 'unavailable'}],
        }))

        with patch(_SLEEP, new_callable=AsyncMock) as sleep:
            with pytest.raises(CloudflareAPIError) as exc_info:
                await client.create_record(_record())

        assert exc_info.value.status_code == 503
        assert len(seen) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connection_failure_is_not_replayed(self):
        def handler(request):
            raise httpx.ConnectError('refused', request=request)

        client, seen = _make_client(handler)

        with patch(_SLEEP, new_callable=AsyncMock):
            with pytest.raises(CloudflareTransportError) as exc_info:
                await client.create_record(_record())

        assert exc_info.value.status_code == 0
        assert 'ConnectError' in exc_info.value.message
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        client, seen = _make_client(_sequence(
            httpx.Response(429, headers={'Retry-After': '2'}, json={'success': False}),
            httpx.Response(200, json={'success': True, 'result': {'id': 'rec-1'}}),
        ))

        with patch(_SLEEP, new_callable=AsyncMock) as sleep:
            result = await client.create_record(_record())

        assert result == {'id': 'rec-1'}
        assert len(seen) == 2
        sleep.assert_awaited_once_with(2.0)


# ── Workers KV ───────────────────────────────────────────────────


class TestKeyValue:
    @pytest.mark.asyncio
    async def test_get_returns_text(self):
        client, seen = _make_client(lambda r: httpx.Response(200, text='42'))
        store = CloudflareKVStore(client, account_id='acct-1', namespace_id='ns-1')

        assert await store.get('priority') == '42'
        assert str(seen[0].url) == _KV_URL
        assert seen[0].method == 'GET'

    @pytest.mark.asyncio
    async def test_missing_key_is_none(self):
        client, _ = _make_client(lambda r: httpx.Response(404, json={
            'success': False, 'errors': [{'code': 10009, 'message': 'key not found'}],
        }))
        store = CloudflareKVStore(client, account_id='acct-1', namespace_id='ns-1')

        assert await store.get('priority') is None

    @pytest.mark.asyncio
    async def test_put_sends_raw_value(self):
        client, seen = _make_client(lambda r: httpx.Response(
            200, json={'success': True, 'errors': [], 'messages': [], 'result': None},
        ))
        store = CloudflareKVStore(client, account_id='acct-1', namespace_id='ns-1')

        await store.put('priority', '8')

        assert seen[0].method == 'PUT'
        assert str(seen[0].url) == _KV_URL
        assert seen[0].content == b'8'

    @pytest.mark.asyncio
    async def test_put_failure_raises(self):
        client, _ = _make_client(lambda r: httpx.Response(403, text='forbidden'))
        store = CloudflareKVStore(client, account_id='acct-1', namespace_id='ns-1')

        with pytest.raises(CloudflareAPIError) as exc_info:
            await store.put('priority', '8')

        assert exc_info.value.status_code == 403
        assert not isinstance(exc_info.value, CloudflareTransportError)

    @pytest.mark.asyncio
    async def test_get_retries_transient_status_then_succeeds(self):
        client, seen = _make_client(_sequence(
            httpx.Response(503, text='unavailable'),
            httpx.Response(429, headers={'Retry-After': '2'}, text='slow down'),
            httpx.Response(200, text='7'),
        ))

        with patch(_SLEEP, new_callable=AsyncMock) as sleep:
            value = await client.kv_get('acct-1', 'ns-1', 'priority')

        assert value == '7'
        assert len(seen) == 3
        assert sleep.await_count == 2
        assert sleep.await_args_list[1].args[0] == 2.0

    @pytest.mark.asyncio
    async def test_get_gives_up_after_max_retries(self):
        client, seen = _make_client(lambda r: httpx.Response(502, text='bad gateway'), max_retries=2)

        with patch(_SLEEP, new_callable=AsyncMock):
            with pytest.raises(CloudflareAPIError) as exc_info:
                await client.kv_get('acct-1', 'ns-1', 'priority')

        assert exc_info.value.status_code == 502
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_put_timeout_raises_after_retries(self):
        def handler(request):
            raise httpx.ReadTimeout('slow', request=request)

        client, seen = _make_client(handler, max_retries=1)

        with patch(_SLEEP, new_callable=AsyncMock):
            with pytest.raises(CloudflareTransportError, match='ReadTimeout'):
                await client.kv_put('acct-1', 'ns-1', 'priority', '8')

        assert len(seen) == 2
        assert all(r.method == 'PUT' for r in seen)

    @pytest.mark.asyncio
    async def test_key_is_path_escaped(self):
        client, seen = _make_client(lambda r: httpx.Response(200, text='v'))

        await client.kv_get('acct-1', 'ns-1', 'tenant/priority')

        assert seen[0].url.raw_path.endswith(b'/values/tenant%2Fpriority')


def test_requires_credentials():
    with pytest.raises(ValueError, match='required'):
        CloudflareClient(api_key='', email='ops@example.com')


def test_providers_share_one_default_http_client():
    from servicetop.app.providers import http
    from servicetop.app.providers.aws_transport import AwsTransport

    http._reset_shared_async_client_for_tests()
    try:
        cloudflare = CloudflareClient(api_key='cf-key', email='ops@example.com')
        aws = AwsTransport(access_key_id='AKID', secret_access_key='secret', region='us-east-1')

        assert cloudflare._client is aws._client
        assert cloudflare._client is http.shared_async_client()
    finally:
        http._reset_shared_async_client_for_tests()
