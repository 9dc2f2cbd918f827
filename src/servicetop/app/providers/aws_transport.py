"""SigV4-signing HTTP transport for the AWS control planes.

Descriptors are signed with botocore's ``SigV4Auth`` and sent with a shared
``httpx.AsyncClient``. The transport never interprets the response; decoding
and retry policy belong to the provisioning layer.
"""

from __future__ import annotations

import logging

import httpx
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials

from ..provisioning.decoder import RawResponse
from ..provisioning.errors import UpstreamFatal
from ..resources import ResourceDescriptor
from .http import shared_async_client

logger = logging.getLogger(__name__)

# ── Transport ────────────────────────────────────────────────────


class AwsTransport:
    """Execute resource descriptors against AWS with SigV4 auth.

    Satisfies the ``Transport`` protocol from ``protocols.py``.
    """

    def __init__(
        self,
        *,
        access_key_id: str,
        secret_access_key: str,
        region: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not access_key_id or not secret_access_key:
            raise ValueError("AWS access key id and secret are required")

        self._credentials = Credentials(access_key_id, secret_access_key)
        self._region = region
        self._client = http_client or shared_async_client()
        self._timeout = float(timeout_seconds)

    def sign(self, resource: ResourceDescriptor) -> dict[str, str]:
        """Return the descriptor's headers plus SigV4 auth headers."""
        request = AWSRequest(
            method=resource.method(),
            url=resource.endpoint(),
            data=resource.body() or b"",
            headers=resource.headers(),
        )
        SigV4Auth(self._credentials, resource.service, self._region).add_auth(request)
        return dict(request.headers.items())

    async def fetch(self, resource: ResourceDescriptor) -> RawResponse:
        method = resource.method()
        url = resource.endpoint()
        body = resource.body() if method != "GET" else None
        headers = self.sign(resource)

        try:
            resp = await self._client.request(
                method,
                url,
                content=body,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise UpstreamFatal(
                f"request to {resource.service} timed out",
                step=resource.kind,
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamFatal(
                f"request to {resource.service} failed: {exc}",
                step=resource.kind,
            ) from exc

        logger.debug(
            "AWS %s %s returned %d",
            method,
            resource.kind,
            resp.status_code,
            extra={"resource_kind": resource.kind},
        )
        return RawResponse(
            status_code=resp.status_code,
            headers={k.lower(): v for k, v in resp.headers.items()},
            body=resp.content,
        )
