"""Workspace instance API: provision, restart and update.

Exposes the provisioning workflows:
  POST /api/v1/instances  → create a workspace (query: name?, version?, exit?)
  POST /api/v1/restart    → force redeploy each named workspace
  POST /api/v1/update     → roll each named workspace to a new image version

Response contracts:
  - success: ``{name, responses}`` for instances, ``{workspaces, responses}``
    for the batch routes (one ``{name, responses}`` entry per workspace).
  - validation/malformed input: 400 ``{code, message, request_id}``.
  - upstream failure: 502 ``{code, message, step, request_id}``; batch
    failures add ``failed`` and ``completed``.

Authentication is enforced by the pre-shared-key middleware in ``main.py``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from ..provisioning.errors import (
    BatchAborted,
    InputMalformed,
    ProvisioningError,
    UpstreamFatal,
    WorkspaceValidationError,
)
from ..provisioning.orchestrator import ProvisioningOrchestrator
from ..provisioning.request import WorkspaceRequest, generate_name

logger = logging.getLogger(__name__)


# ── Request schemas ───────────────────────────────────────────────────


class RestartRequest(BaseModel):
    workspaces: list[str]


class UpdateRequest(BaseModel):
    workspaces: list[str]
    version: str


# ── Response helpers ──────────────────────────────────────────────────


def _request_id(request: Request) -> str:
    return getattr(request.state, 'request_id', 'unknown')


def _error(request: Request, status_code: int, code: str, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            'code': code,
            'message': message,
            'request_id': _request_id(request),
            **extra,
        },
    )


def _upstream_error(request: Request, exc: ProvisioningError) -> JSONResponse:
    extra: dict[str, Any] = {}
    if isinstance(exc, UpstreamFatal):
        extra['step'] = exc.step
        extra['upstream_status'] = exc.status_code
    if isinstance(exc, BatchAborted):
        extra['failed'] = exc.failed
        extra['completed'] = exc.completed
    return _error(request, 502, 'UPSTREAM_FAILURE', str(exc), **extra)


async def _parse_body(request: Request, model: type[BaseModel]) -> Any:
    raw = await request.body()
    try:
        data = json.loads(raw) if raw else None
    except ValueError as exc:
        raise InputMalformed(f'request body is not valid JSON: {exc}') from exc
    if not isinstance(data, dict):
        raise InputMalformed('request body must be a JSON object')
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        fields = ', '.join(
            '.'.join(str(p) for p in err['loc']) for err in exc.errors()
        )
        raise InputMalformed(f'missing or invalid fields: {fields}') from exc


# ── Route factory ─────────────────────────────────────────────────────


def create_instances_router(
    orchestrator: ProvisioningOrchestrator,
    *,
    default_version: str = 'latest',
    name_generator=generate_name,
) -> APIRouter:
    """Create the instance provisioning router.

    Args:
        orchestrator: Runs the provisioning/restart/update workflows.
        default_version: Image version used when ``version`` is omitted.
        name_generator: Produces a workspace name when ``name`` is omitted.

    Returns:
        FastAPI router mounted under ``/api/v1``.
    """
    router = APIRouter(prefix='/api/v1', tags=['instances'])

    @router.post('/instances')
    async def create_instance(
        request: Request,
        name: str | None = Query(default=None),
        version: str | None = Query(default=None),
        exit_region: str | None = Query(default=None, alias='exit'),
    ):
        """Provision a complete workspace and return every step's response."""
        try:
            workspace = WorkspaceRequest.build(
                name=name,
                version=version,
                exit_region=exit_region,
                default_version=default_version,
                name_generator=name_generator,
            )
        except WorkspaceValidationError as exc:
            return _error(request, 400, 'INVALID_REQUEST', str(exc))

        try:
            result = await orchestrator.provision(workspace)
        except ProvisioningError as exc:
            return _upstream_error(request, exc)
        return result.to_payload()

    @router.post('/restart')
    async def restart_instances(request: Request):
        """Force a new deployment of each listed workspace."""
        try:
            body = await _parse_body(request, RestartRequest)
            result = await orchestrator.restart(body.workspaces)
        except (InputMalformed, WorkspaceValidationError) as exc:
            return _error(request, 400, 'INVALID_REQUEST', str(exc))
        except ProvisioningError as exc:
            return _upstream_error(request, exc)
        return result.to_payload()

    @router.post('/update')
    async def update_instances(request: Request):
        """Roll each listed workspace to ``version``."""
        try:
            body = await _parse_body(request, UpdateRequest)
            result = await orchestrator.update(body.workspaces, body.version)
        except (InputMalformed, WorkspaceValidationError) as exc:
            return _error(request, 400, 'INVALID_REQUEST', str(exc))
        except ProvisioningError as exc:
            return _upstream_error(request, exc)
        return result.to_payload()

    return router
