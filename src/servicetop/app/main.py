"""Servicetop FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It wires middleware (request-ID, pre-shared-key guard), the
instance routes, and injects transport/store/DNS implementations.

Usage:
    # Local development (in-memory fake cloud)
    from servicetop.app import create_app, ServicetopSettings
    app = create_app(ServicetopSettings())

    # Non-local (real AWS + Cloudflare wired from settings)
    settings = ServicetopSettings.from_env()
    app = create_app(settings)

    # Testing (full DI control)
    app = create_app(settings, transport=fake, store=store, dns_client=dns)
"""

from __future__ import annotations

import hmac
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from .observability.logging import configure_logging, log_context
from .protocols import DnsClient, KeyValueStore, NameGenerator, Transport
from .provisioning.orchestrator import OrchestratorConfig, ProvisioningOrchestrator
from .settings import ServicetopSettings

logger = logging.getLogger(__name__)

# Auth-exempt paths: these never require the pre-shared key.
AUTH_ALLOWLIST_EXACT: frozenset[str] = frozenset({
    "/health",
})


@dataclass(frozen=True)
class AppDependencies:
    """Container for all injected collaborator instances.

    Stored on ``app.state.deps`` so route handlers can access them.
    """

    transport: Transport
    store: KeyValueStore
    dns_client: DnsClient


def _build_inmemory_deps() -> AppDependencies:
    """Construct all-InMemory dependencies for local development."""
    from .inmemory import (
        InMemoryCloudTransport,
        InMemoryDnsClient,
        InMemoryKeyValueStore,
    )

    return AppDependencies(
        transport=InMemoryCloudTransport(),
        store=InMemoryKeyValueStore(),
        dns_client=InMemoryDnsClient(),
    )


def _build_remote_deps(settings: ServicetopSettings) -> AppDependencies:
    """Construct AWS/Cloudflare-backed dependencies from settings."""
    from .db.kv_store import CloudflareKVStore
    from .providers.aws_transport import AwsTransport
    from .providers.cloudflare_client import CloudflareClient

    cloudflare = CloudflareClient(
        api_key=settings.cf_key,
        email=settings.cf_email,
        timeout_seconds=settings.request_timeout_seconds,
    )
    return AppDependencies(
        transport=AwsTransport(
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            region=settings.aws_region,
            timeout_seconds=settings.request_timeout_seconds,
        ),
        store=CloudflareKVStore(
            cloudflare,
            account_id=settings.cf_account_id,
            namespace_id=settings.cf_kv_namespace_id,
        ),
        dns_client=cloudflare,
    )


# ── Middleware ──────────────────────────────────────────────────────


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Generate or propagate X-Request-ID on every request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        with log_context(request_id=request_id):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class PresharedKeyMiddleware(BaseHTTPMiddleware):
    """Reject requests that do not carry the configured pre-shared key.

    Requests to paths in AUTH_ALLOWLIST_EXACT are passed through. The header
    name and expected value come from settings; comparison is constant-time.
    """

    def __init__(self, app, *, header_name: str, expected_value: str) -> None:
        super().__init__(app)
        self._header_name = header_name
        self._expected = expected_value

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.url.path in AUTH_ALLOWLIST_EXACT:
            return await call_next(request)

        supplied = request.headers.get(self._header_name, "")
        if not self._expected or not hmac.compare_digest(
            supplied.encode(), self._expected.encode(),
        ):
            request_id = getattr(request.state, "request_id", "unknown")
            logger.debug("[%s] Auth guard: invalid key for %s", request_id, request.url.path)
            return JSONResponse(
                status_code=401,
                content={
                    "code": "AUTH_REQUIRED",
                    "message": "Sorry, you have supplied an invalid key.",
                    "request_id": request_id,
                },
            )

        return await call_next(request)


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: ServicetopSettings | None = None,
    *,
    transport: Transport | None = None,
    store: KeyValueStore | None = None,
    dns_client: DnsClient | None = None,
    name_generator: NameGenerator | None = None,
) -> FastAPI:
    """Create a configured servicetop FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        transport, store, dns_client: Collaborator overrides. When None,
            local mode uses InMemory implementations and non-local mode
            builds the AWS/Cloudflare clients from settings.
        name_generator: Override for generated workspace names.

    Returns:
        Configured FastAPI application ready for uvicorn.run().

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = ServicetopSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Servicetop settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    if transport is None or store is None or dns_client is None:
        defaults = (
            _build_inmemory_deps() if settings.is_local else _build_remote_deps(settings)
        )
        transport = transport or defaults.transport
        store = store or defaults.store
        dns_client = dns_client or defaults.dns_client
    deps = AppDependencies(transport=transport, store=store, dns_client=dns_client)

    orchestrator = ProvisioningOrchestrator(
        config=OrchestratorConfig.from_settings(settings),
        transport=deps.transport,
        store=deps.store,
        dns_client=deps.dns_client,
        priority_max_attempts=settings.priority_max_attempts,
        readiness_max_attempts=settings.readiness_max_attempts,
        readiness_interval_seconds=settings.readiness_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        logger.info("Servicetop startup (environment=%s)", settings.environment)
        yield
        logger.info("Servicetop shutdown")

    app = FastAPI(
        title="Servicetop",
        description="Per-tenant webtop workspace provisioning",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestID -> PresharedKey -> route handler
    # Only local settings may leave auth_value empty (validate() enforces it).
    if settings.auth_value:
        app.add_middleware(
            PresharedKeyMiddleware,
            header_name=settings.auth_header,
            expected_value=settings.auth_value,
        )
    else:
        logger.warning("Pre-shared key not configured; API is unauthenticated (local mode)")
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(StarletteHTTPException)
    async def not_found_handler(request: Request, exc: StarletteHTTPException):
        # Unknown paths and unsupported methods are both reported as not found.
        status_code = 404 if exc.status_code in (404, 405) else exc.status_code
        return JSONResponse(
            status_code=status_code,
            content={
                "code": "NOT_FOUND" if status_code == 404 else "HTTP_ERROR",
                "message": "Not found" if status_code == 404 else str(exc.detail),
                "request_id": getattr(request.state, "request_id", "unknown"),
            },
        )

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
        }

    from .provisioning.request import generate_name
    from .routes.instances import create_instances_router

    app.include_router(create_instances_router(
        orchestrator,
        default_version=settings.default_image_version,
        name_generator=name_generator or generate_name,
    ))

    return app


# For uvicorn, use --factory flag:
#   uvicorn servicetop.app.main:create_app --factory
# This avoids executing create_app() at import time.
