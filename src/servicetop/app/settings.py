"""Servicetop configuration settings.

ServicetopSettings is the single configuration object accepted by create_app().
It is intentionally a plain dataclass (not env-coupled) so tests can inject config
without touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

_DEFAULT_REGION = "us-east-1"
_DEFAULT_CLUSTER = "servicetop"
_DEFAULT_PARENT_DOMAINS = ("example.com",)
_DEFAULT_IMAGE_VERSION = "latest"
_DEFAULT_RECORD_SUFFIX = "cuckoo"
_DEFAULT_AUTH_HEADER = "x-servicetop-auth"


@dataclass(frozen=True, slots=True)
class ServicetopSettings:
    """Configuration for the servicetop FastAPI application.

    All fields have sensible defaults for local development.
    Non-local environments must supply real AWS, Cloudflare and auth values.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── AWS ────────────────────────────────────────────────────────
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    """Never log this."""

    aws_region: str = _DEFAULT_REGION
    ecs_cluster_name: str = _DEFAULT_CLUSTER
    ecs_execution_role_arn: str = ""
    elb_listener_arn: str = ""
    elb_security_group_id: str = ""
    elb_vpc_id: str = ""

    elb_token: str = ""
    """Value the load balancer expects in the ``x-st-auth`` header."""

    # ── Workspace shape ────────────────────────────────────────────
    parent_domains: tuple[str, ...] = _DEFAULT_PARENT_DOMAINS
    """One listener rule is created per parent domain (at most two)."""

    mount_target_count: int = 1
    """Number of EFS mount targets, each on a distinct subnet (1 or 2)."""

    default_image_version: str = _DEFAULT_IMAGE_VERSION
    proxy_user: str = ""
    proxy_pass: str = ""

    # ── Cloudflare ─────────────────────────────────────────────────
    cf_key: str = ""
    cf_email: str = ""
    cf_zone_id: str = ""
    cf_account_id: str = ""
    cf_kv_namespace_id: str = ""

    cf_target: str = ""
    """CNAME target for workspace hostnames."""

    dns_record_suffix: str = _DEFAULT_RECORD_SUFFIX

    # ── Auth ───────────────────────────────────────────────────────
    auth_header: str = _DEFAULT_AUTH_HEADER
    auth_value: str = ""

    # ── Retry policy ───────────────────────────────────────────────
    priority_max_attempts: int = 100
    readiness_max_attempts: int = 120
    readiness_interval_seconds: float = 1.0
    request_timeout_seconds: float = 30.0

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not 1 <= len(self.parent_domains) <= 2:
            errors.append("parent_domains must list one or two domains")
        if self.mount_target_count not in (1, 2):
            errors.append("mount_target_count must be 1 or 2")
        if self.priority_max_attempts < 1:
            errors.append("priority_max_attempts must be >= 1")
        if self.readiness_max_attempts < 1:
            errors.append("readiness_max_attempts must be >= 1")
        if self.readiness_interval_seconds < 0:
            errors.append("readiness_interval_seconds must be >= 0")

        if not self.is_local:
            required = {
                "aws_access_key_id": self.aws_access_key_id,
                "aws_secret_access_key": self.aws_secret_access_key,
                "ecs_execution_role_arn": self.ecs_execution_role_arn,
                "elb_listener_arn": self.elb_listener_arn,
                "elb_security_group_id": self.elb_security_group_id,
                "elb_vpc_id": self.elb_vpc_id,
                "cf_key": self.cf_key,
                "cf_email": self.cf_email,
                "cf_zone_id": self.cf_zone_id,
                "cf_target": self.cf_target,
                "cf_account_id": self.cf_account_id,
                "cf_kv_namespace_id": self.cf_kv_namespace_id,
            }
            for key, value in required.items():
                if not value:
                    errors.append(f"{self.environment}: {key} is required")
            if not self.auth_value or len(self.auth_value) < 16:
                errors.append(
                    f"{self.environment}: auth_value must be >= 16 characters"
                )
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> ServicetopSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct ServicetopSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        domains_raw = env.get("PARENT_DOMAIN", "")
        domains = (
            tuple(d.strip() for d in domains_raw.split(",") if d.strip())
            if domains_raw
            else _DEFAULT_PARENT_DOMAINS
        )

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            aws_access_key_id=env.get("AWS_ACCESS_ID", ""),
            aws_secret_access_key=env.get("AWS_ACCESS_SECRET", ""),
            aws_region=env.get("AWS_REGION", _DEFAULT_REGION),
            ecs_cluster_name=env.get("AWS_ECS_CLUSTER_NAME", _DEFAULT_CLUSTER),
            ecs_execution_role_arn=env.get("AWS_ECS_EXECUTION_ROLE_ARN", ""),
            elb_listener_arn=env.get("AWS_ELB_LISTENER_ARN", ""),
            elb_security_group_id=env.get("AWS_ELB_SECURITY_GROUP_ID", ""),
            elb_vpc_id=env.get("AWS_ELB_VPC_ID", ""),
            elb_token=env.get("AWS_ELB_TOKEN", ""),
            parent_domains=domains,
            mount_target_count=int(env.get("MOUNT_TARGET_COUNT", "1")),
            default_image_version=env.get("IMAGE_VERSION", _DEFAULT_IMAGE_VERSION),
            proxy_user=env.get("OXYLABS_USER", ""),
            proxy_pass=env.get("OXYLABS_PASS", ""),
            cf_key=env.get("CF_KEY", ""),
            cf_email=env.get("CF_EMAIL", ""),
            cf_zone_id=env.get("CF_ZONE_ID", ""),
            cf_account_id=env.get("CF_ACCOUNT_ID", ""),
            cf_kv_namespace_id=env.get("CF_KV_NAMESPACE_ID", ""),
            cf_target=env.get("CF_TARGET", ""),
            dns_record_suffix=env.get("DNS_RECORD_SUFFIX", _DEFAULT_RECORD_SUFFIX),
            auth_header=env.get("WORKER_AUTH_KEY", _DEFAULT_AUTH_HEADER),
            auth_value=env.get("WORKER_AUTH_VALUE", ""),
            priority_max_attempts=int(env.get("PRIORITY_MAX_ATTEMPTS", "100")),
            readiness_max_attempts=int(env.get("READINESS_MAX_ATTEMPTS", "120")),
            readiness_interval_seconds=float(
                env.get("READINESS_INTERVAL_SECONDS", "1.0")
            ),
            request_timeout_seconds=float(
                env.get("REQUEST_TIMEOUT_SECONDS", "30.0")
            ),
        )
