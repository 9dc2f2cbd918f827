"""Remote provider clients (AWS control planes, Cloudflare)."""

from .aws_transport import AwsTransport
from .cloudflare_client import (
    CloudflareAPIError,
    CloudflareClient,
    CloudflareTransportError,
)

__all__ = [
    "AwsTransport",
    "CloudflareAPIError",
    "CloudflareClient",
    "CloudflareTransportError",
]
