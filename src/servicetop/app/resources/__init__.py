"""Resource descriptors: one frozen value object per remote call kind."""

from __future__ import annotations

from .base import HttpMethod, ResourceDescriptor
from .compute import DescribeTaskDefinition, RestartService, Service, TaskDefinition
from .dns import DnsRecord
from .load_balancer import ListenerRule, TargetGroup
from .network import Subnet
from .storage import FileSystem, MountTarget

AwsResource = (
    FileSystem
    | TargetGroup
    | ListenerRule
    | TaskDefinition
    | DescribeTaskDefinition
    | Subnet
    | MountTarget
    | Service
    | RestartService
)

__all__ = [
    "AwsResource",
    "DescribeTaskDefinition",
    "DnsRecord",
    "FileSystem",
    "HttpMethod",
    "ListenerRule",
    "MountTarget",
    "ResourceDescriptor",
    "RestartService",
    "Service",
    "Subnet",
    "TargetGroup",
    "TaskDefinition",
]
