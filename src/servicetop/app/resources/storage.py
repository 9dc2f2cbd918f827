"""EFS descriptors: the workspace file system and its mount targets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from .base import DEPLOYED_BY, HttpMethod, default_headers, json_body


def _efs_url(region: str, collection: str) -> str:
    return f'https://elasticfilesystem.{region}.amazonaws.com/2015-02-01/{collection}'


@dataclass(frozen=True, slots=True)
class FileSystem:
    """Encrypted, elastic-throughput file system keyed by workspace name.

    ``CreationToken`` makes creation idempotent: re-running a workflow with the
    same name returns the existing file system.
    """

    kind: ClassVar[str] = 'file_system'
    service: ClassVar[str] = 'elasticfilesystem'

    name: str
    region: str

    def endpoint(self) -> str:
        return _efs_url(self.region, 'file-systems')

    def method(self) -> HttpMethod:
        return 'POST'

    def headers(self) -> dict[str, str]:
        return {**default_headers(), 'Content-Type': 'application/json'}

    def body(self) -> bytes:
        return json_body({
            'Backup': True,
            'CreationToken': self.name,
            'Encrypted': True,
            'ThroughputMode': 'elastic',
            'Tags': [
                {'Key': 'deployed-by', 'Value': DEPLOYED_BY},
                {'Key': 'Name', 'Value': self.name},
            ],
        })


@dataclass(frozen=True, slots=True)
class MountTarget:
    kind: ClassVar[str] = 'mount_target'
    service: ClassVar[str] = 'elasticfilesystem'

    name: str
    region: str
    file_system_id: str
    subnet_id: str
    security_group: str

    def endpoint(self) -> str:
        return _efs_url(self.region, 'mount-targets')

    def method(self) -> HttpMethod:
        return 'POST'

    def headers(self) -> dict[str, str]:
        return {**default_headers(), 'Content-Type': 'application/json'}

    def body(self) -> bytes:
        return json_body({
            'SubnetId': self.subnet_id,
            'FileSystemId': self.file_system_id,
            'SecurityGroups': [self.security_group],
        })
