"""Per-run accumulator of step outputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import MissingContextField


@dataclass(slots=True)
class ProvisioningContext:
    """Identifiers produced by completed steps, in workflow order.

    Owned by exactly one workflow run. ``require`` guards every step input so
    a step never starts with an earlier output missing.
    """

    workspace_name: str
    file_system_id: str | None = None
    target_group_arn: str | None = None
    listener_priorities: list[int] = field(default_factory=list)
    task_definition_arn: str | None = None
    subnet_ids: tuple[str, ...] = ()
    mount_target_ids: list[str] = field(default_factory=list)
    responses: list[Any] = field(default_factory=list)

    def require(self, name: str, *, step: str) -> Any:
        value = getattr(self, name)
        if value is None or value == () or value == []:
            raise MissingContextField(name, step)
        return value

    def record(self, payload: Any) -> None:
        self.responses.append(payload)
