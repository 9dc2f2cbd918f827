"""Provisioning error hierarchy.

Conflict-retryable outcomes are not exceptions: they are ``Retryable`` step
results consumed by the priority allocator and the readiness poller. Every
class here reaches the HTTP layer.
"""

from __future__ import annotations


class ProvisioningError(Exception):
    """Base class for failures surfaced to the caller."""


class UpstreamFatal(ProvisioningError):
    """A remote API answered with a non-retryable failure.

    Aborts the current step and the whole workflow run.
    """

    def __init__(
        self,
        message: str,
        *,
        step: str = '',
        status_code: int = 0,
        response_body: str = '',
    ) -> None:
        self.message = message
        self.step = step
        self.status_code = status_code
        self.response_body = response_body
        prefix = f'{step}: ' if step else ''
        super().__init__(f'{prefix}{message}')


class RetriesExhausted(UpstreamFatal):
    """A conflict retry loop hit its attempt cap."""

    def __init__(self, *, step: str, code: str, attempts: int) -> None:
        self.code = code
        self.attempts = attempts
        super().__init__(
            f'still {code} after {attempts} attempts',
            step=step,
            status_code=409,
        )


class BatchAborted(UpstreamFatal):
    """A restart/update batch stopped at ``failed``.

    ``completed`` lists the workspaces processed before the failure, in order.
    """

    def __init__(
        self,
        *,
        failed: str,
        completed: list[str],
        cause: UpstreamFatal,
    ) -> None:
        self.failed = failed
        self.completed = list(completed)
        self.cause = cause
        super().__init__(
            f'workspace {failed!r} failed: {cause}',
            step=cause.step,
            status_code=cause.status_code,
            response_body=cause.response_body,
        )


class MissingContextField(ProvisioningError):
    """A step was about to run without an output of an earlier step."""

    def __init__(self, field: str, step: str) -> None:
        self.field = field
        self.step = step
        super().__init__(f'step {step!r} requires {field!r} which is not set')


class WorkspaceValidationError(ValueError):
    """Request rejected before any remote call was made."""


class InputMalformed(ValueError):
    """Request body is not the expected shape."""
