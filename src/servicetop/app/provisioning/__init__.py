"""Provisioning workflow primitives.

The orchestrator, allocator and poller depend on ``protocols`` and are
imported from their own modules.
"""

from .context import ProvisioningContext
from .decoder import (
    Fatal,
    RawResponse,
    Retryable,
    StepResult,
    Success,
    decode_response,
    unwrap,
)
from .errors import (
    BatchAborted,
    InputMalformed,
    MissingContextField,
    ProvisioningError,
    RetriesExhausted,
    UpstreamFatal,
    WorkspaceValidationError,
)
from .request import WorkspaceRequest, validate_exit_region
from .state_machine import (
    PROVISIONING_SEQUENCE,
    InvalidStateTransition,
    WorkflowState,
    advance_state,
    create_workflow,
    transition_to_error,
)

__all__ = [
    'BatchAborted',
    'Fatal',
    'InputMalformed',
    'InvalidStateTransition',
    'MissingContextField',
    'PROVISIONING_SEQUENCE',
    'ProvisioningContext',
    'ProvisioningError',
    'RawResponse',
    'Retryable',
    'RetriesExhausted',
    'StepResult',
    'Success',
    'UpstreamFatal',
    'WorkflowState',
    'WorkspaceRequest',
    'WorkspaceValidationError',
    'advance_state',
    'create_workflow',
    'decode_response',
    'transition_to_error',
    'unwrap',
    'validate_exit_region',
]
