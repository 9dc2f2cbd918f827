"""Workspace provisioning state machine.

Implements the canonical provisioning flow:
  init -> create_storage -> create_target_group -> allocate_listener_rules
  -> create_task_definition -> describe_subnets -> create_mount_targets
  -> create_service -> create_dns_record -> done

And the single error transition:
  any active step -> error

There is no retry-from-error: a failed run is retried by the caller with the
same workspace name, which starts a fresh state machine.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from types import MappingProxyType

PROVISIONING_SEQUENCE = (
    'init',
    'create_storage',
    'create_target_group',
    'allocate_listener_rules',
    'create_task_definition',
    'describe_subnets',
    'create_mount_targets',
    'create_service',
    'create_dns_record',
    'done',
)

TERMINAL_STATES = frozenset({'done', 'error'})
ACTIVE_STATES = frozenset(PROVISIONING_SEQUENCE[1:-1])

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        **{
            state: frozenset({PROVISIONING_SEQUENCE[i + 1], 'error'})
            for i, state in enumerate(PROVISIONING_SEQUENCE[:-1])
        },
        'init': frozenset({'create_storage'}),
        'done': frozenset(),
        'error': frozenset(),
    }
)


@dataclass(frozen=True, slots=True)
class WorkflowState:
    """State snapshot for one workspace provisioning run."""

    workspace_name: str
    state: str = 'init'
    state_entered_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    failed_step: str | None = None
    last_error_detail: str | None = None


class InvalidStateTransition(ValueError):
    """Raised for invalid provisioning state transitions."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f'invalid state transition: {from_state!r} -> {to_state!r}'
        )


def create_workflow(
    *,
    workspace_name: str,
    now: datetime | None = None,
) -> WorkflowState:
    """Create a new run snapshot in ``init``."""
    if not workspace_name:
        raise ValueError('workspace_name is required')
    if now is not None:
        _require_aware_datetime(now)
    return WorkflowState(
        workspace_name=workspace_name,
        state_entered_at=now,
        started_at=now,
    )


def advance_state(
    run: WorkflowState,
    *,
    now: datetime,
) -> WorkflowState:
    """Advance provisioning by exactly one step."""
    _require_aware_datetime(now)
    if run.state in TERMINAL_STATES:
        raise InvalidStateTransition(run.state, 'next')

    current_index = PROVISIONING_SEQUENCE.index(run.state)
    return _transition(run, to_state=PROVISIONING_SEQUENCE[current_index + 1], now=now)


def transition_to_error(
    run: WorkflowState,
    *,
    now: datetime,
    error_detail: str,
) -> WorkflowState:
    """Move an active provisioning state to terminal ``error``."""
    _require_aware_datetime(now)
    if run.state not in ACTIVE_STATES:
        raise InvalidStateTransition(run.state, 'error')

    return replace(
        _transition(run, to_state='error', now=now),
        failed_step=run.state,
        last_error_detail=error_detail,
    )


def _transition(
    run: WorkflowState,
    *,
    to_state: str,
    now: datetime,
) -> WorkflowState:
    allowed = ALLOWED_TRANSITIONS.get(run.state, frozenset())
    if to_state not in allowed:
        raise InvalidStateTransition(run.state, to_state)

    return replace(
        run,
        state=to_state,
        state_entered_at=now,
        finished_at=now if to_state in TERMINAL_STATES else None,
        started_at=run.started_at or now,
    )


def _require_aware_datetime(value: datetime) -> None:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError('now must be timezone-aware')
