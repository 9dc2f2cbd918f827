"""Workspace provisioning state-machine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from servicetop.app.provisioning.state_machine import (
    PROVISIONING_SEQUENCE,
    InvalidStateTransition,
    advance_state,
    create_workflow,
    transition_to_error,
)


def _t(seconds: int) -> datetime:
    return datetime(2026, 2, 13, 12, 0, 0, tzinfo=timezone.utc) + timedelta(
        seconds=seconds
    )


class TestCreateWorkflow:
    def test_defaults(self):
        run = create_workflow(workspace_name='ws1', now=_t(0))
        assert run.state == 'init'
        assert run.started_at == _t(0)
        assert run.finished_at is None
        assert run.failed_step is None

    def test_requires_name(self):
        with pytest.raises(ValueError, match='workspace_name is required'):
            create_workflow(workspace_name='')

    def test_rejects_naive_now(self):
        with pytest.raises(ValueError, match='timezone-aware'):
            create_workflow(workspace_name='ws1', now=datetime(2026, 2, 13, 12, 0, 0))


class TestAdvance:
    def test_walks_the_full_sequence_to_done(self):
        run = create_workflow(workspace_name='ws1', now=_t(0))
        seen = [run.state]
        for i in range(1, len(PROVISIONING_SEQUENCE)):
            run = advance_state(run, now=_t(i))
            seen.append(run.state)

        assert tuple(seen) == PROVISIONING_SEQUENCE
        assert run.state == 'done'
        assert run.finished_at == _t(len(PROVISIONING_SEQUENCE) - 1)

    def test_done_is_terminal(self):
        run = create_workflow(workspace_name='ws1', now=_t(0))
        for i in range(1, len(PROVISIONING_SEQUENCE)):
            run = advance_state(run, now=_t(i))

        with pytest.raises(InvalidStateTransition):
            advance_state(run, now=_t(99))

    def test_rejects_naive_now(self):
        run = create_workflow(workspace_name='ws1', now=_t(0))
        with pytest.raises(ValueError, match='timezone-aware'):
            advance_state(run, now=datetime(2026, 2, 13, 12, 0, 1))


class TestError:
    def test_records_failed_step(self):
        run = create_workflow(workspace_name='ws1', now=_t(0))
        run = advance_state(run, now=_t(1))
        run = advance_state(run, now=_t(2))

        failed = transition_to_error(run, now=_t(3), error_detail='boom')

        assert failed.state == 'error'
        assert failed.failed_step == 'create_target_group'
        assert failed.last_error_detail == 'boom'
        assert failed.finished_at == _t(3)

    def test_init_cannot_fail(self):
        run = create_workflow(workspace_name='ws1', now=_t(0))
        with pytest.raises(InvalidStateTransition):
            transition_to_error(run, now=_t(1), error_detail='boom')

    def test_error_is_terminal(self):
        run = create_workflow(workspace_name='ws1', now=_t(0))
        run = advance_state(run, now=_t(1))
        run = transition_to_error(run, now=_t(2), error_detail='boom')

        with pytest.raises(InvalidStateTransition):
            advance_state(run, now=_t(3))
        with pytest.raises(InvalidStateTransition):
            transition_to_error(run, now=_t(3), error_detail='again')
