"""Tests for FailureEscalationPolicy."""

from __future__ import annotations

import asyncio

import pytest

from plugsession.resilience.escalation import FailureEscalationPolicy
from plugsession.shared.enums import RestartScope
from plugsession.shared.exceptions import RefreshError, SessionError
from plugsession.shared.models import RuntimeContext


def _policy(exit_calls: list[int], *, isolated: bool, force: bool, grace: float = 0.0) -> FailureEscalationPolicy:
    runtime = RuntimeContext(isolated_instance=isolated, force_restart_on_failure=force, grace_delay_s=grace)
    return FailureEscalationPolicy(runtime, name="Test Plug", exit_fn=exit_calls.append)


@pytest.mark.parametrize(
    ("isolated", "force", "expected"),
    [
        (True, False, RestartScope.RESTART_INSTANCE),
        (True, True, RestartScope.RESTART_INSTANCE),
        (False, True, RestartScope.RESTART_HOST),
        (False, False, RestartScope.NONE),
    ],
)
async def test_decision_table(isolated: bool, force: bool, expected: RestartScope) -> None:
    exit_calls: list[int] = []
    policy = _policy(exit_calls, isolated=isolated, force=force, grace=0.01)

    scope = policy.escalate(SessionError("login failed"), reason="test")
    await asyncio.sleep(0.05)

    assert scope is expected
    if expected is RestartScope.NONE:
        assert exit_calls == []
        assert policy.degraded
    else:
        assert exit_calls == [int(expected)]
        assert not policy.degraded


def test_exit_codes_are_distinct() -> None:
    assert int(RestartScope.RESTART_HOST) == 1
    assert int(RestartScope.RESTART_INSTANCE) == 2


async def test_exit_waits_for_grace_delay() -> None:
    exit_calls: list[int] = []
    policy = _policy(exit_calls, isolated=True, force=False, grace=10.0)

    policy.escalate(SessionError("login failed"), reason="test")
    await asyncio.sleep(0)

    assert exit_calls == []
    assert policy.scheduled is RestartScope.RESTART_INSTANCE
    assert policy.cancel()
    assert policy.scheduled is RestartScope.NONE


async def test_same_failure_is_handled_once(caplog: pytest.LogCaptureFixture) -> None:
    exit_calls: list[int] = []
    policy = _policy(exit_calls, isolated=False, force=False)
    err = SessionError("login failed")

    policy.escalate(err, reason="first")
    policy.escalate(err, reason="second")

    assert caplog.text.count("unrecoverable error") == 1


async def test_wrapper_of_escalated_failure_is_not_escalated_again() -> None:
    exit_calls: list[int] = []
    policy = _policy(exit_calls, isolated=False, force=True, grace=10.0)
    original = SessionError("login failed")
    policy.escalate(original, reason="login")

    wrapper = RefreshError("reconnect failed")
    wrapper.__cause__ = original

    assert policy.escalate(wrapper, reason="refresh") is RestartScope.RESTART_HOST
    policy.cancel()


async def test_second_distinct_failure_does_not_reschedule(caplog: pytest.LogCaptureFixture) -> None:
    exit_calls: list[int] = []
    policy = _policy(exit_calls, isolated=True, force=False, grace=0.01)

    policy.escalate(SessionError("first"), reason="test")
    policy.escalate(RefreshError("second"), reason="test")
    await asyncio.sleep(0.05)

    assert exit_calls == [2]
    assert "restart already scheduled" in caplog.text
