"""Shared pytest fixtures for the plugsession test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from fakes import FakePlug, RecordingSleep, make_settings

from plugsession.controller import SmartPlugController


@pytest.fixture()
def plug() -> FakePlug:
    return FakePlug()


@pytest.fixture()
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def exit_calls() -> list[int]:
    return []


@pytest.fixture()
async def make_controller(
    plug: FakePlug,
    sleeper: RecordingSleep,
    exit_calls: list[int],
) -> AsyncIterator[Callable[..., SmartPlugController]]:
    """Build controllers wired to the fake plug; all are shut down afterwards."""
    created: list[SmartPlugController] = []

    def _make(*, host: Any = None, environ: dict[str, str] | None = None, **overrides: Any) -> SmartPlugController:
        controller = SmartPlugController(
            make_settings(**overrides),
            plug.factory,
            host=host,
            environ={} if environ is None else environ,
            exit_fn=exit_calls.append,
            sleep=sleeper,
        )
        created.append(controller)
        return controller

    yield _make

    if plug.query_gate is not None:
        plug.query_gate.set()
    if plug.fetch_gate is not None:
        plug.fetch_gate.set()
    for controller in created:
        await controller.shutdown()
        await controller.context.scheduler.drain()  # type: ignore[union-attr]
        controller.context.escalation.cancel()  # type: ignore[union-attr]
