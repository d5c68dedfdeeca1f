"""In-memory device transport used across the test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from plugsession.config import Settings
from plugsession.controller import SmartPlugController

Outcome = Any  # value to return, or an exception instance to raise
ControllerFactory = Callable[..., SmartPlugController]


class FakeTransport:
    """One connection bound to a credential, backed by a shared FakePlug."""

    def __init__(self, plug: FakePlug, address: str, credential: str) -> None:
        self.plug = plug
        self.address = address
        self.credential = credential
        self.closed = False

    async def login(self) -> None:
        await self.plug.call("login", self.credential, self.plug.login_outcomes)

    async def query_state(self) -> bool:
        result = await self.plug.call("query_state", self.credential, self.plug.query_outcomes)
        return self.plug.state if result is None else bool(result)

    async def set_state(self, value: bool) -> None:
        await self.plug.call("set_state", self.credential, self.plug.set_outcomes)
        self.plug.state = value

    async def fetch_credential_out_of_band(self) -> str | None:
        self.plug.calls.append(("fetch", self.credential))
        if self.plug.fetch_gate is not None:
            await self.plug.fetch_gate.wait()
        if self.plug.fetch_outcomes:
            outcome = self.plug.fetch_outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        self.plug.issued += 1
        return f"token-{self.plug.issued}"

    async def close(self) -> None:
        self.closed = True
        if self.plug.close_error is not None:
            raise self.plug.close_error


class FakePlug:
    """Scripted device shared by every transport the factory builds.

    ``*_outcomes`` lists are consumed one entry per call; an empty list means
    success. ``in_flight``/``max_in_flight`` track overlapping device calls.
    """

    def __init__(self) -> None:
        self.state = False
        self.calls: list[tuple[str, str]] = []
        self.login_outcomes: list[Outcome] = []
        self.query_outcomes: list[Outcome] = []
        self.set_outcomes: list[Outcome] = []
        self.fetch_outcomes: list[Outcome] = []
        self.delay = 0.0
        self.query_gate: asyncio.Event | None = None
        self.fetch_gate: asyncio.Event | None = None
        self.close_error: BaseException | None = None
        self.in_flight = 0
        self.max_in_flight = 0
        self.issued = 0
        self.transports: list[FakeTransport] = []

    def factory(self, address: str, credential: str) -> FakeTransport:
        transport = FakeTransport(self, address, credential)
        self.transports.append(transport)
        return transport

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def methods(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def call(self, method: str, credential: str, outcomes: list[Outcome]) -> Any:
        self.calls.append((method, credential))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if method == "query_state" and self.query_gate is not None:
                await self.query_gate.wait()
            outcome = outcomes.pop(0) if outcomes else None
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class StaticHost:
    """Minimal HostInfo implementation."""

    def __init__(self, *, is_isolated_instance: bool | None = None, name: str | None = None) -> None:
        self.is_isolated_instance = is_isolated_instance
        self.name = name


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "name": "Test Plug",
        "address": "192.168.1.50",
        "pin": "123456",
        "isolated_instance": False,
    }
    values.update(overrides)
    return Settings(**values)
