"""Deadline enforcement with exactly-one-response delivery."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Generic, TypeVar

from plugsession.context import DeviceContext
from plugsession.shared.enums import OperationKind
from plugsession.shared.exceptions import OperationTimeoutError
from plugsession.shared.models import OperationRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResponseSink(Generic[T]):
    """Single-fire response channel for one operation.

    The first of :meth:`deliver` / :meth:`fail` wins and returns True; every
    later call returns False and changes nothing. A caller that stopped
    waiting (cancelled) counts as already answered.
    """

    __slots__ = ("_future", "_responded")

    def __init__(self) -> None:
        self._future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._responded = False

    @property
    def responded(self) -> bool:
        return self._responded or self._future.done()

    def deliver(self, value: T) -> bool:
        if self.responded:
            return False
        self._responded = True
        self._future.set_result(value)
        return True

    def fail(self, exc: BaseException) -> bool:
        if self.responded:
            return False
        self._responded = True
        self._future.set_exception(exc)
        return True

    async def wait(self) -> T:
        return await self._future


class TimeoutSupervisor:
    """Race each scheduled operation against its deadline.

    When the deadline wins the caller gets :class:`OperationTimeoutError`
    right away. The operation itself is not cancelled; it keeps its place in
    the queue and runs to completion, and the scheduler logs whatever it
    eventually produces.
    """

    def __init__(self, ctx: DeviceContext) -> None:
        self._ctx = ctx

    @property
    def default_timeout(self) -> float:
        return self._ctx.settings.operation_timeout_ms / 1000

    async def run(self, kind: OperationKind, value: bool | None = None, *, timeout_s: float | None = None) -> Any:
        """Submit one operation and return its result or raise its error.

        Raises:
            OperationTimeoutError: If no outcome arrived before the deadline
            ValueError: If ``timeout_s`` is not positive
        """
        scheduler = self._ctx.scheduler
        if scheduler is None:
            raise RuntimeError("operation scheduler is not configured")
        timeout = self.default_timeout if timeout_s is None else timeout_s
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        request = OperationRequest(kind=kind, sink=ResponseSink(), value=value, deadline=deadline)
        timer = loop.call_at(deadline, self._expire, request, timeout)
        try:
            scheduler.submit(request)
            return await request.sink.wait()
        finally:
            timer.cancel()

    def _expire(self, request: OperationRequest, timeout: float) -> None:
        error = OperationTimeoutError(f"{self._ctx.name}: {request.label} timed out after {timeout:.1f}s")
        if request.sink.fail(error):
            logger.warning(
                "%s: %s timed out after %.1fs; letting it finish in the background",
                self._ctx.name,
                request.label,
                timeout,
            )
