"""Strict FIFO scheduling of device operations."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

from plugsession.context import DeviceContext
from plugsession.resilience.escalation import FailureEscalationPolicy
from plugsession.resilience.session import SessionManager
from plugsession.resilience.supervisor import ResponseSink
from plugsession.shared.enums import OperationKind
from plugsession.shared.exceptions import (
    CredentialError,
    NetworkError,
    RefreshError,
    ShutdownError,
    classify_transport_error,
)
from plugsession.shared.models import OperationRequest

logger = logging.getLogger(__name__)


class OperationScheduler:
    """Serialize every transport call behind a chain of continuations.

    Each submitted request becomes a task that first waits for the previous
    request's task to finish, whatever its outcome, and only then touches
    the transport. The transport therefore never sees two calls at once and
    a failed link never blocks the ones after it.
    """

    def __init__(
        self,
        ctx: DeviceContext,
        session: SessionManager,
        escalation: FailureEscalationPolicy,
    ) -> None:
        self._ctx = ctx
        self._session = session
        self._escalation = escalation
        self._tail: asyncio.Task[None] | None = None
        self._seq = itertools.count(1)
        self._pending = 0

    @property
    def pending(self) -> int:
        """Requests submitted and not yet finished."""
        return self._pending

    def submit(self, request: OperationRequest) -> None:
        """Append *request* to the queue; its sink fires exactly once."""
        request.seq = next(self._seq)
        if self._ctx.shutdown_requested:
            logger.debug("%s: rejecting %s, shutting down", self._ctx.name, request.label)
            request.sink.fail(ShutdownError(f"{self._ctx.name}: shutting down"))
            return
        previous = self._tail
        self._pending += 1
        self._tail = asyncio.ensure_future(self._run_after(previous, request))

    async def run(self, kind: OperationKind, value: bool | None = None) -> Any:
        """Submit an internal request without a deadline and await its outcome."""
        request = OperationRequest(kind=kind, sink=ResponseSink(), value=value)
        self.submit(request)
        return await request.sink.wait()

    async def drain(self) -> None:
        """Wait until everything submitted so far has finished."""
        tail = self._tail
        if tail is not None:
            await asyncio.wait([tail])

    async def _run_after(self, previous: asyncio.Task[None] | None, request: OperationRequest) -> None:
        try:
            if previous is not None:
                await asyncio.wait([previous])
            await self._run(request)
        finally:
            self._pending -= 1

    async def _run(self, request: OperationRequest) -> None:
        name = self._ctx.name
        if self._ctx.shutdown_requested:
            self._respond_error(request, ShutdownError(f"{name}: shutting down"))
            return

        logger.debug("%s: executing %s", name, request.label)
        try:
            result = await self._execute(request)
        except asyncio.CancelledError:
            request.sink.fail(ShutdownError(f"{name}: {request.label} cancelled"))
            raise
        except Exception as exc:
            self._respond_error(request, exc)
            return

        if request.sink.deliver(result):
            logger.debug("%s: %s completed", name, request.label)
        else:
            logger.info("%s: %s completed after its caller stopped waiting (result=%r)", name, request.label, result)

    async def _execute(self, request: OperationRequest) -> Any:
        if request.kind is OperationKind.REFRESH:
            refresher = self._ctx.refresher
            if refresher is None:
                raise RefreshError(f"{self._ctx.name}: token refresh is not configured")
            await refresher.refresh()
            return None

        await self._session.ensure_connected()
        try:
            return await self._invoke(request)
        except CredentialError as exc:
            refresher = self._ctx.refresher
            if refresher is None or not refresher.enabled:
                raise
            logger.warning(
                "%s: %s rejected credential (%s), refreshing and retrying once", self._ctx.name, request.label, exc
            )

        await refresher.refresh()
        try:
            return await self._invoke(request)
        except CredentialError as exc:
            logger.error("%s: %s still rejected after credential refresh: %s", self._ctx.name, request.label, exc)
            self._escalation.escalate(exc, reason="credential rejected after refresh")
            raise

    async def _invoke(self, request: OperationRequest) -> Any:
        transport = self._session.transport
        try:
            if request.kind is OperationKind.READ:
                state = await transport.query_state()
                logger.debug("%s: device state is %s", self._ctx.name, "on" if state else "off")
                return bool(state)
            await transport.set_state(bool(request.value))
            logger.debug("%s: device switched %s", self._ctx.name, "on" if request.value else "off")
            return None
        except Exception as raw:
            exc = classify_transport_error(raw)
            if isinstance(exc, NetworkError):
                self._session.invalidate(str(exc))
            raise exc

    def _respond_error(self, request: OperationRequest, exc: Exception) -> None:
        name = self._ctx.name
        if isinstance(exc, ShutdownError):
            logger.info("%s: %s aborted: %s", name, request.label, exc)
        else:
            logger.warning("%s: %s failed: %s", name, request.label, exc)
            if self._ctx.runtime.force_restart_on_failure:
                self._escalation.escalate(exc, reason=f"{request.kind.value} operation failed")

        if not request.sink.fail(exc):
            logger.info("%s: %s failed after its caller stopped waiting: %s", name, request.label, exc)
