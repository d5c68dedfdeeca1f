"""Public facade: one resilient control session to one smart plug."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable, Mapping
from types import TracebackType

from plugsession.config import Settings
from plugsession.context import DeviceContext, SleepFn
from plugsession.device.interfaces import HostInfo, TransportFactory
from plugsession.resilience.escalation import FailureEscalationPolicy
from plugsession.resilience.refresh import TokenRefreshCoordinator
from plugsession.resilience.scheduler import OperationScheduler
from plugsession.resilience.session import SessionManager
from plugsession.resilience.supervisor import TimeoutSupervisor
from plugsession.resilience.topology import resolve_runtime_context
from plugsession.shared.credentials import CredentialStore
from plugsession.shared.enums import OperationKind, SessionState
from plugsession.shared.models import RuntimeContext

logger = logging.getLogger(__name__)


class SmartPlugController:
    """Wire the session engine for one device and expose read/write.

    Every call goes through the FIFO scheduler and is raced against a
    deadline, so callers always get exactly one answer in bounded time.
    """

    def __init__(
        self,
        settings: Settings,
        transport_factory: TransportFactory,
        *,
        host: HostInfo | None = None,
        environ: Mapping[str, str] | None = None,
        exit_fn: Callable[[int], object] = sys.exit,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        runtime = resolve_runtime_context(settings, host=host, environ=environ)
        credentials = CredentialStore(settings.credential_mode, settings.initial_credential)
        ctx = DeviceContext(settings=settings, runtime=runtime, credentials=credentials, sleep=sleep)

        escalation = FailureEscalationPolicy(runtime, name=settings.name, exit_fn=exit_fn)
        session = SessionManager(ctx, transport_factory, escalation)
        refresher = TokenRefreshCoordinator(ctx, session, escalation)
        scheduler = OperationScheduler(ctx, session, escalation)
        ctx.escalation = escalation
        ctx.session = session
        ctx.refresher = refresher
        ctx.scheduler = scheduler

        self._ctx = ctx
        self._escalation = escalation
        self._session = session
        self._refresher = refresher
        self._scheduler = scheduler
        self._supervisor = TimeoutSupervisor(ctx)
        self._closed = False

        logger.info(
            "%s: initialised address=%s isolated_instance=%s credential_mode=%s",
            settings.name,
            settings.address,
            runtime.isolated_instance,
            credentials.mode.value,
        )

    @property
    def name(self) -> str:
        return self._ctx.name

    @property
    def context(self) -> DeviceContext:
        return self._ctx

    @property
    def runtime(self) -> RuntimeContext:
        return self._ctx.runtime

    @property
    def session_state(self) -> SessionState:
        return self._session.state

    @property
    def pending_operations(self) -> int:
        return self._scheduler.pending

    @property
    def degraded(self) -> bool:
        return self._escalation.degraded

    async def start(self) -> None:
        """Start background work (periodic token refresh in dynamic mode)."""
        self._refresher.start_periodic()

    async def read_state(self, timeout_s: float | None = None) -> bool:
        """Return whether the plug is on.

        Raises:
            OperationTimeoutError: If the deadline passed first
            PlugSessionError: For any classified device or session failure
        """
        result = await self._supervisor.run(OperationKind.READ, timeout_s=timeout_s)
        return bool(result)

    async def write_state(self, value: bool, timeout_s: float | None = None) -> None:
        """Switch the plug on or off."""
        await self._supervisor.run(OperationKind.WRITE, bool(value), timeout_s=timeout_s)

    async def refresh_credential(self, timeout_s: float | None = None) -> None:
        """Fetch a new token out-of-band and reconnect, queued behind pending operations."""
        await self._supervisor.run(OperationKind.REFRESH, timeout_s=timeout_s)

    async def shutdown(self) -> None:
        """Stop accepting work, stop timers and release the transport. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._ctx.request_shutdown()
        await self._refresher.stop_periodic()
        await self._session.close()
        logger.info("%s: shut down", self.name)

    async def __aenter__(self) -> SmartPlugController:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()
