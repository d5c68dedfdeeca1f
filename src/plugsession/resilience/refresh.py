"""Single-flight out-of-band credential refresh, on demand and periodic."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from plugsession.context import DeviceContext
from plugsession.resilience.escalation import FailureEscalationPolicy
from plugsession.resilience.session import SessionManager
from plugsession.shared.enums import OperationKind
from plugsession.shared.exceptions import (
    PlugSessionError,
    RefreshError,
    SessionError,
    ShutdownError,
    classify_transport_error,
)

logger = logging.getLogger(__name__)


class TokenRefreshCoordinator:
    """Fetch fresh credentials over the side channel.

    Two entry points share the fetch:

    * :meth:`fetch_credential` is what the login loop uses. It stores the new
      token and rebinds the session transport, but never reconnects and never
      escalates; it only reports success.
    * :meth:`refresh` fetches, rebinds, reconnects and escalates on failure.

    Both are single-flight: concurrent callers await the running task and see
    its outcome instead of starting a second fetch.
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
        self._fetch_task: asyncio.Task[None] | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self._periodic_task: asyncio.Task[None] | None = None
        self._periodic_queued = False

    @property
    def enabled(self) -> bool:
        return self._ctx.credentials.is_dynamic

    @property
    def in_progress(self) -> bool:
        return self._refresh_task is not None or self._fetch_task is not None

    @property
    def periodic_running(self) -> bool:
        return self._periodic_task is not None and not self._periodic_task.done()

    async def fetch_credential(self) -> bool:
        """Fetch and store a new credential. Returns False on any failure."""
        try:
            await self._fetch_and_apply()
        except PlugSessionError as exc:
            logger.warning("%s: credential recovery failed: %s", self._ctx.name, exc)
            return False
        return True

    async def refresh(self) -> None:
        """Fetch a new credential, reset the session and reconnect.

        Raises:
            RefreshError: If the fetch or the reconnect failed
            ShutdownError: If shutdown was requested meanwhile
        """
        if not self.enabled:
            raise RefreshError(f"{self._ctx.name}: out-of-band credential refresh is disabled")
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._run_refresh())
        else:
            logger.debug("%s: waiting for in-progress token refresh", self._ctx.name)
        await asyncio.shield(self._refresh_task)

    async def _run_refresh(self) -> None:
        name = self._ctx.name
        try:
            logger.debug("%s: refreshing credential out-of-band", name)
            await self._fetch_and_apply()
            await self._session.ensure_connected()
            logger.info("%s: reconnected after credential refresh", name)
        except ShutdownError:
            raise
        except SessionError as exc:
            # Login exhaustion has already been escalated by the session.
            logger.error("%s: reconnect after credential refresh failed: %s", name, exc)
            raise RefreshError(f"{name}: reconnect after credential refresh failed: {exc}") from exc
        except PlugSessionError as exc:
            logger.error("%s: credential refresh failed: %s", name, exc)
            self._escalation.escalate(exc, reason="credential refresh failed")
            raise
        finally:
            self._refresh_task = None

    async def _fetch_and_apply(self) -> None:
        if self._fetch_task is None:
            self._fetch_task = asyncio.ensure_future(self._run_fetch())
        else:
            logger.debug("%s: awaiting in-progress credential fetch", self._ctx.name)
        await asyncio.shield(self._fetch_task)

    async def _run_fetch(self) -> None:
        name = self._ctx.name
        try:
            if self._ctx.shutdown_requested:
                raise ShutdownError(f"{name}: credential fetch aborted, shutting down")
            try:
                token = await self._session.transport.fetch_credential_out_of_band()
            except Exception as raw:
                cause = classify_transport_error(raw)
                raise RefreshError(f"{name}: out-of-band credential fetch failed: {cause}") from raw
            if self._ctx.shutdown_requested:
                raise ShutdownError(f"{name}: credential fetch discarded, shutting down")
            if not token or not token.strip():
                raise RefreshError(f"{name}: out-of-band channel returned no token")

            self._ctx.credentials.update(token)
            await self._session.apply_credential(self._ctx.credentials.reveal())
            logger.info("%s: credential refreshed (revision=%d)", name, self._ctx.credentials.revision)
        finally:
            self._fetch_task = None

    # ── Periodic refresh ────────────────────────────────────────

    def start_periodic(self) -> bool:
        """Start the background refresh timer. No-op unless credentials are dynamic."""
        if not self.enabled or self.periodic_running:
            return False
        interval = self._ctx.settings.token_refresh_interval_ms / 1000
        self._periodic_task = asyncio.ensure_future(self._periodic_loop(interval))
        logger.info("%s: periodic token refresh started (interval=%.0fs)", self._ctx.name, interval)
        return True

    async def stop_periodic(self) -> None:
        task = self._periodic_task
        self._periodic_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("%s: periodic token refresh stopped", self._ctx.name)

    async def run_periodic_refresh(self) -> bool:
        """Queue one refresh behind pending operations.

        Returns False without doing anything when a refresh is already
        running or queued; that run already captures the intent.
        """
        name = self._ctx.name
        scheduler = self._ctx.scheduler
        if self._ctx.shutdown_requested or scheduler is None:
            return False
        if self.in_progress or self._periodic_queued:
            logger.debug("%s: periodic token refresh skipped: already in progress", name)
            return False

        self._periodic_queued = True
        try:
            await scheduler.run(OperationKind.REFRESH)
        except ShutdownError:
            logger.debug("%s: periodic token refresh cancelled by shutdown", name)
        except PlugSessionError as exc:
            logger.warning("%s: periodic token refresh error: %s", name, exc)
        finally:
            self._periodic_queued = False
        return True

    async def _periodic_loop(self, interval: float) -> None:
        while not self._ctx.shutdown_requested:
            await asyncio.sleep(interval)
            if self._ctx.shutdown_requested:
                break
            try:
                await self.run_periodic_refresh()
            except Exception as exc:
                logger.exception("%s: periodic token refresh crashed: %s", self._ctx.name, exc)
