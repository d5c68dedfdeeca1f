"""Connect / retry / backoff state machine for the device session."""

from __future__ import annotations

import asyncio
import logging

from plugsession.context import DeviceContext
from plugsession.device.interfaces import DeviceTransport, TransportFactory
from plugsession.resilience.escalation import FailureEscalationPolicy
from plugsession.shared.enums import SessionState
from plugsession.shared.exceptions import (
    CredentialError,
    PlugSessionError,
    SessionError,
    ShutdownError,
    classify_transport_error,
)

logger = logging.getLogger(__name__)


class SessionManager:
    """Own the single transport handle and the login attempt sequence.

    ``ensure_connected`` is single-flight: while a login sequence runs every
    caller awaits the same task. A credential change is modelled as the
    transition ``READY -> DISCONNECTED`` with a freshly built transport, so
    no operation ever runs against a connection bound to a stale token.
    """

    def __init__(
        self,
        ctx: DeviceContext,
        transport_factory: TransportFactory,
        escalation: FailureEscalationPolicy,
    ) -> None:
        self._ctx = ctx
        self._factory = transport_factory
        self._escalation = escalation
        self._transport = self._build_transport()
        self._state = SessionState.DISCONNECTED
        self._attempt = 0
        self._delay_ms = ctx.settings.initial_retry_delay_ms
        self._pending: asyncio.Task[None] | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def delay_ms(self) -> int:
        return self._delay_ms

    @property
    def login_in_progress(self) -> bool:
        return self._pending is not None

    @property
    def transport(self) -> DeviceTransport:
        return self._transport

    async def ensure_connected(self) -> None:
        """Return once the session is ready.

        Raises:
            SessionError: If every login attempt failed
            ShutdownError: If shutdown was requested before or during the sequence
        """
        if self._ctx.shutdown_requested:
            raise ShutdownError(f"{self._ctx.name}: shutting down")
        if self._state is SessionState.READY:
            return
        if self._pending is not None:
            logger.debug("%s: awaiting ongoing login attempt", self._ctx.name)
        else:
            self._pending = asyncio.ensure_future(self._login_sequence())
        await asyncio.shield(self._pending)

    async def apply_credential(self, credential: str) -> None:
        """Rebind the session to a new credential.

        The current transport is closed and replaced; the session drops to
        ``DISCONNECTED`` and reconnects on the next ``ensure_connected``.
        During a running login sequence the next attempt simply uses the new
        transport.
        """
        if self._ctx.shutdown_requested:
            raise ShutdownError(f"{self._ctx.name}: credential not applied, shutting down")
        await self._close_transport()
        self._transport = self._factory(self._ctx.settings.address, credential)
        if self._state is SessionState.READY:
            logger.info("%s: credential changed, session reset", self._ctx.name)
        if self._state is not SessionState.CONNECTING:
            self._state = SessionState.DISCONNECTED

    def invalidate(self, reason: str) -> None:
        """Mark a ready session as lost so the next operation logs in again."""
        if self._state is SessionState.READY:
            logger.info("%s: session invalidated: %s", self._ctx.name, reason)
            self._state = SessionState.DISCONNECTED

    async def close(self) -> None:
        """Release the transport. Errors are logged, never raised."""
        await self._close_transport()
        self._state = SessionState.DISCONNECTED

    def _build_transport(self) -> DeviceTransport:
        return self._factory(self._ctx.settings.address, self._ctx.credentials.reveal())

    async def _close_transport(self) -> None:
        try:
            await self._transport.close()
        except Exception as exc:
            logger.warning("%s: error closing transport: %s", self._ctx.name, exc)

    async def _login_sequence(self) -> None:
        settings = self._ctx.settings
        name = self._ctx.name
        self._state = SessionState.CONNECTING
        self._attempt = 1
        self._delay_ms = settings.initial_retry_delay_ms
        recovery_used = False
        last_error: PlugSessionError | None = None

        try:
            if self._ctx.credentials.is_dynamic and not self._ctx.credentials.present:
                logger.info("%s: no credential yet, fetching out-of-band", name)
                recovery_used = await self._recover_credential()

            while True:
                if self._ctx.shutdown_requested:
                    raise ShutdownError(f"{name}: login aborted, shutting down")

                try:
                    logger.debug("%s: attempting login (attempt %d)", name, self._attempt)
                    await self._transport.login()
                except Exception as raw:
                    exc = classify_transport_error(raw)
                    logger.warning("%s: login failed (attempt %d): %s", name, self._attempt, exc)
                    last_error = exc
                    if self._ctx.shutdown_requested:
                        raise ShutdownError(f"{name}: login aborted, shutting down") from exc
                else:
                    if self._ctx.shutdown_requested:
                        raise ShutdownError(f"{name}: login completed after shutdown, discarding session")
                    logger.info("%s: login successful (attempt %d)", name, self._attempt)
                    self._state = SessionState.READY
                    self._attempt = 0
                    self._delay_ms = settings.initial_retry_delay_ms
                    return

                if isinstance(last_error, CredentialError) and self._ctx.credentials.is_dynamic and not recovery_used:
                    recovery_used = True
                    if await self._recover_credential():
                        logger.debug("%s: credential recovered, retrying login immediately", name)
                        continue

                if self._attempt >= settings.max_login_attempts:
                    break

                logger.debug("%s: waiting %dms before next login attempt", name, self._delay_ms)
                await self._ctx.sleep(self._delay_ms / 1000)
                self._delay_ms = min(self._delay_ms * 2, settings.max_retry_delay_ms)
                self._attempt += 1
        except BaseException:
            if self._state is SessionState.CONNECTING:
                self._state = SessionState.DISCONNECTED
            raise
        finally:
            self._pending = None

        self._state = SessionState.FAILED
        error = SessionError(
            f"{name}: login failed after {self._attempt} attempts: {last_error}",
            attempts=self._attempt,
            last_error=last_error,
        )
        error.__cause__ = last_error
        logger.error("%s", error)
        self._escalation.escalate(error, reason="login attempts exhausted")
        raise error

    async def _recover_credential(self) -> bool:
        refresher = self._ctx.refresher
        if refresher is None:
            return False
        return await refresher.fetch_credential()
