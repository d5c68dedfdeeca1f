"""Decide whether an unrecoverable failure should restart the process."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable

from plugsession.shared.enums import RestartScope
from plugsession.shared.models import RuntimeContext

logger = logging.getLogger(__name__)

# Set on an exception once it has been escalated.
_ESCALATED_ATTR = "_plugsession_escalated"


class FailureEscalationPolicy:
    """Map terminal failures onto a restart scope.

    ====================  =====================  ===============================
    isolated instance     force restart          action
    ====================  =====================  ===============================
    True                  any                    exit ``RESTART_INSTANCE`` (2)
    False                 True                   exit ``RESTART_HOST`` (1)
    False                 False                  log, stay loaded, degraded
    ====================  =====================  ===============================

    Exits are scheduled on the running loop after ``runtime.grace_delay_s``
    so in-flight log records and responses get a chance to go out.
    """

    def __init__(
        self,
        runtime: RuntimeContext,
        *,
        name: str = "device",
        exit_fn: Callable[[int], object] = sys.exit,
    ) -> None:
        self._runtime = runtime
        self._name = name
        self._exit_fn = exit_fn
        self._exit_handle: asyncio.TimerHandle | None = None
        self._scheduled = RestartScope.NONE
        self._degraded = False

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def scheduled(self) -> RestartScope:
        """Restart scope of the pending exit, ``NONE`` if nothing is scheduled."""
        return self._scheduled

    def decide(self) -> RestartScope:
        """Return the restart scope the current configuration calls for."""
        if self._runtime.isolated_instance:
            return RestartScope.RESTART_INSTANCE
        if self._runtime.force_restart_on_failure:
            return RestartScope.RESTART_HOST
        return RestartScope.NONE

    def escalate(self, exc: BaseException, *, reason: str) -> RestartScope:
        """Handle one unrecoverable failure and return the action taken.

        The same failure is only ever handled once: repeated calls with the
        exception, or with a wrapper chaining it as ``__cause__``, return the
        scope decided the first time.
        """
        previous = _escalated_scope(exc)
        if previous is not None:
            logger.debug("%s: failure already escalated, ignoring: %s", self._name, exc)
            return RestartScope(previous)

        scope = self.decide()
        setattr(exc, _ESCALATED_ATTR, int(scope))
        logger.error("%s: unrecoverable error (%s): %s", self._name, reason, exc)

        if self._scheduled is not RestartScope.NONE:
            logger.warning("%s: restart already scheduled (exit %d)", self._name, int(self._scheduled))
            return self._scheduled

        if scope is RestartScope.NONE:
            self._degraded = True
            logger.error(
                "%s: not configured to restart (isolated_instance=%s, force_restart_on_failure=%s); "
                "remaining loaded in degraded state",
                self._name,
                self._runtime.isolated_instance,
                self._runtime.force_restart_on_failure,
            )
            return scope

        grace = self._runtime.grace_delay_s
        target = "instance" if scope is RestartScope.RESTART_INSTANCE else "host"
        logger.error("%s: scheduling %s restart (exit %d) in %.1fs", self._name, target, int(scope), grace)
        loop = asyncio.get_running_loop()
        self._exit_handle = loop.call_later(grace, self._exit, scope)
        self._scheduled = scope
        return scope

    def cancel(self) -> bool:
        """Cancel a scheduled exit. Returns True if one was pending."""
        if self._exit_handle is None:
            return False
        self._exit_handle.cancel()
        self._exit_handle = None
        logger.info("%s: scheduled restart (exit %d) cancelled", self._name, int(self._scheduled))
        self._scheduled = RestartScope.NONE
        return True

    def _exit(self, scope: RestartScope) -> None:
        self._exit_handle = None
        logger.error("%s: exiting with code %d", self._name, int(scope))
        self._exit_fn(int(scope))


def _escalated_scope(exc: BaseException) -> int | None:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        scope = getattr(current, _ESCALATED_ATTR, None)
        if scope is not None:
            return int(scope)
        current = current.__cause__
    return None
