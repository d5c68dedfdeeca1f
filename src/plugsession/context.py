"""Explicit per-device state shared by the session engine components."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from plugsession.config import Settings
from plugsession.shared.credentials import CredentialStore
from plugsession.shared.models import RuntimeContext

if TYPE_CHECKING:
    from plugsession.resilience.escalation import FailureEscalationPolicy
    from plugsession.resilience.refresh import TokenRefreshCoordinator
    from plugsession.resilience.scheduler import OperationScheduler
    from plugsession.resilience.session import SessionManager

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class DeviceContext:
    """Everything one device instance owns.

    Components receive this object instead of reaching for module state so
    several controllers can live in one process. The component slots are
    filled in by the controller once every piece is built.
    """

    settings: Settings
    runtime: RuntimeContext
    credentials: CredentialStore
    sleep: SleepFn = asyncio.sleep
    shutdown_requested: bool = False

    session: SessionManager | None = field(default=None, repr=False)
    refresher: TokenRefreshCoordinator | None = field(default=None, repr=False)
    scheduler: OperationScheduler | None = field(default=None, repr=False)
    escalation: FailureEscalationPolicy | None = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.settings.name

    def request_shutdown(self) -> bool:
        """Flag shutdown. Returns False if it was already requested."""
        if self.shutdown_requested:
            return False
        self.shutdown_requested = True
        return True
