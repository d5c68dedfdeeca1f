"""Domain models shared by the session engine components."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from plugsession.shared.enums import OperationKind

if TYPE_CHECKING:
    from plugsession.resilience.supervisor import ResponseSink


class RuntimeContext(BaseModel):
    """Immutable snapshot of deployment topology and restart policy."""

    model_config = {"frozen": True}

    isolated_instance: bool = False
    isolation_source: str = "default"
    force_restart_on_failure: bool = False
    grace_delay_s: float = 1.0


@dataclass(slots=True)
class OperationRequest:
    """One queued unit of work.

    ``deadline`` is an absolute event-loop time, or ``None`` for internal
    requests that are never timed out. ``seq`` is assigned on submission.
    """

    kind: OperationKind
    sink: ResponseSink[Any]
    value: bool | None = None
    deadline: float | None = None
    seq: int = 0

    @property
    def label(self) -> str:
        if self.kind is OperationKind.WRITE:
            return f"{self.kind.value}({'on' if self.value else 'off'})#{self.seq}"
        return f"{self.kind.value}#{self.seq}"
