"""Domain enumerations used across the session engine."""

from __future__ import annotations

from enum import Enum, IntEnum, unique


@unique
class SessionState(str, Enum):
    """Lifecycle states for the authenticated device session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"


@unique
class OperationKind(str, Enum):
    """Units of work accepted by the operation scheduler."""

    READ = "read"
    WRITE = "write"
    REFRESH = "refresh"


@unique
class CredentialMode(str, Enum):
    """Where the device credential comes from."""

    FIXED = "fixed"
    DYNAMIC = "dynamic"


@unique
class RestartScope(IntEnum):
    """Escalation outcome; non-zero members double as process exit codes."""

    NONE = 0
    RESTART_HOST = 1
    RESTART_INSTANCE = 2
