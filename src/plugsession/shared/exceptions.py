"""Hierarchical exception types for the device session engine."""

from __future__ import annotations

import asyncio

# Status code the device answers with when it rejects the current token.
CREDENTIAL_STATUS_CODE = 424

_CREDENTIAL_MESSAGES = (
    "invalid device token",
    "invalid token",
    "token expired",
)


class PlugSessionError(Exception):
    """Base exception for all session engine errors.

    ``retryable`` tells callers whether trying again later is reasonable
    (``True``) or whether the device likely needs reconfiguration (``False``).
    """

    retryable: bool = False


# ── Transport ───────────────────────────────────────────────────


class CredentialError(PlugSessionError):
    """The device rejected the current credential."""

    def __init__(
        self,
        message: str = "device rejected credential",
        *,
        code: int | None = CREDENTIAL_STATUS_CODE,
    ) -> None:
        super().__init__(message)
        self.code = code


class NetworkError(PlugSessionError):
    """Transport-level failure talking to the device."""

    retryable = True


# ── Session lifecycle ───────────────────────────────────────────


class RefreshError(PlugSessionError):
    """Out-of-band credential fetch failed or returned nothing."""


class SessionError(PlugSessionError):
    """Login attempts were exhausted."""

    def __init__(self, message: str, *, attempts: int = 0, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
        self.retryable = not isinstance(last_error, CredentialError)


class ShutdownError(PlugSessionError):
    """The controller is shutting down and accepts no more work."""


# ── Caller facing ───────────────────────────────────────────────


class OperationTimeoutError(PlugSessionError, TimeoutError):
    """The caller's deadline passed before the operation completed."""

    retryable = True


def is_credential_error(exc: BaseException) -> bool:
    """Return True if *exc* signals a rejected or expired credential."""
    if isinstance(exc, CredentialError):
        return True
    if isinstance(exc, PlugSessionError):
        return False
    for attr in ("code", "status", "status_code"):
        if getattr(exc, attr, None) == CREDENTIAL_STATUS_CODE:
            return True
    lowered = str(exc).lower()
    return any(token in lowered for token in _CREDENTIAL_MESSAGES)


def classify_transport_error(exc: BaseException) -> PlugSessionError:
    """Map an arbitrary transport failure onto the error taxonomy.

    Taxonomy errors pass through unchanged. Foreign exceptions are wrapped
    and the original is chained as ``__cause__``.
    """
    if isinstance(exc, PlugSessionError):
        return exc
    if is_credential_error(exc):
        wrapped: PlugSessionError = CredentialError(str(exc) or type(exc).__name__)
    elif isinstance(exc, asyncio.TimeoutError):
        wrapped = NetworkError(f"device did not respond: {exc}" if str(exc) else "device did not respond")
    else:
        wrapped = NetworkError(str(exc) or type(exc).__name__)
    wrapped.__cause__ = exc
    return wrapped
