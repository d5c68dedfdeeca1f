"""In-memory holder for the device credential."""

from __future__ import annotations

import logging

from pydantic import SecretStr

from plugsession.shared.enums import CredentialMode

logger = logging.getLogger(__name__)


class CredentialStore:
    """Hold the current credential for one device.

    The value is kept as a :class:`~pydantic.SecretStr` so that accidental
    ``repr``/logging never prints the token. Every update bumps
    ``revision`` which is what log lines refer to.
    """

    def __init__(self, mode: CredentialMode, initial: SecretStr | str | None = None) -> None:
        self._mode = mode
        self._value = _as_secret(initial)
        self._revision = 0 if self._value is None else 1

    @property
    def mode(self) -> CredentialMode:
        return self._mode

    @property
    def is_dynamic(self) -> bool:
        return self._mode is CredentialMode.DYNAMIC

    @property
    def present(self) -> bool:
        return self._value is not None

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def secret(self) -> SecretStr | None:
        return self._value

    def reveal(self) -> str:
        """Return the raw token for handing to a transport ("" if absent)."""
        if self._value is None:
            return ""
        return self._value.get_secret_value()

    def update(self, value: SecretStr | str) -> None:
        """Replace the stored credential."""
        secret = _as_secret(value)
        if secret is None:
            raise ValueError("credential must not be empty")
        self._value = secret
        self._revision += 1
        logger.debug("credential updated (revision=%d)", self._revision)

    def __repr__(self) -> str:
        return f"CredentialStore(mode={self._mode.value}, present={self.present}, revision={self._revision})"


def _as_secret(value: SecretStr | str | None) -> SecretStr | None:
    if value is None:
        return None
    raw = value.get_secret_value() if isinstance(value, SecretStr) else value
    raw = raw.strip()
    if not raw:
        return None
    return SecretStr(raw)
