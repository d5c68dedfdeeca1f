"""Protocol interfaces for the device transport and host collaborators."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class DeviceTransport(Protocol):
    """Protocol for one connection to the smart plug.

    Implementations should raise :class:`~plugsession.shared.exceptions.CredentialError`
    when the device rejects the token and
    :class:`~plugsession.shared.exceptions.NetworkError` for transport failures.
    Other exceptions are classified by
    :func:`~plugsession.shared.exceptions.classify_transport_error`.
    """

    async def login(self) -> None:
        """Authenticate against the device with the bound credential.

        Raises:
            CredentialError: If the device rejects the credential
            NetworkError: If the device cannot be reached
        """
        ...

    async def query_state(self) -> bool:
        """Return the current on/off state of the device."""
        ...

    async def set_state(self, value: bool) -> None:
        """Switch the device on (``True``) or off (``False``)."""
        ...

    async def fetch_credential_out_of_band(self) -> str | None:
        """Retrieve a fresh token over the side channel.

        Returns:
            The token, or None if the channel answered without one
        """
        ...

    async def close(self) -> None:
        """Release the underlying connection."""
        ...


@runtime_checkable
class TransportFactory(Protocol):
    """Build a transport bound to one address and credential value."""

    def __call__(self, address: str, credential: str) -> DeviceTransport: ...


@runtime_checkable
class HostInfo(Protocol):
    """Optional topology hints supplied by the host integration layer.

    Either attribute may be ``None`` when the host cannot tell.
    """

    @property
    def is_isolated_instance(self) -> bool | None: ...

    @property
    def name(self) -> str | None: ...
