"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings

from plugsession.shared.enums import CredentialMode

# Legacy PIN value meaning "fetch the token over the side channel".
OUT_OF_BAND_PIN = "TELNET"


class Settings(BaseSettings):
    """Per-device configuration loaded from environment variables or kwargs."""

    model_config = {"env_prefix": "PLUGSESSION_", "frozen": True}

    # Device
    name: str = "Smart Plug"
    address: str
    pin: SecretStr = SecretStr("")

    # Credential mode
    # - fixed: the operator-supplied pin is the token
    # - dynamic: token is fetched out-of-band and refreshed periodically
    use_out_of_band_token: bool = False

    # Login retry
    max_login_attempts: int = Field(default=5, ge=1)
    initial_retry_delay_ms: int = Field(default=1000, gt=0)
    max_retry_delay_ms: int = Field(default=30000, gt=0)

    # Token refresh
    token_refresh_interval_ms: int = Field(default=300000, gt=0)

    # Operations
    operation_timeout_ms: int = Field(default=5000, gt=0)

    # Failure escalation
    force_restart_on_failure: bool = False
    # None means "detect from the host / environment".
    isolated_instance: bool | None = None
    restart_grace_ms: int = Field(default=1000, ge=0)

    @model_validator(mode="after")
    def check_consistency(self) -> Settings:
        if not self.address.strip():
            raise ValueError("address must not be empty")
        if self.max_retry_delay_ms < self.initial_retry_delay_ms:
            raise ValueError("max_retry_delay_ms must be >= initial_retry_delay_ms")
        if self.credential_mode is CredentialMode.FIXED and not self.pin.get_secret_value().strip():
            raise ValueError("pin is required unless use_out_of_band_token is enabled")
        return self

    @property
    def credential_mode(self) -> CredentialMode:
        if self.use_out_of_band_token or self.pin.get_secret_value().strip().upper() == OUT_OF_BAND_PIN:
            return CredentialMode.DYNAMIC
        return CredentialMode.FIXED

    @property
    def initial_credential(self) -> SecretStr | None:
        """Operator-supplied token, or None when the pin is only a mode marker."""
        raw = self.pin.get_secret_value().strip()
        if not raw or raw.upper() == OUT_OF_BAND_PIN:
            return None
        return self.pin


def get_settings() -> Settings:
    """Build settings from the environment; tests pass overrides instead."""
    return Settings()  # type: ignore[call-arg]
