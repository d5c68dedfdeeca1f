"""Tests for CredentialStore."""

from __future__ import annotations

import logging

import pytest
from pydantic import SecretStr

from plugsession.shared.credentials import CredentialStore
from plugsession.shared.enums import CredentialMode


class TestCredentialStore:
    def test_initial_value(self) -> None:
        store = CredentialStore(CredentialMode.FIXED, SecretStr("abc"))
        assert store.present
        assert store.revision == 1
        assert store.reveal() == "abc"
        assert not store.is_dynamic

    def test_empty_initial_value_is_absent(self) -> None:
        store = CredentialStore(CredentialMode.DYNAMIC, "  ")
        assert not store.present
        assert store.revision == 0
        assert store.reveal() == ""

    def test_update_bumps_revision(self) -> None:
        store = CredentialStore(CredentialMode.DYNAMIC)
        store.update("new-token")
        store.update(SecretStr("newer-token"))
        assert store.revision == 2
        assert store.reveal() == "newer-token"

    def test_update_rejects_empty(self) -> None:
        store = CredentialStore(CredentialMode.DYNAMIC)
        with pytest.raises(ValueError):
            store.update("")

    def test_repr_and_logs_never_contain_token(self, caplog: pytest.LogCaptureFixture) -> None:
        store = CredentialStore(CredentialMode.DYNAMIC)
        with caplog.at_level(logging.DEBUG):
            store.update("very-secret-token")
        assert "very-secret-token" not in repr(store)
        assert "very-secret-token" not in str(store.secret)
        assert "very-secret-token" not in caplog.text
