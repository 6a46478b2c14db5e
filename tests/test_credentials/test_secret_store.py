"""Tests for launchauth.credentials.secret_store."""

from __future__ import annotations

import base64

import keyring.backend
import keyring.errors
import pytest

from launchauth.credentials.secret_store import (
    KeyringSecretStore,
    MemorySecretStore,
    SecretStore,
    open_secret_store,
    select_backend,
)
from launchauth.exceptions import SecretNotFoundError, SecretStoreError
from launchauth.models import KeyringConfig


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class DictKeyring(keyring.backend.KeyringBackend):
    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str):
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        if self.passwords.pop((service, username), None) is None:
            raise keyring.errors.PasswordDeleteError("not found")


class LockedKeyring(DictKeyring):
    priority = 5

    def get_password(self, service: str, username: str):
        raise keyring.errors.KeyringLocked("locked")

    def set_password(self, service: str, username: str, password: str) -> None:
        raise keyring.errors.PasswordSetError("read-only")


# ---------------------------------------------------------------------------
# MemorySecretStore
# ---------------------------------------------------------------------------


class TestMemorySecretStore:
    def test_set_get_delete(self) -> None:
        store = MemorySecretStore()
        store.set("xbox:k", b"\x00\x01")
        assert store.get("xbox:k") == b"\x00\x01"
        store.delete("xbox:k")
        with pytest.raises(SecretNotFoundError):
            store.get("xbox:k")

    def test_delete_missing(self) -> None:
        with pytest.raises(SecretNotFoundError):
            MemorySecretStore().delete("nope")

    def test_satisfies_protocol(self) -> None:
        assert isinstance(MemorySecretStore(), SecretStore)


# ---------------------------------------------------------------------------
# KeyringSecretStore
# ---------------------------------------------------------------------------


class TestKeyringSecretStore:
    def test_stores_base64_under_service(self) -> None:
        backend = DictKeyring()
        store = KeyringSecretStore("svc", backend)

        store.set("xbox:k", b"\xffkey")

        assert backend.passwords[("svc", "xbox:k")] == base64.b64encode(b"\xffkey").decode()
        assert store.get("xbox:k") == b"\xffkey"

    def test_missing_key(self) -> None:
        with pytest.raises(SecretNotFoundError):
            KeyringSecretStore("svc", DictKeyring()).get("xbox:none")

    def test_corrupt_value(self) -> None:
        backend = DictKeyring()
        backend.passwords[("svc", "xbox:k")] = "***"
        with pytest.raises(SecretStoreError):
            KeyringSecretStore("svc", backend).get("xbox:k")

    def test_backend_errors_are_wrapped(self) -> None:
        store = KeyringSecretStore("svc", LockedKeyring())
        with pytest.raises(SecretStoreError) as exc_info:
            store.get("xbox:k")
        assert not isinstance(exc_info.value, SecretNotFoundError)
        with pytest.raises(SecretStoreError):
            store.set("xbox:k", b"x")

    def test_delete(self) -> None:
        backend = DictKeyring()
        store = KeyringSecretStore("svc", backend)
        store.set("xbox:k", b"x")
        store.delete("xbox:k")
        assert backend.passwords == {}
        with pytest.raises(SecretNotFoundError):
            store.delete("xbox:k")


# ---------------------------------------------------------------------------
# Backend selection
# ---------------------------------------------------------------------------


class TestSelectBackend:
    @pytest.fixture
    def backends(self, monkeypatch: pytest.MonkeyPatch) -> tuple[DictKeyring, LockedKeyring]:
        low, high = DictKeyring(), LockedKeyring()
        monkeypatch.setattr(keyring, "get_keyring", lambda: high)
        monkeypatch.setattr(keyring.backend, "get_all_keyring", lambda: [low, high])
        return low, high

    def test_default_when_not_banned(self, backends) -> None:
        _, high = backends
        assert select_backend(KeyringConfig()) is high

    def test_skips_banned_by_class_name(self, backends) -> None:
        low, _ = backends
        assert select_backend(KeyringConfig(ban_backends=["LockedKeyring"])) is low

    def test_ban_by_module_path(self, backends) -> None:
        low, _ = backends
        module = LockedKeyring.__module__
        assert select_backend(KeyringConfig(ban_backends=[f"{module}.LockedKeyring"])) is low

    def test_all_banned(self, backends) -> None:
        with pytest.raises(SecretStoreError):
            select_backend(KeyringConfig(ban_backends=["LockedKeyring", "DictKeyring"]))

    def test_open_secret_store_uses_service_name(self, backends) -> None:
        low, _ = backends
        store = open_secret_store(KeyringConfig(service_name="games", ban_backends=["LockedKeyring"]))
        assert store.backend is low
        store.set("xbox:k", b"1")
        assert ("games", "xbox:k") in low.passwords
