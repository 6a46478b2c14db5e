"""Key-value secret stores keyed by namespaced string identifiers.

Flows only ever see the small :class:`SecretStore` protocol. The production
implementation, :class:`KeyringSecretStore`, delegates to the ``keyring``
library (macOS Keychain, Windows Credential Locker, Secret Service, ...);
:class:`MemorySecretStore` keeps secrets in a dict for tests and throwaway
runs.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional, Protocol, runtime_checkable

import keyring
import keyring.backend
import keyring.errors

from launchauth.exceptions import SecretNotFoundError, SecretStoreError
from launchauth.models import KeyringConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class SecretStore(Protocol):
    """Synchronous get/set access to binary secrets."""

    def get(self, key: str) -> bytes:
        """Return the secret stored under *key*.

        Raises:
            SecretNotFoundError: If nothing is stored under *key*.
            SecretStoreError: If the backend fails.
        """
        ...

    def set(self, key: str, secret: bytes) -> None:
        """Store *secret* under *key*, replacing any previous value."""
        ...

    def delete(self, key: str) -> None:
        """Remove *key*. Missing keys raise :class:`SecretNotFoundError`."""
        ...


class MemorySecretStore:
    """In-process :class:`SecretStore` backed by a dict."""

    def __init__(self) -> None:
        self.items: dict[str, bytes] = {}

    def get(self, key: str) -> bytes:
        try:
            return self.items[key]
        except KeyError:
            raise SecretNotFoundError(f"secret {key} not found") from None

    def set(self, key: str, secret: bytes) -> None:
        self.items[key] = bytes(secret)

    def delete(self, key: str) -> None:
        if self.items.pop(key, None) is None:
            raise SecretNotFoundError(f"secret {key} not found")


class KeyringSecretStore:
    """:class:`SecretStore` backed by the OS keyring.

    Secrets are base64-encoded into the keyring's password slot, with
    *service_name* as the service and the secret key as the username.

    Args:
        service_name: Keyring service under which entries are grouped.
        backend: Explicit keyring backend; defaults to ``keyring.get_keyring()``.
    """

    def __init__(
        self,
        service_name: str = "launchauth",
        backend: Optional[keyring.backend.KeyringBackend] = None,
    ) -> None:
        self._service = service_name
        self._backend = backend or keyring.get_keyring()

    @property
    def backend(self) -> keyring.backend.KeyringBackend:
        return self._backend

    def get(self, key: str) -> bytes:
        try:
            value = self._backend.get_password(self._service, key)
        except keyring.errors.KeyringError as exc:
            raise SecretStoreError(f"cannot read secret {key}: {exc}") from exc
        if value is None:
            raise SecretNotFoundError(f"secret {key} not found in {self._service} keyring")
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SecretStoreError(f"secret {key} is corrupt: {exc}") from exc

    def set(self, key: str, secret: bytes) -> None:
        encoded = base64.b64encode(secret).decode("ascii")
        try:
            self._backend.set_password(self._service, key, encoded)
        except keyring.errors.KeyringError as exc:
            raise SecretStoreError(f"cannot save secret {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._backend.delete_password(self._service, key)
        except keyring.errors.PasswordDeleteError as exc:
            raise SecretNotFoundError(f"secret {key} not found: {exc}") from exc
        except keyring.errors.KeyringError as exc:
            raise SecretStoreError(f"cannot delete secret {key}: {exc}") from exc


def _backend_names(backend: keyring.backend.KeyringBackend) -> set[str]:
    cls = type(backend)
    return {cls.__name__, cls.__module__, f"{cls.__module__}.{cls.__name__}"}


def _is_banned(backend: keyring.backend.KeyringBackend, banned: list[str]) -> bool:
    return bool(_backend_names(backend) & set(banned))


def select_backend(config: KeyringConfig) -> keyring.backend.KeyringBackend:
    """Pick a keyring backend honouring ``config.ban_backends``.

    Returns keyring's default backend unless it is banned, otherwise the
    highest-priority viable backend that is not banned.

    Raises:
        SecretStoreError: If every available backend is banned.
    """
    default = keyring.get_keyring()
    if not _is_banned(default, config.ban_backends):
        return default

    candidates = sorted(
        keyring.backend.get_all_keyring(),
        key=lambda b: getattr(b, "priority", 0),
        reverse=True,
    )
    for backend in candidates:
        if _is_banned(backend, config.ban_backends):
            logger.debug("Skipping banned keyring backend %s", type(backend).__name__)
            continue
        return backend

    raise SecretStoreError(
        "No usable keyring backend: all available backends are banned by settings"
    )


def open_secret_store(config: KeyringConfig) -> KeyringSecretStore:
    """Open the OS secret store described by *config*."""
    backend = select_backend(config)
    logger.debug("Using keyring backend %s", type(backend).__name__)
    return KeyringSecretStore(config.service_name, backend)
