"""Protection of long-lived account secrets.

- :mod:`~launchauth.credentials.codec` -- AES-256-GCM encryption of secret
  bundles into ``Account.encrypted_secret``.
- :mod:`~launchauth.credentials.secret_store` -- where the per-account keys
  live (the OS keyring, or memory in tests).
"""

from launchauth.credentials.codec import decrypt, encrypt, random_key
from launchauth.credentials.secret_store import (
    KeyringSecretStore,
    MemorySecretStore,
    SecretStore,
    open_secret_store,
)

__all__ = [
    "KeyringSecretStore",
    "MemorySecretStore",
    "SecretStore",
    "decrypt",
    "encrypt",
    "open_secret_store",
    "random_key",
]
