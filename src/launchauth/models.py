"""Canonical Pydantic models shared across all launchauth modules.

This is the single source of truth for data shapes in the project. The models
fall into two groups:

**Persisted account models** -- serialised into the accounts store file:
    :class:`Account`, :class:`AccountStoreData`, and the in-memory-only
    :class:`Authorization` view rebuilt by every flow run.

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`NetworkConfig`, :class:`KeyringConfig`, and :class:`Settings`.

:class:`SecretBundle` is the plaintext shape of the cloud account secret. It
never appears on disk unencrypted; see :mod:`launchauth.credentials.codec`.

All models use Pydantic v2. Persisted models use camelCase aliases on the wire
and snake_case attributes in Python (``populate_by_name=True``).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


ACCOUNT_TYPE_XBOX = "xbox"
ACCOUNT_TYPE_OFFLINE = "offline"


# --- Accounts ---


class Authorization(BaseModel):
    """Credentials handed to the game launch collaborator.

    Rebuilt at the end of every successful flow run and never persisted.

    Attributes:
        username: In-game display name.
        user_uuid: Game profile UUID (all zeros for offline accounts).
        access_token: Game-service access token (empty for offline accounts).
        user_type: User type tag passed to the game (``"msa"``).
        demo: Whether the game should start in demo mode.
    """

    username: str
    user_uuid: str
    access_token: str = ""
    user_type: str = "msa"
    demo: bool = False


class Account(BaseModel):
    """A persisted identity.

    ``properties`` is an open string bag shared by several features; each
    feature reads and writes only its own namespaced keys through a
    :class:`~launchauth.accounts.properties.PropertiesView`.

    ``encrypted_secret`` is replaced as a whole whenever it changes and only
    ever holds base64 ciphertext.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(description="Account kind: xbox, offline")
    id: str = Field(default="", description="Stable account identifier")
    encrypted_secret: Optional[str] = Field(
        default=None,
        alias="encryptedSecret",
        description="Base64 AES-GCM ciphertext of the account's secret bundle",
    )
    properties: dict[str, str] = Field(default_factory=dict)
    authorization: Optional[Authorization] = Field(default=None, exclude=True)


class AccountStoreData(BaseModel):
    """On-disk layout of the accounts store file."""

    model_config = ConfigDict(populate_by_name=True)

    accounts: dict[str, Account] = Field(default_factory=dict)
    selected_account: Optional[str] = Field(default=None, alias="selectedAccount")


# --- Secrets ---


class SecretBundle(BaseModel):
    """Decrypted long-lived secrets of a cloud account.

    Expiry timestamps are timezone-aware UTC. ``None`` means "unknown" and is
    treated as already expired.
    """

    model_config = ConfigDict(populate_by_name=True)

    msft_access_token: str = Field(default="", alias="msftAccessToken")
    msft_refresh_token: str = Field(default="", alias="msftRefreshToken")
    msft_expires_at: Optional[datetime] = Field(default=None, alias="msftAccessTokenExpiresAt")
    xbl_token: str = Field(default="", alias="xblToken")
    user_hash: str = Field(default="", alias="userHash")
    xsts_token: str = Field(default="", alias="xstsToken")
    minecraft_token: str = Field(default="", alias="minecraftToken")
    minecraft_expires_at: Optional[datetime] = Field(
        default=None, alias="minecraftAccessTokenExpiresAt"
    )

    def msft_token_valid(self, now: Optional[datetime] = None) -> bool:
        return _still_valid(self.msft_expires_at, now)

    def minecraft_token_valid(self, now: Optional[datetime] = None) -> bool:
        return _still_valid(self.minecraft_expires_at, now)


def _still_valid(expires_at: Optional[datetime], now: Optional[datetime]) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at > (now or datetime.now(timezone.utc))


# --- Configuration ---


class NetworkConfig(BaseModel):
    """Retry and timeout policy for the shared HTTP transport.

    ``max_retries`` of ``0`` retries transient network failures until the
    connection comes back, which mirrors how a launcher is expected to
    behave on flaky Wi-Fi.
    """

    timeout: float = Field(default=30.0, description="Per-request timeout in seconds")
    max_retries: int = Field(default=0, ge=0, description="0 = retry indefinitely")
    retry_delay: float = Field(default=1.0, ge=0)
    retry_delay_multiplier: float = Field(default=2.0, ge=1.0)
    retry_delay_max: float = Field(default=60.0, ge=0)
    check_connectivity: bool = Field(
        default=True, description="Wait for connectivity before retrying network errors"
    )


class KeyringConfig(BaseModel):
    """Which OS secret store backend to use."""

    service_name: str = Field(default="launchauth")
    ban_backends: list[str] = Field(
        default_factory=list,
        description="Keyring backend class names or module paths that must not be used",
    )


class Settings(BaseModel):
    """Global launchauth configuration.

    Stored as ``config.json`` in the configuration directory. Missing keys
    fall back to defaults; unknown keys are preserved.
    """

    model_config = ConfigDict(extra="allow")

    client_id: Optional[str] = Field(
        default=None, description="OAuth client id registered with the identity provider"
    )
    accounts_file: Optional[str] = Field(
        default=None, description="Override for the accounts store location"
    )
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    keyring: KeyringConfig = Field(default_factory=KeyringConfig)
