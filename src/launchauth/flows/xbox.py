"""Device-code cloud flow for Microsoft accounts.

The chain walks the Microsoft identity platform, the two Xbox Live token
services and the game services, in this order::

    read_account_properties  read_keyring_key  read_data
    device_auth  xbl_auth  xsts_auth  mc_auth
    entitlements_check  refresh_profile
    flush_data  flush_keyring_key  flush_account_properties
    update_authorization

Long-lived tokens are kept in a :class:`~launchauth.models.SecretBundle`
encrypted into ``Account.encrypted_secret``. Its key lives in the OS secret
store under ``xbox:<kid>``, where ``kid`` is recorded in the account's
``xbox:kid`` property.

On refresh, a still-valid Microsoft token short-circuits the device,
XBL, XSTS and (while it is valid) game-login steps; entitlements and the
profile are checked on every run.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Sequence

from launchauth.accounts.flow import AuthFlow, FlowState, FlowStep
from launchauth.accounts.properties import GameProfileProperties, XboxProperties
from launchauth.credentials.codec import decrypt, encrypt, random_key
from launchauth.credentials.secret_store import SecretStore
from launchauth.exceptions import (
    AuthError,
    CodecError,
    EntitlementMissingError,
    SecretNotFoundError,
)
from launchauth.game.api import (
    ENTITLEMENT_MINECRAFT_GAME,
    ENTITLEMENT_MINECRAFT_PRODUCT,
    GameServicesClient,
)
from launchauth.models import ACCOUNT_TYPE_XBOX, Authorization, SecretBundle
from launchauth.xbox.msft import MicrosoftAuthClient, TokenResponse
from launchauth.xbox.xbl import XboxLiveClient

logger = logging.getLogger(__name__)

STEP_READ_ACCOUNT_PROPERTIES = "read_account_properties"
STEP_READ_KEYRING_KEY = "read_keyring_key"
STEP_READ_DATA = "read_data"
STEP_DEVICE_AUTH = "device_auth"
STEP_XBL_AUTH = "xbl_auth"
STEP_XSTS_AUTH = "xsts_auth"
STEP_MC_AUTH = "mc_auth"
STEP_ENTITLEMENTS_CHECK = "entitlements_check"
STEP_REFRESH_PROFILE = "refresh_profile"
STEP_FLUSH_DATA = "flush_data"
STEP_FLUSH_KEYRING_KEY = "flush_keyring_key"
STEP_FLUSH_ACCOUNT_PROPERTIES = "flush_account_properties"
STEP_UPDATE_AUTHORIZATION = "update_authorization"

SECRET_KEY_PREFIX = "xbox:"

DEFAULT_REQUIRED_ENTITLEMENTS = (ENTITLEMENT_MINECRAFT_GAME, ENTITLEMENT_MINECRAFT_PRODUCT)

DeviceAuthHandler = Callable[[str, str], None]
"""Called once with ``(verification_uri, user_code)`` before polling starts."""


def secret_key_name(kid: str) -> str:
    """Name of the secret-store entry holding the key for *kid*."""
    return SECRET_KEY_PREFIX + kid


def _expires_at(expires_in: int) -> datetime:
    # treat tokens as expired one second early
    return datetime.now(timezone.utc) + timedelta(seconds=expires_in) - timedelta(seconds=1)


@dataclass
class XboxFlowData:
    """Scratch state of one cloud flow run."""

    key: bytes = b""
    xbox_props: XboxProperties = field(default_factory=XboxProperties)
    game_props: GameProfileProperties = field(default_factory=GameProfileProperties)
    bundle: SecretBundle = field(default_factory=SecretBundle)
    token_was_refreshed: bool = False
    bundle_changed: bool = False


XboxState = FlowState[XboxFlowData]


class ReadAccountPropertiesStep(FlowStep[XboxFlowData]):
    step_id = STEP_READ_ACCOUNT_PROPERTIES

    def authorize(self, state: XboxState) -> None:
        state.data.xbox_props = XboxProperties()
        state.data.game_props = GameProfileProperties()

    def refresh(self, state: XboxState) -> None:
        state.data.xbox_props = XboxProperties.read_from(state.account)
        state.data.game_props = GameProfileProperties.read_from(state.account)


class ReadKeyringKeyStep(FlowStep[XboxFlowData]):
    """Mint a new key and kid, or load the existing key from the secret store."""

    step_id = STEP_READ_KEYRING_KEY

    def __init__(self, secret_store: SecretStore) -> None:
        self._secret_store = secret_store

    def authorize(self, state: XboxState) -> None:
        state.data.key = random_key()
        state.data.xbox_props.kid = uuid.uuid4().hex

    def refresh(self, state: XboxState) -> None:
        kid = state.data.xbox_props.kid
        if not kid:
            raise SecretNotFoundError("account has no secret key identifier")
        state.data.key = self._secret_store.get(secret_key_name(kid))


class ReadDataStep(FlowStep[XboxFlowData]):
    step_id = STEP_READ_DATA

    def authorize(self, state: XboxState) -> None:
        state.data.bundle = SecretBundle()

    def refresh(self, state: XboxState) -> None:
        if not state.account.encrypted_secret:
            raise CodecError("account has no encrypted secret")
        state.data.bundle = decrypt(state.account.encrypted_secret, state.data.key)


class DeviceAuthStep(FlowStep[XboxFlowData]):
    """Log in with a device code, or renew the Microsoft token once it expires."""

    step_id = STEP_DEVICE_AUTH

    def __init__(self, msft: MicrosoftAuthClient, handler: DeviceAuthHandler) -> None:
        self._msft = msft
        self._handler = handler

    def authorize(self, state: XboxState) -> None:
        device_auth = self._msft.request_device_auth(state.cancel)
        self._handler(device_auth.verification_uri, device_auth.user_code)
        token = self._msft.poll_for_token(device_auth, state.cancel)
        self._store(state.data.bundle, token)

    def refresh(self, state: XboxState) -> None:
        bundle = state.data.bundle
        if bundle.msft_token_valid():
            logger.debug("Microsoft token still valid, skipping refresh")
            return
        token = self._msft.refresh_token(bundle.msft_refresh_token, state.cancel)
        self._store(bundle, token)
        state.data.token_was_refreshed = True

    @staticmethod
    def _store(bundle: SecretBundle, token: TokenResponse) -> None:
        bundle.msft_access_token = token.access_token
        bundle.msft_expires_at = _expires_at(token.expires_in)
        if token.refresh_token:
            bundle.msft_refresh_token = token.refresh_token


class XblAuthStep(FlowStep[XboxFlowData]):
    step_id = STEP_XBL_AUTH

    def __init__(self, xbl: XboxLiveClient) -> None:
        self._xbl = xbl

    def authorize(self, state: XboxState) -> None:
        bundle = state.data.bundle
        response = self._xbl.authenticate_user(bundle.msft_access_token, state.cancel)
        bundle.xbl_token = response.token
        user_hash = response.user_hash
        if user_hash:
            bundle.user_hash = user_hash

    def refresh(self, state: XboxState) -> None:
        if state.data.token_was_refreshed:
            self.authorize(state)


class XstsAuthStep(FlowStep[XboxFlowData]):
    step_id = STEP_XSTS_AUTH

    def __init__(self, xbl: XboxLiveClient) -> None:
        self._xbl = xbl

    def authorize(self, state: XboxState) -> None:
        bundle = state.data.bundle
        response = self._xbl.authorize_xsts(bundle.xbl_token, state.cancel)
        bundle.xsts_token = response.token
        if not bundle.user_hash:
            user_hash = response.user_hash
            if not user_hash:
                raise AuthError("cannot find user hash in Xbox Live claims")
            bundle.user_hash = user_hash

    def refresh(self, state: XboxState) -> None:
        if state.data.token_was_refreshed:
            self.authorize(state)


class McAuthStep(FlowStep[XboxFlowData]):
    step_id = STEP_MC_AUTH

    def __init__(self, game: GameServicesClient) -> None:
        self._game = game

    def authorize(self, state: XboxState) -> None:
        bundle = state.data.bundle
        response = self._game.login_with_xbox(bundle.user_hash, bundle.xsts_token, state.cancel)
        bundle.minecraft_token = response.access_token
        bundle.minecraft_expires_at = _expires_at(response.expires_in)

    def refresh(self, state: XboxState) -> None:
        if not state.data.token_was_refreshed and state.data.bundle.minecraft_token_valid():
            logger.debug("Game services token still valid, skipping login")
            return
        self.authorize(state)
        state.data.bundle_changed = True


class EntitlementsCheckStep(FlowStep[XboxFlowData]):
    step_id = STEP_ENTITLEMENTS_CHECK

    def __init__(self, game: GameServicesClient, required: Sequence[str]) -> None:
        self._game = game
        self._required = tuple(required)

    def authorize(self, state: XboxState) -> None:
        entitlements = self._game.get_entitlements(state.data.bundle.minecraft_token, state.cancel)
        owned = entitlements.names()
        for name in self._required:
            if name not in owned:
                raise EntitlementMissingError(name)

    def refresh(self, state: XboxState) -> None:
        self.authorize(state)


class RefreshProfileStep(FlowStep[XboxFlowData]):
    step_id = STEP_REFRESH_PROFILE

    def __init__(self, game: GameServicesClient) -> None:
        self._game = game

    def authorize(self, state: XboxState) -> None:
        profile = self._game.get_profile(state.data.bundle.minecraft_token, state.cancel)
        state.data.game_props.id = profile.id
        state.data.game_props.username = profile.name
        state.account.id = profile.id

    def refresh(self, state: XboxState) -> None:
        self.authorize(state)


class FlushDataStep(FlowStep[XboxFlowData]):
    """Re-encrypt the secret bundle into the account."""

    step_id = STEP_FLUSH_DATA

    def authorize(self, state: XboxState) -> None:
        state.account.encrypted_secret = encrypt(state.data.bundle, state.data.key)

    def refresh(self, state: XboxState) -> None:
        if state.data.token_was_refreshed or state.data.bundle_changed:
            self.authorize(state)


class FlushKeyringKeyStep(FlowStep[XboxFlowData]):
    step_id = STEP_FLUSH_KEYRING_KEY

    def __init__(self, secret_store: SecretStore) -> None:
        self._secret_store = secret_store

    def authorize(self, state: XboxState) -> None:
        kid = state.data.xbox_props.kid
        if not kid:
            raise SecretNotFoundError("no secret key identifier to save the key under")
        self._secret_store.set(secret_key_name(kid), state.data.key)

    def refresh(self, state: XboxState) -> None:
        # the key never changes after the account is created
        pass


class FlushAccountPropertiesStep(FlowStep[XboxFlowData]):
    step_id = STEP_FLUSH_ACCOUNT_PROPERTIES

    def authorize(self, state: XboxState) -> None:
        state.data.xbox_props.write_to(state.account)
        state.data.game_props.write_to(state.account)

    def refresh(self, state: XboxState) -> None:
        self.authorize(state)


class UpdateAuthorizationStep(FlowStep[XboxFlowData]):
    step_id = STEP_UPDATE_AUTHORIZATION

    def authorize(self, state: XboxState) -> None:
        props = state.data.game_props
        state.account.authorization = Authorization(
            username=props.username or "",
            user_uuid=props.id or "",
            access_token=state.data.bundle.minecraft_token,
            user_type="msa",
            demo=False,
        )

    def refresh(self, state: XboxState) -> None:
        self.authorize(state)


@dataclass
class XboxFlowOptions:
    """Collaborators of the cloud flow.

    Attributes:
        device_auth_handler: Shows the verification URI and user code.
        secret_store: Where per-account encryption keys are kept.
        msft: Microsoft identity client.
        xbl: Xbox Live token client.
        game: Game services client.
        required_entitlements: Entitlement names the account must own.
    """

    device_auth_handler: DeviceAuthHandler
    secret_store: SecretStore
    msft: MicrosoftAuthClient
    xbl: XboxLiveClient
    game: GameServicesClient
    required_entitlements: Sequence[str] = DEFAULT_REQUIRED_ENTITLEMENTS


def create_xbox_flow(options: XboxFlowOptions) -> AuthFlow[XboxFlowData]:
    """Build the cloud flow from *options*."""
    return AuthFlow(
        ACCOUNT_TYPE_XBOX,
        [
            ReadAccountPropertiesStep(),
            ReadKeyringKeyStep(options.secret_store),
            ReadDataStep(),
            DeviceAuthStep(options.msft, options.device_auth_handler),
            XblAuthStep(options.xbl),
            XstsAuthStep(options.xbl),
            McAuthStep(options.game),
            EntitlementsCheckStep(options.game, options.required_entitlements),
            RefreshProfileStep(options.game),
            FlushDataStep(),
            FlushKeyringKeyStep(options.secret_store),
            FlushAccountPropertiesStep(),
            UpdateAuthorizationStep(),
        ],
        XboxFlowData,
    )
