"""Tests for launchauth.flows.xbox -- the device-code cloud flow end to end.

Every remote service is served by the ``fake_services`` fixture; keys go to
an in-memory secret store.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from launchauth.accounts.flow import AuthFlow
from launchauth.accounts.properties import XboxProperties
from launchauth.credentials.codec import decrypt, encrypt
from launchauth.credentials.secret_store import MemorySecretStore
from launchauth.exceptions import (
    AuthError,
    CodecError,
    EntitlementMissingError,
    SecretNotFoundError,
    StepError,
    TokenError,
    TokenErrorReason,
)
from launchauth.flows import xbox as xbox_flow
from launchauth.flows.xbox import XboxFlowOptions, create_xbox_flow, secret_key_name
from launchauth.game.api import GameServicesClient
from launchauth.models import Account, SecretBundle
from launchauth.xbox.msft import MicrosoftAuthClient
from launchauth.xbox.xbl import XboxLiveClient

PROFILE_ID = "069a79f444e94726a5befca90e38aaf5"

LOGIN_CALLS = ["devicecode", "token", "authenticate", "authorize", "login_with_xbox", "license", "profile"]


# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def shown() -> list[tuple[str, str]]:
    return []


@pytest.fixture
def flow(transport, secret_store, shown) -> AuthFlow:
    return create_xbox_flow(
        XboxFlowOptions(
            device_auth_handler=lambda uri, code: shown.append((uri, code)),
            secret_store=secret_store,
            msft=MicrosoftAuthClient(transport, "client-123"),
            xbl=XboxLiveClient(transport),
            game=GameServicesClient(transport),
        )
    )


@pytest.fixture
def account(flow, fake_services, no_sleep) -> Account:
    """An account created by a full login, with the call log cleared."""
    created = flow.create_account()
    fake_services.calls.clear()
    fake_services.requests.clear()
    return created


def _key(account: Account, secret_store: MemorySecretStore) -> bytes:
    kid = XboxProperties.read_from(account).kid
    return secret_store.get(secret_key_name(kid))


def _bundle(account: Account, secret_store: MemorySecretStore) -> SecretBundle:
    return decrypt(account.encrypted_secret, _key(account, secret_store))


def _rewrite_bundle(account: Account, secret_store: MemorySecretStore, **changes) -> None:
    key = _key(account, secret_store)
    bundle = decrypt(account.encrypted_secret, key)
    account.encrypted_secret = encrypt(bundle.model_copy(update=changes), key)


def _past() -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=1)


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------


class TestFlowStructure:
    def test_step_order(self, flow) -> None:
        assert flow.account_type == "xbox"
        assert flow.step_ids() == [
            xbox_flow.STEP_READ_ACCOUNT_PROPERTIES,
            xbox_flow.STEP_READ_KEYRING_KEY,
            xbox_flow.STEP_READ_DATA,
            xbox_flow.STEP_DEVICE_AUTH,
            xbox_flow.STEP_XBL_AUTH,
            xbox_flow.STEP_XSTS_AUTH,
            xbox_flow.STEP_MC_AUTH,
            xbox_flow.STEP_ENTITLEMENTS_CHECK,
            xbox_flow.STEP_REFRESH_PROFILE,
            xbox_flow.STEP_FLUSH_DATA,
            xbox_flow.STEP_FLUSH_KEYRING_KEY,
            xbox_flow.STEP_FLUSH_ACCOUNT_PROPERTIES,
            xbox_flow.STEP_UPDATE_AUTHORIZATION,
        ]


# ---------------------------------------------------------------------------
# create_account
# ---------------------------------------------------------------------------


class TestCreateAccount:
    def test_full_login(self, flow, fake_services, secret_store, shown, no_sleep) -> None:
        account = flow.create_account()

        assert fake_services.calls == LOGIN_CALLS
        assert shown == [("https://www.microsoft.com/link", "ABCD-EFGH")]

        assert account.type == "xbox"
        assert account.id == PROFILE_ID
        assert account.properties["minecraft:id"] == PROFILE_ID
        assert account.properties["minecraft:username"] == "Notch"

        kid = account.properties["xbox:kid"]
        assert list(secret_store.items) == [secret_key_name(kid)]

        bundle = _bundle(account, secret_store)
        assert bundle.msft_access_token == "msft-access"
        assert bundle.msft_refresh_token == "msft-refresh"
        assert bundle.xbl_token == "xbl-token"
        assert bundle.user_hash == "user-hash"
        assert bundle.xsts_token == "xsts-token"
        assert bundle.minecraft_token == "mc-token"
        assert bundle.msft_token_valid()
        assert bundle.minecraft_token_valid()

        auth = account.authorization
        assert auth.username == "Notch"
        assert auth.user_uuid == PROFILE_ID
        assert auth.access_token == "mc-token"
        assert auth.user_type == "msa"
        assert auth.demo is False

    def test_secret_is_not_stored_in_plaintext(self, flow, no_sleep) -> None:
        account = flow.create_account()
        dumped = account.model_dump_json(by_alias=True)
        assert "msft-refresh" not in dumped
        assert "mc-token" not in dumped

    def test_waits_for_user(self, flow, fake_services, no_sleep) -> None:
        pending = (400, {"error": "authorization_pending"})
        fake_services.queue("token", pending, pending)

        flow.create_account()

        assert fake_services.count("token") == 3
        assert no_sleep == [5, 5]

    def test_new_key_per_account(self, flow, secret_store, no_sleep) -> None:
        first = flow.create_account()
        second = flow.create_account()

        first_kid = XboxProperties.read_from(first).kid
        second_kid = XboxProperties.read_from(second).kid
        assert first_kid != second_kid
        assert len(secret_store.items) == 2
        assert _key(first, secret_store) != _key(second, secret_store)

    def test_declined_login(self, flow, fake_services, secret_store, no_sleep) -> None:
        fake_services.queue("token", (400, {"error": "authorization_declined"}))

        with pytest.raises(StepError) as exc_info:
            flow.create_account()

        exc = exc_info.value
        assert exc.matches(xbox_flow.STEP_DEVICE_AUTH, TokenError)
        assert exc.cause.reason == TokenErrorReason.DECLINED
        assert secret_store.items == {}

    def test_missing_entitlement(self, flow, fake_services, secret_store, no_sleep) -> None:
        fake_services.set("license", (200, {"items": [{"name": "product_minecraft"}]}))

        with pytest.raises(StepError) as exc_info:
            flow.create_account()

        exc = exc_info.value
        assert exc.matches(xbox_flow.STEP_ENTITLEMENTS_CHECK, EntitlementMissingError)
        assert exc.cause.entitlement == "game_minecraft"
        assert fake_services.count("profile") == 0
        assert secret_store.items == {}
        assert exc.account.encrypted_secret is None

    def test_custom_required_entitlements(self, transport, secret_store, fake_services, no_sleep) -> None:
        fake_services.set("license", (200, {"items": [{"name": "game_minecraft_bedrock"}]}))
        flow = create_xbox_flow(
            XboxFlowOptions(
                device_auth_handler=lambda uri, code: None,
                secret_store=secret_store,
                msft=MicrosoftAuthClient(transport, "client-123"),
                xbl=XboxLiveClient(transport),
                game=GameServicesClient(transport),
                required_entitlements=["game_minecraft_bedrock"],
            )
        )
        assert flow.create_account().id == PROFILE_ID

    def test_user_hash_from_xsts(self, flow, fake_services, secret_store, no_sleep) -> None:
        fake_services.set("authenticate", (200, {"Token": "xbl-token", "DisplayClaims": {}}))
        fake_services.set("authorize", (200, {"Token": "xsts", "DisplayClaims": {"xui": [{"uhs": "late-hash"}]}}))

        account = flow.create_account()
        assert _bundle(account, secret_store).user_hash == "late-hash"

    def test_no_user_hash_anywhere(self, flow, fake_services, no_sleep) -> None:
        fake_services.set("authenticate", (200, {"Token": "xbl-token"}))
        fake_services.set("authorize", (200, {"Token": "xsts-token"}))

        with pytest.raises(StepError) as exc_info:
            flow.create_account()
        assert exc_info.value.matches(xbox_flow.STEP_XSTS_AUTH, AuthError)
        assert "user hash" in str(exc_info.value)


# ---------------------------------------------------------------------------
# refresh_account
# ---------------------------------------------------------------------------


class TestRefreshAccount:
    def test_valid_tokens_only_recheck_ownership(self, flow, account, fake_services) -> None:
        before = account.encrypted_secret
        account.authorization = None

        flow.refresh_account(account)

        assert fake_services.calls == ["license", "profile"]
        assert account.encrypted_secret == before
        assert account.authorization.access_token == "mc-token"
        assert account.authorization.username == "Notch"

    def test_expired_msft_token_refreshes_chain(self, flow, account, fake_services, secret_store) -> None:
        _rewrite_bundle(account, secret_store, msft_expires_at=_past())
        before = account.encrypted_secret

        flow.refresh_account(account)

        assert fake_services.calls == [
            "refresh", "authenticate", "authorize", "login_with_xbox", "license", "profile",
        ]
        assert account.encrypted_secret != before
        bundle = _bundle(account, secret_store)
        assert bundle.msft_access_token == "msft-access-2"
        assert bundle.msft_refresh_token == "msft-refresh-2"
        assert bundle.msft_token_valid()

    def test_expired_game_token_logs_in_again(self, flow, account, fake_services, secret_store) -> None:
        _rewrite_bundle(account, secret_store, minecraft_expires_at=_past(), minecraft_token="old")

        flow.refresh_account(account)

        assert fake_services.calls == ["login_with_xbox", "license", "profile"]
        bundle = _bundle(account, secret_store)
        assert bundle.minecraft_token == "mc-token"
        assert bundle.minecraft_token_valid()
        assert account.authorization.access_token == "mc-token"

    def test_unknown_expiry_counts_as_expired(self, flow, account, fake_services, secret_store) -> None:
        _rewrite_bundle(account, secret_store, msft_expires_at=None)
        flow.refresh_account(account)
        assert fake_services.count("refresh") == 1

    def test_keeps_key_and_kid(self, flow, account, secret_store) -> None:
        kid = account.properties["xbox:kid"]
        key = _key(account, secret_store)
        _rewrite_bundle(account, secret_store, msft_expires_at=_past())

        flow.refresh_account(account)

        assert account.properties["xbox:kid"] == kid
        assert _key(account, secret_store) == key
        assert len(secret_store.items) == 1

    def test_profile_rename(self, flow, account, fake_services) -> None:
        fake_services.set("profile", (200, {"id": PROFILE_ID, "name": "Jeb"}))
        flow.refresh_account(account)
        assert account.properties["minecraft:username"] == "Jeb"
        assert account.authorization.username == "Jeb"

    def test_missing_keyring_key(self, flow, account, secret_store, fake_services) -> None:
        secret_store.items.clear()

        with pytest.raises(StepError) as exc_info:
            flow.refresh_account(account)

        assert exc_info.value.matches(xbox_flow.STEP_READ_KEYRING_KEY, SecretNotFoundError)
        assert fake_services.calls == []

    def test_missing_kid(self, flow, account) -> None:
        del account.properties["xbox:kid"]
        with pytest.raises(StepError) as exc_info:
            flow.refresh_account(account)
        assert exc_info.value.matches(xbox_flow.STEP_READ_KEYRING_KEY, SecretNotFoundError)

    def test_corrupt_secret(self, flow, account) -> None:
        account.encrypted_secret = account.encrypted_secret[:-8] + "AAAAAAA="
        with pytest.raises(StepError) as exc_info:
            flow.refresh_account(account)
        assert exc_info.value.matches(xbox_flow.STEP_READ_DATA, CodecError)

    def test_missing_secret(self, flow, account) -> None:
        account.encrypted_secret = None
        with pytest.raises(StepError) as exc_info:
            flow.refresh_account(account)
        assert exc_info.value.matches(xbox_flow.STEP_READ_DATA, CodecError)

    def test_revoked_refresh_token(self, flow, account, fake_services, secret_store) -> None:
        _rewrite_bundle(account, secret_store, msft_expires_at=_past())
        fake_services.set("refresh", (400, {"error": "invalid_grant"}))

        with pytest.raises(StepError) as exc_info:
            flow.refresh_account(account)
        assert exc_info.value.matches(xbox_flow.STEP_DEVICE_AUTH, TokenError)

    def test_lost_entitlement(self, flow, account, fake_services) -> None:
        fake_services.set("license", (200, {"items": []}))
        with pytest.raises(StepError) as exc_info:
            flow.refresh_account(account)
        assert exc_info.value.matches(xbox_flow.STEP_ENTITLEMENTS_CHECK, EntitlementMissingError)
