"""Account commands -- log in, list, select, refresh and remove accounts.

Provides the ``launchauth account`` sub-command group. Every command holds
the accounts store lock for its whole run, so two launchers cannot rewrite
the store at the same time.

Typical workflow::

    launchauth account add microsoft   # device-code login
    launchauth account add offline Steve
    launchauth account list
    launchauth account refresh         # renew the selected account
"""

from __future__ import annotations

import contextlib
import logging
import signal
import threading
from typing import Iterator, Optional

import typer

from launchauth.accounts.flow import AuthFlow
from launchauth.accounts.properties import GameProfileProperties, XboxProperties
from launchauth.accounts.store import AccountStoreFile
from launchauth.cancel import CancelToken
from launchauth.config import get_accounts_path, require_client_id, resolve_settings
from launchauth.credentials.secret_store import SecretStore, open_secret_store
from launchauth.exceptions import (
    CodecError,
    ConnectionError_,
    EntitlementMissingError,
    FlowCancelledError,
    GameAPIError,
    InvalidUsageError,
    LaunchAuthError,
    SecretNotFoundError,
    SecretStoreError,
    ServerError,
    StepError,
    TokenError,
    TokenErrorReason,
    XboxTokenError,
)
from launchauth.flows import offline as offline_flow
from launchauth.flows import xbox as xbox_flow
from launchauth.game.api import GameServicesClient
from launchauth.models import ACCOUNT_TYPE_OFFLINE, ACCOUNT_TYPE_XBOX, Account, Settings
from launchauth.network.transport import RetryingTransport, build_transport
from launchauth.output import (
    error,
    get_output,
    info,
    print_table,
    prompt_box,
    success,
    suggest,
    warning,
)
from launchauth.xbox.msft import MicrosoftAuthClient
from launchauth.xbox.xbl import XboxLiveClient


logger = logging.getLogger(__name__)

account_app = typer.Typer(no_args_is_help=True)
add_app = typer.Typer(no_args_is_help=True)
account_app.add_typer(add_app, name="add", help="Log in with a new account.")


# ------------------------------------------------------------------ #
# Error messages
# ------------------------------------------------------------------ #

_TOKEN_MESSAGES = {
    TokenErrorReason.EXPIRED: "The login code has expired. Please try again.",
    TokenErrorReason.DECLINED: "The login request was declined.",
    TokenErrorReason.BAD_VERIFICATION_CODE: "The login code was not accepted. Please try again.",
}


def describe_flow_error(exc: StepError) -> str:
    """Turn a failed flow step into a message for the user."""
    cause = exc.cause

    if isinstance(cause, FlowCancelledError):
        return f"Login {cause}."
    if isinstance(cause, TokenError) and cause.reason in _TOKEN_MESSAGES:
        return _TOKEN_MESSAGES[cause.reason]
    if isinstance(cause, EntitlementMissingError):
        return "This Microsoft account does not own the game."
    if isinstance(cause, XboxTokenError):
        message = f"Xbox Live refused the login: {cause}"
        if cause.redirect:
            message += f" See {cause.redirect}"
        return message
    if exc.matches(xbox_flow.STEP_READ_KEYRING_KEY, SecretStoreError):
        return (
            "The key for this account is missing from the system keyring. "
            "Remove the account and log in again."
        )
    if exc.matches(xbox_flow.STEP_READ_DATA, CodecError):
        return "The saved login data is damaged. Remove the account and log in again."
    if isinstance(cause, GameAPIError):
        return f"The game services rejected the request: {cause}"
    if isinstance(cause, (ConnectionError_, ServerError)):
        return f"Network problem while running {exc.step_id}: {cause}"
    if isinstance(cause, InvalidUsageError):
        return str(cause)
    return f"Unknown error in step {exc.step_id}: {cause}"


@contextlib.contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except StepError as exc:
        error(describe_flow_error(exc))
        raise typer.Exit(code=exc.exit_code) from None
    except LaunchAuthError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


@contextlib.contextmanager
def _cancel_on_interrupt(timeout: Optional[float] = None) -> Iterator[CancelToken]:
    """Yield a token that Ctrl-C cancels instead of killing the process."""
    token = CancelToken(timeout)
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    previous = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


# ------------------------------------------------------------------ #
# Collaborators (patched in tests)
# ------------------------------------------------------------------ #


def _settings(ctx: typer.Context) -> Settings:
    obj = ctx.obj or {}
    return resolve_settings(cli_client_id=obj.get("client_id"))


def _open_store(settings: Settings) -> AccountStoreFile:
    return AccountStoreFile.open(get_accounts_path(settings))


def _open_secret_store(settings: Settings) -> SecretStore:
    return open_secret_store(settings.keyring)


def _open_transport(settings: Settings) -> RetryingTransport:
    return build_transport(settings.network)


def _show_device_code(verification_uri: str, user_code: str) -> None:
    prompt_box([
        f"Go to: {verification_uri}",
        f"Enter code: {user_code}",
    ])
    info("Waiting for authorization...")


def _xbox_flow(
    settings: Settings, transport: RetryingTransport, secret_store: SecretStore
) -> AuthFlow[xbox_flow.XboxFlowData]:
    return xbox_flow.create_xbox_flow(
        xbox_flow.XboxFlowOptions(
            device_auth_handler=_show_device_code,
            secret_store=secret_store,
            msft=MicrosoftAuthClient(transport, require_client_id(settings)),
            xbl=XboxLiveClient(transport),
            game=GameServicesClient(transport),
        )
    )


def _username_prompt(username: Optional[str]) -> offline_flow.UsernameHandler:
    def handler() -> str:
        if username is not None:
            return username
        return typer.prompt("Username").strip()

    return handler


def _offline_flow(username: Optional[str] = None) -> AuthFlow[offline_flow.OfflineFlowData]:
    return offline_flow.create_offline_flow(
        offline_flow.OfflineFlowOptions(username_handler=_username_prompt(username))
    )


def _display_name(account: Account) -> str:
    return GameProfileProperties.read_from(account).username or ""


def _store_and_select(store: AccountStoreFile, account: Account) -> None:
    store.add_account(account)
    if store.selected_account is None:
        store.select_account(account.id)
        info(f"Selected {_display_name(account)} ({account.id}).")


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


@add_app.command("microsoft")
def add_microsoft(
    ctx: typer.Context,
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Give up the login after this many seconds."
    ),
) -> None:
    """Log in with a Microsoft account using a device code.

    Example::

        launchauth account add microsoft
    """
    with _handle_errors():
        settings = _settings(ctx)
        require_client_id(settings)
        with _open_store(settings) as store, _open_transport(settings) as transport:
            flow = _xbox_flow(settings, transport, _open_secret_store(settings))
            with _cancel_on_interrupt(timeout) as token:
                account = flow.create_account(cancel=token)
            _store_and_select(store, account)
        success(f"Logged in as {_display_name(account)}.")


@add_app.command("offline")
def add_offline(
    ctx: typer.Context,
    username: Optional[str] = typer.Argument(
        None, help="Player name (3-16 letters, digits or underscores)."
    ),
) -> None:
    """Add an offline account for local play.

    Example::

        launchauth account add offline Steve
    """
    with _handle_errors():
        if username is not None:
            offline_flow.validate_username(username)
        with _open_store(_settings(ctx)) as store:
            account = _offline_flow(username).create_account()
            _store_and_select(store, account)
        success(f"Added offline account {_display_name(account)}.")


@account_app.command("list")
def account_list(ctx: typer.Context) -> None:
    """List saved accounts. The selected one is marked with ``*``."""
    with _handle_errors():
        settings = _settings(ctx)
        with _open_store(settings) as store:
            selected = store.selected_account
            rows = [
                [
                    "*" if account_id == selected else "",
                    account_id,
                    account.type,
                    _display_name(account),
                ]
                for account_id, account in store.accounts.items()
            ]

    if not rows:
        info("No accounts.")
        suggest("Add one: launchauth account add microsoft")
        return
    print_table(["SELECTED", "ID", "TYPE", "USERNAME"], rows, title="Accounts")


@account_app.command("select")
def account_select(
    ctx: typer.Context,
    account_id: str = typer.Argument(help="Account ID to select."),
) -> None:
    """Select the account used by default."""
    with _handle_errors():
        with _open_store(_settings(ctx)) as store:
            store.select_account(account_id)
            name = _display_name(store.get_account(account_id))
        success(f"Selected {name} ({account_id}).")


@account_app.command("deselect")
def account_deselect(ctx: typer.Context) -> None:
    """Clear the account selection."""
    with _handle_errors():
        with _open_store(_settings(ctx)) as store:
            store.deselect_account()
        success("No account is selected.")


@account_app.command("remove")
def account_remove(
    ctx: typer.Context,
    account_id: str = typer.Argument(help="Account ID to remove."),
) -> None:
    """Remove an account and forget its saved key."""
    with _handle_errors():
        settings = _settings(ctx)
        with _open_store(settings) as store:
            account = store.remove_account(account_id)
        if account.type == ACCOUNT_TYPE_XBOX:
            _forget_key(settings, account)
        success(f"Removed {_display_name(account) or account_id}.")


def _forget_key(settings: Settings, account: Account) -> None:
    kid = XboxProperties.read_from(account).kid
    if not kid:
        return
    try:
        _open_secret_store(settings).delete(xbox_flow.secret_key_name(kid))
    except SecretNotFoundError:
        logger.debug("No saved key for %s", account.id)
    except SecretStoreError as exc:
        warning(f"Could not delete the saved key for {account.id}: {exc}")


@account_app.command("refresh")
def account_refresh(
    ctx: typer.Context,
    account_id: Optional[str] = typer.Argument(
        None, help="Account ID to refresh. Defaults to the selected account."
    ),
) -> None:
    """Renew an account's credentials without logging in again."""
    with _handle_errors():
        settings = _settings(ctx)
        with _open_store(settings) as store:
            if account_id is None:
                account = store.get_selected_account()
                if account is None:
                    raise InvalidUsageError("No account selected; pass an account ID")
            else:
                account = store.get_account(account_id)
            original_id = account.id
            # a failed run must leave the stored record untouched
            account = account.model_copy(deep=True)

            if account.type == ACCOUNT_TYPE_OFFLINE:
                _offline_flow().refresh_account(account)
            elif account.type == ACCOUNT_TYPE_XBOX:
                with _open_transport(settings) as transport:
                    flow = _xbox_flow(settings, transport, _open_secret_store(settings))
                    with _cancel_on_interrupt() as token:
                        flow.refresh_account(account, cancel=token)
            else:
                raise InvalidUsageError(f"Unsupported account type: {account.type}")

            _save_refreshed(store, original_id, account)
            authorization = account.authorization

        if authorization is not None and get_output().is_verbose:
            info(f"Authorized as {authorization.username} ({authorization.user_uuid}).")
        success(f"Refreshed {_display_name(account) or account.id}.")


def _save_refreshed(store: AccountStoreFile, original_id: str, account: Account) -> None:
    # the profile step may report a different id than the one stored
    if account.id == original_id:
        store.add_account(account)
        return
    was_selected = store.selected_account == original_id
    store.remove_account(original_id)
    store.add_account(account)
    if was_selected:
        store.select_account(account.id)
