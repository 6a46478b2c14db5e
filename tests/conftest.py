"""Shared test fixtures for launchauth.

Provides isolated config environments, output state management, a CLI
runner, and an in-process fake of the identity, Xbox Live and game services
served through :class:`httpx.MockTransport`. No test touches the real
network or the OS keyring.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Union
from urllib.parse import parse_qs

import httpx
import pytest

from launchauth.credentials.secret_store import MemorySecretStore
from launchauth.network.transport import RetryingTransport
from launchauth.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    The ``launchauth`` logger is restored too, since the CLI callback
    attaches a handler bound to those streams and stops propagation.
    """
    yield
    reset_output()
    logger = logging.getLogger("launchauth")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and data to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path,
    clears all LAUNCHAUTH_* environment variables and changes the working
    directory to tmp_path.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("launchauth.config._is_xdg_platform", lambda: True)

    for var in ["LAUNCHAUTH_CLIENT_ID", "LAUNCHAUTH_ACCOUNTS_FILE"]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Time and secrets
# ---------------------------------------------------------------------------


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Make every cancellable sleep return immediately; returns the requested delays."""
    delays: list[float] = []

    def fake_sleep(seconds: float, cancel: Any = None) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()
        delays.append(seconds)

    monkeypatch.setattr("launchauth.cancel.sleep", fake_sleep)
    return delays


@pytest.fixture
def secret_store() -> MemorySecretStore:
    return MemorySecretStore()


# ---------------------------------------------------------------------------
# Fake remote services
# ---------------------------------------------------------------------------


Reply = Union[tuple[int, Any], Callable[[httpx.Request], httpx.Response]]

PROFILE_ID = "069a79f444e94726a5befca90e38aaf5"
PROFILE_NAME = "Notch"


class FakeServices:
    """Canned Microsoft, Xbox Live and game-services endpoints.

    Endpoints are named after the last URL path segment (``devicecode``,
    ``token``, ``authenticate``, ``authorize``, ``login_with_xbox``,
    ``license``, ``profile``); refresh-token grants on the token endpoint
    are named ``refresh``. Each name has a default successful reply; queue
    replies with :meth:`queue` or replace the default with :meth:`set`.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.requests: list[httpx.Request] = []
        self._queued: dict[str, list[Reply]] = {}
        self._defaults: dict[str, Reply] = {
            "devicecode": (200, {
                "device_code": "device-code",
                "user_code": "ABCD-EFGH",
                "verification_uri": "https://www.microsoft.com/link",
                "expires_in": 900,
                "interval": 5,
                "message": "To sign in, use a web browser...",
            }),
            "token": (200, {
                "token_type": "Bearer",
                "scope": "XboxLive.signin XboxLive.offline_access",
                "expires_in": 3600,
                "access_token": "msft-access",
                "refresh_token": "msft-refresh",
            }),
            "refresh": (200, {
                "token_type": "Bearer",
                "expires_in": 3600,
                "access_token": "msft-access-2",
                "refresh_token": "msft-refresh-2",
            }),
            "authenticate": (200, {
                "IssueInstant": "2024-01-01T00:00:00.0000000Z",
                "NotAfter": "2024-01-15T00:00:00.0000000Z",
                "Token": "xbl-token",
                "DisplayClaims": {"xui": [{"uhs": "user-hash"}]},
            }),
            "authorize": (200, {
                "Token": "xsts-token",
                "DisplayClaims": {"xui": [{"uhs": "user-hash"}]},
            }),
            "login_with_xbox": (200, {
                "username": "c0ffee",
                "roles": [],
                "access_token": "mc-token",
                "token_type": "Bearer",
                "expires_in": 86400,
            }),
            "license": (200, {
                "items": [
                    {"name": "product_minecraft", "signature": "sig"},
                    {"name": "game_minecraft", "signature": "sig"},
                ],
                "signature": "jwt",
                "keyId": "1",
            }),
            "profile": (200, {
                "id": PROFILE_ID,
                "name": PROFILE_NAME,
                "skins": [],
                "capes": [],
            }),
        }

    def set(self, name: str, reply: Reply) -> None:
        self._defaults[name] = reply

    def queue(self, name: str, *replies: Reply) -> None:
        self._queued.setdefault(name, []).extend(replies)

    def count(self, name: str) -> int:
        return self.calls.count(name)

    def last_request(self, name: str) -> httpx.Request:
        for call, request in zip(reversed(self.calls), reversed(self.requests)):
            if call == name:
                return request
        raise AssertionError(f"no {name} request was made")

    def handler(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.rsplit("/", 1)[-1]
        if name == "token":
            form = parse_qs(request.content.decode())
            if form.get("grant_type") == ["refresh_token"]:
                name = "refresh"
        self.calls.append(name)
        self.requests.append(request)

        queued = self._queued.get(name)
        reply = queued.pop(0) if queued else self._defaults.get(name, (404, {"error": "not found"}))
        if callable(reply):
            return reply(request)
        status, body = reply
        return httpx.Response(status, content=json.dumps(body).encode(), headers={"Content-Type": "application/json"})

    def transport(self) -> RetryingTransport:
        client = httpx.Client(transport=httpx.MockTransport(self.handler))
        return RetryingTransport(client, max_retries=1, retry_delay=0)


@pytest.fixture
def fake_services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def transport(fake_services: FakeServices) -> RetryingTransport:
    with fake_services.transport() as t:
        yield t
