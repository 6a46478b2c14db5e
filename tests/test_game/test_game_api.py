"""Tests for launchauth.game.api."""

from __future__ import annotations

import json

import httpx
import pytest

from launchauth.exceptions import GameAPIError, ServerError
from launchauth.game.api import ENTITLEMENT_MINECRAFT_GAME, GameServicesClient


@pytest.fixture
def game(transport) -> GameServicesClient:
    return GameServicesClient(transport)


class TestLoginWithXbox:
    def test_identity_token(self, game, fake_services) -> None:
        response = game.login_with_xbox("user-hash", "xsts-token")

        assert response.access_token == "mc-token"
        assert response.expires_in == 86400
        body = json.loads(fake_services.last_request("login_with_xbox").content)
        assert body == {"identityToken": "XBL3.0 x=user-hash;xsts-token"}

    def test_structured_error(self, game, fake_services) -> None:
        fake_services.set("login_with_xbox", (400, {
            "path": "/authentication/login_with_xbox",
            "errorType": "BadRequest",
            "error": "BadRequestException",
            "errorMessage": "Invalid app registration",
            "developerMessage": "see docs",
        }))

        with pytest.raises(GameAPIError) as exc_info:
            game.login_with_xbox("user-hash", "xsts-token")

        exc = exc_info.value
        assert str(exc) == "Invalid app registration"
        assert exc.error_type == "BadRequest"
        assert exc.path == "/authentication/login_with_xbox"

    def test_other_status(self, game, fake_services) -> None:
        fake_services.set("login_with_xbox", (429, {}))
        with pytest.raises(ServerError):
            game.login_with_xbox("user-hash", "xsts-token")

    def test_400_without_json(self, game, fake_services) -> None:
        fake_services.set("login_with_xbox", lambda request: httpx.Response(400, content=b"oops"))
        with pytest.raises(ServerError):
            game.login_with_xbox("user-hash", "xsts-token")


class TestEntitlements:
    def test_names_and_request_id(self, game, fake_services) -> None:
        entitlements = game.get_entitlements("mc-token")

        assert ENTITLEMENT_MINECRAFT_GAME in entitlements.names()
        request = fake_services.last_request("license")
        assert request.headers["Authorization"] == "Bearer mc-token"
        first_id = request.url.params["requestId"]

        game.get_entitlements("mc-token")
        assert fake_services.last_request("license").url.params["requestId"] != first_id

    def test_empty(self, game, fake_services) -> None:
        fake_services.set("license", (200, {"items": []}))
        assert game.get_entitlements("mc-token").names() == set()


class TestProfile:
    def test_profile(self, game, fake_services) -> None:
        fake_services.set("profile", (200, {
            "id": "069a79f444e94726a5befca90e38aaf5",
            "name": "Notch",
            "skins": [{"id": "s1", "state": "ACTIVE", "url": "http://textures/1", "variant": "CLASSIC"}],
            "capes": [],
        }))

        profile = game.get_profile("mc-token")

        assert profile.id == "069a79f444e94726a5befca90e38aaf5"
        assert profile.name == "Notch"
        assert profile.skins[0].variant == "CLASSIC"
        assert fake_services.last_request("profile").headers["Authorization"] == "Bearer mc-token"

    def test_no_profile(self, game, fake_services) -> None:
        fake_services.set("profile", (404, {"error": "NOT_FOUND"}))
        with pytest.raises(ServerError):
            game.get_profile("mc-token")
