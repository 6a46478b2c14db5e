"""Game services API: Xbox login, entitlements and the player profile."""

from __future__ import annotations

import uuid
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from launchauth.cancel import CancelToken
from launchauth.exceptions import GameAPIError, LaunchAuthError, ServerError
from launchauth.network.transport import (
    RetryingTransport,
    decode_json,
    parse_model,
    unexpected_status,
)

BASE_URL = "https://api.minecraftservices.com"
LOGIN_WITH_XBOX_URL = f"{BASE_URL}/authentication/login_with_xbox"
ENTITLEMENTS_URL = f"{BASE_URL}/entitlements/license"
PROFILE_URL = f"{BASE_URL}/minecraft/profile"

ENTITLEMENT_MINECRAFT_PRODUCT = "product_minecraft"
ENTITLEMENT_MINECRAFT_GAME = "game_minecraft"
ENTITLEMENT_MINECRAFT_BEDROCK_PRODUCT = "product_minecraft_bedrock"
ENTITLEMENT_MINECRAFT_BEDROCK_GAME = "game_minecraft_bedrock"


class LoginResponse(BaseModel):
    username: str = ""
    roles: list[Any] = Field(default_factory=list)
    access_token: str
    token_type: str = ""
    expires_in: int = 0


class Entitlement(BaseModel):
    name: str
    source: str = ""


class EntitlementsResponse(BaseModel):
    items: list[Entitlement] = Field(default_factory=list)
    signature: str = ""
    key_id: str = Field(default="", alias="keyId")
    request_id: str = Field(default="", alias="requestId")

    def names(self) -> set[str]:
        return {item.name for item in self.items}


class Texture(BaseModel):
    id: str = ""
    state: str = ""
    url: str = ""
    alias: str = ""
    variant: str = ""


class Profile(BaseModel):
    id: str
    name: str
    skins: list[Texture] = Field(default_factory=list)
    capes: list[Texture] = Field(default_factory=list)


class GameServicesClient:
    """Client for ``api.minecraftservices.com``.

    ``login_with_xbox`` is anonymous; the remaining calls take the access
    token it returns.
    """

    def __init__(self, transport: RetryingTransport) -> None:
        self._transport = transport

    def login_with_xbox(
        self, user_hash: str, xsts_token: str, cancel: Optional[CancelToken] = None
    ) -> LoginResponse:
        response = self._transport.request(
            "POST",
            LOGIN_WITH_XBOX_URL,
            json={"identityToken": f"XBL3.0 x={user_hash};{xsts_token}"},
            headers={"Accept": "application/json"},
            cancel=cancel,
        )
        return parse_model(_checked(response), LoginResponse)

    def get_entitlements(
        self, access_token: str, cancel: Optional[CancelToken] = None
    ) -> EntitlementsResponse:
        """List the products owned by the player, with a fresh ``requestId``."""
        response = self._transport.request(
            "GET",
            ENTITLEMENTS_URL,
            params={"requestId": str(uuid.uuid4())},
            headers=_bearer(access_token),
            cancel=cancel,
        )
        return parse_model(_checked(response), EntitlementsResponse)

    def get_profile(self, access_token: str, cancel: Optional[CancelToken] = None) -> Profile:
        response = self._transport.request(
            "GET", PROFILE_URL, headers=_bearer(access_token), cancel=cancel
        )
        return parse_model(_checked(response), Profile)


def _bearer(access_token: str) -> dict[str, str]:
    return {"Accept": "application/json", "Authorization": f"Bearer {access_token}"}


def _checked(response: httpx.Response) -> httpx.Response:
    if response.status_code == 200:
        return response
    raise _api_error(response)


def _api_error(response: httpx.Response) -> LaunchAuthError:
    if response.status_code != 400:
        return unexpected_status(response)
    try:
        body = decode_json(response)
    except ServerError:
        return unexpected_status(response)
    return GameAPIError.from_body(body)
