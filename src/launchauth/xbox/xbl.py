"""Xbox Live user authentication and XSTS authorization.

Two chained security-token exchanges sit between the Microsoft access token
and the game services: the user token (XBL) proves the Microsoft login to
Xbox Live, and the XSTS token scopes it to a relying party.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from launchauth.cancel import CancelToken
from launchauth.exceptions import LaunchAuthError, ServerError, XboxTokenError
from launchauth.network.transport import (
    RetryingTransport,
    decode_json,
    parse_model,
    unexpected_status,
)

logger = logging.getLogger(__name__)

USER_AUTH_URL = "https://user.auth.xboxlive.com/user/authenticate"
XSTS_AUTH_URL = "https://xsts.auth.xboxlive.com/xsts/authorize"

RP_XBOX_LIVE = "http://auth.xboxlive.com"
RP_GAME_SERVICES = "rp://api.minecraftservices.com/"

_HEADERS = {"Accept": "application/json"}


class XboxTokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    issue_instant: Optional[datetime] = Field(default=None, alias="IssueInstant")
    not_after: Optional[datetime] = Field(default=None, alias="NotAfter")
    token: str = Field(alias="Token")
    display_claims: dict[str, list[Any]] = Field(default_factory=dict, alias="DisplayClaims")

    @property
    def user_hash(self) -> Optional[str]:
        return find_user_hash(self.display_claims)


def find_user_hash(claims: dict[str, list[Any]]) -> Optional[str]:
    """Return the first ``uhs`` value among the ``xui`` display claims."""
    for claim in claims.get("xui") or []:
        if isinstance(claim, dict) and isinstance(claim.get("uhs"), str):
            return claim["uhs"]
    return None


class XboxLiveClient:
    """Client for the Xbox Live security-token services."""

    def __init__(self, transport: RetryingTransport) -> None:
        self._transport = transport

    def authenticate_user(
        self, msft_access_token: str, cancel: Optional[CancelToken] = None
    ) -> XboxTokenResponse:
        """Trade a Microsoft access token for an Xbox Live user token."""
        return self._request_token(
            USER_AUTH_URL,
            {
                "Properties": {
                    "AuthMethod": "RPS",
                    "SiteName": "user.auth.xboxlive.com",
                    "RpsTicket": f"d={msft_access_token}",
                },
                "RelyingParty": RP_XBOX_LIVE,
                "TokenType": "JWT",
            },
            cancel,
        )

    def authorize_xsts(
        self, xbl_token: str, cancel: Optional[CancelToken] = None
    ) -> XboxTokenResponse:
        """Trade an Xbox Live user token for an XSTS token for the game services."""
        return self._request_token(
            XSTS_AUTH_URL,
            {
                "Properties": {"SandboxId": "RETAIL", "UserTokens": [xbl_token]},
                "RelyingParty": RP_GAME_SERVICES,
                "TokenType": "JWT",
            },
            cancel,
        )

    def _request_token(
        self, url: str, payload: dict[str, Any], cancel: Optional[CancelToken]
    ) -> XboxTokenResponse:
        response = self._transport.request(
            "POST", url, json=payload, headers=_HEADERS, cancel=cancel
        )
        if response.status_code == 200:
            return parse_model(response, XboxTokenResponse)
        if response.status_code == 401:
            raise _xbox_error(response)
        raise unexpected_status(response)


def _xbox_error(response: httpx.Response) -> LaunchAuthError:
    # 401 without a decodable XErr body is reported like any other status
    try:
        body = decode_json(response)
    except ServerError:
        return unexpected_status(response)
    if "XErr" not in body:
        return unexpected_status(response)
    error = XboxTokenError.from_body(body)
    logger.debug("Xbox Live rejected the token request with XErr %s", error.xerr)
    return error
