"""Microsoft identity platform client (OAuth2 device authorization grant).

The cloud flow starts here: a device code is requested for the consumer
tenant, the user enters it in a browser on any device, and the token
endpoint is polled until the login completes (:rfc:`8628` section 3.4).
Renewals use the ``refresh_token`` grant.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx
from pydantic import BaseModel

from launchauth import cancel as cancellation
from launchauth.cancel import CancelToken
from launchauth.exceptions import LaunchAuthError, TokenError, TokenErrorReason
from launchauth.network.transport import (
    RetryingTransport,
    decode_json,
    parse_model,
    unexpected_status,
)

logger = logging.getLogger(__name__)

DEVICE_CODE_URL = "https://login.microsoftonline.com/consumers/oauth2/v2.0/devicecode"
TOKEN_URL = "https://login.microsoftonline.com/consumers/oauth2/v2.0/token"
SCOPE = "XboxLive.signin XboxLive.offline_access"
DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

SLOW_DOWN_INCREMENT = 5

_HEADERS = {"Accept": "application/json"}


class DeviceAuthResponse(BaseModel):
    """Device authorization response: what the user must type and where."""

    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int = 900
    interval: int = 5
    message: str = ""


class TokenResponse(BaseModel):
    token_type: str = ""
    scope: str = ""
    expires_in: int = 0
    access_token: str
    refresh_token: str = ""


class MicrosoftAuthClient:
    """Talks to the ``consumers`` tenant of the Microsoft identity platform.

    Args:
        transport: Shared retrying transport.
        client_id: OAuth application (client) id registered with Azure.
    """

    def __init__(self, transport: RetryingTransport, client_id: str) -> None:
        self._transport = transport
        self._client_id = client_id

    def request_device_auth(self, cancel: Optional[CancelToken] = None) -> DeviceAuthResponse:
        """Request a new device code and user code."""
        response = self._transport.request(
            "POST",
            DEVICE_CODE_URL,
            data={"client_id": self._client_id, "scope": SCOPE},
            headers=_HEADERS,
            cancel=cancel,
        )
        if response.status_code != 200:
            raise self._token_error(response)
        return parse_model(response, DeviceAuthResponse)

    def poll_for_token(
        self, device_auth: DeviceAuthResponse, cancel: Optional[CancelToken] = None
    ) -> TokenResponse:
        """Poll the token endpoint until the user finishes logging in.

        ``authorization_pending`` keeps polling at the advertised interval and
        ``slow_down`` widens it by five seconds. A device code whose lifetime
        has run out locally is reported as ``expired_token`` without waiting
        for the provider to say so.

        Raises:
            TokenError: For a decline, an expired or bad code, or any other
                provider error.
            FlowCancelledError: If *cancel* fires while polling.
        """
        interval = max(device_auth.interval, 1)
        deadline = time.monotonic() + device_auth.expires_in if device_auth.expires_in > 0 else None
        data = {
            "client_id": self._client_id,
            "grant_type": DEVICE_CODE_GRANT,
            "device_code": device_auth.device_code,
        }

        while True:
            response = self._transport.request(
                "POST", TOKEN_URL, data=data, headers=_HEADERS, cancel=cancel
            )
            if response.status_code == 200:
                return parse_model(response, TokenResponse)

            error = self._token_error(response)
            if not isinstance(error, TokenError):
                raise error
            if error.reason == TokenErrorReason.SLOW_DOWN:
                interval += SLOW_DOWN_INCREMENT
                logger.debug("Token endpoint asked to slow down; polling every %ds", interval)
            elif error.reason != TokenErrorReason.PENDING:
                raise error

            if deadline is not None and time.monotonic() + interval > deadline:
                raise TokenError("expired_token", "the device code has expired")
            cancellation.sleep(interval, cancel)

    def refresh_token(self, refresh_token: str, cancel: Optional[CancelToken] = None) -> TokenResponse:
        """Exchange *refresh_token* for a new access token.

        Raises:
            TokenError: If the provider rejects the refresh token.
        """
        response = self._transport.request(
            "POST",
            TOKEN_URL,
            data={
                "client_id": self._client_id,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": SCOPE,
            },
            headers=_HEADERS,
            cancel=cancel,
        )
        if response.status_code != 200:
            raise self._token_error(response)
        return parse_model(response, TokenResponse)

    @staticmethod
    def _token_error(response: httpx.Response) -> LaunchAuthError:
        if response.status_code >= 500:
            return unexpected_status(response)
        body = decode_json(response)
        if "error" not in body:
            return unexpected_status(response)
        return TokenError.from_body(body)
