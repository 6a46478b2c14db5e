"""Microsoft identity and Xbox Live token clients."""

from launchauth.xbox.msft import DeviceAuthResponse, MicrosoftAuthClient, TokenResponse
from launchauth.xbox.xbl import XboxLiveClient, XboxTokenResponse, find_user_hash

__all__ = [
    "DeviceAuthResponse",
    "MicrosoftAuthClient",
    "TokenResponse",
    "XboxLiveClient",
    "XboxTokenResponse",
    "find_user_hash",
]
