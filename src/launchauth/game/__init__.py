"""Game services client used by the cloud flow's final steps."""

from launchauth.game.api import (
    ENTITLEMENT_MINECRAFT_GAME,
    ENTITLEMENT_MINECRAFT_PRODUCT,
    GameServicesClient,
    Profile,
)

__all__ = [
    "ENTITLEMENT_MINECRAFT_GAME",
    "ENTITLEMENT_MINECRAFT_PRODUCT",
    "GameServicesClient",
    "Profile",
]
