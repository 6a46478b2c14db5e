"""HTTP plumbing shared by the identity and game-service clients."""

from launchauth.network.connectivity import (
    CheckResult,
    ConnectionStatus,
    MozillaConnectivityChecker,
    wait_for_connection,
)
from launchauth.network.transport import RetryingTransport, build_transport

__all__ = [
    "CheckResult",
    "ConnectionStatus",
    "MozillaConnectivityChecker",
    "RetryingTransport",
    "build_transport",
    "wait_for_connection",
]
