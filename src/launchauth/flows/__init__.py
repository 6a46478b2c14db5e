"""Concrete authentication flows built on :class:`~launchauth.accounts.flow.AuthFlow`.

- :mod:`~launchauth.flows.xbox` -- Microsoft device-code login through Xbox
  Live to the game services.
- :mod:`~launchauth.flows.offline` -- local-only player name.
"""

from launchauth.flows.offline import OfflineFlowOptions, create_offline_flow
from launchauth.flows.xbox import XboxFlowOptions, create_xbox_flow

__all__ = [
    "OfflineFlowOptions",
    "XboxFlowOptions",
    "create_offline_flow",
    "create_xbox_flow",
]
