"""Accounts: the flow engine, the locked accounts store, and typed property views.

The main entry points are:

- :class:`AuthFlow` / :class:`FlowStep` / :class:`FlowState` -- the generic
  step-pipelined engine that concrete flows in :mod:`launchauth.flows` build on.
- :class:`AccountStoreFile` -- the accounts JSON file, held under an exclusive
  lock while open.
- :class:`PropertiesView` -- namespaced typed access to ``Account.properties``.
"""

from launchauth.accounts.flow import AuthFlow, FlowState, FlowStep
from launchauth.accounts.properties import (
    GameProfileProperties,
    PropertiesView,
    XboxProperties,
)
from launchauth.accounts.store import AccountStore, AccountStoreFile

__all__ = [
    "AccountStore",
    "AccountStoreFile",
    "AuthFlow",
    "FlowState",
    "FlowStep",
    "GameProfileProperties",
    "PropertiesView",
    "XboxProperties",
]
