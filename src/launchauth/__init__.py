"""launchauth -- account authentication for game launchers.

Logs players in with a Microsoft account (device-code login chained through
Xbox Live to the game services) or as a local offline player, and keeps the
resulting credentials in a locked JSON accounts file. Long-lived tokens are
AES-GCM encrypted with a per-account key held in the OS keyring.

Typical workflow::

    launchauth account add microsoft   # log in
    launchauth account refresh         # renew silently before launching

Modules:
    app: Typer application and CLI entry point.
    accounts: Flow engine, accounts store and property views.
    flows: The Microsoft and offline authentication flows.
    credentials: Secret codec and OS secret store.
    network: Retrying HTTP transport and connectivity checks.
    xbox, game: Identity and game-service API clients.
    config: XDG-aware settings.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"
