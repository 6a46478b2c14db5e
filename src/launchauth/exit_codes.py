"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~launchauth.exceptions.LaunchAuthError` subclass.
Shell wrappers around the launcher can inspect the exit code to decide
whether to re-prompt the user, retry later, or give up.

Example::

    $ launchauth account refresh
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- one of the authentication steps failed
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication or authorisation failed."""

EXIT_NOT_FOUND = 4
"""The requested account does not exist in the store."""

EXIT_SERVER_ERROR = 5
"""A remote service answered with an unexpected status code."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_SECRET_STORE_ERROR = 7
"""The OS secret store could not be read or written, or stored secrets are corrupt."""

EXIT_STORE_LOCKED = 8
"""The accounts store is held open by another process."""

EXIT_CANCELLED = 130
"""The operation was cancelled by the user (mirrors the SIGINT convention)."""
