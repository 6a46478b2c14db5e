"""Built-in CLI sub-commands for launchauth.

* :mod:`~launchauth.commands.account` -- log in, list, select, refresh and
  remove accounts.
* :mod:`~launchauth.commands.config` -- view and modify global settings.

Each module exports a :class:`typer.Typer` sub-application that
:func:`launchauth.app.main` mounts on the root app.
"""
