"""Config commands -- view and modify global configuration.

Provides the ``launchauth config`` sub-command group for reading, updating
and resetting ``config.json`` (:class:`~launchauth.models.Settings`): the
OAuth client id, the accounts file location, network retry policy and
keyring backend restrictions.
"""

from __future__ import annotations

from typing import Any

import typer
from pydantic import ValidationError

from launchauth.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show current configuration.

    Example::

        launchauth config show
        launchauth --json config show
    """
    from launchauth.config import get_config_dir, load_settings

    settings = load_settings()
    info(f"Config directory: {get_config_dir()}")
    format_response(settings.model_dump(mode="json"))


def _coerce(key: str, current: Any, value: str) -> Any:
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            error(f"Expected integer for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    if isinstance(current, float):
        try:
            return float(value)
        except ValueError:
            error(f"Expected number for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    if isinstance(current, list):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'network.max_retries')."
    ),
    value: str = typer.Argument(help="Value to set. Lists are comma-separated."),
) -> None:
    """Set a configuration value.

    The value is coerced to the existing field's type (bool, int, float,
    comma-separated list or str) and validated before saving.

    Example::

        launchauth config set client_id 00000000-0000-0000-0000-000000000000
        launchauth config set network.max_retries 5
        launchauth config set keyring.ban_backends PlaintextKeyring,chainer
    """
    from launchauth.config import load_settings, save_settings
    from launchauth.models import Settings

    settings = load_settings()
    data = settings.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    coerced = _coerce(key, target[final_key], value)
    target[final_key] = coerced

    try:
        new_settings = Settings.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_settings(new_settings)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(
    ctx: typer.Context,
) -> None:
    """Reset configuration to defaults. Asks first unless ``--force`` is given."""
    from launchauth.config import save_settings
    from launchauth.models import Settings

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_settings(Settings())
    success("Configuration reset to defaults.")
