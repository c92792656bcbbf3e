"""Command helpers shared by the CLI commands.

Commands raise KindplaneError subclasses; ``handle_errors`` turns them into
a one-line ``✗ message`` on stderr (or a JSON error document) and a non-zero
exit status.
"""

import json
import sys
from functools import wraps
from typing import Callable

import click

from .config import Config, load_config
from .errors import KindplaneError, ValidationError
from .shared import get_logger

logger = get_logger(__name__)


def is_json(ctx: click.Context) -> bool:
    """True when the command should print JSON."""
    return (ctx.obj or {}).get("output_format") == "json"


def handle_errors(func: Callable):
    """Decorator that reports KindplaneError and exits with status 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KindplaneError as e:
            logger.debug("command_failed", error=e.message, details=e.details)
            ctx = click.get_current_context()
            if is_json(ctx):
                click.echo(json.dumps({"error": e.to_dict()}, indent=2))
            else:
                click.echo(f"✗ {e.message}", err=True)
                if isinstance(e, ValidationError):
                    for error in e.errors:
                        click.echo(f"  - {error}", err=True)
            sys.exit(1)

    return wrapper


def get_config(ctx: click.Context, validate: bool = True) -> Config:
    """Load the project configuration named on the command line.

    Cached on the context object so command groups load it once.

    Raises:
        ValidationError: The file is missing or invalid.
    """
    cached = ctx.obj.get("config")
    if cached is not None:
        return cached
    config = load_config(ctx.obj.get("config_path"), validate=validate)
    if validate:
        ctx.obj["config"] = config
    return config


def confirm_or_abort(message: str, force: bool) -> None:
    """Ask for confirmation of a destructive action unless ``--force`` was given."""
    if force:
        return
    if not click.confirm(message, default=False):
        click.echo("Aborted.")
        sys.exit(1)
