"""Configuration commands."""

from __future__ import annotations

import sys

import click

from ..bootstrap.kind import build_kind_config, load_raw_config, render_kind_config
from ..config import config_to_dict, load_config, load_settings, resolve_config_path, validate_config
from ..decorators import get_config, handle_errors, is_json
from ..errors import ValidationError
from ..formatters import print_config_yaml, print_json, print_settings, print_validation_result

SECTIONS = ("cluster", "crossplane", "credentials", "charts")


@click.group()
def config() -> None:
    """Inspect and validate the project configuration."""
    pass


@config.command("show")
@click.option("--section", type=click.Choice(SECTIONS), help="Show specific section")
@click.pass_context
@handle_errors
def config_show(ctx: click.Context, section: str | None) -> None:
    """Show the resolved project configuration."""
    data = config_to_dict(get_config(ctx))
    if section:
        data = {section: data[section]}

    if is_json(ctx):
        print_json(data)
    elif section:
        print_config_yaml(data[section], section)
    else:
        print_config_yaml(data)


@config.command("validate")
@click.pass_context
@handle_errors
def config_validate(ctx: click.Context) -> None:
    """Validate the project configuration, reporting every problem."""
    path = resolve_config_path(ctx.obj.get("config_path"))
    errors: list[str] = []
    try:
        validate_config(load_config(path, validate=False))
    except ValidationError as e:
        errors = e.errors or [e.message]

    if is_json(ctx):
        print_json({"file": str(path), "valid": not errors, "errors": errors})
    else:
        print_validation_result(str(path), errors)

    if errors:
        sys.exit(1)


@config.command("kind")
@click.pass_context
@handle_errors
def config_kind(ctx: click.Context) -> None:
    """Print the kind cluster configuration generated from the project file."""
    cfg = get_config(ctx)
    raw = None
    if cfg.cluster.raw_config_path:
        raw = load_raw_config(cfg.resolve_path(cfg.cluster.raw_config_path))
    tree = build_kind_config(cfg.cluster, raw)

    if is_json(ctx):
        print_json(tree)
    else:
        click.echo(render_kind_config(tree), nl=False)


@config.command("settings")
@click.pass_context
def config_settings(ctx: click.Context) -> None:
    """Show CLI settings and where each value comes from."""
    settings = load_settings()
    if is_json(ctx):
        print_json(
            {
                "values": {
                    "config_path": settings.config_path,
                    "timeout": settings.timeout,
                    "output_format": settings.output_format,
                    "log_level": settings.log_level,
                },
                "sources": {k: settings.get_source(k) for k in ("config_path", "timeout", "output_format", "log_level")},
            }
        )
    else:
        print_settings(settings)
