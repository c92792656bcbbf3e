"""CLI main entry point."""

import asyncio

import click

from . import __version__
from .commands.chart import chart
from .commands.cluster import down, status, up
from .commands.config import config
from .commands.credentials import credentials
from .commands.diagnostics import diagnostics
from .commands.provider import provider
from .config import DEFAULT_LOG_LEVEL, OUTPUT_FORMATS, load_settings
from .decorators import is_json
from .formatters import print_json, print_version
from .shared import configure_logging, level_for_verbosity
from .version import check_for_update


@click.group()
@click.option("-c", "--config", "config_path", type=click.Path(), help="Project config file (default: kindplane.yaml)")
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v info, -vv debug)")
@click.option("--format", "output_format", type=click.Choice(OUTPUT_FORMATS), default=None, help="Output format")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: int, output_format: str | None) -> None:
    """Bootstrap local kind clusters with Crossplane, providers and charts."""
    ctx.ensure_object(dict)

    # Settings may log, so logging is configured before they are read
    configure_logging(level_for_verbosity(verbose))
    settings = load_settings()
    if not verbose and settings.log_level != DEFAULT_LOG_LEVEL:
        configure_logging(settings.log_level)

    ctx.obj["settings"] = settings
    ctx.obj["config_path"] = config_path or settings.config_path or None
    ctx.obj["output_format"] = output_format or settings.output_format
    ctx.obj["timeout"] = settings.timeout
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("--check", is_flag=True, help="Check GitHub for a newer release")
@click.pass_context
def version(ctx: click.Context, check: bool) -> None:
    """Show version information."""
    result = asyncio.run(check_for_update(__version__)) if check else None

    if is_json(ctx):
        data: dict[str, object] = {"version": __version__}
        if check:
            data["update"] = result.to_dict() if result else None
        print_json(data)
    else:
        print_version(__version__, result, checked=check)


cli.add_command(up)
cli.add_command(down)
cli.add_command(status)
cli.add_command(provider)
cli.add_command(credentials)
cli.add_command(chart)
cli.add_command(config)
cli.add_command(diagnostics)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
