"""Helm chart commands for the charts declared in the project file."""

from __future__ import annotations

import click

from ..bootstrap import BootstrapContext, InstallOptions, chart_spec_from_config
from ..config import ChartConfig, Config
from ..decorators import get_config, handle_errors, is_json
from ..errors import ValidationError
from ..formatters import print_json, print_release, print_releases, values_printer


def _chart(config: Config, name: str) -> ChartConfig:
    chart = config.chart(name)
    if chart is None:
        defined = ", ".join(c.name for c in config.charts) or "none"
        raise ValidationError(f"chart {name!r} is not defined in the config (defined: {defined})")
    return chart


@click.group()
def chart() -> None:
    """Manage Helm charts."""
    pass


@chart.command("install")
@click.argument("name")
@click.option("--set", "overrides", multiple=True, help="Override a value (key.path=value)")
@click.option("--show-values", is_flag=True, help="Print merged values before installing")
@click.pass_context
@handle_errors
def chart_install(ctx: click.Context, name: str, overrides: tuple[str, ...], show_values: bool) -> None:
    """Install chart NAME from the project file.

    Upgrades the release instead if it is already installed.
    """
    config = get_config(ctx)
    spec = chart_spec_from_config(_chart(config, name), overrides=overrides, base_dir=config.base_dir)
    options = InstallOptions(values_logger=values_printer(err=is_json(ctx)) if show_values else None)

    state = BootstrapContext.for_config(config).helm.install(spec, options)

    if is_json(ctx):
        print_json(state.to_dict())
    else:
        click.echo(f"✓ Chart {name} installed")
        print_release(state)


@chart.command("upgrade")
@click.argument("name")
@click.option("--set", "overrides", multiple=True, help="Override a value (key.path=value)")
@click.option("--show-values", is_flag=True, help="Print merged values before upgrading")
@click.pass_context
@handle_errors
def chart_upgrade(ctx: click.Context, name: str, overrides: tuple[str, ...], show_values: bool) -> None:
    """Upgrade the release of chart NAME."""
    config = get_config(ctx)
    spec = chart_spec_from_config(_chart(config, name), overrides=overrides, base_dir=config.base_dir)
    options = InstallOptions(values_logger=values_printer(err=is_json(ctx)) if show_values else None)

    state = BootstrapContext.for_config(config).helm.upgrade(spec, options)

    if is_json(ctx):
        print_json(state.to_dict())
    else:
        click.echo(f"✓ Chart {name} upgraded")
        print_release(state)


@chart.command("uninstall")
@click.argument("name")
@click.option("-n", "--namespace", default=None, help="Release namespace (default: from the project file)")
@click.option("--force", is_flag=True, help="Uninstall without confirmation")
@click.pass_context
@handle_errors
def chart_uninstall(ctx: click.Context, name: str, namespace: str | None, force: bool) -> None:
    """Uninstall the release of chart NAME."""
    config = get_config(ctx)
    if namespace is None:
        namespace = _chart(config, name).namespace

    def confirm(release: str, ns: str) -> bool:
        return click.confirm(f"Uninstall release '{release}' from namespace '{ns}'?", default=False)

    BootstrapContext.for_config(config).helm.uninstall(name, namespace, force=force, confirm=confirm)

    if is_json(ctx):
        print_json({"release": name, "namespace": namespace, "uninstalled": True})
    else:
        click.echo(f"✓ Release {name} uninstalled from {namespace}")


@chart.command("list")
@click.option("-n", "--namespace", default="", help="Only list releases in this namespace")
@click.pass_context
@handle_errors
def chart_list(ctx: click.Context, namespace: str) -> None:
    """List installed releases."""
    config = get_config(ctx)
    releases = BootstrapContext.for_config(config).helm.list_releases(namespace)

    if is_json(ctx):
        print_json([r.to_dict() for r in releases])
    else:
        print_releases(releases)
