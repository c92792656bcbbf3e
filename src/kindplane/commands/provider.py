"""Crossplane provider commands."""

from __future__ import annotations

import asyncio

import click

from ..bootstrap import BootstrapContext
from ..config import parse_duration
from ..decorators import confirm_or_abort, get_config, handle_errors, is_json
from ..errors import ConvergenceError
from ..formatters import print_json, print_providers, print_snapshot


@click.group()
def provider() -> None:
    """Manage Crossplane providers."""
    pass


@provider.command("add")
@click.argument("name")
@click.argument("package")
@click.option("--wait/--no-wait", default=True, help="Wait for the provider to become healthy")
@click.option("--timeout", default=None, help="Health wait timeout (e.g. 5m)")
@click.pass_context
@handle_errors
def provider_add(ctx: click.Context, name: str, package: str, wait: bool, timeout: str | None) -> None:
    """Install a provider, or point an existing one at PACKAGE.

    Examples:

        kindplane provider add provider-aws-s3 xpkg.upbound.io/upbound/provider-aws-s3:v1.1.0
    """
    config = get_config(ctx)
    bctx = BootstrapContext.for_config(config)
    crossplane = bctx.crossplane

    crossplane.add_provider(name, package)
    if not is_json(ctx):
        click.echo(f"✓ Provider {name} applied ({package})")

    if not wait:
        if is_json(ctx):
            print_json({"name": name, "package": package, "waited": False})
        return

    wait_timeout = parse_duration(timeout) if timeout else float(ctx.obj["timeout"])
    if not is_json(ctx):
        click.echo(f"  Waiting for {name} to become healthy...")
    try:
        snapshots = asyncio.run(crossplane.wait_for_providers([name], timeout=wait_timeout))
    except ConvergenceError as e:
        if not is_json(ctx):
            for message in crossplane.explain_failure([name]):
                click.echo(f"    {message}", err=True)
        raise e

    snapshot = next(iter(snapshots.values()))
    if is_json(ctx):
        print_json({"name": name, "package": package, "waited": True, **snapshot.to_dict()})
    else:
        print_snapshot(name, snapshot)


@provider.command("list")
@click.pass_context
@handle_errors
def provider_list(ctx: click.Context) -> None:
    """List providers and their health."""
    config = get_config(ctx)
    providers = BootstrapContext.for_config(config).crossplane.list_providers()

    if is_json(ctx):
        print_json([p.to_dict() for p in providers])
    else:
        print_providers(providers)


@provider.command("remove")
@click.argument("name")
@click.option("--force", is_flag=True, help="Remove without confirmation")
@click.pass_context
@handle_errors
def provider_remove(ctx: click.Context, name: str, force: bool) -> None:
    """Remove a provider."""
    config = get_config(ctx)
    crossplane = BootstrapContext.for_config(config).crossplane

    confirm_or_abort(f"Remove provider '{name}'?", force)
    crossplane.remove_provider(name)

    if is_json(ctx):
        print_json({"name": name, "removed": True})
    else:
        click.echo(f"✓ Provider {name} removed")
