"""Cluster lifecycle commands.

This module provides `kindplane up`, which runs the bootstrap pipeline
against the configured kind cluster, plus `down` and `status`.
"""

from __future__ import annotations

import asyncio
import signal

import click

from ..bootstrap import (
    BootstrapContext,
    BootstrapOptions,
    BootstrapOrchestrator,
    KindCluster,
    PipelineResult,
    Stage,
    build_stages,
    make_rollback,
)
from ..config import parse_duration
from ..decorators import confirm_or_abort, get_config, handle_errors, is_json
from ..formatters import (
    print_credentials,
    print_crossplane_status,
    print_json,
    print_pipeline_summary,
    print_providers,
    print_stage_result,
    print_stage_start,
    values_printer,
)
from ..shared import get_logger

logger = get_logger(__name__)


async def run_pipeline(orchestrator: BootstrapOrchestrator, stages: list[Stage]) -> PipelineResult:
    """Run the stages; Ctrl-C cancels in-flight waits instead of killing the run."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    handler_installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        handler_installed = True
    except (NotImplementedError, RuntimeError, ValueError) as e:
        logger.debug("signal_handler_unavailable", error=str(e))

    try:
        return await orchestrator.run(stages, cancel_event)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


@click.command()
@click.option("--skip-crossplane", is_flag=True, help="Do not install Crossplane")
@click.option("--skip-providers", is_flag=True, help="Do not install providers")
@click.option("--skip-charts", is_flag=True, help="Do not install additional charts")
@click.option("--timeout", default=None, help="Health wait timeout per stage (e.g. 10m)")
@click.option("--rollback-on-failure", is_flag=True, help="Delete the cluster if a required stage fails")
@click.option("--show-values", is_flag=True, help="Print merged chart values before installing")
@click.pass_context
@handle_errors
def up(
    ctx: click.Context,
    skip_crossplane: bool,
    skip_providers: bool,
    skip_charts: bool,
    timeout: str | None,
    rollback_on_failure: bool,
    show_values: bool,
) -> None:
    """Create the cluster and bootstrap Crossplane, providers and charts.

    Exits 0 when every stage succeeded, 1 when a required stage failed and
    2 when only optional stages failed.

    Examples:

        # Bootstrap from ./kindplane.yaml
        kindplane up

        # Clean up after a failed run
        kindplane up --rollback-on-failure

        # Only create the cluster and Crossplane
        kindplane up --skip-providers --skip-charts
    """
    config = get_config(ctx)
    json_output = is_json(ctx)
    stage_timeout = parse_duration(timeout) if timeout else float(ctx.obj["timeout"])

    options = BootstrapOptions(
        skip_crossplane=skip_crossplane,
        skip_providers=skip_providers,
        skip_charts=skip_charts,
        rollback_on_failure=rollback_on_failure,
        timeout=stage_timeout,
        values_logger=values_printer(err=json_output) if show_values else None,
    )

    bctx = BootstrapContext.for_config(config)
    stages = build_stages(config, bctx, options)

    if not json_output:
        click.echo(f"\n🚀 Bootstrapping cluster '{config.cluster.name}'\n")

    orchestrator = BootstrapOrchestrator(
        rollback=make_rollback(bctx) if rollback_on_failure else None,
        on_stage_start=None if json_output else print_stage_start,
        on_stage_end=None if json_output else print_stage_result,
    )
    result = asyncio.run(run_pipeline(orchestrator, stages))

    if json_output:
        print_json(result.to_dict())
    else:
        print_pipeline_summary(result)
    ctx.exit(result.exit_code)


@click.command()
@click.option("--force", is_flag=True, help="Delete without confirmation")
@click.pass_context
@handle_errors
def down(ctx: click.Context, force: bool) -> None:
    """Delete the kind cluster."""
    config = get_config(ctx)
    cluster = KindCluster(config.cluster.name)

    if not cluster.exists():
        if is_json(ctx):
            print_json({"cluster": cluster.name, "deleted": False})
        else:
            click.echo(f"Cluster '{cluster.name}' does not exist")
        return

    confirm_or_abort(f"Delete cluster '{cluster.name}'? All data in it will be lost.", force)
    cluster.delete()

    if is_json(ctx):
        print_json({"cluster": cluster.name, "deleted": True})
    else:
        click.echo(f"✓ Cluster '{cluster.name}' deleted")


@click.command()
@click.pass_context
@handle_errors
def status(ctx: click.Context) -> None:
    """Show cluster, Crossplane, provider and credential status."""
    config = get_config(ctx)
    bctx = BootstrapContext.for_config(config)
    cluster = bctx.cluster

    if not cluster.exists():
        if is_json(ctx):
            print_json({"cluster": {"name": cluster.name, "exists": False}})
        else:
            click.echo(f"✗ Cluster '{cluster.name}' does not exist. Run: kindplane up")
        return

    crossplane = bctx.crossplane.status()
    providers = bctx.crossplane.list_providers() if crossplane["installed"] else []
    credentials = bctx.credentials.list_credentials()

    if is_json(ctx):
        print_json(
            {
                "cluster": {"name": cluster.name, "exists": True, "context": cluster.context},
                "crossplane": crossplane,
                "providers": [p.to_dict() for p in providers],
                "credentials": [c.to_dict() for c in credentials],
            }
        )
        return

    click.echo(f"✓ Cluster '{cluster.name}' (context: {cluster.context})")
    print_crossplane_status(crossplane)
    if crossplane["installed"]:
        click.echo()
        print_providers(providers)
    click.echo()
    print_credentials(credentials)
