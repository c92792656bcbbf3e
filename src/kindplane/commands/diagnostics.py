"""Diagnostics command.

Collects provider conditions and Crossplane pod states in one pass and
prints the error messages that explain an unhealthy install.
"""

from __future__ import annotations

import click

from ..bootstrap import BootstrapContext, DiagnosticsCollector, error_messages
from ..bootstrap.crossplane import CROSSPLANE_NAMESPACE
from ..decorators import get_config, handle_errors, is_json
from ..formatters import print_json, print_pods, print_snapshot


@click.command()
@click.option("-p", "--providers", "provider_names", multiple=True, help="Only these providers (repeatable)")
@click.option("-n", "--namespace", default=CROSSPLANE_NAMESPACE, help="Namespace to inspect pods in")
@click.pass_context
@handle_errors
def diagnostics(ctx: click.Context, provider_names: tuple[str, ...], namespace: str) -> None:
    """Explain why providers or Crossplane pods are unhealthy."""
    config = get_config(ctx)
    collector = DiagnosticsCollector(BootstrapContext.for_config(config).client)

    providers = collector.collect_providers(provider_names or None)
    pods = collector.collect_pods(namespace)
    errors = error_messages(providers)
    for pod in pods:
        errors.extend(pod.issues())

    if is_json(ctx):
        print_json(
            {
                "providers": [p.to_dict() for p in providers],
                "pods": [p.to_dict() for p in pods],
                "errors": errors,
            }
        )
        return

    click.echo("Providers:")
    if not providers:
        click.echo("  No providers installed")
    for p in providers:
        print_snapshot(p.name, p.snapshot)

    click.echo(f"\nPods in {namespace}:")
    print_pods(pods)

    if errors:
        click.echo(f"\n✗ {len(errors)} problem(s) found")
    else:
        click.echo("\n✓ No problems found")
