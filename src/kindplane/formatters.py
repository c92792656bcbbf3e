"""CLI output formatting helpers.

Text output goes through click; tabular listings use rich tables. JSON
output is always the ``to_dict()`` form of the result objects.
"""

import json
from typing import Any

import click
import yaml
from rich.console import Console
from rich.table import Table

from .bootstrap.diagnostics import PodDiagnostic, ResourceDiagnostic
from .bootstrap.pipeline import PipelineResult, Stage, StageResult, StageStatus
from .config import CLISettings
from .models import CredentialRecord, HealthSnapshot, ReleaseState
from .version import CheckResult

STATUS_SYMBOLS = {
    StageStatus.SUCCEEDED: "✓",
    StageStatus.FAILED: "✗",
    StageStatus.WARNED: "⚠",
    StageStatus.SKIPPED: "-",
    StageStatus.CANCELLED: "⊘",
}


def _console() -> Console:
    # Resolved per call so output follows click's current stdout
    return Console(soft_wrap=True, highlight=False)


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def print_json(data: Any) -> None:
    """Print data as an indented JSON document."""
    click.echo(json.dumps(data, indent=2, default=str))


def print_config_yaml(data: dict[str, Any], section: str | None = None) -> None:
    """Print config as YAML.

    Args:
        data: Configuration data
        section: Optional section name for header
    """
    if section:
        click.echo(f"{section}:")
        yaml_str = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
        for line in yaml_str.splitlines():
            click.echo(f"  {line}")
    else:
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))


def print_validation_result(file: str, errors: list[str]) -> None:
    """Print configuration validation results.

    Args:
        file: File being validated
        errors: List of error messages
    """
    click.echo(f"Validating: {file}\n")

    if errors:
        click.echo("ERRORS:")
        for e in errors:
            click.echo(f"  ✗ {e}")
        click.echo(f"\nValidation failed with {len(errors)} errors")
    else:
        click.echo("✓ Validation passed")


def print_settings(settings: CLISettings) -> None:
    """Print the CLI settings with the source of each value."""
    click.echo("kindplane CLI Settings\n")
    for key in ("config_path", "timeout", "output_format", "log_level"):
        value = getattr(settings, key) or "(not set)"
        click.echo(f"  {key}: {value}  [{settings.get_source(key)}]")


# Pipeline


def print_stage_start(stage: Stage) -> None:
    click.echo(f"→ {stage.name}...")


def print_stage_result(result: StageResult) -> None:
    """Print one stage outcome with its diagnostics."""
    symbol = STATUS_SYMBOLS[result.status]
    if result.status is StageStatus.SUCCEEDED:
        click.echo(f"  {symbol} {result.name} ({result.duration_seconds:.1f}s)")
    elif result.status is StageStatus.SKIPPED:
        click.echo(f"  {symbol} {result.name} skipped: {result.reason}")
    else:
        click.echo(f"  {symbol} {result.name}: {result.reason}", err=result.status is StageStatus.FAILED)
        for message in result.diagnostics:
            click.echo(f"      {message}")


def print_pipeline_summary(result: PipelineResult) -> None:
    """Print the final line of a bootstrap run."""
    click.echo()
    if result.failed:
        failed = [s.name for s in result.stages if s.status is StageStatus.FAILED]
        click.echo(f"✗ Bootstrap failed at: {', '.join(failed)}", err=True)
    elif result.cancelled:
        click.echo("⊘ Bootstrap cancelled", err=True)
    elif result.warned:
        warned = [s.name for s in result.stages if s.status is StageStatus.WARNED]
        click.echo(f"⚠ Bootstrap completed with warnings: {', '.join(warned)}")
    else:
        click.echo("✓ Bootstrap complete!")

    if result.rolled_back:
        click.echo("  Cluster deleted (rollback on failure)")
    elif result.rollback_error:
        click.echo(f"  Rollback failed: {result.rollback_error}", err=True)


def print_pipeline_result(result: PipelineResult) -> None:
    """Print every stage and the summary."""
    for stage in result.stages:
        print_stage_result(stage)
    print_pipeline_summary(result)


# Releases


def print_releases(releases: list[ReleaseState]) -> None:
    """Print a table of helm releases."""
    if not releases:
        click.echo("No releases found")
        return

    table = Table(title=f"Releases ({len(releases)})")
    table.add_column("Name")
    table.add_column("Namespace")
    table.add_column("Revision", justify="right")
    table.add_column("Status")
    table.add_column("Chart")
    table.add_column("App version")
    for r in releases:
        table.add_row(r.release, r.namespace, str(r.revision), r.status, r.chart, r.app_version)
    _console().print(table)


def print_release(state: ReleaseState) -> None:
    if not state.installed:
        click.echo(f"Release {state.release} is not installed in {state.namespace}")
        return
    click.echo(f"Release: {state.release}")
    click.echo(f"Namespace: {state.namespace}")
    click.echo(f"Revision: {state.revision}")
    click.echo(f"Status: {state.status}")
    click.echo(f"Chart: {state.chart}")
    if state.app_version:
        click.echo(f"App version: {state.app_version}")


# Health and diagnostics


def print_snapshot(name: str, snapshot: HealthSnapshot) -> None:
    """Print one resource's conditions."""
    symbol = "✓" if snapshot.healthy else "✗"
    click.echo(f"{symbol} {name} (installed: {_yes_no(snapshot.installed)}, healthy: {_yes_no(snapshot.healthy)})")
    for cond in snapshot.conditions:
        line = f"    {cond.type}={cond.status.value}"
        if cond.reason:
            line += f" ({cond.reason})"
        if cond.message:
            line += f": {cond.message}"
        click.echo(line)


def print_providers(providers: list[ResourceDiagnostic]) -> None:
    """Print a table of providers with their health."""
    if not providers:
        click.echo("No providers installed")
        return

    table = Table(title=f"Providers ({len(providers)})")
    table.add_column("Name")
    table.add_column("Package")
    table.add_column("Installed")
    table.add_column("Healthy")
    for p in providers:
        table.add_row(p.name, p.package, _yes_no(p.snapshot.installed), _yes_no(p.snapshot.healthy))
    _console().print(table)


def print_pods(pods: list[PodDiagnostic]) -> None:
    """Print pod phases and any container problems."""
    if not pods:
        click.echo("No pods found")
        return

    table = Table(title=f"Pods ({len(pods)})")
    table.add_column("Name")
    table.add_column("Phase")
    table.add_column("Ready")
    table.add_column("Restarts", justify="right")
    for pod in pods:
        restarts = sum(c.restarts for c in pod.containers)
        table.add_row(pod.name, pod.phase, _yes_no(pod.ready), str(restarts))
    _console().print(table)

    issues = [issue for pod in pods for issue in pod.issues()]
    if issues:
        click.echo("Issues:")
        for issue in issues:
            click.echo(f"  ⚠ {issue}")


def print_crossplane_status(status: dict[str, Any]) -> None:
    if not status["installed"]:
        click.echo("✗ Crossplane: not installed")
        return
    symbol = "✓" if status["ready"] else "⚠"
    state = "ready" if status["ready"] else "not ready"
    version = f" {status['version']}" if status.get("version") else ""
    click.echo(f"{symbol} Crossplane{version}: {state}")


# Credentials


def print_credentials(records: list[CredentialRecord]) -> None:
    """Print a table of credential state per backend."""
    table = Table(title="Credentials")
    table.add_column("Backend")
    table.add_column("Secret")
    table.add_column("ProviderConfig")
    table.add_column("Configured")
    for r in records:
        secret = r.secret_name if r.secret_name else "(injected identity)"
        if r.secret_name and not r.secret_exists:
            secret += " (missing)"
        config = r.config_name if r.config_exists else f"{r.config_name} (missing)"
        table.add_row(r.backend, secret, config, "✓" if r.configured else "✗")
    _console().print(table)


def print_credential_record(record: CredentialRecord) -> None:
    click.echo(f"✓ {record.backend} credentials configured")
    if record.secret_name:
        click.echo(f"  Secret: {record.namespace}/{record.secret_name}")
    click.echo(f"  ProviderConfig: {record.config_name}")


# Version


def print_version(current: str, check: CheckResult | None = None, checked: bool = False) -> None:
    click.echo(f"kindplane version {current}")
    if not checked:
        return
    if check is None:
        click.echo("Could not check for updates")
    elif check.update_available:
        click.echo(f"\nA new version is available: {check.latest_version}")
        if check.release_url:
            click.echo(f"  {check.release_url}")
    else:
        click.echo("You are running the latest version")


def values_printer(err: bool = False):
    """Build a values logger that prints each release's merged values as YAML."""

    def print_values(release: str, values: dict[str, Any]) -> None:
        click.echo(f"# Values for {release}", err=err)
        click.echo(yaml.safe_dump(values or {}, default_flow_style=False, sort_keys=False), err=err)

    return print_values
