"""Bootstrap stage plan.

Turns a Config into the ordered list of stages the orchestrator runs::

    cluster
    charts (pre-crossplane)
    crossplane
    charts (post-crossplane)
    providers
    credentials
    charts (post-providers)
    charts (final)

Each chart gets its own stage so a failing optional chart does not hide the
others.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from ..config import (
    PHASE_FINAL,
    PHASE_POST_CROSSPLANE,
    PHASE_POST_PROVIDERS,
    PHASE_PRE_CROSSPLANE,
    ChartConfig,
    Config,
)
from ..shared import get_logger
from .credentials import CredentialsProvisioner, source_for
from .crossplane import CrossplaneInstaller
from .diagnostics import DiagnosticsCollector
from .health import DEFAULT_POLL_INTERVAL, HealthConvergencePoller
from .helm import HelmInstaller, InstallOptions, ValuesLogger, chart_spec_from_config
from .kind import KindCluster, build_kind_config, load_raw_config
from .pipeline import Stage
from .resources import KubectlResourceClient, ResourceClient

logger = get_logger(__name__)

DEFAULT_STAGE_TIMEOUT = 600.0


@dataclass
class BootstrapOptions:
    """Knobs for a bootstrap run."""

    skip_crossplane: bool = False
    skip_providers: bool = False
    skip_charts: bool = False
    rollback_on_failure: bool = False
    timeout: float = DEFAULT_STAGE_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    values_logger: ValuesLogger | None = None


@dataclass
class BootstrapContext:
    """Collaborators shared by every stage of one run."""

    cluster: KindCluster
    client: ResourceClient
    helm: HelmInstaller
    poller: HealthConvergencePoller
    crossplane: CrossplaneInstaller
    credentials: CredentialsProvisioner
    state: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_config(
        cls,
        config: Config,
        kubeconfig: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> BootstrapContext:
        """Wire kubectl, helm and kind against the configured cluster's context."""
        cluster = KindCluster(config.cluster.name, kubeconfig=kubeconfig)
        client = KubectlResourceClient(kubeconfig=kubeconfig, context=cluster.context)
        helm = HelmInstaller(client, kubeconfig=kubeconfig, kube_context=cluster.context)
        poller = HealthConvergencePoller(client, poll_interval=poll_interval)
        return cls(
            cluster=cluster,
            client=client,
            helm=helm,
            poller=poller,
            crossplane=CrossplaneInstaller(client, helm, poller),
            credentials=CredentialsProvisioner(client),
        )


def _chart_stage(config: Config, chart: ChartConfig, ctx: BootstrapContext, options: BootstrapOptions) -> Stage:
    def apply() -> None:
        spec = chart_spec_from_config(chart, base_dir=config.base_dir)
        ctx.helm.install(spec, InstallOptions(values_logger=options.values_logger))

    def diagnose() -> list[str]:
        return DiagnosticsCollector(ctx.client).explain_pods(chart.namespace)

    return Stage(
        name=f"chart:{chart.name}",
        apply=apply,
        required=chart.required,
        skip_reason="--skip-charts" if options.skip_charts else None,
        diagnose=diagnose,
    )


def _chart_stages(config: Config, phase: str, ctx: BootstrapContext, options: BootstrapOptions) -> list[Stage]:
    return [_chart_stage(config, chart, ctx, options) for chart in config.charts_for_phase(phase)]


def build_stages(config: Config, ctx: BootstrapContext, options: BootstrapOptions | None = None) -> list[Stage]:
    """Build the ordered stage list for a bootstrap run.

    Checks whether the cluster already exists; an existing cluster is
    reported as a skipped stage and is never rolled back.
    """
    options = options or BootstrapOptions()
    stages: list[Stage] = []

    # Cluster
    cluster_exists = ctx.cluster.exists()
    ctx.state["created_cluster"] = False

    def create_cluster() -> None:
        raw = None
        if config.cluster.raw_config_path:
            raw = load_raw_config(config.resolve_path(config.cluster.raw_config_path))
        ctx.cluster.create(build_kind_config(config.cluster, raw))
        ctx.state["created_cluster"] = True

    stages.append(
        Stage(
            name="cluster",
            apply=create_cluster,
            skip_reason="already exists" if cluster_exists else None,
        )
    )

    stages.extend(_chart_stages(config, PHASE_PRE_CROSSPLANE, ctx, options))

    # Crossplane
    def install_crossplane() -> None:
        ctx.crossplane.install(
            config.crossplane,
            InstallOptions(values_logger=options.values_logger),
            base_dir=config.base_dir,
        )

    async def crossplane_ready(cancel_event: asyncio.Event) -> None:
        await ctx.crossplane.wait_for_ready(timeout=options.timeout, cancel_event=cancel_event)

    stages.append(
        Stage(
            name="crossplane",
            apply=install_crossplane,
            converge=crossplane_ready,
            skip_reason="--skip-crossplane" if options.skip_crossplane else None,
            diagnose=lambda: ctx.crossplane.explain_failure([]),
        )
    )

    stages.extend(_chart_stages(config, PHASE_POST_CROSSPLANE, ctx, options))

    # Providers
    providers = config.crossplane.providers
    provider_names = [p.name for p in providers]

    def apply_providers() -> None:
        for provider in providers:
            ctx.crossplane.add_provider(provider.name, provider.package)

    async def providers_healthy(cancel_event: asyncio.Event) -> None:
        await ctx.crossplane.wait_for_providers(provider_names, timeout=options.timeout, cancel_event=cancel_event)

    # Provider packages need the Crossplane CRDs
    if options.skip_crossplane:
        provider_skip: str | None = "--skip-crossplane"
    elif options.skip_providers:
        provider_skip = "--skip-providers"
    elif not providers:
        provider_skip = "no providers configured"
    else:
        provider_skip = None

    stages.append(
        Stage(
            name="providers",
            apply=apply_providers,
            converge=providers_healthy,
            skip_reason=provider_skip,
            diagnose=lambda: ctx.crossplane.explain_failure(provider_names),
        )
    )

    # Credentials
    backends = config.credentials.configured_backends()

    def configure_credentials() -> None:
        for backend, source_name in backends.items():
            profile = config.credentials.aws_profile if backend == "aws" else None
            ctx.credentials.configure(backend, source_for(source_name, profile=profile))

    stages.append(
        Stage(
            name="credentials",
            apply=configure_credentials,
            required=config.credentials.required,
            skip_reason=None if backends else "no credentials configured",
        )
    )

    stages.extend(_chart_stages(config, PHASE_POST_PROVIDERS, ctx, options))
    stages.extend(_chart_stages(config, PHASE_FINAL, ctx, options))
    return stages


def make_rollback(ctx: BootstrapContext):
    """Build a rollback that deletes the cluster only if this run created it."""

    def rollback() -> bool:
        if not ctx.state.get("created_cluster"):
            logger.info("rollback_skipped", reason="cluster was not created by this run")
            return False
        logger.warning("rollback_deleting_cluster", name=ctx.cluster.name)
        ctx.cluster.delete()
        return True

    return rollback
