"""Crossplane installation and provider management."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..config import DEFAULT_CROSSPLANE_REPO, CrossplaneConfig
from ..errors import InstallError, ValidationError
from ..models import HealthSnapshot, ReleaseState, ResourceRef
from ..shared import get_logger
from .diagnostics import DiagnosticsCollector, ResourceDiagnostic
from .health import HealthConvergencePoller, condition_true, is_installed_and_healthy
from .helm import ChartSpec, HelmInstaller, InstallOptions, generate_repo_name
from .resources import DEPLOYMENT, PROVIDER, ResourceClient, upsert
from .values import ValueTree, resolve_values

logger = get_logger(__name__)

CROSSPLANE_NAMESPACE = "crossplane-system"
CROSSPLANE_RELEASE = "crossplane"
CROSSPLANE_CHART = "crossplane"
CROSSPLANE_REPO_NAME = "crossplane-stable"
CROSSPLANE_LABELS = {"app": "crossplane"}

REGISTRY_CA_BUNDLE_NAME = "crossplane-registry-ca-bundle"
REGISTRY_CA_BUNDLE_KEY = "ca-bundle"


def registry_ca_bundle_manifest(ca_files: Iterable[str | Path], namespace: str = CROSSPLANE_NAMESPACE) -> dict[str, Any]:
    """Bundle PEM files into one ConfigMap.

    Raises:
        ValidationError: A CA file cannot be read.
    """
    parts = []
    for ca_file in ca_files:
        try:
            content = Path(ca_file).read_text()
        except OSError as e:
            raise ValidationError(f"failed to read CA file {ca_file}: {e}") from e
        if content and not content.endswith("\n"):
            content += "\n"
        parts.append(content)

    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": REGISTRY_CA_BUNDLE_NAME, "namespace": namespace},
        "data": {REGISTRY_CA_BUNDLE_KEY: "".join(parts)},
    }


def ca_bundle_transformer(original=None):
    """Wrap a values transformer so it also injects ``registryCaBundleConfig``.

    The original transformer runs first.
    """

    def transform(values: ValueTree) -> ValueTree:
        if original is not None:
            values = original(values)
        values = dict(values or {})
        values["registryCaBundleConfig"] = {"name": REGISTRY_CA_BUNDLE_NAME, "key": REGISTRY_CA_BUNDLE_KEY}
        return values

    return transform


def provider_manifest(name: str, package: str) -> dict[str, Any]:
    return {
        "apiVersion": PROVIDER.api_version,
        "kind": PROVIDER.kind,
        "metadata": {"name": name},
        "spec": {"package": package},
    }


class CrossplaneInstaller:
    """Install Crossplane and manage its providers."""

    def __init__(
        self,
        client: ResourceClient,
        helm: HelmInstaller,
        poller: HealthConvergencePoller,
        namespace: str = CROSSPLANE_NAMESPACE,
    ):
        self.client = client
        self.helm = helm
        self.poller = poller
        self.namespace = namespace

    @property
    def deployment_ref(self) -> ResourceRef:
        return ResourceRef(DEPLOYMENT.group, DEPLOYMENT.version, DEPLOYMENT.kind, CROSSPLANE_RELEASE, self.namespace)

    def chart_spec(self, config: CrossplaneConfig, base_dir: Path | None = None, overrides: Iterable[str] = ()) -> ChartSpec:
        """Build the Crossplane chart spec from configuration."""
        repo_url = config.repo_url
        repo_name = CROSSPLANE_REPO_NAME if repo_url == DEFAULT_CROSSPLANE_REPO else generate_repo_name(repo_url)
        return ChartSpec(
            release=CROSSPLANE_RELEASE,
            chart=CROSSPLANE_CHART,
            namespace=self.namespace,
            repo_url=repo_url,
            repo_name=repo_name,
            version=config.version,
            values=resolve_values(config.values_files, config.values, overrides, base_dir=base_dir),
        )

    def install(
        self,
        config: CrossplaneConfig,
        options: InstallOptions | None = None,
        base_dir: Path | None = None,
    ) -> ReleaseState:
        """Install (or upgrade) the Crossplane chart.

        When CA files are configured, a ConfigMap bundling them is upserted
        into the namespace before the chart is applied and the chart values
        point at it.
        """
        options = options or InstallOptions()
        spec = self.chart_spec(config, base_dir)

        if config.ca_files:
            ca_files = [Path(f) if base_dir is None or Path(f).is_absolute() else base_dir / f for f in config.ca_files]
            user_pre_install = options.pre_install

            def pre_install(namespace: str) -> None:
                upsert(self.client, registry_ca_bundle_manifest(ca_files, namespace))
                logger.info("registry_ca_bundle_created", namespace=namespace, files=len(ca_files))
                if user_pre_install:
                    user_pre_install(namespace)

            options = InstallOptions(
                values_transformer=ca_bundle_transformer(options.values_transformer),
                values_logger=options.values_logger,
                pre_install=pre_install,
            )

        try:
            return self.helm.install(spec, options)
        except InstallError as e:
            raise InstallError(f"failed to install crossplane: {e.message}") from e

    async def wait_for_ready(
        self,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> HealthSnapshot:
        """Wait until the Crossplane deployment reports Available."""
        return await self.poller.wait_until_healthy(
            self.deployment_ref,
            predicate=condition_true("Available"),
            timeout=timeout,
            cancel_event=cancel_event,
        )

    def is_installed(self) -> bool:
        return self.helm.is_installed(CROSSPLANE_RELEASE, self.namespace)

    def status(self) -> dict[str, Any]:
        """Summarise the Crossplane release and its pods."""
        release = self.helm.release_state(CROSSPLANE_RELEASE, self.namespace)
        pods = []
        if release.installed:
            pods = DiagnosticsCollector(self.client).collect_pods(self.namespace, CROSSPLANE_LABELS)
        return {
            "installed": release.installed,
            "ready": bool(pods) and all(p.ready for p in pods),
            "version": release.app_version,
            "release": release.to_dict(),
            "pods": [p.to_dict() for p in pods],
        }

    # Providers

    def provider_ref(self, name: str) -> ResourceRef:
        return PROVIDER.named(name)

    def add_provider(self, name: str, package: str) -> dict[str, Any]:
        """Create a provider, or point an existing one at a new package."""
        obj = upsert(self.client, provider_manifest(name, package))
        logger.info("provider_applied", name=name, package=package)
        return obj

    def remove_provider(self, name: str) -> None:
        """Delete a provider.

        Raises:
            NotFoundError: No such provider.
        """
        self.client.delete(self.provider_ref(name))
        logger.info("provider_removed", name=name)

    def provider_exists(self, name: str) -> bool:
        return self.client.exists(self.provider_ref(name))

    def list_providers(self, names: Iterable[str] | None = None) -> list[ResourceDiagnostic]:
        """List providers with their health."""
        return DiagnosticsCollector(self.client).collect_providers(names)

    async def wait_for_providers(
        self,
        names: Iterable[str],
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[ResourceRef, HealthSnapshot]:
        """Wait until every named provider is Installed and Healthy."""
        return await self.poller.wait_all(
            [self.provider_ref(name) for name in names],
            predicate=is_installed_and_healthy,
            timeout=timeout,
            cancel_event=cancel_event,
        )

    def explain_failure(self, provider_names: Iterable[str] | None = None) -> list[str]:
        """Collect provider condition errors and pod problems for a failure report."""
        collector = DiagnosticsCollector(self.client)
        messages = collector.explain_providers(provider_names)
        messages.extend(collector.explain_pods(self.namespace))
        return messages
