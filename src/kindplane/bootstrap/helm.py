"""Helm chart installation.

Charts are installed by running the helm binary. Values are resolved
locally (values files, inline values, ``--set`` overrides), passed through
an optional transformer, shown to an optional logger, and streamed to helm
as YAML on stdin.
"""

from __future__ import annotations

import hashlib
import json
import re
import subprocess
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from ..errors import (
    AlreadyExistsError,
    ConfirmationRequiredError,
    InstallError,
    NotFoundError,
)
from ..models import ReleaseState
from ..shared import get_logger
from .resources import NAMESPACE, ResourceClient
from .values import ValueTree, resolve_values

if TYPE_CHECKING:
    from ..config import ChartConfig

logger = get_logger(__name__)

DEFAULT_CHART_TIMEOUT = 300.0
REPO_NAME_MAX_PREFIX = 20

ValuesTransformer = Callable[[ValueTree], ValueTree]
ValuesLogger = Callable[[str, ValueTree], None]
PreInstallHook = Callable[[str], None]
ConfirmCallback = Callable[[str, str], bool]


def generate_repo_name(url: str) -> str:
    """Derive a stable, unique helm repository name from its URL.

    The name is the lowercased host with every non-alphanumeric character
    replaced by ``-`` (truncated), followed by the first 8 hex digits of the
    URL's SHA-256.
    """
    digest = hashlib.sha256(url.encode()).hexdigest()[:8]

    name = re.sub(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", "", url)
    name = name.split("/", 1)[0]
    name = re.sub(r"[^a-z0-9]", "-", name.lower())[:REPO_NAME_MAX_PREFIX]
    return f"{name}-{digest}"


def ensure_namespace(client: ResourceClient, namespace: str) -> bool:
    """Create a namespace if it does not exist.

    Returns:
        True if the namespace was created by this call.
    """
    if client.exists(NAMESPACE.named(namespace)):
        return False
    try:
        client.create({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": namespace}})
    except AlreadyExistsError:
        return False
    logger.info("namespace_created", namespace=namespace)
    return True


@dataclass
class InstallOptions:
    """Optional hooks around a chart install.

    Attributes:
        values_transformer: Pure function applied to the resolved values.
        values_logger: Observer called with (release, final values).
        pre_install: Action run against the target namespace before the
            chart is applied; the namespace exists by then when
            ``create_namespace`` is set.
    """

    values_transformer: ValuesTransformer | None = None
    values_logger: ValuesLogger | None = None
    pre_install: PreInstallHook | None = None


@dataclass
class ChartSpec:
    """A chart release to install."""

    release: str
    chart: str
    namespace: str
    repo_url: str = ""
    repo_name: str = ""
    version: str = ""
    values: ValueTree = field(default_factory=dict)
    wait: bool = True
    timeout: float = DEFAULT_CHART_TIMEOUT
    create_namespace: bool = True

    def __post_init__(self):
        if self.repo_url and not self.repo_name and not self.is_oci:
            self.repo_name = generate_repo_name(self.repo_url)

    @property
    def is_oci(self) -> bool:
        return self.repo_url.startswith("oci://")

    @property
    def chart_ref(self) -> str:
        """Chart reference as passed to helm."""
        if self.is_oci:
            return f"{self.repo_url.rstrip('/')}/{self.chart}"
        if self.repo_name:
            return f"{self.repo_name}/{self.chart}"
        return self.chart


def chart_spec_from_config(
    chart: ChartConfig,
    overrides: Iterable[str] = (),
    base_dir: Path | None = None,
) -> ChartSpec:
    """Build a ChartSpec from a chart entry of the configuration file."""
    values = resolve_values(
        chart.values_files,
        chart.values,
        [*chart.set, *overrides],
        base_dir=base_dir,
    )
    return ChartSpec(
        release=chart.name,
        chart=chart.chart,
        namespace=chart.namespace,
        repo_url=chart.repo,
        version=chart.version,
        values=values,
        wait=chart.wait,
        timeout=chart.timeout,
        create_namespace=chart.create_namespace,
    )


class HelmInstaller:
    """Install, upgrade and uninstall chart releases with helm."""

    def __init__(
        self,
        client: ResourceClient | None = None,
        kubeconfig: str | None = None,
        kube_context: str | None = None,
    ):
        """Initialize installer.

        Args:
            client: Cluster API client, needed for namespace creation
                before pre-install hooks.
            kubeconfig: Path to kubeconfig file.
            kube_context: Kubeconfig context to use.
        """
        self.client = client
        self.kubeconfig = kubeconfig
        self.kube_context = kube_context

    def _helm_cmd(self) -> list[str]:
        """Build base helm command."""
        cmd = ["helm"]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        if self.kube_context:
            cmd.extend(["--kube-context", self.kube_context])
        return cmd

    def _run(self, args: list[str], input_data: str | None = None) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(
                self._helm_cmd() + args,
                input=input_data,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as e:
            raise InstallError("helm not found. Is helm installed?") from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            if "not found" in stderr.lower() and args[0] in ("uninstall", "status"):
                raise NotFoundError(stderr)
            raise InstallError(f"helm {args[0]} failed: {stderr}")
        return result

    def add_repo(self, name: str, url: str) -> None:
        """Add (or refresh) a chart repository."""
        self._run(["repo", "add", name, url, "--force-update"])
        self._run(["repo", "update", name])
        logger.debug("helm_repo_added", name=name, url=url)

    def _prepare_values(self, spec: ChartSpec, options: InstallOptions) -> ValueTree:
        values = spec.values
        if options.values_transformer:
            values = options.values_transformer(values)
        if options.values_logger:
            options.values_logger(spec.release, values)
        return values

    def _release_args(self, spec: ChartSpec) -> list[str]:
        args = [spec.release, spec.chart_ref, "--namespace", spec.namespace, "--values", "-"]
        if spec.version:
            args.extend(["--version", spec.version])
        if spec.wait:
            args.extend(["--wait", "--timeout", f"{int(spec.timeout)}s"])
        return args

    def install(self, spec: ChartSpec, options: InstallOptions | None = None) -> ReleaseState:
        """Install a release, upgrading it instead if it already exists.

        Raises:
            InstallError: helm failed.
        """
        options = options or InstallOptions()

        if self.is_installed(spec.release, spec.namespace):
            logger.info("release_exists_upgrading", release=spec.release, namespace=spec.namespace)
            return self.upgrade(spec, options)

        if spec.repo_name and not spec.is_oci:
            self.add_repo(spec.repo_name, spec.repo_url)

        values = self._prepare_values(spec, options)

        if options.pre_install:
            if spec.create_namespace and self.client is not None:
                ensure_namespace(self.client, spec.namespace)
            options.pre_install(spec.namespace)

        args = ["install", *self._release_args(spec)]
        if spec.create_namespace:
            args.append("--create-namespace")
        self._run(args, input_data=yaml.safe_dump(values, sort_keys=False))
        logger.info("release_installed", release=spec.release, namespace=spec.namespace)
        return self.release_state(spec.release, spec.namespace)

    def upgrade(self, spec: ChartSpec, options: InstallOptions | None = None) -> ReleaseState:
        """Upgrade an existing release.

        Raises:
            InstallError: helm failed, including when the release is absent.
        """
        options = options or InstallOptions()

        if spec.repo_name and not spec.is_oci:
            self.add_repo(spec.repo_name, spec.repo_url)

        values = self._prepare_values(spec, options)
        if options.pre_install:
            options.pre_install(spec.namespace)

        self._run(["upgrade", *self._release_args(spec)], input_data=yaml.safe_dump(values, sort_keys=False))
        logger.info("release_upgraded", release=spec.release, namespace=spec.namespace)
        return self.release_state(spec.release, spec.namespace)

    def uninstall(
        self,
        release: str,
        namespace: str,
        force: bool = False,
        confirm: ConfirmCallback | None = None,
    ) -> None:
        """Uninstall a release.

        Requires ``force`` or a ``confirm`` callback returning True.

        Raises:
            ConfirmationRequiredError: Not forced and not confirmed.
            NotFoundError: No such release.
        """
        if not force and not (confirm and confirm(release, namespace)):
            raise ConfirmationRequiredError(f"uninstalling {namespace}/{release} requires confirmation")
        self._run(["uninstall", release, "--namespace", namespace])
        logger.info("release_uninstalled", release=release, namespace=namespace)

    def list_releases(self, namespace: str = "") -> list[ReleaseState]:
        """List releases in a namespace, or in all namespaces."""
        args = ["list", "--output", "json"]
        args.extend(["--namespace", namespace] if namespace else ["--all-namespaces"])
        return [self._parse_release(entry) for entry in self._list(args)]

    def release_state(self, release: str, namespace: str) -> ReleaseState:
        """Read a single release; ``installed`` is False if it does not exist."""
        args = ["list", "--output", "json", "--namespace", namespace, "--filter", f"^{re.escape(release)}$"]
        for entry in self._list(args):
            if entry.get("name") == release:
                return self._parse_release(entry)
        return ReleaseState(release=release, namespace=namespace, installed=False)

    def is_installed(self, release: str, namespace: str) -> bool:
        return self.release_state(release, namespace).installed

    def _list(self, args: list[str]) -> list[dict[str, Any]]:
        result = self._run(args)
        try:
            return json.loads(result.stdout or "[]") or []
        except json.JSONDecodeError as e:
            raise InstallError(f"unexpected helm output: {e}") from e

    @staticmethod
    def _parse_release(entry: dict[str, Any]) -> ReleaseState:
        try:
            revision = int(entry.get("revision", 0))
        except (TypeError, ValueError):
            revision = 0
        return ReleaseState(
            release=entry.get("name", ""),
            namespace=entry.get("namespace", ""),
            installed=True,
            revision=revision,
            status=entry.get("status", ""),
            chart=entry.get("chart", ""),
            app_version=entry.get("app_version", ""),
            extra={"updated": entry.get("updated", "")},
        )
