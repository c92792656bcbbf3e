"""Configuration management.

Two layers:

- The project file (``kindplane.yaml``) describing the cluster, Crossplane,
  providers, credentials and charts. Parsed with PyYAML into dataclasses and
  validated as a whole, so every problem is reported at once.
- CLI settings (config path, timeout, output format, log level) resolved from
  environment variables over ``~/.kindplane/config.yaml`` over defaults, with
  the source of every value tracked.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError
from .shared import DEFAULT_CONFIG_FILE, SETTINGS_FILE, get_logger

logger = get_logger(__name__)

# Defaults
DEFAULT_CLUSTER_NAME = "kindplane"
DEFAULT_CROSSPLANE_REPO = "https://charts.crossplane.io/stable"
DEFAULT_CHART_TIMEOUT = "5m"
DEFAULT_TIMEOUT = 600
DEFAULT_OUTPUT_FORMAT = "text"
DEFAULT_LOG_LEVEL = "warning"

OUTPUT_FORMATS = ("text", "json")
PORT_PROTOCOLS = ("TCP", "UDP", "SCTP")

# Chart phases in execution order
PHASE_PRE_CROSSPLANE = "pre-crossplane"
PHASE_POST_CROSSPLANE = "post-crossplane"
PHASE_POST_PROVIDERS = "post-providers"
PHASE_FINAL = "final"
CHART_PHASES = (PHASE_PRE_CROSSPLANE, PHASE_POST_CROSSPLANE, PHASE_POST_PROVIDERS, PHASE_FINAL)
PHASE_ALIASES = {"": PHASE_FINAL, "post-eso": PHASE_FINAL}

AWS_SOURCES = ("env", "profile")
AZURE_SOURCES = ("env",)
KUBERNETES_SOURCES = ("incluster", "kubeconfig")

# Environment variable mappings
ENV_VARS = {
    "config_path": "KINDPLANE_CONFIG",
    "timeout": "KINDPLANE_TIMEOUT",
    "output_format": "KINDPLANE_OUTPUT_FORMAT",
    "log_level": "KINDPLANE_LOG_LEVEL",
}

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str | int | float) -> float:
    """Parse a duration like ``5m``, ``90s`` or ``1m30s`` into seconds.

    Bare numbers are seconds.

    Raises:
        ValidationError: The value is not a duration.
    """
    if isinstance(value, bool):
        raise ValidationError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return float(text)

    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if not text or pos != len(text):
        raise ValidationError(f"invalid duration: {value!r}")
    return total


# ---------------------------------------------------------------------------
# Project configuration
# ---------------------------------------------------------------------------


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be a mapping")
    return value


def _list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return value


def _int(data: dict[str, Any], key: str, default: int = 0) -> int:
    value = data.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer (got: {value!r})") from None


@dataclass
class PortMapping:
    container_port: int
    host_port: int
    protocol: str = "TCP"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PortMapping":
        return cls(
            container_port=_int(data, "containerPort"),
            host_port=_int(data, "hostPort"),
            protocol=str(data.get("protocol") or "TCP").upper(),
        )


@dataclass
class ExtraMount:
    host_path: str
    container_path: str
    read_only: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtraMount":
        return cls(
            host_path=str(data.get("hostPath", "")),
            container_path=str(data.get("containerPath", "")),
            read_only=bool(data.get("readOnly", False)),
        )


@dataclass
class RegistryMirror:
    """A containerd registry mirror for the cluster nodes."""

    host: str
    endpoints: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RegistryMirror":
        endpoints = data.get("endpoints")
        if endpoints is None and data.get("endpoint"):
            endpoints = [data["endpoint"]]
        return cls(host=str(data.get("host", "")), endpoints=[str(e) for e in endpoints or []])


@dataclass
class ClusterConfig:
    """Kind cluster settings."""

    name: str = DEFAULT_CLUSTER_NAME
    kubernetes_version: str = ""
    node_image: str = ""
    control_plane_nodes: int = 1
    worker_nodes: int = 0
    port_mappings: list[PortMapping] = field(default_factory=list)
    extra_mounts: list[ExtraMount] = field(default_factory=list)
    registry_mirrors: list[RegistryMirror] = field(default_factory=list)
    ingress: bool = False
    raw_config_path: str = ""

    @property
    def resolved_node_image(self) -> str:
        """Node image to use; derived from the Kubernetes version when not set."""
        if self.node_image.strip():
            return self.node_image.strip()
        if self.kubernetes_version:
            return f"kindest/node:v{self.kubernetes_version.lstrip('v')}"
        return ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClusterConfig":
        nodes = _section(data, "nodes")
        return cls(
            name=str(data.get("name", DEFAULT_CLUSTER_NAME) or ""),
            kubernetes_version=str(data.get("kubernetesVersion", "") or ""),
            node_image=str(data.get("nodeImage", "") or ""),
            control_plane_nodes=_int(nodes, "controlPlane", 1),
            worker_nodes=_int(nodes, "workers", 0),
            port_mappings=[PortMapping.from_dict(p) for p in _list(data, "portMappings")],
            extra_mounts=[ExtraMount.from_dict(m) for m in _list(data, "extraMounts")],
            registry_mirrors=[RegistryMirror.from_dict(r) for r in _list(data, "registryMirrors")],
            ingress=bool(_section(data, "ingress").get("enabled", False)),
            raw_config_path=str(data.get("rawConfigPath", "") or ""),
        )


@dataclass
class ProviderSpec:
    """A Crossplane provider package to install."""

    name: str
    package: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderSpec":
        return cls(name=str(data.get("name", "") or ""), package=str(data.get("package", "") or ""))


@dataclass
class CrossplaneConfig:
    """Crossplane chart and provider settings."""

    version: str = ""
    repo: str = ""
    values: dict[str, Any] = field(default_factory=dict)
    values_files: list[str] = field(default_factory=list)
    providers: list[ProviderSpec] = field(default_factory=list)
    ca_files: list[str] = field(default_factory=list)

    @property
    def repo_url(self) -> str:
        return self.repo or DEFAULT_CROSSPLANE_REPO

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CrossplaneConfig":
        bundle = _section(data, "registryCaBundle")
        return cls(
            version=str(data.get("version", "") or ""),
            repo=str(data.get("repo", "") or ""),
            values=_section(data, "values"),
            values_files=[str(v) for v in _list(data, "valuesFiles")],
            providers=[ProviderSpec.from_dict(p) for p in _list(data, "providers")],
            ca_files=[str(f) for f in _list(bundle, "caFiles")],
        )


@dataclass
class CredentialsConfig:
    """Which credential backends to configure during bootstrap, and how."""

    aws_source: str = ""
    aws_profile: str = "default"
    azure_source: str = ""
    kubernetes_source: str = ""
    required: bool = False

    def configured_backends(self) -> dict[str, str]:
        """Backend name to source name, for backends with a source set."""
        backends = {}
        if self.aws_source:
            backends["aws"] = self.aws_source
        if self.azure_source:
            backends["azure"] = self.azure_source
        if self.kubernetes_source:
            backends["kubernetes"] = self.kubernetes_source
        return backends

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CredentialsConfig":
        aws = _section(data, "aws")
        return cls(
            aws_source=str(aws.get("source", "") or ""),
            aws_profile=str(aws.get("profile", "") or "default"),
            azure_source=str(_section(data, "azure").get("source", "") or ""),
            kubernetes_source=str(_section(data, "kubernetes").get("source", "") or ""),
            required=bool(data.get("required", False)),
        )


@dataclass
class ChartConfig:
    """An additional Helm chart installed during bootstrap."""

    name: str
    repo: str
    chart: str
    namespace: str
    version: str = ""
    create_namespace: bool = True
    phase: str = PHASE_FINAL
    wait: bool = True
    timeout_text: str = DEFAULT_CHART_TIMEOUT
    values: dict[str, Any] = field(default_factory=dict)
    values_files: list[str] = field(default_factory=list)
    set: list[str] = field(default_factory=list)
    required: bool = True

    @property
    def timeout(self) -> float:
        return parse_duration(self.timeout_text)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChartConfig":
        phase = str(data.get("phase", "") or "")
        return cls(
            name=str(data.get("name", "") or ""),
            repo=str(data.get("repo", "") or ""),
            chart=str(data.get("chart", "") or ""),
            namespace=str(data.get("namespace", "") or ""),
            version=str(data.get("version", "") or ""),
            create_namespace=bool(data.get("createNamespace", True)),
            phase=PHASE_ALIASES.get(phase, phase),
            wait=bool(data.get("wait", True)),
            timeout_text=str(data.get("timeout", "") or DEFAULT_CHART_TIMEOUT),
            values=_section(data, "values"),
            values_files=[str(v) for v in _list(data, "valuesFiles")],
            set=[str(s) for s in _list(data, "set")],
            required=bool(data.get("required", True)),
        )


@dataclass
class Config:
    """The whole project configuration."""

    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    crossplane: CrossplaneConfig = field(default_factory=CrossplaneConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    charts: list[ChartConfig] = field(default_factory=list)
    path: Path | None = None

    @property
    def base_dir(self) -> Path:
        """Directory relative paths in the file resolve against."""
        return self.path.parent if self.path else Path.cwd()

    def resolve_path(self, value: str) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.base_dir / path

    def charts_for_phase(self, phase: str) -> list[ChartConfig]:
        return [c for c in self.charts if c.phase == phase]

    def chart(self, name: str) -> ChartConfig | None:
        for chart in self.charts:
            if chart.name == name:
                return chart
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: Path | None = None) -> "Config":
        return cls(
            cluster=ClusterConfig.from_dict(_section(data, "cluster")),
            crossplane=CrossplaneConfig.from_dict(_section(data, "crossplane")),
            credentials=CredentialsConfig.from_dict(_section(data, "credentials")),
            charts=[ChartConfig.from_dict(c) for c in _list(data, "charts")],
            path=path,
        )


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Resolve the project file: explicit path, then $KINDPLANE_CONFIG, then ./kindplane.yaml."""
    if path:
        return Path(path)
    env_path = os.environ.get(ENV_VARS["config_path"])
    if env_path:
        return Path(env_path)
    return Path(DEFAULT_CONFIG_FILE)


def load_config(path: str | Path | None = None, validate: bool = True) -> Config:
    """Load the project configuration file.

    Args:
        path: Explicit config path (see resolve_config_path for fallbacks)
        validate: Run validate_config on the result

    Returns:
        Parsed Config

    Raises:
        ValidationError: File missing, unparsable or invalid
    """
    config_path = resolve_config_path(path)
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ValidationError(f"config file not found: {config_path}") from None
    except OSError as e:
        raise ValidationError(f"failed to read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ValidationError(f"failed to parse config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"config file {config_path} must contain a mapping")

    config = Config.from_dict(data, path=config_path.resolve())
    if validate:
        validate_config(config)
    logger.debug("config_loaded", path=str(config_path))
    return config


def validate_config(config: Config) -> None:
    """Validate a configuration, collecting every problem.

    Raises:
        ValidationError: Listing all problems in ``errors``
    """
    errors: list[str] = []
    cluster = config.cluster

    if not cluster.name:
        errors.append("cluster.name is required")
    if cluster.control_plane_nodes < 1:
        errors.append("cluster.nodes.controlPlane must be at least 1")
    if cluster.worker_nodes < 0:
        errors.append("cluster.nodes.workers cannot be negative")

    for i, pm in enumerate(cluster.port_mappings):
        if pm.container_port <= 0:
            errors.append(f"cluster.portMappings[{i}].containerPort must be positive")
        if pm.host_port <= 0:
            errors.append(f"cluster.portMappings[{i}].hostPort must be positive")
        if pm.protocol not in PORT_PROTOCOLS:
            errors.append(f"cluster.portMappings[{i}].protocol must be TCP, UDP, or SCTP")

    for i, mount in enumerate(cluster.extra_mounts):
        if not mount.host_path or not mount.container_path:
            errors.append(f"cluster.extraMounts[{i}] requires hostPath and containerPath")

    for i, mirror in enumerate(cluster.registry_mirrors):
        if not mirror.host:
            errors.append(f"cluster.registryMirrors[{i}].host is required")
        if not mirror.endpoints:
            errors.append(f"cluster.registryMirrors[{i}].endpoints must not be empty")

    if cluster.raw_config_path and not config.resolve_path(cluster.raw_config_path).exists():
        errors.append(f"cluster.rawConfigPath file not found: {cluster.raw_config_path}")

    crossplane = config.crossplane
    if not crossplane.version:
        errors.append("crossplane.version is required")
    provider_names: set[str] = set()
    for i, provider in enumerate(crossplane.providers):
        if not provider.name:
            errors.append(f"crossplane.providers[{i}].name is required")
        elif provider.name in provider_names:
            errors.append(f"crossplane.providers[{i}].name '{provider.name}' is duplicated")
        provider_names.add(provider.name)
        if not provider.package:
            errors.append(f"crossplane.providers[{i}].package is required")
    for i, vf in enumerate(crossplane.values_files):
        if not config.resolve_path(vf).exists():
            errors.append(f"crossplane.valuesFiles[{i}] file not found: {vf}")
    for i, ca in enumerate(crossplane.ca_files):
        if not config.resolve_path(ca).exists():
            errors.append(f"crossplane.registryCaBundle.caFiles[{i}] file not found: {ca}")

    creds = config.credentials
    if creds.aws_source and creds.aws_source not in AWS_SOURCES:
        errors.append(f"credentials.aws.source must be one of: env, profile (got: {creds.aws_source})")
    if creds.azure_source and creds.azure_source not in AZURE_SOURCES:
        errors.append(f"credentials.azure.source must be one of: env (got: {creds.azure_source})")
    if creds.kubernetes_source and creds.kubernetes_source not in KUBERNETES_SOURCES:
        errors.append(
            f"credentials.kubernetes.source must be one of: incluster, kubeconfig (got: {creds.kubernetes_source})"
        )

    chart_names: set[str] = set()
    for i, chart in enumerate(config.charts):
        if not chart.name:
            errors.append(f"charts[{i}].name is required")
        elif chart.name in chart_names:
            errors.append(f"charts[{i}].name '{chart.name}' is duplicated")
        chart_names.add(chart.name)
        if not chart.repo:
            errors.append(f"charts[{i}].repo is required")
        if not chart.chart:
            errors.append(f"charts[{i}].chart is required")
        if not chart.namespace:
            errors.append(f"charts[{i}].namespace is required")
        if chart.phase not in CHART_PHASES:
            errors.append(
                f"charts[{i}].phase must be one of: {', '.join(CHART_PHASES)} (got: {chart.phase})"
            )
        try:
            parse_duration(chart.timeout_text)
        except ValidationError:
            errors.append(f"charts[{i}].timeout is not a valid duration: {chart.timeout_text}")
        for j, vf in enumerate(chart.values_files):
            if not config.resolve_path(vf).exists():
                errors.append(f"charts[{i}].valuesFiles[{j}] file not found: {vf}")

    if errors:
        raise ValidationError(f"{len(errors)} configuration error(s)", errors)


# ---------------------------------------------------------------------------
# CLI settings
# ---------------------------------------------------------------------------


@dataclass
class CLISettings:
    """CLI settings."""

    config_path: str = ""
    timeout: int = DEFAULT_TIMEOUT
    output_format: str = DEFAULT_OUTPUT_FORMAT
    log_level: str = DEFAULT_LOG_LEVEL

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict)

    def get_source(self, key: str) -> str:
        """Get the source of a settings value."""
        return self._sources.get(key, "default")


def get_settings_path() -> Path:
    """Get the CLI settings file path.

    Returns:
        Path to ~/.kindplane/config.yaml
    """
    return SETTINGS_FILE


def load_settings() -> CLISettings:
    """Load CLI settings.

    Precedence (highest to lowest):
    1. Environment variables
    2. Settings file (~/.kindplane/config.yaml)
    3. Defaults

    An unreadable settings file is logged and ignored.

    Returns:
        CLISettings with values and sources
    """
    settings = CLISettings()
    sources: dict[str, str] = {key: "default" for key in ENV_VARS}

    settings_path = get_settings_path()
    if settings_path.exists():
        try:
            with open(settings_path) as f:
                file_settings = yaml.safe_load(f) or {}

            if "config_path" in file_settings:
                settings.config_path = str(file_settings["config_path"])
                sources["config_path"] = "settings file"
            if "timeout" in file_settings:
                settings.timeout = int(file_settings["timeout"])
                sources["timeout"] = "settings file"
            if "output_format" in file_settings:
                settings.output_format = str(file_settings["output_format"])
                sources["output_format"] = "settings file"
            if "log_level" in file_settings:
                settings.log_level = str(file_settings["log_level"])
                sources["log_level"] = "settings file"
        except (OSError, yaml.YAMLError, TypeError, ValueError, AttributeError) as e:
            logger.warning("settings_file_ignored", path=str(settings_path), error=str(e))

    # Override with environment variables
    if os.environ.get(ENV_VARS["config_path"]):
        settings.config_path = os.environ[ENV_VARS["config_path"]]
        sources["config_path"] = "environment"
    if os.environ.get(ENV_VARS["timeout"]):
        try:
            settings.timeout = int(parse_duration(os.environ[ENV_VARS["timeout"]]))
            sources["timeout"] = "environment"
        except ValidationError:
            logger.warning("invalid_env_timeout", value=os.environ[ENV_VARS["timeout"]])
    if os.environ.get(ENV_VARS["output_format"]):
        settings.output_format = os.environ[ENV_VARS["output_format"]]
        sources["output_format"] = "environment"
    if os.environ.get(ENV_VARS["log_level"]):
        settings.log_level = os.environ[ENV_VARS["log_level"]]
        sources["log_level"] = "environment"

    if settings.output_format not in OUTPUT_FORMATS:
        logger.warning("unknown_output_format", value=settings.output_format)
        settings.output_format = DEFAULT_OUTPUT_FORMAT
        sources["output_format"] = "default"

    settings._sources = sources
    return settings


def config_to_dict(config: Config) -> dict[str, Any]:
    """Render a Config back into the file's key layout."""
    cluster = config.cluster
    crossplane = config.crossplane
    creds = config.credentials
    return {
        "cluster": {
            "name": cluster.name,
            "kubernetesVersion": cluster.kubernetes_version,
            "nodeImage": cluster.node_image,
            "nodes": {"controlPlane": cluster.control_plane_nodes, "workers": cluster.worker_nodes},
            "portMappings": [
                {"containerPort": p.container_port, "hostPort": p.host_port, "protocol": p.protocol}
                for p in cluster.port_mappings
            ],
            "extraMounts": [
                {"hostPath": m.host_path, "containerPath": m.container_path, "readOnly": m.read_only}
                for m in cluster.extra_mounts
            ],
            "registryMirrors": [{"host": r.host, "endpoints": r.endpoints} for r in cluster.registry_mirrors],
            "ingress": {"enabled": cluster.ingress},
            "rawConfigPath": cluster.raw_config_path,
        },
        "crossplane": {
            "version": crossplane.version,
            "repo": crossplane.repo_url,
            "values": crossplane.values,
            "valuesFiles": crossplane.values_files,
            "providers": [{"name": p.name, "package": p.package} for p in crossplane.providers],
            "registryCaBundle": {"caFiles": crossplane.ca_files},
        },
        "credentials": {
            "aws": {"source": creds.aws_source, "profile": creds.aws_profile},
            "azure": {"source": creds.azure_source},
            "kubernetes": {"source": creds.kubernetes_source},
            "required": creds.required,
        },
        "charts": [
            {
                "name": c.name,
                "repo": c.repo,
                "chart": c.chart,
                "version": c.version,
                "namespace": c.namespace,
                "createNamespace": c.create_namespace,
                "phase": c.phase,
                "wait": c.wait,
                "timeout": c.timeout_text,
                "values": c.values,
                "valuesFiles": c.values_files,
                "set": c.set,
                "required": c.required,
            }
            for c in config.charts
        ],
    }
