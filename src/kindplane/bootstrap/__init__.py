"""Bootstrap package for local Crossplane environments.

This package provides the `kindplane up` pipeline which:
1. Creates the kind cluster
2. Installs Crossplane with Helm
3. Installs providers and waits for them to become healthy
4. Configures provider credentials
5. Installs additional charts in their configured phases
"""

from .credentials import (
    AWSBackend,
    AzureBackend,
    CredentialsProvisioner,
    EnvironmentSource,
    ExplicitSource,
    InClusterSource,
    KubeconfigSource,
    KubernetesBackend,
    ProfileSource,
    source_for,
)
from .crossplane import CrossplaneInstaller
from .diagnostics import (
    DiagnosticsCollector,
    PodDiagnostic,
    ResourceDiagnostic,
    error_messages,
    unhealthy,
)
from .health import (
    HealthConvergencePoller,
    PollState,
    condition_true,
    is_installed_and_healthy,
)
from .helm import (
    ChartSpec,
    HelmInstaller,
    InstallOptions,
    chart_spec_from_config,
    ensure_namespace,
    generate_repo_name,
)
from .kind import KindCluster, build_kind_config, render_kind_config
from .pipeline import (
    BootstrapOrchestrator,
    PipelineResult,
    Stage,
    StageResult,
    StageStatus,
)
from .resources import KubectlResourceClient, ResourceClient, upsert
from .stages import BootstrapContext, BootstrapOptions, build_stages, make_rollback
from .values import load_values_file, merge_values, parse_overrides, resolve_values

__all__ = [
    # Values
    "merge_values",
    "parse_overrides",
    "load_values_file",
    "resolve_values",
    # Cluster API
    "ResourceClient",
    "KubectlResourceClient",
    "upsert",
    # Health polling
    "HealthConvergencePoller",
    "PollState",
    "is_installed_and_healthy",
    "condition_true",
    # Credentials
    "CredentialsProvisioner",
    "AWSBackend",
    "AzureBackend",
    "KubernetesBackend",
    "ExplicitSource",
    "EnvironmentSource",
    "ProfileSource",
    "KubeconfigSource",
    "InClusterSource",
    "source_for",
    # Helm
    "HelmInstaller",
    "InstallOptions",
    "ChartSpec",
    "chart_spec_from_config",
    "generate_repo_name",
    "ensure_namespace",
    # Diagnostics
    "DiagnosticsCollector",
    "ResourceDiagnostic",
    "PodDiagnostic",
    "unhealthy",
    "error_messages",
    # Crossplane
    "CrossplaneInstaller",
    # Kind
    "KindCluster",
    "build_kind_config",
    "render_kind_config",
    # Pipeline
    "Stage",
    "StageStatus",
    "StageResult",
    "PipelineResult",
    "BootstrapOrchestrator",
    "BootstrapContext",
    "BootstrapOptions",
    "build_stages",
    "make_rollback",
]
