"""Provider credential provisioning.

Each backend stores its credential material in one Secret in the
package-controller namespace and points a cluster-scoped ProviderConfig at
that Secret by namespace/name/key. Material never appears in the
ProviderConfig itself.

Material comes from a source: explicit values, environment variables, an
AWS shared-credentials profile, a kubeconfig file, or (Kubernetes only)
in-cluster identity, which needs no Secret at all.
"""

from __future__ import annotations

import configparser
import json
import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from ..errors import (
    CredentialError,
    MissingCredentialError,
    NotFoundError,
    ResourceError,
    ValidationError,
)
from ..models import CredentialRecord, ResourceRef
from ..shared import aws_credentials_path, get_logger, kubeconfig_path
from .resources import SECRET, ResourceClient, upsert

logger = get_logger(__name__)

CROSSPLANE_NAMESPACE = "crossplane-system"
PROVIDER_CONFIG_NAME = "default"
MANAGED_BY_LABEL = {"app.kubernetes.io/managed-by": "kindplane"}


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class CredentialBackend(ABC):
    """Shape of one backend's credential material and configuration."""

    name = ""
    secret_name = ""
    secret_key = "creds"
    config_group = ""
    config_version = "v1beta1"
    required_fields: tuple[str, ...] = ()
    optional_fields: tuple[str, ...] = ()
    env_vars: dict[str, str] = {}
    supports_injected_identity = False

    @property
    def config_ref(self) -> ResourceRef:
        return ResourceRef(self.config_group, self.config_version, "ProviderConfig", PROVIDER_CONFIG_NAME)

    def secret_ref(self, namespace: str = CROSSPLANE_NAMESPACE, name: str | None = None) -> ResourceRef:
        return ResourceRef(SECRET.group, SECRET.version, SECRET.kind, name or self.secret_name, namespace)

    def validate(self, material: Mapping[str, str]) -> dict[str, str]:
        """Check required fields and drop unknown or empty ones.

        Raises:
            MissingCredentialError: Naming the first absent required field.
        """
        for field in self.required_fields:
            if not material.get(field):
                hint = ""
                if field in self.env_vars:
                    hint = f"set {self.env_vars[field]}"
                raise MissingCredentialError(self.name, field, hint)
        allowed = self.required_fields + self.optional_fields
        return {k: v for k, v in material.items() if k in allowed and v}

    @abstractmethod
    def render(self, material: Mapping[str, str]) -> str:
        """Render validated material into the Secret's text payload."""

    def secret_manifest(self, material: Mapping[str, str], namespace: str = CROSSPLANE_NAMESPACE) -> dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": self.secret_name,
                "namespace": namespace,
                "labels": dict(MANAGED_BY_LABEL),
            },
            "type": "Opaque",
            "stringData": {self.secret_key: self.render(material)},
        }

    def config_manifest(self, namespace: str = CROSSPLANE_NAMESPACE, injected_identity: bool = False) -> dict[str, Any]:
        if injected_identity:
            credentials: dict[str, Any] = {"source": "InjectedIdentity"}
        else:
            credentials = {
                "source": "Secret",
                "secretRef": {
                    "namespace": namespace,
                    "name": self.secret_name,
                    "key": self.secret_key,
                },
            }
        return {
            "apiVersion": self.config_ref.api_version,
            "kind": "ProviderConfig",
            "metadata": {"name": PROVIDER_CONFIG_NAME, "labels": dict(MANAGED_BY_LABEL)},
            "spec": {"credentials": credentials},
        }


class AWSBackend(CredentialBackend):
    """AWS: shared-credentials INI text under a default profile."""

    name = "aws"
    secret_name = "aws-creds"
    config_group = "aws.upbound.io"
    required_fields = ("access_key_id", "secret_access_key")
    optional_fields = ("session_token",)
    env_vars = {
        "access_key_id": "AWS_ACCESS_KEY_ID",
        "secret_access_key": "AWS_SECRET_ACCESS_KEY",
        "session_token": "AWS_SESSION_TOKEN",
    }

    def render(self, material: Mapping[str, str]) -> str:
        lines = [
            "[default]",
            f"aws_access_key_id = {material['access_key_id']}",
            f"aws_secret_access_key = {material['secret_access_key']}",
        ]
        if material.get("session_token"):
            lines.append(f"aws_session_token = {material['session_token']}")
        return "\n".join(lines)


class AzureBackend(CredentialBackend):
    """Azure: service principal JSON."""

    name = "azure"
    secret_name = "azure-creds"
    config_group = "azure.upbound.io"
    required_fields = ("client_id", "client_secret", "tenant_id", "subscription_id")
    env_vars = {
        "client_id": "AZURE_CLIENT_ID",
        "client_secret": "AZURE_CLIENT_SECRET",
        "tenant_id": "AZURE_TENANT_ID",
        "subscription_id": "AZURE_SUBSCRIPTION_ID",
    }

    def render(self, material: Mapping[str, str]) -> str:
        return json.dumps(
            {
                "clientId": material["client_id"],
                "clientSecret": material["client_secret"],
                "tenantId": material["tenant_id"],
                "subscriptionId": material["subscription_id"],
            }
        )


class KubernetesBackend(CredentialBackend):
    """provider-kubernetes: a kubeconfig, or the provider's own identity."""

    name = "kubernetes"
    secret_name = "kubernetes-provider-creds"
    secret_key = "kubeconfig"
    config_group = "kubernetes.crossplane.io"
    config_version = "v1alpha1"
    required_fields = ("kubeconfig",)
    env_vars = {}
    supports_injected_identity = True

    def render(self, material: Mapping[str, str]) -> str:
        return material["kubeconfig"]


BACKENDS: dict[str, CredentialBackend] = {
    backend.name: backend for backend in (AWSBackend(), AzureBackend(), KubernetesBackend())
}


def get_backend(name: str) -> CredentialBackend:
    """Look up a backend by name."""
    try:
        return BACKENDS[name]
    except KeyError:
        raise ValidationError(
            f"unknown credentials backend {name!r} (expected one of: {', '.join(sorted(BACKENDS))})"
        ) from None


# ---------------------------------------------------------------------------
# Material sources
# ---------------------------------------------------------------------------


class MaterialSource(ABC):
    """Where credential material comes from."""

    name = ""
    injected_identity = False

    @abstractmethod
    def load(self, backend: CredentialBackend) -> dict[str, str]:
        """Return raw material for ``backend``; may be incomplete."""


class ExplicitSource(MaterialSource):
    """Material given directly as field/value pairs."""

    name = "explicit"

    def __init__(self, values: Mapping[str, str]):
        self.values = dict(values)

    def load(self, backend: CredentialBackend) -> dict[str, str]:
        return dict(self.values)


class EnvironmentSource(MaterialSource):
    """Material read from the backend's environment variables."""

    name = "env"

    def __init__(self, environ: Mapping[str, str] | None = None):
        self.environ = os.environ if environ is None else environ

    def load(self, backend: CredentialBackend) -> dict[str, str]:
        if not backend.env_vars:
            raise CredentialError(f"{backend.name}: environment variables are not a supported source")
        return {field: self.environ.get(var, "") for field, var in backend.env_vars.items()}


class ProfileSource(MaterialSource):
    """A named profile in the AWS shared credentials file."""

    name = "profile"

    def __init__(self, profile: str = "default", path: str | Path | None = None):
        self.profile = profile
        self.path = Path(path) if path else None

    def load(self, backend: CredentialBackend) -> dict[str, str]:
        if backend.name != "aws":
            raise CredentialError(f"{backend.name}: profile source is only supported for aws")

        path = self.path or aws_credentials_path()
        parser = configparser.ConfigParser(interpolation=None)
        try:
            with open(path) as f:
                parser.read_file(f)
        except OSError as e:
            raise CredentialError(f"failed to load AWS credentials file {path}: {e}") from e
        except configparser.Error as e:
            raise CredentialError(f"failed to parse AWS credentials file {path}: {e}") from e

        if not parser.has_section(self.profile):
            raise CredentialError(f"profile {self.profile!r} not found in {path}")

        section = parser[self.profile]
        return {
            "access_key_id": section.get("aws_access_key_id", ""),
            "secret_access_key": section.get("aws_secret_access_key", ""),
            "session_token": section.get("aws_session_token", ""),
        }


class KubeconfigSource(MaterialSource):
    """A kubeconfig file, stored whole."""

    name = "kubeconfig"

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None

    def load(self, backend: CredentialBackend) -> dict[str, str]:
        path = self.path or kubeconfig_path()
        try:
            return {"kubeconfig": path.read_text()}
        except OSError as e:
            raise CredentialError(f"failed to read kubeconfig {path}: {e}") from e


class InClusterSource(MaterialSource):
    """The provider authenticates with its own service account."""

    name = "incluster"
    injected_identity = True

    def load(self, backend: CredentialBackend) -> dict[str, str]:
        return {}


def source_for(
    name: str,
    profile: str | None = None,
    values: Mapping[str, str] | None = None,
    path: str | Path | None = None,
) -> MaterialSource:
    """Build a material source from its CLI/config name."""
    if name == "env":
        return EnvironmentSource()
    if name == "profile":
        return ProfileSource(profile or "default", path)
    if name == "explicit":
        return ExplicitSource(values or {})
    if name == "kubeconfig":
        return KubeconfigSource(path)
    if name in ("incluster", "in-cluster"):
        return InClusterSource()
    raise ValidationError(f"unknown credentials source {name!r}")


# ---------------------------------------------------------------------------
# Provisioner
# ---------------------------------------------------------------------------


class CredentialsProvisioner:
    """Create or update provider credentials on the cluster."""

    def __init__(self, client: ResourceClient, namespace: str = CROSSPLANE_NAMESPACE):
        self.client = client
        self.namespace = namespace

    def configure(self, backend: str | CredentialBackend, source: MaterialSource) -> CredentialRecord:
        """Persist credentials for a backend.

        Material is loaded and validated before any API call, so a missing
        field fails fast without touching the cluster. Repeated calls
        converge on one Secret and one ProviderConfig.

        Raises:
            MissingCredentialError: A required field is absent.
            CredentialError: The source cannot serve this backend.
        """
        if isinstance(backend, str):
            backend = get_backend(backend)

        if source.injected_identity:
            if not backend.supports_injected_identity:
                raise CredentialError(f"{backend.name}: in-cluster identity is not supported")
            upsert(self.client, backend.config_manifest(self.namespace, injected_identity=True))
            logger.info("credentials_configured", backend=backend.name, source=source.name)
            return CredentialRecord(
                backend=backend.name,
                secret_name=None,
                config_name=PROVIDER_CONFIG_NAME,
                namespace=self.namespace,
                config_exists=True,
            )

        material = backend.validate(source.load(backend))
        upsert(self.client, backend.secret_manifest(material, self.namespace))
        upsert(self.client, backend.config_manifest(self.namespace))
        logger.info("credentials_configured", backend=backend.name, source=source.name)
        return CredentialRecord(
            backend=backend.name,
            secret_name=backend.secret_name,
            config_name=PROVIDER_CONFIG_NAME,
            namespace=self.namespace,
            secret_exists=True,
            config_exists=True,
        )

    def status(self, backend: str | CredentialBackend) -> CredentialRecord:
        """Read a backend's credential state from the cluster."""
        if isinstance(backend, str):
            backend = get_backend(backend)

        config_exists = False
        secret_name: str | None = backend.secret_name
        try:
            config = self.client.get(backend.config_ref)
            config_exists = True
            credentials = (config.get("spec") or {}).get("credentials") or {}
            if credentials.get("source") == "InjectedIdentity":
                secret_name = None
            elif credentials.get("secretRef", {}).get("name"):
                secret_name = credentials["secretRef"]["name"]
        except NotFoundError:
            pass
        except ResourceError as e:
            # The ProviderConfig CRD is absent until the provider is installed
            logger.debug("provider_config_unavailable", backend=backend.name, error=e.message)

        secret_exists = False
        if secret_name is not None:
            secret_exists = self.client.exists(backend.secret_ref(self.namespace, secret_name))

        return CredentialRecord(
            backend=backend.name,
            secret_name=secret_name,
            config_name=PROVIDER_CONFIG_NAME,
            namespace=self.namespace,
            secret_exists=secret_exists,
            config_exists=config_exists,
        )

    def list_credentials(self, backend: str | None = None) -> list[CredentialRecord]:
        """Report credential state for one backend, or all of them."""
        names = [backend] if backend else sorted(BACKENDS)
        return [self.status(name) for name in names]
