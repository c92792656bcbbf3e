"""Cluster API access.

``ResourceClient`` is the boundary between kindplane and the Kubernetes API.
``KubectlResourceClient`` implements it by running kubectl with JSON output
and translating kubectl's error reasons into typed errors. Everything above
this module works with plain manifest dicts and ``ResourceRef``.
"""

from __future__ import annotations

import json
import re
import subprocess
import time
from abc import ABC, abstractmethod
from typing import Any

from ..errors import (
    AlreadyExistsError,
    ConflictError,
    KindplaneError,
    NotFoundError,
    ResourceError,
    TransientError,
)
from ..models import Condition, ResourceRef, conditions_from_object
from ..shared import get_logger

logger = get_logger(__name__)

# Well-known resource types
NAMESPACE = ResourceRef("", "v1", "Namespace")
SECRET = ResourceRef("", "v1", "Secret")
CONFIGMAP = ResourceRef("", "v1", "ConfigMap")
POD = ResourceRef("", "v1", "Pod")
DEPLOYMENT = ResourceRef("apps", "v1", "Deployment")
PROVIDER = ResourceRef("pkg.crossplane.io", "v1", "Provider")

DEFAULT_UPSERT_RETRIES = 3
DEFAULT_UPSERT_DELAY = 0.5

# kubectl prints "Error from server (Reason): ..."
_REASON_RE = re.compile(r"Error from server \((\w+)\)")

_TRANSIENT_REASONS = {"ServiceUnavailable", "InternalError", "Timeout", "ServerTimeout", "TooManyRequests"}
_TRANSIENT_MARKERS = ("unable to connect to the server", "connection refused", "i/o timeout", "tls handshake timeout")


def ref_for(obj: dict[str, Any]) -> ResourceRef:
    """Build the ResourceRef identifying a manifest dict."""
    api_version = obj.get("apiVersion", "")
    group, _, version = api_version.rpartition("/")
    metadata = obj.get("metadata") or {}
    return ResourceRef(
        group=group,
        version=version,
        kind=obj.get("kind", ""),
        name=metadata.get("name", ""),
        namespace=metadata.get("namespace", ""),
    )


class ResourceClient(ABC):
    """Typed get/list/create/update/delete against the cluster API.

    Implementations raise ``NotFoundError`` for absent objects,
    ``AlreadyExistsError`` when a create collides, ``ConflictError`` on a
    stale update, ``TransientError`` for retryable failures and
    ``ResourceError`` for anything else.
    """

    @abstractmethod
    def get(self, ref: ResourceRef) -> dict[str, Any]:
        """Fetch a single object."""

    @abstractmethod
    def list(self, ref: ResourceRef, namespace: str = "") -> list[dict[str, Any]]:
        """List objects of ``ref``'s type; ``ref.name`` is ignored."""

    @abstractmethod
    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Create an object and return it as stored."""

    @abstractmethod
    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace an existing object and return it as stored."""

    @abstractmethod
    def delete(self, ref: ResourceRef) -> None:
        """Delete a single object."""

    def exists(self, ref: ResourceRef) -> bool:
        try:
            self.get(ref)
        except NotFoundError:
            return False
        return True

    def conditions(self, ref: ResourceRef) -> list[Condition]:
        """Read ``status.conditions`` of an object."""
        return conditions_from_object(self.get(ref))


class KubectlResourceClient(ResourceClient):
    """ResourceClient backed by the kubectl binary."""

    def __init__(
        self,
        kubeconfig: str | None = None,
        context: str | None = None,
        timeout: float = 60.0,
    ):
        """Initialize client.

        Args:
            kubeconfig: Path to kubeconfig file.
            context: Kubeconfig context to use (e.g. ``kind-<cluster>``).
            timeout: Per-call subprocess timeout in seconds.
        """
        self.kubeconfig = kubeconfig
        self.context = context
        self.timeout = timeout

    def _kubectl_cmd(self) -> list[str]:
        """Build base kubectl command."""
        cmd = ["kubectl"]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        if self.context:
            cmd.extend(["--context", self.context])
        return cmd

    def _run(self, args: list[str], input_data: str | None = None) -> str:
        cmd = self._kubectl_cmd() + args
        try:
            result = subprocess.run(
                cmd,
                input=input_data,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ResourceError("kubectl not found. Is kubectl installed?") from e
        except subprocess.TimeoutExpired as e:
            raise TransientError(f"kubectl {args[0]} timed out after {self.timeout}s") from e

        if result.returncode != 0:
            raise self._translate_error(result.stderr.strip() or result.stdout.strip())
        return result.stdout

    @staticmethod
    def _translate_error(stderr: str) -> KindplaneError:
        """Map kubectl stderr onto the error hierarchy."""
        match = _REASON_RE.search(stderr)
        reason = match.group(1) if match else ""

        if reason == "NotFound":
            return NotFoundError(stderr)
        if reason == "AlreadyExists":
            return AlreadyExistsError(stderr)
        if reason == "Conflict":
            return ConflictError(stderr)
        if reason in _TRANSIENT_REASONS:
            return TransientError(stderr)
        if any(marker in stderr.lower() for marker in _TRANSIENT_MARKERS):
            return TransientError(stderr)
        return ResourceError(stderr or "kubectl failed")

    @staticmethod
    def _namespace_args(namespace: str) -> list[str]:
        return ["-n", namespace] if namespace else []

    @staticmethod
    def _decode(output: str) -> dict[str, Any]:
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise ResourceError(f"unexpected kubectl output: {e}") from e

    def get(self, ref: ResourceRef) -> dict[str, Any]:
        output = self._run(
            ["get", ref.resource_type, ref.name, *self._namespace_args(ref.namespace), "-o", "json"]
        )
        return self._decode(output)

    def list(self, ref: ResourceRef, namespace: str = "") -> list[dict[str, Any]]:
        namespace = namespace or ref.namespace
        output = self._run(["get", ref.resource_type, *self._namespace_args(namespace), "-o", "json"])
        return self._decode(output).get("items", [])

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        output = self._run(["create", "-f", "-", "-o", "json"], input_data=json.dumps(obj))
        return self._decode(output)

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        output = self._run(["replace", "-f", "-", "-o", "json"], input_data=json.dumps(obj))
        return self._decode(output)

    def delete(self, ref: ResourceRef) -> None:
        self._run(
            ["delete", ref.resource_type, ref.name, *self._namespace_args(ref.namespace), "--wait=false"]
        )


def upsert(
    client: ResourceClient,
    obj: dict[str, Any],
    max_retries: int = DEFAULT_UPSERT_RETRIES,
    retry_delay: float = DEFAULT_UPSERT_DELAY,
) -> dict[str, Any]:
    """Create an object, or update it in place if it already exists.

    On ``AlreadyExistsError`` the live object is read and the desired object
    is written over it carrying the live ``resourceVersion``. A
    ``ConflictError`` restarts the read-modify-write with exponential
    backoff, at most ``max_retries`` times. Calling this repeatedly with the
    same manifest leaves exactly one object.

    Args:
        client: Cluster API client
        obj: Desired manifest
        max_retries: Retries after a conflicting update
        retry_delay: Base delay between retries (seconds)

    Returns:
        The object as stored by the cluster

    Raises:
        ConflictError: The object kept changing underneath every retry
    """
    ref = ref_for(obj)
    try:
        created = client.create(obj)
        logger.debug("resource_created", resource=str(ref))
        return created
    except AlreadyExistsError:
        pass

    for attempt in range(max_retries + 1):
        try:
            live = client.get(ref)
        except NotFoundError:
            # Deleted between create and get
            return client.create(obj)

        desired = json.loads(json.dumps(obj))
        metadata = desired.setdefault("metadata", {})
        resource_version = (live.get("metadata") or {}).get("resourceVersion")
        if resource_version:
            metadata["resourceVersion"] = resource_version

        try:
            updated = client.update(desired)
            logger.debug("resource_updated", resource=str(ref), attempt=attempt + 1)
            return updated
        except ConflictError:
            if attempt >= max_retries:
                raise
            logger.warning(
                "resource_update_conflict",
                resource=str(ref),
                attempt=attempt + 1,
                max_retries=max_retries,
            )
            time.sleep(retry_delay * (2**attempt))

    raise ConflictError(f"{ref}: update kept conflicting")
