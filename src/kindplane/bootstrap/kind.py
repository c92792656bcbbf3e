"""Kind cluster lifecycle and configuration translation.

The cluster section of the configuration is translated into a kind
``Cluster`` document. When a raw kind config file is given, the generated
document is deep-merged on top of it, so kindplane settings win.
"""

from __future__ import annotations

import subprocess
import tempfile
from pathlib import Path
from typing import Any

import yaml

from ..config import ClusterConfig
from ..errors import ClusterError, ValidationError
from ..shared import get_logger
from .values import ValueTree, merge_values

logger = get_logger(__name__)

KIND_API_VERSION = "kind.x-k8s.io/v1alpha4"
MANAGED_NODE_LABEL = "kindplane.io/managed-by=kindplane"


def _kubeadm_patch(labels: str) -> str:
    return f'kind: InitConfiguration\nnodeRegistration:\n  kubeletExtraArgs:\n    node-labels: "{labels}"'


def _mirror_patch(host: str, endpoints: list[str]) -> str:
    quoted = ", ".join(f'"{e}"' for e in endpoints)
    return f'[plugins."io.containerd.grpc.v1.cri".registry.mirrors."{host}"]\n  endpoint = [{quoted}]'


def load_raw_config(path: str | Path) -> ValueTree:
    """Load a raw kind config file.

    Raises:
        ValidationError: The file cannot be read or is not a mapping.
    """
    try:
        data = yaml.safe_load(Path(path).read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ValidationError(f"failed to load raw kind config {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"raw kind config {path} must contain a mapping")
    return data


def build_kind_config(cluster: ClusterConfig, raw: ValueTree | None = None) -> ValueTree:
    """Translate cluster settings into a kind Cluster document.

    Node lists are always generated from ``cluster``. Containerd patches from
    ``raw`` are kept and the registry mirror patches appended.

    Args:
        cluster: Cluster section of the configuration
        raw: Optional raw kind config to merge over

    Returns:
        The kind config as a value tree
    """
    image = cluster.resolved_node_image

    port_mappings = [
        {"containerPort": p.container_port, "hostPort": p.host_port, "protocol": p.protocol}
        for p in cluster.port_mappings
    ]
    mounts = []
    for m in cluster.extra_mounts:
        mount: dict[str, Any] = {"hostPath": m.host_path, "containerPath": m.container_path}
        if m.read_only:
            mount["readOnly"] = True
        mounts.append(mount)

    def node(role: str, first: bool = False) -> dict[str, Any]:
        entry: dict[str, Any] = {"role": role}
        if image:
            entry["image"] = image
        if first and port_mappings:
            entry["extraPortMappings"] = port_mappings
        if mounts:
            entry["extraMounts"] = mounts
        if first and cluster.ingress:
            entry["labels"] = {"ingress-ready": "true"}
            entry["kubeadmConfigPatches"] = [_kubeadm_patch(f"ingress-ready=true,{MANAGED_NODE_LABEL}")]
        else:
            entry["kubeadmConfigPatches"] = [_kubeadm_patch(MANAGED_NODE_LABEL)]
        return entry

    nodes = [node("control-plane", first=(i == 0)) for i in range(cluster.control_plane_nodes)]
    nodes.extend(node("worker") for _ in range(cluster.worker_nodes))

    generated: ValueTree = {
        "kind": "Cluster",
        "apiVersion": KIND_API_VERSION,
        "name": cluster.name,
        "nodes": nodes,
    }

    patches = list((raw or {}).get("containerdConfigPatches") or [])
    patches.extend(_mirror_patch(m.host, m.endpoints) for m in cluster.registry_mirrors)
    if patches:
        generated["containerdConfigPatches"] = patches

    return merge_values(raw, generated)


def render_kind_config(tree: ValueTree) -> str:
    """Render a kind config value tree as YAML."""
    return yaml.safe_dump(tree, default_flow_style=False, sort_keys=False)


class KindCluster:
    """Manage a kind cluster with the kind binary."""

    def __init__(self, name: str, kubeconfig: str | None = None):
        """Initialize cluster handle.

        Args:
            name: Cluster name.
            kubeconfig: Kubeconfig file kind writes the context into.
        """
        self.name = name
        self.kubeconfig = kubeconfig

    @property
    def context(self) -> str:
        """Kubeconfig context kind creates for this cluster."""
        return f"kind-{self.name}"

    def _run(self, args: list[str]) -> str:
        try:
            result = subprocess.run(["kind", *args], capture_output=True, text=True)
        except FileNotFoundError as e:
            raise ClusterError("kind not found. Is kind installed?") from e
        if result.returncode != 0:
            raise ClusterError(f"kind {' '.join(args[:2])} failed: {result.stderr.strip()}")
        return result.stdout

    def list_clusters(self) -> list[str]:
        output = self._run(["get", "clusters"])
        return [line.strip() for line in output.splitlines() if line.strip()]

    def exists(self) -> bool:
        return self.name in self.list_clusters()

    def create(self, config: ValueTree, wait: str = "60s") -> None:
        """Create the cluster from a kind config document.

        Raises:
            ClusterError: kind failed.
        """
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", prefix="kindplane-") as f:
            f.write(render_kind_config(config))
            f.flush()
            args = ["create", "cluster", "--name", self.name, "--config", f.name, "--wait", wait]
            if self.kubeconfig:
                args.extend(["--kubeconfig", self.kubeconfig])
            logger.info("cluster_creating", name=self.name)
            self._run(args)
        logger.info("cluster_created", name=self.name)

    def delete(self) -> None:
        """Delete the cluster.

        Raises:
            ClusterError: kind failed.
        """
        args = ["delete", "cluster", "--name", self.name]
        if self.kubeconfig:
            args.extend(["--kubeconfig", self.kubeconfig])
        self._run(args)
        logger.info("cluster_deleted", name=self.name)
