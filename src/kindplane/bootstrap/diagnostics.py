"""Condition and pod diagnostics.

Used both for live health views and to explain why a stage failed. One list
call is made per resource kind; filtering by name happens client-side.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..models import ConditionStatus, HealthSnapshot, ResourceRef, conditions_from_object
from .resources import POD, PROVIDER, ResourceClient

CROSSPLANE_NAMESPACE = "crossplane-system"

_IMAGE_PULL_REASONS = {"ImagePullBackOff", "ErrImagePull", "ErrImageNeverPull"}


@dataclass(frozen=True)
class ResourceDiagnostic:
    """Conditions of one resource at the time it was listed."""

    ref: ResourceRef
    snapshot: HealthSnapshot
    package: str = ""
    revision: str = ""

    @property
    def name(self) -> str:
        return self.ref.name

    @property
    def healthy(self) -> bool:
        return self.snapshot.healthy

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.ref.kind,
            "name": self.ref.name,
            "namespace": self.ref.namespace,
            "package": self.package,
            "revision": self.revision,
            **self.snapshot.to_dict(),
        }


@dataclass(frozen=True)
class ContainerDiagnostic:
    """State of one container in a pod."""

    name: str
    ready: bool
    state: str = ""
    restarts: int = 0
    waiting_reason: str = ""
    waiting_message: str = ""
    terminated_reason: str = ""
    exit_code: int = 0

    @property
    def has_issue(self) -> bool:
        if not self.ready or self.restarts > 0 or self.exit_code != 0:
            return True
        if self.waiting_reason and self.waiting_reason != "ContainerCreating":
            return True
        return bool(self.terminated_reason) and self.terminated_reason != "Completed"

    @property
    def is_crash_looping(self) -> bool:
        return self.waiting_reason == "CrashLoopBackOff"

    @property
    def is_image_pull_error(self) -> bool:
        return self.waiting_reason in _IMAGE_PULL_REASONS

    @classmethod
    def from_status(cls, status: Mapping[str, Any]) -> ContainerDiagnostic:
        state = status.get("state") or {}
        waiting = state.get("waiting") or {}
        terminated = state.get("terminated") or {}
        last = (status.get("lastState") or {}).get("terminated") or {}

        if "running" in state:
            state_name = "Running"
        elif waiting:
            state_name = "Waiting"
        elif terminated:
            state_name = "Terminated"
        else:
            state_name = ""

        # Fall back to the last termination for restart info
        terminated = terminated or last
        return cls(
            name=status.get("name", ""),
            ready=bool(status.get("ready")),
            state=state_name,
            restarts=int(status.get("restartCount") or 0),
            waiting_reason=waiting.get("reason", ""),
            waiting_message=waiting.get("message", ""),
            terminated_reason=terminated.get("reason", ""),
            exit_code=int(terminated.get("exitCode") or 0),
        )


@dataclass(frozen=True)
class PodDiagnostic:
    """Phase, readiness and container states of one pod."""

    name: str
    namespace: str
    phase: str
    ready: bool
    containers: tuple[ContainerDiagnostic, ...] = field(default=())

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> PodDiagnostic:
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}
        ready = any(
            c.get("type") == "Ready" and c.get("status") == "True" for c in status.get("conditions") or []
        )
        statuses = [*(status.get("initContainerStatuses") or []), *(status.get("containerStatuses") or [])]
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            phase=status.get("phase", ""),
            ready=ready,
            containers=tuple(ContainerDiagnostic.from_status(s) for s in statuses),
        )

    def issues(self) -> list[str]:
        """Human-readable problems, one per affected container."""
        problems = []
        for container in self.containers:
            if not container.has_issue:
                continue
            reason = container.waiting_reason or container.terminated_reason or "not ready"
            detail = f"{self.name}/{container.name}: {reason}"
            if container.waiting_message:
                detail = f"{detail} ({container.waiting_message})"
            if container.restarts:
                detail = f"{detail}, {container.restarts} restart(s)"
            problems.append(detail)
        return problems

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "phase": self.phase,
            "ready": self.ready,
            "containers": [
                {
                    "name": c.name,
                    "ready": c.ready,
                    "state": c.state,
                    "restarts": c.restarts,
                    "waiting_reason": c.waiting_reason,
                    "terminated_reason": c.terminated_reason,
                    "exit_code": c.exit_code,
                }
                for c in self.containers
            ],
        }


def unhealthy(diagnostics: Iterable[ResourceDiagnostic]) -> list[ResourceDiagnostic]:
    """Filter to resources whose Healthy condition is not True."""
    return [d for d in diagnostics if not d.healthy]


def error_messages(diagnostics: Iterable[ResourceDiagnostic]) -> list[str]:
    """Format every False condition with a message as ``name: type - message``."""
    messages = []
    for diag in diagnostics:
        for cond in diag.snapshot.conditions:
            if cond.status is ConditionStatus.FALSE and cond.message:
                messages.append(f"{diag.name}: {cond.type} - {cond.message}")
    return messages


class DiagnosticsCollector:
    """Snapshot condition state across a set of resources."""

    def __init__(self, client: ResourceClient):
        self.client = client

    def collect_conditions(
        self,
        kinds: Iterable[ResourceRef],
        names: Iterable[str] | None = None,
    ) -> list[ResourceDiagnostic]:
        """List each kind once and snapshot the conditions of every object.

        Args:
            kinds: Resource types to list; namespace is honoured, name ignored.
            names: Optional allow-list of object names.
        """
        allowed = set(names) if names else None
        results = []
        for kind in kinds:
            for obj in self.client.list(kind, kind.namespace):
                metadata = obj.get("metadata") or {}
                name = metadata.get("name", "")
                if allowed is not None and name not in allowed:
                    continue
                status = obj.get("status") or {}
                results.append(
                    ResourceDiagnostic(
                        ref=ResourceRef(kind.group, kind.version, kind.kind, name, metadata.get("namespace", "")),
                        snapshot=HealthSnapshot.from_conditions(conditions_from_object(obj)),
                        package=(obj.get("spec") or {}).get("package", ""),
                        revision=status.get("currentRevision", ""),
                    )
                )
        return results

    def collect_providers(self, names: Iterable[str] | None = None) -> list[ResourceDiagnostic]:
        return self.collect_conditions([PROVIDER], names)

    def collect_pods(
        self,
        namespace: str = CROSSPLANE_NAMESPACE,
        labels: Mapping[str, str] | None = None,
    ) -> list[PodDiagnostic]:
        """Snapshot pods in a namespace, optionally matching all ``labels``."""
        pods = []
        for obj in self.client.list(POD, namespace):
            pod_labels = (obj.get("metadata") or {}).get("labels") or {}
            if labels and any(pod_labels.get(k) != v for k, v in labels.items()):
                continue
            pods.append(PodDiagnostic.from_object(obj))
        return pods

    def explain_providers(self, names: Iterable[str] | None = None) -> list[str]:
        """Error messages of unhealthy providers, for failure reports."""
        return error_messages(unhealthy(self.collect_providers(names)))

    def explain_pods(self, namespace: str, labels: Mapping[str, str] | None = None) -> list[str]:
        """Container problems in a namespace, for failure reports."""
        problems = []
        for pod in self.collect_pods(namespace, labels):
            problems.extend(pod.issues())
        return problems
