"""Value objects shared across the bootstrap pipeline.

Every object here is built fresh per operation. ReleaseState and
CredentialRecord describe what the cluster reported at the moment they were
read; nothing is cached locally.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class ResourceRef:
    """Identity of a cluster-side object."""

    group: str
    version: str
    kind: str
    name: str = ""
    namespace: str = ""

    @property
    def api_version(self) -> str:
        """apiVersion as written in manifests (``v1`` for the core group)."""
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    @property
    def resource_type(self) -> str:
        """Fully-qualified type accepted by ``kubectl get``."""
        if self.group:
            return f"{self.kind.lower()}.{self.version}.{self.group}"
        return self.kind.lower()

    def named(self, name: str) -> ResourceRef:
        """Return a copy of this ref pointing at another object of the same type."""
        return ResourceRef(self.group, self.version, self.kind, name, self.namespace)

    def __str__(self) -> str:
        path = f"{self.namespace}/{self.name}" if self.namespace else self.name
        return f"{self.kind}/{path}" if path else self.kind


class ConditionStatus(Enum):
    """Status of a reported condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> ConditionStatus:
        """Parse a status string; anything unrecognised is Unknown."""
        for status in cls:
            if status.value == value:
                return status
        return cls.UNKNOWN


@dataclass(frozen=True)
class Condition:
    """Point-in-time assertion about a resource, reported by a controller."""

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        """Build from a ``status.conditions[]`` entry."""
        return cls(
            type=str(data.get("type", "")),
            status=ConditionStatus.parse(data.get("status")),
            reason=str(data.get("reason") or ""),
            message=str(data.get("message") or ""),
            last_transition_time=str(data.get("lastTransitionTime") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status.value,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": self.last_transition_time,
        }


def conditions_from_object(obj: dict[str, Any]) -> list[Condition]:
    """Extract conditions from a raw API object."""
    status = obj.get("status") or {}
    raw = status.get("conditions") or []
    return [Condition.from_dict(c) for c in raw if isinstance(c, dict)]


@dataclass(frozen=True)
class HealthSnapshot:
    """Health derived from a resource's current conditions.

    A missing ``Installed`` or ``Healthy`` condition reads as False here:
    the resource is not healthy yet, which is different from having failed.
    """

    installed: bool = False
    healthy: bool = False
    conditions: tuple[Condition, ...] = ()

    @classmethod
    def from_conditions(cls, conditions: list[Condition] | tuple[Condition, ...]) -> HealthSnapshot:
        installed = False
        healthy = False
        for cond in conditions:
            if cond.type == "Installed":
                installed = cond.status is ConditionStatus.TRUE
            elif cond.type == "Healthy":
                healthy = cond.status is ConditionStatus.TRUE
        return cls(installed=installed, healthy=healthy, conditions=tuple(conditions))

    def condition(self, type_: str) -> Condition | None:
        """Return the condition of the given type, if reported."""
        for cond in self.conditions:
            if cond.type == type_:
                return cond
        return None

    def is_true(self, type_: str) -> bool:
        cond = self.condition(type_)
        return cond is not None and cond.status is ConditionStatus.TRUE

    def to_dict(self) -> dict[str, Any]:
        return {
            "installed": self.installed,
            "healthy": self.healthy,
            "conditions": [c.to_dict() for c in self.conditions],
        }


@dataclass(frozen=True)
class CredentialRecord:
    """Credential state for one backend as observed on the cluster."""

    backend: str
    secret_name: str | None
    config_name: str
    namespace: str = ""
    secret_exists: bool = False
    config_exists: bool = False

    @property
    def configured(self) -> bool:
        """True iff every object this backend needs exists.

        Backends that authenticate without a secret (in-cluster identity)
        only need their configuration object.
        """
        if self.secret_name is None:
            return self.config_exists
        return self.secret_exists and self.config_exists

    def to_dict(self) -> dict[str, Any]:
        return {
            "backend": self.backend,
            "secret_name": self.secret_name,
            "config_name": self.config_name,
            "namespace": self.namespace,
            "configured": self.configured,
        }


@dataclass(frozen=True)
class ReleaseState:
    """State of a chart release as reported by helm."""

    release: str
    namespace: str
    installed: bool
    revision: int = 0
    status: str = ""
    chart: str = ""
    app_version: str = ""
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "release": self.release,
            "namespace": self.namespace,
            "installed": self.installed,
            "revision": self.revision,
            "status": self.status,
            "chart": self.chart,
            "app_version": self.app_version,
        }
