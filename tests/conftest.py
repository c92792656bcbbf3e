"""Shared test fixtures for kindplane tests.

This module provides an in-memory cluster for exercising the bootstrap
pipeline without kind, kubectl or helm:
- FakeResourceClient: stores objects and replays scripted condition
  sequences, one step per poll tick
- cond / provider_obj / pod_obj: manifest builders
- bootstrap_ctx: a BootstrapContext over that cluster with kind and helm
  mocked
- config_file: a minimal kindplane.yaml on disk
"""

import copy
import threading
from typing import Any
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from kindplane.bootstrap.credentials import CredentialsProvisioner
from kindplane.bootstrap.crossplane import CrossplaneInstaller
from kindplane.bootstrap.health import HealthConvergencePoller
from kindplane.bootstrap.resources import ResourceClient, ref_for
from kindplane.bootstrap.stages import BootstrapContext
from kindplane.errors import AlreadyExistsError, ConflictError, NotFoundError
from kindplane.models import ResourceRef

# =============================================================================
# Manifest builders
# =============================================================================


def cond(type_: str, status: str = "True", reason: str = "", message: str = "") -> dict[str, Any]:
    """Build a status.conditions[] entry."""
    return {"type": type_, "status": status, "reason": reason, "message": message}


def provider_obj(name: str, package: str = "xpkg.example.io/provider:v1", conditions=None) -> dict[str, Any]:
    return {
        "apiVersion": "pkg.crossplane.io/v1",
        "kind": "Provider",
        "metadata": {"name": name},
        "spec": {"package": package},
        "status": {"conditions": list(conditions or [])},
    }


def pod_obj(
    name: str,
    namespace: str = "crossplane-system",
    phase: str = "Running",
    ready: bool = True,
    waiting_reason: str = "",
    restarts: int = 0,
    labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    state: dict[str, Any] = {"waiting": {"reason": waiting_reason}} if waiting_reason else {"running": {}}
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "namespace": namespace, "labels": labels or {}},
        "status": {
            "phase": phase,
            "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
            "containerStatuses": [
                {"name": "main", "ready": ready, "restartCount": restarts, "state": state},
            ],
        },
    }


# =============================================================================
# Fake cluster API
# =============================================================================


def _key(ref: ResourceRef) -> tuple[str, str, str, str]:
    return (ref.api_version, ref.kind, ref.namespace, ref.name)


class FakeResourceClient(ResourceClient):
    """In-memory ResourceClient.

    ``set_conditions(ref, tick1, tick2, ...)`` scripts what each successive
    ``get`` reports in ``status.conditions``; the last tick repeats. A tick
    may be an exception instance, which that ``get`` raises instead.
    ``fail(op, *errors)`` queues errors raised by the next calls of ``op``.
    """

    def __init__(self):
        self.objects: dict[tuple[str, str, str, str], dict[str, Any]] = {}
        self.sequences: dict[tuple[str, str, str, str], list[Any]] = {}
        self.ticks: dict[tuple[str, str, str, str], int] = {}
        self.errors: dict[str, list[Exception]] = {}
        self.calls: list[tuple[str, str]] = []
        self._version = 0
        self._lock = threading.Lock()

    # Scripting

    def add(self, obj: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            return self._store(obj)

    def set_conditions(self, ref: ResourceRef, *ticks: Any) -> None:
        self.sequences[_key(ref)] = list(ticks)
        self.ticks[_key(ref)] = 0

    def fail(self, op: str, *errors: Exception) -> None:
        self.errors.setdefault(op, []).extend(errors)

    def count(self, op: str) -> int:
        return sum(1 for call, _ in self.calls if call == op)

    # Internals

    def _store(self, obj: dict[str, Any]) -> dict[str, Any]:
        self._version += 1
        stored = copy.deepcopy(obj)
        stored.setdefault("metadata", {})["resourceVersion"] = str(self._version)
        self.objects[_key(ref_for(stored))] = stored
        return copy.deepcopy(stored)

    def _raise_queued(self, op: str) -> None:
        queued = self.errors.get(op)
        if queued:
            raise queued.pop(0)

    def _current_tick(self, key, advance: bool) -> Any:
        sequence = self.sequences[key]
        index = self.ticks[key]
        tick = sequence[min(index, len(sequence) - 1)]
        if advance:
            self.ticks[key] = index + 1
        return tick

    def _with_conditions(self, key, obj: dict[str, Any] | None, advance: bool) -> dict[str, Any]:
        tick = self._current_tick(key, advance)
        if isinstance(tick, Exception):
            raise tick
        api_version, kind, namespace, name = key
        obj = copy.deepcopy(obj) if obj else {
            "apiVersion": api_version,
            "kind": kind,
            "metadata": {"name": name, "namespace": namespace},
        }
        obj.setdefault("status", {})["conditions"] = list(tick)
        return obj

    # ResourceClient

    def get(self, ref: ResourceRef) -> dict[str, Any]:
        with self._lock:
            self.calls.append(("get", str(ref)))
            self._raise_queued("get")
            key = _key(ref)
            obj = self.objects.get(key)
            if key in self.sequences:
                return self._with_conditions(key, obj, advance=True)
            if obj is None:
                raise NotFoundError(f'{ref.kind.lower()} "{ref.name}" not found')
            return copy.deepcopy(obj)

    def list(self, ref: ResourceRef, namespace: str = "") -> list[dict[str, Any]]:
        with self._lock:
            self.calls.append(("list", ref.kind))
            self._raise_queued("list")
            namespace = namespace or ref.namespace
            keys = set(self.objects) | set(self.sequences)
            items = []
            for key in sorted(keys):
                api_version, kind, ns, _ = key
                if api_version != ref.api_version or kind != ref.kind:
                    continue
                if namespace and ns != namespace:
                    continue
                obj = self.objects.get(key)
                if key in self.sequences:
                    obj = self._with_conditions(key, obj, advance=False)
                items.append(copy.deepcopy(obj))
            return items

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            ref = ref_for(obj)
            self.calls.append(("create", str(ref)))
            self._raise_queued("create")
            if _key(ref) in self.objects:
                raise AlreadyExistsError(f'{ref.kind.lower()} "{ref.name}" already exists')
            return self._store(obj)

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            ref = ref_for(obj)
            self.calls.append(("update", str(ref)))
            self._raise_queued("update")
            live = self.objects.get(_key(ref))
            if live is None:
                raise NotFoundError(f'{ref.kind.lower()} "{ref.name}" not found')
            expected = (obj.get("metadata") or {}).get("resourceVersion")
            if expected and expected != live["metadata"]["resourceVersion"]:
                raise ConflictError(f"the object {ref} has been modified")
            return self._store(obj)

    def delete(self, ref: ResourceRef) -> None:
        with self._lock:
            self.calls.append(("delete", str(ref)))
            self._raise_queued("delete")
            if self.objects.pop(_key(ref), None) is None:
                raise NotFoundError(f'{ref.kind.lower()} "{ref.name}" not found')


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_client():
    """Create an empty in-memory cluster."""
    return FakeResourceClient()


@pytest.fixture
def runner():
    """Create CLI runner."""
    return CliRunner()


@pytest.fixture
def bootstrap_ctx(fake_client):
    """BootstrapContext over the in-memory cluster with kind and helm mocked.

    The kind cluster reports that it already exists.
    """
    cluster = MagicMock()
    cluster.name = "dev"
    cluster.context = "kind-dev"
    cluster.exists.return_value = True
    helm = MagicMock()
    poller = HealthConvergencePoller(fake_client, poll_interval=0.01)
    return BootstrapContext(
        cluster=cluster,
        client=fake_client,
        helm=helm,
        poller=poller,
        crossplane=CrossplaneInstaller(fake_client, helm, poller),
        credentials=CredentialsProvisioner(fake_client),
    )


MINIMAL_CONFIG = """\
cluster:
  name: dev
crossplane:
  version: "1.15.0"
  providers:
    - name: example
      package: xpkg.example.io/provider-example:v1.0.0
charts:
  - name: ingress
    repo: https://kubernetes.github.io/ingress-nginx
    chart: ingress-nginx
    namespace: ingress
"""


@pytest.fixture
def config_file(tmp_path):
    """Write a minimal kindplane.yaml and return its path."""
    path = tmp_path / "kindplane.yaml"
    path.write_text(MINIMAL_CONFIG)
    return path


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep tests away from the real ~/.kindplane settings and environment."""
    for var in ("KINDPLANE_CONFIG", "KINDPLANE_TIMEOUT", "KINDPLANE_OUTPUT_FORMAT", "KINDPLANE_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("kindplane.config.SETTINGS_FILE", tmp_path / "settings" / "config.yaml")
