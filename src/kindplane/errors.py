"""Error types for kindplane.

Leaf components raise these typed errors; the bootstrap pipeline decides
whether a failure aborts the run or degrades to a warning. Failures of the
external tools (kubectl, helm, kind) are translated into this hierarchy in
the client that runs them, so callers only ever branch on exception types.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import HealthSnapshot, ResourceRef


class KindplaneError(Exception):
    """Base error for all kindplane failures."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dict."""
        data: dict[str, Any] = {"type": type(self).__name__, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ValidationError(KindplaneError):
    """Malformed configuration or user input."""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or []
        super().__init__(message, {"errors": self.errors} if self.errors else None)


class MalformedOverrideError(ValidationError):
    """A key=value override could not be parsed or would be ambiguous."""

    def __init__(self, override: str, reason: str):
        self.override = override
        self.reason = reason
        super().__init__(f"invalid override {override!r}: {reason}")


# ---------------------------------------------------------------------------
# Cluster API
# ---------------------------------------------------------------------------


class NotFoundError(KindplaneError):
    """Target object is absent when an operation presumes it exists."""


class TransientError(KindplaneError):
    """A single API call failed in a way that may succeed on retry."""


class AlreadyExistsError(TransientError):
    """Create was rejected because the object already exists."""


class ConflictError(TransientError):
    """Update was rejected because the object changed underneath us."""


class ResourceError(KindplaneError):
    """Non-retryable failure talking to the cluster API."""


class ClusterError(KindplaneError):
    """Cluster runtime (kind) operation failed."""


# ---------------------------------------------------------------------------
# Convergence
# ---------------------------------------------------------------------------


class ConvergenceError(KindplaneError):
    """A resource never satisfied its health predicate."""

    def __init__(
        self,
        message: str,
        ref: ResourceRef | None = None,
        snapshot: HealthSnapshot | None = None,
        attempts: int = 0,
    ):
        self.ref = ref
        self.snapshot = snapshot
        self.attempts = attempts
        details: dict[str, Any] = {"attempts": attempts}
        if ref is not None:
            details["resource"] = str(ref)
        if snapshot is not None:
            details["snapshot"] = snapshot.to_dict()
        super().__init__(message, details)


class ConvergenceTimeoutError(ConvergenceError):
    """Deadline elapsed before the predicate held."""

    def __init__(self, ref=None, snapshot=None, attempts: int = 0):
        super().__init__("timed out waiting for health", ref, snapshot, attempts)


class ConvergenceCancelledError(ConvergenceError):
    """Polling was cancelled before the predicate held."""

    def __init__(self, ref=None, snapshot=None, attempts: int = 0):
        super().__init__("cancelled while waiting for health", ref, snapshot, attempts)


class UnreachableError(ConvergenceError):
    """Too many consecutive fetch failures while polling."""

    def __init__(self, ref=None, snapshot=None, attempts: int = 0, last_error: str = ""):
        self.last_error = last_error
        message = "resource unreachable"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message, ref, snapshot, attempts)


class AggregateConvergenceError(ConvergenceError):
    """One or more resources in a fan-out wait failed to converge."""

    def __init__(self, failures: list[ConvergenceError]):
        self.failures = failures
        if failures and all(isinstance(f, ConvergenceTimeoutError) for f in failures):
            message = "timed out waiting for health"
        else:
            message = f"{len(failures)} resource(s) failed to converge"
        super().__init__(message)
        self.details["failures"] = [f.to_dict() for f in failures]


# ---------------------------------------------------------------------------
# Credentials and charts
# ---------------------------------------------------------------------------


class CredentialError(KindplaneError):
    """Credential material is missing, malformed or could not be stored."""


class MissingCredentialError(CredentialError):
    """A required credential field has no value."""

    def __init__(self, backend: str, field: str, hint: str = ""):
        self.backend = backend
        self.field = field
        message = f"{backend}: missing credential field {field!r}"
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message, {"backend": backend, "field": field})


class InstallError(KindplaneError):
    """A chart install, upgrade or uninstall failed."""


class ConfirmationRequiredError(InstallError):
    """A destructive operation was not confirmed."""
