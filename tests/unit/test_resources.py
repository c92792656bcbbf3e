"""Unit tests for cluster API access and upsert."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from kindplane.bootstrap.resources import (
    DEPLOYMENT,
    PROVIDER,
    SECRET,
    KubectlResourceClient,
    ref_for,
    upsert,
)
from kindplane.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResourceError,
    TransientError,
)
from kindplane.models import ResourceRef

SECRET_MANIFEST = {
    "apiVersion": "v1",
    "kind": "Secret",
    "metadata": {"name": "aws-creds", "namespace": "crossplane-system"},
    "stringData": {"creds": "x"},
}


class TestResourceRef:
    """Tests for ResourceRef helpers."""

    def test_resource_type_grouped(self):
        """Test that grouped kinds use the fully-qualified type."""
        assert PROVIDER.resource_type == "provider.v1.pkg.crossplane.io"
        assert DEPLOYMENT.resource_type == "deployment.v1.apps"

    def test_resource_type_core(self):
        """Test that core kinds use the bare lowercase kind."""
        assert SECRET.resource_type == "secret"
        assert SECRET.api_version == "v1"

    def test_ref_for_manifest(self):
        """Test deriving a ref from a manifest dict."""
        ref = ref_for(SECRET_MANIFEST)
        assert ref.group == ""
        assert ref.version == "v1"
        assert ref.name == "aws-creds"
        assert ref.namespace == "crossplane-system"
        assert str(ref) == "Secret/crossplane-system/aws-creds"


class TestKubectlResourceClient:
    """Tests for KubectlResourceClient with kubectl mocked."""

    def test_get_builds_command(self):
        """Test that get passes context, type, name and namespace."""
        client = KubectlResourceClient(kubeconfig="/tmp/kc", context="kind-dev")
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout='{"kind": "Secret"}', stderr="")
            obj = client.get(ResourceRef("", "v1", "Secret", "aws-creds", "ns"))

        assert obj == {"kind": "Secret"}
        cmd = mock_run.call_args[0][0]
        assert cmd[:5] == ["kubectl", "--kubeconfig", "/tmp/kc", "--context", "kind-dev"]
        assert cmd[5:] == ["get", "secret", "aws-creds", "-n", "ns", "-o", "json"]

    def test_list_returns_items(self):
        """Test that list unwraps the items array."""
        client = KubectlResourceClient()
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(
                returncode=0, stdout=json.dumps({"items": [{"metadata": {"name": "a"}}]}), stderr=""
            )
            items = client.list(PROVIDER)

        assert items == [{"metadata": {"name": "a"}}]
        assert mock_run.call_args[0][0] == ["kubectl", "get", "provider.v1.pkg.crossplane.io", "-o", "json"]

    def test_create_sends_json_on_stdin(self):
        """Test that create streams the manifest to kubectl."""
        client = KubectlResourceClient()
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="{}", stderr="")
            client.create(SECRET_MANIFEST)

        assert json.loads(mock_run.call_args[1]["input"]) == SECRET_MANIFEST
        assert mock_run.call_args[0][0] == ["kubectl", "create", "-f", "-", "-o", "json"]

    @pytest.mark.parametrize(
        "stderr,error_type",
        [
            ('Error from server (NotFound): secrets "x" not found', NotFoundError),
            ('Error from server (AlreadyExists): secrets "x" already exists', AlreadyExistsError),
            ("Error from server (Conflict): the object has been modified", ConflictError),
            ("Error from server (ServiceUnavailable): the server is currently unable", TransientError),
            ("The connection to the server localhost:6443 was refused - connection refused", TransientError),
            ("Error from server (Forbidden): secrets is forbidden", ResourceError),
        ],
    )
    def test_error_translation(self, stderr, error_type):
        """Test that kubectl failure reasons map onto typed errors."""
        client = KubectlResourceClient()
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1, stdout="", stderr=stderr)
            with pytest.raises(error_type):
                client.get(SECRET.named("x"))

    def test_forbidden_is_not_transient(self):
        """Test that non-retryable errors are not TransientError."""
        error = KubectlResourceClient._translate_error("Error from server (Forbidden): nope")
        assert not isinstance(error, TransientError)

    def test_kubectl_missing(self):
        """Test that a missing kubectl binary is a ResourceError."""
        client = KubectlResourceClient()
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(ResourceError, match="kubectl not found"):
                client.get(SECRET.named("x"))

    def test_timeout_is_transient(self):
        """Test that a subprocess timeout is retryable."""
        client = KubectlResourceClient(timeout=1)
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("kubectl", 1)):
            with pytest.raises(TransientError):
                client.get(SECRET.named("x"))


class TestUpsert:
    """Tests for upsert against the in-memory client."""

    def test_creates_when_absent(self, fake_client):
        """Test that a new object is created."""
        upsert(fake_client, SECRET_MANIFEST)

        assert fake_client.count("create") == 1
        assert fake_client.count("update") == 0
        assert fake_client.exists(ref_for(SECRET_MANIFEST))

    def test_updates_when_present(self, fake_client):
        """Test that an existing object is replaced with the live resourceVersion."""
        fake_client.add(SECRET_MANIFEST)
        desired = {**SECRET_MANIFEST, "stringData": {"creds": "new"}}

        stored = upsert(fake_client, desired)

        assert stored["stringData"] == {"creds": "new"}
        assert fake_client.count("update") == 1

    def test_idempotent(self, fake_client):
        """Test that repeated upserts leave exactly one object."""
        for _ in range(3):
            upsert(fake_client, SECRET_MANIFEST)

        secrets = fake_client.list(SECRET, "crossplane-system")
        assert len(secrets) == 1

    def test_retries_conflict(self, fake_client):
        """Test that a conflicting update is retried with backoff."""
        fake_client.add(SECRET_MANIFEST)
        fake_client.fail("update", ConflictError("modified"), ConflictError("modified"))

        with patch("kindplane.bootstrap.resources.time.sleep") as mock_sleep:
            upsert(fake_client, SECRET_MANIFEST, max_retries=3, retry_delay=0.5)

        assert fake_client.count("update") == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    def test_conflict_exhausts_retries(self, fake_client):
        """Test that ConflictError surfaces after the last retry."""
        fake_client.add(SECRET_MANIFEST)
        fake_client.fail("update", *[ConflictError("modified") for _ in range(3)])

        with patch("kindplane.bootstrap.resources.time.sleep"):
            with pytest.raises(ConflictError):
                upsert(fake_client, SECRET_MANIFEST, max_retries=2)

    def test_recreates_if_deleted_between_calls(self, fake_client):
        """Test that an object vanishing after AlreadyExists is created again."""
        fake_client.fail("create", AlreadyExistsError("exists"))

        upsert(fake_client, SECRET_MANIFEST)

        assert fake_client.count("create") == 2
        assert fake_client.exists(ref_for(SECRET_MANIFEST))
