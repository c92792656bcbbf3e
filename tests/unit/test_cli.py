"""Unit tests for the kindplane CLI commands.

BootstrapContext.for_config is patched to return the in-memory cluster from
conftest, so commands run without kind, kubectl or helm.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kindplane.bootstrap.pipeline import PipelineResult, StageResult, StageStatus
from kindplane.bootstrap.resources import PROVIDER
from kindplane.bootstrap.stages import BootstrapContext
from kindplane.main import cli
from kindplane.models import ReleaseState
from kindplane.version import CheckResult

from ..conftest import cond, pod_obj, provider_obj

HEALTHY = [cond("Installed"), cond("Healthy")]
STUCK = [cond("Installed"), cond("Healthy", "False", "UnhealthyPackageRevision", "cannot resolve package")]


@pytest.fixture
def wired(bootstrap_ctx):
    """Route every command's BootstrapContext to the in-memory cluster."""
    with patch.object(BootstrapContext, "for_config", return_value=bootstrap_ctx):
        yield bootstrap_ctx


def invoke(runner, config_file, *args, input=None):
    return runner.invoke(cli, ["-c", str(config_file), *args], obj={}, input=input)


class TestGlobalOptions:
    """Tests for the top-level group."""

    def test_help(self, runner):
        """Test that --help lists the commands."""
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("up", "down", "status", "provider", "credentials", "chart", "config", "diagnostics"):
            assert command in result.output

    def test_missing_config_file(self, runner, tmp_path):
        """Test that a missing project file is reported with exit 1."""
        result = invoke(runner, tmp_path / "nope.yaml", "provider", "list")

        assert result.exit_code == 1
        assert "config file not found" in result.output

    def test_invalid_config_lists_errors(self, runner, tmp_path):
        """Test that every validation error is printed."""
        path = tmp_path / "kindplane.yaml"
        path.write_text("cluster:\n  name: dev\n  nodes:\n    workers: -1\n")

        result = invoke(runner, path, "provider", "list")

        assert result.exit_code == 1
        assert "cluster.nodes.workers cannot be negative" in result.output
        assert "crossplane.version is required" in result.output


class TestVersion:
    """Tests for the version command."""

    def test_version(self, runner):
        """Test the plain version line."""
        result = runner.invoke(cli, ["version"])

        assert result.exit_code == 0
        assert "kindplane version" in result.output

    def test_version_check(self, runner):
        """Test that --check reports an available update."""
        check = CheckResult("0.1.0", "v0.2.0", True, "https://github.com/kanzifucius/kindplane/releases/tag/v0.2.0")
        with patch("kindplane.main.check_for_update", new=AsyncMock(return_value=check)):
            result = runner.invoke(cli, ["version", "--check"])

        assert result.exit_code == 0
        assert "A new version is available: v0.2.0" in result.output

    def test_version_json(self, runner):
        """Test JSON output when the check fails."""
        with patch("kindplane.main.check_for_update", new=AsyncMock(return_value=None)):
            result = runner.invoke(cli, ["--format", "json", "version", "--check"])

        data = json.loads(result.output)
        assert "version" in data
        assert data["update"] is None


class TestUp:
    """Tests for kindplane up."""

    def test_success(self, runner, config_file, wired, fake_client):
        """Test a run where every component becomes healthy."""
        fake_client.set_conditions(wired.crossplane.deployment_ref, [cond("Available")])
        fake_client.set_conditions(PROVIDER.named("example"), HEALTHY)

        result = invoke(runner, config_file, "up")

        assert result.exit_code == 0
        assert "Bootstrapping cluster 'dev'" in result.output
        assert "✓ Bootstrap complete!" in result.output
        releases = [call.args[0].release for call in wired.helm.install.call_args_list]
        assert releases == ["crossplane", "ingress"]

    def test_unhealthy_provider_fails(self, runner, config_file, wired, fake_client):
        """Test that a stuck provider exits 1 and prints its diagnostics."""
        fake_client.set_conditions(wired.crossplane.deployment_ref, [cond("Available")])
        fake_client.set_conditions(PROVIDER.named("example"), STUCK)

        result = invoke(runner, config_file, "up", "--timeout", "0.2s")

        assert result.exit_code == 1
        assert "✗ Bootstrap failed at: providers" in result.output
        assert "example: Healthy - cannot resolve package" in result.output

    def test_cancelled(self, runner, config_file, wired):
        """Test that an interrupted run exits 130 without a failure summary."""
        cancelled = PipelineResult([StageResult("providers", StageStatus.CANCELLED, reason="cancelled")], cancelled=True)
        with patch("kindplane.commands.cluster.run_pipeline", new=AsyncMock(return_value=cancelled)):
            result = invoke(runner, config_file, "up")

        assert result.exit_code == 130
        assert "⊘ Bootstrap cancelled" in result.output
        assert "Bootstrap failed" not in result.output

    def test_skip_flags(self, runner, config_file, wired):
        """Test that skipped stages do not touch helm."""
        result = invoke(runner, config_file, "up", "--skip-crossplane", "--skip-providers", "--skip-charts")

        assert result.exit_code == 0
        wired.helm.install.assert_not_called()
        assert "crossplane skipped: --skip-crossplane" in result.output

    def test_json_output(self, runner, config_file, wired, fake_client):
        """Test that --format json prints the pipeline result."""
        fake_client.set_conditions(wired.crossplane.deployment_ref, [cond("Available")])
        fake_client.set_conditions(PROVIDER.named("example"), HEALTHY)

        result = invoke(runner, config_file, "--format", "json", "up")

        data = json.loads(result.output)
        assert result.exit_code == 0
        assert data["succeeded"] is True
        assert [s["name"] for s in data["stages"]] == [
            "cluster",
            "crossplane",
            "providers",
            "credentials",
            "chart:ingress",
        ]

    def test_invalid_timeout(self, runner, config_file, wired):
        """Test that a malformed --timeout is rejected."""
        result = invoke(runner, config_file, "up", "--timeout", "soon")

        assert result.exit_code == 1
        assert "invalid duration" in result.output


class TestDown:
    """Tests for kindplane down."""

    @pytest.fixture
    def kind_cluster(self):
        with patch("kindplane.commands.cluster.KindCluster") as mock_class:
            cluster = MagicMock()
            cluster.name = "dev"
            mock_class.return_value = cluster
            yield cluster

    def test_missing_cluster(self, runner, config_file, kind_cluster):
        """Test that deleting an absent cluster is a no-op."""
        kind_cluster.exists.return_value = False

        result = invoke(runner, config_file, "down")

        assert result.exit_code == 0
        assert "Cluster 'dev' does not exist" in result.output
        kind_cluster.delete.assert_not_called()

    def test_confirmed(self, runner, config_file, kind_cluster):
        """Test deletion after answering yes."""
        kind_cluster.exists.return_value = True

        result = invoke(runner, config_file, "down", input="y\n")

        assert result.exit_code == 0
        assert "✓ Cluster 'dev' deleted" in result.output
        kind_cluster.delete.assert_called_once()

    def test_declined(self, runner, config_file, kind_cluster):
        """Test that answering no aborts."""
        kind_cluster.exists.return_value = True

        result = invoke(runner, config_file, "down", input="n\n")

        assert result.exit_code == 1
        assert "Aborted." in result.output
        kind_cluster.delete.assert_not_called()

    def test_force_json(self, runner, config_file, kind_cluster):
        """Test --force skips the prompt."""
        kind_cluster.exists.return_value = True

        result = invoke(runner, config_file, "--format", "json", "down", "--force")

        assert json.loads(result.output) == {"cluster": "dev", "deleted": True}


class TestStatus:
    """Tests for kindplane status."""

    def test_cluster_missing(self, runner, config_file, wired):
        """Test the hint when the cluster does not exist."""
        wired.cluster.exists.return_value = False

        result = invoke(runner, config_file, "status")

        assert result.exit_code == 0
        assert "Cluster 'dev' does not exist" in result.output

    def test_json(self, runner, config_file, wired, fake_client):
        """Test the combined status document."""
        wired.helm.release_state.return_value = ReleaseState(
            release="crossplane", namespace="crossplane-system", installed=True, app_version="1.15.0"
        )
        fake_client.add(pod_obj("crossplane-abc", labels={"app": "crossplane"}))
        fake_client.add(provider_obj("example", conditions=HEALTHY))

        result = invoke(runner, config_file, "--format", "json", "status")

        data = json.loads(result.output)
        assert data["cluster"] == {"name": "dev", "exists": True, "context": "kind-dev"}
        assert data["crossplane"]["ready"] is True
        assert [p["name"] for p in data["providers"]] == ["example"]

    def test_text(self, runner, config_file, wired):
        """Test the text summary when Crossplane is not installed."""
        wired.helm.release_state.return_value = ReleaseState(
            release="crossplane", namespace="crossplane-system", installed=False
        )

        result = invoke(runner, config_file, "status")

        assert result.exit_code == 0
        assert "✓ Cluster 'dev' (context: kind-dev)" in result.output
        assert "✗ Crossplane: not installed" in result.output


class TestDiagnostics:
    """Tests for kindplane diagnostics."""

    def test_no_problems(self, runner, config_file, wired, fake_client):
        """Test a healthy install."""
        fake_client.add(provider_obj("example", conditions=HEALTHY))
        fake_client.add(pod_obj("crossplane-abc"))

        result = invoke(runner, config_file, "diagnostics")

        assert result.exit_code == 0
        assert "✓ No problems found" in result.output

    def test_problems_json(self, runner, config_file, wired, fake_client):
        """Test that provider and pod errors are collected together."""
        fake_client.add(provider_obj("example", conditions=STUCK))
        fake_client.add(pod_obj("provider-example-xyz", ready=False, waiting_reason="ImagePullBackOff"))

        result = invoke(runner, config_file, "--format", "json", "diagnostics")

        data = json.loads(result.output)
        assert data["errors"] == [
            "example: Healthy - cannot resolve package",
            "provider-example-xyz/main: ImagePullBackOff",
        ]

    def test_problem_count(self, runner, config_file, wired, fake_client):
        """Test the problem summary line."""
        fake_client.add(provider_obj("example", conditions=STUCK))

        result = invoke(runner, config_file, "diagnostics")

        assert "✗ 1 problem(s) found" in result.output
