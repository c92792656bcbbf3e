"""Unit tests for provider credential provisioning."""

import json

import pytest

from kindplane.bootstrap.credentials import (
    AWSBackend,
    CredentialBackend,
    CredentialsProvisioner,
    EnvironmentSource,
    ExplicitSource,
    InClusterSource,
    KubeconfigSource,
    MaterialSource,
    ProfileSource,
    get_backend,
    source_for,
)
from kindplane.bootstrap.resources import SECRET
from kindplane.errors import CredentialError, MissingCredentialError, ValidationError

AWS_MATERIAL = {"access_key_id": "AKIAEXAMPLE", "secret_access_key": "s3cr3t"}
AZURE_MATERIAL = {
    "client_id": "cid",
    "client_secret": "csecret",
    "tenant_id": "tid",
    "subscription_id": "sid",
}


class TestBackends:
    """Tests for backend rendering and validation."""

    def test_base_is_abstract(self):
        """Test that a backend must implement render."""
        with pytest.raises(TypeError):
            CredentialBackend()

    def test_get_backend_unknown(self):
        """Test that an unknown backend name lists the valid ones."""
        with pytest.raises(ValidationError, match="aws, azure, kubernetes"):
            get_backend("gcp")

    def test_aws_render(self):
        """Test the AWS shared-credentials payload."""
        text = AWSBackend().render({**AWS_MATERIAL, "session_token": "tok"})
        assert text.splitlines() == [
            "[default]",
            "aws_access_key_id = AKIAEXAMPLE",
            "aws_secret_access_key = s3cr3t",
            "aws_session_token = tok",
        ]

    def test_azure_render(self):
        """Test that Azure material renders as service principal JSON."""
        payload = json.loads(get_backend("azure").render(AZURE_MATERIAL))
        assert payload == {
            "clientId": "cid",
            "clientSecret": "csecret",
            "tenantId": "tid",
            "subscriptionId": "sid",
        }

    def test_validate_names_missing_field_and_env_var(self):
        """Test that the missing field and its environment variable are reported."""
        with pytest.raises(MissingCredentialError) as exc_info:
            AWSBackend().validate({"access_key_id": "x"})

        assert exc_info.value.field == "secret_access_key"
        assert "AWS_SECRET_ACCESS_KEY" in exc_info.value.message

    def test_validate_drops_unknown_and_empty(self):
        """Test that only known, non-empty fields survive."""
        material = AWSBackend().validate({**AWS_MATERIAL, "session_token": "", "region": "eu-west-1"})
        assert material == AWS_MATERIAL

    def test_config_manifest_references_secret(self):
        """Test that the ProviderConfig points at the Secret, not its contents."""
        manifest = AWSBackend().config_manifest()
        assert manifest["apiVersion"] == "aws.upbound.io/v1beta1"
        assert manifest["spec"]["credentials"] == {
            "source": "Secret",
            "secretRef": {"namespace": "crossplane-system", "name": "aws-creds", "key": "creds"},
        }


class TestSources:
    """Tests for credential material sources."""

    def test_base_is_abstract(self):
        """Test that a source must implement load."""
        with pytest.raises(TypeError):
            MaterialSource()

    def test_environment_source(self):
        """Test reading AWS variables from a supplied environment."""
        source = EnvironmentSource({"AWS_ACCESS_KEY_ID": "AKIA", "AWS_SECRET_ACCESS_KEY": "sk"})
        material = source.load(AWSBackend())
        assert material["access_key_id"] == "AKIA"
        assert material["secret_access_key"] == "sk"
        assert material["session_token"] == ""

    def test_environment_source_unsupported_backend(self):
        """Test that kubernetes has no environment source."""
        with pytest.raises(CredentialError, match="not a supported source"):
            EnvironmentSource({}).load(get_backend("kubernetes"))

    def test_profile_source(self, tmp_path):
        """Test reading a named profile from a credentials file."""
        path = tmp_path / "credentials"
        path.write_text(
            "[default]\naws_access_key_id = A\naws_secret_access_key = B\n"
            "[work]\naws_access_key_id = C\naws_secret_access_key = D\naws_session_token = T\n"
        )

        material = ProfileSource("work", path).load(AWSBackend())

        assert material == {"access_key_id": "C", "secret_access_key": "D", "session_token": "T"}

    def test_profile_source_missing_profile(self, tmp_path):
        """Test that an absent profile is a CredentialError."""
        path = tmp_path / "credentials"
        path.write_text("[default]\naws_access_key_id = A\n")

        with pytest.raises(CredentialError, match="profile 'work' not found"):
            ProfileSource("work", path).load(AWSBackend())

    def test_profile_source_missing_file(self, tmp_path):
        """Test that an unreadable file is a CredentialError."""
        with pytest.raises(CredentialError, match="failed to load AWS credentials file"):
            ProfileSource("default", tmp_path / "nope").load(AWSBackend())

    def test_profile_source_only_for_aws(self, tmp_path):
        """Test that profile is refused for other backends."""
        with pytest.raises(CredentialError, match="only supported for aws"):
            ProfileSource("default", tmp_path / "credentials").load(get_backend("azure"))

    def test_kubeconfig_source(self, tmp_path):
        """Test that the kubeconfig file is stored whole."""
        path = tmp_path / "config"
        path.write_text("apiVersion: v1\nkind: Config\n")
        assert KubeconfigSource(path).load(get_backend("kubernetes")) == {
            "kubeconfig": "apiVersion: v1\nkind: Config\n"
        }

    @pytest.mark.parametrize(
        "name,source_type",
        [
            ("env", EnvironmentSource),
            ("profile", ProfileSource),
            ("explicit", ExplicitSource),
            ("kubeconfig", KubeconfigSource),
            ("incluster", InClusterSource),
            ("in-cluster", InClusterSource),
        ],
    )
    def test_source_for(self, name, source_type):
        """Test that source names map onto source classes."""
        assert isinstance(source_for(name), source_type)

    def test_source_for_unknown(self):
        """Test that an unknown source name is rejected."""
        with pytest.raises(ValidationError, match="unknown credentials source"):
            source_for("vault")


class TestCredentialsProvisioner:
    """Tests for CredentialsProvisioner against the in-memory client."""

    def test_configure_creates_secret_and_config(self, fake_client):
        """Test that configure stores material in a Secret referenced by the ProviderConfig."""
        provisioner = CredentialsProvisioner(fake_client)

        record = provisioner.configure("aws", ExplicitSource(AWS_MATERIAL))

        secret = fake_client.get(AWSBackend().secret_ref())
        assert "aws_access_key_id = AKIAEXAMPLE" in secret["stringData"]["creds"]
        config = fake_client.get(AWSBackend().config_ref)
        assert "AKIAEXAMPLE" not in json.dumps(config)
        assert record.secret_exists and record.config_exists
        assert record.secret_name == "aws-creds"

    def test_configure_is_idempotent(self, fake_client):
        """Test that configuring twice leaves one Secret and one ProviderConfig."""
        provisioner = CredentialsProvisioner(fake_client)

        provisioner.configure("aws", ExplicitSource(AWS_MATERIAL))
        provisioner.configure("aws", ExplicitSource({**AWS_MATERIAL, "secret_access_key": "rotated"}))

        secrets = fake_client.list(SECRET, "crossplane-system")
        assert len(secrets) == 1
        assert "rotated" in secrets[0]["stringData"]["creds"]
        assert len(fake_client.list(AWSBackend().config_ref)) == 1

    def test_missing_field_fails_before_api_calls(self, fake_client):
        """Test that validation happens before touching the cluster."""
        provisioner = CredentialsProvisioner(fake_client)

        with pytest.raises(MissingCredentialError):
            provisioner.configure("azure", ExplicitSource({"client_id": "cid"}))

        assert fake_client.calls == []

    def test_injected_identity_has_no_secret(self, fake_client):
        """Test that in-cluster identity writes only a ProviderConfig."""
        provisioner = CredentialsProvisioner(fake_client)

        record = provisioner.configure("kubernetes", InClusterSource())

        assert record.secret_name is None
        assert fake_client.count("create") == 1
        config = fake_client.get(get_backend("kubernetes").config_ref)
        assert config["spec"]["credentials"] == {"source": "InjectedIdentity"}

    def test_injected_identity_unsupported(self, fake_client):
        """Test that aws refuses in-cluster identity."""
        with pytest.raises(CredentialError, match="in-cluster identity is not supported"):
            CredentialsProvisioner(fake_client).configure("aws", InClusterSource())

    def test_status_after_configure(self, fake_client):
        """Test reading back a configured backend."""
        provisioner = CredentialsProvisioner(fake_client)
        provisioner.configure("azure", ExplicitSource(AZURE_MATERIAL))

        record = provisioner.status("azure")

        assert record.config_exists is True
        assert record.secret_exists is True
        assert record.secret_name == "azure-creds"

    def test_list_credentials_covers_every_backend(self, fake_client):
        """Test that list reports each backend, configured or not."""
        provisioner = CredentialsProvisioner(fake_client)
        provisioner.configure("aws", ExplicitSource(AWS_MATERIAL))

        records = {r.backend: r for r in provisioner.list_credentials()}

        assert set(records) == {"aws", "azure", "kubernetes"}
        assert records["aws"].config_exists is True
        assert records["azure"].config_exists is False
        assert records["azure"].secret_exists is False
