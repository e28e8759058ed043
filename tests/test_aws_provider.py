"""Tests for the AWS Secrets Manager provider with a mocked boto3 client."""
import base64
from datetime import datetime, timezone
from unittest import mock

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from env_sync.secrets.domains.aws_client import AwsSecretsManagerProvider
from env_sync.secrets.domains.models import EnvSyncError


def client_error(code, operation="DescribeSecret"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def b64(text):
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


@pytest.fixture
def client():
    return mock.MagicMock()


@pytest.fixture
def provider(tmp_path, client):
    provider = AwsSecretsManagerProvider(settings={"region": "eu-west-1"}, base_dir=str(tmp_path))
    provider.get_client = lambda config: client
    provider.get_git_info = lambda: {"org": "acme", "repo": "shop"}
    return provider


class TestClient:
    """Test client construction and authentication checks."""

    def test_session_from_profile(self, tmp_path):
        provider = AwsSecretsManagerProvider(settings={"region": "eu-west-1", "profile": "dev"}, base_dir=str(tmp_path))

        with mock.patch("boto3.Session") as session:
            provider.get_client({})

        session.assert_called_once_with(region_name="eu-west-1", profile_name="dev")
        session.return_value.client.assert_called_once_with("secretsmanager")

    def test_session_from_keys(self, tmp_path):
        provider = AwsSecretsManagerProvider(settings={"key": "AKIA", "secret": "s3cret"}, base_dir=str(tmp_path))

        with mock.patch("boto3.Session") as session:
            provider.get_client({"region": "us-west-2"})

        session.assert_called_once_with(
            region_name="us-west-2",
            aws_access_key_id="AKIA",
            aws_secret_access_key="s3cret",
        )

    def test_client_is_cached(self, tmp_path):
        provider = AwsSecretsManagerProvider(base_dir=str(tmp_path))

        with mock.patch("boto3.Session") as session:
            first = provider.get_client({})
            second = provider.get_client({})

        assert first is second
        session.assert_called_once()

    def test_client_per_region(self, tmp_path):
        provider = AwsSecretsManagerProvider(settings={"region": "us-east-1"}, base_dir=str(tmp_path))

        with mock.patch("boto3.Session") as session:
            provider.get_client({})
            provider.get_client({"region": "eu-west-1"})
            provider.get_client({"region": "eu-west-1"})

        regions = [call.kwargs["region_name"] for call in session.call_args_list]
        assert regions == ["us-east-1", "eu-west-1"]

    def test_authenticated(self, provider, client):
        assert provider.is_authenticated() is True
        client.list_secrets.assert_called_once_with(MaxResults=1)

    def test_no_credentials(self, provider, client):
        client.list_secrets.side_effect = NoCredentialsError()

        assert provider.is_authenticated() is False

    def test_invalid_credentials(self, provider, client):
        client.list_secrets.side_effect = client_error("UnrecognizedClientException", "ListSecrets")

        assert provider.is_authenticated() is False

    def test_always_available(self, provider):
        assert provider.is_available() is True
        assert provider.get_name() == "AWS Secrets Manager"
        assert "aws configure" in provider.get_auth_instructions()
        assert "awscli" in provider.get_install_instructions()


class TestSecretNames:
    """Test secret name generation."""

    def test_org_repo_environment(self, provider):
        assert provider.generate_secret_name("staging", {}) == "acme/shop/staging"

    def test_prefix(self, provider):
        assert provider.generate_secret_name("local", {"prefix": "apps/"}) == "apps/acme/shop/local"

    def test_custom_name(self, provider):
        assert provider.generate_secret_name("local", {"secretName": "prod/api"}) == "prod/api"

    def test_repo_only(self, provider):
        provider.get_git_info = lambda: {"repo": "shop"}

        assert provider.generate_secret_name("local", {}) == "shop/local"


class TestPush:
    """Test pushing environment files."""

    def test_creates_secret_with_tags(self, provider, client, tmp_path):
        (tmp_path / ".env.staging").write_text("A=1\n")
        client.describe_secret.side_effect = client_error("ResourceNotFoundException")

        provider.push({"environment": "staging"})

        kwargs = client.create_secret.call_args.kwargs
        assert kwargs["Name"] == "acme/shop/staging"
        assert kwargs["SecretString"] == b64("A=1\n")
        assert kwargs["Description"] == "Environment variables for staging environment"
        assert {"Key": "Environment", "Value": "staging"} in kwargs["Tags"]
        assert {"Key": "Format", "Value": "base64"} in kwargs["Tags"]
        client.update_secret.assert_not_called()

    def test_updates_existing_secret(self, provider, client, tmp_path):
        (tmp_path / ".env").write_text("A=2\n")
        client.get_secret_value.return_value = {"SecretString": b64("A=1\n")}

        provider.push({"environment": "local"})

        client.update_secret.assert_called_once_with(
            SecretId="acme/shop/local",
            SecretString=b64("A=2\n"),
            Description="Environment variables for local environment",
        )

    def test_identical_refused_without_force(self, provider, client, tmp_path):
        (tmp_path / ".env").write_text("A=1\n")
        client.get_secret_value.return_value = {"SecretString": b64("A=1\n")}

        with pytest.raises(EnvSyncError) as exc_info:
            provider.push({"environment": "local"})

        assert "Files are identical - no push needed" in str(exc_info.value)
        client.update_secret.assert_not_called()

    def test_force_updates_identical(self, provider, client, tmp_path):
        (tmp_path / ".env").write_text("A=1\n")
        client.get_secret_value.return_value = {"SecretString": b64("A=1\n")}

        provider.push({"environment": "local", "force": True})

        client.update_secret.assert_called_once()

    def test_create_failure(self, provider, client, tmp_path):
        (tmp_path / ".env").write_text("A=1\n")
        client.describe_secret.side_effect = client_error("ResourceNotFoundException")
        client.create_secret.side_effect = client_error("LimitExceededException", "CreateSecret")

        with pytest.raises(EnvSyncError) as exc_info:
            provider.push({"environment": "local"})

        assert "Failed to create secret in AWS" in str(exc_info.value)

    def test_lookup_failure(self, provider, client, tmp_path):
        (tmp_path / ".env").write_text("A=1\n")
        client.describe_secret.side_effect = client_error("AccessDeniedException")

        with pytest.raises(EnvSyncError) as exc_info:
            provider.push({"environment": "local"})

        assert "Unable to look up secret in AWS" in str(exc_info.value)


class TestPull:
    """Test pulling environment files."""

    def test_pull_writes_decoded_content(self, provider, client, tmp_path):
        client.get_secret_value.return_value = {"SecretString": b64("A=1\n")}

        assert provider.pull({"environment": "local"}) == "A=1\n"
        assert (tmp_path / ".env").read_text() == "A=1\n"
        client.get_secret_value.assert_called_once_with(SecretId="acme/shop/local")

    def test_pull_plaintext_secret(self, provider, client, tmp_path):
        client.get_secret_value.return_value = {"SecretString": "A=1\n"}

        assert provider.pull({"environment": "local", "skipWrite": True}) == "A=1\n"
        assert not (tmp_path / ".env").exists()

    def test_pull_missing_secret(self, provider, client):
        client.get_secret_value.side_effect = client_error("ResourceNotFoundException", "GetSecretValue")

        with pytest.raises(EnvSyncError) as exc_info:
            provider.pull({"environment": "production"})

        assert str(exc_info.value) == "Secret not found: acme/shop/production"

    def test_exists(self, provider, client):
        assert provider.exists({"environment": "local"}) is True

        client.describe_secret.side_effect = client_error("ResourceNotFoundException")
        assert provider.exists({"environment": "local"}) is False


class TestListAndDelete:
    """Test listing and deleting secrets."""

    def test_list_paginates_and_filters(self, provider, client):
        changed = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        paginator = client.get_paginator.return_value
        paginator.paginate.return_value = [
            {"SecretList": [
                {"Name": "acme/shop/local", "ARN": "arn:1", "LastChangedDate": changed},
                {"Name": "acme/blog/local", "ARN": "arn:2"},
            ]},
            {"SecretList": [
                {"Name": "acme/shop/production", "ARN": "arn:3"},
            ]},
        ]

        items = provider.list({})

        client.get_paginator.assert_called_once_with("list_secrets")
        paginator.paginate.assert_called_once_with(PaginationConfig={"PageSize": 100})
        assert [item.environment for item in items] == ["local", "production"]
        assert items[0].updatedAt == changed.isoformat()
        assert items[0].namespace == "eu-west-1"
        assert items[1].updatedAt is None

    def test_list_failure(self, provider, client):
        client.get_paginator.return_value.paginate.side_effect = client_error("AccessDeniedException", "ListSecrets")

        with pytest.raises(EnvSyncError) as exc_info:
            provider.list({})

        assert "Failed to list secrets" in str(exc_info.value)

    def test_delete_with_recovery_window(self, provider, client):
        provider.delete({"environment": "staging"})

        client.delete_secret.assert_called_once_with(SecretId="acme/shop/staging", RecoveryWindowInDays=30)

    def test_force_delete(self, provider, client):
        provider.delete({"environment": "staging", "forceDelete": True})

        client.delete_secret.assert_called_once_with(SecretId="acme/shop/staging", ForceDeleteWithoutRecovery=True)

    def test_delete_missing(self, provider, client):
        client.delete_secret.side_effect = client_error("ResourceNotFoundException", "DeleteSecret")

        with pytest.raises(EnvSyncError) as exc_info:
            provider.delete({"environment": "staging"})

        assert str(exc_info.value) == "Secret not found: acme/shop/staging"
