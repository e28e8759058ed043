"""Tests for the Google Secret Manager provider with a mocked client."""
import base64
import subprocess
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest import mock

import pytest
from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions

from env_sync.secrets.domains.gcp_client import GoogleSecretManagerProvider, to_secret_id
from env_sync.secrets.domains.models import EnvSyncError

SECRET_PATH = "projects/demo-project/secrets/acme_shop_local__env"


def payload(text):
    encoded = base64.b64encode(text.encode("utf-8"))
    return SimpleNamespace(payload=SimpleNamespace(data=encoded))


@pytest.fixture
def client():
    return mock.MagicMock()


@pytest.fixture
def provider(tmp_path, client, monkeypatch):
    monkeypatch.delenv("GCP_PROJECT", raising=False)
    provider = GoogleSecretManagerProvider(settings={"project": "demo-project"}, base_dir=str(tmp_path))
    provider._client = client
    provider.get_git_info = lambda: {"org": "acme", "repo": "shop"}
    return provider


class TestSecretIds:
    """Test title to secret id mapping."""

    def test_invalid_characters_replaced(self):
        assert to_secret_id("acme/shop/local/.env") == "acme_shop_local__env"

    def test_valid_id_unchanged(self):
        assert to_secret_id("team-env_1") == "team-env_1"

    def test_truncated(self):
        assert len(to_secret_id("a" * 300)) == 255


class TestProject:
    """Test project resolution and status checks."""

    def test_project_option_wins(self, provider):
        assert provider.get_project_id({"project": "other"}) == "other"

    def test_env_var(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GCP_PROJECT", "env-project")
        provider = GoogleSecretManagerProvider(base_dir=str(tmp_path))

        assert provider.get_project_id({}) == "env-project"

    def test_gcloud_fallback(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GCP_PROJECT", raising=False)
        provider = GoogleSecretManagerProvider(base_dir=str(tmp_path))
        result = subprocess.CompletedProcess([], 0, "gcloud-project\n", "")

        with mock.patch.object(provider, "run_process", return_value=result) as run:
            assert provider.get_project_id({}) == "gcloud-project"
        run.assert_called_once_with(["gcloud", "config", "get-value", "project"])

    def test_gcloud_unset_has_no_project(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GCP_PROJECT", raising=False)
        provider = GoogleSecretManagerProvider(base_dir=str(tmp_path))
        result = subprocess.CompletedProcess([], 0, "(unset)\n", "")

        with mock.patch.object(provider, "run_process", return_value=result):
            assert provider.get_project_id({}) is None
            assert provider.is_available() is True

    def test_missing_project_raises(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GCP_PROJECT", raising=False)
        provider = GoogleSecretManagerProvider(base_dir=str(tmp_path))
        result = subprocess.CompletedProcess([], 1, "", "gcloud: command not found")

        with mock.patch.object(provider, "run_process", return_value=result):
            with pytest.raises(EnvSyncError) as exc_info:
                provider.pull({"environment": "local"})

        assert "GCP project not found" in str(exc_info.value)

    def test_authenticated(self, provider):
        with mock.patch("google.auth.default", return_value=(mock.Mock(), "demo-project")):
            assert provider.is_authenticated() is True

    def test_not_authenticated(self, provider):
        with mock.patch("google.auth.default", side_effect=auth_exceptions.DefaultCredentialsError("none")):
            assert provider.is_authenticated() is False


class TestPush:
    """Test pushing environment files."""

    def test_creates_secret_and_version(self, provider, client, tmp_path):
        (tmp_path / ".env").write_text("A=1\n")
        client.get_secret.side_effect = gcp_exceptions.NotFound("missing")

        provider.push({"environment": "local"})

        create_request = client.create_secret.call_args.kwargs["request"]
        assert create_request["parent"] == "projects/demo-project"
        assert create_request["secret_id"] == "acme_shop_local__env"
        assert create_request["secret"]["replication"] == {"automatic": {}}
        assert create_request["secret"]["labels"] == {
            "managed-by": "env-sync",
            "environment": "local",
            "repo": "shop",
        }
        version_request = client.add_secret_version.call_args.kwargs["request"]
        assert version_request["parent"] == SECRET_PATH
        assert base64.b64decode(version_request["payload"]["data"]) == b"A=1\n"

    def test_existing_secret_gets_new_version(self, provider, client, tmp_path):
        (tmp_path / ".env").write_text("A=2\n")
        client.access_secret_version.return_value = payload("A=1\n")

        provider.push({"environment": "local"})

        client.create_secret.assert_not_called()
        client.add_secret_version.assert_called_once()

    def test_identical_refused_without_force(self, provider, client, tmp_path):
        (tmp_path / ".env").write_text("A=1\n")
        client.access_secret_version.return_value = payload("A=1\n")

        with pytest.raises(EnvSyncError) as exc_info:
            provider.push({"environment": "local"})

        assert "Files are identical - no push needed" in str(exc_info.value)
        client.add_secret_version.assert_not_called()

    def test_api_error_wrapped(self, provider, client, tmp_path):
        (tmp_path / ".env").write_text("A=1\n")
        client.get_secret.side_effect = gcp_exceptions.PermissionDenied("denied")

        with pytest.raises(EnvSyncError) as exc_info:
            provider.push({"environment": "local"})

        assert "Unable to look up secret in Google Secret Manager" in str(exc_info.value)


class TestPull:
    """Test pulling environment files."""

    def test_pull_latest_version(self, provider, client, tmp_path):
        client.access_secret_version.return_value = payload("A=1\n")

        assert provider.pull({"environment": "local"}) == "A=1\n"
        assert (tmp_path / ".env").read_text() == "A=1\n"
        client.access_secret_version.assert_called_once_with(request={"name": f"{SECRET_PATH}/versions/latest"})

    def test_pull_custom_title(self, provider, client):
        client.access_secret_version.return_value = payload("A=1\n")

        provider.pull({"environment": "local", "title": "team env", "skipWrite": True})

        name = client.access_secret_version.call_args.kwargs["request"]["name"]
        assert name == "projects/demo-project/secrets/team_env/versions/latest"

    def test_pull_missing(self, provider, client):
        client.access_secret_version.side_effect = gcp_exceptions.NotFound("missing")

        with pytest.raises(EnvSyncError) as exc_info:
            provider.pull({"environment": "local"})

        assert str(exc_info.value) == f"Secret not found: {SECRET_PATH}"


class TestListAndDelete:
    """Test listing and deleting secrets."""

    def test_list_by_labels(self, provider, client):
        created = datetime(2024, 5, 1, tzinfo=timezone.utc)
        client.list_secrets.return_value = [
            SimpleNamespace(
                name="projects/demo-project/secrets/acme_shop_staging__env",
                labels={"environment": "staging"},
                create_time=created,
            ),
        ]

        items = provider.list({})

        request = client.list_secrets.call_args.kwargs["request"]
        assert request["filter"] == "labels.managed-by=env-sync AND labels.repo=shop"
        assert items[0].environment == "staging"
        assert items[0].title == "acme_shop_staging__env"
        assert items[0].namespace == "demo-project"
        assert items[0].updatedAt == created.isoformat()

    def test_delete(self, provider, client):
        provider.delete({"environment": "local"})

        client.delete_secret.assert_called_once_with(request={"name": SECRET_PATH})

    def test_delete_missing(self, provider, client):
        client.delete_secret.side_effect = gcp_exceptions.NotFound("missing")

        with pytest.raises(EnvSyncError) as exc_info:
            provider.delete({"environment": "local"})

        assert "Secret not found" in str(exc_info.value)
