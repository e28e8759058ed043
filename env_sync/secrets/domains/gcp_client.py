"""Google Secret Manager provider."""
import os
import logging
import re
from typing import List, Optional

import google.auth
from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import secretmanager

from .base_provider import BaseProvider
from .models import EnvSyncError, ProviderConfig, RemoteItem

logger = logging.getLogger(__name__)

MANAGED_BY_LABEL = "env-sync"
_INVALID_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_LABEL_INVALID_CHARS = re.compile(r"[^a-z0-9_-]")


def to_secret_id(title: str) -> str:
    """
    Map an item title onto a Secret Manager secret id.

    Secret ids allow only [a-zA-Z0-9_-], so 'org/repo/staging/.env'
    becomes 'org_repo_staging__env'.
    """
    return _INVALID_ID_CHARS.sub("_", title)[:255]


def _label_value(value: str) -> str:
    return _LABEL_INVALID_CHARS.sub("_", value.lower())[:63]


class GoogleSecretManagerProvider(BaseProvider):
    """
    Stores each environment file as a secret in Google Secret Manager.

    Every push adds a new secret version; pull reads versions/latest.
    Secrets created here carry the labels managed-by=env-sync, repo and
    environment so that list can find them.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._client = None

    @property
    def client(self) -> secretmanager.SecretManagerServiceClient:
        """Lazy-initialize client."""
        if self._client is None:
            try:
                self._client = secretmanager.SecretManagerServiceClient()
            except auth_exceptions.DefaultCredentialsError as e:
                raise EnvSyncError(f"Google credentials not found: {e}")
        return self._client

    def get_name(self) -> str:
        return "Google Secret Manager"

    def is_available(self) -> bool:
        # google-cloud-secret-manager ships with the package; the project is resolved per call
        return True

    def is_authenticated(self) -> bool:
        try:
            google.auth.default()
            return True
        except auth_exceptions.DefaultCredentialsError as e:
            logger.debug(f"No application default credentials: {e}")
            return False

    def get_project_id(self, config: ProviderConfig) -> Optional[str]:
        """
        Resolve the GCP project.

        Priority order:
        1. 'project' option (--vault) or provider settings
        2. GCP_PROJECT environment variable
        3. gcloud config get-value project
        """
        project_id = self.option(config, "project") or os.getenv("GCP_PROJECT")
        if project_id:
            return project_id

        result = self.run_process(["gcloud", "config", "get-value", "project"])
        project_id = result.stdout.strip() if result.returncode == 0 else ""
        if project_id and project_id != "(unset)":
            logger.debug(f"Using project from gcloud config: {project_id}")
            return project_id
        return None

    def _require_project(self, config: ProviderConfig) -> str:
        project_id = self.get_project_id(config)
        if not project_id:
            raise EnvSyncError(
                "GCP project not found. Pass --vault <project>, set GCP_PROJECT "
                "or run: gcloud config set project <project>"
            )
        return project_id

    def _secret_id(self, config: ProviderConfig) -> str:
        environment = config.get("environment") or "local"
        custom = config.get("secretName") or config.get("title")
        return to_secret_id(self.generate_title(environment, custom))

    def push(self, config: ProviderConfig) -> None:
        environment = config.get("environment") or "local"
        force = bool(config.get("force"))
        project_id = self._require_project(config)
        secret_id = self._secret_id(config)
        secret_path = f"projects/{project_id}/secrets/{secret_id}"

        env_content = self.read_env_file(environment)

        if self._secret_exists(secret_path):
            if not force and self._latest_content(secret_path) == env_content:
                raise EnvSyncError("Files are identical - no push needed. Use --force to push anyway.")
        else:
            labels = {"managed-by": MANAGED_BY_LABEL, "environment": _label_value(environment)}
            repo = self.get_git_info().get("repo")
            if repo:
                labels["repo"] = _label_value(repo)
            try:
                self.client.create_secret(request={
                    "parent": f"projects/{project_id}",
                    "secret_id": secret_id,
                    "secret": {"replication": {"automatic": {}}, "labels": labels},
                })
            except gcp_exceptions.GoogleAPICallError as e:
                raise EnvSyncError(f"Failed to create secret in Google Secret Manager: {e}")

        try:
            self.client.add_secret_version(request={
                "parent": secret_path,
                "payload": {"data": self.encode_content(env_content).encode("ascii")},
            })
        except gcp_exceptions.GoogleAPICallError as e:
            raise EnvSyncError(f"Failed to add secret version in Google Secret Manager: {e}")
        logger.info(f"Pushed new version of {secret_id} in project {project_id}")

    def pull(self, config: ProviderConfig) -> str:
        environment = config.get("environment") or "local"
        project_id = self._require_project(config)
        secret_path = f"projects/{project_id}/secrets/{self._secret_id(config)}"

        env_content = self._latest_content(secret_path)

        if not config.get("skipWrite"):
            self.write_local(environment, env_content, force=bool(config.get("force")))

        return env_content

    def exists(self, config: ProviderConfig) -> bool:
        project_id = self._require_project(config)
        return self._secret_exists(f"projects/{project_id}/secrets/{self._secret_id(config)}")

    def list(self, config: ProviderConfig) -> List[RemoteItem]:
        project_id = self._require_project(config)
        repo = self.get_git_info().get("repo")

        label_filter = f"labels.managed-by={MANAGED_BY_LABEL}"
        if repo:
            label_filter += f" AND labels.repo={_label_value(repo)}"

        env_items = []
        try:
            for secret in self.client.list_secrets(request={"parent": f"projects/{project_id}", "filter": label_filter}):
                secret_id = secret.name.rsplit("/", 1)[-1]
                created = secret.create_time
                env_items.append(RemoteItem(
                    id=secret.name,
                    title=secret_id,
                    environment=secret.labels.get("environment", ""),
                    updatedAt=created.isoformat() if created else None,
                    namespace=project_id,
                ))
        except gcp_exceptions.GoogleAPICallError as e:
            raise EnvSyncError(f"Failed to list secrets: {e}")
        return env_items

    def delete(self, config: ProviderConfig) -> None:
        project_id = self._require_project(config)
        secret_path = f"projects/{project_id}/secrets/{self._secret_id(config)}"
        try:
            self.client.delete_secret(request={"name": secret_path})
        except gcp_exceptions.NotFound:
            raise EnvSyncError(f"Secret not found: {secret_path}")
        except gcp_exceptions.GoogleAPICallError as e:
            raise EnvSyncError(f"Failed to delete secret: {e}")

    def get_auth_instructions(self) -> str:
        return (
            "Run: gcloud auth application-default login\n"
            "Or export GOOGLE_APPLICATION_CREDENTIALS=/path/to/service-account.json"
        )

    def get_install_instructions(self) -> str:
        return (
            "Install the gcloud CLI: https://cloud.google.com/sdk/docs/install\n"
            "Then set a project: gcloud config set project <project-id> (or export GCP_PROJECT)"
        )

    def _secret_exists(self, secret_path: str) -> bool:
        try:
            self.client.get_secret(request={"name": secret_path})
            return True
        except gcp_exceptions.NotFound:
            return False
        except gcp_exceptions.GoogleAPICallError as e:
            raise EnvSyncError(f"Unable to look up secret in Google Secret Manager: {e}")

    def _latest_content(self, secret_path: str) -> str:
        try:
            response = self.client.access_secret_version(request={"name": f"{secret_path}/versions/latest"})
        except gcp_exceptions.NotFound:
            raise EnvSyncError(f"Secret not found: {secret_path}")
        except gcp_exceptions.GoogleAPICallError as e:
            raise EnvSyncError(f"Unable to retrieve secret from Google Secret Manager: {e}")
        return self.decode_content(response.payload.data.decode("UTF-8"))
