"""AWS Secrets Manager provider backed by boto3."""
import logging
import re
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .base_provider import BaseProvider
from .models import EnvSyncError, ProviderConfig, RemoteItem

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
UNAUTHENTICATED_CODES = ("UnrecognizedClientException", "InvalidUserPool.NotFound", "AccessDeniedException")
_NAME_ENVIRONMENT = re.compile(r"/([^/]+)$")


def _error_code(error: Exception) -> Optional[str]:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code")
    return None


class AwsSecretsManagerProvider(BaseProvider):
    """
    Stores each environment file as a SecretString in AWS Secrets Manager.

    Secret names follow [prefix/]org/repo/{environment}. Clients are built
    per region and credentials (profile or explicit keys), and otherwise
    rely on the default credential chain.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._clients: Dict[tuple, Any] = {}

    def get_name(self) -> str:
        return "AWS Secrets Manager"

    def is_available(self) -> bool:
        # boto3 ships with the package
        return True

    def is_authenticated(self) -> bool:
        try:
            self.get_client({}).list_secrets(MaxResults=1)
            return True
        except NoCredentialsError:
            return False
        except ClientError as e:
            return _error_code(e) not in UNAUTHENTICATED_CODES
        except BotoCoreError as e:
            logger.debug(f"AWS authentication check failed: {e}")
            return False

    def get_client(self, config: ProviderConfig):
        """Return a Secrets Manager client for the call's region and credentials, cached per combination."""
        region = self.option(config, "region", DEFAULT_REGION)
        profile = self.option(config, "profile")
        key = self.option(config, "key")
        secret = self.option(config, "secret")
        cache_key = (region, profile, key)

        if cache_key not in self._clients:
            session_kwargs: Dict[str, Any] = {"region_name": region}
            if profile:
                session_kwargs["profile_name"] = profile
            elif key and secret:
                session_kwargs["aws_access_key_id"] = key
                session_kwargs["aws_secret_access_key"] = secret
                token = self.option(config, "token")
                if token:
                    session_kwargs["aws_session_token"] = token

            session = boto3.Session(**session_kwargs)
            self._clients[cache_key] = session.client("secretsmanager")
        return self._clients[cache_key]

    def generate_secret_name(self, environment: str, config: ProviderConfig) -> str:
        custom_name = config.get("secretName")
        if custom_name:
            return custom_name

        parts = []
        prefix = self.option(config, "prefix")
        if prefix:
            parts.append(prefix.rstrip("/"))

        git_info = self.get_git_info()
        if git_info.get("org") and git_info.get("repo"):
            parts.extend([git_info["org"], git_info["repo"]])
        elif git_info.get("repo"):
            parts.append(git_info["repo"])
        else:
            parts.append("env")

        parts.append(environment)
        return "/".join(parts)

    def push(self, config: ProviderConfig) -> None:
        environment = config.get("environment") or "local"
        force = bool(config.get("force"))
        secret_name = self.generate_secret_name(environment, config)
        description = config.get("description") or f"Environment variables for {environment} environment"

        env_content = self.read_env_file(environment)
        env_base64 = self.encode_content(env_content)
        client = self.get_client(config)

        if self._secret_exists(client, secret_name):
            if not force and self._get_secret_value(client, secret_name) == env_content:
                raise EnvSyncError("Files are identical - no push needed. Use --force to push anyway.")
            try:
                client.update_secret(SecretId=secret_name, SecretString=env_base64, Description=description)
            except (ClientError, BotoCoreError) as e:
                raise EnvSyncError(f"Failed to update secret in AWS: {e}")
            logger.info(f"Updated AWS secret '{secret_name}'")
            return

        try:
            client.create_secret(
                Name=secret_name,
                Description=description,
                SecretString=env_base64,
                Tags=[
                    {"Key": "Environment", "Value": environment},
                    {"Key": "Type", "Value": "env"},
                    {"Key": "Format", "Value": "base64"},
                    {"Key": "ManagedBy", "Value": "env-sync"},
                ],
            )
        except (ClientError, BotoCoreError) as e:
            raise EnvSyncError(f"Failed to create secret in AWS: {e}")
        logger.info(f"Created AWS secret '{secret_name}'")

    def pull(self, config: ProviderConfig) -> str:
        environment = config.get("environment") or "local"
        secret_name = self.generate_secret_name(environment, config)

        env_content = self._get_secret_value(self.get_client(config), secret_name)

        if not config.get("skipWrite"):
            self.write_local(environment, env_content, force=bool(config.get("force")))

        return env_content

    def exists(self, config: ProviderConfig) -> bool:
        environment = config.get("environment") or "local"
        secret_name = self.generate_secret_name(environment, config)
        return self._secret_exists(self.get_client(config), secret_name)

    def list(self, config: ProviderConfig) -> List[RemoteItem]:
        prefix = self.option(config, "prefix") or self.get_git_info().get("repo") or ""
        region = self.option(config, "region", DEFAULT_REGION)
        client = self.get_client(config)

        env_items = []
        try:
            paginator = client.get_paginator("list_secrets")
            for page in paginator.paginate(PaginationConfig={"PageSize": 100}):
                for secret in page.get("SecretList", []):
                    name = secret.get("Name", "")
                    if prefix and prefix not in name:
                        continue
                    match = _NAME_ENVIRONMENT.search(name)
                    if not match:
                        continue
                    updated = secret.get("LastChangedDate")
                    env_items.append(RemoteItem(
                        id=secret.get("ARN", name),
                        title=name,
                        environment=match.group(1),
                        updatedAt=updated.isoformat() if hasattr(updated, "isoformat") else updated,
                        namespace=region,
                    ))
        except (ClientError, BotoCoreError) as e:
            raise EnvSyncError(f"Failed to list secrets: {e}")

        return env_items

    def delete(self, config: ProviderConfig) -> None:
        environment = config.get("environment") or "local"
        secret_name = self.generate_secret_name(environment, config)
        client = self.get_client(config)

        params: Dict[str, Any] = {"SecretId": secret_name}
        if config.get("forceDelete"):
            params["ForceDeleteWithoutRecovery"] = True
        else:
            params["RecoveryWindowInDays"] = 30

        try:
            client.delete_secret(**params)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                raise EnvSyncError(f"Secret not found: {secret_name}")
            raise EnvSyncError(f"Failed to delete secret: {e}")
        except BotoCoreError as e:
            raise EnvSyncError(f"Failed to delete secret: {e}")

    def get_auth_instructions(self) -> str:
        return (
            "Configure AWS credentials using one of:\n"
            "- aws configure\n"
            "- Export AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY\n"
            "- Use AWS SSO: aws sso login"
        )

    def get_install_instructions(self) -> str:
        return (
            "macOS: brew install awscli\n"
            "Other: https://docs.aws.amazon.com/cli/latest/userguide/getting-started-install.html"
        )

    def _secret_exists(self, client, secret_name: str) -> bool:
        try:
            client.describe_secret(SecretId=secret_name)
            return True
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return False
            raise EnvSyncError(f"Unable to look up secret in AWS: {e}")
        except BotoCoreError as e:
            raise EnvSyncError(f"Unable to look up secret in AWS: {e}")

    def _get_secret_value(self, client, secret_name: str) -> str:
        try:
            response = client.get_secret_value(SecretId=secret_name)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                raise EnvSyncError(f"Secret not found: {secret_name}")
            raise EnvSyncError(f"Unable to retrieve secret from AWS: {e}")
        except BotoCoreError as e:
            raise EnvSyncError(f"Unable to retrieve secret from AWS: {e}")
        return self.decode_content(response.get("SecretString") or "")
