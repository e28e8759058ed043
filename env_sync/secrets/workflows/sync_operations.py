"""Workflows behind the push, pull, sync, list and delete commands."""
import logging
import os
import re
import socket
import subprocess
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..domains.base_provider import SecretProvider
from ..domains.config_loader import get_provider_settings
from ..domains.models import CompareResult, EnvSyncError, ProviderConfig, RemoteItem
from .provider_manager import ProviderManager

logger = logging.getLogger(__name__)

DIFF_TIMEOUT = 60


def provider_driver(manager: ProviderManager, provider_key: str) -> str:
    """Driver behind a provider name ('work-vault' may be a 1password driver)."""
    settings = get_provider_settings(provider_key, manager.config) or {}
    return settings.get("driver", provider_key)


def build_provider_config(
    driver: str,
    environment: str,
    force: bool = False,
    vault: Optional[str] = None,
    title: Optional[str] = None,
) -> ProviderConfig:
    """
    Translate the shared CLI options into a provider config map.

    --vault means region for aws, organizationId for bitwarden, project for
    gcp and vault otherwise. --title means secretName for aws.
    """
    config: ProviderConfig = {"environment": environment, "force": force}

    if vault:
        if driver == "aws":
            config["region"] = vault
        elif driver == "bitwarden":
            config["organizationId"] = vault
        elif driver == "gcp":
            config["project"] = vault
        else:
            config["vault"] = vault

    if title:
        if driver == "aws":
            config["secretName"] = title
        else:
            config["title"] = title

    return config


def resolve_provider(manager: ProviderManager, provider_key: Optional[str]) -> SecretProvider:
    """
    Look up a provider and make sure it can be used.

    Raises:
        EnvSyncError: With install or auth instructions when the provider
            is not installed or not authenticated
    """
    provider = manager.get(provider_key)

    if not provider.is_available():
        raise EnvSyncError(f"{provider.get_name()} CLI not installed\n{provider.get_install_instructions()}")

    if not provider.is_authenticated():
        raise EnvSyncError(f"Not authenticated with {provider.get_name()}\n{provider.get_auth_instructions()}")

    return provider


def push_environment(provider: SecretProvider, config: ProviderConfig) -> Dict[str, str]:
    """Push and return the summary rows shown after a successful push."""
    provider.push(config)
    logger.info(f"Pushed {config['environment']} to {provider.get_name()}")
    return {
        "Provider": provider.get_name(),
        "Environment": config["environment"],
        "Last synced": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "From host": socket.gethostname(),
    }


def find_missing_variables(content: str, required: List[str]) -> List[str]:
    return [var for var in required if not re.search(rf"^{re.escape(var)}=", content, re.MULTILINE)]


def pull_environment(
    provider: SecretProvider,
    config: ProviderConfig,
    env_file: Path,
    required_variables: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Pull into env_file and inspect what was written.

    Returns:
        Dict with keys: env_file, line_count, empty, missing_variables
    """
    content = provider.pull(config)
    logger.info(f"Pulled {config['environment']} from {provider.get_name()}")

    return {
        "env_file": env_file,
        "line_count": len(content.splitlines()),
        "empty": content == "",
        "missing_variables": find_missing_variables(content, required_variables or []) if content else [],
    }


def describe_status(result: CompareResult) -> List[str]:
    lines = [
        f"Local file:  {'present' if result.localExists else 'missing'}",
        f"Remote item: {'present' if result.remoteExists else 'missing'}",
    ]
    if result.localExists and result.remoteExists:
        lines.append("Status: in sync" if result.areIdentical else "Status: local and remote differ")
    elif result.localExists:
        lines.append("Status: not pushed yet")
    elif result.remoteExists:
        lines.append("Status: not pulled yet")
    else:
        lines.append("Status: nothing to sync")
    return lines


def diff_contents(local_content: str, remote_content: str, label: str = ".env") -> str:
    """
    Unified diff of local vs remote content using the external diff tool.

    Returns:
        The diff text, or an empty string when the contents are identical

    Raises:
        EnvSyncError: If diff is missing or fails
    """
    with tempfile.TemporaryDirectory(prefix="env-sync-") as tmp:
        local_path = os.path.join(tmp, "local")
        remote_path = os.path.join(tmp, "remote")
        with open(local_path, "w", encoding="utf-8", newline="") as f:
            f.write(local_content)
        with open(remote_path, "w", encoding="utf-8", newline="") as f:
            f.write(remote_content)

        try:
            result = subprocess.run(
                ["diff", "-u", "--label", f"local/{label}", "--label", f"remote/{label}", local_path, remote_path],
                capture_output=True,
                text=True,
                timeout=DIFF_TIMEOUT,
            )
        except FileNotFoundError:
            raise EnvSyncError("diff command not found")
        except subprocess.TimeoutExpired:
            raise EnvSyncError(f"diff timed out after {DIFF_TIMEOUT}s")

    # diff exits 0 when identical, 1 when different, 2 on trouble
    if result.returncode > 1:
        raise EnvSyncError(f"diff failed: {result.stderr.strip()}")
    return result.stdout


def list_environments(provider: SecretProvider, config: ProviderConfig) -> List[RemoteItem]:
    items = provider.list(config)
    return sorted(items, key=lambda item: item.environment)
