"""Secret provider contract and the helpers shared by every backend."""
import base64
import binascii
import logging
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .models import CompareResult, EnvSyncError, ProviderConfig, RemoteItem

logger = logging.getLogger(__name__)

PROCESS_TIMEOUT = 60
DEFAULT_ENVIRONMENTS = ("local", "development")

_GITHUB_REMOTE = re.compile(r"github\.com[:/]([^/]+)/([^.]+)")
_GENERIC_REMOTE = re.compile(r"([^/:]+)/([^/.]+)\.git$")
# KEY=value where the '=' is not base64 padding
_ENV_LINE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=(?!=*\s*$)")


def env_file_path(environment: str, base_dir: Path, environments: Optional[Dict[str, str]] = None) -> Path:
    """.env for local/development, .env.{environment} otherwise, unless overridden."""
    if environments and environment in environments:
        return base_dir / environments[environment]
    if environment in DEFAULT_ENVIRONMENTS:
        return base_dir / ".env"
    return base_dir / f".env.{environment}"


def _backup_order(path: Path):
    """Sort key for {file}.backup.{stamp}[.{counter}]: timestamp, then counter."""
    stamp, _, counter = path.name.rpartition(".backup.")[2].partition(".")
    return stamp, int(counter) if counter.isdigit() else 0


class SecretProvider(ABC):
    """Operations every secret manager backend supports."""

    @abstractmethod
    def get_name(self) -> str:
        """Human-readable provider name."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check that the provider CLI/SDK is installed. Never raises."""

    @abstractmethod
    def is_authenticated(self) -> bool:
        """Check that a usable session exists. Never raises."""

    @abstractmethod
    def push(self, config: ProviderConfig) -> None:
        """Upload the local environment file."""

    @abstractmethod
    def pull(self, config: ProviderConfig) -> str:
        """Download the remote content, writing it locally unless skipWrite is set."""

    @abstractmethod
    def exists(self, config: ProviderConfig) -> bool:
        """Check whether the remote item exists."""

    @abstractmethod
    def compare(self, config: ProviderConfig) -> CompareResult:
        """Compare local and remote versions."""

    @abstractmethod
    def list(self, config: ProviderConfig) -> List[RemoteItem]:
        """List the items that belong to this project."""

    @abstractmethod
    def delete(self, config: ProviderConfig) -> None:
        """Delete the remote item."""

    @abstractmethod
    def get_auth_instructions(self) -> str:
        """How to authenticate."""

    @abstractmethod
    def get_install_instructions(self) -> str:
        """How to install the provider tooling."""


class BaseProvider(SecretProvider):
    """
    Shared helpers for concrete providers.

    Args:
        settings: Provider settings from the config file (vault, region, ...)
        base_dir: Directory holding the .env files (defaults to the working directory)
        environments: Environment name -> file name overrides
        backup_directory: Where backups go (defaults to next to the env file)
        max_backups: Backups kept per file; older ones are pruned (None keeps all)
    """

    def __init__(
        self,
        settings: Optional[Dict] = None,
        base_dir: Optional[str] = None,
        environments: Optional[Dict[str, str]] = None,
        backup_directory: Optional[str] = None,
        max_backups: Optional[int] = None,
    ):
        self.settings: Dict = dict(settings or {})
        self._base_dir = Path(base_dir) if base_dir else None
        self.environments: Dict[str, str] = dict(environments or {})
        self.backup_directory = backup_directory
        self.max_backups = max_backups

    @property
    def base_dir(self) -> Path:
        return self._base_dir or Path.cwd()

    def set_config(self, settings: Dict) -> None:
        self.settings.update(settings)

    def option(self, config: ProviderConfig, key: str, default=None):
        """Per-call option, falling back to provider settings, then default."""
        value = config.get(key)
        if value in (None, ""):
            value = self.settings.get(key)
        return default if value in (None, "") else value

    def compare(self, config: ProviderConfig) -> CompareResult:
        environment = config.get("environment") or "local"
        env_file = self.get_env_file_path(environment)

        local_exists = env_file.exists()
        local_content = self.read_local(env_file) if local_exists else ""

        try:
            remote_content = self.pull({**config, "skipWrite": True})
            remote_exists = True
        except Exception as e:
            logger.debug(f"Remote lookup failed during compare: {e}")
            remote_content = ""
            remote_exists = False

        return CompareResult(
            localExists=local_exists,
            remoteExists=remote_exists,
            areIdentical=local_content == remote_content,
            localContent=local_content,
            remoteContent=remote_content,
        )

    def run_process(self, command: Sequence[str], input: Optional[str] = None) -> subprocess.CompletedProcess:
        """
        Run an external command and capture its output.

        A missing binary or a timeout is reported as a failed result
        (return code 127 or 124) instead of an exception.
        """
        command = list(command)
        logger.debug(f"Running: {' '.join(command[:3])}")
        try:
            return subprocess.run(
                command,
                input=input,
                capture_output=True,
                text=True,
                timeout=PROCESS_TIMEOUT,
                check=False,
            )
        except FileNotFoundError:
            return subprocess.CompletedProcess(command, 127, "", f"{command[0]}: command not found")
        except subprocess.TimeoutExpired:
            return subprocess.CompletedProcess(
                command, 124, "", f"{command[0]} timed out after {PROCESS_TIMEOUT}s"
            )

    def command_exists(self, binary: str) -> bool:
        return self.run_process(["which", binary]).returncode == 0

    def get_git_info(self) -> Dict[str, str]:
        """
        Derive organization and repository names from the git remote.

        Returns:
            {"org": ..., "repo": ...} when the remote URL has both parts,
            otherwise {"repo": ...} (the base directory name when git is unavailable)
        """
        result = self.run_process(["git", "-C", str(self.base_dir), "config", "--get", "remote.origin.url"])
        if result.returncode != 0 or not result.stdout.strip():
            return {"repo": self.base_dir.name}

        remote_url = result.stdout.strip()

        match = _GITHUB_REMOTE.search(remote_url)
        if match:
            return {"org": match.group(1), "repo": match.group(2).replace(".git", "")}

        match = _GENERIC_REMOTE.search(remote_url)
        if match:
            return {"org": match.group(1), "repo": match.group(2)}

        repo = remote_url.rstrip("/").rsplit("/", 1)[-1]
        if repo.endswith(".git"):
            repo = repo[:-4]
        return {"repo": repo}

    def generate_title(self, environment: str, custom_title: Optional[str] = None) -> str:
        if custom_title:
            return custom_title

        git_info = self.get_git_info()
        if git_info.get("org") and git_info.get("repo"):
            return f"{git_info['org']}/{git_info['repo']}/{environment}/.env"
        if git_info.get("repo"):
            return f"{git_info['repo']}/{environment}/.env"
        return f"{environment}/.env"

    def get_env_file_path(self, environment: str) -> Path:
        return env_file_path(environment, self.base_dir, self.environments)

    def create_backup(self, file_path: Path) -> Path:
        """Copy file_path to {file}.backup.{YYYYmmdd_HHMMSS}[.{n}] and return the copy's path."""
        file_path = Path(file_path)
        if not file_path.is_file():
            raise EnvSyncError(f"Cannot back up missing file: {file_path}")

        directory = Path(self.backup_directory) if self.backup_directory else file_path.parent
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = directory / f"{file_path.name}.backup.{stamp}"
        taken = list(directory.glob(f"{backup_path.name}*"))
        if taken:
            # Same-second backups get a counter past the highest one used
            counter = max(_backup_order(path)[1] for path in taken) + 1
            backup_path = directory / f"{backup_path.name}.{counter}"
        shutil.copy2(file_path, backup_path)
        logger.info(f"Backed up {file_path} to {backup_path}")
        self._prune_backups(directory, file_path.name)
        return backup_path

    def _prune_backups(self, directory: Path, file_name: str) -> None:
        if not self.max_backups:
            return
        backups = sorted(directory.glob(f"{file_name}.backup.*"), key=_backup_order)
        for old in backups[:-self.max_backups]:
            old.unlink()
            logger.debug(f"Removed old backup {old}")

    @staticmethod
    def encode_content(content: str) -> str:
        return base64.b64encode(content.encode("utf-8")).decode("ascii")

    @staticmethod
    def decode_content(content: str) -> str:
        """
        Decode base64 content, passing plaintext through unchanged.

        Content is treated as encoded only when it is strict base64, decodes
        to UTF-8 text and does not look like a KEY=value line.
        """
        if _ENV_LINE.match(content):
            return content
        try:
            return base64.b64decode(content.strip(), validate=True).decode("utf-8")
        except (binascii.Error, ValueError):
            return content

    @staticmethod
    def read_local(path: Path) -> str:
        with open(path, "r", encoding="utf-8", newline="") as f:
            return f.read()

    def write_local(self, environment: str, content: str, force: bool = False) -> Path:
        """
        Write pulled content to the environment file.

        An identical existing file is refused unless force is set. A file
        that is about to be replaced is backed up first.
        """
        env_file = self.get_env_file_path(environment)

        if env_file.exists():
            local_content = self.read_local(env_file)
            if local_content == content and not force:
                raise EnvSyncError("Files are identical - no pull needed. Use --force to pull anyway.")
            self.create_backup(env_file)

        with open(env_file, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        logger.info(f"Wrote {env_file}")
        return env_file

    def read_env_file(self, environment: str) -> str:
        env_file = self.get_env_file_path(environment)
        if not env_file.exists():
            raise EnvSyncError(f"Environment file not found: {env_file}")
        return self.read_local(env_file)
