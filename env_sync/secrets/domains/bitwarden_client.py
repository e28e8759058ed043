"""Bitwarden provider backed by the `bw` CLI."""
import base64
import json
import logging
import re
from typing import Any, Dict, List, Optional

from .base_provider import BaseProvider
from .models import EnvSyncError, ProviderConfig, RemoteItem

logger = logging.getLogger(__name__)

SECURE_NOTE = 2
_TITLE_ENVIRONMENT = re.compile(r"/([^/]+)/\.env$")


class BitwardenProvider(BaseProvider):
    """
    Stores each environment file as a Bitwarden secure note.

    The note body holds the base64 encoded file. Every write is followed by
    `bw sync`. Requires an unlocked vault (BW_SESSION exported).
    """

    def get_name(self) -> str:
        return "Bitwarden"

    def is_available(self) -> bool:
        return self.command_exists("bw")

    def is_authenticated(self) -> bool:
        result = self.run_process(["bw", "status"])
        if result.returncode != 0:
            return False
        try:
            status = json.loads(result.stdout)
        except json.JSONDecodeError:
            return False
        return isinstance(status, dict) and status.get("status") == "unlocked"

    def push(self, config: ProviderConfig) -> None:
        environment = config.get("environment") or "local"
        force = bool(config.get("force"))
        organization_id = self.option(config, "organizationId")
        title = self.generate_title(environment, config.get("title"))

        env_content = self.read_env_file(environment)
        env_base64 = self.encode_content(env_content)

        item_id = self.get_item_id(title)

        if item_id:
            item = self.get_item(item_id)
            if not force and self._item_content(item) == env_content:
                raise EnvSyncError("Files are identical - no push needed. Use --force to push anyway.")

            item["notes"] = env_base64
            result = self.run_process(["bw", "edit", "item", item_id], input=self._encode_json(item))
            if result.returncode != 0:
                raise EnvSyncError(f"Failed to update item in Bitwarden: {result.stderr.strip()}")
        else:
            item = {
                "type": SECURE_NOTE,
                "name": title,
                "notes": env_base64,
                "secureNote": {"type": 0},
            }
            if organization_id:
                item["organizationId"] = organization_id

            result = self.run_process(["bw", "create", "item"], input=self._encode_json(item))
            if result.returncode != 0:
                raise EnvSyncError(f"Failed to create item in Bitwarden: {result.stderr.strip()}")

        self.sync()

    def pull(self, config: ProviderConfig) -> str:
        environment = config.get("environment") or "local"
        title = self.generate_title(environment, config.get("title"))

        item_id = self.get_item_id(title)
        if not item_id:
            raise EnvSyncError(f"Item '{title}' not found in Bitwarden")

        env_content = self._item_content(self.get_item(item_id))

        if not config.get("skipWrite"):
            self.write_local(environment, env_content, force=bool(config.get("force")))

        return env_content

    def exists(self, config: ProviderConfig) -> bool:
        environment = config.get("environment") or "local"
        return self.get_item_id(self.generate_title(environment, config.get("title"))) is not None

    def list(self, config: ProviderConfig) -> List[RemoteItem]:
        repo = self.get_git_info().get("repo", "")
        organization_id = self.option(config, "organizationId")

        result = self.run_process(["bw", "list", "items", "--search", repo])
        if result.returncode != 0:
            raise EnvSyncError(f"Failed to list items from Bitwarden: {result.stderr.strip()}")

        env_items = []
        for item in self._parse_list(result.stdout):
            name = item.get("name", "")
            if item.get("type") != SECURE_NOTE or repo not in name:
                continue
            match = _TITLE_ENVIRONMENT.search(name)
            if match:
                env_items.append(RemoteItem(
                    id=item.get("id", ""),
                    title=name,
                    environment=match.group(1),
                    updatedAt=item.get("revisionDate"),
                    namespace=organization_id,
                ))
        return env_items

    def delete(self, config: ProviderConfig) -> None:
        environment = config.get("environment") or "local"
        title = self.generate_title(environment, config.get("title"))

        item_id = self.get_item_id(title)
        if not item_id:
            raise EnvSyncError(f"Item '{title}' not found in Bitwarden")

        result = self.run_process(["bw", "delete", "item", item_id])
        if result.returncode != 0:
            raise EnvSyncError(f"Failed to delete item from Bitwarden: {result.stderr.strip()}")

        self.sync()

    def get_auth_instructions(self) -> str:
        return (
            "1. Login: bw login\n"
            "2. Unlock vault: bw unlock\n"
            '3. Set session key: export BW_SESSION="<session-key>"'
        )

    def get_install_instructions(self) -> str:
        return (
            "macOS: brew install bitwarden-cli\n"
            "NPM: npm install -g @bitwarden/cli\n"
            "Other: https://bitwarden.com/help/cli/"
        )

    @staticmethod
    def _encode_json(item: Dict[str, Any]) -> str:
        # Same encoding as `bw encode`
        return base64.b64encode(json.dumps(item).encode("utf-8")).decode("ascii")

    @staticmethod
    def _parse_list(output: str) -> List[Dict[str, Any]]:
        try:
            items = json.loads(output or "[]")
        except json.JSONDecodeError:
            return []
        return items if isinstance(items, list) else []

    def get_item_id(self, title: str) -> Optional[str]:
        result = self.run_process(["bw", "list", "items", "--search", title])
        if result.returncode != 0:
            return None
        for item in self._parse_list(result.stdout):
            if item.get("name") == title and item.get("type") == SECURE_NOTE:
                return item.get("id")
        return None

    def get_item(self, item_id: str) -> Dict[str, Any]:
        result = self.run_process(["bw", "get", "item", item_id])
        if result.returncode != 0:
            raise EnvSyncError("Unable to retrieve item from Bitwarden")
        try:
            item = json.loads(result.stdout)
        except json.JSONDecodeError:
            raise EnvSyncError("Unable to parse item from Bitwarden")
        return item if isinstance(item, dict) else {}

    def _item_content(self, item: Dict[str, Any]) -> str:
        if item.get("notes") is None:
            raise EnvSyncError("Item does not contain notes")
        return self.decode_content(item["notes"])

    def sync(self) -> None:
        result = self.run_process(["bw", "sync"])
        if result.returncode != 0:
            raise EnvSyncError(f"Failed to sync with Bitwarden: {result.stderr.strip()}")
