"""1Password provider backed by the `op` CLI."""
import json
import logging
import re
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base_provider import BaseProvider
from .models import EnvSyncError, ProviderConfig, RemoteItem

logger = logging.getLogger(__name__)

DEFAULT_VAULT = "Private"
ITEM_TAGS = ["env", "development", "base64"]
_TITLE_ENVIRONMENT = re.compile(r"/([^/]+)/\.env$")


class OnePasswordProvider(BaseProvider):
    """
    Stores each environment file as a 1Password secure note.

    The note's notesPlain field holds the base64 encoded file. Items are
    looked up by exact title within a vault.
    """

    def get_name(self) -> str:
        return "1Password"

    def is_available(self) -> bool:
        return self.command_exists("op")

    def is_authenticated(self) -> bool:
        return self.run_process(["op", "account", "list"]).returncode == 0

    def _vault(self, config: ProviderConfig) -> str:
        return self.option(config, "vault", DEFAULT_VAULT)

    def push(self, config: ProviderConfig) -> None:
        environment = config.get("environment") or "local"
        vault = self._vault(config)
        force = bool(config.get("force"))
        title = self.generate_title(environment, config.get("title"))

        env_content = self.read_env_file(environment)
        item_id = self.get_item_id(vault, title)

        if item_id is None:
            result = self.run_process(["op", "item", "create", "-"], input=self._item_json(title, vault, env_content))
            if result.returncode != 0:
                raise EnvSyncError(f"Failed to create item in 1Password: {result.stderr.strip()}")
            logger.info(f"Created 1Password item '{title}' in vault '{vault}'")
            return

        if not force and self.get_item_content(item_id) == env_content:
            raise EnvSyncError("Files are identical - no push needed. Use --force to push anyway.")

        self._replace_item(item_id, title, vault, env_content)
        logger.info(f"Updated 1Password item '{title}' in vault '{vault}'")

    def _replace_item(self, item_id: str, title: str, vault: str, env_content: str) -> None:
        # Delete + recreate; the fetched original is the rollback copy.
        backup = self.run_process(["op", "item", "get", item_id, "--format", "json"])
        if backup.returncode != 0:
            raise EnvSyncError(f"Failed to backup existing item from 1Password: {backup.stderr.strip()}")

        try:
            backup_item = json.loads(backup.stdout)
        except json.JSONDecodeError:
            backup_item = None
        if not isinstance(backup_item, dict) or not backup_item:
            raise EnvSyncError("Failed to parse backup item data from 1Password")

        deleted = self.run_process(["op", "item", "delete", item_id, "--vault", vault])
        if deleted.returncode != 0:
            raise EnvSyncError(f"Failed to delete existing item from 1Password: {deleted.stderr.strip()}")

        created = self.run_process(["op", "item", "create", "-"], input=self._item_json(title, vault, env_content))
        if created.returncode == 0:
            return

        create_error = created.stderr.strip()
        logger.warning(f"Recreating '{title}' failed, restoring the previous item")
        restore_json = json.dumps({
            "category": backup_item.get("category", "SECURE_NOTE"),
            "title": backup_item.get("title", title),
            "vault": {"name": vault},
            "fields": backup_item.get("fields", []),
            "tags": backup_item.get("tags", []),
        })
        restored = self.run_process(["op", "item", "create", "-"], input=restore_json)

        if restored.returncode != 0:
            backup_file = Path(tempfile.gettempdir()) / f"1password_backup_{item_id}_{int(time.time())}.json"
            backup_file.write_text(backup.stdout)
            raise EnvSyncError(
                "CRITICAL: Failed to recreate item AND failed to restore backup. "
                f"Original error: {create_error}. "
                f"Restore error: {restored.stderr.strip()}. "
                f"Backup data saved to: {backup_file}"
            )

        raise EnvSyncError(f"Failed to update item in 1Password (original has been restored): {create_error}")

    def _item_json(self, title: str, vault: str, env_content: str) -> str:
        return json.dumps({
            "category": "SECURE_NOTE",
            "title": title,
            "vault": {"name": vault},
            "fields": [
                {
                    "id": "notesPlain",
                    "type": "STRING",
                    "purpose": "NOTES",
                    "label": "notesPlain",
                    "value": self.encode_content(env_content),
                },
            ],
            "tags": ITEM_TAGS,
        })

    def pull(self, config: ProviderConfig) -> str:
        environment = config.get("environment") or "local"
        vault = self._vault(config)
        title = self.generate_title(environment, config.get("title"))

        item_id = self.get_item_id(vault, title)
        if item_id is None:
            raise EnvSyncError(f"Item '{title}' not found in vault '{vault}'")

        env_content = self.get_item_content(item_id)

        if not config.get("skipWrite"):
            self.write_local(environment, env_content, force=bool(config.get("force")))

        return env_content

    def exists(self, config: ProviderConfig) -> bool:
        environment = config.get("environment") or "local"
        title = self.generate_title(environment, config.get("title"))
        return self.get_item_id(self._vault(config), title) is not None

    def list(self, config: ProviderConfig) -> List[RemoteItem]:
        vault = self._vault(config)
        repo = self.get_git_info().get("repo")

        items = self._list_items(vault)
        if items is None:
            raise EnvSyncError(f"Failed to list items from vault: {vault}")

        env_items = []
        for item in items:
            title = item.get("title", "")
            if not repo or repo not in title:
                continue
            match = _TITLE_ENVIRONMENT.search(title)
            if match:
                env_items.append(RemoteItem(
                    id=item.get("id", ""),
                    title=title,
                    environment=match.group(1),
                    updatedAt=item.get("updated_at"),
                    namespace=vault,
                ))
        return env_items

    def delete(self, config: ProviderConfig) -> None:
        environment = config.get("environment") or "local"
        vault = self._vault(config)
        title = self.generate_title(environment, config.get("title"))

        item_id = self.get_item_id(vault, title)
        if item_id is None:
            raise EnvSyncError(f"Item '{title}' not found in vault '{vault}'")

        result = self.run_process(["op", "item", "delete", item_id, "--vault", vault])
        if result.returncode != 0:
            raise EnvSyncError(f"Failed to delete item from 1Password: {result.stderr.strip()}")

    def get_auth_instructions(self) -> str:
        return "Run: eval $(op signin)"

    def get_install_instructions(self) -> str:
        return (
            "macOS: brew install --cask 1password-cli\n"
            "Other: https://developer.1password.com/docs/cli/get-started/"
        )

    def _list_items(self, vault: str) -> Optional[List[Dict[str, Any]]]:
        result = self.run_process(["op", "item", "list", "--vault", vault, "--format", "json"])
        if result.returncode != 0:
            return None
        try:
            items = json.loads(result.stdout or "[]")
        except json.JSONDecodeError:
            logger.warning(f"Unparseable item list from vault '{vault}'")
            return None
        return items if isinstance(items, list) else []

    def get_item_id(self, vault: str, title: str) -> Optional[str]:
        for item in self._list_items(vault) or []:
            if item.get("title") == title:
                return item.get("id")
        return None

    def get_item_content(self, item_id: str) -> str:
        result = self.run_process(["op", "item", "get", item_id, "--fields", "notesPlain"])
        if result.returncode != 0:
            raise EnvSyncError("Unable to retrieve content from 1Password")
        return self.decode_content(result.stdout)
