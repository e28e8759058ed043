"""Name-keyed registry of secret providers."""
import logging
from typing import Any, Dict, List, Optional, Type

from ..domains.aws_client import AwsSecretsManagerProvider
from ..domains.base_provider import BaseProvider, SecretProvider
from ..domains.bitwarden_client import BitwardenProvider
from ..domains.config_loader import get_provider_settings, load_config
from ..domains.gcp_client import GoogleSecretManagerProvider
from ..domains.models import EnvSyncError
from ..domains.onepassword_client import OnePasswordProvider

logger = logging.getLogger(__name__)

DRIVER_MAP: Dict[str, Type[BaseProvider]] = {
    "1password": OnePasswordProvider,
    "aws": AwsSecretsManagerProvider,
    "bitwarden": BitwardenProvider,
    "gcp": GoogleSecretManagerProvider,
}


class ProviderManager:
    """
    Resolves provider instances by name.

    Built-in drivers are constructed on first use and cached for the life
    of the manager. Instances passed to register() take precedence, which
    is how tests inject doubles.

    Args:
        config: Loaded configuration (load_config() is used when omitted)
        base_dir: Directory holding the .env files, passed to every provider
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, base_dir: Optional[str] = None):
        self._config = config
        self.base_dir = base_dir
        self._providers: Dict[str, SecretProvider] = {}
        self._custom_providers: Dict[str, SecretProvider] = {}

    @property
    def config(self) -> Dict[str, Any]:
        if self._config is None:
            self._config = load_config()
        return self._config

    def register(self, name: str, provider: SecretProvider) -> None:
        self._custom_providers[name] = provider
        self._providers[name] = provider

    def get(self, name: Optional[str] = None) -> SecretProvider:
        """
        Return the provider registered or configured under name.

        Args:
            name: Provider name; None selects the default provider

        Raises:
            EnvSyncError: If no provider or driver matches the name
        """
        name = name or self.get_default_provider()

        if name in self._providers:
            return self._providers[name]

        self._providers[name] = self._create_provider(name)
        return self._providers[name]

    def _create_provider(self, name: str) -> SecretProvider:
        settings = self._provider_settings(name)
        if settings is None:
            raise EnvSyncError(
                f"Provider '{name}' not found. Available providers: {', '.join(self.provider_names())}"
            )

        driver = settings.get("driver", name)
        driver_class = DRIVER_MAP.get(driver)
        if driver_class is None:
            raise EnvSyncError(
                f"Driver '{driver}' is not supported. Supported drivers: {', '.join(DRIVER_MAP)}"
            )

        backup = self.config.get("backup") or {}
        logger.debug(f"Creating provider '{name}' with driver '{driver}'")
        return driver_class(
            settings={key: value for key, value in settings.items() if key != "driver"},
            base_dir=self.base_dir,
            environments=self.config.get("environments"),
            backup_directory=backup.get("directory"),
            max_backups=backup.get("max_backups"),
        )

    def _provider_settings(self, name: str) -> Optional[Dict[str, Any]]:
        settings = get_provider_settings(name, self.config)
        if settings is None and name in DRIVER_MAP:
            return {}
        return settings

    def provider_names(self) -> List[str]:
        names = list(self._custom_providers)
        for name in list(DRIVER_MAP) + list(self.config.get("providers", {})):
            if name not in names:
                names.append(name)
        return names

    def get_default_provider(self) -> str:
        return self.config.get("default") or "1password"

    def get_available_drivers(self) -> List[str]:
        return list(DRIVER_MAP)

    def has_provider(self, name: str) -> bool:
        return name in self._custom_providers or self._provider_settings(name) is not None

    def has_driver(self, driver: str) -> bool:
        return driver in DRIVER_MAP

    def all(self) -> Dict[str, SecretProvider]:
        return {name: self.get(name) for name in self.provider_names()}

    def _candidates(self) -> Dict[str, SecretProvider]:
        # Registered instances replace the built-ins when filtering
        if self._custom_providers:
            return dict(self._custom_providers)
        return self.all()

    def get_available_providers(self) -> Dict[str, SecretProvider]:
        return {name: provider for name, provider in self._candidates().items() if provider.is_available()}

    def get_authenticated_providers(self) -> Dict[str, SecretProvider]:
        return {
            name: provider
            for name, provider in self._candidates().items()
            if provider.is_available() and provider.is_authenticated()
        }
