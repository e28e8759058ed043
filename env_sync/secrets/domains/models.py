"""Domain models for env file synchronization."""
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

# Free-form provider options: environment, vault, region, organizationId,
# title, secretName, force, skipWrite, ...
ProviderConfig = Dict[str, Any]


class EnvSyncError(Exception):
    """Generic env-sync failure carrying a human-readable message."""
    pass


@dataclass
class CompareResult:
    """Local vs remote state of one environment file."""
    localExists: bool
    remoteExists: bool
    areIdentical: bool
    localContent: str = ""
    remoteContent: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RemoteItem:
    """A secret-manager record holding one environment's file content."""
    id: str
    title: str
    environment: str
    updatedAt: Optional[str] = None
    namespace: Optional[str] = None  # vault, region, organization or project

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["namespace"] is None:
            del data["namespace"]
        return data
