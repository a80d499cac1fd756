"""Resource stores for agentbundler."""

from abc import abstractmethod
from typing import Protocol

from ..models import (
    NotFound,
    ResourceCategory,
    ResourceId,
    ResourceRecord,
    Unreadable,
)
from .filesystem import CORE_PACK_ID, FileSystemStorage


class ResourceStore(Protocol):
    """Protocol for resource stores."""

    @abstractmethod
    def locate(
        self, category: ResourceCategory, name: str
    ) -> ResourceRecord | Unreadable | NotFound:
        """Find a resource by category and name without raising on a miss."""
        ...

    @abstractmethod
    def list_agents(self) -> list[ResourceId]:
        """List every agent visible through the store, in a stable order."""
        ...


__all__ = ["ResourceStore", "FileSystemStorage", "CORE_PACK_ID"]
