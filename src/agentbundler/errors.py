"""Error taxonomy for agentbundler.

Resolution problems are collected as exception instances rather than raised,
so one pass can report every broken reference of an entry.
"""

from __future__ import annotations

from collections.abc import Sequence

from .models import ResourceId


class BundleError(Exception):
    """Base class for all bundling errors."""


class ParseError(BundleError):
    """Malformed entry or resource definition."""

    def __init__(self, owner: str, construct: str):
        self.owner = owner
        self.construct = construct
        super().__init__(f"{owner}: {construct}")


class MissingDependency(BundleError):
    """A declared dependency could not be found in any root."""

    def __init__(self, declared_by: str, resource_id: ResourceId):
        self.declared_by = declared_by
        self.resource_id = resource_id
        super().__init__(
            f"{declared_by}: missing dependency {resource_id}"
        )


class CircularDependency(BundleError):
    """A dependency chain that leads back to one of its own ancestors."""

    def __init__(self, chain: Sequence[ResourceId]):
        self.chain = list(chain)
        super().__init__(f"circular dependency {self.render()}")

    def render(self) -> str:
        return "→".join(rid.name for rid in self.chain)


class DuplicateResourceId(BundleError):
    """Two sources claim the same identity within one priority level."""

    def __init__(self, resource_id: ResourceId | str, sources: Sequence[str]):
        self.resource_id = resource_id
        self.sources = list(sources)
        super().__init__(
            f"duplicate {resource_id} in {', '.join(self.sources)}"
        )
