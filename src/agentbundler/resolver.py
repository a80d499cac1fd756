"""Dependency resolution for agentbundler."""

import logging
from collections.abc import Sequence

from .errors import BundleError, CircularDependency, MissingDependency, ParseError
from .extractor import extract_dependencies
from .models import (
    CATEGORY_PRIORITY,
    WILDCARD,
    DependencyManifest,
    EntryDefinition,
    NotFound,
    ResolutionResult,
    ResourceCategory,
    ResourceId,
    Unreadable,
)
from .storage import ResourceStore

logger = logging.getLogger(__name__)


def find_cycle(
    stack: Sequence[ResourceId], candidate: ResourceId
) -> list[ResourceId] | None:
    """Return the cycle closed by visiting ``candidate``, if any.

    Args:
        stack: Current depth-first path, root first
        candidate: Resource about to be entered

    Returns:
        The chain from the first occurrence of ``candidate`` on the stack back
        to ``candidate`` (e.g. ``[a, b, a]``), or None if entering it is safe
    """
    for index, rid in enumerate(stack):
        if rid == candidate:
            return [*stack[index:], candidate]
    return None


class _Walk:
    """Mutable state of a single resolution."""

    def __init__(self, agents: list[ResourceId]):
        self.visited: set[ResourceId] = set()
        self.order: list[ResourceId] = []
        self.errors: list[BundleError] = []
        self.stack: list[ResourceId] = []
        self.missing: set[tuple[str, ResourceId]] = set()
        self.agents = agents


class Resolver:
    """Expands an entry's manifest into an ordered, deduplicated resource list.

    Resolution never raises on a bad reference: missing resources, cycles and
    malformed nested definitions are accumulated so that one pass reports
    every problem of an entry.
    """

    def __init__(self, store: ResourceStore):
        """Initialize resolver with the store it looks resources up in."""
        self.store = store

    def resolve(self, entry: EntryDefinition) -> ResolutionResult:
        """Resolve an entry into ordered resources and errors.

        Args:
            entry: Parsed agent or team definition

        Returns:
            ResolutionResult with the depth-first order (agent entries first
            list themselves) and every error encountered
        """
        # Expanded once per resolution from the live store.
        walk = _Walk(agents=self.store.list_agents())

        root = entry.root_id
        if root is not None:
            walk.stack.append(root)
            walk.visited.add(root)
            walk.order.append(root)

        self._walk_manifest(walk, entry.dependencies, self._owner(entry))

        if root is not None:
            walk.stack.pop()

        logger.debug(
            f"Resolved {entry.kind.value} '{entry.id}': "
            f"{len(walk.order)} resources, {len(walk.errors)} errors"
        )
        return ResolutionResult(
            entry_id=entry.id, order=walk.order, errors=walk.errors
        )

    @staticmethod
    def _owner(entry: EntryDefinition) -> str:
        return f"{entry.kind.value} '{entry.id}'"

    def _expand(
        self, walk: _Walk, manifest: DependencyManifest, category: ResourceCategory
    ) -> list[str]:
        """Declared names of one category with the wildcard expanded."""
        names = list(manifest.names(category))
        if category is not ResourceCategory.AGENT or WILDCARD not in names:
            return names

        expanded: list[str] = []
        for name in names:
            if name == WILDCARD:
                expanded.extend(
                    rid.name for rid in walk.agents if rid not in walk.stack
                )
            else:
                expanded.append(name)
        return expanded

    def _walk_manifest(
        self, walk: _Walk, manifest: DependencyManifest, owner: str
    ) -> None:
        for category in CATEGORY_PRIORITY:
            for name in self._expand(walk, manifest, category):
                self._visit(walk, category, name, owner)

    def _visit(
        self, walk: _Walk, category: ResourceCategory, name: str, owner: str
    ) -> None:
        found = self.store.locate(category, name)
        if isinstance(found, NotFound):
            # One report per declarer, however often the name is listed.
            if (owner, found.id) not in walk.missing:
                walk.missing.add((owner, found.id))
                walk.errors.append(MissingDependency(owner, found.id))
            return

        rid = found.id

        # Every node on the stack is also visited, so check cycles first.
        chain = find_cycle(walk.stack, rid)
        if chain is not None:
            walk.errors.append(CircularDependency(chain))
            return

        if rid in walk.visited:
            return

        walk.visited.add(rid)
        if isinstance(found, Unreadable):
            walk.errors.append(
                ParseError(str(rid), f"cannot decode {found.path} ({found.reason})")
            )
            return

        walk.stack.append(rid)
        walk.order.append(rid)
        try:
            nested = extract_dependencies(found)
        except ParseError as e:
            walk.errors.append(e)
        else:
            self._walk_manifest(walk, nested, str(rid))
        finally:
            walk.stack.pop()
