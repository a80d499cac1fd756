"""File system resource store for agentbundler."""

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from types import MappingProxyType

from ..errors import DuplicateResourceId
from ..models import (
    KNOWN_SUFFIXES,
    NotFound,
    OverlayRoot,
    ResourceCategory,
    ResourceId,
    ResourceRecord,
    Unreadable,
)

logger = logging.getLogger(__name__)

CORE_PACK_ID = "core"
TEAMS_DIR = "agent-teams"


def read_verbatim(path: Path) -> str:
    """Read a text file without newline translation."""
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def iter_resource_files(directory: Path) -> Iterable[Path]:
    if not directory.is_dir():
        return []
    return sorted(
        p
        for p in directory.iterdir()
        if p.is_file()
        and not p.name.startswith(".")
        and p.suffix.lower() in KNOWN_SUFFIXES
    )


class FileSystemStorage:
    """Immutable snapshot of a core root plus priority-ordered overlays.

    Every file is read once, at construction. Lookups afterwards never touch
    the disk, so a single instance can be shared by concurrent resolutions
    within one build and must be rebuilt for the next build.
    """

    def __init__(self, core_root: Path, overlays: Sequence[OverlayRoot] = ()):
        """Scan the core root and overlays into a read-only snapshot."""
        self.core_root = Path(core_root)
        self.overlays = self._order_overlays(overlays)

        # Search order: overlays by descending priority, then core.
        self._roots: list[tuple[str, Path]] = [
            (o.pack_id, Path(o.path)) for o in self.overlays
        ]
        self._roots.append((CORE_PACK_ID, self.core_root))

        if not self.core_root.is_dir():
            logger.warning(f"Core root {self.core_root} does not exist")

        per_root: dict[str, MappingProxyType] = {}
        for pack_id, root in self._roots:
            per_root[pack_id] = MappingProxyType(self._scan_root(pack_id, root))
        self._per_root = MappingProxyType(per_root)

        merged: dict[ResourceId, ResourceRecord | Unreadable] = {}
        for pack_id, _ in self._roots:
            for rid, record in self._per_root[pack_id].items():
                merged.setdefault(rid, record)
        self._records = MappingProxyType(merged)

        self._teams = MappingProxyType(self._scan_teams())

        logger.debug(
            f"Scanned {len(self._records)} resources and {len(self._teams)} "
            f"teams across {len(self._roots)} roots"
        )

    @staticmethod
    def _order_overlays(overlays: Sequence[OverlayRoot]) -> list[OverlayRoot]:
        """Validate that overlay priority is a total order and sort it."""
        seen_ids: dict[str, OverlayRoot] = {}
        seen_priorities: dict[int, OverlayRoot] = {}

        for overlay in overlays:
            if overlay.pack_id == CORE_PACK_ID:
                raise DuplicateResourceId(
                    f"pack '{CORE_PACK_ID}'", [str(overlay.path)]
                )
            if overlay.pack_id in seen_ids:
                other = seen_ids[overlay.pack_id]
                raise DuplicateResourceId(
                    f"pack '{overlay.pack_id}'", [str(other.path), str(overlay.path)]
                )
            if overlay.priority in seen_priorities:
                other = seen_priorities[overlay.priority]
                raise DuplicateResourceId(
                    f"priority {overlay.priority}", [other.pack_id, overlay.pack_id]
                )
            seen_ids[overlay.pack_id] = overlay
            seen_priorities[overlay.priority] = overlay

        return sorted(overlays, key=lambda o: -o.priority)

    def _scan_root(
        self, pack_id: str, root: Path
    ) -> dict[ResourceId, ResourceRecord | Unreadable]:
        """Read every resource file of one root."""
        records: dict[ResourceId, ResourceRecord | Unreadable] = {}

        for category in ResourceCategory:
            for path in iter_resource_files(root / category.directory):
                rid = ResourceId(category=category, name=path.stem)
                if rid in records:
                    raise DuplicateResourceId(
                        rid, [str(records[rid].path), str(path)]
                    )
                try:
                    content = read_verbatim(path)
                except UnicodeDecodeError as e:
                    logger.warning(f"Cannot decode {path} as UTF-8: {e}")
                    records[rid] = Unreadable(
                        id=rid, origin=pack_id, path=path, reason=str(e)
                    )
                    continue
                records[rid] = ResourceRecord(
                    id=rid,
                    content=content,
                    origin=pack_id,
                    path=path,
                )

        return records

    def _scan_teams(self) -> dict[str, tuple[str, Path]]:
        """Map team name to (pack id, path), highest priority first."""
        teams: dict[str, tuple[str, Path]] = {}
        for pack_id, root in self._roots:
            local: set[str] = set()
            for path in iter_resource_files(root / TEAMS_DIR):
                if path.stem in local:
                    raise DuplicateResourceId(f"team '{path.stem}'", [str(path)])
                local.add(path.stem)
                teams.setdefault(path.stem, (pack_id, path))
        return teams

    @property
    def roots(self) -> list[str]:
        """Pack ids in search order."""
        return [pack_id for pack_id, _ in self._roots]

    def locate(
        self, category: ResourceCategory, name: str
    ) -> ResourceRecord | Unreadable | NotFound:
        """Find a resource, overlays first. Never raises for a miss.

        An undecodable file is returned as ``Unreadable``.
        """
        rid = ResourceId(category=category, name=name)
        record = self._records.get(rid)
        if record is None:
            return NotFound(id=rid, searched=tuple(self.roots))
        return record

    def get(self, rid: ResourceId) -> ResourceRecord | Unreadable | NotFound:
        return self.locate(rid.category, rid.name)

    def list_agents(self) -> list[ResourceId]:
        """All agents visible through any root, sorted by name."""
        return sorted(
            (rid for rid in self._records if rid.category is ResourceCategory.AGENT),
            key=lambda rid: rid.name,
        )

    def records(
        self, category: ResourceCategory, origin: str | None = None
    ) -> list[ResourceRecord | Unreadable]:
        """Effective records of a category, optionally limited to one pack.

        Includes ``Unreadable`` entries.
        """
        return sorted(
            (
                r
                for r in self._records.values()
                if r.id.category is category
                and (origin is None or r.origin == origin)
            ),
            key=lambda r: r.id.name,
        )

    def team_files(self, origin: str | None = None) -> list[Path]:
        """Effective team definition files, optionally limited to one pack."""
        return [
            path
            for name, (pack_id, path) in sorted(self._teams.items())
            if origin is None or pack_id == origin
        ]

    def __len__(self) -> int:
        return len(self._records)
