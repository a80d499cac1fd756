"""Build orchestration for agentbundler."""

import logging
import os
import tempfile
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .config import Config
from .errors import BundleError, ParseError
from .extractor import extract_entry, load_structured_block
from .models import (
    Bundle,
    BuildReport,
    EntryDefinition,
    EntryKind,
    OverlayRoot,
    ResolutionResult,
    ResourceCategory,
    ResourceRecord,
    TargetReport,
    TargetState,
    content_fingerprint,
)
from .resolver import Resolver
from .serializer import BundleSerializer
from .storage import CORE_PACK_ID, FileSystemStorage
from .storage.filesystem import TEAMS_DIR, iter_resource_files, read_verbatim

logger = logging.getLogger(__name__)

PACK_CONFIG_FILES = ("config.yaml", "config.yml")
AGENTS_DIR = ResourceCategory.AGENT.directory


class BuildContext:
    """Build-scoped state shared by every target built against one store.

    Holds an immutable store snapshot, so concurrent targets need no locks.
    A context must not outlive the build it was created for.
    """

    def __init__(
        self, store: FileSystemStorage, serializer: BundleSerializer | None = None
    ):
        self.store = store
        self.resolver = Resolver(store)
        self.serializer = serializer or BundleSerializer()

    def records(self, result: ResolutionResult) -> list[ResourceRecord]:
        """Records of every resolved id, in order."""
        records = []
        for rid in result.order:
            found = self.store.get(rid)
            if isinstance(found, ResourceRecord):
                records.append(found)
        return records

    def bundle(self, entry: EntryDefinition, result: ResolutionResult) -> Bundle:
        """Serialize an already resolved entry."""
        resources = self.records(result)
        text = self.serializer.serialize(entry, resources)
        return Bundle(
            entry_id=entry.id,
            kind=entry.kind,
            resources=resources,
            text=text,
            fingerprint=content_fingerprint(text),
            errors=list(result.errors),
        )


def resolve(entry: EntryDefinition, context: BuildContext) -> ResolutionResult:
    """Resolve an entry's dependencies without producing any output."""
    return context.resolver.resolve(entry)


def resolve_and_serialize(entry: EntryDefinition, context: BuildContext) -> Bundle:
    """Resolve an entry and serialize it into a bundle.

    The bundle carries the resolution errors; callers decide whether a
    bundle with errors is written.
    """
    return context.bundle(entry, resolve(entry, context))


class BuildTarget:
    """One entry file together with the context it is built in.

    A target of a pack whose store could not be built has no context and
    carries the error that fails it.
    """

    def __init__(
        self,
        kind: EntryKind,
        path: Path,
        pack: str,
        context: BuildContext | None,
        origin: str | None = None,
        error: BundleError | None = None,
    ):
        self.kind = kind
        self.path = path
        self.pack = pack
        self.context = context
        self.origin = origin or pack
        self.error = error

    @property
    def name(self) -> str:
        return self.path.stem

    def load(self) -> EntryDefinition:
        """Parse the entry definition; raises ParseError."""
        try:
            content = read_verbatim(self.path)
        except UnicodeDecodeError as e:
            owner = f"{self.kind.value} '{self.name}'"
            raise ParseError(owner, f"cannot decode {self.path} ({e})") from e
        return extract_entry(self.path, content, self.kind, self.origin)

    def output_path(self, output_dir: Path, entry_id: str) -> Path:
        folder = "agents" if self.kind is EntryKind.AGENT else "teams"
        if self.pack != CORE_PACK_ID:
            output_dir = output_dir / "expansion-packs" / self.pack
        return output_dir / folder / f"{entry_id}.txt"


class Builder:
    """Enumerates build targets and drives resolution and serialization."""

    def __init__(self, config: Config):
        """Initialize builder from configuration."""
        self.config = config

    def _serializer(self) -> BundleSerializer:
        return BundleSerializer(preamble=self.config.preamble)

    def _pack_dirs(self) -> list[Path]:
        root = self.config.packs_root
        if not self.config.packs_enabled or not root.is_dir():
            return []
        return sorted(
            p for p in root.iterdir() if p.is_dir() and not p.name.startswith(".")
        )

    def _pack_overlay(
        self, pack_dir: Path, shared: Sequence[OverlayRoot]
    ) -> OverlayRoot:
        """Overlay root for one pack, above all shared overlays by default."""
        priority = max((o.priority for o in shared), default=0) + 1

        for filename in PACK_CONFIG_FILES:
            config_file = pack_dir / filename
            if not config_file.is_file():
                continue
            owner = f"pack '{pack_dir.name}'"
            try:
                text = read_verbatim(config_file)
            except UnicodeDecodeError as e:
                raise ParseError(owner, f"cannot decode {config_file} ({e})") from e
            data = load_structured_block(text, config_file.suffix, owner)
            if isinstance(data, dict) and data.get("priority") is not None:
                try:
                    priority = int(data["priority"])
                except (TypeError, ValueError) as e:
                    raise ParseError(
                        owner, f"invalid priority {data['priority']!r}"
                    ) from e
            break

        return OverlayRoot(pack_id=pack_dir.name, path=pack_dir, priority=priority)

    def _broken_pack_targets(
        self, pack_dir: Path, error: BundleError
    ) -> list[BuildTarget]:
        """Failing targets for every entry file of a pack that cannot be loaded."""
        pack = pack_dir.name
        targets = [
            BuildTarget(EntryKind.AGENT, path, pack, None, error=error)
            for path in iter_resource_files(pack_dir / AGENTS_DIR)
        ]
        targets.extend(
            BuildTarget(EntryKind.TEAM, path, pack, None, error=error)
            for path in iter_resource_files(pack_dir / TEAMS_DIR)
        )
        if not targets:
            logger.warning(f"Skipping pack '{pack}' with no entries: {error}")
        return targets

    def discover_targets(
        self,
        include_packs: bool = True,
        agent: str | None = None,
        team: str | None = None,
    ) -> list[BuildTarget]:
        """Enumerate every build target with a fresh context per store.

        Args:
            include_packs: Also build each expansion pack's agents and teams
            agent: Only build agents with this name
            team: Only build teams with this file name

        Returns:
            Targets in a deterministic order: core agents, core teams, then
            each pack's agents and teams. A pack whose store cannot be built
            contributes targets that are already failed.

        Raises:
            BundleError: If the core root or the shared overlays are ill-formed
        """
        shared = self.config.overlays
        serializer = self._serializer()

        core_context = BuildContext(
            FileSystemStorage(self.config.core_root, shared), serializer
        )
        candidates = self._context_targets(CORE_PACK_ID, core_context)

        if include_packs:
            for pack_dir in self._pack_dirs():
                try:
                    overlay = self._pack_overlay(pack_dir, shared)
                    store = FileSystemStorage(
                        self.config.core_root, [*shared, overlay]
                    )
                except BundleError as e:
                    logger.warning(f"Pack '{pack_dir.name}' is unusable: {e}")
                    candidates.extend(self._broken_pack_targets(pack_dir, e))
                    continue
                context = BuildContext(store, serializer)
                candidates.extend(self._context_targets(overlay.pack_id, context))

        only_agents = agent is not None and team is None
        only_teams = team is not None and agent is None

        targets: list[BuildTarget] = []
        for target in candidates:
            if target.kind is EntryKind.AGENT:
                if only_teams or (agent is not None and target.name != agent):
                    continue
            elif only_agents or (team is not None and target.name != team):
                continue
            targets.append(target)

        logger.debug(f"Discovered {len(targets)} build targets")
        return targets

    @staticmethod
    def _context_targets(pack: str, context: BuildContext) -> list[BuildTarget]:
        """Agents then teams defined by one pack (or core) in its context."""
        origin = None if pack == CORE_PACK_ID else pack
        targets = [
            BuildTarget(EntryKind.AGENT, record.path, pack, context, record.origin)
            for record in context.store.records(ResourceCategory.AGENT, origin)
        ]
        targets.extend(
            BuildTarget(EntryKind.TEAM, path, pack, context)
            for path in context.store.team_files(origin)
        )
        return targets

    def validate(
        self,
        include_packs: bool = True,
        agent: str | None = None,
        team: str | None = None,
    ) -> BuildReport:
        """Resolve every target and report, writing nothing."""
        targets = self.discover_targets(include_packs, agent, team)
        return self._run(targets, write=False)

    def build(
        self,
        include_packs: bool = True,
        agent: str | None = None,
        team: str | None = None,
    ) -> BuildReport:
        """Resolve, serialize and write every target."""
        targets = self.discover_targets(include_packs, agent, team)
        return self._run(targets, write=True)

    def _run(self, targets: Sequence[BuildTarget], write: bool) -> BuildReport:
        output_dir = self.config.output_dir

        def run_one(target: BuildTarget) -> TargetReport:
            return self._build_target(target, output_dir, write)

        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            reports = list(pool.map(run_one, targets))

        report = BuildReport(targets=reports)
        logger.info(
            f"{'Built' if write else 'Validated'} {len(reports)} targets: "
            f"{report.succeeded} succeeded, {report.failed} failed"
        )
        return report

    def _build_target(
        self, target: BuildTarget, output_dir: Path, write: bool
    ) -> TargetReport:
        """Drive one target through its lifecycle; failures stay local."""
        report = TargetReport(
            name=target.name,
            kind=target.kind,
            pack=target.pack,
            source=str(target.path),
        )
        report.advance(TargetState.RESOLVING)

        if target.error is not None:
            report.fail([target.error])
            return report

        try:
            entry = target.load()
        except (ParseError, OSError) as e:
            logger.warning(f"Failed to parse {target.path}: {e}")
            report.fail([e])
            return report

        report.name = entry.id
        result = resolve(entry, target.context)
        report.resource_count = len(result.order)

        if not result.ok:
            logger.warning(
                f"{entry.kind.value} '{entry.id}' has {len(result.errors)} errors"
            )
            report.fail(result.errors)
            return report

        report.advance(TargetState.RESOLVED)
        if not write:
            return report

        bundle = target.context.bundle(entry, result)
        report.fingerprint = bundle.fingerprint
        report.advance(TargetState.SERIALIZED)

        path = target.output_path(output_dir, entry.id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(path, bundle.text)
        except OSError as e:
            logger.warning(f"Failed to write {path}: {e}")
            report.fail([e])
            return report

        report.output = str(path)
        report.advance(TargetState.WRITTEN)
        logger.debug(f"Wrote {path}")
        return report


def _atomic_write(path: Path, content: str) -> None:
    """Write content to file atomically, without newline translation."""
    temp_fd = None
    temp_path = None

    try:
        temp_fd, temp_path_str = tempfile.mkstemp(
            dir=path.parent, prefix=f"{path.name}.tmp.", suffix=".tmp"
        )
        temp_path = Path(temp_path_str)

        with os.fdopen(temp_fd, "w", encoding="utf-8", newline="") as f:
            temp_fd = None  # closed by the context manager
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        temp_path.replace(path)

    finally:
        if temp_fd is not None:
            os.close(temp_fd)
        if temp_path and temp_path.exists():
            temp_path.unlink(missing_ok=True)


__all__ = [
    "BuildContext",
    "BuildTarget",
    "Builder",
    "resolve",
    "resolve_and_serialize",
]
