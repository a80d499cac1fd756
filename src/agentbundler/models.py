"""Core data models for agentbundler."""

import hashlib
import json
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# File extensions stripped from declared dependency names.
KNOWN_SUFFIXES = (".md", ".yaml", ".yml", ".txt")

WILDCARD = "*"


def normalize_name(name: str) -> str:
    """Strip a known file extension from a declared resource name."""
    for suffix in KNOWN_SUFFIXES:
        if name.endswith(suffix) and len(name) > len(suffix):
            return name[: -len(suffix)]
    return name


class ResourceCategory(str, Enum):
    """Resource category enumeration, in resolution priority order."""

    AGENT = "agent"
    WORKFLOW = "workflow"
    TASK = "task"
    TEMPLATE = "template"
    CHECKLIST = "checklist"
    UTIL = "util"
    DATA = "data"

    @property
    def directory(self) -> str:
        """Directory name of this category inside a resource root."""
        if self is ResourceCategory.DATA:
            return "data"
        return f"{self.value}s"

    @classmethod
    def from_key(cls, key: str) -> "ResourceCategory":
        """Look up a category by its manifest key (``tasks``, ``data``...)."""
        for category in cls:
            if category.directory == key:
                return category
        raise ValueError(f"Unknown dependency category '{key}'")


# Behavioral resources are walked before reference resources.
CATEGORY_PRIORITY: tuple[ResourceCategory, ...] = tuple(ResourceCategory)

MANIFEST_KEYS = frozenset(c.directory for c in ResourceCategory)


class EntryKind(str, Enum):
    """Kind of entry definition."""

    AGENT = "agent"
    TEAM = "team"


class TargetState(str, Enum):
    """Build target lifecycle states."""

    PENDING = "pending"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    SERIALIZED = "serialized"
    WRITTEN = "written"
    FAILED = "failed"


_STATE_RANK = {
    TargetState.PENDING: 0,
    TargetState.RESOLVING: 1,
    TargetState.RESOLVED: 2,
    TargetState.SERIALIZED: 3,
    TargetState.WRITTEN: 4,
}


class ResourceId(BaseModel):
    """Identity of a resource: its category and name."""

    model_config = ConfigDict(frozen=True)

    category: ResourceCategory = Field(..., description="Resource category")
    name: str = Field(..., description="Resource name (file stem)")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Normalize and validate the resource name."""
        v = normalize_name(v.strip())
        if not v or "/" in v or "\\" in v or v.startswith("."):
            raise ValueError(f"Invalid resource name '{v}'")
        return v

    def __str__(self) -> str:
        return f"{self.category.directory}/{self.name}"


class ResourceRecord(BaseModel):
    """A located resource with its verbatim content."""

    model_config = ConfigDict(frozen=True)

    id: ResourceId = Field(..., description="Resource identity")
    content: str = Field(..., description="Verbatim file content")
    origin: str = Field(..., description="Pack id of the root it came from")
    path: Path = Field(..., description="Source file path")


class OverlayRoot(BaseModel):
    """An additional resource tree that shadows the core root."""

    model_config = ConfigDict(frozen=True)

    pack_id: str = Field(..., description="Pack identity")
    path: Path = Field(..., description="Root directory of the pack")
    priority: int = Field(0, description="Higher priority wins")


class DependencyManifest(BaseModel):
    """Declared dependencies: category to ordered list of names."""

    model_config = ConfigDict(frozen=True)

    entries: dict[ResourceCategory, tuple[str, ...]] = Field(
        default_factory=dict, description="Declared names per category"
    )

    def names(self, category: ResourceCategory) -> tuple[str, ...]:
        return self.entries.get(category, ())

    def has_wildcard(self) -> bool:
        return WILDCARD in self.names(ResourceCategory.AGENT)

    def is_empty(self) -> bool:
        return not any(self.entries.values())

    def total(self) -> int:
        return sum(len(v) for v in self.entries.values())


class EntryDefinition(BaseModel):
    """An agent or team used as a root for dependency resolution."""

    id: str = Field(..., description="Entry identifier")
    kind: EntryKind = Field(..., description="Entry kind")
    title: str | None = Field(None, description="Display name")
    dependencies: DependencyManifest = Field(
        default_factory=DependencyManifest, description="Declared dependencies"
    )
    raw_content: str = Field(..., description="Verbatim entry file content")
    origin: str = Field("core", description="Pack id of the defining root")
    path: Path | None = Field(None, description="Entry file path")

    @property
    def root_id(self) -> ResourceId | None:
        """ResourceId of the entry itself; teams are not resources."""
        if self.kind is EntryKind.AGENT:
            return ResourceId(category=ResourceCategory.AGENT, name=self.id)
        return None

    @property
    def label(self) -> str:
        """Delimiter label for the entry's own section."""
        if self.kind is EntryKind.AGENT:
            return f"agents/{self.id}"
        return f"agent-teams/{self.id}"


class ResolutionResult(BaseModel):
    """Ordered resources and accumulated errors for one entry."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    entry_id: str = Field(..., description="Resolved entry id")
    order: list[ResourceId] = Field(default_factory=list)
    errors: list[Any] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class Bundle(BaseModel):
    """Serialized artifact for one entry point."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    entry_id: str = Field(..., description="Entry id")
    kind: EntryKind = Field(..., description="Entry kind")
    resources: list[ResourceRecord] = Field(default_factory=list)
    text: str = Field("", description="Serialized bundle text")
    fingerprint: str = Field("", description="SHA256 of the serialized text")
    errors: list[Any] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class TargetReport(BaseModel):
    """Outcome of one build target."""

    name: str = Field(..., description="Target entry id")
    kind: EntryKind = Field(..., description="Entry kind")
    pack: str = Field("core", description="Pack the target belongs to")
    source: str = Field("", description="Entry file path")
    state: TargetState = Field(TargetState.PENDING, description="Lifecycle state")
    resource_count: int = Field(0, description="Number of resolved resources")
    errors: list[str] = Field(default_factory=list, description="Rendered errors")
    output: str | None = Field(None, description="Written artifact path")
    fingerprint: str | None = Field(None, description="Artifact fingerprint")

    @property
    def failed(self) -> bool:
        return self.state is TargetState.FAILED

    def advance(self, state: TargetState) -> None:
        """Move to a later state; FAILED is reachable from any live state."""
        if self.state is TargetState.FAILED:
            raise ValueError(f"Target '{self.name}' already failed")
        if state is not TargetState.FAILED and (
            _STATE_RANK[state] <= _STATE_RANK[self.state]
        ):
            raise ValueError(
                f"Target '{self.name}' cannot move from "
                f"{self.state.value} to {state.value}"
            )
        self.state = state

    def fail(self, errors: list[Any]) -> None:
        self.errors.extend(str(e) for e in errors)
        self.advance(TargetState.FAILED)


class BuildReport(BaseModel):
    """Aggregated outcome of a build or validate run."""

    targets: list[TargetReport] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for t in self.targets if not t.failed)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.targets if t.failed)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def summary(self) -> dict[str, Any]:
        return {
            "targets": [t.model_dump(mode="json") for t in self.targets],
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


class NotFound(BaseModel):
    """Typed lookup miss returned by a resource store."""

    model_config = ConfigDict(frozen=True)

    id: ResourceId = Field(..., description="Requested resource")
    searched: tuple[str, ...] = Field(
        default_factory=tuple, description="Pack ids searched, in order"
    )

    def __bool__(self) -> bool:
        return False


class Unreadable(BaseModel):
    """A resource file that exists but could not be decoded as UTF-8.

    It still shadows lower-priority roots; only the targets that resolve to
    it fail.
    """

    model_config = ConfigDict(frozen=True)

    id: ResourceId = Field(..., description="Resource identity")
    origin: str = Field(..., description="Pack id of the root it came from")
    path: Path = Field(..., description="Source file path")
    reason: str = Field(..., description="Decoding error")

    def __bool__(self) -> bool:
        return False


def content_fingerprint(text: str) -> str:
    """Compute SHA256 fingerprint of serialized bundle text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def export_json_schemas(output_dir: Path) -> None:
    """Export JSON schemas for the report models to the specified directory.

    Args:
        output_dir: Directory to export schemas to
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    schemas = {
        "ResourceId": ResourceId.model_json_schema(),
        "OverlayRoot": OverlayRoot.model_json_schema(),
        "TargetReport": TargetReport.model_json_schema(),
        "BuildReport": BuildReport.model_json_schema(),
    }

    for name, schema in schemas.items():
        schema_file = output_dir / f"{name.lower()}.json"
        with open(schema_file, "w", encoding="utf-8") as f:
            json.dump(schema, f, indent=2, sort_keys=True)
        print(f"Exported {name} schema to {schema_file}")

