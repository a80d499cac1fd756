"""Dependency extraction for agent, team and resource definitions."""

import logging
import re
from io import StringIO
from pathlib import Path
from typing import Any

import ruamel.yaml
from pydantic import ValidationError
from ruamel.yaml.error import YAMLError

from .errors import ParseError
from .models import (
    MANIFEST_KEYS,
    WILDCARD,
    DependencyManifest,
    EntryDefinition,
    EntryKind,
    ResourceCategory,
    ResourceId,
    ResourceRecord,
)

logger = logging.getLogger(__name__)

_FENCED_YAML = re.compile(r"^```ya?ml[^\n]*\n(.*?)^```", re.MULTILINE | re.DOTALL)
_FRONT_MATTER = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^---[ \t]*\r?$", re.MULTILINE | re.DOTALL
)

_YAML_SUFFIXES = (".yaml", ".yml")


def _yaml() -> ruamel.yaml.YAML:
    return ruamel.yaml.YAML(typ="safe", pure=True)


def load_structured_block(text: str, suffix: str, owner: str) -> Any:
    """Parse the structured block embedded in a definition file.

    YAML files are parsed whole. Markdown files use the first fenced
    ``yaml`` block, falling back to front matter.

    Args:
        text: Raw file content
        suffix: File suffix, used to pick the parsing strategy
        owner: Identifier used in error messages

    Returns:
        The parsed block, or None when the file carries no block

    Raises:
        ParseError: If the block is not valid YAML
    """
    if suffix.lower() in _YAML_SUFFIXES:
        source = text
    else:
        match = _FENCED_YAML.search(text) or _FRONT_MATTER.search(text)
        if match is None:
            return None
        source = match.group(1)

    try:
        return _yaml().load(StringIO(source))
    except YAMLError as e:
        problem = getattr(e, "problem", None) or str(e).splitlines()[0]
        raise ParseError(owner, f"invalid YAML block ({problem})") from e


def parse_manifest(data: Any, owner: str) -> DependencyManifest:
    """Turn a raw ``dependencies`` mapping into a closed manifest.

    Raises:
        ParseError: On unknown categories, non-list values or bad names
    """
    if data is None:
        return DependencyManifest()
    if not isinstance(data, dict):
        raise ParseError(owner, "'dependencies' must be a mapping")

    entries: dict[ResourceCategory, tuple[str, ...]] = {}
    for key, names in data.items():
        if key not in MANIFEST_KEYS:
            raise ParseError(owner, f"unknown dependency category '{key}'")
        category = ResourceCategory.from_key(key)
        entries[category] = _parse_names(names, owner, key)

    return DependencyManifest(entries=entries)


def _parse_names(names: Any, owner: str, key: str) -> tuple[str, ...]:
    if names is None:
        return ()
    if not isinstance(names, list):
        raise ParseError(owner, f"'{key}' must be a list of names")

    parsed = []
    for name in names:
        if not isinstance(name, str):
            raise ParseError(owner, f"'{key}' contains non-string entry {name!r}")
        if name == WILDCARD:
            if key != ResourceCategory.AGENT.directory:
                raise ParseError(owner, "wildcard is only allowed in 'agents'")
            parsed.append(name)
            continue
        try:
            rid = ResourceId(category=ResourceCategory.from_key(key), name=name)
        except ValidationError as e:
            raise ParseError(owner, f"invalid name {name!r} in '{key}'") from e
        parsed.append(rid.name)
    return tuple(parsed)


def _merge(*manifests: DependencyManifest) -> DependencyManifest:
    merged: dict[ResourceCategory, list[str]] = {}
    for manifest in manifests:
        for category, names in manifest.entries.items():
            merged.setdefault(category, []).extend(names)
    return DependencyManifest(entries={k: tuple(v) for k, v in merged.items()})


def extract_entry(
    path: Path,
    content: str,
    kind: EntryKind,
    origin: str = "core",
) -> EntryDefinition:
    """Parse an agent or team definition file.

    Raises:
        ParseError: If the definition is missing or malformed
    """
    owner = f"{kind.value} '{path.stem}'"
    block = load_structured_block(content, path.suffix, owner)
    if block is None:
        raise ParseError(owner, "no structured YAML block found")
    if not isinstance(block, dict):
        raise ParseError(owner, "structured block must be a mapping")

    if kind is EntryKind.AGENT:
        entry_id, title, manifest = _agent_fields(block, path, owner)
    else:
        entry_id, title, manifest = _team_fields(block, path, owner)

    try:
        return EntryDefinition(
            id=entry_id,
            kind=kind,
            title=title,
            dependencies=manifest,
            raw_content=content,
            origin=origin,
            path=path,
        )
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
        raise ParseError(owner, f"invalid entry fields ({fields})") from e


def _title(meta: dict[str, Any], keys: tuple[str, ...], owner: str) -> str | None:
    """First non-empty display name among ``keys``; must be a string."""
    for key in keys:
        value = meta.get(key)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise ParseError(owner, f"'{key}' must be a string, got {value!r}")
        return value
    return None


def _agent_fields(
    block: dict[str, Any], path: Path, owner: str
) -> tuple[str, str | None, DependencyManifest]:
    agent = block.get("agent") or {}
    if not isinstance(agent, dict):
        raise ParseError(owner, "'agent' must be a mapping")

    # Agents are also resources, so their identity is the file stem.
    entry_id = path.stem
    declared = agent.get("id")
    if declared is not None and str(declared) != entry_id:
        raise ParseError(
            owner, f"agent.id '{declared}' does not match file name '{entry_id}'"
        )
    title = _title(agent, ("title", "name"), owner)
    manifest = parse_manifest(block.get("dependencies"), f"agent '{entry_id}'")
    return entry_id, title, manifest


def _team_fields(
    block: dict[str, Any], path: Path, owner: str
) -> tuple[str, str | None, DependencyManifest]:
    meta = block.get("bundle") or {}
    if not isinstance(meta, dict):
        raise ParseError(owner, "'bundle' must be a mapping")

    entry_id = str(meta.get("id") or path.stem)
    title = _title(meta, ("name",), owner)
    owner = f"team '{entry_id}'"

    top_level = (
        ResourceCategory.AGENT.directory,
        ResourceCategory.WORKFLOW.directory,
    )
    listed = {key: block[key] for key in top_level if key in block}
    manifest = _merge(
        parse_manifest(listed, owner),
        parse_manifest(block.get("dependencies"), owner),
    )
    return entry_id, title, manifest


def extract_dependencies(record: ResourceRecord) -> DependencyManifest:
    """Dependencies declared by a resource that is itself a dependency.

    Agents are parsed like entries. Other resources are opaque payload:
    without a parseable block they declare nothing.

    Raises:
        ParseError: If an agent is malformed or any declared manifest is
            structurally invalid
    """
    owner = str(record.id)

    if record.id.category is ResourceCategory.AGENT:
        entry = extract_entry(
            record.path, record.content, EntryKind.AGENT, record.origin
        )
        return entry.dependencies

    try:
        block = load_structured_block(record.content, record.path.suffix, owner)
    except ParseError as e:
        logger.debug(f"Treating {owner} as opaque payload: {e}")
        return DependencyManifest()

    if not isinstance(block, dict) or "dependencies" not in block:
        return DependencyManifest()
    return parse_manifest(block["dependencies"], owner)
