"""Bundle serialization for agentbundler."""

from collections.abc import Iterable

from .models import EntryDefinition, ResourceRecord

MARKER_FILL = "=" * 20


def start_marker(label: str) -> str:
    return f"{MARKER_FILL} START: {label} {MARKER_FILL}"


def end_marker(label: str) -> str:
    return f"{MARKER_FILL} END: {label} {MARKER_FILL}"


def _section(label: str, content: str) -> str:
    # Exactly one newline separates the payload from END, whatever it ends with.
    return f"{start_marker(label)}\n{content}\n{end_marker(label)}\n"


def read_section(text: str, label: str) -> str | None:
    """Recover the exact content of one section of a bundle, or None."""
    head = start_marker(label) + "\n"
    tail = "\n" + end_marker(label) + "\n"
    start = text.find(head)
    if start < 0:
        return None
    start += len(head)
    end = text.find(tail, start)
    if end < 0:
        return None
    return text[start:end]


class BundleSerializer:
    """Concatenates an entry and its resources into one delimited text."""

    def __init__(self, preamble: str = ""):
        """Initialize serializer with optional text placed before all sections."""
        self.preamble = preamble

    def serialize(
        self, entry: EntryDefinition, resources: Iterable[ResourceRecord]
    ) -> str:
        """Serialize an entry and its resolved resources.

        Args:
            entry: The entry whose own content opens the bundle
            resources: Resolved records in resolution order; the entry's own
                record, if present, is skipped

        Returns:
            The bundle text. Identical inputs always give identical output.
        """
        sections = []
        if self.preamble:
            sections.append(self.preamble.rstrip("\n") + "\n")

        sections.append(_section(entry.label, entry.raw_content))

        root = entry.root_id
        for record in resources:
            if record.id == root:
                continue
            sections.append(_section(str(record.id), record.content))

        return "\n".join(sections)
