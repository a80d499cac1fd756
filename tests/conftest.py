"""Shared fixtures for agentbundler tests."""

from pathlib import Path

import pytest


def agent_md(agent_id: str, dependencies: dict[str, list[str]] | None = None) -> str:
    """Render an agent definition with an embedded YAML block."""
    lines = [
        f"# {agent_id}",
        "",
        "```yaml",
        "agent:",
        f"  id: {agent_id}",
        f"  name: {agent_id.title()}",
    ]
    if dependencies:
        lines.append("dependencies:")
        for key, names in dependencies.items():
            lines.append(f"  {key}:")
            lines.extend(f"    - {name!r}" if name == "*" else f"    - {name}" for name in names)
    lines.extend(["```", ""])
    return "\n".join(lines)


def task_md(title: str, dependencies: dict[str, list[str]] | None = None) -> str:
    """Render a task, optionally declaring its own dependencies."""
    lines = [f"# {title}", "", "Do the thing.", ""]
    if dependencies:
        lines.extend(["```yaml", "dependencies:"])
        for key, names in dependencies.items():
            lines.append(f"  {key}:")
            lines.extend(f"    - {name}" for name in names)
        lines.extend(["```", ""])
    return "\n".join(lines)


def write_files(root: Path, files: dict[str, str]) -> Path:
    """Write ``{relative_path: content}`` under root."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
    return root


@pytest.fixture
def core_root(tmp_path):
    """A small core resource tree."""
    root = tmp_path / "core"
    write_files(
        root,
        {
            "agents/sm.md": agent_md(
                "sm", {"tasks": ["create-next-story.md", "correct-course.md"]}
            ),
            "agents/qa.md": agent_md(
                "qa",
                {"tasks": ["review-story.md"], "templates": ["story-tmpl.yaml"]},
            ),
            "tasks/create-next-story.md": task_md("Create Next Story"),
            "tasks/correct-course.md": task_md("Correct Course"),
            "tasks/review-story.md": task_md(
                "Review Story", {"templates": ["story-tmpl.yaml"]}
            ),
            "templates/story-tmpl.yaml": "template:\n  id: story\n  name: Story\n",
            "agent-teams/team-all.yaml": (
                "bundle:\n  name: Team All\n"
                "agents:\n  - '*'\n"
            ),
        },
    )
    return root
