"""Command-line interface for agentbundler."""

import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .builder import Builder
from .config import CONFIG_FILENAME, Config
from .errors import BundleError
from .models import BuildReport, ResourceCategory

# Exit codes
EXIT_OK = 0
EXIT_VALIDATION_ERROR = 1
EXIT_BAD_USAGE = 2
EXIT_IO_ERROR = 4

app = typer.Typer()
console = Console()
err_console = Console(stderr=True)

DEFAULT_CONFIG = """# agentbundler configuration

[core]
# Core resource root (agents/, agent-teams/, tasks/, templates/, ...)
root = "core"

[packs]
# Each subdirectory is an expansion pack layered over the core root
root = "expansion-packs"
enabled = true

[build]
# Where bundles are written
output = "dist"

# Number of targets built concurrently
workers = 4

[logging]
level = "INFO"
format = "%(message)s"
"""

SAMPLE_AGENT = """# example

```yaml
agent:
  id: example
  name: Example
  title: Example Agent
dependencies:
  tasks:
    - hello-world.md
```
"""

SAMPLE_TASK = """# Hello World

Greet the user and list the commands you support.
"""


def configure_logging(config: Config) -> None:
    """Route library logging through rich on stderr."""
    logging.basicConfig(
        level=config.log_level,
        format=config.log_format,
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def load_config(path: Path | None) -> Config:
    """Load project configuration or exit with a usage error."""
    config_path = path / CONFIG_FILENAME if path else Path.cwd() / CONFIG_FILENAME
    if not config_path.exists():
        console.print(
            f"[red]agentbundler project not found at {config_path.parent}[/red]"
        )
        raise typer.Exit(EXIT_BAD_USAGE)

    try:
        config = Config(config_path)
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE) from e

    configure_logging(config)
    return config


def render_report(report: BuildReport, title: str) -> None:
    """Print a target table, one error block per failed target, and a tally."""
    table = Table(title=title)
    table.add_column("Target", style="cyan")
    table.add_column("Kind", style="white")
    table.add_column("Pack", style="green")
    table.add_column("Resources", style="blue", justify="right")
    table.add_column("Status", style="yellow")

    for target in report.targets:
        status = (
            "[red]✗ failed[/red]"
            if target.failed
            else f"[green]✓ {target.state.value}[/green]"
        )
        table.add_row(
            target.name,
            target.kind.value,
            target.pack,
            str(target.resource_count),
            status,
        )

    console.print(table)

    for target in report.targets:
        if not target.failed:
            continue
        console.print(
            f"\n[red]✗ {target.kind.value} '{target.name}' ({target.pack}):[/red]"
        )
        for error in target.errors:
            console.print(f"  [red]- {escape(error)}[/red]")

    console.print(f"\n{report.succeeded} succeeded, {report.failed} failed")


@app.command()
def init(
    path: Path | None = typer.Option(
        None, "--path", help="Path to initialize (default: current directory)"
    ),
    force: bool = typer.Option(
        False, "--force", help="Overwrite existing configuration"
    ),
) -> None:
    """Initialize an agentbundler project."""
    try:
        target_path = path or Path.cwd()
        config_path = target_path / CONFIG_FILENAME

        if config_path.exists() and not force:
            console.print(
                "[red]agentbundler already initialized. Use --force to overwrite.[/red]"
            )
            raise typer.Exit(EXIT_BAD_USAGE)

        target_path.mkdir(parents=True, exist_ok=True)
        config_path.write_text(DEFAULT_CONFIG, encoding="utf-8")

        core_path = target_path / "core"
        for category in ResourceCategory:
            (core_path / category.directory).mkdir(parents=True, exist_ok=True)
        (core_path / "agent-teams").mkdir(parents=True, exist_ok=True)
        (target_path / "expansion-packs").mkdir(parents=True, exist_ok=True)

        sample_agent = core_path / "agents" / "example.md"
        if not sample_agent.exists():
            sample_agent.write_text(SAMPLE_AGENT, encoding="utf-8")
        sample_task = core_path / "tasks" / "hello-world.md"
        if not sample_task.exists():
            sample_task.write_text(SAMPLE_TASK, encoding="utf-8")

        console.print(f"[green]agentbundler initialized in {target_path}[/green]")
        console.print(f"[blue]Configuration: {config_path}[/blue]")
        console.print(f"[blue]Core root: {core_path}[/blue]")

    except typer.Exit:
        # Re-raise typer.Exit exceptions (preserve exit codes)
        raise
    except OSError as e:
        console.print(f"[red]Failed to initialize: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command(name="list")
def list_entries(
    path: Path | None = typer.Option(None, "--path", help="Path to project"),
    packs: bool = typer.Option(
        True, "--packs/--no-packs", help="Include expansion packs"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List the agents and teams that would be built."""
    try:
        config = load_config(path)
        targets = Builder(config).discover_targets(include_packs=packs)
        rows = [
            {"name": t.name, "kind": t.kind.value, "pack": t.pack, "origin": t.origin}
            for t in targets
        ]

        if json_output:
            console.print_json(json.dumps(rows, indent=2))
            return

        table = Table(title="Entries")
        table.add_column("Name", style="cyan")
        table.add_column("Kind", style="white")
        table.add_column("Pack", style="green")
        table.add_column("Origin", style="blue")
        for row in rows:
            table.add_row(row["name"], row["kind"], row["pack"], row["origin"])

        console.print(table)
        console.print(f"\nTotal: {len(rows)} entries")

    except typer.Exit:
        raise
    except BundleError as e:
        console.print(f"[red]Invalid resource tree: {e}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE) from e
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE) from e
    except OSError as e:
        console.print(f"[red]Failed to list entries: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command()
def validate(
    path: Path | None = typer.Option(None, "--path", help="Path to project"),
    agent: str | None = typer.Option(None, "--agent", help="Validate one agent"),
    team: str | None = typer.Option(None, "--team", help="Validate one team"),
    packs: bool = typer.Option(
        True, "--packs/--no-packs", help="Include expansion packs"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Check dependency integrity of every target without writing bundles."""
    try:
        config = load_config(path)
        report = Builder(config).validate(include_packs=packs, agent=agent, team=team)

        if json_output:
            console.print_json(json.dumps(report.summary(), indent=2))
        else:
            render_report(report, "Validation")

        if not report.ok:
            if not json_output:
                console.print("\n[red]Validation failed[/red]")
            raise typer.Exit(EXIT_VALIDATION_ERROR)

        if not json_output:
            console.print("\n[green]All dependencies resolve[/green]")

    except typer.Exit:
        raise
    except BundleError as e:
        console.print(f"[red]Invalid resource tree: {e}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE) from e
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE) from e
    except OSError as e:
        console.print(f"[red]Validation failed: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command()
def build(
    path: Path | None = typer.Option(None, "--path", help="Path to project"),
    agent: str | None = typer.Option(None, "--agent", help="Build one agent"),
    team: str | None = typer.Option(None, "--team", help="Build one team"),
    packs: bool = typer.Option(
        True, "--packs/--no-packs", help="Include expansion packs"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Build one web bundle per agent and team."""
    try:
        config = load_config(path)
        report = Builder(config).build(include_packs=packs, agent=agent, team=team)

        if json_output:
            console.print_json(json.dumps(report.summary(), indent=2))
        else:
            render_report(report, "Bundles")
            if report.succeeded:
                console.print(f"[blue]Output: {config.output_dir}[/blue]")

        if not report.ok:
            raise typer.Exit(EXIT_VALIDATION_ERROR)

    except typer.Exit:
        raise
    except BundleError as e:
        console.print(f"[red]Invalid resource tree: {e}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE) from e
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE) from e
    except OSError as e:
        console.print(f"[red]Build failed: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


def main() -> None:
    app()


if __name__ == "__main__":
    main()
