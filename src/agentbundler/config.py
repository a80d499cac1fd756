"""Configuration management for agentbundler."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .models import OverlayRoot

try:
    import tomllib as _toml  # Python 3.11+

    TOMLDecodeError = _toml.TOMLDecodeError
except ModuleNotFoundError:
    import tomli as _toml  # type: ignore[no-redef]
    from tomli import TOMLDecodeError  # type: ignore

CONFIG_FILENAME = "agentbundle.toml"


class Config:
    """Configuration manager for agentbundler."""

    def __init__(self, config_path: Path | None = None):
        """Initialize configuration from TOML file."""
        if config_path is None:
            # Default to agentbundle.toml in current directory
            config_path = Path.cwd() / CONFIG_FILENAME

        self.config_path = config_path
        self._config: dict[str, Any] = {}

        if config_path.exists():
            self._load_config()

    def _load_config(self) -> None:
        """Load configuration from TOML file."""
        try:
            with open(self.config_path, "rb") as f:
                self._config = _toml.load(f)
        except TOMLDecodeError as e:
            # Re-raise TOML parsing errors so CLI can handle them
            raise ValueError(
                f"Invalid TOML configuration in {self.config_path}: {e}"
            ) from e
        except OSError as e:
            raise ValueError(
                f"Failed to load configuration from {self.config_path}: {e}"
            ) from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key."""
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def _resolve(self, value: str) -> Path:
        """Resolve a path relative to the config file directory."""
        path = Path(value)
        if not path.is_absolute():
            path = self.config_path.parent / path
        return path

    @property
    def project_root(self) -> Path:
        return self.config_path.parent

    @property
    def core_root(self) -> Path:
        """Get core resource root path."""
        return self._resolve(str(self.get("core.root", "core")))

    @property
    def packs_root(self) -> Path:
        """Get expansion packs directory."""
        return self._resolve(str(self.get("packs.root", "expansion-packs")))

    @property
    def packs_enabled(self) -> bool:
        """Get whether expansion packs are built."""
        value = self.get("packs.enabled", True)
        return bool(value) if value is not None else True

    @property
    def overlays(self) -> list[OverlayRoot]:
        """Get shared overlay roots applied to every target."""
        raw = self.get("overlays", [])
        if not isinstance(raw, list):
            raise ValueError("'overlays' must be an array of tables")

        overlays = []
        for item in raw:
            try:
                overlays.append(
                    OverlayRoot(
                        pack_id=item["id"],
                        path=self._resolve(item["path"]),
                        priority=item.get("priority", 0),
                    )
                )
            except (KeyError, TypeError, ValidationError) as e:
                raise ValueError(f"Invalid overlay entry {item!r}: {e}") from e
        return overlays

    @property
    def output_dir(self) -> Path:
        """Get bundle output directory."""
        return self._resolve(str(self.get("build.output", "dist")))

    @property
    def workers(self) -> int:
        """Get number of concurrent build workers."""
        value = self.get("build.workers", 4)
        return max(1, int(value)) if value is not None else 4

    @property
    def preamble(self) -> str:
        """Get text placed at the top of every bundle."""
        value = self.get("build.preamble", "")
        return str(value) if value is not None else ""

    @property
    def log_level(self) -> str:
        """Get logging level."""
        value = self.get("logging.level", "INFO")
        return str(value).upper() if value is not None else "INFO"

    @property
    def log_format(self) -> str:
        """Get logging format."""
        value = self.get("logging.format", "%(message)s")
        return str(value) if value is not None else "%(message)s"
