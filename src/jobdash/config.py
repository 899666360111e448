"""Configuration for jobdash."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

PROGRAM_TITLE = "dash"


def default_config_path() -> Path:
    return Path.home() / ".config" / PROGRAM_TITLE / "config.toml"


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    config_path: Path = field(default_factory=default_config_path)
    interval: float = 60.0
    fetch_timeout: float = 30.0
    scp_command: str = "scp"
    ssh_options: tuple[str, ...] = ()
    temp_root: Path | None = None
    debug: bool = False

    def with_overrides(self, **changes: Any) -> Config:
        """Return a copy with every non-None value in ``changes`` applied."""
        applied = {key: value for key, value in changes.items() if value is not None}
        if "ssh_options" in applied:
            applied["ssh_options"] = tuple(applied["ssh_options"])
        return replace(self, **applied)
