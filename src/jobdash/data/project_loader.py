"""Load monitored projects and settings from a TOML configuration file.

The file holds optional top-level settings and an array of ``[[project]]``
tables::

    interval = 30
    fetch_timeout = 10
    ssh_options = ["Port=2222"]

    [[project]]
    name = "c2h4"
    host = "cluster"
    path = "/home/me/c2h4/pbqff.out"
    type = "pbqff"
    update_interval = 120
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from jobdash.config import Config
from jobdash.errors import ConfigurationError
from jobdash.models.projects import Project

logger = logging.getLogger(__name__)


class FileSettings(BaseModel):
    """Top-level settings accepted in the configuration file."""

    interval: float | None = Field(default=None, gt=0)
    fetch_timeout: float | None = Field(default=None, gt=0)
    scp_command: str | None = None
    ssh_options: list[str] | None = None


@dataclass
class LoadedConfig:
    """Result of loading a configuration file."""

    config: Config
    projects: list[Project] = field(default_factory=list)
    errors: list[ConfigurationError] = field(default_factory=list)


def load_config_file(path: Path, base: Config | None = None) -> LoadedConfig:
    """Read and validate the configuration file at ``path``.

    Raises:
        ConfigurationError: The file is unreadable, is not TOML, or its
            top-level settings are invalid. Invalid project entries do not
            raise; they are reported in ``LoadedConfig.errors`` and excluded.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read configuration: {exc}", entry=str(path)) from exc
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"invalid TOML: {exc}", entry=str(path)) from exc

    base = base or Config(config_path=path)
    return parse_config(raw, base)


def parse_config(raw: dict[str, Any], base: Config) -> LoadedConfig:
    """Validate an already-decoded configuration mapping."""
    try:
        settings = FileSettings.model_validate(
            {key: value for key, value in raw.items() if key != "project"}
        )
    except ValidationError as exc:
        raise ConfigurationError(_describe(exc), entry="settings") from exc

    loaded = LoadedConfig(config=base.with_overrides(**settings.model_dump()))

    entries = raw.get("project", [])
    if not isinstance(entries, list):
        raise ConfigurationError("'project' must be an array of tables")

    seen: set[str] = set()
    for i, entry in enumerate(entries):
        label = f"project[{i}]"
        if not isinstance(entry, dict):
            loaded.errors.append(ConfigurationError("entry is not a table", entry=label))
            continue
        if isinstance(entry.get("name"), str) and entry["name"].strip():
            label = entry["name"].strip()
        try:
            project = Project.model_validate(entry)
        except ValidationError as exc:
            loaded.errors.append(ConfigurationError(_describe(exc), entry=label))
            continue
        if project.name in seen:
            loaded.errors.append(ConfigurationError("duplicate project name", entry=label))
            continue
        seen.add(project.name)
        loaded.projects.append(project)

    for error in loaded.errors:
        logger.warning("Excluding project: %s", error)
    return loaded


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)
