"""Project-level models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProjectType(StrEnum):
    """Job family of a monitored project; selects the log parser."""

    PBQFF = "pbqff"
    SEMP = "semp"


class Project(BaseModel):
    """A remote log file to monitor. Immutable after load."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    host: str = Field(min_length=1)
    path: str = Field(min_length=1)
    type: ProjectType
    update_interval: float | None = Field(default=None, gt=0)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("name", "host", "path")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped
