"""Parsed progress models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class JobStatus(StrEnum):
    """Job status derived from terminal markers in the log text."""

    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    UNKNOWN = "unknown"


class ProgressRecord(BaseModel):
    """One parsed unit of work progress."""

    model_config = ConfigDict(frozen=True)

    sequence_index: int
    metric: float
    label: str = ""
    stage: int = 0


class ParseResult(BaseModel):
    """Output of a log parser: records ordered by ``sequence_index`` plus status."""

    model_config = ConfigDict(frozen=True)

    records: tuple[ProgressRecord, ...] = ()
    status: JobStatus = JobStatus.UNKNOWN
