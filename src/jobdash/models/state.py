"""Per-project state models published by the scheduler."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from jobdash.models.progress import JobStatus, ParseResult, ProgressRecord
from jobdash.models.projects import Project


class ErrorKind(StrEnum):
    """Classification of a failed poll cycle."""

    CONNECTION = "connection"
    NOT_FOUND = "not_found"
    TRANSPORT = "transport"
    PARSE = "parse"


class PollPhase(StrEnum):
    """Where a project's current poll cycle stands."""

    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    UPDATED = "updated"
    FETCH_FAILED = "fetch_failed"


class ErrorInfo(BaseModel):
    """The most recent error attached to a project."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    occurred_at: datetime


class RawSnapshot(BaseModel):
    """Full contents of a remote log file at one point in time."""

    model_config = ConfigDict(frozen=True)

    content: bytes = b""
    fetched_at: datetime
    last_modified: datetime | None = None

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class ProjectState(BaseModel):
    """Latest known state of one project.

    ``records`` and ``status`` are always the parse of ``snapshot``; both are
    replaced together in a single new instance.
    """

    model_config = ConfigDict(frozen=True)

    project: Project
    snapshot: RawSnapshot | None = None
    records: tuple[ProgressRecord, ...] = ()
    status: JobStatus = JobStatus.UNKNOWN
    phase: PollPhase = PollPhase.IDLE
    last_error: ErrorInfo | None = None
    cycle: int = 0
    last_fetch_at: datetime | None = None
    last_success_at: datetime | None = None

    @property
    def name(self) -> str:
        return self.project.name

    @property
    def has_error(self) -> bool:
        return self.last_error is not None

    @property
    def latest(self) -> ProgressRecord | None:
        return self.records[-1] if self.records else None

    @classmethod
    def initial(cls, project: Project) -> ProjectState:
        """Empty state created at configuration load."""
        return cls(project=project)

    def with_phase(self, phase: PollPhase) -> ProjectState:
        return self.model_copy(update={"phase": phase})

    def with_parse(
        self,
        snapshot: RawSnapshot,
        parsed: ParseResult,
    ) -> ProjectState:
        """New state carrying a fresh snapshot and its parse; clears the error."""
        return self.model_copy(
            update={
                "snapshot": snapshot,
                "records": parsed.records,
                "status": parsed.status,
                "phase": PollPhase.UPDATED,
                "last_error": None,
                "cycle": self.cycle + 1,
                "last_fetch_at": snapshot.fetched_at,
                "last_success_at": snapshot.fetched_at,
            }
        )

    def with_error(self, error: ErrorInfo, phase: PollPhase) -> ProjectState:
        """New state keeping the last good parse and attaching ``error``."""
        return self.model_copy(
            update={
                "phase": phase,
                "last_error": error,
                "cycle": self.cycle + 1,
                "last_fetch_at": error.occurred_at,
            }
        )
