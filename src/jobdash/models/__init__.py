"""Pydantic models for jobdash."""

from jobdash.models.progress import JobStatus, ParseResult, ProgressRecord
from jobdash.models.projects import Project, ProjectType
from jobdash.models.state import (
    ErrorInfo,
    ErrorKind,
    PollPhase,
    ProjectState,
    RawSnapshot,
)

__all__ = [
    "ErrorInfo",
    "ErrorKind",
    "JobStatus",
    "ParseResult",
    "PollPhase",
    "ProgressRecord",
    "Project",
    "ProjectState",
    "ProjectType",
    "RawSnapshot",
]
