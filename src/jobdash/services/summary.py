"""Plain-data views of ProjectState for display layers."""

from __future__ import annotations

from jobdash.data.parsers import PBQFF_REMAINING_LABEL, SEMP_TABLE_LABEL
from jobdash.models.projects import ProjectType
from jobdash.models.state import ProjectState


def metric_label(project_type: ProjectType) -> str:
    """Axis label for a family's metric."""
    match project_type:
        case ProjectType.PBQFF:
            return PBQFF_REMAINING_LABEL
        case ProjectType.SEMP:
            return SEMP_TABLE_LABEL
    return "metric"


def series(state: ProjectState) -> list[tuple[int, float]]:
    """``(sequence_index, metric)`` points ready for plotting."""
    return [(record.sequence_index, record.metric) for record in state.records]


def describe(state: ProjectState) -> str:
    """One-line human readable status of a project."""
    project = state.project
    parts = [f"{project.name} [{project.type}] {state.status}"]
    latest = state.latest
    if latest is None:
        parts.append("no progress yet")
    else:
        label = latest.label or metric_label(project.type)
        detail = f"{len(state.records)} records, {label} {latest.metric:g} at #{latest.sequence_index}"
        if latest.stage:
            detail += f" (stage {latest.stage})"
        parts.append(detail)
    if state.last_error is not None:
        parts.append(f"error {state.last_error.kind}: {state.last_error.message}")
    return " | ".join(parts)
