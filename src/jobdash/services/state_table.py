"""Per-project state slots shared between the scheduler and its readers."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from jobdash.models.projects import Project
from jobdash.models.state import ProjectState


class StateTable:
    """Single-writer table of ProjectState slots keyed by project name.

    Every publish builds a new mapping and swaps the reference, so a reader
    holding a ``snapshot()`` keeps a consistent view and no reader ever sees
    a partially written state.
    """

    def __init__(self, projects: Iterable[Project] = ()) -> None:
        slots: dict[str, ProjectState] = {}
        for project in projects:
            if project.name in slots:
                raise ValueError(f"Duplicate project name: {project.name}")
            slots[project.name] = ProjectState.initial(project)
        self._slots: Mapping[str, ProjectState] = MappingProxyType(slots)

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, name: object) -> bool:
        return name in self._slots

    @property
    def names(self) -> list[str]:
        """Project names in configuration order."""
        return list(self._slots)

    def get(self, name: str) -> ProjectState | None:
        return self._slots.get(name)

    def snapshot(self) -> Mapping[str, ProjectState]:
        """The current read-only mapping of every slot."""
        return self._slots

    def publish(self, state: ProjectState) -> None:
        """Replace the slot for ``state.name``."""
        if state.name not in self._slots:
            raise KeyError(state.name)
        updated = dict(self._slots)
        updated[state.name] = state
        self._slots = MappingProxyType(updated)
