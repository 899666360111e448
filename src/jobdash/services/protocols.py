"""Protocol definitions for services."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from jobdash.models.state import ProjectState


class SinkProtocol(Protocol):
    """Receives pushed project updates. ``notify`` must return promptly."""

    def notify(self, name: str, state: ProjectState) -> None: ...


class StateReaderProtocol(Protocol):
    """Pull-based read access to the latest project states."""

    def get(self, name: str) -> ProjectState | None: ...

    def snapshot(self) -> Mapping[str, ProjectState]: ...
