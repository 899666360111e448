"""Shared fixtures for jobdash tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest
from result import Err, Ok, Result

from jobdash.errors import FetchError
from jobdash.models.projects import Project, ProjectType
from jobdash.models.state import RawSnapshot

DATA_DIR = Path(__file__).parent / "data"

type Response = bytes | str | FetchError | Exception


class FakeFetcher:
    """In-memory stand-in for ScpFetcher keyed by remote path.

    A path mapped to a list yields its responses in order, repeating the last.
    Paths listed in ``hang`` never complete; ``delays`` adds latency.
    """

    def __init__(self) -> None:
        self.responses: dict[str, list[Response]] = {}
        self.delays: dict[str, float] = {}
        self.hang: set[str] = set()
        self.calls: list[tuple[str, str, float]] = []

    def set(self, path: str, *responses: Response) -> None:
        self.responses[path] = list(responses)

    def calls_for(self, path: str) -> int:
        return sum(1 for _host, called_path, _timeout in self.calls if called_path == path)

    async def fetch(
        self,
        host: str,
        path: str,
        *,
        timeout: float,
    ) -> Result[RawSnapshot, FetchError]:
        self.calls.append((host, path, timeout))
        if path in self.hang:
            await asyncio.Event().wait()
        if path in self.delays:
            await asyncio.sleep(self.delays[path])

        queue = self.responses.get(path)
        if not queue:
            return Err(FetchError("no response configured", host=host, path=path))
        response = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(response, FetchError):
            return Err(response)
        if isinstance(response, Exception):
            raise response
        content = response.encode("utf-8") if isinstance(response, str) else response
        return Ok(RawSnapshot(content=content, fetched_at=datetime.now(UTC)))


@pytest.fixture
def data_dir() -> Path:
    """Directory holding sample log files."""
    return DATA_DIR


@pytest.fixture
def read_log() -> Callable[[str], str]:
    """Read a sample log by file name."""

    def _read(name: str) -> str:
        return (DATA_DIR / name).read_text(encoding="utf-8")

    return _read


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def make_project() -> Callable[..., Project]:
    """Build a Project with sensible defaults."""

    def _make(
        name: str,
        project_type: ProjectType = ProjectType.PBQFF,
        *,
        host: str = "cluster",
        path: str | None = None,
        update_interval: float | None = None,
    ) -> Project:
        return Project(
            name=name,
            host=host,
            path=path or f"/scratch/{name}/out.log",
            type=project_type,
            update_interval=update_interval,
        )

    return _make
