"""Concurrent fetch -> parse -> publish cycles across all projects."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from types import TracebackType
from typing import TYPE_CHECKING

from result import Err, Ok, Result

from jobdash.data.parsers import parse_log
from jobdash.errors import FetchError, HostConnectionError, TransportError
from jobdash.models.projects import Project
from jobdash.models.state import ErrorInfo, ErrorKind, PollPhase, ProjectState, RawSnapshot
from jobdash.services.notify import Notifier, Subscription
from jobdash.services.state_table import StateTable

if TYPE_CHECKING:
    from jobdash.config import Config
    from jobdash.data.protocols import FetcherProtocol
    from jobdash.services.protocols import SinkProtocol

logger = logging.getLogger(__name__)

# Fraction of a project's poll interval a single fetch may take.
_TIMEOUT_SHARE = 0.9


class PollScheduler:
    """Poll every project on its own asyncio task.

    Each task loops ``poll_once -> wait(interval)`` until ``stop()``. A slow
    or failing host only ever affects its own task: fetches are bounded by a
    timeout shorter than the interval and every error is absorbed into that
    project's ``last_error``.
    """

    def __init__(
        self,
        projects: Iterable[Project],
        fetcher: FetcherProtocol,
        *,
        interval: float = 60.0,
        fetch_timeout: float = 30.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        project_list = list(projects)
        self._table = StateTable(project_list)
        self._projects = {project.name: project for project in project_list}
        self._fetcher = fetcher
        self._interval = interval
        self._fetch_timeout = fetch_timeout
        self._notifier = Notifier()
        self._locks = {name: asyncio.Lock() for name in self._projects}
        self._stop = asyncio.Event()
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @classmethod
    def from_config(
        cls,
        config: Config,
        projects: Iterable[Project],
        fetcher: FetcherProtocol,
    ) -> PollScheduler:
        return cls(
            projects,
            fetcher,
            interval=config.interval,
            fetch_timeout=config.fetch_timeout,
        )

    @property
    def table(self) -> StateTable:
        """The state slots; hand this to whatever hosts the sink."""
        return self._table

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def interval_for(self, project: Project) -> float:
        return project.update_interval or self._interval

    def timeout_for(self, project: Project) -> float:
        return min(self._fetch_timeout, self.interval_for(project) * _TIMEOUT_SHARE)

    def add_sink(self, sink: SinkProtocol) -> None:
        self._notifier.add(sink)

    def remove_sink(self, sink: SinkProtocol) -> None:
        self._notifier.remove(sink)

    def subscribe(self, maxsize: int = 64) -> Subscription:
        """Register and return a queue-backed sink."""
        subscription = Subscription(maxsize=maxsize)
        self._notifier.add(subscription)
        return subscription

    async def start(self) -> None:
        """Spawn one polling task per project."""
        if self.running:
            return
        self._stop.clear()
        self._tasks = {
            name: asyncio.create_task(self._run_project(name), name=f"poll:{name}")
            for name in self._table.names
        }
        logger.info("Polling %d projects", len(self._tasks))

    async def stop(self) -> None:
        """Signal shutdown and wait for every task to finish its current step."""
        self._stop.set()
        tasks = list(self._tasks.values())
        self._tasks = {}
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, outcome in zip(tasks, results, strict=True):
            if isinstance(outcome, Exception):
                logger.error("Task %s ended with %r", task.get_name(), outcome)
        logger.info("Polling stopped")

    async def __aenter__(self) -> PollScheduler:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def poll_once(self, name: str) -> ProjectState:
        """Run one fetch -> parse -> publish cycle for ``name``."""
        project = self._projects[name]
        async with self._locks[name]:
            self._set_phase(name, PollPhase.FETCHING)
            fetched = await self._fetch(project)

            if isinstance(fetched, Ok):
                self._set_phase(name, PollPhase.PARSING)
                state = self._apply_snapshot(project, fetched.ok_value)
            else:
                error = fetched.err_value
                logger.warning("Fetch failed for %s (%s): %s", name, error.kind, error)
                state = self._current(name).with_error(
                    _error_info(error.kind, str(error)), PollPhase.FETCH_FAILED
                )

            self._table.publish(state)
        self._notifier.publish(name, state)
        return state

    async def poll_all(self) -> dict[str, ProjectState]:
        """Run one cycle for every project concurrently."""
        states = await asyncio.gather(*(self.poll_once(name) for name in self._table.names))
        return dict(zip(self._table.names, states, strict=True))

    async def _run_project(self, name: str) -> None:
        interval = self.interval_for(self._projects[name])
        while not self._stop.is_set():
            try:
                await self.poll_once(name)
            except Exception:
                logger.exception("Unexpected failure polling %s", name)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except TimeoutError:
                continue

    async def _fetch(self, project: Project) -> Result[RawSnapshot, FetchError]:
        timeout = self.timeout_for(project)
        try:
            async with asyncio.timeout(timeout):
                return await self._fetcher.fetch(project.host, project.path, timeout=timeout)
        except TimeoutError:
            return Err(
                HostConnectionError(
                    f"timed out after {timeout:g}s", host=project.host, path=project.path
                )
            )
        except Exception as exc:
            logger.exception("Fetcher raised for %s", project.name)
            return Err(TransportError(str(exc), host=project.host, path=project.path))

    def _apply_snapshot(self, project: Project, snapshot: RawSnapshot) -> ProjectState:
        current = self._current(project.name)
        try:
            parsed = parse_log(project.type, snapshot.text)
        except Exception as exc:
            logger.exception("Parser failed for %s", project.name)
            return current.with_error(
                _error_info(ErrorKind.PARSE, f"parse failed: {exc}"), PollPhase.FETCH_FAILED
            )
        logger.debug(
            "Parsed %s: %d records, status %s",
            project.name,
            len(parsed.records),
            parsed.status,
        )
        return current.with_parse(snapshot, parsed)

    def _current(self, name: str) -> ProjectState:
        state = self._table.get(name)
        if state is None:
            raise KeyError(name)
        return state

    def _set_phase(self, name: str, phase: PollPhase) -> None:
        self._table.publish(self._current(name).with_phase(phase))


def _error_info(kind: ErrorKind, message: str) -> ErrorInfo:
    return ErrorInfo(kind=kind, message=message, occurred_at=datetime.now(UTC))
