"""Tests for the poll scheduler using a fake transport."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import pytest

from jobdash.config import Config
from jobdash.errors import HostConnectionError, NotFoundError
from jobdash.models.progress import JobStatus
from jobdash.models.projects import Project, ProjectType
from jobdash.models.state import ErrorKind, PollPhase, ProjectState
from jobdash.services.scheduler import PollScheduler

PBQFF_DONE = "start\nresult 1 12.3\nresult 2 11.9\ndone\n"
SEMP_RUNNING = "iter 1 res=0.5\niter 2 res=0.3\n"


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_success_publishes_parsed_state(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        project = make_project("qff")
        fake_fetcher.set(project.path, PBQFF_DONE)
        scheduler = PollScheduler([project], fake_fetcher, interval=10, fetch_timeout=5)
        subscription = scheduler.subscribe()

        state = await scheduler.poll_once("qff")

        assert [(r.sequence_index, r.metric) for r in state.records] == [(1, 12.3), (2, 11.9)]
        assert state.status == JobStatus.DONE
        assert state.phase == PollPhase.UPDATED
        assert state.cycle == 1
        assert state.last_error is None
        assert state.snapshot is not None
        assert state.snapshot.text == PBQFF_DONE
        assert scheduler.table.get("qff") == state
        assert subscription.get_nowait() == ("qff", state)

    @pytest.mark.asyncio
    async def test_semp_project_uses_semp_parser(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        project = make_project("fit", ProjectType.SEMP)
        fake_fetcher.set(project.path, SEMP_RUNNING)
        scheduler = PollScheduler([project], fake_fetcher)

        state = await scheduler.poll_once("fit")

        assert [(r.sequence_index, r.metric) for r in state.records] == [(1, 0.5), (2, 0.3)]
        assert state.status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_failure_keeps_last_good_parse(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        project = make_project("qff")
        fake_fetcher.set(
            project.path,
            PBQFF_DONE,
            HostConnectionError("Connection refused", host="cluster"),
            PBQFF_DONE,
        )
        scheduler = PollScheduler([project], fake_fetcher)

        good = await scheduler.poll_once("qff")
        failed = await scheduler.poll_once("qff")

        assert failed.phase == PollPhase.FETCH_FAILED
        assert failed.last_error is not None
        assert failed.last_error.kind == ErrorKind.CONNECTION
        assert "Connection refused" in failed.last_error.message
        assert failed.records == good.records
        assert failed.snapshot == good.snapshot
        assert failed.status == JobStatus.DONE
        assert failed.last_success_at == good.last_success_at

        recovered = await scheduler.poll_once("qff")
        assert recovered.last_error is None
        assert recovered.cycle == 3

    @pytest.mark.asyncio
    async def test_not_found_before_job_writes(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        project = make_project("qff")
        fake_fetcher.set(project.path, NotFoundError("No such file or directory"))
        scheduler = PollScheduler([project], fake_fetcher)

        state = await scheduler.poll_once("qff")

        assert state.last_error is not None
        assert state.last_error.kind == ErrorKind.NOT_FOUND
        assert state.status == JobStatus.UNKNOWN
        assert state.snapshot is None

    @pytest.mark.asyncio
    async def test_hanging_fetch_times_out(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        project = make_project("slow")
        fake_fetcher.hang.add(project.path)
        scheduler = PollScheduler([project], fake_fetcher, interval=1, fetch_timeout=0.05)

        state = await asyncio.wait_for(scheduler.poll_once("slow"), timeout=1)

        assert state.last_error is not None
        assert state.last_error.kind == ErrorKind.CONNECTION
        assert "timed out" in state.last_error.message

    @pytest.mark.asyncio
    async def test_fetcher_exception_is_transport_error(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        project = make_project("qff")
        fake_fetcher.set(project.path, RuntimeError("socket exploded"))
        scheduler = PollScheduler([project], fake_fetcher)

        state = await scheduler.poll_once("qff")

        assert state.last_error is not None
        assert state.last_error.kind == ErrorKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_parser_crash_is_recorded(
        self, fake_fetcher, make_project: Callable[..., Project], monkeypatch
    ) -> None:
        def broken_parse(_project_type, _text):  # type: ignore[no-untyped-def]
            raise RuntimeError("bad grammar")

        monkeypatch.setattr("jobdash.services.scheduler.parse_log", broken_parse)
        project = make_project("qff")
        fake_fetcher.set(project.path, PBQFF_DONE)
        scheduler = PollScheduler([project], fake_fetcher)

        state = await scheduler.poll_once("qff")

        assert state.last_error is not None
        assert state.last_error.kind == ErrorKind.PARSE
        assert state.snapshot is None


class TestIsolation:
    @pytest.mark.asyncio
    async def test_failure_of_one_project_does_not_affect_another(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        a = make_project("a")
        b = make_project("b", ProjectType.SEMP)
        fake_fetcher.set(a.path, HostConnectionError("No route to host"))
        fake_fetcher.set(b.path, SEMP_RUNNING)
        scheduler = PollScheduler([a, b], fake_fetcher)

        states = await scheduler.poll_all()

        assert states["a"].last_error is not None
        assert states["b"].last_error is None
        assert len(states["b"].records) == 2
        assert states["b"].phase == PollPhase.UPDATED

    @pytest.mark.asyncio
    async def test_hanging_host_does_not_delay_others(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        stuck = make_project("stuck")
        fast = make_project("fast")
        fake_fetcher.hang.add(stuck.path)
        fake_fetcher.set(fast.path, PBQFF_DONE)
        scheduler = PollScheduler([stuck, fast], fake_fetcher, interval=0.05, fetch_timeout=5)

        await scheduler.start()
        try:
            await _wait_for(lambda: _cycle(scheduler, "fast") >= 3)
        finally:
            await scheduler.stop()

        stuck_state = scheduler.table.get("stuck")
        assert stuck_state is not None
        assert stuck_state.last_error is not None
        assert stuck_state.last_error.kind == ErrorKind.CONNECTION


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_repeats_and_stops(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        project = make_project("qff")
        fake_fetcher.set(project.path, PBQFF_DONE)
        scheduler = PollScheduler([project], fake_fetcher, interval=0.02, fetch_timeout=1)

        async with scheduler:
            assert scheduler.running
            await _wait_for(lambda: _cycle(scheduler, "qff") >= 3)

        assert not scheduler.running
        calls = fake_fetcher.calls_for(project.path)
        await asyncio.sleep(0.1)
        assert fake_fetcher.calls_for(project.path) == calls

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_fetch(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        project = make_project("qff")
        fake_fetcher.set(project.path, PBQFF_DONE)
        fake_fetcher.delays[project.path] = 0.1
        scheduler = PollScheduler([project], fake_fetcher, interval=10, fetch_timeout=5)

        await scheduler.start()
        await _wait_for(lambda: fake_fetcher.calls_for(project.path) == 1)
        await scheduler.stop()

        state = scheduler.table.get("qff")
        assert state is not None
        assert state.phase == PollPhase.UPDATED
        assert state.cycle == 1

    @pytest.mark.asyncio
    async def test_cycles_are_strictly_ordered(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        project = make_project("qff")
        fake_fetcher.set(project.path, PBQFF_DONE)
        scheduler = PollScheduler([project], fake_fetcher, interval=0.01, fetch_timeout=1)
        seen: list[int] = []

        class RecordingSink:
            def notify(self, name: str, state: ProjectState) -> None:
                seen.append(state.cycle)

        scheduler.add_sink(RecordingSink())
        async with scheduler:
            await _wait_for(lambda: len(seen) >= 4)

        assert seen == sorted(seen)
        assert len(seen) == len(set(seen))

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_stop_polling(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        project = make_project("qff")
        fake_fetcher.set(project.path, PBQFF_DONE)
        scheduler = PollScheduler([project], fake_fetcher, interval=0.01, fetch_timeout=1)

        class BrokenSink:
            def notify(self, name: str, state: ProjectState) -> None:
                raise RuntimeError("sink down")

        scheduler.add_sink(BrokenSink())
        async with scheduler:
            await _wait_for(lambda: _cycle(scheduler, "qff") >= 2)


class TestIntervals:
    def test_project_interval_overrides_global(
        self, fake_fetcher, make_project: Callable[..., Project]
    ) -> None:
        slow = make_project("slow", update_interval=300)
        default = make_project("default")
        scheduler = PollScheduler([slow, default], fake_fetcher, interval=20, fetch_timeout=60)

        assert scheduler.interval_for(slow) == 300
        assert scheduler.interval_for(default) == 20
        assert scheduler.timeout_for(slow) == 60
        assert scheduler.timeout_for(default) < 20

    def test_from_config(self, fake_fetcher, make_project: Callable[..., Project]) -> None:
        config = Config(interval=15, fetch_timeout=4)
        scheduler = PollScheduler.from_config(config, [make_project("a")], fake_fetcher)
        assert scheduler.timeout_for(make_project("a")) == 4

    def test_rejects_non_positive_interval(self, fake_fetcher) -> None:
        with pytest.raises(ValueError):
            PollScheduler([], fake_fetcher, interval=0)


def _cycle(scheduler: PollScheduler, name: str) -> int:
    state = scheduler.table.get(name)
    return state.cycle if state is not None else 0
