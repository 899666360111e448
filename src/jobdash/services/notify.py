"""Non-blocking delivery of project updates to sinks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import cast

from jobdash.models.state import ProjectState
from jobdash.services.protocols import SinkProtocol

logger = logging.getLogger(__name__)

type Notification = tuple[str, ProjectState]

_END = object()


class Subscription:
    """Queue-backed sink for async consumers.

    When the queue is full the oldest pending notification is dropped; a
    consumer that falls behind can always pull the latest state from the
    table instead. ``close()`` queues an end marker behind the pending
    notifications, so async iteration drains them and then stops.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._maxsize = max(maxsize, 1)
        # Unbounded so the end marker always fits; notify() enforces maxsize.
        self._queue: asyncio.Queue[Notification | object] = asyncio.Queue()
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self, name: str, state: ProjectState) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self._maxsize:
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait((name, state))

    def pending(self) -> int:
        return self._queue.qsize() - (1 if self._closed else 0)

    def get_nowait(self) -> Notification | None:
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is _END:
            self._queue.put_nowait(_END)
            return None
        return cast(Notification, item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)

    def __aiter__(self) -> AsyncIterator[Notification]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Notification]:
        while True:
            item = await self._queue.get()
            if item is _END:
                # leave it for any other iterator
                self._queue.put_nowait(_END)
                return
            yield cast(Notification, item)


class Notifier:
    """Fan out notifications to every registered sink."""

    def __init__(self) -> None:
        self._sinks: list[SinkProtocol] = []

    def add(self, sink: SinkProtocol) -> None:
        self._sinks.append(sink)

    def remove(self, sink: SinkProtocol) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def publish(self, name: str, state: ProjectState) -> None:
        for sink in list(self._sinks):
            try:
                sink.notify(name, state)
            except Exception:
                logger.exception("Sink %r failed handling update for %s", sink, name)
