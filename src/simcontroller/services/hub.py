"""Fan-out of status events to subscribers."""

from __future__ import annotations

from collections.abc import AsyncIterator

from safir.asyncio import AsyncMultiQueue

from ..constants import STATUS_HUB_MAX_EVENTS
from ..models.domain.status import StatusEvent

__all__ = ["StatusHub"]


class StatusHub:
    """Deliver status events to any number of subscribers.

    Delivery is best-effort. A subscriber only sees events published after it
    subscribed, and a subscriber that falls too far behind may miss events.
    Publishing never blocks on slow subscribers.

    Events are held in an `~safir.asyncio.AsyncMultiQueue`. Since that queue
    retains everything put into it, the hub starts a new queue once the
    current one holds `~simcontroller.constants.STATUS_HUB_MAX_EVENTS`
    events and closes the old one. Subscribers finish reading the old queue
    and then move on to the new one.
    """

    def __init__(self) -> None:
        self._queue: AsyncMultiQueue[StatusEvent] = AsyncMultiQueue()
        self._count = 0
        self._closed = False

    def close(self) -> None:
        """End every subscription once it has read all published events."""
        self._closed = True
        self._queue.close()

    def publish(self, event: StatusEvent) -> None:
        """Publish an event to all current subscribers.

        Parameters
        ----------
        event
            Event to publish. Ignored if the hub has been closed.
        """
        if self._closed:
            return
        if self._count >= STATUS_HUB_MAX_EVENTS:
            old = self._queue
            self._queue = AsyncMultiQueue()
            self._count = 0
            old.close()
        self._queue.put(event)
        self._count += 1

    def subscribe(self) -> AsyncIterator[StatusEvent]:
        """Construct an iterator over future events.

        Returns
        -------
        collections.abc.AsyncIterator
            Iterator over every event published from now on. The iterator
            stops when the hub is closed.
        """
        queue = self._queue
        start = self._count

        async def iterator() -> AsyncIterator[StatusEvent]:
            nonlocal queue, start
            while True:
                async for event in queue.aiter_from(start):
                    yield event
                if self._closed:
                    return
                queue = self._queue
                start = 0

        return iterator()

    def subscribe_sse(self) -> AsyncIterator[bytes]:
        """Construct an iterator over future events as server-sent events.

        Returns
        -------
        collections.abc.AsyncIterator
            Iterator over encoded server-sent events.
        """
        events = self.subscribe()

        async def iterator() -> AsyncIterator[bytes]:
            async for event in events:
                yield event.to_sse().encode()

        return iterator()
