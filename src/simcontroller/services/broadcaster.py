"""Periodic discovery, health checks, and status broadcasts."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from enum import Enum

from safir.datetime import current_datetime
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..constants import STATUS_BROADCAST_INTERVAL, STATUS_STARTUP_DELAY
from ..events import HealthSampleEvent, StatusEvents
from ..models.domain.status import StatusEvent, StatusEventType
from ..models.v1.status import (
    HealthSample,
    MetricsSample,
    ServerStatus,
    StatusSnapshot,
)
from .discovery import DiscoveryService
from .health import HealthProber
from .hub import StatusHub

__all__ = ["BroadcasterState", "StatusBroadcaster"]


class BroadcasterState(Enum):
    """Lifecycle state of the status broadcaster."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class StatusBroadcaster:
    """Discover and check every server on a fixed interval.

    Each cycle discovers servers, checks their health, caches the result as
    the latest snapshot, and publishes it to the status hub followed by the
    matching metrics sample. The health of each server is also recorded as a
    metrics event.

    This class is a process-wide singleton. Its `run` method is started as a
    background task by `~simcontroller.background.BackgroundTaskManager`.

    Parameters
    ----------
    discovery
        Server discovery service.
    prober
        Health prober.
    hub
        Hub to which to publish status events.
    events
        Event publishers for health samples.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    interval
        Delay between the end of one cycle and the start of the next.
    startup_delay
        Delay before the first cycle.
    """

    def __init__(
        self,
        *,
        discovery: DiscoveryService,
        prober: HealthProber,
        hub: StatusHub,
        events: StatusEvents,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
        interval: timedelta = STATUS_BROADCAST_INTERVAL,
        startup_delay: timedelta = STATUS_STARTUP_DELAY,
    ) -> None:
        self._discovery = discovery
        self._prober = prober
        self._hub = hub
        self._events = events
        self._slack = slack_client
        self._logger = logger
        self._interval = interval
        self._startup_delay = startup_delay

        self._latest: StatusSnapshot | None = None
        self._lock = asyncio.Lock()
        self._state = BroadcasterState.STARTING
        self._stopping = asyncio.Event()

    @property
    def state(self) -> BroadcasterState:
        """Current lifecycle state."""
        return self._state

    async def broadcast_once(self) -> StatusSnapshot | None:
        """Run a single discovery, health check, and broadcast cycle.

        Returns
        -------
        StatusSnapshot or None
            New snapshot, or `None` if no servers were discovered, in which
            case nothing is cached or published.
        """
        servers = await self._discovery.discover_servers()
        if not servers:
            msg = "No servers discovered - is RBAC configured?"
            self._logger.warning(msg)
            return None
        statuses = await self._prober.check_all(servers)
        now = current_datetime(microseconds=True)
        snapshot = StatusSnapshot(servers=tuple(statuses), timestamp=now)
        async with self._lock:
            self._latest = snapshot

        event_type = StatusEventType.SERVER_STATUS_UPDATE
        self._hub.publish(StatusEvent(type=event_type, data=snapshot))
        samples = [HealthSample.from_status(s) for s in statuses]
        sample = MetricsSample(timestamp=now, samples=samples)
        event_type = StatusEventType.METRICS_SAMPLE
        self._hub.publish(StatusEvent(type=event_type, data=sample))
        await self._record_samples(statuses)

        self._logger.debug(
            "Broadcast server status",
            healthy=snapshot.healthy_count,
            total=snapshot.total_count,
        )
        return snapshot

    def get_latest_snapshot(self) -> StatusSnapshot | None:
        """Return the snapshot from the most recent successful cycle.

        Returns
        -------
        StatusSnapshot or None
            Latest snapshot, or `None` if no cycle has completed yet.
        """
        return self._latest

    async def run(self) -> None:
        """Broadcast status until stopped.

        Exceptions raised by a cycle are logged and reported, and the next
        cycle runs as normal. Cancellation is propagated.
        """
        self._logger.info("Starting status broadcaster")
        try:
            if await self._wait(self._startup_delay):
                return
            self._state = BroadcasterState.RUNNING
            while True:
                try:
                    await self.broadcast_once()
                except Exception as e:
                    self._logger.exception("Error broadcasting server status")
                    if self._slack:
                        await self._slack.post_uncaught_exception(e)
                if await self._wait(self._interval):
                    return
        finally:
            self._state = BroadcasterState.STOPPED
            self._logger.info("Status broadcaster stopped")

    def stop(self) -> None:
        """Ask the broadcaster to stop after any cycle in progress."""
        if self._state != BroadcasterState.STOPPED:
            self._state = BroadcasterState.STOPPING
        self._stopping.set()

    async def _record_samples(self, statuses: list[ServerStatus]) -> None:
        """Publish a metrics event for each health check.

        Failures are logged and otherwise ignored.
        """
        for status in statuses:
            sample = HealthSample.from_status(status)
            event = HealthSampleEvent(
                server_id=sample.server_id,
                server_type=sample.server_type.value,
                is_healthy=sample.is_healthy,
                latency_ms=sample.latency_ms,
            )
            try:
                await self._events.health_sample.publish(event)
            except Exception:
                msg = "Failed to publish health sample"
                self._logger.exception(msg, server=status.name)

    async def _wait(self, delay: timedelta) -> bool:
        """Sleep for a delay, returning `True` early if asked to stop."""
        try:
            async with asyncio.timeout(delay.total_seconds()):
                await self._stopping.wait()
        except TimeoutError:
            return False
        return True
