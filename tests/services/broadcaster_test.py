"""Tests for the status broadcaster."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

import pytest
import structlog
from safir.metrics import MockEventPublisher
from safir.testing.slack import MockSlackWebhook

from simcontroller.factory import Factory
from simcontroller.models.domain.status import StatusEventType
from simcontroller.models.v1.status import MetricsSample, StatusSnapshot
from simcontroller.services.broadcaster import (
    BroadcasterState,
    StatusBroadcaster,
)
from simcontroller.services.health import HealthProber
from simcontroller.services.hub import StatusHub

from ..support.cluster import STATIC_SERVERS
from ..support.kubernetes import MockKubernetesApi


def make_broadcaster(
    factory: Factory,
    hub: StatusHub | None = None,
    prober: HealthProber | None = None,
) -> StatusBroadcaster:
    return StatusBroadcaster(
        discovery=factory.create_discovery_service(),
        prober=prober or factory.create_health_prober(),
        hub=hub or StatusHub(),
        events=factory.events,
        slack_client=factory.create_slack_client(),
        logger=structlog.get_logger(__name__),
        interval=timedelta(milliseconds=10),
        startup_delay=timedelta(seconds=0),
    )


async def wait_for_snapshot(broadcaster: StatusBroadcaster) -> None:
    async with asyncio.timeout(5):
        while not broadcaster.get_latest_snapshot():
            await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_broadcast_once(
    factory: Factory, cluster: MockKubernetesApi
) -> None:
    broadcaster = factory.broadcaster
    assert broadcaster.state == BroadcasterState.STARTING
    assert broadcaster.get_latest_snapshot() is None
    subscription = factory.hub.subscribe()

    snapshot = await broadcaster.broadcast_once()
    assert snapshot
    assert broadcaster.get_latest_snapshot() == snapshot
    assert [s.name for s in snapshot.servers] == list(STATIC_SERVERS)
    assert [s.is_healthy for s in snapshot.servers] == [True, True, False]
    assert snapshot.servers[2].health_message == "TCP connection failed"
    assert snapshot.healthy_count == 2
    assert snapshot.total_count == 3

    # The snapshot is published first, followed by the metrics sample.
    factory.hub.close()
    events = [e async for e in subscription]
    assert [e.type for e in events] == [
        StatusEventType.SERVER_STATUS_UPDATE,
        StatusEventType.METRICS_SAMPLE,
    ]
    assert events[0].data == snapshot
    sample = events[1].data
    assert isinstance(sample, MetricsSample)
    assert sample.timestamp == snapshot.timestamp
    assert [s.server_id for s in sample.samples] == list(STATIC_SERVERS)
    assert sample.samples[0].latency_ms is not None
    assert sample.samples[2].latency_ms is None

    # Each health check is also recorded as a metrics event.
    publisher = factory.events.health_sample
    assert isinstance(publisher, MockEventPublisher)
    assert len(publisher.published) == 3


@pytest.mark.asyncio
async def test_no_servers(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    broadcaster = factory.broadcaster
    assert await broadcaster.broadcast_once() is None
    assert broadcaster.get_latest_snapshot() is None


@pytest.mark.asyncio
async def test_snapshot_immutable(
    factory: Factory, cluster: MockKubernetesApi
) -> None:
    snapshot = await factory.broadcaster.broadcast_once()
    assert isinstance(snapshot, StatusSnapshot)
    with pytest.raises(ValueError, match="frozen"):
        snapshot.timestamp = snapshot.timestamp  # type: ignore[misc]


@pytest.mark.asyncio
async def test_snapshot_readers_during_cycle(
    factory: Factory, cluster: MockKubernetesApi
) -> None:
    async def connector(host: str, port: int) -> None:
        await asyncio.sleep(0.05)

    logger = structlog.get_logger(__name__)
    broadcaster = StatusBroadcaster(
        discovery=factory.create_discovery_service(),
        prober=HealthProber(logger, connector=connector),
        hub=StatusHub(),
        events=factory.events,
        slack_client=factory.create_slack_client(),
        logger=logger,
    )
    first = await broadcaster.broadcast_once()
    assert first

    seen: list[StatusSnapshot | None] = []
    cycle = asyncio.create_task(broadcaster.broadcast_once())
    while not cycle.done():
        seen.extend(broadcaster.get_latest_snapshot() for _ in range(10))
        await asyncio.sleep(0.005)
    second = await cycle
    assert second
    assert second is not first
    seen.append(broadcaster.get_latest_snapshot())

    # Readers only ever see one complete snapshot or the next.
    assert len(seen) > 10
    for snapshot in seen:
        assert snapshot is first or snapshot is second
        assert snapshot
        assert snapshot.total_count == len(STATIC_SERVERS)
    assert seen[0] is first
    assert seen[-1] is second


@pytest.mark.asyncio
async def test_run(factory: Factory, cluster: MockKubernetesApi) -> None:
    hub = StatusHub()
    broadcaster = make_broadcaster(factory, hub)
    task = asyncio.create_task(broadcaster.run())
    await wait_for_snapshot(broadcaster)
    assert broadcaster.state == BroadcasterState.RUNNING

    # Each new cycle replaces the latest snapshot.
    first = broadcaster.get_latest_snapshot()
    async with asyncio.timeout(5):
        while broadcaster.get_latest_snapshot() is first:
            await asyncio.sleep(0.01)

    broadcaster.stop()
    await task
    assert broadcaster.state == BroadcasterState.STOPPED


@pytest.mark.asyncio
async def test_stop_before_start(
    factory: Factory, cluster: MockKubernetesApi
) -> None:
    broadcaster = make_broadcaster(factory)
    broadcaster.stop()
    await broadcaster.run()
    assert broadcaster.state == BroadcasterState.STOPPED
    assert broadcaster.get_latest_snapshot() is None


@pytest.mark.asyncio
async def test_cycle_error(
    factory: Factory,
    cluster: MockKubernetesApi,
    mock_slack: MockSlackWebhook,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    prober = factory.create_health_prober()
    check_all = prober.check_all
    failures = 0

    async def flaky_check_all(servers: list[Any]) -> list[Any]:
        nonlocal failures
        if failures < 1:
            failures += 1
            raise RuntimeError("Something went wrong")
        return await check_all(servers)

    monkeypatch.setattr(prober, "check_all", flaky_check_all)
    broadcaster = make_broadcaster(factory, prober=prober)
    task = asyncio.create_task(broadcaster.run())

    # The first cycle fails and is reported, but the broadcaster keeps going.
    await wait_for_snapshot(broadcaster)
    broadcaster.stop()
    await task
    assert len(mock_slack.messages) == 1
