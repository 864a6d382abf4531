"""Tests for server health checks."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
import structlog
from safir.datetime import current_datetime

from simcontroller.models.domain.kubernetes import PodPhase
from simcontroller.models.v1.server import DiscoveredServer, ServerProtocol
from simcontroller.services.health import HealthProber

from ..support.health import MockConnector


def make_server(
    name: str,
    ip: str,
    *,
    port: int = 21,
    ready: bool = True,
    phase: PodPhase = PodPhase.RUNNING,
) -> DiscoveredServer:
    return DiscoveredServer(
        name=name,
        pod_name=f"file-sim-file-simulator-{name}-abc12",
        protocol=ServerProtocol.FTP,
        service_name=f"file-sim-file-simulator-{name}",
        cluster_ip=ip,
        port=port,
        pod_phase=phase,
        pod_ready=ready,
        is_dynamic=False,
        managed_by="Helm",
        discovered_at=current_datetime(),
    )


@pytest.mark.asyncio
async def test_check_health() -> None:
    connector = MockConnector({"10.96.0.2:21"})
    prober = HealthProber(structlog.get_logger(__name__), connector=connector)

    status = await prober.check_health(make_server("ftp", "10.96.0.2"))
    assert status.name == "ftp"
    assert status.is_healthy
    assert status.health_message is None
    assert status.latency_ms >= 0
    assert status.pod_phase == PodPhase.RUNNING

    status = await prober.check_health(make_server("down", "10.96.0.9"))
    assert not status.is_healthy
    assert status.health_message == "TCP connection failed"
    assert connector.attempts == ["10.96.0.2:21", "10.96.0.9:21"]


@pytest.mark.asyncio
async def test_pod_not_ready() -> None:
    connector = MockConnector({"10.96.0.2:21"})
    prober = HealthProber(structlog.get_logger(__name__), connector=connector)
    server = make_server(
        "ftp", "10.96.0.2", ready=False, phase=PodPhase.PENDING
    )

    # No connection is attempted to a server whose pod isn't ready.
    status = await prober.check_health(server)
    assert not status.is_healthy
    assert status.health_message == "Pod not ready: Pending"
    assert connector.attempts == []


@pytest.mark.asyncio
async def test_timeout() -> None:
    async def connector(host: str, port: int) -> None:
        await asyncio.sleep(10)

    prober = HealthProber(
        structlog.get_logger(__name__),
        timeout=timedelta(milliseconds=50),
        connector=connector,
    )
    status = await prober.check_health(make_server("ftp", "10.96.0.2"))
    assert not status.is_healthy
    assert status.health_message == "TCP connection timed out"


@pytest.mark.asyncio
async def test_unexpected_error() -> None:
    async def connector(host: str, port: int) -> None:
        raise ValueError("Something broke")

    prober = HealthProber(structlog.get_logger(__name__), connector=connector)
    status = await prober.check_health(make_server("ftp", "10.96.0.2"))
    assert not status.is_healthy
    assert status.health_message == "Health check error: Something broke"


@pytest.mark.asyncio
async def test_check_all() -> None:
    connector = MockConnector({"10.96.0.2:21", "10.96.0.4:21"})
    prober = HealthProber(structlog.get_logger(__name__), connector=connector)
    servers = [
        make_server("one", "10.96.0.2"),
        make_server("two", "10.96.0.3"),
        make_server("three", "10.96.0.4"),
    ]

    statuses = await prober.check_all(servers)
    assert [s.name for s in statuses] == ["one", "two", "three"]
    assert [s.is_healthy for s in statuses] == [True, False, True]
    assert await prober.check_all([]) == []


@pytest.mark.asyncio
async def test_check_all_concurrent() -> None:
    async def connector(host: str, port: int) -> None:
        await asyncio.sleep(10)

    prober = HealthProber(
        structlog.get_logger(__name__),
        timeout=timedelta(milliseconds=200),
        connector=connector,
    )
    servers = [make_server(f"ftp-{i}", f"10.96.0.{i}") for i in range(10, 20)]

    # Ten servers that never answer should take about one timeout, not ten.
    start = current_datetime(microseconds=True)
    statuses = await prober.check_all(servers)
    elapsed = current_datetime(microseconds=True) - start
    assert elapsed < timedelta(seconds=1)
    assert [s.name for s in statuses] == [s.name for s in servers]
    for status in statuses:
        assert status.health_message == "TCP connection timed out"
