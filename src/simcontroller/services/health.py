"""TCP health checks of protocol servers."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta

from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..constants import HEALTH_CHECK_TIMEOUT
from ..models.v1.server import DiscoveredServer
from ..models.v1.status import ServerStatus

type Connector = Callable[[str, int], Awaitable[None]]
"""Opens and closes a connection to a host and port, raising on failure."""

__all__ = [
    "Connector",
    "HealthProber",
    "open_tcp_connection",
]


async def open_tcp_connection(host: str, port: int) -> None:
    """Open a TCP connection and close it again.

    Parameters
    ----------
    host
        Host to connect to.
    port
        Port to connect to.

    Raises
    ------
    OSError
        Raised if the connection could not be established.
    """
    _, writer = await asyncio.open_connection(host, port)
    writer.close()
    await writer.wait_closed()


class HealthProber:
    """Check whether protocol servers accept connections.

    A server is healthy if its pod is ready and a TCP connection to its
    in-cluster address succeeds within the timeout. No protocol-level
    exchange is attempted.

    Parameters
    ----------
    logger
        Logger to use.
    timeout
        Upper bound on each connection attempt.
    connector
        Function used to make the connection. Overridden by the test suite.
    """

    def __init__(
        self,
        logger: BoundLogger,
        *,
        timeout: timedelta = HEALTH_CHECK_TIMEOUT,
        connector: Connector = open_tcp_connection,
    ) -> None:
        self._logger = logger
        self._timeout = timeout
        self._connect = connector

    async def check_all(
        self, servers: list[DiscoveredServer]
    ) -> list[ServerStatus]:
        """Check the health of several servers concurrently.

        Parameters
        ----------
        servers
            Servers to check.

        Returns
        -------
        list of ServerStatus
            One result per server, in the same order as the input.
        """
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(self.check_health(s)) for s in servers]
        results = [t.result() for t in tasks]
        healthy = sum(1 for r in results if r.is_healthy)
        self._logger.debug(
            "Health check complete", healthy=healthy, total=len(results)
        )
        return results

    async def check_health(self, server: DiscoveredServer) -> ServerStatus:
        """Check the health of a single server.

        Failures never raise; they are reported in the returned status.

        Parameters
        ----------
        server
            Server to check.

        Returns
        -------
        ServerStatus
            Health of the server. The latency covers the whole check.
        """
        start = time.perf_counter()
        message = None
        if not server.pod_ready:
            message = f"Pod not ready: {server.pod_phase.value}"
        else:
            message = await self._probe(server)
        latency = (time.perf_counter() - start) * 1000
        return ServerStatus(
            name=server.name,
            protocol=server.protocol,
            pod_phase=server.pod_phase,
            is_healthy=message is None,
            health_message=message,
            latency_ms=round(latency, 2),
            checked_at=current_datetime(microseconds=True),
        )

    async def _probe(self, server: DiscoveredServer) -> str | None:
        """Connect to the server, returning the reason for any failure."""
        logger = self._logger.bind(
            server=server.name, address=server.cluster_address
        )
        try:
            async with asyncio.timeout(self._timeout.total_seconds()):
                await self._connect(server.cluster_ip, server.port)
        except TimeoutError:
            logger.debug("TCP connection timed out")
            return "TCP connection timed out"
        except OSError as e:
            logger.debug("TCP connection failed", error=str(e))
            return "TCP connection failed"
        except Exception as e:
            logger.exception("Unexpected error checking health")
            return f"Health check error: {e!s}"
        return None
