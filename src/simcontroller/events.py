"""Metrics events for the file simulator controller."""

from __future__ import annotations

from pydantic import Field
from safir.dependencies.metrics import EventMaker
from safir.metrics import EventManager, EventPayload

__all__ = [
    "HealthSampleEvent",
    "StatusEvents",
]


class HealthSampleEvent(EventPayload):
    """Result of one health check of one server.

    Notes
    -----
    One of these is published per server per status broadcast cycle. The
    metrics pipeline stores them as the raw health history of each server;
    the event timestamp added by the publisher is the sample time.
    """

    server_id: str = Field(
        ..., title="Server name", description="Name of the checked server"
    )

    server_type: str = Field(
        ...,
        title="Protocol",
        description="Protocol spoken by the server",
        examples=["FTP"],
    )

    is_healthy: bool = Field(
        ..., title="Healthy", description="Whether the server was healthy"
    )

    latency_ms: float | None = Field(
        None,
        title="Latency",
        description=(
            "Duration of the health check in milliseconds, omitted if the"
            " server was not healthy"
        ),
    )


class StatusEvents(EventMaker):
    """Event publishers for status broadcaster events.

    Attributes
    ----------
    health_sample
        Event publisher for per-server health samples.
    """

    async def initialize(self, manager: EventManager) -> None:
        self.health_sample = await manager.create_publisher(
            "health_sample", HealthSampleEvent
        )
