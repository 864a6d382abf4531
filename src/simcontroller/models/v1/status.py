"""API-visible models for server health and status broadcasts."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from ..domain.kubernetes import PodPhase
from .server import ServerProtocol

__all__ = [
    "HealthSample",
    "MetricsSample",
    "ServerStatus",
    "StatusSnapshot",
]


class ServerStatus(BaseModel):
    """Health of one server at one point in time."""

    model_config = ConfigDict(
        alias_generator=to_camel, frozen=True, populate_by_name=True
    )

    name: str = Field(..., title="Server name")

    protocol: ServerProtocol = Field(..., title="Protocol")

    pod_phase: PodPhase = Field(..., title="Pod phase")

    is_healthy: bool = Field(..., title="Whether the server is healthy")

    health_message: str | None = Field(
        None,
        title="Reason for failure",
        description="Set only when the server is unhealthy",
        examples=["TCP connection failed"],
    )

    latency_ms: float = Field(
        ...,
        title="Probe latency",
        description="Wall-clock duration of the health check in milliseconds",
    )

    checked_at: datetime = Field(..., title="Time of the health check")


class StatusSnapshot(BaseModel):
    """Consistent status of every server from a single broadcast cycle.

    Snapshots are immutable. Every server in a snapshot was discovered and
    probed in the same cycle.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, frozen=True, populate_by_name=True
    )

    servers: tuple[ServerStatus, ...] = Field(
        ..., title="Status of each server, in discovery order"
    )

    timestamp: datetime = Field(..., title="When the cycle completed")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def healthy_count(self) -> int:
        """Number of healthy servers."""
        return sum(1 for s in self.servers if s.is_healthy)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_count(self) -> int:
        """Number of servers."""
        return len(self.servers)


class HealthSample(BaseModel):
    """One server's health measurement for the metrics stream."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    server_id: str = Field(..., title="Server name")

    server_type: ServerProtocol = Field(..., title="Protocol")

    is_healthy: bool = Field(..., title="Whether the server is healthy")

    latency_ms: float | None = Field(
        None,
        title="Probe latency",
        description="Omitted for unhealthy servers",
    )

    @classmethod
    def from_status(cls, status: ServerStatus) -> HealthSample:
        """Build a sample from a health check result.

        Parameters
        ----------
        status
            Result of a health check.

        Returns
        -------
        HealthSample
            Corresponding sample.
        """
        return cls(
            server_id=status.name,
            server_type=status.protocol,
            is_healthy=status.is_healthy,
            latency_ms=status.latency_ms if status.is_healthy else None,
        )


class MetricsSample(BaseModel):
    """Health samples for every server from one broadcast cycle."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: datetime = Field(..., title="When the samples were taken")

    samples: list[HealthSample] = Field(..., title="Per-server samples")
