"""Events pushed to status subscribers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sse_starlette import ServerSentEvent

from ..v1.status import MetricsSample, StatusSnapshot

__all__ = [
    "StatusEvent",
    "StatusEventType",
]


class StatusEventType(Enum):
    """Type of a status event."""

    SERVER_STATUS_UPDATE = "ServerStatusUpdate"
    METRICS_SAMPLE = "MetricsSample"


@dataclass(frozen=True)
class StatusEvent:
    """One status event, as delivered to every subscriber."""

    type: StatusEventType
    """Type of the event."""

    data: StatusSnapshot | MetricsSample
    """Payload of the event."""

    def to_sse(self) -> ServerSentEvent:
        """Convert to event suitable for sending to the client.

        Returns
        -------
        sse_starlette.ServerSentEvent
            Converted form of the event.
        """
        data = self.data.model_dump_json(by_alias=True)
        return ServerSentEvent(data=data, event=self.type.value)
