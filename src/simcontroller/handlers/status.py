"""Routes for server health status."""

from typing import Annotated

from fastapi import APIRouter, Depends
from safir.models import ErrorModel
from safir.slack.webhook import SlackRouteErrorHandler
from sse_starlette import EventSourceResponse

from ..dependencies.context import RequestContext, context_dependency
from ..exceptions import StatusNotAvailableError
from ..models.v1.status import StatusSnapshot

router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router to mount into the application."""

__all__ = ["router"]


@router.get(
    "/status",
    responses={
        404: {"description": "Status not yet available", "model": ErrorModel}
    },
    summary="Get latest health status of all servers",
    tags=["status"],
)
async def get_status(
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> StatusSnapshot:
    snapshot = context.broadcaster.get_latest_snapshot()
    if not snapshot:
        raise StatusNotAvailableError
    return snapshot


@router.get(
    "/status/events",
    summary="Get stream of status events",
    description=(
        "Returns a stream of server-sent events. After every health check"
        " cycle, a ``ServerStatusUpdate`` event carrying the full status"
        " snapshot is sent, followed by a ``MetricsSample`` event carrying"
        " the per-server health samples. Only events from cycles completed"
        " after the connection was opened are sent."
    ),
    tags=["status"],
)
async def get_status_events(
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> EventSourceResponse:
    return EventSourceResponse(context.hub.subscribe_sse())
