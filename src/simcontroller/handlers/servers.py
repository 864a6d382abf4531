"""Routes for protocol server discovery and lifecycle."""

from collections.abc import Awaitable
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from safir.models import ErrorModel
from safir.slack.webhook import SlackRouteErrorHandler

from ..dependencies.context import RequestContext, context_dependency
from ..exceptions import (
    ControllerTimeoutError,
    KubernetesError,
    ServerNotFoundError,
)
from ..models.v1.server import (
    CreateFtpServerRequest,
    CreateNasServerRequest,
    CreateSftpServerRequest,
    DiscoveredServer,
    NameAvailability,
)

router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router to mount into the application."""

_CREATE_RESPONSES = {
    409: {"description": "Server exists", "model": ErrorModel},
    500: {"description": "Server creation failed", "model": ErrorModel},
    503: {"description": "Control plane not running", "model": ErrorModel},
}

__all__ = ["router"]


async def _run_operation[T](operation: Awaitable[T], description: str) -> T:
    """Run a lifecycle operation, converting cluster failures to HTTP 500.

    Precondition failures propagate unchanged. Cluster failures were already
    reported to Slack by the lifecycle manager, so they are turned into a
    standard error response instead of an uncaught exception.
    """
    try:
        return await operation
    except (ControllerTimeoutError, KubernetesError) as e:
        error_type = description.lower().replace(" ", "_") + "_failed"
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=[{"msg": f"{description} failed", "type": error_type}],
        ) from e


@router.get(
    "/servers",
    summary="List protocol servers",
    tags=["servers"],
)
async def get_servers(
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> list[DiscoveredServer]:
    discovery = context.factory.create_discovery_service()
    return await discovery.discover_servers()


@router.get(
    "/servers/check-name/{name}",
    summary="Check whether a server name is available",
    tags=["servers"],
)
async def get_name_availability(
    name: str,
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> NameAvailability:
    lifecycle = context.factory.create_lifecycle_manager()
    available = await lifecycle.is_name_available(name)
    return NameAvailability(name=name, available=available)


@router.get(
    "/servers/{name}",
    responses={404: {"description": "Server not found", "model": ErrorModel}},
    summary="Get a protocol server",
    tags=["servers"],
)
async def get_server(
    name: str,
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> DiscoveredServer:
    discovery = context.factory.create_discovery_service()
    server = await discovery.get_server(name)
    if not server:
        raise ServerNotFoundError(f"Server '{name}' not found")
    return server


@router.post(
    "/servers/ftp",
    responses=_CREATE_RESPONSES,
    status_code=201,
    summary="Create a dynamic FTP server",
    tags=["servers"],
)
async def post_ftp_server(
    request: CreateFtpServerRequest,
    context: Annotated[RequestContext, Depends(context_dependency)],
    response: Response,
) -> DiscoveredServer:
    context.rebind_logger(server=request.name)
    lifecycle = context.factory.create_lifecycle_manager()
    server = await _run_operation(
        lifecycle.create_ftp_server(request), "Server creation"
    )
    _set_location(context, response, server)
    return server


@router.post(
    "/servers/nas",
    responses=_CREATE_RESPONSES,
    status_code=201,
    summary="Create a dynamic NFS server",
    tags=["servers"],
)
async def post_nas_server(
    request: CreateNasServerRequest,
    context: Annotated[RequestContext, Depends(context_dependency)],
    response: Response,
) -> DiscoveredServer:
    context.rebind_logger(server=request.name)
    lifecycle = context.factory.create_lifecycle_manager()
    server = await _run_operation(
        lifecycle.create_nas_server(request), "Server creation"
    )
    _set_location(context, response, server)
    return server


@router.post(
    "/servers/sftp",
    responses=_CREATE_RESPONSES,
    status_code=201,
    summary="Create a dynamic SFTP server",
    tags=["servers"],
)
async def post_sftp_server(
    request: CreateSftpServerRequest,
    context: Annotated[RequestContext, Depends(context_dependency)],
    response: Response,
) -> DiscoveredServer:
    context.rebind_logger(server=request.name)
    lifecycle = context.factory.create_lifecycle_manager()
    server = await _run_operation(
        lifecycle.create_sftp_server(request), "Server creation"
    )
    _set_location(context, response, server)
    return server


@router.delete(
    "/servers/{name}",
    responses={
        404: {"description": "Dynamic server not found", "model": ErrorModel}
    },
    status_code=204,
    summary="Delete a dynamic server",
    tags=["servers"],
)
async def delete_server(
    name: str,
    context: Annotated[RequestContext, Depends(context_dependency)],
    *,
    delete_data: Annotated[
        bool,
        Query(
            alias="deleteData",
            title="Delete data",
            description="Request deletion of the server's data (ignored)",
        ),
    ] = False,
) -> None:
    context.rebind_logger(server=name)
    lifecycle = context.factory.create_lifecycle_manager()
    await _run_operation(
        lifecycle.delete_server(name, delete_data=delete_data),
        "Server deletion",
    )


@router.post(
    "/servers/{name}/restart",
    responses={
        409: {"description": "Server has no pods", "model": ErrorModel}
    },
    status_code=204,
    summary="Restart a server",
    tags=["servers"],
)
async def post_restart(
    name: str,
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> None:
    context.rebind_logger(server=name)
    lifecycle = context.factory.create_lifecycle_manager()
    await _run_operation(lifecycle.restart_server(name), "Server restart")


@router.post(
    "/servers/{name}/start",
    responses={404: {"description": "Server not found", "model": ErrorModel}},
    status_code=204,
    summary="Start a stopped server",
    tags=["servers"],
)
async def post_start(
    name: str,
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> None:
    context.rebind_logger(server=name)
    lifecycle = context.factory.create_lifecycle_manager()
    await _run_operation(lifecycle.start_server(name), "Server start")


@router.post(
    "/servers/{name}/stop",
    responses={404: {"description": "Server not found", "model": ErrorModel}},
    status_code=204,
    summary="Stop a server",
    tags=["servers"],
)
async def post_stop(
    name: str,
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> None:
    context.rebind_logger(server=name)
    lifecycle = context.factory.create_lifecycle_manager()
    await _run_operation(lifecycle.stop_server(name), "Server stop")


def _set_location(
    context: RequestContext, response: Response, server: DiscoveredServer
) -> None:
    url = context.request.url_for("get_server", name=server.name)
    response.headers["Location"] = str(url)
