"""Metadata routes, both inside the API prefix and at the cluster root."""

from typing import Annotated

from fastapi import APIRouter, Depends
from safir.metadata import Metadata, get_metadata
from safir.slack.webhook import SlackRouteErrorHandler

from ..config import Config
from ..dependencies.config import config_dependency
from ..models.index import Index

__all__ = ["external_router", "internal_router"]

external_router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router mounted under the API path prefix."""

internal_router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router mounted at ``/``, reachable only inside the cluster."""


def _metadata(config: Config) -> Metadata:
    return get_metadata(
        package_name="file-simulator-controller",
        application_name=config.name,
    )


@external_router.get(
    "",
    response_model_exclude_none=True,
    summary="Controller metadata",
)
async def get_index(
    config: Annotated[Config, Depends(config_dependency)],
) -> Index:
    return Index(
        metadata=_metadata(config), namespace=config.kubernetes.namespace
    )


@internal_router.get(
    "/",
    description="Controller metadata, used by the Kubernetes probes.",
    include_in_schema=False,
    response_model_exclude_none=True,
    summary="Controller metadata (internal)",
)
async def get_internal_index(
    config: Annotated[Config, Depends(config_dependency)],
) -> Metadata:
    return _metadata(config)
