"""Routes for configuration export and import."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, UploadFile
from pydantic import ValidationError
from safir.models import ErrorLocation, ErrorModel
from safir.slack.webhook import SlackRouteErrorHandler

from ..dependencies.context import RequestContext, context_dependency
from ..exceptions import InvalidImportError
from ..models.v1.configuration import (
    ConfigurationDocument,
    ConflictStrategy,
    ImportRequest,
    ImportResult,
)

router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router to mount into the application."""

__all__ = ["router"]


@router.get(
    "/configuration/export",
    response_model_exclude_none=True,
    summary="Export the configuration of all servers",
    tags=["configuration"],
)
async def get_export(
    context: Annotated[RequestContext, Depends(context_dependency)],
    description: Annotated[
        str | None,
        Query(
            title="Description",
            description="Free-form description stored in the export",
        ),
    ] = None,
) -> ConfigurationDocument:
    service = context.factory.create_configuration_service()
    return await service.export_configuration(description)


@router.post(
    "/configuration/validate",
    summary="Preview a configuration import",
    description=(
        "Reports which servers would be created and which would be skipped,"
        " without changing anything"
    ),
    tags=["configuration"],
)
async def post_validate(
    document: ConfigurationDocument,
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> ImportResult:
    service = context.factory.create_configuration_service()
    return await service.validate_import(document)


@router.post(
    "/configuration/import",
    summary="Import a configuration",
    tags=["configuration"],
)
async def post_import(
    request: ImportRequest,
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> ImportResult:
    context.rebind_logger(strategy=request.strategy.value)
    service = context.factory.create_configuration_service()
    return await service.import_configuration(
        request.configuration, request.strategy
    )


@router.post(
    "/configuration/import/file",
    responses={
        422: {"description": "Invalid configuration", "model": ErrorModel}
    },
    summary="Import a configuration from an uploaded file",
    tags=["configuration"],
)
async def post_import_file(
    file: UploadFile,
    context: Annotated[RequestContext, Depends(context_dependency)],
    strategy: Annotated[
        ConflictStrategy,
        Query(title="Conflict strategy", description="Name conflict handling"),
    ] = ConflictStrategy.SKIP,
) -> ImportResult:
    contents = await file.read()
    try:
        document = ConfigurationDocument.model_validate_json(contents)
    except ValidationError as e:
        msg = f"Invalid configuration file: {e!s}"
        raise InvalidImportError(msg, ErrorLocation.body, ["file"]) from e
    context.rebind_logger(strategy=strategy.value, file=file.filename)
    service = context.factory.create_configuration_service()
    return await service.import_configuration(document, strategy)
