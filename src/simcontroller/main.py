"""Application factory for the file simulator controller."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from importlib.metadata import metadata, version

import structlog
from fastapi import FastAPI
from safir.fastapi import ClientRequestError, client_request_error_handler
from safir.kubernetes import initialize_kubernetes
from safir.logging import configure_logging, configure_uvicorn_logging
from safir.middleware.x_forwarded import XForwardedMiddleware
from safir.sentry import initialize_sentry
from safir.slack.webhook import SlackRouteErrorHandler
from sse_starlette.sse import AppStatus

from .dependencies.config import config_dependency
from .dependencies.context import context_dependency
from .handlers import configuration, index, servers, status

__all__ = ["create_app"]

_PACKAGE = "file-simulator-controller"


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    await initialize_kubernetes()
    await context_dependency.initialize(config_dependency.config)
    try:
        yield
    finally:
        await context_dependency.aclose()

        # sse-starlette caches its shutdown event on first use, bound to the
        # event loop of that moment. Reset it so a later app instance on a
        # new loop (each test has its own) creates a fresh one.
        AppStatus.should_exit_event = None


def create_app() -> FastAPI:
    """Create the FastAPI application.

    Configuration is loaded here rather than at import time so that the test
    suite can point `~simcontroller.dependencies.config.config_dependency`
    at its own configuration file first.
    """
    initialize_sentry(release=version(_PACKAGE))

    config = config_dependency.config
    configure_logging(
        name="simcontroller",
        profile=config.profile,
        log_level=config.log_level,
    )
    configure_uvicorn_logging(config.log_level)

    prefix = config.path_prefix
    app = FastAPI(
        title=config.name,
        description=metadata(_PACKAGE)["Summary"],
        version=version(_PACKAGE),
        openapi_url=f"{prefix}/openapi.json",
        docs_url=f"{prefix}/docs",
        redoc_url=f"{prefix}/redoc",
        lifespan=_lifespan,
    )
    app.include_router(index.internal_router)
    app.include_router(index.external_router, prefix=prefix)
    for module in (configuration, servers, status):
        app.include_router(module.router, prefix=prefix)

    app.add_middleware(XForwardedMiddleware)
    app.exception_handler(ClientRequestError)(client_request_error_handler)

    if config.slack_webhook:
        logger = structlog.get_logger(__name__)
        SlackRouteErrorHandler.initialize(
            config.slack_webhook, config.name, logger
        )
        logger.debug("Initialized Slack webhook")

    return app
