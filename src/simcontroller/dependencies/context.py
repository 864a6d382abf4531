"""Per-request context for the controller's route handlers.

The process-wide singletons (Kubernetes client, status broadcaster, status
hub, background tasks) live in a single
`~simcontroller.factory.ProcessContext` created at startup. Each request
receives a `RequestContext` that combines those with a request-scoped logger
and a `~simcontroller.factory.Factory` for building services.
"""

from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, Request
from safir.dependencies.logger import logger_dependency
from structlog.stdlib import BoundLogger

from ..config import Config
from ..factory import Factory, ProcessContext
from ..services.broadcaster import StatusBroadcaster
from ..services.hub import StatusHub

__all__ = [
    "ContextDependency",
    "RequestContext",
    "context_dependency",
]


@dataclass(slots=True)
class RequestContext:
    """Everything a route handler needs to serve one request."""

    request: Request
    """Incoming request."""

    logger: BoundLogger
    """Request logger, carrying any server or strategy bound so far."""

    factory: Factory
    """Builds services that log through the request logger."""

    broadcaster: StatusBroadcaster
    """Process-wide broadcaster, holder of the latest status snapshot."""

    hub: StatusHub
    """Process-wide hub for status event subscriptions."""

    def rebind_logger(self, **values: Any) -> None:
        """Bind more fields to the request logger.

        Services created by the factory afterwards log with the new fields.

        Parameters
        ----------
        **values
            Fields to add to every subsequent log message.
        """
        self.logger = self.logger.bind(**values)
        self.factory.set_logger(self.logger)


class ContextDependency:
    """FastAPI dependency returning a fresh `RequestContext`.

    `initialize` must be called from the application lifespan before the
    first request and `aclose` on shutdown.
    """

    def __init__(self) -> None:
        self._process_context: ProcessContext | None = None

    async def __call__(
        self,
        request: Request,
        logger: Annotated[BoundLogger, Depends(logger_dependency)],
    ) -> RequestContext:
        context = self._process_context
        if context is None:
            raise RuntimeError("Controller process context not initialized")
        return RequestContext(
            request=request,
            logger=logger,
            factory=Factory(context, logger),
            broadcaster=context.broadcaster,
            hub=context.hub,
        )

    async def initialize(self, config: Config) -> None:
        """Create the process context and start its background tasks.

        Any previous process context is shut down first, which allows the
        test suite to reinitialize with a different configuration.

        Parameters
        ----------
        config
            Controller configuration.
        """
        await self.aclose()
        self._process_context = await ProcessContext.from_config(config)
        await self._process_context.start()

    async def aclose(self) -> None:
        """Stop background tasks and release the process context."""
        if self._process_context is None:
            return
        await self._process_context.stop()
        await self._process_context.aclose()
        self._process_context = None


context_dependency = ContextDependency()
"""Dependency returning the per-request context."""
