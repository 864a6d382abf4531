"""Component factory and process-wide context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from kubernetes_asyncio.client import ApiClient
from safir.metrics import EventManager
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config
from .events import StatusEvents
from .services.broadcaster import StatusBroadcaster
from .services.builder.server import ServerBuilder
from .services.configuration import ConfigurationService
from .services.discovery import DiscoveryService
from .services.endpoints import EndpointsReconciler
from .services.health import HealthProber
from .services.hub import StatusHub
from .services.lifecycle import LifecycleManager
from .storage.kubernetes.objects import ConfigMapStorage
from .storage.kubernetes.server import ServerStorage

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global application state.

    This object holds all of the per-process singletons and is managed by
    `~simcontroller.dependencies.context.ContextDependency`. It is used by
    the `Factory` class as a source of dependencies to inject into created
    service and storage objects, and by the context dependency as a source of
    singletons that should also be exposed to route handlers via the request
    context.
    """

    config: Config
    """File simulator controller configuration."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    event_manager: EventManager
    """Manager for metrics event publishers."""

    events: StatusEvents
    """Event publishers for health samples."""

    hub: StatusHub
    """Hub delivering status events to subscribers."""

    broadcaster: StatusBroadcaster
    """Periodic status broadcaster, holding the latest snapshot."""

    background: BackgroundTaskManager
    """Manager for background tasks."""

    slack_client: SlackWebhookClient | None
    """Optional Slack webhook client for alerts."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the controller configuration.

        Parameters
        ----------
        config
            File simulator controller configuration.

        Returns
        -------
        ProcessContext
            Shared context for a controller process.
        """
        kubernetes_client = ApiClient()

        # This logger is used only by process-global singletons. Everything
        # else will use a per-request logger that includes more context about
        # the request.
        logger = structlog.get_logger(__name__)

        event_manager = config.metrics.make_manager()
        await event_manager.initialize()
        events = StatusEvents()
        await events.initialize(event_manager)

        slack_client = None
        if config.slack_webhook:
            slack_client = SlackWebhookClient(
                config.slack_webhook, config.name, logger
            )

        discovery = DiscoveryService(
            namespace=config.kubernetes.namespace,
            server_storage=ServerStorage(kubernetes_client, logger),
            logger=logger,
        )
        hub = StatusHub()
        broadcaster = StatusBroadcaster(
            discovery=discovery,
            prober=HealthProber(logger),
            hub=hub,
            events=events,
            slack_client=slack_client,
            logger=logger,
        )
        reconciler = EndpointsReconciler(
            config=config.kubernetes,
            discovery=discovery,
            config_map_storage=ConfigMapStorage(kubernetes_client, logger),
            logger=logger,
        )
        return cls(
            config=config,
            kubernetes_client=kubernetes_client,
            event_manager=event_manager,
            events=events,
            hub=hub,
            broadcaster=broadcaster,
            background=BackgroundTaskManager(
                broadcaster=broadcaster,
                hub=hub,
                reconciler=reconciler,
                slack_client=slack_client,
                logger=logger,
            ),
            slack_client=slack_client,
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.event_manager.aclose()
        await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start the background tasks running."""
        await self.background.start()

    async def stop(self) -> None:
        """Clean up a process context.

        Called during shutdown, or before recreating the process context using
        a different configuration.
        """
        await self.background.stop()


class Factory:
    """Build file simulator controller components.

    Uses the contents of a `ProcessContext` to construct the components of the
    application on demand.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for controller components.

        Intended for background jobs or the test suite. Background tasks are
        not started.

        Parameters
        ----------
        config
            File simulator controller configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(__name__)
        context = await ProcessContext.from_config(config)
        factory = cls(context, logger)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger

    @property
    def broadcaster(self) -> StatusBroadcaster:
        """Process-global status broadcaster."""
        return self._context.broadcaster

    @property
    def events(self) -> StatusEvents:
        """Process-global metrics event publishers."""
        return self._context.events

    @property
    def hub(self) -> StatusHub:
        """Process-global status hub."""
        return self._context.hub

    async def aclose(self) -> None:
        """Shut down the factory and the process context."""
        await self._context.aclose()

    def create_configuration_service(self) -> ConfigurationService:
        """Create a new service for configuration export and import.

        Returns
        -------
        ConfigurationService
            Newly-created configuration service.
        """
        return ConfigurationService(
            config=self._context.config.kubernetes,
            discovery=self.create_discovery_service(),
            lifecycle=self.create_lifecycle_manager(),
            server_builder=self.create_server_builder(),
            server_storage=self.create_server_storage(),
            logger=self._logger,
        )

    def create_discovery_service(self) -> DiscoveryService:
        """Create a new server discovery service.

        Returns
        -------
        DiscoveryService
            Newly-created discovery service.
        """
        return DiscoveryService(
            namespace=self._context.config.kubernetes.namespace,
            server_storage=self.create_server_storage(),
            logger=self._logger,
        )

    def create_endpoints_reconciler(self) -> EndpointsReconciler:
        """Create a new service-discovery ``ConfigMap`` reconciler.

        Returns
        -------
        EndpointsReconciler
            Newly-created reconciler.
        """
        return EndpointsReconciler(
            config=self._context.config.kubernetes,
            discovery=self.create_discovery_service(),
            config_map_storage=ConfigMapStorage(
                self._context.kubernetes_client, self._logger
            ),
            logger=self._logger,
        )

    def create_health_prober(self) -> HealthProber:
        """Create a new health prober.

        Returns
        -------
        HealthProber
            Newly-created health prober.
        """
        return HealthProber(self._logger)

    def create_lifecycle_manager(self) -> LifecycleManager:
        """Create a new dynamic server lifecycle manager.

        Returns
        -------
        LifecycleManager
            Newly-created lifecycle manager.
        """
        return LifecycleManager(
            config=self._context.config.kubernetes,
            server_builder=self.create_server_builder(),
            server_storage=self.create_server_storage(),
            reconciler=self.create_endpoints_reconciler(),
            slack_client=self.create_slack_client(),
            logger=self._logger,
        )

    def create_server_builder(self) -> ServerBuilder:
        """Create a new builder for dynamic server objects.

        Returns
        -------
        ServerBuilder
            Newly-created builder.
        """
        return ServerBuilder(self._context.config.kubernetes)

    def create_server_storage(self) -> ServerStorage:
        """Create a new Kubernetes storage layer for protocol servers.

        Returns
        -------
        ServerStorage
            Newly-created storage layer.
        """
        return ServerStorage(self._context.kubernetes_client, self._logger)

    def create_slack_client(self) -> SlackWebhookClient | None:
        """Create a client for sending messages to Slack.

        Returns
        -------
        SlackWebhookClient or None
            Configured Slack client if a Slack webhook was configured,
            otherwise `None`.
        """
        config = self._context.config
        if not config.slack_webhook:
            return None
        return SlackWebhookClient(
            config.slack_webhook, config.name, self._logger
        )

    def set_logger(self, logger: BoundLogger) -> None:
        """Replace the internal logger.

        Used by the context dependency to update the logger for all
        newly-created components when it's rebound with additional context.

        Parameters
        ----------
        logger
            New logger.
        """
        self._logger = logger
