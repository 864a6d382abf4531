"""File simulator controller background processing."""

from __future__ import annotations

from aiojobs import Scheduler
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .services.broadcaster import StatusBroadcaster
from .services.endpoints import EndpointsReconciler
from .services.hub import StatusHub

__all__ = ["BackgroundTaskManager"]


class BackgroundTaskManager:
    """Manage file simulator controller background tasks.

    While the controller is running, it continuously discovers and checks the
    health of every protocol server and broadcasts the results. This class
    starts and stops that task. All of the work is done by
    `~simcontroller.services.broadcaster.StatusBroadcaster`.

    This class is created during startup and tracked as part of the
    `~simcontroller.factory.ProcessContext`.

    Parameters
    ----------
    broadcaster
        Status broadcaster.
    hub
        Hub to which status events are published, closed on shutdown.
    reconciler
        Service-discovery ``ConfigMap`` reconciler, run once at startup.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        broadcaster: StatusBroadcaster,
        hub: StatusHub,
        reconciler: EndpointsReconciler,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._broadcaster = broadcaster
        self._hub = hub
        self._reconciler = reconciler
        self._slack = slack_client
        self._logger = logger

        self._scheduler: Scheduler | None = None

    async def start(self) -> None:
        """Start all background tasks.

        Intended to be called during controller startup. The service-discovery
        ``ConfigMap`` is rebuilt in the background first, since it may be
        stale after a controller restart.
        """
        if self._scheduler:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()
        self._logger.info("Starting background tasks")
        await self._scheduler.spawn(self._reconcile())
        await self._scheduler.spawn(self._broadcaster.run())

    async def stop(self) -> None:
        """Stop the background tasks."""
        if not self._scheduler:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        self._broadcaster.stop()
        await self._scheduler.close()
        self._scheduler = None
        self._hub.close()

    async def _reconcile(self) -> None:
        """Reconcile the service-discovery ``ConfigMap`` once."""
        try:
            await self._reconciler.reconcile()
        except Exception as e:
            msg = "Uncaught exception reconciling endpoints"
            self._logger.exception(msg)
            if self._slack:
                await self._slack.post_uncaught_exception(e)
