"""Service to manage dynamic protocol servers."""

from __future__ import annotations

from collections.abc import Callable

import sentry_sdk
from kubernetes_asyncio.client import V1Pod
from safir.datetime import current_datetime
from safir.fastapi import ClientRequestError
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..config import KubernetesConfig
from ..constants import (
    DYNAMIC_MANAGED_BY,
    INSTANCE_LABEL,
    KUBERNETES_REQUEST_TIMEOUT,
    MANAGED_BY_LABEL,
)
from ..exceptions import (
    ControlPlaneNotFoundError,
    ServerNameConflictError,
    ServerNotFoundError,
    ServerNotRunningError,
)
from ..models.domain.kubernetes import PodPhase
from ..models.domain.server import ServerObjects
from ..models.v1.server import (
    CreateFtpServerRequest,
    CreateNasServerRequest,
    CreateServerRequest,
    CreateSftpServerRequest,
    DiscoveredServer,
    ServerProtocol,
)
from ..storage.kubernetes.server import ServerStorage
from ..timeout import Timeout
from .builder.server import ServerBuilder
from .endpoints import EndpointsReconciler

__all__ = ["LifecycleManager"]


class LifecycleManager:
    """Create, delete, stop, start, and restart dynamic servers.

    Dynamic servers are a deployment plus a ``NodePort`` service labeled as
    managed by the controller. Helm-managed servers are visible to discovery
    but are never modified here. No state is kept between calls; every
    operation acts on whatever Kubernetes currently reports.

    Parameters
    ----------
    config
        Kubernetes placement of the file simulator.
    server_builder
        Builder that constructs server Kubernetes objects.
    server_storage
        Kubernetes storage layer for protocol servers.
    reconciler
        Service-discovery ``ConfigMap`` reconciler, run after every change.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: KubernetesConfig,
        server_builder: ServerBuilder,
        server_storage: ServerStorage,
        reconciler: EndpointsReconciler,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._builder = server_builder
        self._storage = server_storage
        self._reconciler = reconciler
        self._slack = slack_client
        self._logger = logger

    async def create_ftp_server(
        self, request: CreateFtpServerRequest
    ) -> DiscoveredServer:
        """Create a dynamic FTP server.

        Parameters
        ----------
        request
            Validated creation request.

        Returns
        -------
        DiscoveredServer
            The new server, reported as pending until discovery sees its pod.

        Raises
        ------
        ControlPlaneNotFoundError
            Raised if there is no running control plane pod to own the server.
        ControllerTimeoutError
            Raised if creation did not complete within its timeout.
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        ServerNameConflictError
            Raised if a dynamic server with that name already exists.
        """
        return await self._create(
            ServerProtocol.FTP,
            request,
            lambda owner: self._builder.build_ftp(request, owner),
        )

    async def create_nas_server(
        self, request: CreateNasServerRequest
    ) -> DiscoveredServer:
        """Create a dynamic NFS server.

        Parameters
        ----------
        request
            Validated creation request.

        Returns
        -------
        DiscoveredServer
            The new server, reported as pending until discovery sees its pod.

        Raises
        ------
        ControlPlaneNotFoundError
            Raised if there is no running control plane pod to own the server.
        ControllerTimeoutError
            Raised if creation did not complete within its timeout.
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        ServerNameConflictError
            Raised if a dynamic server with that name already exists.
        """
        return await self._create(
            ServerProtocol.NFS,
            request,
            lambda owner: self._builder.build_nas(request, owner),
        )

    async def create_sftp_server(
        self, request: CreateSftpServerRequest
    ) -> DiscoveredServer:
        """Create a dynamic SFTP server.

        Parameters
        ----------
        request
            Validated creation request.

        Returns
        -------
        DiscoveredServer
            The new server, reported as pending until discovery sees its pod.

        Raises
        ------
        ControlPlaneNotFoundError
            Raised if there is no running control plane pod to own the server.
        ControllerTimeoutError
            Raised if creation did not complete within its timeout.
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        ServerNameConflictError
            Raised if a dynamic server with that name already exists.
        """
        return await self._create(
            ServerProtocol.SFTP,
            request,
            lambda owner: self._builder.build_sftp(request, owner),
        )

    async def delete_server(
        self, name: str, *, delete_data: bool = False
    ) -> None:
        """Delete a dynamic server.

        Parameters
        ----------
        name
            Name of the server.
        delete_data
            Whether the caller asked for the server's data to be removed.
            Data lives on the shared volume and is never deleted, so this is
            only logged.

        Raises
        ------
        ControllerTimeoutError
            Raised if deletion did not complete within its timeout.
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        ServerNotFoundError
            Raised if there is no dynamic server by that name.
        """
        logger = self._logger.bind(server=name)
        selector = (
            f"{INSTANCE_LABEL}={name},{MANAGED_BY_LABEL}={DYNAMIC_MANAGED_BY}"
        )
        timeout = Timeout("Server deletion", KUBERNETES_REQUEST_TIMEOUT, name)
        try:
            async with timeout.enforce():
                deleted = await self._storage.delete(
                    self._config.namespace, selector, timeout
                )
        except Exception as e:
            logger.exception("Error deleting server")
            await self._maybe_post_exception(e, name)
            raise
        if not deleted:
            msg = (
                f"Dynamic server '{name}' not found. Static (Helm-managed)"
                " servers cannot be deleted."
            )
            raise ServerNotFoundError(msg)
        if delete_data:
            msg = "Data deletion requested but not supported, data retained"
            logger.warning(msg)
        logger.info("Deleted dynamic server")
        await self._reconciler.reconcile()

    async def get_control_plane_pod(self) -> V1Pod | None:
        """Find the running control plane pod.

        Returns
        -------
        kubernetes_asyncio.client.V1Pod or None
            Control plane pod, or `None` if none is running.

        Raises
        ------
        ControllerTimeoutError
            Raised if the lookup did not complete within its timeout.
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        timeout = Timeout(
            "Finding control plane pod", KUBERNETES_REQUEST_TIMEOUT
        )
        async with timeout.enforce():
            return await self._storage.get_control_plane_pod(
                self._config.namespace, timeout
            )

    async def is_name_available(self, name: str) -> bool:
        """Check whether no deployment uses a server name.

        The answer is only valid at the time of the call. Two concurrent
        creations of the same name can both see it as available.

        Parameters
        ----------
        name
            Proposed server name.

        Returns
        -------
        bool
            `True` if no deployment carries that instance label.

        Raises
        ------
        ControllerTimeoutError
            Raised if the lookup did not complete within its timeout.
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        timeout = Timeout("Checking name", KUBERNETES_REQUEST_TIMEOUT, name)
        async with timeout.enforce():
            return await self._is_name_available(name, timeout)

    async def restart_server(self, name: str) -> None:
        """Restart a server by deleting its pods.

        The owning deployment recreates the pods. This works for both dynamic
        and Helm-managed servers.

        Parameters
        ----------
        name
            Name of the server.

        Raises
        ------
        ControllerTimeoutError
            Raised if the restart did not complete within its timeout.
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        ServerNotRunningError
            Raised if the server has no pods.
        """
        logger = self._logger.bind(server=name)
        selector = f"{INSTANCE_LABEL}={name}"
        timeout = Timeout("Server restart", KUBERNETES_REQUEST_TIMEOUT, name)
        try:
            async with timeout.enforce():
                pods = await self._storage.delete_pods(
                    self._config.namespace, selector, timeout
                )
        except Exception as e:
            logger.exception("Error restarting server")
            await self._maybe_post_exception(e, name)
            raise
        if not pods:
            raise ServerNotRunningError(name)
        logger.info("Restarted server", pods=pods)
        await self._reconciler.reconcile()

    async def start_server(self, name: str) -> None:
        """Start a stopped server by scaling it to one replica.

        Parameters
        ----------
        name
            Name of the server.

        Raises
        ------
        ControllerTimeoutError
            Raised if the operation did not complete within its timeout.
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        ServerNotFoundError
            Raised if there is no deployment for the server.
        """
        await self._scale(name, 1)
        self._logger.info("Started server", server=name)
        await self._reconciler.reconcile()

    async def stop_server(self, name: str) -> None:
        """Stop a server by scaling it to zero replicas.

        Parameters
        ----------
        name
            Name of the server.

        Raises
        ------
        ControllerTimeoutError
            Raised if the operation did not complete within its timeout.
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        ServerNotFoundError
            Raised if there is no deployment for the server.
        """
        await self._scale(name, 0)
        self._logger.info("Stopped server", server=name)
        await self._reconciler.reconcile()

    async def _create(
        self,
        protocol: ServerProtocol,
        request: CreateServerRequest,
        build: Callable[[V1Pod], ServerObjects],
    ) -> DiscoveredServer:
        """Create a dynamic server of any protocol.

        Parameters
        ----------
        protocol
            Protocol of the server.
        request
            Validated creation request.
        build
            Constructs the server's objects given the owning pod.

        Returns
        -------
        DiscoveredServer
            The new server.
        """
        name = request.name
        namespace = self._config.namespace
        logger = self._logger.bind(server=name, protocol=protocol.value)
        logger.info("Creating dynamic server")
        timeout = Timeout("Server creation", KUBERNETES_REQUEST_TIMEOUT, name)
        try:
            async with timeout.enforce():
                if not await self._is_name_available(name, timeout):
                    raise ServerNameConflictError(name)
                owner = await self._storage.get_control_plane_pod(
                    namespace, timeout
                )
                if not owner:
                    raise ControlPlaneNotFoundError
                objects = build(owner)
                service = await self._storage.create(
                    namespace, objects, timeout
                )
        except ClientRequestError:
            raise
        except Exception as e:
            logger.exception("Server creation failed")
            await self._maybe_post_exception(e, name)
            raise
        logger.info("Created dynamic server")
        await self._reconciler.reconcile()

        resource = objects.deployment.metadata.name
        ports = service.spec.ports or []
        return DiscoveredServer(
            name=name,
            pod_name=f"{resource}-pending",
            protocol=protocol,
            service_name=service.metadata.name,
            cluster_ip=service.spec.cluster_ip or "",
            port=ports[0].port if ports else 0,
            node_port=ports[0].node_port if ports else None,
            pod_phase=PodPhase.PENDING,
            pod_ready=False,
            is_dynamic=True,
            managed_by=DYNAMIC_MANAGED_BY,
            discovered_at=current_datetime(),
        )

    async def _is_name_available(self, name: str, timeout: Timeout) -> bool:
        deployments = await self._storage.list_deployments(
            self._config.namespace,
            timeout,
            label_selector=f"{INSTANCE_LABEL}={name}",
        )
        return not deployments

    async def _maybe_post_exception(
        self, exc: Exception, server: str | None = None
    ) -> None:
        """Post an exception to an external service.

        This will post the exception to Slack if Slack reporting is configured
        and Sentry if Sentry is enabled.

        Parameters
        ----------
        exc
            Exception to report.
        server
            Server being acted on when the exception occurred, if known.
        """
        with sentry_sdk.new_scope() as scope:
            if server:
                scope.set_tag("server", server)
            sentry_sdk.capture_exception(exc)

        if not self._slack:
            return
        if isinstance(exc, SlackException):
            await self._slack.post_exception(exc)
        else:
            await self._slack.post_uncaught_exception(exc)

    async def _scale(self, name: str, replicas: int) -> None:
        """Scale every deployment of a server."""
        logger = self._logger.bind(server=name, replicas=replicas)
        selector = f"{INSTANCE_LABEL}={name}"
        timeout = Timeout("Server scaling", KUBERNETES_REQUEST_TIMEOUT, name)
        try:
            async with timeout.enforce():
                found = await self._storage.scale(
                    self._config.namespace, selector, replicas, timeout
                )
        except Exception as e:
            logger.exception("Error scaling server")
            await self._maybe_post_exception(e, name)
            raise
        if not found:
            raise ServerNotFoundError(f"Server '{name}' not found")
