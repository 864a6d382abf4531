"""Kubernetes storage layer for protocol servers."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    ApiClient,
    V1Deployment,
    V1Pod,
    V1Service,
)
from structlog.stdlib import BoundLogger

from ...constants import (
    APP_LABEL,
    APP_NAME,
    COMPONENT_LABEL,
    CONTROL_PLANE_COMPONENT,
    CONTROL_PLANE_POD_MARKER,
    RESTART_GRACE_PERIOD,
)
from ...models.domain.kubernetes import PodPhase, PropagationPolicy
from ...models.domain.server import ClusterObjects, ServerObjects
from ...timeout import Timeout
from .objects import DeploymentStorage, PodStorage, ServiceStorage

__all__ = ["ServerStorage"]


class ServerStorage:
    """Kubernetes storage layer for protocol servers.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.

    Notes
    -----
    This class isn't strictly necessary; instead, the services could call the
    storage layers for individual Kubernetes objects directly. But discovery
    and lifecycle operations each touch several object kinds, and adding a
    thin layer to wrangle the storage objects makes those services easier to
    follow.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._logger = logger
        self._deployment = DeploymentStorage(api_client, logger)
        self._pod = PodStorage(api_client, logger)
        self._service = ServiceStorage(api_client, logger)

    async def create(
        self, namespace: str, objects: ServerObjects, timeout: Timeout
    ) -> V1Service:
        """Create the Kubernetes objects for a dynamic server.

        The deployment is created before the service, so a service never
        exists without something to select. The service is then read back to
        pick up the cluster IP and node ports assigned by Kubernetes. If the
        service cannot be created, the deployment is deleted again so that no
        half-built server is left behind.

        Parameters
        ----------
        namespace
            Namespace where the objects should live.
        objects
            Kubernetes objects making up the server.
        timeout
            Timeout on operation.

        Returns
        -------
        kubernetes_asyncio.client.V1Service
            Service as stored by Kubernetes.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        await self._deployment.create(namespace, objects.deployment, timeout)
        try:
            await self._service.create(namespace, objects.service, timeout)
        except Exception:
            await self._remove_orphan(namespace, objects.deployment, timeout)
            raise
        name = objects.service.metadata.name
        service = await self._service.read(name, namespace, timeout)
        return service or objects.service

    async def delete(
        self, namespace: str, label_selector: str, timeout: Timeout
    ) -> bool:
        """Delete every deployment and service matching a selector.

        Services are deleted first so that clients stop being routed to the
        server before its pods go away. Deployments are deleted with
        foreground propagation so that their pods are removed with them.

        Parameters
        ----------
        namespace
            Namespace of the server.
        label_selector
            Label selector matching the server's objects.
        timeout
            Timeout on operation.

        Returns
        -------
        bool
            `False` if no deployments matched the selector, in which case
            nothing was deleted.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        deployments = await self.list_deployments(
            namespace, timeout, label_selector=label_selector
        )
        if not deployments:
            return False
        services = await self._service.list(
            namespace, timeout, label_selector=label_selector
        )
        for service in services:
            name = service.metadata.name
            await self._service.delete(name, namespace, timeout)
        for deployment in deployments:
            await self._deployment.delete(
                deployment.metadata.name,
                namespace,
                timeout,
                propagation_policy=PropagationPolicy.FOREGROUND,
            )
        return True

    async def delete_pods(
        self, namespace: str, label_selector: str, timeout: Timeout
    ) -> list[str]:
        """Delete every pod matching a selector with a short grace period.

        Parameters
        ----------
        namespace
            Namespace of the pods.
        label_selector
            Label selector matching the pods.
        timeout
            Timeout on operation.

        Returns
        -------
        list of str
            Names of the pods deleted, empty if none matched.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        pods = await self._pod.list(
            namespace, timeout, label_selector=label_selector
        )
        names = [p.metadata.name for p in pods]
        for name in names:
            await self._pod.delete(
                name, namespace, timeout, grace_period=RESTART_GRACE_PERIOD
            )
        return names

    async def get_cluster_objects(
        self, namespace: str, timeout: Timeout
    ) -> ClusterObjects:
        """List all file simulator pods, services, and deployments.

        Parameters
        ----------
        namespace
            Namespace of the file simulator.
        timeout
            Timeout on operation.

        Returns
        -------
        ClusterObjects
            Everything carrying the file simulator application label.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        selector = f"{APP_LABEL}={APP_NAME}"
        pods = await self._pod.list(
            namespace, timeout, label_selector=selector
        )
        services = await self._service.list(
            namespace, timeout, label_selector=selector
        )
        deployments = await self.list_deployments(
            namespace, timeout, label_selector=selector
        )
        return ClusterObjects(
            pods=pods, services=services, deployments=deployments
        )

    async def get_control_plane_pod(
        self, namespace: str, timeout: Timeout
    ) -> V1Pod | None:
        """Find the running control plane pod.

        Parameters
        ----------
        namespace
            Namespace of the file simulator.
        timeout
            Timeout on operation.

        Returns
        -------
        kubernetes_asyncio.client.V1Pod or None
            The first running pod with the control plane component label and
            a control plane name, or `None` if there is none.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        selector = f"{COMPONENT_LABEL}={CONTROL_PLANE_COMPONENT}"
        pods = await self._pod.list(
            namespace, timeout, label_selector=selector
        )
        for pod in pods:
            if CONTROL_PLANE_POD_MARKER not in pod.metadata.name:
                continue
            if PodPhase.from_pod(pod) == PodPhase.RUNNING:
                return pod
        return None

    async def list_deployments(
        self, namespace: str, timeout: Timeout, *, label_selector: str
    ) -> list[V1Deployment]:
        """List deployments matching a selector.

        Parameters
        ----------
        namespace
            Namespace to list.
        timeout
            Timeout on operation.
        label_selector
            Label selector to match.

        Returns
        -------
        list of kubernetes_asyncio.client.V1Deployment
            Matching deployments.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        return await self._deployment.list(
            namespace, timeout, label_selector=label_selector
        )

    async def read_deployment(
        self, name: str, namespace: str, timeout: Timeout
    ) -> V1Deployment | None:
        """Read a deployment by name.

        Parameters
        ----------
        name
            Name of the deployment.
        namespace
            Namespace of the deployment.
        timeout
            Timeout on operation.

        Returns
        -------
        kubernetes_asyncio.client.V1Deployment or None
            The deployment, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        return await self._deployment.read(name, namespace, timeout)

    async def scale(
        self,
        namespace: str,
        label_selector: str,
        replicas: int,
        timeout: Timeout,
    ) -> bool:
        """Scale every deployment matching a selector.

        Parameters
        ----------
        namespace
            Namespace of the deployments.
        label_selector
            Label selector to match.
        replicas
            New replica count.
        timeout
            Timeout on operation.

        Returns
        -------
        bool
            `False` if no deployments matched the selector.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        deployments = await self.list_deployments(
            namespace, timeout, label_selector=label_selector
        )
        for deployment in deployments:
            name = deployment.metadata.name
            await self._deployment.scale(name, namespace, replicas, timeout)
        return bool(deployments)

    async def _remove_orphan(
        self, namespace: str, deployment: V1Deployment, timeout: Timeout
    ) -> None:
        """Delete a deployment whose service could not be created.

        Failures are logged and not raised so that the caller can re-raise
        the original error.
        """
        name = deployment.metadata.name
        logger = self._logger.bind(name=name, namespace=namespace)
        logger.warning("Service creation failed, deleting deployment")
        try:
            await self._deployment.delete(
                name,
                namespace,
                timeout,
                propagation_policy=PropagationPolicy.FOREGROUND,
            )
        except Exception:
            logger.exception("Failed to delete orphaned deployment")
