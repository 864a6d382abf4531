"""Maintenance of the service-discovery ``ConfigMap``."""

from __future__ import annotations

from kubernetes_asyncio.client import V1ConfigMap, V1ObjectMeta
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..config import KubernetesConfig
from ..constants import (
    APP_LABEL,
    APP_NAME,
    COMPONENT_LABEL,
    DYNAMIC_MANAGED_BY,
    KUBERNETES_REQUEST_TIMEOUT,
    MANAGED_BY_LABEL,
)
from ..exceptions import KubernetesError
from ..models.v1.server import DiscoveredServer
from ..storage.kubernetes.objects import ConfigMapStorage
from ..timeout import Timeout
from .discovery import DiscoveryService

__all__ = ["EndpointsReconciler", "build_endpoints"]


def build_endpoints(
    servers: list[DiscoveredServer], namespace: str
) -> dict[str, str]:
    """Construct the service-discovery entries for a set of servers.

    Only servers whose pods are ready are included. Each server contributes
    a key such as ``FTP_MY_SERVER`` holding its in-cluster DNS address and,
    if it has one, a ``FTP_MY_SERVER_NODEPORT`` key holding its node port.

    Parameters
    ----------
    servers
        Discovered servers.
    namespace
        Namespace of the servers' services.

    Returns
    -------
    dict of str
        Entries without the ``UPDATED_AT`` and ``SERVER_COUNT`` keys.
    """
    data = {}
    for server in servers:
        if not server.pod_ready:
            continue
        key = f"{server.protocol.value}_{server.name}"
        key = key.replace("-", "_").upper()
        host = f"{server.service_name}.{namespace}.svc.cluster.local"
        data[key] = f"{host}:{server.port}"
        if server.node_port:
            data[f"{key}_NODEPORT"] = str(server.node_port)
    return data


class EndpointsReconciler:
    """Keep the service-discovery ``ConfigMap`` in sync with the cluster.

    The ``ConfigMap`` is always rebuilt from a fresh discovery pass and
    written as a whole, so it never holds a mixture of old and new entries.
    Reconciliation is idempotent and is run after every successful lifecycle
    operation.

    Parameters
    ----------
    config
        Kubernetes placement of the file simulator.
    discovery
        Server discovery service.
    config_map_storage
        Storage layer for ``ConfigMap`` objects.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: KubernetesConfig,
        discovery: DiscoveryService,
        config_map_storage: ConfigMapStorage,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._discovery = discovery
        self._storage = config_map_storage
        self._logger = logger

    async def reconcile(self) -> None:
        """Rewrite the service-discovery ``ConfigMap``.

        Errors are logged and not raised. If servers cannot be discovered,
        the existing contents are left alone rather than replaced with an
        empty set. The next reconcile will correct any stale contents left by
        a failure.
        """
        namespace = self._config.namespace
        name = self._config.endpoints_config_map
        logger = self._logger.bind(config_map=name, namespace=namespace)
        try:
            servers = await self._discovery.list_servers()
            data = self._build_data(servers)
            timeout = Timeout("Updating endpoints", KUBERNETES_REQUEST_TIMEOUT)
            async with timeout.enforce():
                await self._write(data, timeout)
        except Exception:
            logger.exception("Failed to update endpoints ConfigMap")
            return
        logger.info(
            "Updated endpoints ConfigMap", servers=data["SERVER_COUNT"]
        )

    def _build_data(self, servers: list[DiscoveredServer]) -> dict[str, str]:
        """Construct the full contents of the ``ConfigMap``."""
        data = build_endpoints(servers, self._config.namespace)
        count = sum(1 for s in servers if s.pod_ready)
        data["UPDATED_AT"] = current_datetime().isoformat()
        data["SERVER_COUNT"] = str(count)
        return data

    async def _write(self, data: dict[str, str], timeout: Timeout) -> None:
        """Replace the ``ConfigMap`` data, creating it if necessary.

        The metadata of an existing ``ConfigMap``, including any labels or
        annotations added by other tools, is kept.
        """
        namespace = self._config.namespace
        name = self._config.endpoints_config_map
        existing = await self._storage.read(name, namespace, timeout)
        if existing:
            existing.data = data
            await self._storage.replace(namespace, existing, timeout)
            return
        config_map = V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels={
                    APP_LABEL: APP_NAME,
                    COMPONENT_LABEL: "service-discovery",
                    MANAGED_BY_LABEL: DYNAMIC_MANAGED_BY,
                },
            ),
            data=data,
        )
        try:
            await self._storage.create(namespace, config_map, timeout)
        except KubernetesError as e:
            if e.status != 409:
                raise
            self._logger.debug("ConfigMap created concurrently, replacing")
            await self._storage.replace(namespace, config_map, timeout)
