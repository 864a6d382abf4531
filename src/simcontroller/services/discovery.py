"""Discovery of protocol servers running in the cluster."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from kubernetes_asyncio.client import (
    V1Container,
    V1Deployment,
    V1Pod,
    V1Service,
)
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..constants import (
    CONTROL_PLANE_POD_MARKER,
    DEFAULT_MANAGED_BY,
    DYNAMIC_MANAGED_BY,
    INSTANCE_LABEL,
    KUBERNETES_REQUEST_TIMEOUT,
    MANAGED_BY_LABEL,
    WINDOWS_DATA_ROOT,
)
from ..models.domain.kubernetes import PodPhase, is_pod_ready
from ..models.domain.server import ClusterObjects
from ..models.v1.server import DiscoveredServer, ServerProtocol
from ..storage.kubernetes.server import ServerStorage
from ..timeout import Timeout
from .credentials import extract_credentials

__all__ = [
    "PROTOCOL_PATTERNS",
    "DiscoveryService",
    "classify_protocol",
    "infer_directory",
    "parse_server_name",
]

PROTOCOL_PATTERNS: tuple[tuple[str, ServerProtocol], ...] = (
    ("management", ServerProtocol.MANAGEMENT),
    ("sftp", ServerProtocol.SFTP),
    ("ftp", ServerProtocol.FTP),
    ("nas", ServerProtocol.NFS),
    ("webdav", ServerProtocol.WEBDAV),
    ("http", ServerProtocol.HTTP),
    ("s3", ServerProtocol.S3),
    ("smb", ServerProtocol.SMB),
)
"""Pod name substrings identifying each protocol, in match order.

A token that contains another token must come first: ``sftp`` contains
``ftp``, and both ``management`` and ``webdav`` pods also serve HTTP.
"""


def classify_protocol(pod_name: str) -> ServerProtocol | None:
    """Determine the protocol of a server from its pod name.

    Parameters
    ----------
    pod_name
        Name of the pod.

    Returns
    -------
    ServerProtocol or None
        Protocol of the first matching pattern, or `None` if the pod does not
        look like a protocol server.
    """
    lowered = pod_name.lower()
    for token, protocol in PROTOCOL_PATTERNS:
        if token in lowered:
            return protocol
    return None


def parse_server_name(pod_name: str) -> str:
    """Derive the name of a Helm-managed server from its pod name.

    Helm pod names look like ``file-sim-file-simulator-nas-input-1-<hash>``.
    NAS servers are named ``nas-<role>-<index>`` or ``nas-backup``; any other
    server is named after the protocol token that appears as a complete
    dash-delimited segment of the pod name.

    Parameters
    ----------
    pod_name
        Name of the pod.

    Returns
    -------
    str
        Name of the server, or the pod name if no pattern matched.
    """
    parts = pod_name.split("-")
    for i, part in enumerate(parts[:-2]):
        if part != "nas":
            continue
        role = parts[i + 1]
        if role == "backup":
            return "nas-backup"
        if parts[i + 2].isdigit():
            return f"nas-{role}-{parts[i + 2]}"
    segments = {p.lower() for p in parts}
    for token, _ in PROTOCOL_PATTERNS:
        if token in segments:
            return token
    return pod_name


def infer_directory(
    name: str, protocol: ServerProtocol, pod: V1Pod
) -> str | None:
    """Determine the host directory served by a server.

    Parameters
    ----------
    name
        Name of the server.
    protocol
        Protocol of the server.
    pod
        Pod running the server.

    Returns
    -------
    str or None
        Windows path of the directory on the host, an opaque marker for
        servers with private storage, or `None` if unknown.
    """
    spec = pod.spec
    containers = spec.containers if spec else []
    init_containers = (spec.init_containers if spec else None) or []
    match protocol:
        case ServerProtocol.NFS:
            sub_path = _find_sub_path(init_containers, "windows-data")
            sub_path = sub_path or _find_sub_path(containers)
            if sub_path:
                return _to_windows_path(sub_path)
            for role in ("input", "output", "backup"):
                if role in name:
                    return _to_windows_path(role)
            return WINDOWS_DATA_ROOT
        case ServerProtocol.FTP | ServerProtocol.SFTP:
            sub_path = _find_sub_path(containers, "data")
            if sub_path:
                return _to_windows_path(sub_path)
            return WINDOWS_DATA_ROOT
        case ServerProtocol.S3:
            return "(internal S3 storage)"
        case ServerProtocol.HTTP | ServerProtocol.SMB:
            return WINDOWS_DATA_ROOT
        case ServerProtocol.MANAGEMENT:
            return WINDOWS_DATA_ROOT
        case ServerProtocol.WEBDAV:
            return None


def _find_sub_path(
    containers: Iterable[V1Container], volume: str | None = None
) -> str | None:
    """Find the first non-empty ``subPath`` among the volume mounts."""
    for container in containers:
        for mount in container.volume_mounts or []:
            if volume and mount.name != volume:
                continue
            if mount.sub_path:
                return mount.sub_path
    return None


def _selects(
    selector: Mapping[str, str] | None, labels: Mapping[str, str]
) -> bool:
    """Whether a non-empty selector is a subset of a set of labels."""
    if not selector:
        return False
    return all(labels.get(k) == v for k, v in selector.items())


def _to_windows_path(sub_path: str) -> str:
    return WINDOWS_DATA_ROOT + "\\" + sub_path.replace("/", "\\")


class DiscoveryService:
    """Find the protocol servers running in the file simulator namespace.

    Servers are reconstructed from scratch on every call by correlating
    pods, services, and deployments carrying the file simulator application
    label. Nothing is cached between calls.

    Parameters
    ----------
    namespace
        Namespace of the file simulator.
    server_storage
        Kubernetes storage layer for protocol servers.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        namespace: str,
        server_storage: ServerStorage,
        logger: BoundLogger,
    ) -> None:
        self._namespace = namespace
        self._storage = server_storage
        self._logger = logger

    async def discover_servers(self) -> list[DiscoveredServer]:
        """Discover all protocol servers.

        Any failure talking to Kubernetes, including connection errors below
        the API layer, is logged and results in an empty list rather than an
        exception.

        Returns
        -------
        list of DiscoveredServer
            Servers found, in pod list order.
        """
        try:
            return await self.list_servers()
        except Exception:
            msg = "Failed to discover servers from Kubernetes"
            self._logger.exception(msg)
            return []

    async def list_servers(self) -> list[DiscoveredServer]:
        """Discover all protocol servers, raising on failure.

        Callers that must distinguish an empty cluster from an unreachable
        one use this instead of `discover_servers`.

        Returns
        -------
        list of DiscoveredServer
            Servers found, in pod list order.

        Raises
        ------
        ControllerTimeoutError
            Raised if listing the cluster objects timed out.
        KubernetesError
            Raised if Kubernetes rejected one of the list requests.
        """
        timeout = Timeout("Discovering servers", KUBERNETES_REQUEST_TIMEOUT)
        async with timeout.enforce():
            objects = await self._storage.get_cluster_objects(
                self._namespace, timeout
            )
        self._logger.debug(
            "Listed file simulator objects",
            pods=len(objects.pods),
            services=len(objects.services),
            deployments=len(objects.deployments),
        )
        if not objects.pods:
            msg = "No file simulator pods found, check RBAC permissions"
            self._logger.warning(msg, namespace=self._namespace)
        servers = self._build_servers(objects)
        self._logger.debug("Discovered protocol servers", count=len(servers))
        return servers

    async def get_server(self, name: str) -> DiscoveredServer | None:
        """Find a single server by name, ignoring case.

        Parameters
        ----------
        name
            Name of the server.

        Returns
        -------
        DiscoveredServer or None
            The server, or `None` if no server by that name was discovered.
        """
        for server in await self.discover_servers():
            if server.name.lower() == name.lower():
                return server
        return None

    def _build_servers(
        self, objects: ClusterObjects
    ) -> list[DiscoveredServer]:
        """Correlate cluster objects into servers."""
        servers = []
        now = current_datetime()
        for pod in objects.pods:
            pod_name = pod.metadata.name
            if CONTROL_PLANE_POD_MARKER in pod_name:
                continue
            protocol = classify_protocol(pod_name)
            if not protocol:
                msg = "Skipping pod with unknown protocol"
                self._logger.debug(msg, pod=pod_name)
                continue
            labels = pod.metadata.labels or {}
            service = self._find_service(labels, objects.services)
            if not service:
                self._logger.warning("No service found for pod", pod=pod_name)
                continue

            managed_by = labels.get(MANAGED_BY_LABEL, DEFAULT_MANAGED_BY)
            is_dynamic = managed_by == DYNAMIC_MANAGED_BY
            if is_dynamic and INSTANCE_LABEL in labels:
                name = labels[INSTANCE_LABEL]
            else:
                name = parse_server_name(pod_name)
            deployment = self._find_deployment(labels, objects.deployments)
            ports = service.spec.ports or []
            servers.append(
                DiscoveredServer(
                    name=name,
                    pod_name=pod_name,
                    protocol=protocol,
                    service_name=service.metadata.name,
                    cluster_ip=service.spec.cluster_ip or "",
                    port=ports[0].port if ports else 0,
                    node_port=ports[0].node_port if ports else None,
                    pod_phase=PodPhase.from_pod(pod),
                    pod_ready=is_pod_ready(pod),
                    is_dynamic=is_dynamic,
                    managed_by=managed_by,
                    directory=infer_directory(name, protocol, pod),
                    credentials=extract_credentials(protocol, deployment),
                    discovered_at=now,
                )
            )
        return servers

    def _find_deployment(
        self, labels: dict[str, str], deployments: list[V1Deployment]
    ) -> V1Deployment | None:
        for deployment in deployments:
            selector = deployment.spec.selector if deployment.spec else None
            if selector and _selects(selector.match_labels, labels):
                return deployment
        return None

    def _find_service(
        self, labels: dict[str, str], services: list[V1Service]
    ) -> V1Service | None:
        for service in services:
            if service.spec and _selects(service.spec.selector, labels):
                return service
        return None
