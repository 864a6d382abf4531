"""Construction of Kubernetes objects for dynamic protocol servers."""

from __future__ import annotations

import zlib

from kubernetes_asyncio.client import (
    V1Capabilities,
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1EmptyDirVolumeSource,
    V1EnvVar,
    V1LabelSelector,
    V1ObjectMeta,
    V1OwnerReference,
    V1PersistentVolumeClaimVolumeSource,
    V1Pod,
    V1PodSpec,
    V1PodTemplateSpec,
    V1ResourceRequirements,
    V1SecurityContext,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1Volume,
    V1VolumeMount,
)

from ...config import KubernetesConfig
from ...constants import (
    APP_LABEL,
    APP_NAME,
    COMPONENT_LABEL,
    DYNAMIC_MANAGED_BY,
    INSTANCE_LABEL,
    MANAGED_BY_LABEL,
    PART_OF_LABEL,
    PART_OF_VALUE,
    PASSIVE_PORT_BASE,
    PASSIVE_PORT_SLOT_SIZE,
    PASSIVE_PORT_SLOTS,
)
from ...models.domain.server import ServerObjects
from ...models.v1.server import (
    CreateFtpServerRequest,
    CreateNasServerRequest,
    CreateSftpServerRequest,
    ServerProtocol,
)

NAS_DIRECTORY_PRESETS = {
    "input": "nas-input-dynamic",
    "output": "nas-output-dynamic",
    "backup": "nas-backup-dynamic",
}
"""Shared volume directories used for the NAS directory presets."""

SERVER_COMPONENTS = {
    ServerProtocol.FTP: "ftp",
    ServerProtocol.SFTP: "sftp",
    ServerProtocol.NFS: "nas",
}
"""Component label and resource name segment for each creatable protocol."""

_NFS_SYNC_SCRIPT = """\
set -e
echo '=== NAS {name} init container: syncing Windows data ==='
apk add --no-cache rsync
mkdir -p /nfs-data
rsync -av /windows-mount/ /nfs-data/
ls -la /nfs-data | head -20
echo '=== Sync complete ==='"""

__all__ = [
    "NAS_DIRECTORY_PRESETS",
    "SERVER_COMPONENTS",
    "ServerBuilder",
]


class ServerBuilder:
    """Construct Kubernetes objects for dynamic protocol servers.

    Every server is a single-replica deployment plus a ``NodePort`` service.
    All objects are owned by the control plane pod so that Kubernetes garbage
    collects them if the control plane goes away.

    Parameters
    ----------
    config
        Kubernetes placement of the file simulator.
    """

    def __init__(self, config: KubernetesConfig) -> None:
        self._config = config

    def allocate_passive_ports(self, name: str) -> tuple[int, int]:
        """Choose the FTP passive port range for a server.

        The range is derived from a stable hash of the name, so a server gets
        the same range every time it is created.

        Parameters
        ----------
        name
            Name of the server.

        Returns
        -------
        tuple of int
            First and last passive port, inclusive.
        """
        slot = zlib.crc32(name.encode()) % PASSIVE_PORT_SLOTS
        start = PASSIVE_PORT_BASE + slot * PASSIVE_PORT_SLOT_SIZE
        return (start, start + PASSIVE_PORT_SLOT_SIZE - 1)

    def build_ftp(
        self, request: CreateFtpServerRequest, owner: V1Pod
    ) -> ServerObjects:
        """Construct the objects for an FTP server.

        Parameters
        ----------
        request
            Validated creation request.
        owner
            Control plane pod that will own the objects.

        Returns
        -------
        ServerObjects
            Deployment and service for the server.
        """
        if request.passive_port_start and request.passive_port_end:
            start = request.passive_port_start
            end = request.passive_port_end
        else:
            start, end = self.allocate_passive_ports(request.name)
        passive = range(start, end + 1)
        container = V1Container(
            name="vsftpd",
            image="fauria/vsftpd:latest",
            image_pull_policy="IfNotPresent",
            ports=[
                V1ContainerPort(container_port=21, protocol="TCP", name="ftp"),
                *(
                    V1ContainerPort(
                        container_port=p, protocol="TCP", name=f"passive-{p}"
                    )
                    for p in passive
                ),
            ],
            env=[
                V1EnvVar(name="FTP_USER", value=request.username),
                V1EnvVar(name="FTP_PASS", value=request.password),
                V1EnvVar(name="LOG_STDOUT", value="YES"),
                V1EnvVar(name="LOCAL_UMASK", value="022"),
                V1EnvVar(
                    name="PASV_ADDRESS", value=self._config.passive_address
                ),
                V1EnvVar(name="PASV_MIN_PORT", value=str(start)),
                V1EnvVar(name="PASV_MAX_PORT", value=str(end)),
            ],
            volume_mounts=[
                V1VolumeMount(
                    name="data",
                    mount_path=f"/home/vsftpd/{request.username}",
                    sub_path=request.directory or None,
                )
            ],
            security_context=V1SecurityContext(privileged=True),
            resources=self._build_resources("64Mi", "50m", "256Mi", "200m"),
        )
        ports = [
            V1ServicePort(
                name="ftp",
                port=21,
                target_port=21,
                protocol="TCP",
                node_port=request.node_port,
            ),
            *(
                V1ServicePort(
                    name=f"passive-{p}",
                    port=p,
                    target_port=p,
                    protocol="TCP",
                    node_port=p,
                )
                for p in passive
            ),
        ]
        return self._build_objects(
            ServerProtocol.FTP,
            request.name,
            owner,
            pod_spec=V1PodSpec(
                containers=[container], volumes=[self._build_data_volume()]
            ),
            ports=ports,
        )

    def build_nas(
        self, request: CreateNasServerRequest, owner: V1Pod
    ) -> ServerObjects:
        """Construct the objects for an NFS server.

        NFS cannot export the host-mounted shared volume directly, so an init
        container copies the requested directory into an ``emptyDir`` volume
        that the NFS server then exports.

        Parameters
        ----------
        request
            Validated creation request.
        owner
            Control plane pod that will own the objects.

        Returns
        -------
        ServerObjects
            Deployment and service for the server.
        """
        directory = self.resolve_nas_directory(request.directory)
        sync = V1Container(
            name="sync-windows-data",
            image="alpine:3.19",
            image_pull_policy="IfNotPresent",
            command=["sh", "-c"],
            args=[_NFS_SYNC_SCRIPT.format(name=request.name)],
            volume_mounts=[
                V1VolumeMount(
                    name="windows-data",
                    mount_path="/windows-mount",
                    sub_path=directory,
                    read_only=True,
                ),
                V1VolumeMount(name="nfs-export", mount_path="/nfs-data"),
            ],
            security_context=V1SecurityContext(
                run_as_non_root=False, allow_privilege_escalation=False
            ),
        )
        export = f"/data *({request.export_options},fsid=0)"
        server = V1Container(
            name="nfs-server",
            image="erichough/nfs-server:latest",
            image_pull_policy="IfNotPresent",
            ports=[
                V1ContainerPort(
                    container_port=2049, protocol="TCP", name="nfs"
                ),
                V1ContainerPort(
                    container_port=111, protocol="TCP", name="rpcbind"
                ),
            ],
            env=[
                V1EnvVar(name="NFS_EXPORT_0", value=export),
                V1EnvVar(name="NFS_DISABLE_VERSION_3", value="false"),
                V1EnvVar(name="NFS_LOG_LEVEL", value="DEBUG"),
            ],
            volume_mounts=[
                V1VolumeMount(name="nfs-export", mount_path="/data")
            ],
            security_context=V1SecurityContext(
                privileged=True,
                capabilities=V1Capabilities(
                    add=["SYS_ADMIN", "DAC_READ_SEARCH"]
                ),
            ),
            resources=self._build_resources("128Mi", "100m", "512Mi", "500m"),
        )
        volumes = [
            self._build_data_volume("windows-data"),
            V1Volume(
                name="nfs-export",
                empty_dir=V1EmptyDirVolumeSource(size_limit="500Mi"),
            ),
        ]
        port = V1ServicePort(
            name="nfs",
            port=2049,
            target_port=2049,
            protocol="TCP",
            node_port=request.node_port,
        )
        return self._build_objects(
            ServerProtocol.NFS,
            request.name,
            owner,
            pod_spec=V1PodSpec(
                init_containers=[sync], containers=[server], volumes=volumes
            ),
            ports=[port],
        )

    def build_resource_name(self, protocol: ServerProtocol, name: str) -> str:
        """Construct the name of the Kubernetes objects for a server.

        Parameters
        ----------
        protocol
            Protocol of the server. Must be a creatable protocol.
        name
            Name of the server.

        Returns
        -------
        str
            Name of the deployment and service.
        """
        component = SERVER_COMPONENTS[protocol]
        return f"{self._config.release_prefix}-{component}-{name}"

    def build_sftp(
        self, request: CreateSftpServerRequest, owner: V1Pod
    ) -> ServerObjects:
        """Construct the objects for an SFTP server.

        Parameters
        ----------
        request
            Validated creation request.
        owner
            Control plane pod that will own the objects.

        Returns
        -------
        ServerObjects
            Deployment and service for the server.
        """
        user = (
            f"{request.username}:{request.password}"
            f":{request.uid}:{request.gid}"
        )
        container = V1Container(
            name="sftp",
            image="atmoz/sftp:latest",
            image_pull_policy="IfNotPresent",
            ports=[
                V1ContainerPort(container_port=22, protocol="TCP", name="sftp")
            ],
            args=[user],
            volume_mounts=[
                V1VolumeMount(
                    name="data",
                    mount_path=f"/home/{request.username}/data",
                    sub_path=request.directory or None,
                )
            ],
            security_context=V1SecurityContext(
                capabilities=V1Capabilities(add=["SYS_CHROOT"])
            ),
            resources=self._build_resources("64Mi", "50m", "256Mi", "200m"),
        )
        port = V1ServicePort(
            name="sftp",
            port=22,
            target_port=22,
            protocol="TCP",
            node_port=request.node_port,
        )
        return self._build_objects(
            ServerProtocol.SFTP,
            request.name,
            owner,
            pod_spec=V1PodSpec(
                containers=[container], volumes=[self._build_data_volume()]
            ),
            ports=[port],
        )

    def resolve_nas_directory(self, directory: str) -> str:
        """Map a requested NAS directory to a shared volume directory.

        Parameters
        ----------
        directory
            Directory from the creation request.

        Returns
        -------
        str
            Preset directory for ``input``, ``output``, and ``backup``,
            otherwise the requested directory unchanged.
        """
        return NAS_DIRECTORY_PRESETS.get(directory, directory)

    def _build_data_volume(self, name: str = "data") -> V1Volume:
        """Construct the volume for the shared simulator data PVC."""
        claim = V1PersistentVolumeClaimVolumeSource(
            claim_name=self._config.pvc_name
        )
        return V1Volume(name=name, persistent_volume_claim=claim)

    def _build_metadata(
        self, protocol: ServerProtocol, name: str, owner: V1Pod
    ) -> V1ObjectMeta:
        """Construct the metadata for an object.

        This adds the standard labels identifying the server and an owner
        reference to the control plane pod.
        """
        labels = {
            APP_LABEL: APP_NAME,
            COMPONENT_LABEL: SERVER_COMPONENTS[protocol],
            MANAGED_BY_LABEL: DYNAMIC_MANAGED_BY,
            INSTANCE_LABEL: name,
            PART_OF_LABEL: PART_OF_VALUE,
        }
        owner_reference = V1OwnerReference(
            api_version="v1",
            kind="Pod",
            name=owner.metadata.name,
            uid=owner.metadata.uid,
            controller=True,
            block_owner_deletion=True,
        )
        return V1ObjectMeta(
            name=self.build_resource_name(protocol, name),
            namespace=self._config.namespace,
            labels=labels,
            owner_references=[owner_reference],
        )

    def _build_objects(
        self,
        protocol: ServerProtocol,
        name: str,
        owner: V1Pod,
        *,
        pod_spec: V1PodSpec,
        ports: list[V1ServicePort],
    ) -> ServerObjects:
        """Wrap a pod spec and service ports into a deployment and service."""
        metadata = self._build_metadata(protocol, name, owner)
        selector = {APP_LABEL: APP_NAME, INSTANCE_LABEL: name}
        deployment = V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=metadata,
            spec=V1DeploymentSpec(
                replicas=1,
                selector=V1LabelSelector(match_labels=selector),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=dict(metadata.labels)),
                    spec=pod_spec,
                ),
            ),
        )
        service = V1Service(
            api_version="v1",
            kind="Service",
            metadata=self._build_metadata(protocol, name, owner),
            spec=V1ServiceSpec(
                type="NodePort", selector=selector, ports=ports
            ),
        )
        return ServerObjects(deployment=deployment, service=service)

    def _build_resources(
        self,
        memory_request: str,
        cpu_request: str,
        memory_limit: str,
        cpu_limit: str,
    ) -> V1ResourceRequirements:
        """Construct container resource requests and limits."""
        return V1ResourceRequirements(
            requests={"memory": memory_request, "cpu": cpu_request},
            limits={"memory": memory_limit, "cpu": cpu_limit},
        )
