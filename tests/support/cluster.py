"""Seed the mock Kubernetes cluster with a Helm-installed file simulator."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1Container,
    V1Deployment,
    V1DeploymentSpec,
    V1EnvVar,
    V1LabelSelector,
    V1ObjectMeta,
    V1Pod,
    V1PodCondition,
    V1PodSpec,
    V1PodStatus,
    V1PodTemplateSpec,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1VolumeMount,
)

from simcontroller.constants import (
    APP_LABEL,
    APP_NAME,
    COMPONENT_LABEL,
    INSTANCE_LABEL,
    MANAGED_BY_LABEL,
)

from .kubernetes import MockKubernetesApi

__all__ = [
    "CONTROL_PLANE_POD",
    "STATIC_SERVERS",
    "seed_control_plane",
    "seed_static_servers",
]

CONTROL_PLANE_POD = "file-sim-file-simulator-control-api-84f5d9-x7k2p"
"""Name of the control plane pod."""

STATIC_SERVERS = ("ftp", "sftp", "nas-input-1")
"""Names of the Helm-managed servers in the seeded cluster."""

_PREFIX = "file-sim-file-simulator"


def _build_static_server(
    name: str,
    container: V1Container,
    port: int,
    node_port: int,
    ip: str,
    *,
    ready: bool = True,
    init_containers: list[V1Container] | None = None,
) -> tuple[V1Deployment, V1Pod, V1Service]:
    labels = {
        APP_LABEL: APP_NAME,
        COMPONENT_LABEL: name,
        INSTANCE_LABEL: name,
        MANAGED_BY_LABEL: "Helm",
    }
    selector = {APP_LABEL: APP_NAME, INSTANCE_LABEL: name}
    pod_spec = V1PodSpec(
        containers=[container], init_containers=init_containers
    )
    deployment = V1Deployment(
        metadata=V1ObjectMeta(name=f"{_PREFIX}-{name}", labels=labels),
        spec=V1DeploymentSpec(
            replicas=1,
            selector=V1LabelSelector(match_labels=selector),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=labels), spec=pod_spec
            ),
        ),
    )
    condition = V1PodCondition(
        type="Ready", status="True" if ready else "False"
    )
    pod = V1Pod(
        metadata=V1ObjectMeta(
            name=f"{_PREFIX}-{name}-6c8d7f-q2w3e", labels=labels
        ),
        spec=pod_spec,
        status=V1PodStatus(
            phase="Running" if ready else "Pending", conditions=[condition]
        ),
    )
    service = V1Service(
        metadata=V1ObjectMeta(name=f"{_PREFIX}-{name}", labels=labels),
        spec=V1ServiceSpec(
            type="NodePort",
            cluster_ip=ip,
            selector=selector,
            ports=[
                V1ServicePort(port=port, target_port=port, node_port=node_port)
            ],
        ),
    )
    return deployment, pod, service


async def seed_control_plane(
    mock: MockKubernetesApi, namespace: str, *, phase: str = "Running"
) -> V1Pod:
    """Create the control plane pod.

    Parameters
    ----------
    mock
        Mock Kubernetes API.
    namespace
        Namespace of the file simulator.
    phase
        Phase of the pod.

    Returns
    -------
    kubernetes_asyncio.client.V1Pod
        Stored control plane pod.
    """
    pod = V1Pod(
        metadata=V1ObjectMeta(
            name=CONTROL_PLANE_POD,
            labels={APP_LABEL: APP_NAME, COMPONENT_LABEL: "control-api"},
        ),
        spec=V1PodSpec(containers=[V1Container(name="control-api")]),
        status=V1PodStatus(phase=phase),
    )
    return await mock.create_namespaced_pod(namespace, pod)


async def seed_static_servers(
    mock: MockKubernetesApi, namespace: str, *, nas_ready: bool = True
) -> None:
    """Create the Helm-managed FTP, SFTP, and NAS servers.

    Parameters
    ----------
    mock
        Mock Kubernetes API.
    namespace
        Namespace of the file simulator.
    nas_ready
        Whether the NAS server pod should be ready.
    """
    ftp = V1Container(
        name="vsftpd",
        env=[
            V1EnvVar(name="FTP_USER", value="ftpuser"),
            V1EnvVar(name="FTP_PASS", value="ftppass123"),
        ],
        volume_mounts=[
            V1VolumeMount(name="data", mount_path="/home/vsftpd")
        ],
    )
    sftp = V1Container(
        name="sftp",
        args=["sftpuser:sftppass123:1000:1000"],
        volume_mounts=[
            V1VolumeMount(
                name="data", mount_path="/home/sftpuser/data", sub_path="sftp"
            )
        ],
    )
    nas_sync = V1Container(
        name="sync-windows-data",
        volume_mounts=[
            V1VolumeMount(
                name="windows-data",
                mount_path="/windows-mount",
                sub_path="nas-input-1",
            )
        ],
    )
    nas = V1Container(
        name="nfs-server",
        env=[V1EnvVar(name="NFS_EXPORT_0", value="/data *(rw,sync,fsid=0)")],
    )
    servers = [
        _build_static_server("ftp", ftp, 21, 30021, "10.96.0.2"),
        _build_static_server("sftp", sftp, 22, 30022, "10.96.0.3"),
        _build_static_server(
            "nas-input-1",
            nas,
            2049,
            32150,
            "10.96.0.4",
            ready=nas_ready,
            init_containers=[nas_sync],
        ),
    ]
    simulate = mock.simulate_deployments
    mock.simulate_deployments = False
    try:
        for deployment, pod, service in servers:
            await mock.create_namespaced_deployment(namespace, deployment)
            await mock.create_namespaced_pod(namespace, pod)
            await mock.create_namespaced_service(namespace, service)
    finally:
        mock.simulate_deployments = simulate
