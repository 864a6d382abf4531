"""Tests for the service-discovery ConfigMap."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest
from aiohttp import ClientConnectionError
from kubernetes_asyncio.client import ApiException, V1ConfigMap, V1ObjectMeta

from simcontroller.config import Config
from simcontroller.factory import Factory
from simcontroller.services.endpoints import build_endpoints

from ..support.kubernetes import MockKubernetesApi

_CONFIG_MAP = "file-sim-file-simulator-endpoints"


@pytest.mark.asyncio
async def test_reconcile(
    config: Config, factory: Factory, cluster: MockKubernetesApi
) -> None:
    namespace = config.kubernetes.namespace
    reconciler = factory.create_endpoints_reconciler()
    await reconciler.reconcile()

    config_map = await cluster.read_namespaced_config_map(
        _CONFIG_MAP, namespace
    )
    labels = config_map.metadata.labels
    assert labels["app.kubernetes.io/component"] == "service-discovery"
    assert labels["app.kubernetes.io/managed-by"] == "control-api"
    data = config_map.data
    updated_at = data.pop("UPDATED_AT")
    assert datetime.fromisoformat(updated_at)
    suffix = f"{namespace}.svc.cluster.local"
    assert data == {
        "FTP_FTP": f"file-sim-file-simulator-ftp.{suffix}:21",
        "FTP_FTP_NODEPORT": "30021",
        "SFTP_SFTP": f"file-sim-file-simulator-sftp.{suffix}:22",
        "SFTP_SFTP_NODEPORT": "30022",
        "NFS_NAS_INPUT_1": (
            f"file-sim-file-simulator-nas-input-1.{suffix}:2049"
        ),
        "NFS_NAS_INPUT_1_NODEPORT": "32150",
        "SERVER_COUNT": "3",
    }

    # Reconciling again replaces the whole ConfigMap.
    await reconciler.reconcile()
    config_maps = cluster.get_all_objects_for_test(namespace, "ConfigMap")
    assert len(config_maps) == 1


@pytest.mark.asyncio
async def test_reconcile_replaces_stale(
    config: Config, factory: Factory, cluster: MockKubernetesApi
) -> None:
    namespace = config.kubernetes.namespace
    stale = V1ConfigMap(
        metadata=V1ObjectMeta(name=_CONFIG_MAP),
        data={"FTP_OLD_SERVER": "old.example.com:21"},
    )
    await cluster.create_namespaced_config_map(namespace, stale)

    reconciler = factory.create_endpoints_reconciler()
    await reconciler.reconcile()
    config_map = await cluster.read_namespaced_config_map(
        _CONFIG_MAP, namespace
    )
    assert "FTP_OLD_SERVER" not in config_map.data
    assert "FTP_FTP" in config_map.data


@pytest.mark.asyncio
async def test_reconcile_keeps_metadata(
    config: Config, factory: Factory, cluster: MockKubernetesApi
) -> None:
    namespace = config.kubernetes.namespace
    existing = V1ConfigMap(
        metadata=V1ObjectMeta(
            name=_CONFIG_MAP,
            labels={"example.com/team": "qa"},
            annotations={"example.com/owner": "qa@example.com"},
        ),
        data={"FTP_OLD_SERVER": "old.example.com:21"},
    )
    await cluster.create_namespaced_config_map(namespace, existing)

    reconciler = factory.create_endpoints_reconciler()
    await reconciler.reconcile()
    config_map = await cluster.read_namespaced_config_map(
        _CONFIG_MAP, namespace
    )
    assert config_map.metadata.labels == {"example.com/team": "qa"}
    assert config_map.metadata.annotations == {
        "example.com/owner": "qa@example.com"
    }
    assert "FTP_OLD_SERVER" not in config_map.data
    assert config_map.data["SERVER_COUNT"] == "3"


@pytest.mark.asyncio
async def test_reconcile_error(
    config: Config, factory: Factory, cluster: MockKubernetesApi
) -> None:
    def callback(method: str, *args: Any) -> None:
        if method == "create_namespaced_config_map":
            raise ApiException(status=403, reason="Forbidden")

    cluster.error_callback = callback
    reconciler = factory.create_endpoints_reconciler()

    # Errors are logged but not raised.
    await reconciler.reconcile()
    namespace = config.kubernetes.namespace
    assert cluster.get_all_objects_for_test(namespace, "ConfigMap") == []


@pytest.mark.asyncio
async def test_build_endpoints(
    factory: Factory, cluster: MockKubernetesApi
) -> None:
    discovery = factory.create_discovery_service()
    servers = await discovery.discover_servers()
    nas = servers[2]
    servers[2] = nas.model_copy(update={"pod_ready": False, "node_port": None})
    servers[0] = servers[0].model_copy(update={"node_port": None})

    endpoints = build_endpoints(servers, "other")
    assert endpoints == {
        "FTP_FTP": "file-sim-file-simulator-ftp.other.svc.cluster.local:21",
        "SFTP_SFTP": "file-sim-file-simulator-sftp.other.svc.cluster.local:22",
        "SFTP_SFTP_NODEPORT": "30022",
    }


@pytest.mark.asyncio
async def test_reconcile_discovery_failure(
    config: Config, factory: Factory, cluster: MockKubernetesApi
) -> None:
    namespace = config.kubernetes.namespace
    reconciler = factory.create_endpoints_reconciler()
    await reconciler.reconcile()
    config_map = await cluster.read_namespaced_config_map(
        _CONFIG_MAP, namespace
    )
    expected = config_map.data
    assert "FTP_FTP" in expected

    # A failed discovery leaves the previous contents alone rather than
    # publishing an empty set of servers.
    def callback(method: str, *args: Any) -> None:
        if method == "list_namespaced_pod":
            raise ApiException(status=503, reason="Service Unavailable")

    cluster.error_callback = callback
    await reconciler.reconcile()
    config_map = await cluster.read_namespaced_config_map(
        _CONFIG_MAP, namespace
    )
    assert config_map.data == expected

    # The same holds for connection errors below the Kubernetes API layer.
    def connection_callback(method: str, *args: Any) -> None:
        if method == "list_namespaced_pod":
            raise ClientConnectionError("Connection reset by peer")

    cluster.error_callback = connection_callback
    await reconciler.reconcile()
    config_map = await cluster.read_namespaced_config_map(
        _CONFIG_MAP, namespace
    )
    assert config_map.data == expected


@pytest.mark.asyncio
async def test_reconcile_write_connection_error(
    config: Config, factory: Factory, cluster: MockKubernetesApi
) -> None:
    def callback(method: str, *args: Any) -> None:
        if method == "create_namespaced_config_map":
            raise ClientConnectionError("Connection reset by peer")

    cluster.error_callback = callback
    reconciler = factory.create_endpoints_reconciler()
    await reconciler.reconcile()
    namespace = config.kubernetes.namespace
    assert cluster.get_all_objects_for_test(namespace, "ConfigMap") == []
