"""Tests for server request and response models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from safir.datetime import current_datetime

from simcontroller.models.domain.kubernetes import PodPhase
from simcontroller.models.v1.configuration import ImportResult
from simcontroller.models.v1.server import (
    CreateFtpServerRequest,
    CreateNasServerRequest,
    DiscoveredServer,
    ServerProtocol,
)


def test_nas_directory() -> None:
    request = CreateNasServerRequest(name="my-nas", directory="a/b-c")
    assert request.directory == "a/b-c"
    assert request.export_options == "rw,sync,no_subtree_check,no_root_squash"

    for directory in ("../escape", "a/../../b", "/absolute", ""):
        with pytest.raises(ValidationError):
            CreateNasServerRequest(name="my-nas", directory=directory)


def test_ftp_passive_range() -> None:
    request = CreateFtpServerRequest.model_validate(
        {
            "name": "my-ftp",
            "username": "tester",
            "password": "password123",
            "passivePortStart": 31000,
            "passivePortEnd": 31010,
        }
    )
    assert request.passive_port_start == 31000
    assert request.passive_port_end == 31010

    with pytest.raises(ValidationError, match="passivePortEnd"):
        CreateFtpServerRequest(
            name="my-ftp",
            username="tester",
            password="password123",
            passive_port_start=31010,
            passive_port_end=31010,
        )
    with pytest.raises(ValidationError):
        CreateFtpServerRequest(
            name="my-ftp",
            username="tester",
            password="password123",
            passive_port_start=32710,
        )


@pytest.mark.parametrize(
    "name", ["ab", "My-Server", "my_server", "a" * 33, "my server"]
)
def test_invalid_name(name: str) -> None:
    with pytest.raises(ValidationError):
        CreateNasServerRequest(name=name, directory="input")


def test_discovered_server_serialization() -> None:
    server = DiscoveredServer(
        name="nas-input-1",
        pod_name="file-sim-file-simulator-nas-input-1-abc12",
        protocol=ServerProtocol.NFS,
        service_name="file-sim-file-simulator-nas-input-1",
        cluster_ip="10.96.0.4",
        port=2049,
        node_port=32150,
        pod_phase=PodPhase.RUNNING,
        pod_ready=True,
        is_dynamic=False,
        managed_by="Helm",
        discovered_at=current_datetime(),
    )
    data = server.model_dump(mode="json", by_alias=True)
    assert data["clusterAddress"] == "10.96.0.4:2049"
    assert data["protocol"] == "NFS"
    assert data["podPhase"] == "Running"
    assert data["nodePort"] == 32150


def test_import_result_total() -> None:
    result = ImportResult(
        created=["a", "b"], skipped=["c (conflict)"], failed={"d": "error"}
    )
    assert result.total_processed == 4
    assert ImportResult().total_processed == 0
