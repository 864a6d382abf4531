"""API-visible models for protocol servers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ...constants import DEFAULT_EXPORT_OPTIONS, SERVER_NAME_PATTERN
from ..domain.kubernetes import PodPhase

__all__ = [
    "CreateFtpServerRequest",
    "CreateNasServerRequest",
    "CreateServerRequest",
    "CreateSftpServerRequest",
    "DiscoveredServer",
    "NameAvailability",
    "ServerCredentials",
    "ServerProtocol",
]

_NODE_PORT_MIN = 30000
_NODE_PORT_MAX = 32767


class ServerProtocol(str, Enum):
    """File access protocol spoken by a server."""

    FTP = "FTP"
    SFTP = "SFTP"
    NFS = "NFS"
    HTTP = "HTTP"
    WEBDAV = "WebDAV"
    S3 = "S3"
    SMB = "SMB"
    MANAGEMENT = "Management"


class ServerCredentials(BaseModel):
    """Credentials for connecting to a protocol server."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str | None = Field(
        None, title="Username", examples=["ftpuser"]
    )

    password: str | None = Field(
        None, title="Password", examples=["ftppass123"]
    )

    note: str | None = Field(
        None,
        title="Note",
        description="Human-readable hint where no credentials apply",
        examples=["Anonymous access via NFS mount"],
    )


class DiscoveredServer(BaseModel):
    """A protocol server found in the cluster by a discovery pass."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(
        ...,
        title="Server name",
        description=(
            "Stable name of the server. For dynamic servers this is the"
            " instance label; for Helm-managed servers it is derived from the"
            " pod name."
        ),
        examples=["nas-input-1"],
    )

    pod_name: str = Field(..., title="Pod name")

    protocol: ServerProtocol = Field(
        ..., title="Protocol", examples=[ServerProtocol.FTP]
    )

    service_name: str = Field(..., title="Service name")

    cluster_ip: str = Field(..., title="Cluster IP", examples=["10.96.0.12"])

    port: int = Field(..., title="Service port", examples=[21])

    node_port: int | None = Field(
        None, title="Node port", examples=[30021]
    )

    pod_phase: PodPhase = Field(..., title="Pod phase")

    pod_ready: bool = Field(
        ..., title="Whether the pod reports its Ready condition"
    )

    is_dynamic: bool = Field(
        ..., title="Whether the server was created by this controller"
    )

    managed_by: str = Field(
        ...,
        title="Management origin",
        description="Value of the managed-by label, or Helm if unset",
        examples=["Helm", "control-api"],
    )

    directory: str | None = Field(
        None,
        title="Backing directory",
        description="Host directory served by this server, if known",
    )

    credentials: ServerCredentials | None = Field(None, title="Credentials")

    discovered_at: datetime = Field(..., title="Time of discovery")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cluster_address(self) -> str:
        """In-cluster address of the server."""
        return f"{self.cluster_ip}:{self.port}"


class NameAvailability(BaseModel):
    """Whether a name is free for a new dynamic server."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., title="Requested name")

    available: bool = Field(..., title="Whether the name is available")


class CreateServerRequest(BaseModel):
    """Fields common to every dynamic server creation request."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    name: Annotated[
        str,
        Field(
            title="Server name",
            description="Lowercase letters, digits, and dashes",
            min_length=3,
            max_length=32,
            pattern=SERVER_NAME_PATTERN,
            examples=["my-ftp"],
        ),
    ]

    node_port: Annotated[
        int | None,
        Field(
            title="Node port",
            description="Requested node port, or allocated by Kubernetes",
            ge=_NODE_PORT_MIN,
            le=_NODE_PORT_MAX,
        ),
    ] = None


class CreateFtpServerRequest(CreateServerRequest):
    """Request to create a dynamic FTP server."""

    username: Annotated[str, Field(min_length=3, max_length=32)]

    password: Annotated[str, Field(min_length=8)]

    directory: Annotated[
        str | None,
        Field(
            title="Data directory",
            description="Subdirectory of the shared volume to serve",
        ),
    ] = None

    passive_port_start: Annotated[
        int | None,
        Field(
            title="First passive port",
            description="Allocated automatically if not given",
            ge=_NODE_PORT_MIN,
            le=32700,
        ),
    ] = None

    passive_port_end: Annotated[
        int | None,
        Field(title="Last passive port", le=_NODE_PORT_MAX),
    ] = None

    @model_validator(mode="after")
    def _validate_passive_range(self) -> Self:
        start = self.passive_port_start
        end = self.passive_port_end
        if start is not None and end is not None and end <= start:
            raise ValueError("passivePortEnd must be greater than start")
        return self


class CreateSftpServerRequest(CreateServerRequest):
    """Request to create a dynamic SFTP server."""

    username: Annotated[str, Field(min_length=3, max_length=32)]

    password: Annotated[str, Field(min_length=8)]

    uid: Annotated[int, Field(ge=1, le=65534)] = 1000

    gid: Annotated[int, Field(ge=1, le=65534)] = 1000

    directory: Annotated[
        str | None,
        Field(
            title="Data directory",
            description="Subdirectory of the shared volume to serve",
        ),
    ] = None


class CreateNasServerRequest(CreateServerRequest):
    """Request to create a dynamic NFS server."""

    directory: Annotated[
        str,
        Field(
            title="Export directory",
            description=(
                "Relative subdirectory of the shared volume to export. The"
                " presets ``input``, ``output``, and ``backup`` select the"
                " standard dynamic NAS directories."
            ),
            min_length=1,
            max_length=256,
            examples=["input", "projects/alpha"],
        ),
    ]

    export_options: Annotated[
        str,
        Field(title="NFS export options", max_length=512),
    ] = DEFAULT_EXPORT_OPTIONS

    @field_validator("directory")
    @classmethod
    def _validate_directory(cls, v: str) -> str:
        if ".." in v:
            raise ValueError("directory must not contain '..'")
        if v.startswith("/"):
            raise ValueError("directory must be relative")
        return v
