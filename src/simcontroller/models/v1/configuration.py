"""API-visible models for configuration export and import."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from ...constants import (
    DEFAULT_EXPORT_OPTIONS,
    DYNAMIC_MANAGED_BY,
    EXPORT_FORMAT_VERSION,
)
from .server import ServerProtocol

__all__ = [
    "ConfigurationDocument",
    "ConflictStrategy",
    "ExportMetadata",
    "FtpConfiguration",
    "ImportRequest",
    "ImportResult",
    "NasConfiguration",
    "ServerConfiguration",
    "SftpConfiguration",
]


class ConflictStrategy(Enum):
    """How to handle an imported server whose name is already in use."""

    SKIP = "skip"
    REPLACE = "replace"
    RENAME = "rename"


class FtpConfiguration(BaseModel):
    """FTP-specific server settings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str = Field(..., title="Username")

    password: str = Field(..., title="Password")

    passive_port_start: int | None = Field(None, title="First passive port")

    passive_port_end: int | None = Field(None, title="Last passive port")


class SftpConfiguration(BaseModel):
    """SFTP-specific server settings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str = Field(..., title="Username")

    password: str = Field(..., title="Password")

    uid: int = Field(1000, title="User ID")

    gid: int = Field(1000, title="Group ID")


class NasConfiguration(BaseModel):
    """NFS-specific server settings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    directory: str = Field(..., title="Export directory")

    export_options: str = Field(
        DEFAULT_EXPORT_OPTIONS, title="NFS export options"
    )


class ServerConfiguration(BaseModel):
    """Exported definition of a single server."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., title="Server name")

    protocol: ServerProtocol = Field(..., title="Protocol")

    node_port: int | None = Field(None, title="Node port")

    is_dynamic: bool = Field(
        ...,
        title="Whether the server was created by this controller",
        description="Only dynamic servers are recreated on import",
    )

    ftp: FtpConfiguration | None = Field(None, title="FTP settings")

    sftp: SftpConfiguration | None = Field(None, title="SFTP settings")

    nas: NasConfiguration | None = Field(None, title="NFS settings")


class ExportMetadata(BaseModel):
    """Descriptive metadata attached to an export."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    description: str | None = Field(None, title="Description")

    exported_by: str = Field(DYNAMIC_MANAGED_BY, title="Exporting tool")

    environment: str = Field("development", title="Source environment")


class ConfigurationDocument(BaseModel):
    """Portable description of the servers in a file simulator."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: str = Field(EXPORT_FORMAT_VERSION, title="Format version")

    exported_at: datetime = Field(..., title="Time of export")

    namespace: str = Field(..., title="Source namespace")

    release_prefix: str = Field(..., title="Source Helm release prefix")

    servers: list[ServerConfiguration] = Field(..., title="Servers")

    metadata: ExportMetadata | None = Field(None, title="Metadata")


class ImportRequest(BaseModel):
    """Request to import a configuration document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    configuration: ConfigurationDocument = Field(
        ..., title="Document to import"
    )

    strategy: ConflictStrategy = Field(
        ConflictStrategy.SKIP, title="Name conflict strategy"
    )


class ImportResult(BaseModel):
    """Outcome, or planned outcome, of an import."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    created: list[str] = Field(
        default_factory=list, title="Names of servers created"
    )

    skipped: list[str] = Field(
        default_factory=list,
        title="Servers skipped",
        description="Each entry is the name followed by the reason",
        examples=[["nas-input-1 (static/helm-managed)", "my-ftp (conflict)"]],
    )

    failed: dict[str, str] = Field(
        default_factory=dict, title="Error message for each failed server"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_processed(self) -> int:
        """Number of server entries processed."""
        return len(self.created) + len(self.skipped) + len(self.failed)
