"""Export and import of server configurations."""

from __future__ import annotations

import re

from kubernetes_asyncio.client import V1Deployment
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..config import KubernetesConfig
from ..constants import DEFAULT_EXPORT_OPTIONS, KUBERNETES_REQUEST_TIMEOUT
from ..exceptions import (
    ControllerTimeoutError,
    InvalidImportError,
    KubernetesError,
)
from ..models.v1.configuration import (
    ConfigurationDocument,
    ConflictStrategy,
    ExportMetadata,
    FtpConfiguration,
    ImportResult,
    NasConfiguration,
    ServerConfiguration,
    SftpConfiguration,
)
from ..models.v1.server import (
    CreateFtpServerRequest,
    CreateNasServerRequest,
    CreateSftpServerRequest,
    DiscoveredServer,
    ServerProtocol,
)
from ..storage.kubernetes.server import ServerStorage
from ..timeout import Timeout
from .builder.server import SERVER_COMPONENTS, ServerBuilder
from .credentials import get_env, main_container
from .discovery import DiscoveryService
from .lifecycle import LifecycleManager

_EXPORT_OPTIONS_REGEX = re.compile(r"\*\(([^)]+)\)")
"""Extracts the options from an NFS export line."""

_HELM_MANAGED = "[helm-managed]"
"""Placeholder for settings of servers managed by Helm."""

__all__ = ["ConfigurationService"]


class ConfigurationService:
    """Export and import the servers of a file simulator.

    Every discovered server is exported, but only dynamic servers are
    recreated on import. Helm-managed servers are included in exports so
    that the document describes the whole environment.

    Parameters
    ----------
    config
        Kubernetes placement of the file simulator.
    discovery
        Server discovery service.
    lifecycle
        Dynamic server lifecycle manager, used to create servers on import.
    server_builder
        Builder used to determine the resource names of dynamic servers.
    server_storage
        Kubernetes storage layer for protocol servers.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: KubernetesConfig,
        discovery: DiscoveryService,
        lifecycle: LifecycleManager,
        server_builder: ServerBuilder,
        server_storage: ServerStorage,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._discovery = discovery
        self._lifecycle = lifecycle
        self._builder = server_builder
        self._storage = server_storage
        self._logger = logger

    async def export_configuration(
        self, description: str | None = None
    ) -> ConfigurationDocument:
        """Export the configuration of every discovered server.

        Parameters
        ----------
        description
            Optional free-form description to store in the metadata.

        Returns
        -------
        ConfigurationDocument
            Exported configuration.
        """
        self._logger.info("Exporting configuration")
        servers = await self._discovery.discover_servers()
        configurations = []
        for server in servers:
            base = ServerConfiguration(
                name=server.name,
                protocol=server.protocol,
                node_port=server.node_port,
                is_dynamic=server.is_dynamic,
            )
            if server.is_dynamic:
                configuration = await self._enrich(server, base)
            else:
                configuration = self._add_placeholders(base)
            configurations.append(configuration)
        self._logger.info(
            "Exported server configurations", count=len(configurations)
        )
        return ConfigurationDocument(
            exported_at=current_datetime(),
            namespace=self._config.namespace,
            release_prefix=self._config.release_prefix,
            servers=configurations,
            metadata=ExportMetadata(description=description),
        )

    async def import_configuration(
        self,
        document: ConfigurationDocument,
        strategy: ConflictStrategy = ConflictStrategy.SKIP,
    ) -> ImportResult:
        """Create the dynamic servers described by a document.

        Failures are recorded per server and do not stop the import.

        Parameters
        ----------
        document
            Configuration to import.
        strategy
            How to handle servers whose names are already in use.

        Returns
        -------
        ImportResult
            Outcome for each server in the document.
        """
        logger = self._logger.bind(strategy=strategy.value)
        logger.info("Importing configuration")
        result = ImportResult()
        servers = await self._discovery.discover_servers()
        existing = {s.name for s in servers}
        for configuration in document.servers:
            name = configuration.name
            if not configuration.is_dynamic:
                result.skipped.append(f"{name} (static/helm-managed)")
                continue
            if name in existing:
                match strategy:
                    case ConflictStrategy.SKIP:
                        result.skipped.append(f"{name} (conflict)")
                        continue
                    case ConflictStrategy.REPLACE:
                        try:
                            await self._lifecycle.delete_server(name)
                        except Exception as e:
                            logger.exception(
                                "Failed to delete server for replacement",
                                name=name,
                            )
                            msg = f"Failed to delete for replacement: {e!s}"
                            result.failed[name] = msg
                            continue
                        msg = "Deleted server for replacement"
                        logger.info(msg, name=name)
                    case ConflictStrategy.RENAME:
                        name = self._find_free_name(name, existing)
                        logger.info(
                            "Renamed server to avoid conflict",
                            original=configuration.name,
                            name=name,
                        )
            try:
                await self._create(configuration, name)
            except Exception as e:
                logger.exception("Failed to import server", name=name)
                result.failed[name] = str(e)
            else:
                result.created.append(name)
                existing.add(name)
        logger.info(
            "Import complete",
            created=len(result.created),
            skipped=len(result.skipped),
            failed=len(result.failed),
        )
        return result

    async def validate_import(
        self, document: ConfigurationDocument
    ) -> ImportResult:
        """Report what an import would do without changing anything.

        Parameters
        ----------
        document
            Configuration to check.

        Returns
        -------
        ImportResult
            Servers that would be created, and servers that would be skipped
            because they are static or their names are in use.
        """
        result = ImportResult()
        servers = await self._discovery.discover_servers()
        existing = {s.name for s in servers}
        for configuration in document.servers:
            name = configuration.name
            if not configuration.is_dynamic:
                result.skipped.append(f"{name} (static/helm-managed)")
            elif name in existing:
                result.skipped.append(f"{name} (conflict)")
            else:
                result.created.append(name)
        return result

    def _add_placeholders(
        self, configuration: ServerConfiguration
    ) -> ServerConfiguration:
        """Add placeholder settings for a Helm-managed server."""
        match configuration.protocol:
            case ServerProtocol.FTP:
                ftp = FtpConfiguration(
                    username="simuser", password=_HELM_MANAGED
                )
                return configuration.model_copy(update={"ftp": ftp})
            case ServerProtocol.SFTP:
                sftp = SftpConfiguration(
                    username="simuser", password=_HELM_MANAGED
                )
                return configuration.model_copy(update={"sftp": sftp})
            case ServerProtocol.NFS:
                nas = NasConfiguration(directory=_HELM_MANAGED)
                return configuration.model_copy(update={"nas": nas})
            case _:
                return configuration

    async def _create(
        self, configuration: ServerConfiguration, name: str
    ) -> None:
        """Create a dynamic server from its exported configuration.

        Raises
        ------
        InvalidImportError
            Raised if the configuration lacks settings for its protocol or
            the protocol cannot be created dynamically.
        pydantic.ValidationError
            Raised if the settings are not a valid creation request.
        """
        node_port = configuration.node_port
        match configuration.protocol:
            case ServerProtocol.FTP if configuration.ftp:
                ftp = configuration.ftp
                ftp_request = CreateFtpServerRequest(
                    name=name,
                    node_port=node_port,
                    username=ftp.username,
                    password=ftp.password,
                    passive_port_start=ftp.passive_port_start,
                    passive_port_end=ftp.passive_port_end,
                )
                await self._lifecycle.create_ftp_server(ftp_request)
            case ServerProtocol.SFTP if configuration.sftp:
                sftp = configuration.sftp
                sftp_request = CreateSftpServerRequest(
                    name=name,
                    node_port=node_port,
                    username=sftp.username,
                    password=sftp.password,
                    uid=sftp.uid,
                    gid=sftp.gid,
                )
                await self._lifecycle.create_sftp_server(sftp_request)
            case ServerProtocol.NFS if configuration.nas:
                nas = configuration.nas
                nas_request = CreateNasServerRequest(
                    name=name,
                    node_port=node_port,
                    directory=nas.directory,
                    export_options=nas.export_options,
                )
                await self._lifecycle.create_nas_server(nas_request)
            case _:
                protocol = configuration.protocol.value
                msg = (
                    f"Cannot import {protocol} server: missing configuration"
                    " or unsupported protocol"
                )
                raise InvalidImportError(msg)

    async def _enrich(
        self, server: DiscoveredServer, configuration: ServerConfiguration
    ) -> ServerConfiguration:
        """Add the settings of a dynamic server read from its deployment.

        Failures are logged and the configuration is returned unchanged.
        """
        if server.protocol not in SERVER_COMPONENTS:
            return configuration
        name = self._builder.build_resource_name(server.protocol, server.name)
        timeout = Timeout(
            "Reading server deployment", KUBERNETES_REQUEST_TIMEOUT, name
        )
        try:
            async with timeout.enforce():
                deployment = await self._storage.read_deployment(
                    name, self._config.namespace, timeout
                )
        except (ControllerTimeoutError, KubernetesError):
            msg = "Could not read settings of dynamic server"
            self._logger.exception(msg, server=server.name)
            return configuration
        if not deployment:
            return configuration
        container = main_container(deployment)
        if not container:
            return configuration
        match server.protocol:
            case ServerProtocol.FTP:
                start = get_env(container, "PASV_MIN_PORT")
                end = get_env(container, "PASV_MAX_PORT")
                ftp = FtpConfiguration(
                    username=get_env(container, "FTP_USER") or "",
                    password=get_env(container, "FTP_PASS") or "",
                    passive_port_start=_parse_int(start),
                    passive_port_end=_parse_int(end),
                )
                return configuration.model_copy(update={"ftp": ftp})
            case ServerProtocol.SFTP:
                args = container.args or [""]
                parts = args[0].split(":")
                sftp = SftpConfiguration(
                    username=parts[0],
                    password=parts[1] if len(parts) > 1 else "",
                    uid=_parse_int(_get(parts, 2)) or 1000,
                    gid=_parse_int(_get(parts, 3)) or 1000,
                )
                return configuration.model_copy(update={"sftp": sftp})
            case ServerProtocol.NFS:
                export = get_env(container, "NFS_EXPORT_0") or ""
                nas = NasConfiguration(
                    directory=_nas_directory(deployment),
                    export_options=_parse_export_options(export),
                )
                return configuration.model_copy(update={"nas": nas})
            case _:
                return configuration

    def _find_free_name(self, name: str, existing: set[str]) -> str:
        """Find the first ``name-N`` that is not in use."""
        suffix = 1
        while f"{name}-{suffix}" in existing:
            suffix += 1
        return f"{name}-{suffix}"


def _get(parts: list[str], index: int) -> str | None:
    return parts[index] if len(parts) > index else None


def _nas_directory(deployment: V1Deployment) -> str:
    """Find the shared volume directory synced by a NAS server."""
    spec = deployment.spec.template.spec
    for container in spec.init_containers or []:
        if container.name != "sync-windows-data":
            continue
        for mount in container.volume_mounts or []:
            if mount.name == "windows-data" and mount.sub_path:
                return mount.sub_path
    main = main_container(deployment)
    mounts = (main.volume_mounts if main else None) or []
    return (mounts[0].sub_path if mounts else None) or ""


def _parse_export_options(export: str) -> str:
    # Exports look like "/data *(rw,sync,fsid=0)".
    match = _EXPORT_OPTIONS_REGEX.search(export)
    if not match:
        return DEFAULT_EXPORT_OPTIONS
    return match.group(1).replace(",fsid=0", "")


def _parse_int(value: str | None) -> int | None:
    if value is None or not value.isdigit():
        return None
    return int(value)
