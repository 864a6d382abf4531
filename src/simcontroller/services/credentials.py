"""Extraction of protocol credentials from server deployments."""

from __future__ import annotations

from kubernetes_asyncio.client import V1Container, V1Deployment

from ..models.v1.server import ServerCredentials, ServerProtocol

__all__ = [
    "extract_credentials",
    "get_env",
    "main_container",
]


def extract_credentials(
    protocol: ServerProtocol, deployment: V1Deployment | None
) -> ServerCredentials | None:
    """Determine the credentials of a server from its deployment.

    Only the first container of the pod template, the protocol server, is
    examined.

    Parameters
    ----------
    protocol
        Protocol of the server.
    deployment
        Deployment that owns the server pod, if one was found.

    Returns
    -------
    ServerCredentials or None
        Credentials or an explanatory note, or `None` if nothing could be
        determined.
    """
    container = main_container(deployment) if deployment else None
    if not container:
        return None
    match protocol:
        case ServerProtocol.FTP:
            return _from_env(
                container, "FTP_USER", "FTP_PASS", "FTP credentials"
            )
        case ServerProtocol.SFTP:
            return _from_sftp_args(container.args or [])
        case ServerProtocol.HTTP:
            note = "HTTP server (read-only, no authentication)"
            return ServerCredentials(note=note)
        case ServerProtocol.WEBDAV:
            credentials = _from_env(
                container, "USERNAME", "PASSWORD", "WebDAV credentials"
            )
            return credentials or ServerCredentials(
                note="WebDAV (no credentials found)"
            )
        case ServerProtocol.S3:
            return _from_env(
                container,
                "MINIO_ROOT_USER",
                "MINIO_ROOT_PASSWORD",
                "MinIO root credentials",
            )
        case ServerProtocol.SMB:
            return _from_smb_args(container.args or [])
        case ServerProtocol.MANAGEMENT:
            return ServerCredentials(
                username="admin",
                password="admin123",  # noqa: S106
                note="FileBrowser UI credentials (configured via database)",
            )
        case ServerProtocol.NFS:
            return ServerCredentials(
                note="NFS uses anonymous access (no authentication required)"
            )


def get_env(container: V1Container, name: str) -> str | None:
    """Return the literal value of an environment variable of a container.

    Parameters
    ----------
    container
        Container to inspect.
    name
        Name of the environment variable.

    Returns
    -------
    str or None
        Value of the variable, or `None` if it is unset or not a literal.
    """
    for env in container.env or []:
        if env.name == name:
            return env.value
    return None


def main_container(deployment: V1Deployment) -> V1Container | None:
    """Return the protocol server container of a deployment, if any."""
    spec = deployment.spec
    if not spec or not spec.template or not spec.template.spec:
        return None
    containers = spec.template.spec.containers
    return containers[0] if containers else None


def _from_env(
    container: V1Container, user_var: str, password_var: str, source: str
) -> ServerCredentials | None:
    username = get_env(container, user_var)
    if not username:
        return None
    return ServerCredentials(
        username=username,
        password=get_env(container, password_var) or "",
        note=f"{source} from deployment environment",
    )


def _from_sftp_args(args: list[str]) -> ServerCredentials | None:
    # Each user is an argument of the form user:pass[:uid[:gid]].
    for arg in args:
        parts = arg.split(":")
        if len(parts) >= 2:
            return ServerCredentials(
                username=parts[0],
                password=parts[1],
                note="SFTP credentials from container args",
            )
    return None


def _from_smb_args(args: list[str]) -> ServerCredentials | None:
    # Users are given as -u "user;pass".
    for flag, value in zip(args, args[1:], strict=False):
        if flag != "-u":
            continue
        parts = value.split(";")
        if len(parts) >= 2:
            return ServerCredentials(
                username=parts[0],
                password=parts[1],
                note="SMB credentials from container args",
            )
    return None
