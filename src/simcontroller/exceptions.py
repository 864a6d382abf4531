"""Exceptions for the file simulator controller."""

from __future__ import annotations

from datetime import datetime
from typing import Self, override

from fastapi import status
from kubernetes_asyncio.client import ApiException
from safir.datetime import format_datetime_for_logging
from safir.fastapi import ClientRequestError
from safir.models import ErrorLocation
from safir.slack.blockkit import (
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)
from safir.slack.sentry import SentryEventInfo

__all__ = [
    "ControlPlaneNotFoundError",
    "ControllerTimeoutError",
    "InvalidImportError",
    "KubernetesError",
    "ServerNameConflictError",
    "ServerNotFoundError",
    "ServerNotRunningError",
    "StatusNotAvailableError",
]


class ControlPlaneNotFoundError(ClientRequestError):
    """The running control plane pod could not be found.

    Dynamic servers are owned by the control plane pod so that they are
    garbage-collected with it. Without that pod, no server can be created.
    """

    error = "control_plane_not_found"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self) -> None:
        super().__init__("Control plane pod not found or not running")


class InvalidImportError(ClientRequestError):
    """An imported server definition cannot be turned into a server."""

    error = "invalid_import"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ServerNameConflictError(ClientRequestError):
    """A dynamic server with the requested name already exists."""

    error = "server_exists"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, name: str) -> None:
        msg = f"Server '{name}' already exists"
        super().__init__(msg, ErrorLocation.body, ["name"])


class ServerNotFoundError(ClientRequestError):
    """The named dynamic server does not exist."""

    error = "server_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorLocation.path, ["name"])


class ServerNotRunningError(ClientRequestError):
    """The named server has no pods to act on."""

    error = "server_not_running"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, name: str) -> None:
        msg = f"No running pods found for server '{name}'"
        super().__init__(msg, ErrorLocation.path, ["name"])


class StatusNotAvailableError(ClientRequestError):
    """No status broadcast cycle has completed yet."""

    error = "status_not_available"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self) -> None:
        super().__init__("Status not yet available")


class ControllerTimeoutError(SlackException):
    """A sequence of Kubernetes calls exceeded its overall time limit.

    Parameters
    ----------
    operation
        Human-readable name of the operation that timed out.
    server
        Simulator server the operation was acting on, if any.
    started_at
        When the operation began.
    failed_at
        When the time limit was noticed to have expired.
    """

    def __init__(
        self,
        operation: str,
        server: str | None = None,
        *,
        started_at: datetime,
        failed_at: datetime,
    ) -> None:
        self.operation = operation
        self.server = server
        self.started_at = started_at
        self.elapsed = failed_at - started_at
        seconds = round(self.elapsed.total_seconds(), 1)
        target = f" for server {server}" if server else ""
        msg = f"{operation}{target} timed out after {seconds}s"
        super().__init__(msg, failed_at=failed_at)

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        started = format_datetime_for_logging(self.started_at)
        message.fields.append(SlackTextField(heading="Started", text=started))
        if self.server:
            field = SlackTextField(heading="Server", text=self.server)
            message.fields.append(field)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        info.tags["operation"] = self.operation
        if self.server:
            info.tags["server"] = self.server
        info.contexts["timeout"] = {
            "started_at": format_datetime_for_logging(self.started_at),
            "elapsed": str(self.elapsed.total_seconds()),
        }
        return info


class KubernetesError(SlackException):
    """The Kubernetes API server rejected or failed a request.

    Parameters
    ----------
    message
        What the controller was trying to do.
    kind
        Kind of the object or objects involved.
    namespace
        Namespace of the request.
    name
        Name of the object, for requests about a single object.
    status
        HTTP status returned by the API server, if any.
    body
        Response body or reason returned by the API server, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Wrap an exception raised by ``kubernetes_asyncio``.

        The status code and the response body (or the reason phrase if the
        body is empty) are copied from the underlying exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body or exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @property
    def headline(self) -> str:
        """One-line description without the response body."""
        context = [s for s in (self.target, self._status_text) if s]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"

    @property
    def target(self) -> str | None:
        """Object or collection the failed request was about."""
        prefix = f"{self.kind} " if self.kind else ""
        if self.name:
            return f"{prefix}{self.namespace}/{self.name}"
        if self.kind and self.namespace:
            return f"{prefix}in {self.namespace}"
        return self.kind

    @property
    def _status_text(self) -> str | None:
        return f"status {self.status}" if self.status else None

    @override
    def __str__(self) -> str:
        if self.body:
            return f"{self.headline}: {self.body}"
        return self.headline

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        message.message = self.headline
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.target:
            block = SlackTextBlock(heading="Object", text=self.target)
            message.blocks.append(block)
        if self.body:
            message.blocks.append(
                SlackCodeBlock(heading="Response", code=self.body)
            )
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        tags = {
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "status": str(self.status) if self.status else None,
        }
        info.tags.update({k: v for k, v in tags.items() if v})
        if self.body:
            info.attachments["response"] = self.body
        return info
