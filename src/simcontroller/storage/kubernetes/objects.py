"""Storage layer for the Kubernetes object kinds the controller touches.

All four kinds share one generic implementation that locates the
``kubernetes_asyncio`` method for each operation by name, converts
`~kubernetes_asyncio.client.ApiException` into
`~simcontroller.exceptions.KubernetesError`, and passes the remaining
time of the operation's `~simcontroller.timeout.Timeout` as the request
timeout.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from datetime import timedelta
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1ConfigMap,
    V1DeleteOptions,
    V1Deployment,
    V1Pod,
    V1Service,
)
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import KubernetesModel, PropagationPolicy
from ...timeout import Timeout

__all__ = [
    "ConfigMapStorage",
    "DeploymentStorage",
    "KubernetesObjectStorage",
    "PodStorage",
    "ServiceStorage",
]


class KubernetesObjectStorage[T: KubernetesModel]:
    """Namespaced storage for one kind of Kubernetes object.

    Kind-specific subclasses only choose the API group and the method
    suffix.

    Parameters
    ----------
    api
        API group object, such as ``CoreV1Api``, that implements the
        ``<verb>_namespaced_<suffix>`` methods for this kind.
    suffix
        Method name suffix for this kind, such as ``config_map``.
    kind
        Kubernetes kind, used in logs and errors.
    logger
        Logger to use.
    """

    def __init__(
        self, api: Any, suffix: str, kind: str, logger: BoundLogger
    ) -> None:
        self._api = api
        self._suffix = suffix
        self._kind = kind
        self._logger = logger

    async def create(self, namespace: str, body: T, timeout: Timeout) -> T:
        """Create an object.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            Object to create.
        timeout
            Timeout on operation.

        Returns
        -------
        T
            Object as stored by Kubernetes.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server, including
            409 if the object already exists.
        """
        name = body.metadata.name
        self._logger.debug(
            f"Creating {self._kind}", name=name, namespace=namespace
        )
        with self._convert_errors("creating", namespace, name):
            return await self._method("create")(
                namespace, body, _request_timeout=timeout.left()
            )

    async def delete(
        self,
        name: str,
        namespace: str,
        timeout: Timeout,
        *,
        propagation_policy: PropagationPolicy | None = None,
        grace_period: timedelta | None = None,
    ) -> None:
        """Delete an object, treating a missing object as success.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.
        propagation_policy
            How dependent objects should be removed.
        grace_period
            For pods, how long to wait between ``SIGTERM`` and ``SIGKILL``,
            truncated to whole seconds.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        kwargs: dict[str, Any] = {"_request_timeout": timeout.left()}
        body = None
        if propagation_policy:
            kwargs["propagation_policy"] = propagation_policy.value
        if grace_period is not None:
            seconds = int(grace_period.total_seconds())
            body = V1DeleteOptions(grace_period_seconds=seconds)
            kwargs["grace_period_seconds"] = seconds
        self._logger.debug(
            f"Deleting {self._kind}",
            name=name,
            namespace=namespace,
            propagation_policy=kwargs.get("propagation_policy"),
            grace_period=kwargs.get("grace_period_seconds"),
        )
        try:
            await self._method("delete")(name, namespace, body=body, **kwargs)
        except ApiException as e:
            if e.status != 404:
                raise self._error("deleting", e, namespace, name) from e

    async def list(
        self,
        namespace: str,
        timeout: Timeout,
        *,
        label_selector: str | None = None,
    ) -> list[T]:
        """List the objects in a namespace.

        Parameters
        ----------
        namespace
            Namespace to list.
        timeout
            Timeout on operation.
        label_selector
            If given, only return objects matching this selector.

        Returns
        -------
        list
            Matching objects.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        kwargs: dict[str, Any] = {"_request_timeout": timeout.left()}
        if label_selector:
            kwargs["label_selector"] = label_selector
        with self._convert_errors("listing", namespace):
            result = await self._method("list")(namespace, **kwargs)
        return result.items

    async def read(
        self, name: str, namespace: str, timeout: Timeout
    ) -> T | None:
        """Read an object.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.

        Returns
        -------
        T or None
            The object, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            return await self._method("read")(
                name, namespace, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._error("reading", e, namespace, name) from e

    async def replace(
        self, namespace: str, body: T, timeout: Timeout
    ) -> None:
        """Replace the whole contents of an existing object.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            New contents. Its name selects the object to replace.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server, including
            404 if the object does not exist.
        """
        name = body.metadata.name
        self._logger.debug(
            f"Replacing {self._kind}", name=name, namespace=namespace
        )
        with self._convert_errors("replacing", namespace, name):
            await self._method("replace")(
                name, namespace, body, _request_timeout=timeout.left()
            )

    @contextmanager
    def _convert_errors(
        self, action: str, namespace: str, name: str | None = None
    ) -> Iterator[None]:
        try:
            yield
        except ApiException as e:
            raise self._error(action, e, namespace, name) from e

    def _error(
        self,
        action: str,
        exc: ApiException,
        namespace: str,
        name: str | None = None,
    ) -> KubernetesError:
        noun = "object" if name else "objects"
        return KubernetesError.from_exception(
            f"Error {action} {noun}",
            exc,
            kind=self._kind,
            namespace=namespace,
            name=name,
        )

    def _method(self, verb: str) -> Callable[..., Awaitable[Any]]:
        return getattr(self._api, f"{verb}_namespaced_{self._suffix}")


class ConfigMapStorage(KubernetesObjectStorage[V1ConfigMap]):
    """Storage layer for ``ConfigMap`` objects."""

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(api, "config_map", "ConfigMap", logger)


class DeploymentStorage(KubernetesObjectStorage[V1Deployment]):
    """Storage layer for ``Deployment`` objects, including scaling."""

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(api, "deployment", "Deployment", logger)

    async def scale(
        self, name: str, namespace: str, replicas: int, timeout: Timeout
    ) -> None:
        """Change the replica count of a deployment.

        Parameters
        ----------
        name
            Name of the deployment.
        namespace
            Namespace of the deployment.
        replicas
            New replica count.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        self._logger.debug(
            "Scaling Deployment",
            name=name,
            namespace=namespace,
            replicas=replicas,
        )
        body = {"spec": {"replicas": replicas}}
        with self._convert_errors("scaling", namespace, name):
            await self._api.patch_namespaced_deployment_scale(
                name, namespace, body, _request_timeout=timeout.left()
            )


class PodStorage(KubernetesObjectStorage[V1Pod]):
    """Storage layer for ``Pod`` objects."""

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(api, "pod", "Pod", logger)


class ServiceStorage(KubernetesObjectStorage[V1Service]):
    """Storage layer for ``Service`` objects."""

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(api, "service", "Service", logger)
