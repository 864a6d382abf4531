"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol

from kubernetes_asyncio.client import V1ObjectMeta, V1Pod

__all__ = [
    "KubernetesModel",
    "PodPhase",
    "PropagationPolicy",
    "is_pod_ready",
]


class KubernetesModel(Protocol):
    """Protocol for Kubernetes object models.

    kubernetes-asyncio_ doesn't currently expose type information, so this
    tells mypy that all the object models we deal with will have a metadata
    attribute.
    """

    metadata: V1ObjectMeta

    def to_dict(self, *, serialize: bool = False) -> dict[str, Any]: ...


class PodPhase(str, Enum):
    """One of the valid phases reported in the status section of a Pod."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def from_pod(cls, pod: V1Pod) -> PodPhase:
        """Determine the phase of a pod.

        Parameters
        ----------
        pod
            Pod object.

        Returns
        -------
        PodPhase
            Phase of the pod, or ``Unknown`` if it has no status or reports
            a phase we don't recognize.
        """
        if not pod.status or not pod.status.phase:
            return cls.UNKNOWN
        try:
            return cls(pod.status.phase)
        except ValueError:
            return cls.UNKNOWN


class PropagationPolicy(Enum):
    """Possible values for the ``propagationPolicy`` parameter to delete."""

    FOREGROUND = "Foreground"
    BACKGROUND = "Background"
    ORPHAN = "Orphan"


def is_pod_ready(pod: V1Pod) -> bool:
    """Whether the pod reports its ``Ready`` condition as true.

    Parameters
    ----------
    pod
        Pod object.

    Returns
    -------
    bool
        `True` if the pod has a ``Ready`` condition with status ``True``.
    """
    if not pod.status or not pod.status.conditions:
        return False
    return any(
        c.type == "Ready" and c.status == "True"
        for c in pod.status.conditions
    )
