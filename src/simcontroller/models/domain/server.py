"""Internal models for protocol servers."""

from __future__ import annotations

from dataclasses import dataclass

from kubernetes_asyncio.client import V1Deployment, V1Pod, V1Service

__all__ = [
    "ClusterObjects",
    "ServerObjects",
]


@dataclass
class ServerObjects:
    """Kubernetes objects making up a dynamic server."""

    deployment: V1Deployment
    """Deployment running the protocol server."""

    service: V1Service
    """``NodePort`` service exposing the protocol server."""


@dataclass
class ClusterObjects:
    """All file simulator objects seen by a single discovery pass.

    Everything is listed with the same label selector, so the three lists
    describe the same set of servers as closely as the Kubernetes API allows.
    """

    pods: list[V1Pod]
    """File simulator pods."""

    services: list[V1Service]
    """File simulator services."""

    deployments: list[V1Deployment]
    """File simulator deployments."""
