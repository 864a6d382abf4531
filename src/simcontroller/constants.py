"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "APP_LABEL",
    "APP_NAME",
    "COMPONENT_LABEL",
    "CONFIGURATION_PATH",
    "CONTROL_PLANE_COMPONENT",
    "CONTROL_PLANE_POD_MARKER",
    "DEFAULT_EXPORT_OPTIONS",
    "DEFAULT_MANAGED_BY",
    "DYNAMIC_MANAGED_BY",
    "EXPORT_FORMAT_VERSION",
    "HEALTH_CHECK_TIMEOUT",
    "INSTANCE_LABEL",
    "KUBERNETES_REQUEST_TIMEOUT",
    "MANAGED_BY_LABEL",
    "PART_OF_LABEL",
    "PART_OF_VALUE",
    "PASSIVE_PORT_BASE",
    "PASSIVE_PORT_SLOTS",
    "PASSIVE_PORT_SLOT_SIZE",
    "RESTART_GRACE_PERIOD",
    "SERVER_NAME_PATTERN",
    "STATUS_BROADCAST_INTERVAL",
    "STATUS_HUB_MAX_EVENTS",
    "STATUS_STARTUP_DELAY",
    "WINDOWS_DATA_ROOT",
]

APP_LABEL = "app.kubernetes.io/name"
"""Label identifying every object belonging to the file simulator."""

APP_NAME = "file-simulator"
"""Value of `APP_LABEL` for all file simulator objects."""

COMPONENT_LABEL = "app.kubernetes.io/component"
"""Label holding the protocol component of a server."""

CONFIGURATION_PATH = Path("/etc/file-simulator/config.yaml")
"""Default path to controller configuration."""

CONTROL_PLANE_COMPONENT = "control-api"
"""Value of `COMPONENT_LABEL` on the control plane pod."""

CONTROL_PLANE_POD_MARKER = "control-api"
"""Substring identifying control plane pods by name.

Pods whose names contain this string are never reported as protocol servers.
"""

DEFAULT_EXPORT_OPTIONS = "rw,sync,no_subtree_check,no_root_squash"
"""NFS export options used when none are specified."""

DEFAULT_MANAGED_BY = "Helm"
"""Management origin reported for servers without a ``managed-by`` label."""

DYNAMIC_MANAGED_BY = "control-api"
"""Value of `MANAGED_BY_LABEL` on servers created by this controller."""

EXPORT_FORMAT_VERSION = "2.0"
"""Version string of exported configuration documents."""

HEALTH_CHECK_TIMEOUT = timedelta(seconds=5)
"""Upper bound on a single TCP health probe."""

INSTANCE_LABEL = "app.kubernetes.io/instance"
"""Label holding the name of a dynamic server."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""How long to wait for generic sequences of Kubernetes API calls.

Every request-driven operation and every broadcaster cycle is a sequence of
Kubernetes API calls bounded by this overall timeout, which imposes an upper
limit on how long we'll wait if the control plane is nonresponsive.
"""

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
"""Label recording what created a server."""

PART_OF_LABEL = "app.kubernetes.io/part-of"
"""Label grouping dynamic servers into the simulator suite."""

PART_OF_VALUE = "file-simulator-suite"
"""Value of `PART_OF_LABEL` on dynamic servers."""

PASSIVE_PORT_BASE = 30200
"""First node port used for automatically allocated FTP passive ports."""

PASSIVE_PORT_SLOTS = 20
"""Number of passive port ranges available for automatic allocation."""

PASSIVE_PORT_SLOT_SIZE = 5
"""Number of passive ports in each automatically allocated range."""

RESTART_GRACE_PERIOD = timedelta(seconds=5)
"""Grace period given to server pods deleted by a restart."""

SERVER_NAME_PATTERN = "^[a-z0-9-]+$"
"""Pattern matching valid dynamic server names."""

STATUS_BROADCAST_INTERVAL = timedelta(seconds=5)
"""How frequently to discover, probe, and broadcast server status."""

STATUS_HUB_MAX_EVENTS = 100
"""Number of events the status hub retains before starting a new queue."""

STATUS_STARTUP_DELAY = timedelta(seconds=2)
"""Delay before the first status broadcast after startup.

This gives the Kubernetes client and the HTTP server time to finish starting
before the first discovery pass.
"""

WINDOWS_DATA_ROOT = r"C:\simulator-data"
"""Host directory backing the shared simulator data volume."""
