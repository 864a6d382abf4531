"""Tests for Slack and Sentry rendering of controller exceptions."""

from __future__ import annotations

from datetime import UTC, datetime

from anys import AnyContains
from kubernetes_asyncio.client import ApiException

from simcontroller.exceptions import ControllerTimeoutError, KubernetesError


def test_controller_timeout_error() -> None:
    started_at = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
    failed_at = datetime(2026, 3, 1, 12, 0, 30, tzinfo=UTC)
    error = ControllerTimeoutError(
        "Server creation",
        "my-ftp",
        started_at=started_at,
        failed_at=failed_at,
    )
    assert str(error) == (
        "Server creation for server my-ftp timed out after 30.0s"
    )

    slack = error.to_slack().to_slack()
    assert slack["blocks"][0]["text"]["text"] == str(error)
    assert slack["blocks"][1]["fields"] == [
        {
            "type": "mrkdwn",
            "text": "*Exception type*\nControllerTimeoutError",
            "verbatim": True,
        },
        {
            "type": "mrkdwn",
            "text": "*Failed at*\n2026-03-01 12:00:30",
            "verbatim": True,
        },
        {
            "type": "mrkdwn",
            "text": "*Started*\n2026-03-01 12:00:00",
            "verbatim": True,
        },
        {"type": "mrkdwn", "text": "*Server*\nmy-ftp", "verbatim": True},
    ]

    sentry = error.to_sentry()
    assert sentry.tags["operation"] == "Server creation"
    assert sentry.tags["server"] == "my-ftp"
    assert sentry.contexts["timeout"]["elapsed"] == "30.0"


def test_kubernetes_error() -> None:
    exc = ApiException(status=403, reason="Forbidden")
    error = KubernetesError.from_exception(
        "Error creating object",
        exc,
        kind="Deployment",
        namespace="file-simulator",
        name="file-sim-file-simulator-my-ftp",
    )
    assert error.status == 403
    assert error.body == "Forbidden"
    headline = (
        "Error creating object (Deployment"
        " file-simulator/file-sim-file-simulator-my-ftp, status 403)"
    )
    assert error.headline == headline
    assert str(error) == f"{headline}: Forbidden"

    slack = error.to_slack().to_slack()
    assert slack == {
        "blocks": [
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": headline, "verbatim": True},
            },
            {
                "type": "section",
                "fields": [
                    {
                        "type": "mrkdwn",
                        "text": "*Exception type*\nKubernetesError",
                        "verbatim": True,
                    },
                    {
                        "type": "mrkdwn",
                        "text": AnyContains("*Failed at*"),
                        "verbatim": True,
                    },
                    {
                        "type": "mrkdwn",
                        "text": "*Status*\n403",
                        "verbatim": True,
                    },
                ],
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        "*Object*\nDeployment"
                        " file-simulator/file-sim-file-simulator-my-ftp"
                    ),
                    "verbatim": True,
                },
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": "*Response*\n```\nForbidden\n```",
                    "verbatim": True,
                },
            },
            {"type": "divider"},
        ]
    }

    sentry = error.to_sentry()
    assert sentry.tags == {
        "kind": "Deployment",
        "namespace": "file-simulator",
        "name": "file-sim-file-simulator-my-ftp",
        "status": "403",
    }
    assert sentry.attachments["response"] == "Forbidden"


def test_kubernetes_error_collection() -> None:
    error = KubernetesError(
        "Error listing objects", kind="Pod", namespace="file-simulator"
    )
    assert error.target == "Pod in file-simulator"
    assert str(error) == "Error listing objects (Pod in file-simulator)"
    assert KubernetesError("Failed").headline == "Failed"
