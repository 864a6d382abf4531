"""Tests for configuration parsing."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError
from safir.logging import LogLevel, Profile

from simcontroller.config import Config, KubernetesConfig


def test_derived_names() -> None:
    config = KubernetesConfig(release_prefix="sim")
    assert config.pvc_name == "sim-pvc"
    assert config.endpoints_config_map == "sim-endpoints"

    config = KubernetesConfig(
        release_prefix="sim",
        pvc_name="shared-data",
        endpoints_config_map="endpoints",
    )
    assert config.pvc_name == "shared-data"
    assert config.endpoints_config_map == "endpoints"


def test_from_file(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "logLevel: WARNING\n"
        "pathPrefix: /simulator\n"
        "kubernetes:\n"
        "  namespace: sim\n"
        "  releasePrefix: test-sim\n"
    )
    config = Config.from_file(path)
    assert config.log_level == LogLevel.WARNING
    assert config.path_prefix == "/simulator"
    assert config.profile == Profile.production
    assert config.kubernetes.namespace == "sim"
    assert config.kubernetes.pvc_name == "test-sim-pvc"
    assert config.slack_webhook is None

    # An empty file gives the defaults.
    path.write_text("")
    config = Config.from_file(path)
    assert config.kubernetes.namespace == "file-simulator"
    assert config.kubernetes.release_prefix == "file-sim-file-simulator"
    assert config.path_prefix == "/api"


def test_unknown_setting(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("kubernetes:\n  nameSpace: sim\n")
    with pytest.raises(ValidationError):
        Config.from_file(path)


def test_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    webhook = "https://slack.example.com/services/alerts"
    monkeypatch.setenv("FILE_SIMULATOR_SLACK_WEBHOOK", webhook)
    path = tmp_path / "config.yaml"
    path.write_text("logLevel: WARNING\n")

    config = Config.from_file(path)
    assert config.slack_webhook
    assert config.slack_webhook.get_secret_value() == webhook
    assert config.log_level == LogLevel.WARNING

    # A webhook in the file takes precedence.
    path.write_text("FILE_SIMULATOR_SLACK_WEBHOOK: https://example.com/\n")
    config = Config.from_file(path)
    assert config.slack_webhook
    assert config.slack_webhook.get_secret_value() == "https://example.com/"
