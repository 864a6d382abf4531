"""Global configuration parsing."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.metrics import MetricsConfiguration, metrics_configuration_factory

__all__ = [
    "Config",
    "KubernetesConfig",
]


class KubernetesConfig(BaseModel):
    """Where the file simulator lives in the cluster and how it is named."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    namespace: Annotated[
        str,
        Field(
            title="Namespace",
            description=(
                "Namespace containing the file simulator. All discovery and"
                " all dynamic servers are confined to this namespace."
            ),
        ),
    ] = "file-simulator"

    release_prefix: Annotated[
        str,
        Field(
            title="Helm release prefix",
            description=(
                "Prefix of the Helm release that installed the simulator,"
                " used to name the shared PVC, the endpoints ConfigMap, and"
                " all dynamic server resources"
            ),
        ),
    ] = "file-sim-file-simulator"

    pvc_name: Annotated[
        str | None,
        Field(
            title="Shared data PVC",
            description=(
                "Name of the persistent volume claim holding simulator data."
                " Defaults to ``<releasePrefix>-pvc``."
            ),
        ),
    ] = None

    endpoints_config_map: Annotated[
        str | None,
        Field(
            title="Endpoints ConfigMap",
            description=(
                "Name of the service-discovery ConfigMap. Defaults to"
                " ``<releasePrefix>-endpoints``."
            ),
        ),
    ] = None

    passive_address: Annotated[
        str,
        Field(
            title="FTP passive address",
            description=(
                "Address advertised by dynamic FTP servers for passive mode"
                " data connections"
            ),
        ),
    ] = "file-simulator.local"

    @model_validator(mode="after")
    def _fill_derived_names(self) -> Self:
        if self.pvc_name is None:
            self.pvc_name = f"{self.release_prefix}-pvc"
        if self.endpoints_config_map is None:
            self.endpoints_config_map = f"{self.release_prefix}-endpoints"
        return self


class Config(BaseSettings):
    """File simulator controller configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel,
        case_sensitive=True,
        extra="forbid",
        populate_by_name=True,
    )

    kubernetes: Annotated[
        KubernetesConfig,
        Field(title="Kubernetes placement of the file simulator"),
    ] = KubernetesConfig()

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    metrics: MetricsConfiguration = Field(
        default_factory=metrics_configuration_factory,
        title="Metrics configuration",
        description=(
            "Configuration for publishing per-server health samples to Kafka"
        ),
    )

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "file-simulator-controller"

    path_prefix: Annotated[
        str,
        Field(
            title="URL prefix for controller API",
            description="This prefix is used for all APIs",
        ),
    ] = "/api"

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers or Google Log Explorer."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, failures managing dynamic servers and any uncaught"
                " exceptions in the controller will be reported to Slack via"
                " this webhook"
            ),
            validation_alias="FILE_SIMULATOR_SLACK_WEBHOOK",
        ),
    ] = None

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the controller configuration from a YAML file.

        Values from the file are passed as initialization arguments, so they
        take precedence over environment variables, which still supply any
        setting the file omits.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            settings = yaml.safe_load(f) or {}
        return cls(**settings)
