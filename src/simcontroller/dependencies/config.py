"""Dependency providing the controller configuration."""

from pathlib import Path

from ..config import Config
from ..constants import CONFIGURATION_PATH

__all__ = ["ConfigDependency", "config_dependency"]


class ConfigDependency:
    """Load the controller configuration once and share it.

    Parameters
    ----------
    path
        YAML configuration file, normally mounted from a ``ConfigMap``.
    """

    def __init__(self, path: Path = CONFIGURATION_PATH) -> None:
        self._path = path
        self._config: Config | None = None

    async def __call__(self) -> Config:
        return self.config

    @property
    def config(self) -> Config:
        """Controller configuration, parsed on first access."""
        if self._config is None:
            self._config = Config.from_file(self._path)
        return self._config

    def set_path(self, path: Path) -> None:
        """Switch to another configuration file and parse it immediately.

        Parameters
        ----------
        path
            Replacement configuration file.
        """
        self._path = path
        self._config = Config.from_file(path)


config_dependency = ConfigDependency()
"""Dependency returning the controller configuration."""
