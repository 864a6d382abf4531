"""Test fixtures for file simulator controller tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from functools import partial

import pytest
import pytest_asyncio
import respx
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook

from simcontroller import factory as factory_module
from simcontroller.config import Config
from simcontroller.factory import Factory
from simcontroller.main import create_app
from simcontroller.services.health import HealthProber

from .support.cluster import seed_control_plane, seed_static_servers
from .support.config import configure
from .support.constants import TEST_BASE_URL
from .support.health import MockConnector
from .support.kubernetes import MockKubernetesApi, patch_kubernetes


@pytest.fixture(autouse=True)
def _mock_metrics(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_APPLICATION", "file-simulator-controller")
    monkeypatch.setenv("METRICS_ENABLED", "false")
    monkeypatch.setenv("METRICS_MOCK", "true")


@pytest.fixture
def config() -> Config:
    """Construct default configuration for tests."""
    return configure("standard")


@pytest_asyncio.fixture
async def app(
    config: Config,
    cluster: MockKubernetesApi,
    mock_connector: MockConnector,
    mock_slack: MockSlackWebhook,
) -> AsyncIterator[FastAPI]:
    """Return a configured test application.

    Wraps the application in a lifespan manager so that startup and shutdown
    events are sent during test execution.
    """
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` configured to talk to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url=TEST_BASE_URL
    ) as client:
        yield client


@pytest_asyncio.fixture
async def cluster(
    config: Config, mock_kubernetes: MockKubernetesApi
) -> MockKubernetesApi:
    """Mock Kubernetes holding a Helm-installed file simulator."""
    namespace = config.kubernetes.namespace
    await seed_control_plane(mock_kubernetes, namespace)
    await seed_static_servers(mock_kubernetes, namespace)
    return mock_kubernetes


@pytest_asyncio.fixture
async def factory(
    config: Config,
    mock_kubernetes: MockKubernetesApi,
    mock_connector: MockConnector,
    mock_slack: MockSlackWebhook,
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    async with Factory.standalone(config) as factory:
        yield factory


@pytest.fixture(autouse=True)
def mock_connector(monkeypatch: pytest.MonkeyPatch) -> MockConnector:
    """Replace TCP connections made by health checks.

    The seeded static servers accept connections except the NAS server.
    """
    connector = MockConnector({"10.96.0.2:21", "10.96.0.3:22"})
    prober = partial(HealthProber, connector=connector)
    monkeypatch.setattr(factory_module, "HealthProber", prober)
    return connector


@pytest.fixture
def mock_kubernetes() -> Iterator[MockKubernetesApi]:
    yield from patch_kubernetes()


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    config.slack_webhook = SecretStr("https://slack.example.com/webhook")
    yield mock_slack_webhook(config.slack_webhook, respx_mock)
    config.slack_webhook = None
