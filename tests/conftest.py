"""Root test configuration."""

import logging

import pytest
import structlog

from ecsdeploy.engine.memory import InMemoryEngine
from ecsdeploy.units import build_deployment_graph


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def deployment():
    return "demo"


@pytest.fixture
def graph(deployment):
    return build_deployment_graph(deployment)


@pytest.fixture
def engine():
    return InMemoryEngine(region="us-east-1")


@pytest.fixture
def deployed(graph, engine):
    """Engine with every unit of the ``demo`` deployment applied."""
    result = graph.deploy(engine)
    result.raise_for_error()
    return engine


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
