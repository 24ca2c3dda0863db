"""Configuration for pytest testing framework."""

import typing as t
from unittest.mock import patch

import pytest
from _pytest.python import Function

from jobqueue_rabbitmq.config import QueueSettings
from tests.mocks.amqp import FakeBroker, make_aio_pika_imports


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "integration: mark test as requiring external integration"
    )
    config.addinivalue_line(
        "markers", "external: mark test as requiring a running RabbitMQ server"
    )


def pytest_runtest_setup(item: Function) -> None:
    """Setup for each test."""
    # Skip integration tests by default unless specifically requested
    if item.get_closest_marker("integration") or item.get_closest_marker("external"):
        if not item.config.getoption("--run-external", default=False):
            pytest.skip(
                "Skipping external integration test. Use --run-external to run."
            )


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add command-line options."""
    parser.addoption(
        "--run-external",
        action="store_true",
        default=False,
        help="Run tests that require external services",
    )


@pytest.fixture
def broker() -> FakeBroker:
    """In-memory broker shared by every queue created in a test."""
    return FakeBroker()


@pytest.fixture
def aio_pika_imports(broker: FakeBroker) -> t.Iterator[dict[str, t.Any]]:
    """Route the queues' aio-pika connections to the in-memory broker."""
    imports = make_aio_pika_imports(broker)
    with (
        patch(
            "jobqueue_rabbitmq.queue.rabbitmq._get_aio_pika_imports",
            return_value=imports,
        ),
        patch(
            "jobqueue_rabbitmq.queue.pubsub._get_aio_pika_imports",
            return_value=imports,
        ),
    ):
        yield imports


@pytest.fixture
def settings() -> QueueSettings:
    """Settings with short timeouts, independent of the environment."""
    return QueueSettings(
        host="rabbitmq.test",
        port=5673,
        username="worker",
        password="secret",
        vhost="/jobs",
        operation_timeout=1.0,
        publish_timeout=1.0,
    )
