"""Mock implementations for testing."""

from tests.mocks.amqp import (
    FakeBroker,
    FakeChannel,
    FakeConnection,
    FakeIncomingMessage,
    make_aio_pika_imports,
)

__all__ = [
    "FakeBroker",
    "FakeChannel",
    "FakeConnection",
    "FakeIncomingMessage",
    "make_aio_pika_imports",
]
