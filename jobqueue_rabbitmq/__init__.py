"""jobqueue-rabbitmq: work queues and pub/sub queues on RabbitMQ."""

from jobqueue_rabbitmq.config import QueueSettings
from jobqueue_rabbitmq.queue import (
    Message,
    MessageDecodeError,
    MessageIdentifierMissingError,
    MessageState,
    QueueConnectionError,
    QueueException,
    QueueOperationError,
    RabbitmqPubSubQueue,
    RabbitmqWorkQueue,
)

__version__ = "0.1.0"

__all__ = [
    "Message",
    "MessageDecodeError",
    "MessageIdentifierMissingError",
    "MessageState",
    "QueueConnectionError",
    "QueueException",
    "QueueOperationError",
    "QueueSettings",
    "RabbitmqPubSubQueue",
    "RabbitmqWorkQueue",
]
