"""Queue implementations backed by RabbitMQ.

- RabbitmqWorkQueue: durable point-to-point queue with reserve/finish
- RabbitmqPubSubQueue: fanout broadcast to every active subscriber
"""

from jobqueue_rabbitmq.queue._base import (
    Message,
    MessageDecodeError,
    MessageIdentifierMissingError,
    MessageState,
    QueueConnectionError,
    QueueException,
    QueueInterface,
    QueueOperationError,
    decode_message,
    encode_message,
)
from jobqueue_rabbitmq.queue.pubsub import MessageHandler, RabbitmqPubSubQueue
from jobqueue_rabbitmq.queue.rabbitmq import AbstractRabbitmqQueue, RabbitmqWorkQueue

__all__ = [
    # Queues
    "AbstractRabbitmqQueue",
    "QueueInterface",
    "RabbitmqPubSubQueue",
    "RabbitmqWorkQueue",
    # Messages
    "Message",
    "MessageHandler",
    "MessageState",
    "decode_message",
    "encode_message",
    # Exceptions
    "MessageDecodeError",
    "MessageIdentifierMissingError",
    "QueueConnectionError",
    "QueueException",
    "QueueOperationError",
]
