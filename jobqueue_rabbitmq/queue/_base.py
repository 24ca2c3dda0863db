"""Base queue interface for jobqueue-rabbitmq.

This module provides the message model shared by every queue, the wire codec
that turns a message into the bytes sent to the broker, the exception
hierarchy and the abstract work queue contract.

Key Design Principles:
1. A message's identifier belongs to a delivery, never to a publish
2. State only moves forward: NEW, PUBLISHED, RECEIVED, DONE
3. A timeout is an absent result, not an error
4. Async-first; every broker round-trip is awaited
"""

import typing as t
from abc import ABC, abstractmethod
from enum import Enum

import msgspec
from pydantic import BaseModel

__all__ = [
    "Message",
    "MessageDecodeError",
    "MessageIdentifierMissingError",
    "MessageState",
    "QueueConnectionError",
    "QueueException",
    "QueueInterface",
    "QueueOperationError",
    "decode_message",
    "encode_message",
]


# ============================================================================
# Message Model
# ============================================================================


class MessageState(Enum):
    """Lifecycle of a message, in transition order."""

    NEW = "new"
    PUBLISHED = "published"
    RECEIVED = "received"
    DONE = "done"


class Message(BaseModel):
    """A unit of work travelling through a queue.

    A message created by a producer has no identifier. Consumers receive a
    separate instance stamped with the broker's delivery identifier; only
    that instance can be finished.
    """

    payload: t.Any = None
    identifier: str | None = None
    state: MessageState = MessageState.NEW
    original_value: bytes | None = None

    def __init__(
        self,
        payload: t.Any = None,
        identifier: str | None = None,
        **data: t.Any,
    ) -> None:
        super().__init__(payload=payload, identifier=identifier, **data)


# ============================================================================
# Exception Hierarchy
# ============================================================================


class QueueException(Exception):
    """Base exception for all queue-related errors."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.original_error = original_error


class QueueConnectionError(QueueException):
    """Raised when the broker is unreachable or the channel is gone."""


class QueueOperationError(QueueException):
    """Raised when the broker refuses a queue operation."""


class MessageIdentifierMissingError(QueueException):
    """Raised when finishing a message that was never received from a queue."""


class MessageDecodeError(QueueException):
    """Raised when a message body is not a valid encoded message."""


# ============================================================================
# Wire Codec
# ============================================================================


def encode_message(message: Message) -> bytes:
    """Serialize a message for transport.

    The encoded bytes are stored back on the message as ``original_value``.
    """
    data: dict[str, t.Any] = {"payload": message.payload}
    if message.identifier is not None:
        data["identifier"] = message.identifier
    encoded = msgspec.json.encode(data)
    message.original_value = encoded
    return encoded


def decode_message(data: bytes) -> Message:
    """Inverse of :func:`encode_message`."""
    try:
        decoded = msgspec.json.decode(data)
    except msgspec.DecodeError as e:
        raise MessageDecodeError(
            "Message body is not valid JSON", original_error=e
        ) from e

    if not isinstance(decoded, dict) or "payload" not in decoded:
        raise MessageDecodeError("Message body has no payload field")

    identifier = decoded.get("identifier")
    return Message(
        decoded["payload"],
        identifier=None if identifier is None else str(identifier),
        original_value=bytes(data),
    )


# ============================================================================
# Queue Interface
# ============================================================================


class QueueInterface(ABC):
    """Contract of a reliable work queue."""

    @abstractmethod
    async def publish(self, message: Message) -> None:
        """Publish a message to the queue.

        The state of the message is updated according to the result of the
        operation. No identifier is assigned here.
        """
        ...

    @abstractmethod
    async def wait_and_take(self, timeout: float | None = None) -> Message | None:
        """Wait for a message and remove it from the queue.

        Returns:
            The received message, or None if the timeout elapsed
        """
        ...

    @abstractmethod
    async def wait_and_reserve(self, timeout: float | None = None) -> Message | None:
        """Wait for a message and reserve it for processing.

        The message stays in the broker until :meth:`finish` is called for it.

        Returns:
            The reserved message, or None if the timeout elapsed
        """
        ...

    @abstractmethod
    async def finish(self, message: Message) -> bool:
        """Mark a reserved message as done.

        Raises:
            MessageIdentifierMissingError: If the message was never received
        """
        ...

    @abstractmethod
    async def peek(self, limit: int = 1) -> list[Message]:
        """Inspect up to ``limit`` messages without consuming them.

        Peeked messages are not reserved. Another consumer may receive them
        at any time.
        """
        ...

    @abstractmethod
    async def get_message(self, identifier: str) -> Message | None:
        """Get a message by identifier, or None if not present."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Number of messages ready for delivery."""
        ...
