"""RabbitMQ Work Queue for jobqueue-rabbitmq.

A durable point-to-point queue with at-least-once delivery, modelled on the
RabbitMQ work queue pattern: producers publish persistent messages through the
default exchange, consumers reserve one message at a time (prefetch 1) and
acknowledge it once it has been processed.

Features:
    - Lazy connection with exactly one publisher-confirm channel per queue
    - Reserve/finish handshake with broker-side redelivery on consumer loss
    - Take-and-forget consumption
    - Peek emulated through basic.get followed by a requeueing nack
    - Ready-message count and purge

Requirements:
    - RabbitMQ server
    - aio-pika for async RabbitMQ client

Example:
    ```python
    from jobqueue_rabbitmq import Message, QueueSettings, RabbitmqWorkQueue

    async with RabbitmqWorkQueue("jobs", QueueSettings(host="rabbitmq")) as queue:
        await queue.publish(Message({"task": "resize", "id": 42}))

        message = await queue.wait_and_reserve(timeout=5)
        if message:
            await process(message.payload)
            await queue.finish(message)
    ```
"""

import asyncio
import typing as t
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from jobqueue_rabbitmq.cleanup import CleanupMixin
from jobqueue_rabbitmq.config import QueueSettings
from jobqueue_rabbitmq.logger import logger

from ._base import (
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

# Lazy imports for aio-pika
_aio_pika_imports: dict[str, t.Any] = {}


def _get_aio_pika_imports() -> dict[str, t.Any]:
    """Lazy import of aio-pika dependencies."""
    if not _aio_pika_imports:
        try:
            import aio_pika
            from aio_pika import DeliveryMode, ExchangeType
            from aio_pika.exceptions import MessageProcessError

            _aio_pika_imports.update(
                {
                    "aio_pika": aio_pika,
                    "connect": aio_pika.connect,
                    "Message": aio_pika.Message,
                    "DeliveryMode": DeliveryMode,
                    "ExchangeType": ExchangeType,
                    "MessageProcessError": MessageProcessError,
                }
            )
        except ImportError as e:
            raise ImportError(
                "aio-pika is required for RabbitMQ queues. "
                "Install with: pip install aio-pika>=9.0.0"
            ) from e

    return _aio_pika_imports


class AbstractRabbitmqQueue(CleanupMixin, ABC):
    """Connection lifecycle shared by RabbitMQ queues.

    Each instance owns one connection and one channel. Nothing is opened at
    construction time; the first operation (or an explicit :meth:`connect`)
    opens the connection, derives the channel and lets the subclass declare
    its queue and exchange in :meth:`_declare`.
    """

    def __init__(self, name: str, settings: QueueSettings | None = None) -> None:
        """Initialize the queue.

        Args:
            name: Name of the queue (work queues) or exchange (pub/sub)
            settings: Connection settings, defaults apply when omitted
        """
        CleanupMixin.__init__(self)
        self.name = name
        self.exchange_name = ""
        self._settings = settings or QueueSettings()
        self.logger = logger.bind(queue=name)

        # RabbitMQ connection and channel
        self._connection: t.Any = None
        self._channel: t.Any = None

        # RabbitMQ objects
        self._exchange: t.Any = None
        self._queue: t.Any = None

        self._connected = False
        self._connection_lock = asyncio.Lock()

    @property
    def settings(self) -> QueueSettings:
        return self._settings

    @property
    def is_connected(self) -> bool:
        return self._connected

    # ========================================================================
    # Connection Management
    # ========================================================================

    async def _ensure_client(self) -> t.Any:
        """Ensure the connection and channel exist (lazy initialization).

        Returns:
            The channel owned by this queue

        Raises:
            QueueConnectionError: If connecting or declaring fails
        """
        if self._connected:
            return self._channel

        async with self._connection_lock:
            # Double-check after acquiring lock
            if self._connected:
                return self._channel

            imports = _get_aio_pika_imports()
            settings = self._settings

            try:
                self._connection = await imports["connect"](
                    host=settings.host,
                    port=settings.port,
                    login=settings.username,
                    password=settings.password.get_secret_value(),
                    virtualhost=settings.vhost,
                    timeout=settings.connection_timeout,
                    heartbeat=settings.heartbeat,
                )
                self.register_resource(self._connection)

                self._channel = await self._connection.channel(publisher_confirms=True)
                self.register_resource(self._channel)

                await self._declare()

            except Exception as e:
                self.logger.exception(
                    f"Failed to connect to RabbitMQ at {settings.display_url}: {e}"
                )
                await self._release()
                if isinstance(e, QueueException):
                    raise
                raise QueueConnectionError(
                    "Failed to establish RabbitMQ connection",
                    original_error=e,
                ) from e

            self._connected = True
            self.logger.info(f"Connected to RabbitMQ at {settings.display_url}")

        return self._channel

    @abstractmethod
    async def _declare(self) -> None:
        """Declare the exchange and queue this instance works with."""
        ...

    async def connect(self) -> None:
        """Open the connection and declare the queue. Idempotent."""
        await self._ensure_client()

    async def close(self) -> None:
        """Close the channel, then the connection.

        Safe to call repeatedly and after a failed connect. Close failures are
        logged and suppressed.
        """
        was_connected = self._connected
        await self._release()
        if was_connected:
            self.logger.info("Disconnected from RabbitMQ")

    async def _release(self) -> None:
        self._connected = False
        await self.cleanup()
        self._connection = None
        self._channel = None
        self._exchange = None
        self._queue = None

    async def __aenter__(self) -> t.Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        await self.close()

    # ========================================================================
    # Shared Operations
    # ========================================================================

    def _operation_error(self, action: str, error: Exception) -> QueueException:
        """Wrap a broker fault, telling a lost channel from a refused operation."""
        if self._channel is None or getattr(self._channel, "is_closed", False):
            return QueueConnectionError(
                f"Failed to {action}: channel is closed", original_error=error
            )
        return QueueOperationError(f"Failed to {action}", original_error=error)

    async def _publish(
        self,
        message: Message,
        routing_key: str,
        persistent: bool,
        mandatory: bool = True,
    ) -> None:
        """Encode and publish a message, waiting for the publisher confirm."""
        await self._ensure_client()
        imports = _get_aio_pika_imports()
        DeliveryMode = imports["DeliveryMode"]

        body = encode_message(message)
        amqp_message = imports["Message"](
            body,
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT
            if persistent
            else DeliveryMode.NOT_PERSISTENT,
        )

        try:
            await self._exchange.publish(
                amqp_message,
                routing_key=routing_key,
                mandatory=mandatory,
                timeout=self._settings.publish_timeout,
            )
        except TimeoutError as e:
            raise QueueOperationError(
                f"Publish was not confirmed after {self._settings.publish_timeout}s",
                original_error=e,
            ) from e
        except Exception as e:
            self.logger.exception(f"Failed to publish message: {e}")
            raise self._operation_error("publish message", e) from e

        message.state = MessageState.PUBLISHED
        self.logger.debug(
            f"Published {len(body)} bytes to exchange {self.exchange_name!r} "
            f"with routing key {routing_key!r}"
        )

    @asynccontextmanager
    async def _consume(
        self,
        no_ack: bool,
        inbox: asyncio.Queue[t.Any] | None = None,
    ) -> AsyncIterator[asyncio.Queue[t.Any]]:
        """Register a consumer on this instance's queue for the block's duration.

        Deliveries are collected in the yielded inbox. The consumer is
        cancelled on every exit path. With a caller-supplied ``inbox``,
        deliveries that were not taken stay in it, including those that
        arrive after the block exits. Otherwise they are requeued, which
        requires manual acknowledgement.
        """
        owned = inbox is None
        if inbox is None:
            inbox = asyncio.Queue()

        async def on_delivery(incoming: t.Any) -> None:
            inbox.put_nowait(incoming)

        try:
            consumer_tag = await self._queue.consume(on_delivery, no_ack=no_ack)
        except Exception as e:
            self.logger.exception(f"Failed to start consumer: {e}")
            raise self._operation_error("start consumer", e) from e

        try:
            yield inbox
        finally:
            try:
                await self._queue.cancel(consumer_tag)
            except Exception as e:
                self.logger.warning(f"Error cancelling consumer {consumer_tag}: {e}")
            if owned:
                await self._release_undelivered(inbox)

    async def _release_undelivered(self, inbox: asyncio.Queue[t.Any]) -> None:
        while not inbox.empty():
            incoming = inbox.get_nowait()
            try:
                await incoming.nack(requeue=True)
            except Exception as e:
                self.logger.warning(
                    f"Failed to requeue delivery {incoming.delivery_tag}: {e}"
                )

    @staticmethod
    async def _wait_for_delivery(
        inbox: asyncio.Queue[t.Any],
        timeout: float | None,
    ) -> t.Any:
        """Next delivery from the inbox, or None once ``timeout`` elapses.

        A timeout of 0 waits without limit, like None.
        """
        try:
            return await asyncio.wait_for(inbox.get(), timeout=timeout or None)
        except TimeoutError:
            return None

    @staticmethod
    def _message_from_delivery(incoming: t.Any, state: MessageState) -> Message:
        message = decode_message(incoming.body)
        message.identifier = str(incoming.delivery_tag)
        message.state = state
        return message

    async def count(self) -> int:
        """Number of messages ready in this instance's queue.

        Deliveries that are reserved but not yet acknowledged are not counted.
        """
        await self._ensure_client()
        try:
            result = await self._queue.declare(timeout=self._settings.operation_timeout)
        except Exception as e:
            self.logger.exception(f"Failed to get queue size for {self.name}: {e}")
            raise self._operation_error(f"get queue size for {self.name}", e) from e
        return int(result.message_count)


class RabbitmqWorkQueue(AbstractRabbitmqQueue, QueueInterface):
    """A work queue implemented using RabbitMQ.

    The named queue is durable and never auto-deleted; declaring it again
    with the same properties is harmless.
    """

    def __init__(self, name: str, settings: QueueSettings | None = None) -> None:
        super().__init__(name, settings)

        # Deliveries handed out by wait_and_reserve(), by identifier
        self._reserved: dict[str, t.Any] = {}

    async def _declare(self) -> None:
        self._exchange = self._channel.default_exchange
        self._queue = await self._channel.declare_queue(
            self.name,
            durable=True,
            exclusive=False,
            auto_delete=False,
            timeout=self._settings.operation_timeout,
        )
        self.logger.debug(f"Queue declared: {self.name}")

    async def _release(self) -> None:
        # The broker requeues unacknowledged deliveries when the channel closes
        self._reserved.clear()
        await super()._release()

    # ========================================================================
    # Message Operations
    # ========================================================================

    async def publish(self, message: Message) -> None:
        """Publish a persistent message to the queue.

        Returns only after the broker confirmed the message, so a following
        :meth:`count` or :meth:`peek` sees it.
        """
        await self._publish(message, routing_key=self.name, persistent=True)

    async def wait_and_reserve(self, timeout: float | None = None) -> Message | None:
        """Wait for a message and reserve it for processing.

        The message has to be confirmed with :meth:`finish`. If this consumer
        goes away first, the broker delivers it to another consumer.

        Args:
            timeout: Seconds to wait, None or 0 waits until a message arrives

        Returns:
            The reserved message or None if a timeout occurred
        """
        received = await self._receive(timeout)
        if received is None:
            return None

        message, incoming = received
        self._reserved[t.cast("str", message.identifier)] = incoming
        self.logger.debug(f"Reserved message {message.identifier}")
        return message

    async def wait_and_take(self, timeout: float | None = None) -> Message | None:
        """Wait for a message and remove it from the queue at once.

        Args:
            timeout: Seconds to wait, None or 0 waits until a message arrives

        Returns:
            The received message or None if a timeout occurred
        """
        received = await self._receive(timeout)
        if received is None:
            return None

        message, incoming = received
        try:
            await incoming.ack()
        except Exception as e:
            self.logger.exception(f"Failed to acknowledge message: {e}")
            raise self._operation_error("acknowledge message", e) from e

        message.state = MessageState.DONE
        self.logger.debug(f"Took message {message.identifier}")
        return message

    async def _receive(self, timeout: float | None) -> tuple[Message, t.Any] | None:
        """Wait for exactly one delivery with at most one message in flight.

        Returns:
            The decoded message with its unacknowledged delivery, or None if
            a timeout occurred
        """
        channel = await self._ensure_client()
        try:
            await channel.set_qos(prefetch_count=1)
        except Exception as e:
            raise self._operation_error("set prefetch count", e) from e

        async with self._consume(no_ack=False) as inbox:
            incoming = await self._wait_for_delivery(inbox, timeout)

        if incoming is None:
            self.logger.debug(f"No message received within {timeout}s")
            return None

        try:
            message = self._message_from_delivery(incoming, MessageState.RECEIVED)
        except MessageDecodeError:
            self.logger.warning(
                f"Rejecting undecodable delivery {incoming.delivery_tag}"
            )
            await incoming.reject(requeue=False)
            raise

        return message, incoming

    async def finish(self, message: Message) -> bool:
        """Mark a reserved message as done.

        Returns:
            True if the message was acknowledged, False if this queue holds no
            open reservation for it or it was already acknowledged

        Raises:
            MessageIdentifierMissingError: If the message was not received
                through wait_and_reserve()
            QueueConnectionError: If the channel is gone
        """
        if message.identifier is None:
            raise MessageIdentifierMissingError(
                "Message has no identifier; only messages returned by "
                "wait_and_reserve() can be finished"
            )

        incoming = self._reserved.get(message.identifier)
        # Delivery tags are per channel, so another instance's message can
        # carry the identifier of one of our reservations.
        if incoming is None or bytes(incoming.body) != message.original_value:
            self.logger.warning(
                f"Message {message.identifier} is not reserved on this queue"
            )
            return False
        del self._reserved[message.identifier]

        imports = _get_aio_pika_imports()
        try:
            await incoming.ack()
        except imports["MessageProcessError"] as e:
            self.logger.warning(f"Message {message.identifier} was not acknowledged: {e}")
            return False
        except Exception as e:
            self.logger.exception(f"Failed to acknowledge message: {e}")
            raise self._operation_error("acknowledge message", e) from e

        message.state = MessageState.DONE
        self.logger.debug(f"Finished message {message.identifier}")
        return True

    async def peek(self, limit: int = 1) -> list[Message]:
        """Peek for messages.

        Fetches up to ``limit`` messages from the head of the queue and puts
        them back in their original order. While they are out, another
        consumer may receive them, so never process a peeked message.
        """
        if limit < 1 or await self.count() == 0:
            return []

        fetched: list[t.Any] = []
        try:
            for _ in range(limit):
                incoming = await self._queue.get(
                    no_ack=False,
                    fail=False,
                    timeout=self._settings.operation_timeout,
                )
                if incoming is None:
                    break
                fetched.append(incoming)
        except Exception as e:
            self.logger.exception(f"Failed to fetch message for peek: {e}")
            raise self._operation_error("fetch message", e) from e
        finally:
            await self._requeue(fetched)

        messages = []
        for incoming in fetched:
            try:
                message = decode_message(incoming.body)
            except MessageDecodeError as e:
                self.logger.warning(f"Skipping undecodable message in peek: {e}")
                continue
            message.state = MessageState.PUBLISHED
            messages.append(message)
        return messages

    async def _requeue(self, fetched: list[t.Any]) -> None:
        """Put peeked deliveries back at the head of the queue."""
        if not fetched:
            return
        try:
            if self._reserved:
                # A multiple nack would also requeue the open reservations
                for incoming in reversed(fetched):
                    await incoming.nack(requeue=True)
            else:
                await fetched[-1].nack(multiple=True, requeue=True)
        except Exception as e:
            self.logger.exception(f"Failed to requeue peeked messages: {e}")
            raise self._operation_error("requeue peeked messages", e) from e

    async def get_message(self, identifier: str) -> Message | None:
        """Not supported by RabbitMQ; always None."""
        self.logger.debug(f"Lookup by identifier is not supported: {identifier}")
        return None

    # ========================================================================
    # Queue Management
    # ========================================================================

    async def purge(self) -> int:
        """Remove all ready messages from the queue.

        Returns:
            Number of messages purged
        """
        await self._ensure_client()
        try:
            result = await self._queue.purge(timeout=self._settings.operation_timeout)
        except Exception as e:
            self.logger.exception(f"Failed to purge queue {self.name}: {e}")
            raise self._operation_error(f"purge queue {self.name}", e) from e

        self.logger.info(f"Purged {result.message_count} messages from queue {self.name}")
        return int(result.message_count)
