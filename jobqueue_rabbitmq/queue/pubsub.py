"""RabbitMQ Publish/Subscribe Queue for jobqueue-rabbitmq.

Unlike a work queue, a pub/sub queue doesn't work with one named queue. It
publishes to a fanout exchange, which copies every message to all bound
queues, and subscribes through a private, broker-named queue that is bound to
that exchange and disappears with the connection.

Example:
    ```python
    from jobqueue_rabbitmq import Message, RabbitmqPubSubQueue


    def announce(message, exchange_name):
        print(f"{exchange_name}: {message.payload}")


    async with RabbitmqPubSubQueue("events", on_message_received=announce) as queue:
        await queue.publish(Message("cache flushed"))
        messages = await queue.subscribe(message_limit=10, timeout=1.0)
    ```
"""

import asyncio
import inspect
import typing as t

from jobqueue_rabbitmq.config import QueueSettings

from ._base import Message, MessageDecodeError, MessageState
from .rabbitmq import AbstractRabbitmqQueue, _get_aio_pika_imports

# Called with the received message and the exchange it was published to
MessageHandler = t.Callable[[Message, str], t.Any]


class RabbitmqPubSubQueue(AbstractRabbitmqQueue):
    """Publish/Subscribe messaging with a RabbitMQ fanout exchange.

    Every instance is both a publisher (to the exchange) and a subscriber
    (from its own bound queue). Messages published before an instance
    connected are never delivered to it.
    """

    def __init__(
        self,
        name: str,
        settings: QueueSettings | None = None,
        on_message_received: MessageHandler | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            name: Name of the exchange (not the queue!) messages are published to
            settings: Connection settings; ``durable_exchange`` controls
                whether the exchange survives a broker restart
            on_message_received: Hook called for every message received by
                :meth:`subscribe`
        """
        super().__init__(name, settings)
        self.exchange_name = name
        self.on_message_received = on_message_received

        # Deliveries consumed but not yet returned by subscribe(). They are
        # already acknowledged, so they must survive between calls.
        self._backlog: asyncio.Queue[t.Any] = asyncio.Queue()

    @property
    def queue_name(self) -> str | None:
        """Broker-generated name of the private subscriber queue."""
        return None if self._queue is None else self._queue.name

    async def _declare(self) -> None:
        ExchangeType = _get_aio_pika_imports()["ExchangeType"]
        timeout = self._settings.operation_timeout

        self._exchange = await self._channel.declare_exchange(
            self.exchange_name,
            ExchangeType.FANOUT,
            durable=self._settings.durable_exchange,
            auto_delete=False,
            timeout=timeout,
        )
        # Exclusive queues are deleted with their connection. auto_delete would
        # also drop the queue when subscribe() cancels its consumer.
        self._queue = await self._channel.declare_queue(
            None,
            durable=False,
            exclusive=True,
            auto_delete=False,
            timeout=timeout,
        )
        await self._queue.bind(self._exchange, timeout=timeout)
        self.logger.debug(
            f"Queue {self._queue.name} bound to exchange {self.exchange_name}"
        )

    async def _release(self) -> None:
        # Buffered deliveries die with the private queue
        self._backlog = asyncio.Queue()
        await super()._release()

    async def publish(self, message: Message) -> None:
        """Publish a message to every queue bound to the exchange."""
        await self._publish(message, routing_key="", persistent=False, mandatory=False)

    async def subscribe(
        self,
        message_limit: int | None = None,
        timeout: float | None = None,
        handler: MessageHandler | None = None,
    ) -> list[Message]:
        """Receive messages until one of the conditions is met.

        Stops once ``message_limit`` messages were received, or once waiting
        for the next message takes longer than ``timeout`` seconds. Without
        either (a timeout of 0 counts as none), it runs until the calling task
        is cancelled.

        Deliveries the broker pushed beyond ``message_limit`` are kept and
        returned first by the next call. Closing the queue discards them.

        The ``on_message_received`` hook and ``handler`` are called (and
        awaited, if they return an awaitable) for every message before it is
        added to the result.

        Returns:
            All messages received during this call
        """
        await self._ensure_client()
        messages: list[Message] = []

        async with self._consume(no_ack=True, inbox=self._backlog) as inbox:
            while message_limit is None or len(messages) < message_limit:
                incoming = await self._wait_for_delivery(inbox, timeout)
                if incoming is None:
                    break

                try:
                    message = self._message_from_delivery(incoming, MessageState.DONE)
                except MessageDecodeError as e:
                    self.logger.warning(f"Skipping undecodable message: {e}")
                    continue

                await self._emit_message_received(message, handler)
                messages.append(message)

        self.logger.debug(f"Subscription returned {len(messages)} messages")
        return messages

    async def _emit_message_received(
        self,
        message: Message,
        handler: MessageHandler | None,
    ) -> None:
        for callback in (self.on_message_received, handler):
            if callback is None:
                continue
            result = callback(message, self.exchange_name)
            if inspect.isawaitable(result):
                await result

    async def unsubscribe(self) -> None:
        """Nothing to do: a subscription ends when subscribe() returns."""
