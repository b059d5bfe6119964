"""AMQP message channel built on pika's blocking connection.

pika connections are not thread safe. After `connect()` a single I/O thread owns
the connection: it drives `process_data_events`, receives deliveries and
settles acks. Calls made from any other thread (publish, subscribe) are
marshalled onto it with `add_callback_threadsafe`. Delivery handlers run on a
thread pool per subscribed queue so a slow handler never stalls the I/O thread
or the other queues.
"""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, TypeVar

import pika
import pika.exceptions
from pika.adapters.blocking_connection import BlockingChannel, BlockingConnection
from pika.exchange_type import ExchangeType

from bookmark_relay.errors import BrokerConnectionError, ChannelNotOpenError
from bookmark_relay.messaging.envelope import AckDecision, DeliveryHandler, Envelope
from bookmark_relay.relay.config import RelaySettings

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[pika.ConnectionParameters], BlockingConnection]

T = TypeVar("T")

_CLOSE_ERRORS = (pika.exceptions.AMQPError, OSError)

# Persistent delivery mode.
_PERSISTENT = 2


class MessageChannel:
    """One broker connection, one channel, one fanout exchange."""

    def __init__(
        self,
        *,
        parameters: pika.ConnectionParameters,
        exchange_name: str = "Default",
        prefetch_count: int = 10,
        worker_threads: int = 4,
        poll_interval_seconds: float = 0.5,
        call_timeout_seconds: float = 30.0,
        dead_letter_exchange: str | None = None,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self.parameters = parameters
        self.exchange_name = exchange_name
        self.prefetch_count = prefetch_count
        self.worker_threads = worker_threads
        self.poll_interval_seconds = poll_interval_seconds
        self.call_timeout_seconds = call_timeout_seconds
        self.dead_letter_exchange = dead_letter_exchange
        self._connection_factory: ConnectionFactory = connection_factory or BlockingConnection

        self._lock = threading.RLock()
        self._stopping = threading.Event()
        self._connection: BlockingConnection | None = None
        self._channel: BlockingChannel | None = None
        self._io_thread: threading.Thread | None = None
        self._executors: dict[str, ThreadPoolExecutor] = {}
        self._consumers: dict[str, str] = {}

    @classmethod
    def from_settings(
        cls,
        settings: RelaySettings,
        *,
        connection_factory: ConnectionFactory | None = None,
    ) -> MessageChannel:
        return cls(
            parameters=settings.broker.connection_parameters(),
            exchange_name=settings.broker.exchange_name,
            prefetch_count=settings.prefetch_count,
            worker_threads=settings.worker_threads,
            poll_interval_seconds=settings.poll_interval_seconds,
            call_timeout_seconds=settings.call_timeout_seconds,
            dead_letter_exchange=settings.dead_letter_exchange,
            connection_factory=connection_factory,
        )

    @property
    def is_open(self) -> bool:
        connection, channel = self._connection, self._channel
        return (
            connection is not None
            and connection.is_open
            and channel is not None
            and channel.is_open
        )

    @property
    def subscriptions(self) -> dict[str, str]:
        """Subscribed queue names mapped to their consumer tags."""
        with self._lock:
            return dict(self._consumers)

    def __enter__(self) -> MessageChannel:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    # -- lifecycle -----------------------------------------------------------

    def connect(self) -> None:
        """Open the connection and channel unless already open; declare the exchange."""
        with self._lock:
            if self.is_open:
                return
            if self._connection is not None:
                # A previous connection died underneath us.
                self._teardown()

            host = f"{self.parameters.host}:{self.parameters.port}"
            logger.info("Connecting to broker", extra={"broker": host})
            connection: BlockingConnection | None = None
            try:
                connection = self._connection_factory(self.parameters)
                channel = connection.channel()
                channel.exchange_declare(
                    exchange=self.exchange_name,
                    exchange_type=ExchangeType.fanout,
                    durable=True,
                )
                if self.dead_letter_exchange:
                    channel.exchange_declare(
                        exchange=self.dead_letter_exchange,
                        exchange_type=ExchangeType.fanout,
                        durable=True,
                    )
                channel.basic_qos(prefetch_count=self.prefetch_count)
            except pika.exceptions.AMQPError as exc:
                if connection is not None and connection.is_open:
                    try:
                        connection.close()
                    except _CLOSE_ERRORS:
                        logger.debug("Ignoring close failure after connect error", exc_info=True)
                raise BrokerConnectionError(f"Unable to connect to broker at {host}") from exc

            self._connection = connection
            self._channel = channel
            self._stopping.clear()
            self._io_thread = threading.Thread(
                target=self._io_loop,
                args=(connection,),
                name=f"amqp-io-{self.exchange_name}",
                daemon=True,
            )
            self._io_thread.start()
            logger.info(
                "Connected to broker",
                extra={"broker": host, "exchange": self.exchange_name},
            )

    def disconnect(self) -> None:
        """Close channel then connection. Safe to call repeatedly.

        Close failures are logged, not raised. Deliveries still waiting for a
        handler are abandoned; the broker redelivers them.
        """
        with self._lock:
            if self._connection is None and self._io_thread is None:
                return
            self._teardown()
            logger.info("Disconnected from broker", extra={"exchange": self.exchange_name})

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the I/O loop has stopped. Returns False on timeout."""
        thread = self._io_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # -- operations ----------------------------------------------------------

    def publish(self, message: bytes | str) -> None:
        """Publish to the fanout exchange; every bound queue receives a copy."""
        body = message.encode("utf-8") if isinstance(message, str) else message
        with self._lock:
            channel = self._require_channel()
            self._call(
                channel.basic_publish,
                exchange=self.exchange_name,
                routing_key="",
                body=body,
                properties=pika.BasicProperties(
                    content_type="text/plain",
                    delivery_mode=_PERSISTENT,
                ),
            )
        logger.debug(
            "Message published",
            extra={"exchange": self.exchange_name, "size": len(body)},
        )

    def subscribe(self, queue_name: str, handler: DeliveryHandler) -> str:
        """Declare and bind `queue_name`, then consume it with manual acks.

        `handler` runs on the queue's worker pool and returns the ack decision
        for each delivery. Returns the consumer tag.
        """
        with self._lock:
            channel = self._require_channel()
            if queue_name in self._consumers:
                raise ValueError(f"Already subscribed to queue {queue_name!r}")

            self._call(self._declare_queue, channel, queue_name)

            executor = ThreadPoolExecutor(
                max_workers=self.worker_threads,
                thread_name_prefix=f"amqp-{queue_name}",
            )
            self._executors[queue_name] = executor
            try:
                consumer_tag = self._call(
                    channel.basic_consume,
                    queue=queue_name,
                    on_message_callback=functools.partial(
                        self._on_message, queue_name, handler, executor
                    ),
                    auto_ack=False,
                )
            except Exception:
                self._executors.pop(queue_name, None)
                executor.shutdown(wait=False)
                raise
            self._consumers[queue_name] = consumer_tag

        logger.info(
            "Subscribed to queue",
            extra={"queue": queue_name, "exchange": self.exchange_name},
        )
        return consumer_tag

    # -- internals -----------------------------------------------------------

    def _require_channel(self) -> BlockingChannel:
        channel = self._channel
        if not self.is_open or channel is None:
            raise ChannelNotOpenError("Message channel is not open; call connect() first")
        return channel

    def _declare_queue(self, channel: BlockingChannel, queue_name: str) -> None:
        arguments: dict[str, Any] | None = None
        if self.dead_letter_exchange:
            arguments = {"x-dead-letter-exchange": self.dead_letter_exchange}
        channel.queue_declare(queue=queue_name, durable=True, arguments=arguments)
        channel.queue_bind(queue=queue_name, exchange=self.exchange_name, routing_key="")

    def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run `fn` on the I/O thread and wait for its result."""
        thread = self._io_thread
        connection = self._connection
        if (
            thread is None
            or connection is None
            or not thread.is_alive()
            or thread is threading.current_thread()
        ):
            return fn(*args, **kwargs)

        future: Future[T] = Future()

        def _invoke() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as exc:  # noqa: BLE001 (handed to the caller)
                future.set_exception(exc)

        try:
            connection.add_callback_threadsafe(_invoke)
        except pika.exceptions.AMQPError as exc:
            raise BrokerConnectionError("Broker connection is closed") from exc

        try:
            return future.result(timeout=self.call_timeout_seconds)
        except FutureTimeoutError as exc:
            future.cancel()
            raise BrokerConnectionError(
                f"Broker call did not complete within {self.call_timeout_seconds}s"
            ) from exc

    def _io_loop(self, connection: BlockingConnection) -> None:
        try:
            while not self._stopping.is_set() and connection.is_open:
                connection.process_data_events(time_limit=self.poll_interval_seconds)
        except pika.exceptions.AMQPError:
            if not self._stopping.is_set():
                logger.exception("Broker connection lost", extra={"exchange": self.exchange_name})
        finally:
            logger.debug("I/O loop stopped", extra={"exchange": self.exchange_name})

    def _on_message(
        self,
        queue_name: str,
        handler: DeliveryHandler,
        executor: ThreadPoolExecutor,
        channel: BlockingChannel,
        method: Any,
        properties: pika.BasicProperties,
        body: bytes,
    ) -> None:
        envelope = Envelope(
            payload=body,
            delivery_tag=method.delivery_tag,
            redelivered=bool(method.redelivered),
            queue=queue_name,
        )
        connection = self._connection
        try:
            executor.submit(self._handle, connection, channel, handler, envelope)
        except RuntimeError:
            # Executor already shut down; leave the delivery for the broker.
            logger.warning(
                "Delivery arrived during shutdown",
                extra={"queue": queue_name, "delivery_tag": envelope.delivery_tag},
            )

    def _handle(
        self,
        connection: BlockingConnection | None,
        channel: BlockingChannel,
        handler: DeliveryHandler,
        envelope: Envelope,
    ) -> None:
        try:
            decision = handler(envelope)
        except Exception:
            logger.exception(
                "Delivery handler raised; requeueing",
                extra={"queue": envelope.queue, "delivery_tag": envelope.delivery_tag},
            )
            decision = AckDecision.NACK_REQUEUE
        else:
            try:
                decision = AckDecision(decision)
            except ValueError:
                logger.error(
                    "Delivery handler returned %r; requeueing",
                    decision,
                    extra={"queue": envelope.queue, "delivery_tag": envelope.delivery_tag},
                )
                decision = AckDecision.NACK_REQUEUE

        if connection is None:
            return
        settle = functools.partial(self._settle, channel, envelope, decision)
        try:
            connection.add_callback_threadsafe(settle)
        except pika.exceptions.AMQPError:
            logger.warning(
                "Connection closed before delivery was settled",
                extra={"queue": envelope.queue, "delivery_tag": envelope.delivery_tag},
            )

    def _settle(
        self, channel: BlockingChannel, envelope: Envelope, decision: AckDecision
    ) -> None:
        if not channel.is_open:
            logger.warning(
                "Channel closed before delivery was settled",
                extra={"queue": envelope.queue, "delivery_tag": envelope.delivery_tag},
            )
            return
        if decision is AckDecision.ACK:
            channel.basic_ack(delivery_tag=envelope.delivery_tag)
        else:
            channel.basic_nack(
                delivery_tag=envelope.delivery_tag,
                requeue=decision is AckDecision.NACK_REQUEUE,
            )

    def _teardown(self) -> None:
        self._stopping.set()
        thread = self._io_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.call_timeout_seconds)
        self._io_thread = None

        for executor in self._executors.values():
            executor.shutdown(wait=False, cancel_futures=True)
        self._executors.clear()
        self._consumers.clear()

        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None

        if channel is not None and channel.is_open:
            try:
                channel.close()
            except _CLOSE_ERRORS:
                logger.warning("Failed to close channel", exc_info=True)
        if connection is not None and connection.is_open:
            try:
                connection.close()
            except _CLOSE_ERRORS:
                logger.warning("Failed to close connection", exc_info=True)
