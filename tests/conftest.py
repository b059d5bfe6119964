"""Test configuration and fixtures.

`FakeBroker` stands in for RabbitMQ: fanout exchanges, durable queues, one
consumer per queue, manual ack/nack with requeue. Its connections mimic the
parts of `pika.BlockingConnection` the relay uses, including
`add_callback_threadsafe` and `process_data_events`.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable, Iterator
from types import SimpleNamespace
from typing import Any

import pika
import pika.exceptions
import pytest

from bookmark_relay.messaging.channel import MessageChannel
from bookmark_relay.relay.config import BrokerSettings, RelaySettings


class FakeChannel:
    def __init__(self, connection: FakeConnection) -> None:
        self.connection = connection
        self.broker = connection.broker
        self.is_open = True
        self.prefetch_count: int | None = None
        self.acked: list[bytes] = []
        self.nacked: list[tuple[bytes, bool]] = []
        self._callbacks: dict[str, Callable[..., None]] = {}
        self._unacked: dict[int, tuple[str, bytes]] = {}
        self._next_tag = 0

    def exchange_declare(self, exchange: str, exchange_type: Any, durable: bool = False) -> None:
        with self.broker.lock:
            self.broker.exchanges[exchange] = (str(getattr(exchange_type, "value", exchange_type)), durable)
            self.broker.bindings.setdefault(exchange, [])

    def basic_qos(self, prefetch_count: int = 0) -> None:
        self.prefetch_count = prefetch_count

    def queue_declare(
        self, queue: str, durable: bool = False, arguments: dict[str, Any] | None = None
    ) -> None:
        with self.broker.lock:
            self.broker.queues.setdefault(queue, (durable, arguments))

    def queue_bind(self, queue: str, exchange: str, routing_key: str | None = None) -> None:
        with self.broker.lock:
            if exchange not in self.broker.exchanges:
                raise pika.exceptions.ChannelClosedByBroker(404, f"no exchange '{exchange}'")
            bound = self.broker.bindings[exchange]
            if queue not in bound:
                bound.append(queue)
            self.broker.routing_keys[(exchange, queue)] = routing_key

    def basic_consume(
        self, queue: str, on_message_callback: Callable[..., None], auto_ack: bool = False
    ) -> str:
        with self.broker.lock:
            self.broker.auto_ack[queue] = auto_ack
            self._callbacks[queue] = on_message_callback
            self.broker.consumers[queue] = self
            backlog = self.broker.backlog.pop(queue, [])
            for body, redelivered in backlog:
                self.deliver(queue, body, redelivered)
        return f"ctag-{queue}"

    def basic_publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        properties: pika.BasicProperties | None = None,
    ) -> None:
        with self.broker.lock:
            self.broker.published.append((exchange, routing_key, body, properties))
            for queue_name in self.broker.bindings.get(exchange, []):
                self.broker.enqueue(queue_name, body, redelivered=False)

    def deliver(self, queue_name: str, body: bytes, redelivered: bool) -> None:
        self._next_tag += 1
        tag = self._next_tag
        self._unacked[tag] = (queue_name, body)
        method = SimpleNamespace(delivery_tag=tag, redelivered=redelivered, routing_key="")
        callback = self._callbacks[queue_name]
        self.connection.add_callback_threadsafe(
            lambda: callback(self, method, pika.BasicProperties(), body)
        )

    def basic_ack(self, delivery_tag: int) -> None:
        with self.broker.lock:
            _, body = self._unacked.pop(delivery_tag)
            self.acked.append(body)

    def basic_nack(self, delivery_tag: int, requeue: bool = True) -> None:
        with self.broker.lock:
            queue_name, body = self._unacked.pop(delivery_tag)
            self.nacked.append((body, requeue))
            if requeue:
                self.broker.enqueue(queue_name, body, redelivered=True)

    def close(self) -> None:
        with self.broker.lock:
            self.is_open = False
            for queue_name in list(self._callbacks):
                if self.broker.consumers.get(queue_name) is self:
                    del self.broker.consumers[queue_name]
            for queue_name, body in self._unacked.values():
                self.broker.enqueue(queue_name, body, redelivered=True)
            self._unacked.clear()


class FakeConnection:
    def __init__(self, broker: FakeBroker, parameters: pika.ConnectionParameters) -> None:
        self.broker = broker
        self.parameters = parameters
        self.is_open = True
        self.channels: list[FakeChannel] = []
        self._pending: queue.Queue[Callable[[], None]] = queue.Queue()

    def channel(self) -> FakeChannel:
        channel = FakeChannel(self)
        self.channels.append(channel)
        return channel

    def add_callback_threadsafe(self, callback: Callable[[], None]) -> None:
        if not self.is_open:
            raise pika.exceptions.ConnectionWrongStateError("connection is closed")
        self._pending.put(callback)

    def process_data_events(self, time_limit: float = 0) -> None:
        try:
            callback = self._pending.get(timeout=time_limit)
        except queue.Empty:
            return
        callback()
        while True:
            try:
                callback = self._pending.get_nowait()
            except queue.Empty:
                return
            callback()

    def close(self) -> None:
        for channel in self.channels:
            if channel.is_open:
                channel.close()
        self.is_open = False


class FakeBroker:
    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.refuse_connections = False
        self.connections: list[FakeConnection] = []
        self.exchanges: dict[str, tuple[str, bool]] = {}
        self.bindings: dict[str, list[str]] = {}
        self.routing_keys: dict[tuple[str, str], str | None] = {}
        self.queues: dict[str, tuple[bool, dict[str, Any] | None]] = {}
        self.consumers: dict[str, FakeChannel] = {}
        self.auto_ack: dict[str, bool] = {}
        self.backlog: dict[str, list[tuple[bytes, bool]]] = {}
        self.published: list[tuple[str, str, bytes, pika.BasicProperties | None]] = []

    def connect(self, parameters: pika.ConnectionParameters) -> FakeConnection:
        if self.refuse_connections:
            raise pika.exceptions.AMQPConnectionError("connection refused")
        connection = FakeConnection(self, parameters)
        with self.lock:
            self.connections.append(connection)
        return connection

    def enqueue(self, queue_name: str, body: bytes, *, redelivered: bool) -> None:
        with self.lock:
            consumer = self.consumers.get(queue_name)
            if consumer is not None and consumer.is_open:
                consumer.deliver(queue_name, body, redelivered)
            else:
                self.backlog.setdefault(queue_name, []).append((body, redelivered))

    def acked(self) -> list[bytes]:
        with self.lock:
            return [body for conn in self.connections for ch in conn.channels for body in ch.acked]

    def nacked(self) -> list[tuple[bytes, bool]]:
        with self.lock:
            return [item for conn in self.connections for ch in conn.channels for item in ch.nacked]


@pytest.fixture
def fake_broker() -> FakeBroker:
    """Provide an in-process broker."""
    return FakeBroker()


@pytest.fixture
def relay_settings() -> RelaySettings:
    """Provide fast-polling relay settings for tests."""
    return RelaySettings(
        prefetch_count=5,
        worker_threads=2,
        poll_interval_seconds=0.01,
        call_timeout_seconds=2.0,
        broker=BrokerSettings(
            host_name="broker.test",
            exchange_name="Default",
            queue_name="relay-queue",
        ),
    )


@pytest.fixture
def make_channel(
    fake_broker: FakeBroker, relay_settings: RelaySettings
) -> Iterator[Callable[..., MessageChannel]]:
    """Build message channels wired to the fake broker; disconnected on teardown."""
    created: list[MessageChannel] = []

    def _make(settings: RelaySettings | None = None) -> MessageChannel:
        channel = MessageChannel.from_settings(
            settings or relay_settings, connection_factory=fake_broker.connect
        )
        created.append(channel)
        return channel

    yield _make

    for channel in created:
        channel.disconnect()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Poll a predicate until it holds or the timeout expires."""

    def _wait(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.005)
        return predicate()

    return _wait
