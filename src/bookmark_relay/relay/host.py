"""Hosting wrapper wiring the channel, registry, dispatcher and activities."""

from __future__ import annotations

import logging

from bookmark_relay.bookmarks.activities import MessageActivities
from bookmark_relay.bookmarks.dispatcher import RedeliveryPolicy, ResumptionDispatcher
from bookmark_relay.bookmarks.registry import BookmarkRegistry
from bookmark_relay.engine.base import WorkflowEngine
from bookmark_relay.errors import BrokerConnectionError
from bookmark_relay.messaging.channel import MessageChannel
from bookmark_relay.relay.config import RelaySettings

logger = logging.getLogger(__name__)


class RelayHost:
    """Owns the lifetime of one relay: a channel, its registry and its dispatcher.

    Nothing here is global. Build one host per process (or per test) and pass
    `host.activities` to the workflow engine's activities.
    """

    def __init__(
        self,
        *,
        settings: RelaySettings,
        engine: WorkflowEngine,
        channel: MessageChannel | None = None,
        registry: BookmarkRegistry | None = None,
    ) -> None:
        self.settings = settings
        self.queue_name = settings.broker.queue_name
        self.registry = registry if registry is not None else BookmarkRegistry()
        self.channel = channel if channel is not None else MessageChannel.from_settings(settings)
        self.dispatcher = ResumptionDispatcher(
            registry=self.registry,
            engine=engine,
            redelivery=RedeliveryPolicy(requeue_redelivered=settings.requeue_redelivered),
        )
        self.activities = MessageActivities(
            channel=self.channel,
            registry=self.registry,
            engine=engine,
        )

    def start(self) -> None:
        logger.info("Starting relay", extra={"queue": self.queue_name})
        try:
            self.channel.connect()
        except BrokerConnectionError:
            logger.exception("Failed to connect to broker")
            raise
        try:
            self.channel.subscribe(self.queue_name, self.dispatcher)
        except Exception:
            self.channel.disconnect()
            raise
        logger.info("Relay running", extra={"queue": self.queue_name})

    def stop(self) -> None:
        logger.info("Stopping relay", extra={"queue": self.queue_name})
        try:
            self.channel.disconnect()
        except Exception:
            logger.exception("Error occurred while disconnecting from broker")
        pending = len(self.registry)
        if pending:
            logger.warning(
                "Relay stopped with pending bookmarks; they are lost",
                extra={"pending": pending},
            )

    def __enter__(self) -> RelayHost:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
