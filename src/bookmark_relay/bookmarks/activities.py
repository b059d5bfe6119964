"""Workflow-facing operations: publish a message, or suspend until one arrives."""

from __future__ import annotations

import logging

from bookmark_relay.bookmarks.registry import Bookmark, BookmarkRegistry
from bookmark_relay.engine.base import WorkflowEngine
from bookmark_relay.errors import ChannelNotOpenError, NotConnectedError
from bookmark_relay.messaging.channel import MessageChannel

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Hello"
WAIT_ACTIVITY = "WaitMessage"


class MessageActivities:
    """Adapters a workflow engine calls from inside an activity.

    Neither operation blocks waiting for a message. `suspend` only registers
    the bookmark and returns, releasing the activity back to the engine.
    """

    def __init__(
        self,
        *,
        channel: MessageChannel,
        registry: BookmarkRegistry,
        engine: WorkflowEngine,
    ) -> None:
        self.channel = channel
        self.registry = registry
        self.engine = engine

    def publish(self, text: str = DEFAULT_MESSAGE) -> None:
        """Publish `text` to the exchange.

        Raises:
            NotConnectedError: The channel is not connected. Nothing is sent.
        """
        try:
            self.channel.publish(text)
        except ChannelNotOpenError as e:
            raise NotConnectedError("Message channel is not connected") from e
        logger.info("Published message", extra={"size": len(text)})

    def suspend(
        self,
        resume_on: str,
        *,
        activity: str = WAIT_ACTIVITY,
        resume_token: str | None = None,
    ) -> Bookmark:
        """Suspend the calling activity until a message equal to `resume_on` arrives.

        Args:
            resume_on: Condition an inbound message must equal.
            activity: Name the engine records for the suspended activity.
            resume_token: Continuation the engine runs after resuming.

        Returns:
            The registered bookmark.
        """
        if not resume_on.strip():
            raise ValueError("resume_on must not be blank")

        bookmark_id = self.engine.create_bookmark(activity, resume_token)
        bookmark = Bookmark(id=bookmark_id, condition=resume_on)
        self.registry.register(bookmark)
        logger.info(
            "Activity suspended",
            extra={"bookmark_id": bookmark_id, "condition": resume_on, "activity": activity},
        )
        return bookmark
