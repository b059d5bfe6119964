"""Log-only delivery handler for a standalone subscriber process."""

from __future__ import annotations

import logging

from bookmark_relay.bookmarks.dispatcher import decode_condition
from bookmark_relay.errors import DecodeError
from bookmark_relay.messaging.envelope import AckDecision, DeliveryHandler, Envelope

logger = logging.getLogger(__name__)


def logging_handler(queue_name: str, *, source: str = "workflow") -> DeliveryHandler:
    """Build a handler that logs every payload and acknowledges it."""

    def _handle(envelope: Envelope) -> AckDecision:
        try:
            text = decode_condition(envelope.payload)
        except DecodeError as e:
            logger.warning(
                "Received undecodable message: %s",
                e,
                extra={"queue": queue_name, "size": len(envelope.payload)},
            )
            return AckDecision.ACK

        logger.info(
            "Message received",
            extra={
                "payload": text,
                "received_at": envelope.received_at.isoformat(),
                "source": source,
                "queue": queue_name,
                "redelivered": envelope.redelivered,
            },
        )
        return AckDecision.ACK

    return _handle
