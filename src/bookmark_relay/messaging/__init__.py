"""AMQP transport."""

from bookmark_relay.messaging.channel import MessageChannel
from bookmark_relay.messaging.envelope import AckDecision, DeliveryHandler, Envelope

__all__ = ["AckDecision", "DeliveryHandler", "Envelope", "MessageChannel"]
