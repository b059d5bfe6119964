from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class AckDecision(str, Enum):
    ACK = "ack"
    NACK_REQUEUE = "nack_requeue"
    NACK_DROP = "nack_drop"


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class Envelope:
    """A single broker delivery, owned by one handler until it is settled."""

    payload: bytes
    delivery_tag: int
    redelivered: bool = False
    queue: str = ""
    received_at: datetime = field(default_factory=_utc_now)


DeliveryHandler = Callable[[Envelope], AckDecision]
