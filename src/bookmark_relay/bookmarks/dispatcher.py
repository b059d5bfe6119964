"""Match inbound messages against registered bookmarks and resume them.

Each delivery goes through: decode -> match -> resume every candidate -> decide.
Failures are contained here and turned into an ack decision; nothing raised
while handling a message reaches the consume loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from bookmark_relay.bookmarks.registry import Bookmark, BookmarkRegistry
from bookmark_relay.engine.base import WorkflowEngine
from bookmark_relay.errors import DecodeError, ResumeAttemptError
from bookmark_relay.messaging.envelope import AckDecision, Envelope

logger = logging.getLogger(__name__)


def decode_condition(payload: bytes) -> str:
    """Turn a message payload into the condition string it carries."""
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"Payload is not valid UTF-8: {exc.reason}") from exc
    if not text.strip():
        raise DecodeError("Payload is empty")
    return text


@dataclass(frozen=True, slots=True)
class RedeliveryPolicy:
    """Decide how to nack a message whose handling raised.

    A message is requeued once. If it fails again after redelivery it is
    dropped (dead-lettered when the queue has a dead-letter exchange), unless
    `requeue_redelivered` is set.
    """

    requeue_redelivered: bool = False

    def decide(self, envelope: Envelope) -> AckDecision:
        if envelope.redelivered and not self.requeue_redelivered:
            return AckDecision.NACK_DROP
        return AckDecision.NACK_REQUEUE


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    condition: str | None
    decision: AckDecision
    attempted: tuple[str, ...] = ()
    resumed: tuple[str, ...] = ()
    unmatched: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()


@dataclass
class _Progress:
    attempted: list[str] = field(default_factory=list)
    resumed: list[str] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def outcome(self, condition: str | None, decision: AckDecision) -> DispatchOutcome:
        return DispatchOutcome(
            condition=condition,
            decision=decision,
            attempted=tuple(self.attempted),
            resumed=tuple(self.resumed),
            unmatched=tuple(self.unmatched),
            failed=tuple(self.failed),
        )


class ResumptionDispatcher:
    """Delivery handler resuming every bookmark whose condition equals the payload.

    Instances are callable so they can be passed straight to
    `MessageChannel.subscribe`.
    """

    def __init__(
        self,
        *,
        registry: BookmarkRegistry,
        engine: WorkflowEngine,
        redelivery: RedeliveryPolicy | None = None,
        prune_unmatched: bool = True,
    ) -> None:
        self.registry = registry
        self.engine = engine
        self.redelivery = redelivery or RedeliveryPolicy()
        self.prune_unmatched = prune_unmatched

    def __call__(self, envelope: Envelope) -> AckDecision:
        return self.dispatch(envelope).decision

    def dispatch(self, envelope: Envelope) -> DispatchOutcome:
        log_extra = {"queue": envelope.queue, "delivery_tag": envelope.delivery_tag}

        try:
            condition = decode_condition(envelope.payload)
        except DecodeError as e:
            # Poison messages are never requeued.
            logger.error(
                "Dropping undecodable message: %s",
                e,
                extra={**log_extra, "redelivered": envelope.redelivered},
            )
            return DispatchOutcome(condition=None, decision=AckDecision.ACK)

        log_extra["condition"] = condition
        progress = _Progress()
        try:
            candidates = self.registry.find_by_condition(condition)
            if not candidates:
                logger.info("No bookmarks waiting on message", extra=log_extra)
                return progress.outcome(condition, AckDecision.ACK)

            for bookmark in candidates:
                progress.attempted.append(bookmark.id)
                try:
                    matched = self._resume(bookmark, condition)
                except ResumeAttemptError as e:
                    progress.failed.append(bookmark.id)
                    logger.exception(
                        "Resume attempt failed",
                        extra={**log_extra, "bookmark_id": e.bookmark_id},
                    )
                    continue
                if matched:
                    progress.resumed.append(bookmark.id)
                else:
                    progress.unmatched.append(bookmark.id)

        except Exception:
            decision = self.redelivery.decide(envelope)
            logger.exception(
                "Message handling failed",
                extra={
                    **log_extra,
                    "redelivered": envelope.redelivered,
                    "decision": decision.value,
                },
            )
            return progress.outcome(condition, decision)

        logger.info(
            "Message dispatched",
            extra={
                **log_extra,
                "resumed": len(progress.resumed),
                "unmatched": len(progress.unmatched),
                "failed": len(progress.failed),
            },
        )
        return progress.outcome(condition, AckDecision.ACK)

    def _resume(self, bookmark: Bookmark, resume_input: str) -> bool:
        try:
            result = self.engine.resume(bookmark.id, resume_input)
        except Exception as exc:
            raise ResumeAttemptError(bookmark.id, str(exc) or type(exc).__name__) from exc

        if result.matched:
            self.registry.remove(bookmark.id)
            return True

        logger.warning(
            "Engine no longer knows bookmark",
            extra={"bookmark_id": bookmark.id, "condition": bookmark.condition},
        )
        if self.prune_unmatched:
            self.registry.remove(bookmark.id)
        return False
