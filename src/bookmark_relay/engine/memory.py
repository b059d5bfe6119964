"""Process-local workflow engine used by the CLI, examples and tests."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from bookmark_relay.engine.base import ResumeResult, WorkflowEngine

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class ResumedActivity:
    bookmark_id: str
    name: str
    resume_token: str | None
    resume_input: str
    resumed_at: datetime = field(default_factory=_utc_now)


@dataclass
class _PendingBookmark:
    name: str
    resume_token: str | None
    created_at: datetime = field(default_factory=_utc_now)
    done: threading.Event = field(default_factory=threading.Event)
    result: ResumedActivity | None = None


class InMemoryWorkflowEngine(WorkflowEngine):
    """Keeps suspended activities in memory and records every resume.

    A finished bookmark is kept until `wait_for` has returned it once. The
    `resumed` history is never trimmed, so long-running processes should read
    and clear it themselves.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, _PendingBookmark] = {}
        self._finished: dict[str, _PendingBookmark] = {}
        self.resumed: list[ResumedActivity] = []

    def create_bookmark(self, name: str, resume_token: str | None = None) -> str:
        bookmark_id = uuid.uuid4().hex
        with self._lock:
            self._pending[bookmark_id] = _PendingBookmark(name=name, resume_token=resume_token)
        logger.debug("Bookmark created", extra={"bookmark_id": bookmark_id, "activity": name})
        return bookmark_id

    def resume(self, bookmark_id: str, resume_input: str) -> ResumeResult:
        with self._lock:
            pending = self._pending.pop(bookmark_id, None)
            if pending is None:
                return ResumeResult(bookmark_id=bookmark_id, matched=False)
            activity = ResumedActivity(
                bookmark_id=bookmark_id,
                name=pending.name,
                resume_token=pending.resume_token,
                resume_input=resume_input,
            )
            pending.result = activity
            self._finished[bookmark_id] = pending
            self.resumed.append(activity)
        pending.done.set()
        logger.info(
            "Activity resumed",
            extra={"bookmark_id": bookmark_id, "activity": pending.name},
        )
        return ResumeResult(bookmark_id=bookmark_id, matched=True)

    def cancel(self, bookmark_id: str) -> bool:
        """Forget a bookmark without resuming it (e.g. the activity timed out)."""
        with self._lock:
            pending = self._pending.pop(bookmark_id, None)
            if pending is None:
                return False
            self._finished[bookmark_id] = pending
        pending.done.set()
        return True

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def wait_for(self, bookmark_id: str, timeout: float | None = None) -> ResumedActivity | None:
        """Block until the bookmark is resumed or cancelled.

        Returns None on timeout, on cancellation, or for an unknown id.
        """
        with self._lock:
            entry = self._pending.get(bookmark_id) or self._finished.get(bookmark_id)
        if entry is None:
            return None
        if entry.done.wait(timeout):
            with self._lock:
                if self._finished.get(bookmark_id) is entry:
                    del self._finished[bookmark_id]
        return entry.result
