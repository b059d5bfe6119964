"""In-memory registry of suspended activities waiting for a message.

The registry is the only state shared between the suspend path (workflow
activities) and the dispatch path (broker deliveries). Its lifetime is owned by
whoever constructs it; nothing here is persisted, so a restart loses every
pending suspension.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime

from bookmark_relay.errors import RegistryInconsistency

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class Bookmark:
    """A suspended activity waiting for a message equal to `condition`."""

    id: str
    condition: str
    created_at: datetime = field(default_factory=_utc_now)


class BookmarkRegistry:
    """Thread-safe mapping from bookmark id to bookmark.

    Iteration order is registration order. Re-registering an id moves it to the
    end, as if it had been registered for the first time.
    """

    def __init__(self, *, strict: bool = False) -> None:
        self._strict = strict
        self._lock = threading.Lock()
        self._entries: dict[str, Bookmark] = {}

    def register(self, bookmark: Bookmark) -> Bookmark | None:
        """Insert a bookmark, returning the entry it replaced (if any).

        A duplicate id is tolerated: the previous entry is overwritten and a
        warning is logged. With `strict=True` the duplicate raises
        `RegistryInconsistency` and the registry is left unchanged.
        """
        with self._lock:
            previous = self._entries.get(bookmark.id)
            if previous is not None:
                inconsistency = RegistryInconsistency(
                    bookmark.id, previous.condition, bookmark.condition
                )
                if self._strict:
                    raise inconsistency
                logger.warning(
                    str(inconsistency),
                    extra={"bookmark_id": bookmark.id, "condition": bookmark.condition},
                )
                del self._entries[bookmark.id]
            self._entries[bookmark.id] = bookmark
            return previous

    def find_by_condition(self, value: str) -> list[Bookmark]:
        with self._lock:
            return [b for b in self._entries.values() if b.condition == value]

    def remove(self, bookmark_id: str) -> Bookmark | None:
        """Delete a bookmark; removing an unknown id is a no-op."""
        with self._lock:
            return self._entries.pop(bookmark_id, None)

    def get(self, bookmark_id: str) -> Bookmark | None:
        with self._lock:
            return self._entries.get(bookmark_id)

    def snapshot(self) -> list[Bookmark]:
        with self._lock:
            return list(self._entries.values())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, bookmark_id: object) -> bool:
        with self._lock:
            return bookmark_id in self._entries
