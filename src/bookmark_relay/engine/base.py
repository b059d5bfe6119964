"""Abstract interface to the workflow engine that owns suspended activities."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ResumeResult:
    """Outcome of asking the engine to resume a bookmark."""

    bookmark_id: str
    matched: bool


class WorkflowEngine(ABC):
    """Abstract base class for workflow engines.

    The relay never holds engine closures. It keeps the bookmark id the engine
    hands out and gives it back on resume; the engine maps the id (and the
    optional resume token) back to a position in its own workflow graph.
    """

    @abstractmethod
    def create_bookmark(self, name: str, resume_token: str | None = None) -> str:
        """Suspend the current activity and return a unique bookmark id.

        Args:
            name: Name of the suspending activity.
            resume_token: Engine-specific continuation identifier to run once
                the bookmark is resumed.

        Returns:
            The engine-generated bookmark id.
        """
        pass

    @abstractmethod
    def resume(self, bookmark_id: str, resume_input: str) -> ResumeResult:
        """Resume the activity suspended on `bookmark_id`.

        Args:
            bookmark_id: Id previously returned by `create_bookmark`.
            resume_input: Payload of the message that triggered the resume.

        Returns:
            A result whose `matched` flag is False when the engine no longer
            knows the bookmark (for example it timed out).
        """
        pass
