from bookmark_relay.bookmarks.activities import MessageActivities
from bookmark_relay.bookmarks.dispatcher import (
    DispatchOutcome,
    RedeliveryPolicy,
    ResumptionDispatcher,
    decode_condition,
)
from bookmark_relay.bookmarks.registry import Bookmark, BookmarkRegistry

__all__ = [
    "Bookmark",
    "BookmarkRegistry",
    "DispatchOutcome",
    "MessageActivities",
    "RedeliveryPolicy",
    "ResumptionDispatcher",
    "decode_condition",
]
