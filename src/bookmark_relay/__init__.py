"""Bookmark relay.

Lets a workflow activity suspend until a message equal to its condition
arrives on an AMQP fanout exchange, then resumes exactly the activities waiting
on that condition:
- `MessageChannel`: connect, publish, subscribe with manual acks
- `BookmarkRegistry`: pending suspensions, shared by suspend and dispatch
- `ResumptionDispatcher`: matches deliveries to bookmarks and resumes them
"""

__version__ = "0.1.0"

from bookmark_relay.bookmarks.activities import MessageActivities
from bookmark_relay.bookmarks.dispatcher import ResumptionDispatcher
from bookmark_relay.bookmarks.registry import Bookmark, BookmarkRegistry
from bookmark_relay.messaging.channel import MessageChannel
from bookmark_relay.relay.config import RelaySettings

__all__ = [
    "__version__",
    "Bookmark",
    "BookmarkRegistry",
    "MessageActivities",
    "MessageChannel",
    "RelaySettings",
    "ResumptionDispatcher",
]
