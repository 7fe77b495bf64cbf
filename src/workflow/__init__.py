"""
Upload/review workflow: session state machine, audit dispatch and log feed.
"""

from .dispatcher import LogDispatcher, LogWriteFailure
from .log_feed import LogFeed
from .session import DocumentSession

__all__ = [
    "DocumentSession",
    "LogDispatcher",
    "LogFeed",
    "LogWriteFailure",
]
