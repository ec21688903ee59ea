"""Live streaming side of the simulator.

connection.py : per-venue WebSocket lifecycle (reconnect, dispatch queue).
feed.py       : BookFeed registry wiring managers -> normalizers -> BookStore.
metrics.py    : outcome counters and ingest-latency window for the feed.
"""

from .connection import ConnectionManager, InboundFrame  # noqa: F401
from .feed import BookFeed  # noqa: F401
from .metrics import FeedMetrics  # noqa: F401

__all__ = [
    "BookFeed",
    "ConnectionManager",
    "InboundFrame",
    "FeedMetrics",
]
