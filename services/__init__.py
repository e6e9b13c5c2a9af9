# services/__init__.py
# Outbound I/O for the slip engine: engine feed fan-out and webhook forwarding

from .notify_service import forward_summary
from .signal_feed_service import FeedFanOut, FeedResult, extract_records, fetch_all_feeds, fetch_feed

__all__ = [
    "FeedFanOut",
    "FeedResult",
    "extract_records",
    "fetch_all_feeds",
    "fetch_feed",
    "forward_summary",
]
