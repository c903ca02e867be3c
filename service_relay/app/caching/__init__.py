"""
Relay caching package.

In-memory, per-process cache for upstream RSS documents. Entries expire
after a fixed TTL and are evicted lazily on lookup.
"""

from .feed_cache import CacheEntry, CachedFetchProxy, Content, ContentSource, FeedCache, canonicalize_url

__all__ = [
    "CacheEntry",
    "CachedFetchProxy",
    "Content",
    "ContentSource",
    "FeedCache",
    "canonicalize_url",
]
