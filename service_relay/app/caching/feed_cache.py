"""
Time-based cache and cache-backed fetch proxy for RSS documents.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

from shared.errors import InvalidRequestError, UpstreamFailureError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_FEED_TTL = 120.0
XML_CONTENT_TYPE = "application/xml"


@dataclass(frozen=True)
class Content:
    """Raw upstream body plus a content-type hint."""
    payload: str
    content_type: str = XML_CONTENT_TYPE


@dataclass
class CacheEntry:
    """A cached upstream document."""
    key: str
    payload: str
    stored_at: float
    content_type: str = XML_CONTENT_TYPE

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_fresh(self, now: float, ttl: float) -> bool:
        return self.age(now) < ttl

    def to_content(self) -> Content:
        return Content(payload=self.payload, content_type=self.content_type)


class ContentSource(Protocol):
    """Anything that can fetch a remote document by absolute URL."""

    async def fetch(self, url: str) -> Content:
        ...


def canonicalize_url(raw: Optional[str]) -> str:
    """Validate an absolute http(s) URL and normalize it into a cache key.

    Scheme and host are lower-cased; user info, port, path, query and
    fragment are kept as-is.
    """
    if raw is None or not raw.strip():
        raise InvalidRequestError("Missing 'url' parameter")

    value = raw.strip()
    try:
        parts = urlsplit(value)
        # Accessing .port validates the port component
        _ = parts.port
    except ValueError as exc:
        raise InvalidRequestError("Malformed 'url' parameter", details={"url": value, "reason": str(exc)})

    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise InvalidRequestError(
            "'url' must be an absolute http(s) URL",
            details={"url": value},
        )

    userinfo, at, hostport = parts.netloc.rpartition("@")
    return urlunsplit((
        parts.scheme.lower(),
        f"{userinfo}{at}{hostport.lower()}",
        parts.path,
        parts.query,
        parts.fragment,
    ))


class FeedCache:
    """In-memory key -> entry mapping with a fixed TTL and lazy eviction.

    There is no background sweep: an expired entry stays in the mapping until
    the next lookup of its key removes it.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_FEED_TTL, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.logger = get_logger("relay.feed_cache")

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def now(self) -> float:
        return self._clock()

    def lookup(self, key: str) -> Optional[CacheEntry]:
        """Return the fresh entry for ``key``; evict it first if it has expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        now = self.now()
        if entry.is_fresh(now, self.ttl):
            self.hits += 1
            return entry

        del self._entries[key]
        self.evictions += 1
        self.misses += 1
        self.logger.info("Cache entry expired", key=key, age_seconds=round(entry.age(now), 3))
        return None

    def store(self, key: str, content: Content) -> CacheEntry:
        """Insert or overwrite the entry for ``key``, timestamped now."""
        entry = CacheEntry(
            key=key,
            payload=content.payload,
            stored_at=self.now(),
            content_type=content.content_type,
        )
        self._entries[key] = entry
        self.logger.info("Cached document", key=key, size=len(content.payload))
        return entry

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the raw entry without freshness checks or stat updates."""
        return self._entries.get(key)

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get_stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "ttl_seconds": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }


class CachedFetchProxy:
    """Serve documents from a FeedCache, fetching from the source on a miss.

    Concurrent misses for the same key each reach the source unless
    ``single_flight`` is enabled, in which case they queue on a per-key lock
    and all but the first are answered from the freshly stored entry.
    """

    def __init__(
        self,
        source: ContentSource,
        cache: FeedCache,
        *,
        single_flight: bool = False,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.source = source
        self.cache = cache
        self.single_flight = single_flight
        self.metrics = metrics
        self.logger = get_logger("relay.fetch_proxy")

        self.fetches = 0
        self.failures = 0
        self._inflight: Dict[str, Tuple[asyncio.Lock, int]] = {}

    async def get(self, key: Optional[str]) -> Content:
        """Return fresh content for ``key``, fetching and caching it on a miss."""
        url = canonicalize_url(key)

        cached = self._lookup(url)
        if cached is not None:
            return cached

        if not self.single_flight:
            return await self._fetch_and_store(url)

        lock, waiters = self._inflight.get(url, (asyncio.Lock(), 0))
        self._inflight[url] = (lock, waiters + 1)
        try:
            async with lock:
                # Another waiter may have filled the entry while we were queued
                entry = self.cache.peek(url)
                if entry is not None and entry.is_fresh(self.cache.now(), self.cache.ttl):
                    self.logger.info("Serving document fetched by concurrent request", url=url)
                    return entry.to_content()
                return await self._fetch_and_store(url)
        finally:
            lock, waiters = self._inflight[url]
            if waiters <= 1:
                del self._inflight[url]
            else:
                self._inflight[url] = (lock, waiters - 1)

    def _lookup(self, url: str) -> Optional[Content]:
        evictions_before = self.cache.evictions
        entry = self.cache.lookup(url)
        if self.cache.evictions != evictions_before:
            self._record("cache_evictions_total", cache_type="rss")

        if entry is not None:
            self.logger.info("Serving document from cache", url=url)
            self._record("cache_hits_total", cache_type="rss")
            return entry.to_content()

        self._record("cache_misses_total", cache_type="rss")
        return None

    async def _fetch_and_store(self, url: str) -> Content:
        self.fetches += 1
        self.logger.info("Fetching document from source", url=url)
        try:
            content = await self.source.fetch(url)
        except UpstreamFailureError as exc:
            self.failures += 1
            self._record("upstream_fetches_total", source="rss", outcome="error")
            self.logger.error("Source fetch failed", url=url, error=exc.message)
            raise

        self._record("upstream_fetches_total", source="rss", outcome="ok")
        self.cache.store(url, content)
        return content

    def _record(self, metric_name: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)

    def get_stats(self) -> Dict[str, Any]:
        stats = self.cache.get_stats()
        stats.update({
            "fetches": self.fetches,
            "failures": self.failures,
            "single_flight": self.single_flight,
            "inflight_keys": len(self._inflight),
        })
        return stats
