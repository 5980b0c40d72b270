"""
Web search cache — disk-backed, TTL-bounded cache of web fallback results.

Entries are keyed by a hash of the provider and the normalised query and are
stored as one JSON file each.
"""

import hashlib
import json
import logging
import os
import time

from .web_search import SearchResult

logger = logging.getLogger(__name__)


class WebSearchCache:
    """Disk-backed cache for web search results."""

    def __init__(self, cache_dir: str = "~/.knowledge_agent/cache",
                 ttl_hours: int = 24):
        self._cache_dir = os.path.expanduser(cache_dir)
        self._ttl_seconds = ttl_hours * 3600
        os.makedirs(self._cache_dir, exist_ok=True)

    def _hash_key(self, provider: str, query: str) -> str:
        combined = f"{provider.lower().strip()}|{' '.join(query.lower().split())}"
        return hashlib.sha256(combined.encode("utf-8")).hexdigest()

    def _cache_path(self, hash_key: str) -> str:
        return os.path.join(self._cache_dir, f"{hash_key}.json")

    def get(self, provider: str, query: str) -> list[SearchResult] | None:
        """Return cached results or None if miss/expired."""
        hash_key = self._hash_key(provider, query)
        path = self._cache_path(hash_key)

        if not os.path.isfile(path):
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                entry = json.load(f)
            if time.time() - entry.get("timestamp", 0) > self._ttl_seconds:
                logger.debug("Expired web cache entry %s...", hash_key[:12])
                os.remove(path)
                return None
            results = [SearchResult.from_dict(r) for r in entry.get("results", [])]
        except (json.JSONDecodeError, OSError, AttributeError) as e:
            logger.warning("Web cache read error: %s", e)
            return None

        logger.info("Web cache hit for %r", query[:50])
        return results

    def put(self, provider: str, query: str, results: list[SearchResult]) -> None:
        """Store *results* for *query*; write failures are logged, not raised."""
        path = self._cache_path(self._hash_key(provider, query))
        entry = {
            "query": query[:200],
            "provider": provider,
            "timestamp": time.time(),
            "results": [r.to_dict() for r in results],
        }
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(entry, f, indent=2)
        except OSError as e:
            logger.warning("Web cache write error: %s", e)

    def clear(self) -> int:
        """Remove all cached entries; returns how many were removed."""
        count = 0
        try:
            for fname in os.listdir(self._cache_dir):
                if fname.endswith(".json"):
                    os.remove(os.path.join(self._cache_dir, fname))
                    count += 1
        except OSError as e:
            logger.warning("Web cache clear error: %s", e)
        logger.info("Cleared %d web cache entries", count)
        return count

    @property
    def size(self) -> int:
        """Number of cached entries."""
        try:
            return sum(1 for f in os.listdir(self._cache_dir) if f.endswith(".json"))
        except OSError:
            return 0


class CachedWebSearch:
    """Callable wrapping :func:`web_search` with a :class:`WebSearchCache`."""

    def __init__(self, search_fn, cache: WebSearchCache | None = None,
                 provider: str = "duckduckgo", **search_kwargs):
        self._search_fn = search_fn
        self._cache = cache
        self._provider = provider
        self._kwargs = search_kwargs

    def __call__(self, query: str) -> list[SearchResult]:
        if self._cache is not None:
            cached = self._cache.get(self._provider, query)
            if cached is not None:
                return cached
        results = self._search_fn(query, provider=self._provider, **self._kwargs)
        # Empty results usually mean a failure; don't pin them for a day
        if results and self._cache is not None:
            self._cache.put(self._provider, query, results)
        return results
