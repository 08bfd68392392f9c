"""
Read-through cache for the redirect hot path.

Mappings are immutable once created, so an entry never goes stale, except
when the mapping is deleted. Entries therefore have no TTL; the delete path
MUST call invalidate() once the tombstone is committed. Bounded LRU so a
scan of random codes can't grow memory without limit. Only positive
lookups are cached.

A lookup that started before a delete may still be holding the old row when
invalidate() runs. Callers read `generation` before going to the store and
pass it to put(); any invalidation in between makes that put a no-op.
"""

from collections import OrderedDict

import structlog

logger = structlog.get_logger()


class MappingCache:
    def __init__(self, max_entries: int = 50_000):
        self.max_entries = max_entries
        self._entries: OrderedDict[str, str] = OrderedDict()
        self.generation = 0
        self.hits = 0
        self.misses = 0

    def get(self, short_code: str) -> str | None:
        url = self._entries.get(short_code)
        if url is None:
            self.misses += 1
            return None
        self._entries.move_to_end(short_code)
        self.hits += 1
        return url

    def put(self, short_code: str, original_url: str, generation: int | None = None) -> bool:
        """Cache a resolved mapping. False if skipped because of a newer invalidation."""
        if self.max_entries <= 0:
            return False
        if generation is not None and generation != self.generation:
            logger.debug("cache_fill_skipped", short_code=short_code)
            return False
        self._entries[short_code] = original_url
        self._entries.move_to_end(short_code)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return True

    def invalidate(self, short_code: str) -> None:
        self.generation += 1
        if self._entries.pop(short_code, None) is not None:
            logger.info("cache_invalidated", short_code=short_code)

    def clear(self) -> None:
        self._entries.clear()
        self.generation += 1

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, short_code: str) -> bool:
        return short_code in self._entries
