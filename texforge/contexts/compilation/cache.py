"""
Result cache for repeated compilations.

Editors resubmit identical sources constantly (every preview refresh). The
cache stores successful results keyed by a digest of the source and the
options that affect the PDF, so an unchanged document skips the compiler.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from texforge.contexts.compilation.models import CompilationOptions, CompilationResult
from texforge.utils.hashing import digest_key


@dataclass(frozen=True)
class CacheStats:
    entries: int
    hits: int
    misses: int
    hit_rate: float
    total_bytes: int


@dataclass
class _CacheEntry:
    result: CompilationResult
    stored_at: float
    source_digest: str


class ResultCache:
    """
    LRU cache of successful compilation results with an age limit.

    Args:
        max_entries: Capacity; least recently used entries are evicted first
        max_age_seconds: Entries older than this are treated as misses
    """

    def __init__(self, max_entries: int = 100, max_age_seconds: float = 24 * 60 * 60):
        self.max_entries = max(1, max_entries)
        self.max_age_seconds = max_age_seconds
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def key_for(source: str, options: CompilationOptions) -> str:
        return digest_key([source, *options.cache_fingerprint])

    def get(self, source: str, options: CompilationOptions) -> Optional[CompilationResult]:
        key = self.key_for(source, options)
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if time.monotonic() - entry.stored_at > self.max_age_seconds:
            del self._entries[key]
            self._misses += 1
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return entry.result

    def put(self, source: str, options: CompilationOptions, result: CompilationResult) -> None:
        """Store a result. Failed results are never cached."""
        if not result.success:
            return
        key = self.key_for(source, options)
        self._entries[key] = _CacheEntry(
            result=result,
            stored_at=time.monotonic(),
            source_digest=digest_key([source]),
        )
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, source: Optional[str] = None) -> int:
        """
        Drop entries for one source (any options), or everything when source is None.

        Returns:
            Number of entries removed
        """
        if source is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed

        source_digest = digest_key([source])
        stale = [k for k, e in self._entries.items() if e.source_digest == source_digest]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def stats(self) -> CacheStats:
        requests = self._hits + self._misses
        return CacheStats(
            entries=len(self._entries),
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / requests if requests else 0.0,
            total_bytes=sum(len(e.result.artifact_bytes or b"") for e in self._entries.values()),
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
