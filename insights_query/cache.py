"""
Result Cache — file-backed TTL cache of query results.

One JSON file per entry, named by the SHA-256 of the exact query text,
under ``<workspace>/.insights-query/cache/<namespace>/``. Expiry is lazy:
a stale entry reads as a miss and stays on disk until cleared or swept by
cleanup_expired().

get() and set() raise CacheError subclasses so the caller decides how to
degrade; clear(), stats() and cleanup_expired() count per-entry failures
instead of raising.

Usage:
    from insights_query.cache import ResultCache

    cache = ResultCache(cfg.cache_dir, ttl_seconds=cfg.cache_ttl_seconds)
    result = cache.get(kql)
    if result is None:
        ...
        cache.set(kql, result)
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from insights_query.errors import CacheWriteError, CorruptEntryError
from insights_query.models import CacheEntry, QueryResult

logger = logging.getLogger("insights-query.cache")

DEFAULT_TTL_SECONDS = 3600
_ENTRY_SUFFIX = ".json"


@dataclass
class ClearResult:
    deleted: int
    errors: int


@dataclass
class CacheStats:
    hits: int
    misses: int
    size: int
    expired: int
    corrupt: int
    total_size_bytes: int
    cache_path: str
    enabled: bool


class ResultCache:
    """TTL cache for QueryResult objects keyed by query text."""

    def __init__(
        self,
        cache_dir: str | Path,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = Path(cache_dir)
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def fingerprint(query: str) -> str:
        return hashlib.sha256(query.encode("utf-8")).hexdigest()

    def _entry_path(self, query: str) -> Path:
        return self.cache_dir / f"{self.fingerprint(query)}{_ENTRY_SUFFIX}"

    def _count(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    def _entries(self) -> list[Path]:
        if not self.cache_dir.is_dir():
            return []
        return sorted(self.cache_dir.glob(f"*{_ENTRY_SUFFIX}"))

    # ------------------------------------------------------------------
    # Entry operations
    # ------------------------------------------------------------------

    def get(self, query: str) -> QueryResult | None:
        """Return the cached result, or None on miss/expiry.

        Raises:
            CorruptEntryError: the entry exists but cannot be read or parsed.
        """
        if not self.enabled:
            self._count(hit=False)
            return None

        path = self._entry_path(query)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._count(hit=False)
            return None
        except OSError as e:
            self._count(hit=False)
            raise CorruptEntryError(f"Cannot read cache entry: {e}", path=str(path)) from e

        try:
            entry = CacheEntry.model_validate_json(text)
        except ValueError as e:
            self._count(hit=False)
            raise CorruptEntryError(f"Malformed cache entry: {path.name}", path=str(path)) from e

        now = self._clock()
        if not entry.is_valid(now):
            logger.debug(
                "Cache expired: %s (age %.0fs, ttl %ds)",
                path.name[:12], entry.age(now), entry.ttl_seconds,
            )
            self._count(hit=False)
            return None

        logger.debug("Cache hit: %s (age %.0fs)", path.name[:12], entry.age(now))
        self._count(hit=True)
        return entry.data

    def set(self, query: str, result: QueryResult, ttl_seconds: int | None = None) -> None:
        """Store ``result`` for ``query``. No-op when the cache is disabled.

        Raises:
            CacheWriteError: the entry could not be written.
        """
        if not self.enabled:
            return

        entry = CacheEntry(
            data=result.model_copy(update={"cached": False}),
            timestamp=self._clock(),
            ttl_seconds=self.ttl_seconds if ttl_seconds is None else ttl_seconds,
        )
        path = self._entry_path(query)
        tmp = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.cache_dir, prefix=".", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(entry.model_dump_json(by_alias=True))
            os.replace(tmp, path)
        except OSError as e:
            if tmp is not None:
                Path(tmp).unlink(missing_ok=True)
            raise CacheWriteError(f"Failed to write cache entry: {e}", path=str(path)) from e
        logger.debug("Cached %s (ttl %ds)", path.name[:12], entry.ttl_seconds)

    def delete(self, query: str) -> bool:
        if not self.enabled:
            return False
        try:
            os.remove(self._entry_path(query))
        except FileNotFoundError:
            return False
        return True

    # ------------------------------------------------------------------
    # Whole-cache operations
    # ------------------------------------------------------------------

    def clear(self) -> ClearResult:
        """Delete every entry; failures are counted, not raised."""
        if not self.enabled:
            return ClearResult(deleted=0, errors=0)

        deleted = errors = 0
        for path in self._entries():
            try:
                os.remove(path)
                deleted += 1
            except OSError as e:
                errors += 1
                logger.warning("Failed to delete cache entry %s: %s", path.name, e)
        logger.info("Cleared %d cache entries from %s (%d errors)", deleted, self.cache_dir, errors)
        return ClearResult(deleted=deleted, errors=errors)

    def stats(self) -> CacheStats:
        size = expired = corrupt = total_bytes = 0
        now = self._clock()
        for path in self._entries():
            size += 1
            try:
                total_bytes += path.stat().st_size
                entry = CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                corrupt += 1
                continue
            if not entry.is_valid(now):
                expired += 1

        with self._lock:
            hits, misses = self._hits, self._misses
        return CacheStats(
            hits=hits,
            misses=misses,
            size=size,
            expired=expired,
            corrupt=corrupt,
            total_size_bytes=total_bytes,
            cache_path=str(self.cache_dir),
            enabled=self.enabled,
        )

    def cleanup_expired(self) -> int:
        """Remove stale entries. Returns how many were deleted."""
        if not self.enabled:
            return 0

        removed = 0
        now = self._clock()
        for path in self._entries():
            try:
                entry = CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
                if entry.is_valid(now):
                    continue
                os.remove(path)
                removed += 1
            except (OSError, ValueError) as e:
                logger.warning("Skipping cache entry %s during cleanup: %s", path.name, e)
        if removed:
            logger.info("Removed %d expired cache entries from %s", removed, self.cache_dir)
        return removed
