"""
Content-addressed result cache.

Artifacts live in blob storage under ``cached/<key>``; their metadata lives
in the ``cache_entry`` table. Key derivation belongs to the caller: the cache
stores and returns whatever it is given under the key it is given.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ai_gen_guard.storage.blobs import BlobStorage
from ai_gen_guard.storage.db import DEFAULT_DB_PATH
from ai_gen_guard.storage.models import CacheEntry
from ai_gen_guard.storage.repository import CacheRepository

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=7)
DEFAULT_MAX_SIZE_BYTES = 1024 * 1024 * 1024
DEFAULT_EVICTION_FRACTION = 0.1


@dataclass(frozen=True)
class CacheStats:
    """Aggregate cache figures. ``hit_rate`` is hits per stored entry."""
    total_entries: int
    total_size: int
    hit_rate: float
    top_assets: List[CacheEntry]


class ResultCache:
    """Stores generation results keyed by a deterministic request hash."""

    def __init__(
        self,
        blobs: BlobStorage,
        db_path: str = DEFAULT_DB_PATH,
        ttl: timedelta = DEFAULT_TTL,
        max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
        eviction_fraction: float = DEFAULT_EVICTION_FRACTION,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if not 0 < eviction_fraction <= 1:
            raise ValueError("eviction_fraction must be in (0, 1]")
        self.blobs = blobs
        self.entries = CacheRepository(db_path)
        self.ttl = ttl
        self.max_size_bytes = max_size_bytes
        self.eviction_fraction = eviction_fraction
        self.clock = clock

    @staticmethod
    def storage_path(key: str) -> str:
        return f"cached/{key}"

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key``, or None.

        An expired entry is removed on the spot and reported as a miss. A hit
        bumps the entry's hit count and last-accessed time.
        """
        entry = self.entries.get(key)
        if entry is None:
            return None

        now = self.clock()
        if entry.expires_at <= now:
            logger.debug("Cache entry %s expired at %s", key, entry.expires_at)
            self.invalidate(key)
            return None

        self.entries.record_hit(key, now)
        return dataclasses.replace(entry, hit_count=entry.hit_count + 1, last_accessed=now)

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
        ttl: Optional[timedelta] = None,
    ) -> str:
        """Upload ``data`` and upsert its metadata row. Last writer wins.

        Returns:
            Location of the stored blob

        Raises:
            StorageError: If the blob upload fails
            PersistenceError: If the metadata write fails
        """
        now = self.clock()
        path = self.storage_path(key)
        location = self.blobs.upload(path, data, content_type)
        self.entries.upsert(CacheEntry(
            key=key,
            result_location=location,
            storage_path=path,
            content_type=content_type,
            size=len(data),
            expires_at=now + (ttl or self.ttl),
            hit_count=0,
            last_accessed=now,
            metadata=dict(metadata or {}),
        ))
        return location

    def invalidate(self, key: str) -> None:
        entry = self.entries.get(key)
        if entry is None:
            return
        self.blobs.delete([entry.storage_path])
        self.entries.delete(key)

    def cleanup_expired(self) -> int:
        """Remove every expired entry and its blob. Returns the number removed."""
        now = self.clock()
        expired = self.entries.list_expired(now)
        if not expired:
            return 0
        self.blobs.delete([entry.storage_path for entry in expired])
        removed = self.entries.delete_expired(now)
        logger.info("Removed %d expired cache entries", removed)
        return removed

    def optimize(self) -> int:
        """Evict least-recently-accessed entries when over the size ceiling.

        Evicts ``eviction_fraction`` of the entries (at least one) when the
        total size exceeds ``max_size_bytes``, then removes expired entries.

        Returns:
            Number of entries evicted for size
        """
        totals = self.entries.totals()
        evicted = 0
        if totals["total_size"] > self.max_size_bytes:
            count = max(1, int(totals["total_entries"] * self.eviction_fraction))
            victims = self.entries.least_recently_accessed(count)
            self.blobs.delete([entry.storage_path for entry in victims])
            for entry in victims:
                self.entries.delete(entry.key)
            evicted = len(victims)
            logger.info(
                "Cache size %d exceeds %d bytes, evicted %d entries",
                totals["total_size"], self.max_size_bytes, evicted,
            )
        self.cleanup_expired()
        return evicted

    def stats(self, top: int = 10) -> CacheStats:
        totals = self.entries.totals()
        entries = totals["total_entries"]
        hit_rate = totals["total_hits"] / entries if entries else 0.0
        return CacheStats(
            total_entries=entries,
            total_size=totals["total_size"],
            hit_rate=hit_rate,
            top_assets=self.entries.top_by_hits(top),
        )
