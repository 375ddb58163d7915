"""
Image Cache - Bounded in-memory cache with LRU eviction and TTL expiry

Part of the AgroLink Image Integration System.
Infrastructure Layer

License: MIT
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, TYPE_CHECKING
import json
import logging
import threading

from ..core.exceptions import ValidationError
from ..core.models import CacheEntry, CacheStats, ImageDescriptor, KeyAccessInfo

if TYPE_CHECKING:
    from .event_log import EventLog

logger = logging.getLogger(__name__)

TOP_KEYS_LIMIT = 10


class EvictionReason(str, Enum):
    LRU = "lru"
    EXPIRED = "expired"
    MANUAL = "manual"
    CLEAR = "clear"


class EvictionObserver(Protocol):
    """Receives every removed entry, synchronously, while the cache lock is held."""

    def __call__(self, key: str, entry: CacheEntry, reason: EvictionReason) -> None:
        ...


class _Node:
    """Recency list node."""

    __slots__ = ("key", "entry", "prev", "next")

    def __init__(self, key: str, entry: CacheEntry):
        self.key = key
        self.entry = entry
        self.prev: Optional["_Node"] = None
        self.next: Optional["_Node"] = None


class ImageCache:
    """
    LRU + TTL cache for image descriptors.

    A hash map indexes nodes of a doubly linked recency list; the head is the
    most recently used entry and the tail is the next eviction candidate.
    Expired entries are detected lazily on access. All public operations hold
    a re-entrant lock so the map and the list stay consistent across threads.
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: float = 86400,
        event_log: Optional["EventLog"] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the image cache.

        Args:
            max_size: Maximum number of entries
            default_ttl: Default time-to-live in seconds
            event_log: Optional event log receiving cache operation events
            clock: Time source, injectable for tests
        """
        if max_size < 1:
            raise ValidationError("Cache max size must be at least 1", provider="cache")
        if default_ttl <= 0:
            raise ValidationError("Cache default TTL must be positive", provider="cache")

        self.max_size = max_size
        self.default_ttl = default_ttl
        self.event_log = event_log
        self._clock = clock

        self._map: Dict[str, _Node] = {}
        self._head: Optional[_Node] = None
        self._tail: Optional[_Node] = None
        self._observers: List[EvictionObserver] = []
        self._lock = threading.RLock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: EvictionObserver) -> None:
        """Register a callable invoked synchronously on every eviction."""
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def unsubscribe(self, observer: EvictionObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Look up an entry.

        Args:
            key: Cache key

        Returns:
            A copy of the live entry, or None on miss or expiry
        """
        with self._lock:
            node = self._map.get(key)
            now = self._clock()

            if node is None:
                self._misses += 1
                self._track("get", key, hit=False)
                logger.debug(f"Cache miss for key: {key}")
                return None

            if node.entry.is_expired(now):
                self._remove(node, EvictionReason.EXPIRED)
                self._misses += 1
                self._track("get", key, hit=False, eviction_reason=EvictionReason.EXPIRED)
                logger.debug(f"Cache miss (expired) for key: {key}")
                return None

            node.entry.access_count += 1
            node.entry.last_accessed = now
            self._move_to_front(node)

            self._hits += 1
            self._track("get", key, hit=True)
            logger.debug(f"Cache hit for key: {key} (access count {node.entry.access_count})")
            return node.entry.copy()

    def set(self, key: str, image: ImageDescriptor, ttl: Optional[float] = None) -> None:
        """
        Insert or replace an entry and make it most recently used.

        Args:
            key: Cache key
            image: Descriptor to cache
            ttl: Time-to-live in seconds (None for default)

        Raises:
            ValidationError: If the TTL is not positive
        """
        effective_ttl = self.default_ttl if ttl is None else ttl
        if effective_ttl <= 0:
            raise ValidationError(f"Cache TTL must be positive, got {effective_ttl}", provider="cache")

        # Sub-microsecond TTLs would round to zero and expire on insert
        lifetime = max(timedelta(seconds=effective_ttl), timedelta.resolution)

        with self._lock:
            now = self._clock()
            entry = CacheEntry(
                image=image,
                cached_at=now,
                expires_at=now + lifetime,
                access_count=1,
                last_accessed=now,
            )

            existing = self._map.get(key)
            if existing is not None:
                existing.entry = entry
                self._move_to_front(existing)
                self._track("set", key, hit=True)
                logger.debug(f"Cache updated for key: {key} (ttl {effective_ttl}s)")
                return

            node = _Node(key, entry)
            self._map[key] = node
            self._add_to_front(node)
            self._track("set", key, hit=False)
            logger.debug(f"Cache entry added for key: {key} (size {len(self._map)})")

            if len(self._map) > self.max_size:
                self._evict_lru()

    def has(self, key: str) -> bool:
        """Presence check that honours expiry without touching recency or stats."""
        with self._lock:
            node = self._map.get(key)
            if node is None:
                return False
            if node.entry.is_expired(self._clock()):
                self._remove(node, EvictionReason.EXPIRED)
                return False
            return True

    def evict(self, key: str) -> bool:
        """
        Remove a single entry.

        Returns:
            True if the key was present
        """
        with self._lock:
            node = self._map.get(key)
            if node is None:
                logger.debug(f"Attempted to evict non-existent key: {key}")
                return False
            self._remove(node, EvictionReason.MANUAL)
            return True

    def clear(self) -> int:
        """
        Remove every entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            cleared = len(self._map)
            node = self._head
            while node is not None:
                following = node.next
                self._notify(node.key, node.entry, EvictionReason.CLEAR)
                node.prev = node.next = None
                node = following

            self._map.clear()
            self._head = self._tail = None
            self._evictions += cleared

            self._track("clear", "all", hit=False, eviction_reason=EvictionReason.CLEAR)
            logger.info(f"Cache cleared: {cleared} entries removed")
            return cleared

    def cleanup_expired(self) -> int:
        """
        Physically remove every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [node for node in self._map.values() if node.entry.is_expired(now)]
            for node in expired:
                self._remove(node, EvictionReason.EXPIRED)

            if expired:
                logger.info(f"Removed {len(expired)} expired cache entries, {len(self._map)} remaining")
            return len(expired)

    def update_config(self, max_size: Optional[int] = None, default_ttl: Optional[float] = None) -> None:
        """
        Update capacity and default TTL. Shrinking evicts LRU entries until within bounds.
        """
        with self._lock:
            old_max_size = self.max_size
            old_ttl = self.default_ttl

            if max_size is not None:
                if max_size < 1:
                    raise ValidationError("Cache max size must be at least 1", provider="cache")
                self.max_size = max_size
                while len(self._map) > self.max_size:
                    self._evict_lru()

            if default_ttl is not None:
                if default_ttl <= 0:
                    raise ValidationError("Cache default TTL must be positive", provider="cache")
                self.default_ttl = default_ttl

            logger.info(
                f"Cache configuration updated: max_size {old_max_size} -> {self.max_size}, "
                f"ttl {old_ttl}s -> {self.default_ttl}s"
            )

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def keys(self) -> List[str]:
        """Keys ordered from most to least recently used."""
        with self._lock:
            result = []
            node = self._head
            while node is not None:
                result.append(node.key)
                node = node.next
            return result

    def __len__(self) -> int:
        with self._lock:
            return len(self._map)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def capacity_info(self) -> Dict[str, float]:
        with self._lock:
            current = len(self._map)
            return {
                "current": current,
                "max": self.max_size,
                "utilization_percent": (current / self.max_size) * 100,
            }

    def stats(self, top_n: int = TOP_KEYS_LIMIT) -> CacheStats:
        """
        Point-in-time statistics.

        Args:
            top_n: Number of most accessed keys to include

        Returns:
            CacheStats snapshot
        """
        with self._lock:
            now = self._clock()
            live = [node for node in self._map.values() if not node.entry.is_expired(now)]

            cached_times = [node.entry.cached_at for node in live]
            top_keys = sorted(
                (
                    KeyAccessInfo(node.key, node.entry.access_count, node.entry.last_accessed)
                    for node in self._map.values()
                ),
                key=lambda info: info.access_count,
                reverse=True,
            )[:top_n]

            total = self._hits + self._misses
            hit_rate = self._hits / total if total else 0.0
            miss_rate = self._misses / total if total else 0.0

            return CacheStats(
                size=len(self._map),
                max_size=self.max_size,
                hit_rate=hit_rate,
                miss_rate=miss_rate,
                hits=self._hits,
                misses=self._misses,
                eviction_count=self._evictions,
                oldest_entry=min(cached_times) if cached_times else None,
                newest_entry=max(cached_times) if cached_times else None,
                top_keys=top_keys,
                estimated_size=sum(_estimate_size(node.entry) for node in self._map.values()),
                utilization_percent=(len(self._map) / self.max_size) * 100,
            )

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    # ------------------------------------------------------------------
    # Internals (callers hold the lock)
    # ------------------------------------------------------------------

    def _evict_lru(self) -> None:
        if self._tail is None:
            return
        node = self._tail
        logger.debug(f"LRU eviction of key: {node.key} (size {len(self._map)})")
        self._remove(node, EvictionReason.LRU)

    def _remove(self, node: _Node, reason: EvictionReason) -> None:
        self._notify(node.key, node.entry, reason)
        self._unlink(node)
        del self._map[node.key]
        self._evictions += 1
        self._track("evict", node.key, hit=False, eviction_reason=reason)

    def _notify(self, key: str, entry: CacheEntry, reason: EvictionReason) -> None:
        for observer in list(self._observers):
            try:
                observer(key, entry, reason)
            except Exception as e:
                logger.error(f"Eviction observer failed for key {key}: {str(e)}")

    def _track(
        self, operation: str, key: str, hit: bool, eviction_reason: Optional[EvictionReason] = None
    ) -> None:
        if self.event_log is not None:
            self.event_log.track_cache_operation(
                operation=operation,
                key=key,
                hit=hit,
                size=len(self._map),
                eviction_reason=eviction_reason.value if eviction_reason else None,
            )

    def _add_to_front(self, node: _Node) -> None:
        node.prev = None
        node.next = self._head
        if self._head is not None:
            self._head.prev = node
        self._head = node
        if self._tail is None:
            self._tail = node

    def _unlink(self, node: _Node) -> None:
        if node.prev is not None:
            node.prev.next = node.next
        else:
            self._head = node.next

        if node.next is not None:
            node.next.prev = node.prev
        else:
            self._tail = node.prev

        node.prev = node.next = None

    def _move_to_front(self, node: _Node) -> None:
        if node is self._head:
            return
        self._unlink(node)
        self._add_to_front(node)


def _estimate_size(entry: CacheEntry) -> int:
    """Rough byte estimate: fixed overhead plus two bytes per URL and metadata character."""
    image = entry.image
    metadata_json = json.dumps(image.to_dict()["metadata"], default=str)
    return 1000 + 2 * len(image.url) + 2 * len(image.thumbnail_url) + 2 * len(metadata_json)
