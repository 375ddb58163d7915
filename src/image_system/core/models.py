"""
Data Models - Image descriptors, cache entries and provider results

Part of the AgroLink Image Integration System.
Core Implementation

License: MIT
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ImageSource(str, Enum):
    """Provenance of an image descriptor."""

    UNSPLASH = "unsplash"
    PEXELS = "pexels"
    CACHE = "cache"
    FALLBACK = "fallback"


ORIENTATIONS = ("landscape", "portrait", "square")
SIZES = ("small", "medium", "large")


@dataclass(frozen=True)
class Attribution:
    """Photographer credit attached to an image."""

    photographer: str
    photographer_url: str = ""
    source: str = ""
    source_url: str = ""
    required: bool = True


@dataclass(frozen=True)
class ImageMetadata:
    """Descriptive metadata. Dimensions and colors are carried, never computed."""

    width: int = 1200
    height: int = 800
    aspect_ratio: float = 1.5
    dominant_colors: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    download_url: str = ""
    provider_id: str = ""
    fetched_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ImageDescriptor:
    """
    A usable image returned to callers.

    Immutable once produced. Provenance is always a member of ImageSource and
    a required attribution always names its photographer.
    """

    id: str
    url: str
    thumbnail_url: str
    alt_text: str
    attribution: Attribution
    source: ImageSource
    metadata: ImageMetadata

    def __post_init__(self):
        if not isinstance(self.source, ImageSource):
            # Accept raw strings from config/tests, reject anything outside the set
            object.__setattr__(self, "source", ImageSource(self.source))
        if self.attribution.required and not self.attribution.photographer.strip():
            raise ValueError("Attribution marked as required must name a photographer")

    @property
    def search_text(self) -> str:
        """Lowercased alt text plus tags, used for relevance matching."""
        return " ".join([self.alt_text or ""] + list(self.metadata.tags)).lower()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        data["metadata"]["tags"] = list(self.metadata.tags)
        data["metadata"]["dominant_colors"] = list(self.metadata.dominant_colors)
        data["metadata"]["fetched_at"] = self.metadata.fetched_at.isoformat()
        return data


@dataclass(frozen=True)
class ImageUrls:
    """Resolution-tagged URLs returned by a provider."""

    raw: str
    full: str
    regular: str
    small: str
    thumb: str


@dataclass(frozen=True)
class ProviderImage:
    """
    Normalized search result produced by a provider adapter.
    """

    id: str
    urls: ImageUrls
    photographer_name: str
    photographer_url: str
    description: str = ""
    tags: Tuple[str, ...] = ()
    width: Optional[int] = None
    height: Optional[int] = None
    color: Optional[str] = None
    download_url: Optional[str] = None

    @property
    def search_text(self) -> str:
        return " ".join([self.description or ""] + list(self.tags)).lower()


@dataclass(frozen=True)
class SearchOptions:
    """Search parameters accepted by provider adapters."""

    count: int = 10
    orientation: Optional[str] = None
    size: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class QuotaInfo:
    """Remaining provider quota for the trailing window."""

    remaining: int
    total: int
    reset_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remaining": self.remaining,
            "total": self.total,
            "reset_time": self.reset_time.isoformat(),
        }


@dataclass
class CacheEntry:
    """
    Cached descriptor with freshness and access bookkeeping.

    Owned and mutated exclusively by ImageCache.
    """

    image: ImageDescriptor
    cached_at: datetime
    expires_at: datetime
    access_count: int = 0
    last_accessed: datetime = field(default_factory=datetime.now)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def copy(self) -> "CacheEntry":
        return CacheEntry(
            image=self.image,
            cached_at=self.cached_at,
            expires_at=self.expires_at,
            access_count=self.access_count,
            last_accessed=self.last_accessed,
        )


@dataclass(frozen=True)
class CategoryMapping:
    """Weighted search vocabulary for one logical category."""

    category: str
    primary_terms: Tuple[str, ...]
    fallback_terms: Tuple[str, ...]
    exclude_terms: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategoryMapping":
        return cls(
            category=str(data["category"]).lower().strip(),
            primary_terms=tuple(data.get("primary_terms", ())),
            fallback_terms=tuple(data.get("fallback_terms", ())),
            exclude_terms=tuple(data.get("exclude_terms", ())),
        )


@dataclass(frozen=True)
class KeyAccessInfo:
    key: str
    access_count: int
    last_accessed: datetime


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time cache statistics."""

    size: int
    max_size: int
    hit_rate: float
    miss_rate: float
    hits: int
    misses: int
    eviction_count: int
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None
    top_keys: List[KeyAccessInfo] = field(default_factory=list)
    estimated_size: int = 0
    utilization_percent: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["oldest_entry"] = self.oldest_entry.isoformat() if self.oldest_entry else None
        data["newest_entry"] = self.newest_entry.isoformat() if self.newest_entry else None
        for item in data["top_keys"]:
            item["last_accessed"] = item["last_accessed"].isoformat()
        return data
