"""
Image Service - Cache-first orchestration over content providers

Part of the AgroLink Image Integration System.
Core Implementation

Every request follows the same path: derive a cache key, serve a live cache
entry if one exists, otherwise try providers strictly in priority order and
keep the first on-theme result, falling back to a static asset when nothing
usable comes back. Request methods never raise.

License: MIT
"""

from dataclasses import replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence
import asyncio
import logging

from ..config import ImageSystemConfig, SectionConfig
from ..infrastructure.cache import ImageCache
from ..infrastructure.event_log import EventLog, LogContext
from ..providers.base import MAX_SEARCH_COUNT, BaseImageProvider
from ..utils.helpers import build_cache_key, normalize_key_part, unique_preserving_order
from .attribution import AttributionManager
from .category_matcher import CategoryMatcher
from .exceptions import CacheError, RetryHandler
from .models import (
    Attribution,
    ImageDescriptor,
    ImageMetadata,
    ImageSource,
    ProviderImage,
    SearchOptions,
)

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 1200
DEFAULT_HEIGHT = 800
FALLBACK_DOMINANT_COLORS = ("#4a5568", "#68d391")
FALLBACK_TAGS = ("agriculture", "farming", "fallback")
FALLBACK_PHOTOGRAPHER = "AgroLink"

HERO_CANDIDATES = 5
SECTION_CANDIDATES = 5
PRELOAD_CANDIDATES = 5
CACHE_WRITE_ATTEMPTS = 2


class ImageService:
    """
    Orchestrates cache, providers, relevance filtering and static fallbacks.
    """

    def __init__(
        self,
        config: ImageSystemConfig,
        cache: ImageCache,
        matcher: CategoryMatcher,
        providers: Mapping[str, BaseImageProvider],
        event_log: EventLog,
        attribution: Optional[AttributionManager] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the service.

        Args:
            config: Materialized system configuration
            cache: Shared image cache
            matcher: Category vocabulary and relevance scoring
            providers: Active provider adapters keyed by name
            event_log: Structured event log
            attribution: Usage tracker for served images
            clock: Time source for fetch timestamps
            sleep: Coroutine used between cache write retries
        """
        self.config = config
        self.cache = cache
        self.matcher = matcher
        self.providers: Dict[str, BaseImageProvider] = dict(providers)
        self.event_log = event_log
        self.attribution = attribution

        self._clock = clock
        self._sleep = sleep
        self._max_concurrent = max(1, config.performance.max_concurrent_requests)

    # ------------------------------------------------------------------
    # Request entry points
    # ------------------------------------------------------------------

    async def get_theme_image(self, theme: Optional[str] = None) -> ImageDescriptor:
        """
        Hero image for an optional theme.

        Args:
            theme: Free text theme; the provider's hero query pool is used when omitted

        Returns:
            A provider image or the static hero fallback
        """
        context = self._context("get_theme_image", image_id=f"hero-{theme or 'default'}")
        key = build_cache_key("hero", theme)

        async def fetch(op: Dict[str, Any]) -> Optional[ImageDescriptor]:
            if not self.config.features.enable_hero_section:
                self.event_log.info("Hero section disabled, using fallback", context)
                return None
            return await self._first_on_theme(
                self.ordered_providers(),
                lambda provider: self._search_hero(provider, theme),
                context,
                op,
            )

        return await self._resolve_single(
            "get_theme_image",
            key,
            context,
            fetch,
            lambda: self._fallback_descriptor("hero", theme),
        )

    async def get_category_images(self, category: str, count: int = 6) -> List[ImageDescriptor]:
        """
        ``count`` images for a category, padded with fallbacks when providers
        return fewer relevant results.

        Args:
            category: Category name, matched against the category table
            count: Number of descriptors to return

        Returns:
            Exactly ``count`` descriptors (empty for non-positive counts)
        """
        context = self._context("get_category_images", category=category)

        if count <= 0:
            self.event_log.warning("Category image count must be positive", context, {"count": count})
            return []

        base_key = build_cache_key("category", category, count)

        try:
            async with self.event_log.track("get_category_images", context) as op:
                cached = self._cached_category(base_key, count, context)
                if cached is not None:
                    op.update(cache_hit=True, image_count=len(cached))
                    self._record_usage(cached)
                    return cached

                op["cache_hit"] = False
                images: List[ImageDescriptor] = []
                if self.config.features.enable_category_images:
                    images = await self._fetch_category(category, count, context, op)
                else:
                    self.event_log.info("Category images disabled, using fallbacks", context)

                fallback_count = count - len(images)
                for index in range(len(images), count):
                    images.append(self._fallback_descriptor("category", category, index))

                for index, image in enumerate(images):
                    self._cache_store(f"{base_key}:{index}", image, context)

                op.update(image_count=len(images), fallback_count=fallback_count)
                self._record_usage(images)
                return images

        except Exception as e:
            self.event_log.error("Category images request failed", context, e)
            return [self._fallback_descriptor("category", category, i) for i in range(count)]

    async def get_section_image(self, section: str) -> ImageDescriptor:
        """
        Background image for a page section.

        Disabled sections, and sections configured with ``image_source: fallback``,
        are served their static asset directly.
        """
        context = self._context("get_section_image", section=section, image_id=f"section-{section}")
        key = build_cache_key("section", section)
        section_config = self.config.sections.get(normalize_key_part(section))

        async def fetch(op: Dict[str, Any]) -> Optional[ImageDescriptor]:
            if not self._section_enabled(section_config):
                self.event_log.info("Section images disabled, using fallback", context)
                return None

            query = self._section_query(section, section_config)
            providers = self.ordered_providers(section_config.image_source if section_config else "both")
            return await self._first_on_theme(
                providers,
                lambda provider: provider.search(
                    query, SearchOptions(count=SECTION_CANDIDATES, orientation="landscape", category="general")
                ),
                context,
                op,
            )

        return await self._resolve_single(
            "get_section_image",
            key,
            context,
            fetch,
            lambda: self._fallback_descriptor(
                "section", section, url=section_config.fallback_image if section_config else None
            ),
        )

    async def preload(self, queries: Optional[Sequence[str]]) -> None:
        """
        Warm the cache for a list of free text queries.

        Runs at most ``max_concurrent_requests`` queries at a time. Failures
        are logged per query and never raised.
        """
        context = self._context("preload")

        unique_queries = unique_preserving_order(
            q for q in queries or [] if isinstance(q, str) and q.strip()
        )
        if not unique_queries:
            self.event_log.warning("No queries provided for preloading", context)
            return

        if not self._caching_enabled:
            self.event_log.info("Caching is disabled, nothing to preload", context)
            return

        self.event_log.info(f"Preloading {len(unique_queries)} queries", context, {"queries": unique_queries})

        # Created per call so the semaphore binds to the running loop
        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def preload_one(index: int, query: str) -> None:
            async with semaphore:
                await self._preload_query(index, query)

        results = await asyncio.gather(
            *(preload_one(i, q) for i, q in enumerate(unique_queries)), return_exceptions=True
        )

        failures = 0
        for query, result in zip(unique_queries, results):
            if isinstance(result, Exception):
                failures += 1
                self.event_log.warning(
                    f'Failed to preload image for query "{query}"', context, {"error": str(result)}
                )

        self.event_log.info(
            "Preloading completed", context, {"total_queries": len(unique_queries), "failures": failures}
        )

    async def clear_cache(self) -> None:
        """
        Remove every cache entry.

        Raises:
            CacheError: If the cache could not be cleared
        """
        context = self._context("clear_cache")

        if not self._caching_enabled:
            self.event_log.info("Caching is disabled, no cache to clear", context)
            return

        try:
            removed = self.cache.clear()
        except Exception as e:
            self.event_log.error("Cache clear failed", context, e)
            raise CacheError(f"Failed to clear cache: {e}") from e

        self.event_log.info("Cache cleared successfully", context, {"removed": removed})

    def health(self) -> Dict[str, Any]:
        """
        Lightweight status of the orchestration layer.

        Provider quota comes from local tracking only, so this never hits the network.
        """
        providers = {
            name: {
                "active": True,
                "quota": provider.quota.quota_info().to_dict(),
                "retry": {
                    "max_attempts": provider.retry_config.max_attempts,
                    "base_delay": provider.retry_config.base_delay,
                    "max_delay": provider.retry_config.max_delay,
                },
            }
            for name, provider in self.providers.items()
        }
        features = self.config.features

        return {
            "status": "healthy" if self.providers else "degraded",
            "message": "Providers available" if self.providers else "No active providers, serving fallbacks",
            "providers": providers,
            "priority": [p.name for p in self.ordered_providers()],
            "cache": {
                "enabled": self._caching_enabled,
                **self.cache.capacity_info(),
            },
            "features": {
                "hero_section": features.enable_hero_section,
                "category_images": features.enable_category_images,
                "section_backgrounds": features.enable_section_backgrounds,
                "attribution": features.enable_attribution,
            },
            "checked_at": self._clock().isoformat(),
        }

    def metrics(self, window: float = 3600) -> Dict[str, Any]:
        """Windowed event log aggregates plus a cache snapshot."""
        return {
            "window_seconds": window,
            "performance": self.event_log.performance_stats(window),
            "providers": self.event_log.provider_stats(window),
            "cache_activity": self.event_log.cache_stats(window),
            "cache": self.cache.stats().to_dict(),
            "errors": len(self.event_log.errors_in_window(window)),
        }

    async def aclose(self) -> None:
        """Release provider HTTP clients."""
        for name, provider in self.providers.items():
            try:
                await provider.aclose()
            except Exception as e:
                logger.warning(f"Failed to close provider {name}: {e}")

    # ------------------------------------------------------------------
    # Provider selection
    # ------------------------------------------------------------------

    def ordered_providers(self, image_source: str = "both") -> List[BaseImageProvider]:
        """
        Active providers in configured priority order.

        Args:
            image_source: ``both`` for every provider, a provider name for
                just that one, or ``fallback`` for none
        """
        if image_source == "fallback":
            return []

        names = list(self.config.providers.priority)
        names += [name for name in self.providers if name not in names]

        ordered = [self.providers[name] for name in names if name in self.providers]
        if image_source != "both":
            ordered = [p for p in ordered if p.name == image_source]
        return ordered

    async def _first_on_theme(
        self,
        providers: Sequence[BaseImageProvider],
        call: Callable[[BaseImageProvider], Awaitable[List[ProviderImage]]],
        context: LogContext,
        op: Dict[str, Any],
    ) -> Optional[ImageDescriptor]:
        """Try providers in order; the first on-theme result wins."""
        for provider in providers:
            provider_context = self._with_provider(context, provider.name)
            op["api_calls"] = op.get("api_calls", 0) + 1

            try:
                results = await call(provider)
            except Exception as e:
                self.event_log.warning(
                    f"{provider.display_name} request failed, trying next provider",
                    provider_context,
                    {"error": str(e)},
                )
                continue

            for result in results:
                if not self.matcher.is_on_theme(result):
                    continue
                descriptor = self._to_descriptor(result, provider)
                if descriptor is not None:
                    self.event_log.info(f"Image fetched from {provider.display_name}", provider_context)
                    return descriptor

            self.event_log.info(
                f"{provider.display_name} returned no on-theme results",
                provider_context,
                {"result_count": len(results)},
            )

        return None

    async def _search_hero(self, provider: BaseImageProvider, theme: Optional[str]) -> List[ProviderImage]:
        if theme:
            return await provider.search(
                theme, SearchOptions(count=HERO_CANDIDATES, orientation="landscape", category="hero")
            )
        return await provider.get_hero_images(HERO_CANDIDATES)

    async def _fetch_category(
        self, category: str, count: int, context: LogContext, op: Dict[str, Any]
    ) -> List[ImageDescriptor]:
        """
        Staged search over the category's term tiers.

        A provider that fails moves the search on to the next provider; a
        provider that answers with nothing relevant is asked again with the
        next, broader tier.
        """
        request_count = min(count * 2, MAX_SEARCH_COUNT)
        tiers = self.matcher.tiered_fallback_terms(category)

        for provider in self.ordered_providers():
            provider_context = self._with_provider(context, provider.name)

            for tier_index, terms in enumerate(tiers):
                query = " ".join(terms[:3])
                op["api_calls"] = op.get("api_calls", 0) + 1

                try:
                    results = await provider.search(query, SearchOptions(count=request_count, category=category))
                except Exception as e:
                    self.event_log.warning(
                        f"{provider.display_name} category search failed, trying next provider",
                        provider_context,
                        {"error": str(e), "tier": tier_index},
                    )
                    break

                ranked = [r for r in self.matcher.filter_and_rank(results, category) if self.matcher.is_on_theme(r)]
                descriptors = [d for d in (self._to_descriptor(r, provider) for r in ranked) if d is not None]

                if descriptors:
                    self.event_log.info(
                        f"Category images fetched from {provider.display_name}",
                        provider_context,
                        {"tier": tier_index, "relevant": len(descriptors), "returned": len(results)},
                    )
                    return descriptors[:count]

                self.event_log.debug(
                    f"No relevant results for tier {tier_index}", provider_context, {"query": query}
                )

        return []

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    @property
    def _caching_enabled(self) -> bool:
        return self.config.features.enable_caching and self.config.cache.enabled

    async def _resolve_single(
        self,
        operation: str,
        key: str,
        context: LogContext,
        fetch: Callable[[Dict[str, Any]], Awaitable[Optional[ImageDescriptor]]],
        fallback: Callable[[], ImageDescriptor],
    ) -> ImageDescriptor:
        try:
            async with self.event_log.track(operation, context) as op:
                cached = self._cache_lookup(key, context)
                if cached is not None:
                    op.update(cache_hit=True, image_count=1, source=cached.source.value)
                    self._record_usage([cached])
                    return cached

                op["cache_hit"] = False
                image = await fetch(op)
                if image is None:
                    image = fallback()
                    self.event_log.info("Using fallback image", context, {"url": image.url})

                self._cache_store(key, image, context)
                op.update(image_count=1, source=image.source.value)
                self._record_usage([image])
                return image

        except Exception as e:
            self.event_log.error(f"{operation} failed, serving fallback", context, e)
            return fallback()

    def _cache_lookup(self, key: str, context: LogContext) -> Optional[ImageDescriptor]:
        if not self._caching_enabled:
            return None
        try:
            entry = self.cache.get(key)
        except Exception as e:
            self.event_log.warning("Cache lookup failed", context, {"key": key, "error": str(e)})
            return None
        return entry.image if entry is not None else None

    def _cached_category(self, base_key: str, count: int, context: LogContext) -> Optional[List[ImageDescriptor]]:
        if not self._caching_enabled:
            return None

        images = []
        for index in range(count):
            image = self._cache_lookup(f"{base_key}:{index}", context)
            if image is None:
                return None
            images.append(image)
        return images

    def _cache_store(self, key: str, image: ImageDescriptor, context: LogContext) -> None:
        if not self._caching_enabled:
            return
        try:
            self.cache.set(key, image, self.config.cache.default_ttl)
        except Exception as e:
            self.event_log.warning("Failed to cache image", context, {"key": key, "error": str(e)})

    async def _preload_query(self, index: int, query: str) -> None:
        context = self._context("preload", image_id=f"preload-{index}")
        key = build_cache_key("preload", query)

        if self.cache.has(key):
            self.event_log.debug(f'Query "{query}" already cached', context)
            return

        op: Dict[str, Any] = {}
        image = await self._first_on_theme(
            self.ordered_providers(),
            lambda provider: provider.search(query, SearchOptions(count=PRELOAD_CANDIDATES)),
            context,
            op,
        )
        if image is None:
            image = self._fallback_descriptor("preload", query, index)

        async def write() -> None:
            self.cache.set(key, image, self.config.cache.default_ttl)

        await RetryHandler.with_retry(
            write,
            max_attempts=CACHE_WRITE_ATTEMPTS,
            base_delay=self.config.performance.retry_delay,
            max_delay=self.config.performance.retry_max_delay,
            should_retry=lambda e: isinstance(e, CacheError),
            sleep=self._sleep,
        )
        self.event_log.debug(f"Preloaded image for query: {query}", context, {"source": image.source.value})

    # ------------------------------------------------------------------
    # Descriptor construction
    # ------------------------------------------------------------------

    def _to_descriptor(self, image: ProviderImage, provider: BaseImageProvider) -> Optional[ImageDescriptor]:
        """
        Normalize a provider result into a descriptor.

        Results without a photographer cannot carry the required credit and
        are skipped.
        """
        photographer = (image.photographer_name or "").strip()
        if not photographer:
            logger.debug(f"Skipping {provider.name} image {image.id}: no photographer to credit")
            return None

        url = image.urls.regular or image.urls.full or image.urls.raw
        thumbnail_url = image.urls.small or image.urls.thumb or url
        width = image.width or DEFAULT_WIDTH
        height = image.height or DEFAULT_HEIGHT

        return ImageDescriptor(
            id=f"api-{provider.name}-{image.id}",
            url=url,
            thumbnail_url=thumbnail_url,
            alt_text=image.description or f"Agricultural image by {photographer}",
            attribution=Attribution(
                photographer=photographer,
                photographer_url=image.photographer_url,
                source=provider.name,
                source_url=image.photographer_url,
                required=True,
            ),
            source=ImageSource(provider.name),
            metadata=ImageMetadata(
                width=width,
                height=height,
                aspect_ratio=round(width / height, 3),
                dominant_colors=(image.color,) if image.color else (),
                tags=tuple(image.tags),
                download_url=image.download_url or image.urls.raw or image.urls.full,
                provider_id=image.id,
                fetched_at=self._clock(),
            ),
        )

    def _fallback_descriptor(
        self,
        request_type: str,
        context: Optional[str] = None,
        index: int = 0,
        url: Optional[str] = None,
    ) -> ImageDescriptor:
        """Descriptor for a bundled static asset; never fails."""
        fallback_images = self.config.fallback_images
        paths = {
            "hero": fallback_images.hero,
            "category": fallback_images.category,
            "section": fallback_images.section,
        }
        fallback_url = url or paths.get(request_type, fallback_images.section)

        now = self._clock()
        image_id = f"fallback-{request_type}-{normalize_key_part(context)}-{index}"

        return ImageDescriptor(
            id=image_id,
            url=fallback_url,
            thumbnail_url=fallback_url,
            alt_text=f"Agricultural {request_type} image" + (f" for {context}" if context else ""),
            attribution=Attribution(photographer=FALLBACK_PHOTOGRAPHER, source="fallback", required=False),
            source=ImageSource.FALLBACK,
            metadata=ImageMetadata(
                width=DEFAULT_WIDTH,
                height=DEFAULT_HEIGHT,
                aspect_ratio=DEFAULT_WIDTH / DEFAULT_HEIGHT,
                dominant_colors=FALLBACK_DOMINANT_COLORS,
                tags=FALLBACK_TAGS,
                download_url=fallback_url,
                provider_id=image_id,
                fetched_at=now,
            ),
        )

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    def _section_enabled(self, section_config: Optional[SectionConfig]) -> bool:
        if not self.config.features.enable_section_backgrounds:
            return False
        if section_config is None:
            return True
        return section_config.enabled and section_config.image_source != "fallback"

    def _section_query(self, section: str, section_config: Optional[SectionConfig]) -> str:
        if section_config and section_config.search_terms:
            return " ".join(section_config.search_terms)
        return f"{section} agriculture"

    def _record_usage(self, images: Sequence[ImageDescriptor]) -> None:
        if self.attribution is None or not self.config.features.enable_attribution:
            return
        for image in images:
            self.attribution.track_usage(image)

    @staticmethod
    def _context(operation: str, **kwargs: Any) -> LogContext:
        return LogContext(operation=operation, component="image_service", **kwargs)

    @staticmethod
    def _with_provider(context: LogContext, provider: str) -> LogContext:
        return replace(context, provider=provider)
