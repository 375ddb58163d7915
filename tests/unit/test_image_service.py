"""
Unit Tests for Image Service

Tests cache-first orchestration:
- Provider priority and fall-through
- Relevance filtering and fallback padding
- Section configuration, preloading and cache administration
"""

import asyncio
from unittest.mock import Mock

import httpx
import pytest

from image_system.core.attribution import AttributionManager
from image_system.core.exceptions import CacheError
from image_system.core.image_service import ImageService
from image_system.core.models import ImageSource
from image_system.infrastructure.cache import ImageCache
from image_system.providers import PexelsProvider, UnsplashProvider


@pytest.fixture
def build_service(config, matcher, event_log, clock, sleep):
    """Factory for services with a roomy cache and the shared fake clock."""

    def factory(providers=None, attribution=None):
        cache = ImageCache(max_size=100, default_ttl=3600, event_log=event_log, clock=clock.datetime)
        return ImageService(
            config=config,
            cache=cache,
            matcher=matcher,
            providers=providers or {},
            event_log=event_log,
            attribution=attribution,
            clock=clock.datetime,
            sleep=sleep,
        )

    return factory


@pytest.fixture
def unsplash_requests():
    return []


@pytest.fixture
def unsplash(make_provider, unsplash_photo, unsplash_requests):
    """Unsplash adapter returning two on-theme photos for every search."""
    photos = [
        unsplash_photo("u1"),
        unsplash_photo("u2", description="Herd of cattle in a rural pasture", photographer="Ana Rancher"),
    ]

    def handler(request):
        unsplash_requests.append(request)
        return httpx.Response(200, json={"results": photos})

    return make_provider(UnsplashProvider, handler)


class TestThemeImage:
    """Test cases for hero image requests."""

    async def test_no_providers_serves_fallback(self, build_service, config):
        """Test that requests resolve with a fallback when every provider is disabled."""
        service = build_service()

        image = await service.get_theme_image("harvest")

        assert image.source == ImageSource.FALLBACK
        assert image.url == config.fallback_images.hero
        assert image.attribution.required is False
        assert image.id == "fallback-hero-harvest-0"
        assert "agriculture" in image.metadata.tags

    async def test_provider_image_is_normalized(self, build_service, unsplash, unsplash_requests):
        service = build_service({"unsplash": unsplash})

        image = await service.get_theme_image("harvest")

        assert image.source == ImageSource.UNSPLASH
        assert image.id == "api-unsplash-u1"
        assert image.attribution.photographer == "Jane Farmer"
        assert image.attribution.required is True
        assert image.metadata.width == 4000
        assert image.metadata.aspect_ratio == pytest.approx(4000 / 3000, rel=1e-3)
        assert image.metadata.dominant_colors == ("#a0b0c0",)
        assert unsplash_requests[0].url.params["query"] == "harvest rural landscape"

    async def test_cache_hit_preserves_provenance(self, build_service, unsplash, unsplash_requests, event_log):
        """Test that a second request is served from cache with the original source."""
        service = build_service({"unsplash": unsplash})

        first = await service.get_theme_image("harvest")
        second = await service.get_theme_image("  Harvest ")

        assert second == first
        assert second.source == ImageSource.UNSPLASH
        assert len(unsplash_requests) == 1
        assert event_log.cache_stats()["hits"] == 1

    async def test_default_theme_uses_hero_pool(self, build_service, unsplash, unsplash_requests):
        service = build_service({"unsplash": unsplash})

        await service.get_theme_image()

        params = unsplash_requests[0].url.params
        assert params["orientation"] == "landscape"
        assert service.cache.has("hero:default")

    async def test_falls_through_to_next_provider(
        self, build_service, make_provider, pexels_photo, config, sleep
    ):
        """Test strict priority order with fall-through on failure."""
        unsplash_calls, pexels_calls = [], []

        def unsplash_handler(request):
            unsplash_calls.append(request)
            return httpx.Response(401, json={})

        def pexels_handler(request):
            pexels_calls.append(request)
            return httpx.Response(200, json={"photos": [pexels_photo()]})

        service = build_service(
            {
                "pexels": make_provider(PexelsProvider, pexels_handler),
                "unsplash": make_provider(UnsplashProvider, unsplash_handler),
            }
        )

        image = await service.get_theme_image("dairy")

        assert image.source == ImageSource.PEXELS
        assert image.id == "api-pexels-101"
        assert len(unsplash_calls) == 1
        assert len(pexels_calls) == 1
        assert sleep.delays == []

    async def test_off_theme_results_are_rejected(self, build_service, make_provider, unsplash_photo):
        city = unsplash_photo("city", description="Office building in the city", tags=("urban",))
        service = build_service(
            {"unsplash": make_provider(UnsplashProvider, lambda r: httpx.Response(200, json={"results": [city]}))}
        )

        image = await service.get_theme_image("harvest")

        assert image.source == ImageSource.FALLBACK

    async def test_results_without_photographer_are_skipped(self, build_service, make_provider, unsplash_photo):
        anonymous = unsplash_photo("anon", photographer="")
        credited = unsplash_photo("credited")
        service = build_service(
            {
                "unsplash": make_provider(
                    UnsplashProvider, lambda r: httpx.Response(200, json={"results": [anonymous, credited]})
                )
            }
        )

        image = await service.get_theme_image("harvest")

        assert image.id == "api-unsplash-credited"

    async def test_hero_disabled_serves_fallback(self, build_service, unsplash, unsplash_requests, config):
        config.features.enable_hero_section = False
        service = build_service({"unsplash": unsplash})

        image = await service.get_theme_image("harvest")

        assert image.source == ImageSource.FALLBACK
        assert unsplash_requests == []

    async def test_broken_cache_still_resolves(self, build_service, unsplash):
        """Test that cache failures never reach the caller."""
        service = build_service({"unsplash": unsplash})
        service.cache.get = Mock(side_effect=RuntimeError("cache down"))
        service.cache.set = Mock(side_effect=RuntimeError("cache down"))

        image = await service.get_theme_image("harvest")

        assert image.source == ImageSource.UNSPLASH

    async def test_unexpected_failure_serves_fallback(self, build_service, unsplash, event_log):
        service = build_service({"unsplash": unsplash})
        service.ordered_providers = Mock(side_effect=RuntimeError("unexpected"))

        image = await service.get_theme_image("harvest")

        assert image.source == ImageSource.FALLBACK
        assert len(event_log.error_metrics()) == 1

    async def test_usage_is_tracked(self, build_service, unsplash):
        attribution = AttributionManager()
        service = build_service({"unsplash": unsplash}, attribution=attribution)

        await service.get_theme_image("harvest")
        await service.get_theme_image("harvest")

        record = attribution.usage_for("api-unsplash-u1", "unsplash")
        assert record.usage_count == 2

    async def test_repeated_fallbacks_share_one_usage_record(self, build_service, config, clock):
        config.features.enable_caching = False
        attribution = AttributionManager(clock=clock.datetime)
        service = build_service(attribution=attribution)

        for _ in range(20):
            await service.get_theme_image("harvest")
            clock.advance(61)

        records = attribution.all_usage_records()
        assert len(records) == 1
        assert records[0].image_id == "fallback-hero-harvest-0"
        assert records[0].usage_count == 20


class TestCategoryImages:
    """Test cases for category image requests."""

    async def test_no_providers_returns_fallbacks(self, build_service, config):
        service = build_service()

        images = await service.get_category_images("livestock", 3)

        assert len(images) == 3
        assert all(image.source == ImageSource.FALLBACK for image in images)
        assert all(image.url == config.fallback_images.category for image in images)
        assert len({image.id for image in images}) == 3

    async def test_short_results_are_padded(self, build_service, unsplash, unsplash_requests):
        """Test that fewer relevant results than requested are padded with fallbacks."""
        service = build_service({"unsplash": unsplash})

        images = await service.get_category_images("livestock", 4)

        assert [image.source for image in images] == [
            ImageSource.UNSPLASH,
            ImageSource.UNSPLASH,
            ImageSource.FALLBACK,
            ImageSource.FALLBACK,
        ]
        assert images[2].id == "fallback-category-livestock-2"
        assert unsplash_requests[0].url.params["per_page"] == "8"

    async def test_results_are_ranked(self, build_service, unsplash):
        service = build_service({"unsplash": unsplash})

        images = await service.get_category_images("livestock", 2)

        # "Herd of cattle in a rural pasture" outscores "Cattle grazing on a farm pasture"
        assert [image.id for image in images] == ["api-unsplash-u2", "api-unsplash-u1"]

    async def test_cached_category_is_served_whole(self, build_service, unsplash, unsplash_requests):
        service = build_service({"unsplash": unsplash})

        first = await service.get_category_images("livestock", 2)
        second = await service.get_category_images("livestock", 2)

        assert second == first
        assert len(unsplash_requests) == 1
        assert service.cache.has("category:livestock:2:0")
        assert service.cache.has("category:livestock:2:1")

    async def test_partial_cache_is_refetched(self, build_service, unsplash, unsplash_requests):
        service = build_service({"unsplash": unsplash})

        await service.get_category_images("livestock", 2)
        service.cache.evict("category:livestock:2:1")
        await service.get_category_images("livestock", 2)

        assert len(unsplash_requests) == 2

    async def test_staged_tiers_when_nothing_relevant(self, build_service, make_provider, unsplash_photo):
        """Test that a provider answering with irrelevant results is asked with broader terms."""
        requests = []
        zoo = unsplash_photo("zoo", description="Cattle at the zoo")

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"results": [zoo]})

        service = build_service({"unsplash": make_provider(UnsplashProvider, handler)})

        images = await service.get_category_images("livestock", 2)

        assert all(image.source == ImageSource.FALLBACK for image in images)
        assert len(requests) == 3
        assert requests[1].url.params["query"].startswith("agriculture farming rural")

    async def test_failing_provider_moves_to_next(self, build_service, make_provider, pexels_photo):
        pexels_calls = []

        def pexels_handler(request):
            pexels_calls.append(request)
            return httpx.Response(200, json={"photos": [pexels_photo()]})

        service = build_service(
            {
                "unsplash": make_provider(UnsplashProvider, lambda r: httpx.Response(403, json={})),
                "pexels": make_provider(PexelsProvider, pexels_handler),
            }
        )

        images = await service.get_category_images("dairy", 1)

        assert images[0].source == ImageSource.PEXELS
        assert len(pexels_calls) == 1

    async def test_non_positive_count(self, build_service):
        service = build_service()

        assert await service.get_category_images("livestock", 0) == []
        assert await service.get_category_images("livestock", -2) == []

    async def test_category_images_disabled(self, build_service, unsplash, unsplash_requests, config):
        config.features.enable_category_images = False
        service = build_service({"unsplash": unsplash})

        images = await service.get_category_images("crops", 2)

        assert all(image.source == ImageSource.FALLBACK for image in images)
        assert unsplash_requests == []


class TestSectionImage:
    """Test cases for section background requests."""

    async def test_section_search_terms(self, build_service, unsplash, unsplash_requests):
        service = build_service({"unsplash": unsplash})

        image = await service.get_section_image("testimonials")

        assert image.source == ImageSource.UNSPLASH
        assert unsplash_requests[0].url.params["query"].startswith("happy farmers agricultural success")

    async def test_fallback_only_section(self, build_service, unsplash, unsplash_requests, config):
        config.sections["features"].image_source = "fallback"
        service = build_service({"unsplash": unsplash})

        image = await service.get_section_image("features")

        assert image.source == ImageSource.FALLBACK
        assert image.url == "/images/section-featured-farms-fallback.svg"
        assert unsplash_requests == []

    async def test_disabled_section_uses_fallback_override(self, build_service, unsplash, config):
        config.sections["hero"].enabled = False
        config.sections["hero"].fallback_image = "/images/custom-hero.svg"
        service = build_service({"unsplash": unsplash})

        image = await service.get_section_image("hero")

        assert image.url == "/images/custom-hero.svg"

    async def test_section_restricted_to_one_provider(
        self, build_service, unsplash, unsplash_requests, make_provider, pexels_photo, config
    ):
        config.sections["features"].image_source = "pexels"
        pexels = make_provider(PexelsProvider, lambda r: httpx.Response(200, json={"photos": [pexels_photo()]}))
        service = build_service({"unsplash": unsplash, "pexels": pexels})

        image = await service.get_section_image("features")

        assert image.source == ImageSource.PEXELS
        assert unsplash_requests == []

    async def test_unknown_section(self, build_service, unsplash, unsplash_requests):
        service = build_service({"unsplash": unsplash})

        await service.get_section_image("newsletter")

        assert unsplash_requests[0].url.params["query"].startswith("newsletter agriculture")

    async def test_unknown_section_without_providers(self, build_service, config):
        service = build_service()

        image = await service.get_section_image("newsletter")

        assert image.source == ImageSource.FALLBACK
        assert image.url == config.fallback_images.section


class TestPreloadAndAdministration:
    """Test cases for preloading, cache clearing and health."""

    async def test_preload_deduplicates_and_caches(self, build_service, unsplash, unsplash_requests):
        service = build_service({"unsplash": unsplash})

        await service.preload(["tractor", "tractor", "orchard", "  "])

        assert service.cache.has("preload:tractor")
        assert service.cache.has("preload:orchard")
        assert len(unsplash_requests) == 2

    @pytest.mark.parametrize("queries", [None, [], [None, 3, "   "]])
    async def test_preload_ignores_missing_queries(self, build_service, event_log, queries):
        service = build_service()

        await service.preload(queries)

        assert len(service.cache) == 0
        warnings = [entry.message for entry in event_log.recent_logs(level="warning")]
        assert "No queries provided for preloading" in warnings

    def test_preload_runs_on_separate_event_loops(self, build_service, config):
        """Test that one service can preload from loops created after construction."""
        config.performance.max_concurrent_requests = 1
        service = build_service()

        asyncio.run(service.preload(["tractor", "orchard"]))
        asyncio.run(service.preload(["barn", "silo"]))

        assert len(service.cache) == 4

    async def test_preload_skips_cached_queries(self, build_service, unsplash, unsplash_requests):
        service = build_service({"unsplash": unsplash})

        await service.preload(["tractor"])
        await service.preload(["tractor"])

        assert len(unsplash_requests) == 1

    async def test_preload_with_caching_disabled(self, build_service, unsplash, unsplash_requests, config):
        config.features.enable_caching = False
        service = build_service({"unsplash": unsplash})

        await service.preload(["tractor"])

        assert unsplash_requests == []

    async def test_preload_without_providers_caches_fallbacks(self, build_service):
        service = build_service()

        await service.preload(["tractor"])

        assert service.cache.get("preload:tractor").image.source == ImageSource.FALLBACK

    async def test_preload_failures_are_contained(self, build_service, event_log):
        service = build_service()
        service.cache.set = Mock(side_effect=RuntimeError("write failed"))

        await service.preload(["tractor", "orchard"])

        warnings = [entry.message for entry in event_log.recent_logs(level="warning")]
        assert 'Failed to preload image for query "tractor"' in warnings
        assert 'Failed to preload image for query "orchard"' in warnings

    async def test_preload_retries_cache_write(self, build_service, sleep):
        service = build_service()
        service.cache.set = Mock(side_effect=[CacheError("busy"), None])

        await service.preload(["tractor"])

        assert service.cache.set.call_count == 2
        assert len(sleep.delays) == 1

    async def test_clear_cache(self, build_service, unsplash):
        service = build_service({"unsplash": unsplash})
        await service.get_theme_image("harvest")

        await service.clear_cache()

        assert len(service.cache) == 0

    async def test_clear_cache_failure_raises_cache_error(self, build_service):
        service = build_service()
        service.cache.clear = Mock(side_effect=RuntimeError("boom"))

        with pytest.raises(CacheError):
            await service.clear_cache()

    def test_health_without_providers(self, build_service):
        service = build_service()

        health = service.health()

        assert health["status"] == "degraded"
        assert health["providers"] == {}
        assert health["cache"]["max"] == 100

    def test_health_with_providers(self, build_service, unsplash, make_provider):
        pexels = make_provider(PexelsProvider, lambda r: httpx.Response(200, json={"photos": []}))
        service = build_service({"pexels": pexels, "unsplash": unsplash})

        health = service.health()

        assert health["status"] == "healthy"
        assert health["priority"] == ["unsplash", "pexels"]
        assert health["providers"]["unsplash"]["quota"]["remaining"] == 50
        assert health["providers"]["pexels"]["retry"]["max_attempts"] == 3

    async def test_metrics(self, build_service, unsplash):
        service = build_service({"unsplash": unsplash})
        await service.get_theme_image("harvest")

        metrics = service.metrics()

        assert metrics["performance"]["total_operations"] == 1
        assert metrics["providers"]["total_requests"] == 1
        assert metrics["cache"]["size"] == 1
