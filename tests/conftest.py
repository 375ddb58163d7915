"""
Test Configuration - Shared test fixtures and setup

This module provides fake clocks, an isolated event log, sample provider
payloads and provider adapters wired to an in-process HTTP transport.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
import pytest

from image_system.config import ImageSystemConfig
from image_system.core.category_matcher import CategoryMatcher
from image_system.core.models import Attribution, ImageDescriptor, ImageMetadata, ImageSource
from image_system.infrastructure.cache import ImageCache
from image_system.infrastructure.event_log import EventLog
from image_system.providers import FixedTermSelector, RetryConfig

START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def time(self) -> float:
        return self.now

    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.now)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and moves the fake clock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.delays: List[float] = []
        self.clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def event_log(clock) -> EventLog:
    """Event log with its own Prometheus registry."""
    return EventLog(buffer_size=500, clock=clock.time)


@pytest.fixture
def cache(event_log, clock) -> ImageCache:
    return ImageCache(max_size=3, default_ttl=60, event_log=event_log, clock=clock.datetime)


@pytest.fixture
def matcher() -> CategoryMatcher:
    return CategoryMatcher()


@pytest.fixture
def config() -> ImageSystemConfig:
    """Default configuration with both providers keyed."""
    config = ImageSystemConfig()
    config.providers.unsplash.api_key = "unsplash-test-key"
    config.providers.pexels.api_key = "pexels-test-key"
    return config


@pytest.fixture
def make_descriptor() -> Callable[..., ImageDescriptor]:
    """Factory for provider-sourced descriptors."""

    def factory(
        image_id: str = "img-1",
        source: ImageSource = ImageSource.UNSPLASH,
        alt_text: str = "Cattle grazing on a farm pasture",
        tags: Sequence[str] = ("cattle", "farm"),
        photographer: str = "Jane Farmer",
        photographer_url: str = "https://example.com/@jane",
        required: bool = True,
    ) -> ImageDescriptor:
        return ImageDescriptor(
            id=image_id,
            url=f"https://images.example.com/{image_id}.jpg",
            thumbnail_url=f"https://images.example.com/{image_id}-thumb.jpg",
            alt_text=alt_text,
            attribution=Attribution(
                photographer=photographer,
                photographer_url=photographer_url,
                source=source.value,
                required=required,
            ),
            source=source,
            metadata=ImageMetadata(tags=tuple(tags)),
        )

    return factory


@pytest.fixture
def unsplash_photo() -> Callable[..., Dict[str, Any]]:
    """Factory for raw Unsplash photo objects."""

    def factory(
        photo_id: str = "u1",
        description: str = "Cattle grazing on a farm pasture",
        photographer: str = "Jane Farmer",
        tags: Sequence[str] = ("cattle", "farm"),
    ) -> Dict[str, Any]:
        base = f"https://images.unsplash.com/photo-{photo_id}"
        return {
            "id": photo_id,
            "description": description,
            "alt_description": description,
            "width": 4000,
            "height": 3000,
            "color": "#a0b0c0",
            "urls": {
                "raw": f"{base}?raw",
                "full": f"{base}?full",
                "regular": f"{base}?w=1080",
                "small": f"{base}?w=400",
                "thumb": f"{base}?w=200",
            },
            "user": {"name": photographer, "links": {"html": f"https://unsplash.com/@{photo_id}"}},
            "links": {"download": f"https://unsplash.com/photos/{photo_id}/download"},
            "tags": [{"title": tag} for tag in tags],
        }

    return factory


@pytest.fixture
def pexels_photo() -> Callable[..., Dict[str, Any]]:
    """Factory for raw Pexels photo objects."""

    def factory(
        photo_id: int = 101,
        alt: str = "Dairy cows grazing in a green pasture",
        photographer: str = "Sam Grower",
    ) -> Dict[str, Any]:
        base = f"https://images.pexels.com/photos/{photo_id}/photo.jpeg"
        return {
            "id": photo_id,
            "width": 5000,
            "height": 3333,
            "alt": alt,
            "photographer": photographer,
            "photographer_url": "https://www.pexels.com/@sam",
            "avg_color": "#556B2F",
            "src": {
                "original": base,
                "large2x": f"{base}?w=1880",
                "large": f"{base}?w=940",
                "medium": f"{base}?h=350",
                "small": f"{base}?h=130",
            },
        }

    return factory


@pytest.fixture
def make_provider(clock, sleep, event_log):
    """
    Factory building a provider adapter whose HTTP calls go to ``handler``.

    Backoff jitter is zero and enrichment always picks the first term.
    """

    def factory(provider_class, handler, api_key: str = "test-key", rate_limit: int = 50, max_attempts: int = 3):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return provider_class(
            api_key=api_key,
            rate_limit=rate_limit,
            retry_config=RetryConfig(max_attempts=max_attempts, base_delay=1.0, max_delay=16.0),
            event_log=event_log,
            term_selector=FixedTermSelector(),
            client=client,
            clock=clock.time,
            sleep=sleep,
            jitter=lambda: 0.0,
        )

    return factory
