"""
AgroLink Image System - Resilient agricultural image retrieval and caching

Serves hero, category and section imagery by consulting an in-memory LRU+TTL
cache, then Unsplash and Pexels in priority order, then bundled static
assets, so callers always receive a usable image.

Core
- Category matching and relevance scoring
- Attribution tracking
- Cache-first orchestration with guaranteed fallback

Providers
- Quota-aware, retrying Unsplash and Pexels adapters

Infrastructure
- Bounded cache with eviction observers
- Event log with Prometheus metrics
- Health monitoring, alert rules and reports

License: MIT
"""

__version__ = "1.0.0"
__author__ = "AgroLink"

# Configuration first: it pulls in the category table from core
from .config import (
    ConfigManager,
    ImageSystemConfig,
    ProviderConfig,
    ProvidersConfig,
    CacheConfig,
    FallbackImagesConfig,
    FeaturesConfig,
    PerformanceConfig,
    SectionConfig,
    LoggingConfig,
    MonitoringConfig,
)

# Core exports
from .core import (
    Attribution,
    AttributionManager,
    CacheError,
    CategoryMapping,
    CategoryMatcher,
    ConfigurationError,
    ImageDescriptor,
    ImageError,
    ImageErrorType,
    ImageMetadata,
    ImageSource,
    ImageSystemError,
    ProviderImage,
    SearchOptions,
    ValidationError,
)
from .core.image_service import ImageService

# Provider exports
from .providers import (
    BaseImageProvider,
    FixedTermSelector,
    PexelsProvider,
    RandomTermSelector,
    RetryConfig,
    UnsplashProvider,
)

# Infrastructure exports
from .infrastructure import (
    EventLog,
    ImageCache,
    MonitoringService,
    PeriodicTask,
    QuotaTracker,
    ReportOptions,
    setup_logging,
    setup_logging_from_config,
)

# Composition root
from .system import ImageSystem

__all__ = [
    # Configuration
    "ConfigManager",
    "ImageSystemConfig",
    "ProviderConfig",
    "ProvidersConfig",
    "CacheConfig",
    "FallbackImagesConfig",
    "FeaturesConfig",
    "PerformanceConfig",
    "SectionConfig",
    "LoggingConfig",
    "MonitoringConfig",
    # Core
    "Attribution",
    "AttributionManager",
    "CacheError",
    "CategoryMapping",
    "CategoryMatcher",
    "ConfigurationError",
    "ImageDescriptor",
    "ImageError",
    "ImageErrorType",
    "ImageMetadata",
    "ImageService",
    "ImageSource",
    "ImageSystemError",
    "ProviderImage",
    "SearchOptions",
    "ValidationError",
    # Providers
    "BaseImageProvider",
    "FixedTermSelector",
    "PexelsProvider",
    "RandomTermSelector",
    "RetryConfig",
    "UnsplashProvider",
    # Infrastructure
    "EventLog",
    "ImageCache",
    "MonitoringService",
    "PeriodicTask",
    "QuotaTracker",
    "ReportOptions",
    "setup_logging",
    "setup_logging_from_config",
    # Composition root
    "ImageSystem",
]
