"""
Core components of the image system.

The orchestration service lives in ``image_system.core.image_service`` and is
imported from there directly, since it depends on ``image_system.config``.

License: MIT
"""

from .models import (
    Attribution,
    CacheEntry,
    CacheStats,
    CategoryMapping,
    ImageDescriptor,
    ImageMetadata,
    ImageSource,
    ImageUrls,
    ProviderImage,
    QuotaInfo,
    SearchOptions,
)
from .exceptions import (
    CacheError,
    ConfigurationError,
    FallbackStrategy,
    ImageError,
    ImageErrorType,
    ImageSystemError,
    RetryHandler,
    ValidationError,
    classify_error,
)
from .category_matcher import CategoryMatcher, DEFAULT_CATEGORY_MAPPINGS
from .attribution import AttributionManager

__all__ = [
    "Attribution",
    "CacheEntry",
    "CacheStats",
    "CategoryMapping",
    "ImageDescriptor",
    "ImageMetadata",
    "ImageSource",
    "ImageUrls",
    "ProviderImage",
    "QuotaInfo",
    "SearchOptions",
    "CacheError",
    "ConfigurationError",
    "FallbackStrategy",
    "ImageError",
    "ImageErrorType",
    "ImageSystemError",
    "RetryHandler",
    "ValidationError",
    "classify_error",
    "CategoryMatcher",
    "DEFAULT_CATEGORY_MAPPINGS",
    "AttributionManager",
]
