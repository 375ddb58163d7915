"""
Content provider adapters.

License: MIT
"""

from .base import (
    BaseImageProvider,
    FixedTermSelector,
    RandomTermSelector,
    RetryConfig,
    TermSelector,
)
from .unsplash import UnsplashProvider
from .pexels import PexelsProvider

PROVIDER_CLASSES = {
    UnsplashProvider.name: UnsplashProvider,
    PexelsProvider.name: PexelsProvider,
}

__all__ = [
    "BaseImageProvider",
    "FixedTermSelector",
    "RandomTermSelector",
    "RetryConfig",
    "TermSelector",
    "UnsplashProvider",
    "PexelsProvider",
    "PROVIDER_CLASSES",
]
