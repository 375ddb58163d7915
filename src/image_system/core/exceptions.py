"""
Exceptions - Error taxonomy and classification for the image system

Part of the AgroLink Image Integration System.
Core Implementation

License: MIT
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar
import asyncio
import logging
import random

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ImageErrorType(str, Enum):
    """Closed set of error codes surfaced by the image system."""

    API_AUTHENTICATION = "API_AUTHENTICATION"
    API_RATE_LIMIT = "API_RATE_LIMIT"
    API_UNAVAILABLE = "API_UNAVAILABLE"
    NETWORK_ERROR = "NETWORK_ERROR"
    CACHE_ERROR = "CACHE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class FallbackStrategy(str, Enum):
    """Policy applied once retries are exhausted."""

    CACHE = "cache"
    ALTERNATIVE_API = "alternative_api"
    PLACEHOLDER = "placeholder"


_RETRYABLE = {
    ImageErrorType.API_RATE_LIMIT: True,
    ImageErrorType.NETWORK_ERROR: True,
    ImageErrorType.API_UNAVAILABLE: True,
    ImageErrorType.CACHE_ERROR: True,
    ImageErrorType.API_AUTHENTICATION: False,
    ImageErrorType.VALIDATION_ERROR: False,
    ImageErrorType.CONFIGURATION_ERROR: False,
}


def determine_fallback_strategy(
    code: ImageErrorType, provider: Optional[str] = None
) -> FallbackStrategy:
    """
    Pick the fallback strategy for an error code.

    Provider-scoped failures prefer another provider; failures without a
    provider degrade to cache or placeholder.
    """
    if code == ImageErrorType.API_AUTHENTICATION:
        return FallbackStrategy.ALTERNATIVE_API if provider else FallbackStrategy.PLACEHOLDER
    if code in (ImageErrorType.API_RATE_LIMIT, ImageErrorType.API_UNAVAILABLE):
        return FallbackStrategy.ALTERNATIVE_API if provider else FallbackStrategy.CACHE
    if code == ImageErrorType.NETWORK_ERROR:
        return FallbackStrategy.CACHE
    if code == ImageErrorType.CACHE_ERROR:
        return FallbackStrategy.ALTERNATIVE_API
    return FallbackStrategy.PLACEHOLDER


class ImageSystemError(Exception):
    """Base exception for the image system."""


class ImageError(ImageSystemError):
    """
    Classified error carrying a code, retryability and fallback strategy.
    """

    def __init__(
        self,
        code: ImageErrorType,
        message: str,
        provider: Optional[str] = None,
        retryable: Optional[bool] = None,
        fallback_strategy: Optional[FallbackStrategy] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider = provider
        self.retryable = _RETRYABLE.get(code, False) if retryable is None else retryable
        self.fallback_strategy = fallback_strategy or determine_fallback_strategy(code, provider)

    @classmethod
    def create(
        cls,
        code: ImageErrorType,
        message: str,
        provider: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> "ImageError":
        """Build an error whose retryability and strategy follow the taxonomy."""
        error = cls(code, message, provider)
        error.__cause__ = cause
        return error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "provider": self.provider,
            "retryable": self.retryable,
            "fallback_strategy": self.fallback_strategy.value,
            "cause": repr(self.__cause__) if self.__cause__ else None,
        }

    def __repr__(self) -> str:
        return f"ImageError(code={self.code.value}, provider={self.provider}, retryable={self.retryable})"


class CacheError(ImageError):
    """Cache operation failure."""

    def __init__(self, message: str):
        super().__init__(ImageErrorType.CACHE_ERROR, message, provider="cache")


class ValidationError(ImageError):
    """Invalid request parameters."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(ImageErrorType.VALIDATION_ERROR, message, provider)


class ConfigurationError(ImageError):
    """Invalid or incomplete configuration."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(ImageErrorType.CONFIGURATION_ERROR, message, provider)


# ============================================================================
# HTTP boundary errors
# ============================================================================


class ProviderTransportError(ImageSystemError):
    """Raised by the HTTP layer before any classification happens."""


class ProviderHTTPError(ProviderTransportError):
    """Non-2xx response from a provider."""

    def __init__(self, status_code: int, reason: str = "", headers: Optional[Mapping[str, str]] = None):
        super().__init__(f"HTTP {status_code}: {reason}".strip())
        self.status_code = status_code
        self.reason = reason
        self.headers = dict(headers or {})


class ProviderTimeoutError(ProviderTransportError):
    """Request exceeded its deadline and was cancelled."""


class ProviderConnectionError(ProviderTransportError):
    """DNS failure, refused or reset connection."""


class ProviderResponseError(ProviderTransportError):
    """Response body could not be understood."""


def classify_error(
    error: BaseException, context: str, provider: Optional[str] = None
) -> ImageError:
    """
    Map a raw failure onto the error taxonomy.

    Args:
        error: Exception raised by a provider call
        context: Human readable description of the attempted operation
        provider: Provider name, if the failure is provider-scoped

    Returns:
        Classified ImageError with the original exception chained
    """
    if isinstance(error, ImageError):
        return error

    if isinstance(error, ProviderHTTPError):
        status = error.status_code
        if status == 429:
            return ImageError.create(
                ImageErrorType.API_RATE_LIMIT, f"Rate limit exceeded for {context}", provider, error
            )
        if status in (401, 403):
            return ImageError.create(
                ImageErrorType.API_AUTHENTICATION, f"Authentication failed for {context}", provider, error
            )
        if 500 <= status < 600:
            return ImageError.create(
                ImageErrorType.API_UNAVAILABLE, f"API server error for {context}", provider, error
            )

    if isinstance(error, (ProviderTimeoutError, ProviderConnectionError, asyncio.TimeoutError)):
        return ImageError.create(
            ImageErrorType.NETWORK_ERROR, f"Network error for {context}", provider, error
        )

    unknown = ImageError(
        ImageErrorType.API_UNAVAILABLE,
        f"Unknown error for {context}: {error}",
        provider,
        retryable=False,
        fallback_strategy=FallbackStrategy.CACHE,
    )
    unknown.__cause__ = error
    return unknown


class RetryHandler:
    """
    General purpose async retry with exponential backoff and jitter.
    """

    DEFAULT_MAX_ATTEMPTS = 3
    DEFAULT_BASE_DELAY = 1.0
    DEFAULT_MAX_DELAY = 16.0

    @staticmethod
    def backoff_delay(
        attempt: int,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = 0.0,
        multiplier: float = 2.0,
    ) -> float:
        """Delay before retry number ``attempt`` (1-based), jitter added after the cap."""
        return min(base_delay * (multiplier ** (attempt - 1)), max_delay) + jitter

    @classmethod
    async def with_retry(
        cls,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        should_retry: Optional[Callable[[BaseException], bool]] = None,
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> T:
        """
        Execute ``operation`` until it succeeds or attempts run out.

        Raises:
            The last exception raised by ``operation``
        """
        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if attempt == max_attempts or (should_retry and not should_retry(e)):
                    raise
                if on_retry:
                    on_retry(attempt, e)
                delay = cls.backoff_delay(attempt, base_delay, max_delay, jitter())
                logger.warning(f"Attempt {attempt} failed: {e}. Retrying in {delay:.1f}s...")
                await sleep(delay)

        raise RuntimeError("max_attempts must be at least 1")
