"""
Unit Tests for Error Classification and Retry

Tests the error taxonomy, HTTP boundary classification and backoff helpers.
"""

import asyncio

import pytest

from image_system.core.exceptions import (
    CacheError,
    ConfigurationError,
    FallbackStrategy,
    ImageError,
    ImageErrorType,
    ProviderConnectionError,
    ProviderHTTPError,
    ProviderResponseError,
    ProviderTimeoutError,
    RetryHandler,
    ValidationError,
    classify_error,
    determine_fallback_strategy,
)


class TestClassifyError:
    """Test cases for classify_error."""

    @pytest.mark.parametrize(
        "error, code, retryable, strategy",
        [
            (ProviderHTTPError(429), ImageErrorType.API_RATE_LIMIT, True, FallbackStrategy.ALTERNATIVE_API),
            (ProviderHTTPError(401), ImageErrorType.API_AUTHENTICATION, False, FallbackStrategy.ALTERNATIVE_API),
            (ProviderHTTPError(403), ImageErrorType.API_AUTHENTICATION, False, FallbackStrategy.ALTERNATIVE_API),
            (ProviderHTTPError(503), ImageErrorType.API_UNAVAILABLE, True, FallbackStrategy.ALTERNATIVE_API),
            (ProviderTimeoutError("slow"), ImageErrorType.NETWORK_ERROR, True, FallbackStrategy.CACHE),
            (ProviderConnectionError("refused"), ImageErrorType.NETWORK_ERROR, True, FallbackStrategy.CACHE),
            (asyncio.TimeoutError(), ImageErrorType.NETWORK_ERROR, True, FallbackStrategy.CACHE),
        ],
    )
    def test_known_failures(self, error, code, retryable, strategy):
        """Test discriminant-based classification."""
        classified = classify_error(error, "search", provider="unsplash")

        assert classified.code == code
        assert classified.retryable is retryable
        assert classified.fallback_strategy == strategy
        assert classified.provider == "unsplash"
        assert classified.__cause__ is error

    @pytest.mark.parametrize(
        "error",
        [ProviderHTTPError(404, "Not Found"), ProviderResponseError("bad body"), ValueError("boom")],
    )
    def test_unknown_failures_are_not_retried(self, error):
        """Test the catch-all classification."""
        classified = classify_error(error, "search", provider="pexels")

        assert classified.code == ImageErrorType.API_UNAVAILABLE
        assert classified.retryable is False
        assert classified.fallback_strategy == FallbackStrategy.CACHE
        assert "Unknown error for search" in classified.message

    def test_image_error_passes_through(self):
        original = ImageError(ImageErrorType.API_RATE_LIMIT, "slow down", provider="unsplash")

        assert classify_error(original, "search") is original

    def test_http_error_carries_response_details(self):
        error = ProviderHTTPError(429, "Too Many Requests", {"Retry-After": "30"})

        assert error.status_code == 429
        assert error.headers["Retry-After"] == "30"
        assert "429" in str(error)


class TestErrorTaxonomy:
    """Test cases for error types and fallback strategies."""

    @pytest.mark.parametrize(
        "code, provider, expected",
        [
            (ImageErrorType.API_AUTHENTICATION, None, FallbackStrategy.PLACEHOLDER),
            (ImageErrorType.API_RATE_LIMIT, None, FallbackStrategy.CACHE),
            (ImageErrorType.API_UNAVAILABLE, None, FallbackStrategy.CACHE),
            (ImageErrorType.NETWORK_ERROR, "unsplash", FallbackStrategy.CACHE),
            (ImageErrorType.CACHE_ERROR, None, FallbackStrategy.ALTERNATIVE_API),
            (ImageErrorType.VALIDATION_ERROR, "pexels", FallbackStrategy.PLACEHOLDER),
            (ImageErrorType.CONFIGURATION_ERROR, None, FallbackStrategy.PLACEHOLDER),
        ],
    )
    def test_fallback_strategy(self, code, provider, expected):
        assert determine_fallback_strategy(code, provider) == expected

    def test_create_chains_cause(self):
        cause = RuntimeError("socket closed")
        error = ImageError.create(ImageErrorType.NETWORK_ERROR, "Network error", "pexels", cause)

        assert error.retryable is True
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == repr(cause)

    def test_subclasses(self):
        cache_error = CacheError("disk full")
        validation_error = ValidationError("bad count", provider="unsplash")
        configuration_error = ConfigurationError("missing key")

        assert cache_error.code == ImageErrorType.CACHE_ERROR
        assert cache_error.provider == "cache"
        assert cache_error.retryable is True
        assert validation_error.code == ImageErrorType.VALIDATION_ERROR
        assert validation_error.retryable is False
        assert configuration_error.code == ImageErrorType.CONFIGURATION_ERROR

    def test_to_dict(self):
        data = ValidationError("bad count", provider="unsplash").to_dict()

        assert data == {
            "code": "VALIDATION_ERROR",
            "message": "bad count",
            "provider": "unsplash",
            "retryable": False,
            "fallback_strategy": "placeholder",
            "cause": None,
        }


class TestRetryHandler:
    """Test cases for RetryHandler."""

    @pytest.mark.parametrize("attempt, expected", [(1, 1.0), (2, 2.0), (3, 4.0), (5, 16.0), (6, 16.0)])
    def test_backoff_delay_is_capped(self, attempt, expected):
        assert RetryHandler.backoff_delay(attempt, base_delay=1.0, max_delay=16.0) == expected

    def test_backoff_delay_adds_jitter_after_cap(self):
        assert RetryHandler.backoff_delay(6, base_delay=1.0, max_delay=16.0, jitter=0.5) == 16.5

    async def test_with_retry_succeeds_after_failures(self, sleep):
        """Test recovery on the third attempt."""
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise CacheError("busy")
            return "done"

        result = await RetryHandler.with_retry(operation, max_attempts=3, sleep=sleep, jitter=lambda: 0.0)

        assert result == "done"
        assert len(calls) == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_with_retry_exhausts_attempts(self, sleep):
        """Test that a persistent failure is attempted exactly max_attempts times."""
        calls = []

        async def operation():
            calls.append(1)
            raise CacheError("busy")

        with pytest.raises(CacheError):
            await RetryHandler.with_retry(
                operation, max_attempts=5, base_delay=1.0, max_delay=4.0, sleep=sleep, jitter=lambda: 0.0
            )

        assert len(calls) == 5
        assert sleep.delays == [1.0, 2.0, 4.0, 4.0]
        assert sleep.delays == sorted(sleep.delays)
        assert max(sleep.delays) <= 4.0

    async def test_with_retry_respects_should_retry(self, sleep):
        calls = []
        retried = []

        async def operation():
            calls.append(1)
            raise ValueError("permanent")

        with pytest.raises(ValueError):
            await RetryHandler.with_retry(
                operation,
                should_retry=lambda e: isinstance(e, CacheError),
                on_retry=lambda attempt, e: retried.append(attempt),
                sleep=sleep,
            )

        assert len(calls) == 1
        assert retried == []
        assert sleep.delays == []

    async def test_with_retry_calls_on_retry(self, sleep):
        retried = []
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) == 1:
                raise CacheError("busy")
            return 42

        result = await RetryHandler.with_retry(
            operation, on_retry=lambda attempt, e: retried.append(attempt), sleep=sleep, jitter=lambda: 0.0
        )

        assert result == 42
        assert retried == [1]
