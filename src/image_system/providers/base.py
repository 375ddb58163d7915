"""
Base Image Provider - Shared HTTP client, quota tracking and retry logic

Part of the AgroLink Image Integration System.
Provider Adapters

License: MIT
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
)
import asyncio
import logging
import random
import re
import time
from urllib.parse import quote

import httpx

from ..core.exceptions import (
    ImageError,
    ImageErrorType,
    ProviderConnectionError,
    ProviderHTTPError,
    ProviderResponseError,
    ProviderTimeoutError,
    RetryHandler,
    ValidationError,
    classify_error,
)
from ..core.models import ORIENTATIONS, SIZES, ProviderImage, QuotaInfo, SearchOptions
from ..infrastructure.event_log import EventLog
from ..infrastructure.rate_limiter import QuotaTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = "AgroLink-Image-Integration/1.0"
DEFAULT_TIMEOUT = 10.0
MAX_SEARCH_COUNT = 50

AGRICULTURAL_KEYWORDS = (
    "farm", "agriculture", "farming", "rural", "countryside", "pastoral",
    "cattle", "cow", "livestock", "dairy", "beef", "pasture", "ranch",
    "crop", "wheat", "corn", "grain", "harvest", "field", "plantation",
    "tractor", "machinery", "equipment", "barn", "farmhouse", "silo",
    "organic", "sustainable", "cultivation", "irrigation", "greenhouse",
)

FALLBACK_QUERY_PREFIXES = ("agriculture", "farming", "rural")
BROAD_FALLBACK_QUERY = "agriculture farming countryside"
RELEVANT_SHARE_THRESHOLD = 0.7


# ============================================================================
# Term selection
# ============================================================================


class TermSelector(Protocol):
    """Chooses one term from a non-empty sequence."""

    def choose(self, terms: Sequence[str]) -> str:
        ...


class RandomTermSelector:
    """Uniform random choice, reproducible when seeded."""

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)

    def choose(self, terms: Sequence[str]) -> str:
        return self._random.choice(list(terms))


class FixedTermSelector:
    """Always picks the term at ``index`` (wrapping around)."""

    def __init__(self, index: int = 0):
        self.index = index

    def choose(self, terms: Sequence[str]) -> str:
        return terms[self.index % len(terms)]


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 16.0
    backoff_multiplier: float = 2.0
    max_jitter: float = 1.0


# ============================================================================
# Base provider
# ============================================================================


class BaseImageProvider(ABC):
    """
    Base class for external image APIs.

    Every outbound call goes through ``execute_with_retry``: wait for quota,
    run the request with a fixed timeout, classify failures, back off and
    retry retryable ones. Subclasses supply request building and response
    normalization.
    """

    name: str = ""
    display_name: str = ""
    max_per_page: int = 30
    search_path: str = "/search"

    enrichment_terms: Mapping[str, Tuple[str, ...]] = {}
    category_queries: Mapping[str, str] = {}
    hero_queries: Tuple[str, ...] = ()

    def __init__(
        self,
        api_key: str,
        base_url: str,
        rate_limit: int,
        timeout: float = DEFAULT_TIMEOUT,
        retry_config: Optional[RetryConfig] = None,
        event_log: Optional[EventLog] = None,
        term_selector: Optional[TermSelector] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        """
        Initialize the provider.

        Args:
            api_key: Provider API key
            base_url: API root URL without trailing slash
            rate_limit: Requests allowed per trailing hour
            timeout: Per-request timeout in seconds
            retry_config: Retry policy (defaults to 3 attempts, 1s base, 16s cap)
            event_log: Optional event log receiving provider usage events
            term_selector: Strategy picking query enrichment terms
            client: Shared HTTP client (one is created and owned if omitted)
            clock: Wall clock for quota tracking
            sleep: Coroutine used for backoff and quota waits
            jitter: Returns a value in [0, 1) scaled by ``max_jitter``
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self.event_log = event_log
        self.term_selector: TermSelector = term_selector or RandomTermSelector()
        self.quota = QuotaTracker(max_requests=rate_limit, clock=clock, sleep=sleep)

        self._sleep = sleep
        self._jitter = jitter
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    # ------------------------------------------------------------------
    # Abstract hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def auth_headers(self) -> Dict[str, str]:
        """Provider specific authentication headers."""

    @abstractmethod
    def build_search_params(self, query: str, options: SearchOptions) -> Dict[str, Any]:
        """Query string for the search endpoint."""

    @abstractmethod
    def extract_search_results(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Raw result items from a search response body."""

    @abstractmethod
    def transform(self, raw: Dict[str, Any]) -> ProviderImage:
        """Normalize one raw item."""

    @abstractmethod
    async def get_quota(self) -> QuotaInfo:
        """Remaining quota, refined by provider data where available."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> List[ProviderImage]:
        """
        Search the provider.

        Args:
            query: Free text query
            options: Count, orientation, size and category

        Returns:
            Normalized results

        Raises:
            ValidationError: If the options or query are invalid
            ImageError: If the request fails after retries
        """
        options = options or SearchOptions()
        self.validate_search_options(options)

        sanitized = self.sanitize_query(query)
        if not sanitized:
            raise ValidationError("Search query cannot be empty", provider=self.name)

        params = self.build_search_params(sanitized, options)

        async def operation() -> List[ProviderImage]:
            response = await self._request(self.search_path, params)
            data = self._parse_json(response)
            try:
                return [self.transform(item) for item in self.extract_search_results(data)]
            except (KeyError, TypeError, ValueError) as e:
                raise ProviderResponseError(
                    f"Invalid response format from {self.display_name} API: {e}"
                ) from e

        return await self.execute_with_retry(operation, f'{self.display_name} search for "{sanitized}"')

    async def get_by_id(self, image_id: str) -> ProviderImage:
        """
        Fetch a single image.

        Raises:
            ValidationError: If the id is empty
            ImageError: If the request fails after retries
        """
        if not image_id or not isinstance(image_id, str):
            raise ValidationError("Image ID is required and must be a string", provider=self.name)

        async def operation() -> ProviderImage:
            response = await self._request(f"/photos/{quote(image_id, safe='')}")
            data = self._parse_json(response)
            try:
                return self.transform(data)
            except (KeyError, TypeError, ValueError) as e:
                raise ProviderResponseError(
                    f"Invalid response format from {self.display_name} API: {e}"
                ) from e

        return await self.execute_with_retry(operation, f'{self.display_name} image fetch for ID "{image_id}"')

    async def search_category(
        self, category: str, options: Optional[SearchOptions] = None
    ) -> List[ProviderImage]:
        """Search with the provider's canned query for ``category``."""
        options = options or SearchOptions()
        query = self.category_queries.get(category, self.category_queries.get("general", category))
        return await self.search(query, replace(options, category=category))

    async def get_hero_images(self, count: int = 5) -> List[ProviderImage]:
        """Landscape images for a hero banner."""
        query = self.term_selector.choose(self.hero_queries)
        return await self.search(query, SearchOptions(count=count, orientation="landscape", category="hero"))

    async def search_with_fallback(
        self, query: str, options: Optional[SearchOptions] = None
    ) -> List[ProviderImage]:
        """
        Search, falling back to broader agricultural queries when results are off-topic.

        The primary query is accepted when at least 70% of the requested count
        is on-topic. Each fallback query is accepted with any on-topic result.
        The last resort is the general category query.
        """
        options = options or SearchOptions()

        try:
            results = await self.search(query, options)
            relevant = [image for image in results if self.is_on_topic(image)]
            if relevant and len(relevant) >= options.count * RELEVANT_SHARE_THRESHOLD:
                return relevant[: options.count]
        except ImageError as e:
            logger.warning(f"{self.display_name} primary query '{query}' failed, trying fallback: {e}")

        fallback_queries = [f"{prefix} {query}" for prefix in FALLBACK_QUERY_PREFIXES]
        fallback_queries.append(BROAD_FALLBACK_QUERY)

        for fallback_query in fallback_queries:
            try:
                results = await self.search(fallback_query, options)
            except ImageError as e:
                logger.warning(f"{self.display_name} fallback query '{fallback_query}' failed: {e}")
                continue

            relevant = [image for image in results if self.is_on_topic(image)]
            if relevant:
                return relevant[: options.count]

        return await self.search_category("general", options)

    def is_on_topic(self, image: ProviderImage) -> bool:
        """Keyword containment check against the agricultural vocabulary."""
        text = image.search_text
        return any(keyword in text for keyword in AGRICULTURAL_KEYWORDS)

    # ------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------

    async def execute_with_retry(self, operation: Callable[[], Awaitable[T]], context: str) -> T:
        """
        Run ``operation`` with quota waits, classification and backoff.

        Args:
            operation: Coroutine factory performing one attempt
            context: Description used in error messages

        Returns:
            The operation's result

        Raises:
            ImageError: Classified error from the last attempt, or the first
                non-retryable one
        """
        config = self.retry_config

        for attempt in range(1, config.max_attempts + 1):
            await self.quota.await_quota()

            try:
                return await operation()
            except Exception as e:
                error = classify_error(e, context, self.name)

                if not error.retryable or attempt == config.max_attempts:
                    logger.warning(
                        f"{self.display_name} request failed after {attempt} attempt(s): "
                        f"{error.code.value} - {error.message}"
                    )
                    raise error

                delay = RetryHandler.backoff_delay(
                    attempt,
                    base_delay=config.base_delay,
                    max_delay=config.max_delay,
                    jitter=self._jitter() * config.max_jitter,
                    multiplier=config.backoff_multiplier,
                )
                logger.info(
                    f"{self.display_name} attempt {attempt} failed ({error.code.value}), "
                    f"retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        raise ValidationError("Retry configuration must allow at least one attempt", provider=self.name)

    async def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        Issue one GET request and translate transport failures into typed errors.

        Raises:
            ImageError: If no API key is configured
            ProviderTimeoutError: If the request exceeded the timeout
            ProviderConnectionError: If the connection could not be made
            ProviderHTTPError: If the provider answered with a non-2xx status
        """
        if not self.has_credentials:
            raise ImageError(
                ImageErrorType.API_AUTHENTICATION,
                f"{self.display_name} API key is required for authentication",
                provider=self.name,
            )

        headers = {"User-Agent": USER_AGENT, "Accept": "application/json", **self.auth_headers()}
        started = time.perf_counter()

        try:
            response = await self._client.get(
                f"{self.base_url}{path}", params=params, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            # Anything past the connect phase reached the provider
            if not isinstance(e, httpx.ConnectTimeout):
                self.quota.record_usage()
            self._track_usage(path, started, success=False, error_type="timeout")
            raise ProviderTimeoutError(
                f"{self.display_name} request timed out after {self.timeout}s"
            ) from e
        except httpx.TransportError as e:
            if not isinstance(e, httpx.ConnectError):
                self.quota.record_usage()
            self._track_usage(path, started, success=False, error_type="connection")
            raise ProviderConnectionError(f"{self.display_name} connection failed: {e}") from e

        self.quota.record_usage()

        if response.is_error:
            self._track_usage(
                path, started, success=False, status_code=response.status_code, error_type="http", response=response
            )
            raise ProviderHTTPError(response.status_code, response.reason_phrase, response.headers)

        self._track_usage(path, started, success=True, status_code=response.status_code, response=response)
        return response

    def _parse_json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(f"{self.display_name} returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise ProviderResponseError(f"Invalid response format from {self.display_name} API")
        return data

    def remaining_from_response(self, response: Optional[httpx.Response]) -> int:
        """Remaining quota after a response; local tracking unless overridden."""
        return self.quota.quota_info().remaining

    def _track_usage(
        self,
        path: str,
        started: float,
        success: bool,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        response: Optional[httpx.Response] = None,
    ) -> None:
        if self.event_log is None:
            return
        self.event_log.track_provider_usage(
            provider=self.name,
            endpoint=path,
            response_time_ms=(time.perf_counter() - started) * 1000,
            success=success,
            status_code=status_code,
            error_type=error_type,
            rate_limit_remaining=self.remaining_from_response(response),
        )

    # ------------------------------------------------------------------
    # Validation and query handling
    # ------------------------------------------------------------------

    def validate_search_options(self, options: SearchOptions) -> None:
        if options.count <= 0 or options.count > MAX_SEARCH_COUNT:
            raise ValidationError(f"Search count must be between 1 and {MAX_SEARCH_COUNT}", provider=self.name)

        if options.orientation and options.orientation not in ORIENTATIONS:
            raise ValidationError(
                "Invalid orientation. Must be landscape, portrait, or square", provider=self.name
            )

        if options.size and options.size not in SIZES:
            raise ValidationError("Invalid size. Must be small, medium, or large", provider=self.name)

    @staticmethod
    def sanitize_query(query: str) -> str:
        """Strip punctuation except hyphens, collapse whitespace and lowercase."""
        cleaned = re.sub(r"[^\w\s-]", "", (query or "").strip(), flags=re.ASCII)
        return re.sub(r"\s+", " ", cleaned).strip().lower()

    def enhance_query(self, query: str, category: str) -> str:
        """Append one enrichment term for ``category`` to bias results."""
        terms = self.enrichment_terms.get(category) or self.enrichment_terms.get("general")
        if not terms:
            return query
        return f"{query} {self.term_selector.choose(terms)}"

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def update_retry_config(self, **changes: Any) -> None:
        self.retry_config = replace(self.retry_config, **changes)
        logger.info(f"{self.display_name} retry configuration updated: {self.retry_config}")

    def get_retry_config(self) -> RetryConfig:
        return self.retry_config

    def clear_request_history(self) -> None:
        self.quota.clear()

    async def aclose(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "BaseImageProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
