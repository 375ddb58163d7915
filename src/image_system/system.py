"""
Image System - Composition root wiring configuration to services

Part of the AgroLink Image Integration System.

Builds every component explicitly from one configuration object and owns
the background tasks and HTTP clients for the lifetime of the system.

License: MIT
"""

from typing import Any, Dict, List, Optional
import logging

import httpx

from . import __version__
from .config import ConfigManager, ImageSystemConfig
from .core.attribution import AttributionManager
from .core.category_matcher import CategoryMatcher
from .core.image_service import ImageService
from .infrastructure.cache import ImageCache
from .infrastructure.event_log import EventLog, LogLevel
from .infrastructure.monitoring import MonitoringService
from .infrastructure.scheduler import PeriodicTask
from .providers import PROVIDER_CLASSES, BaseImageProvider, RetryConfig

logger = logging.getLogger(__name__)


class ImageSystem:
    """
    Fully wired image system.

    Usage:
        async with ImageSystem.from_config(config) as system:
            image = await system.service.get_theme_image("harvest")
    """

    def __init__(
        self,
        config: ImageSystemConfig,
        event_log: EventLog,
        cache: ImageCache,
        matcher: CategoryMatcher,
        attribution: AttributionManager,
        providers: Dict[str, BaseImageProvider],
        service: ImageService,
        monitoring: MonitoringService,
    ):
        self.config = config
        self.event_log = event_log
        self.cache = cache
        self.matcher = matcher
        self.attribution = attribution
        self.providers = providers
        self.service = service
        self.monitoring = monitoring

        monitoring_config = config.monitoring
        self.tasks: List[PeriodicTask] = [
            PeriodicTask("alert-evaluation", monitoring_config.alert_interval, monitoring.evaluate_alerts),
            PeriodicTask(
                "metrics-cleanup",
                monitoring_config.cleanup_interval,
                lambda: monitoring.force_cleanup(monitoring_config.metrics_max_age),
            ),
            PeriodicTask("cache-expiry-sweep", monitoring_config.cleanup_interval, cache.cleanup_expired),
        ]
        self._started = False

    @classmethod
    def from_config(
        cls,
        config: Optional[ImageSystemConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        **provider_kwargs: Any,
    ) -> "ImageSystem":
        """
        Build the system from a configuration object.

        Args:
            config: Materialized configuration (loaded from defaults, file and
                environment when omitted)
            client: Shared HTTP client for all providers (each provider owns
                its own client when omitted)
            **provider_kwargs: Extra keyword arguments for provider constructors
                (term selector, clock, sleep, jitter)

        Returns:
            Wired, not yet started, ImageSystem
        """
        if config is None:
            config = ConfigManager().load_config()

        monitoring_config = config.monitoring
        event_log = EventLog(
            buffer_size=monitoring_config.log_buffer_size,
            min_level=_event_log_level(config.logging.level),
            prometheus_enabled=monitoring_config.prometheus_enabled,
        )
        cache = ImageCache(
            max_size=config.cache.max_size,
            default_ttl=config.cache.default_ttl,
            event_log=event_log,
        )
        matcher = CategoryMatcher(config.categories)
        attribution = AttributionManager()

        performance = config.performance
        retry_config = RetryConfig(
            max_attempts=performance.retry_attempts,
            base_delay=performance.retry_delay,
            max_delay=performance.retry_max_delay,
        )

        providers: Dict[str, BaseImageProvider] = {}
        for name in config.providers.priority:
            provider_class = PROVIDER_CLASSES.get(name)
            if provider_class is None:
                logger.warning(f"Unknown provider in priority list: {name}")
                continue
            if not config.provider_active(name):
                logger.info(f"{provider_class.display_name} provider not initialized - disabled or missing key")
                continue

            provider_config = getattr(config.providers, name)
            providers[name] = provider_class(
                api_key=provider_config.api_key,
                base_url=provider_config.base_url,
                rate_limit=provider_config.rate_limit,
                timeout=performance.request_timeout,
                retry_config=retry_config,
                event_log=event_log,
                client=client,
                **provider_kwargs,
            )
            logger.info(f"{provider_class.display_name} provider initialized")

        service = ImageService(
            config=config,
            cache=cache,
            matcher=matcher,
            providers=providers,
            event_log=event_log,
            attribution=attribution,
        )
        monitoring = MonitoringService(
            event_log=event_log,
            cache=cache,
            attribution=attribution,
            health_window=monitoring_config.health_window,
            version=__version__,
        )

        logger.info(
            f"Image system built: providers={list(providers) or 'none'}, "
            f"cache={config.cache.max_size} entries, environment={config.environment}"
        )
        return cls(config, event_log, cache, matcher, attribution, providers, service, monitoring)

    def start(self) -> None:
        """Start background tasks (must be called from a running event loop)."""
        if self._started:
            return
        for task in self.tasks:
            task.start()
        self._started = True

    async def shutdown(self) -> None:
        """Stop background tasks and close provider clients."""
        for task in self.tasks:
            await task.stop()
        await self.service.aclose()
        self._started = False
        logger.info("Image system shut down")

    async def __aenter__(self) -> "ImageSystem":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()


def _event_log_level(level: str) -> str:
    normalized = level.lower()
    if normalized == "critical":
        return LogLevel.ERROR.value
    if normalized in {member.value for member in LogLevel}:
        return normalized
    return LogLevel.INFO.value
