"""
Configuration Management - Centralized configuration for the image system

Part of the AgroLink Image Integration System.

License: MIT
"""

import os
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from pathlib import Path
import logging

import yaml
from dotenv import load_dotenv

from .core.category_matcher import DEFAULT_CATEGORY_MAPPINGS
from .core.exceptions import ConfigurationError
from .core.models import CategoryMapping

logger = logging.getLogger(__name__)


@dataclass
class ProviderConfig:
    """Configuration for a single content provider."""

    api_key: str = ""
    base_url: str = ""
    rate_limit: int = 50  # requests per hour
    enabled: bool = True


@dataclass
class ProvidersConfig:
    """Configuration for all content providers."""

    unsplash: ProviderConfig = field(
        default_factory=lambda: ProviderConfig(base_url="https://api.unsplash.com", rate_limit=50)
    )
    pexels: ProviderConfig = field(
        default_factory=lambda: ProviderConfig(base_url="https://api.pexels.com/v1", rate_limit=200)
    )
    priority: List[str] = field(default_factory=lambda: ["unsplash", "pexels"])


@dataclass
class CacheConfig:
    """Configuration for the in-memory image cache."""

    max_size: int = 100
    default_ttl: int = 86400  # 24 hours
    eviction_policy: str = "lru"
    enabled: bool = True


@dataclass
class FallbackImagesConfig:
    """Static assets served when no provider yields a usable image."""

    hero: str = "/images/hero-fallback.svg"
    category: str = "/images/category-farms-fallback.svg"
    section: str = "/images/section-featured-farms-fallback.svg"


@dataclass
class FeaturesConfig:
    """Feature flags."""

    enable_unsplash: bool = True
    enable_pexels: bool = True
    enable_caching: bool = True
    enable_attribution: bool = True
    enable_hero_section: bool = True
    enable_category_images: bool = True
    enable_section_backgrounds: bool = True


@dataclass
class PerformanceConfig:
    """Configuration for outbound request behaviour."""

    request_timeout: float = 10.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    retry_max_delay: float = 16.0
    max_concurrent_requests: int = 5


@dataclass
class SectionConfig:
    """Per-section image settings."""

    enabled: bool = True
    image_source: str = "both"  # unsplash | pexels | both | fallback
    search_terms: List[str] = field(default_factory=list)
    fallback_image: Optional[str] = None


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format_type: str = "structured"
    log_file: Optional[str] = None
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass
class MonitoringConfig:
    """Configuration for metrics and alerting."""

    prometheus_enabled: bool = True
    health_window: float = 300.0
    alert_interval: float = 300.0
    cleanup_interval: float = 3600.0
    metrics_max_age: float = 86400.0
    log_buffer_size: int = 1000


def _default_sections() -> Dict[str, SectionConfig]:
    return {
        "hero": SectionConfig(
            search_terms=["agriculture", "farming", "rural landscape"],
            fallback_image="/images/hero-fallback.svg",
        ),
        "categories": SectionConfig(fallback_image="/images/category-farms-fallback.svg"),
        "features": SectionConfig(
            search_terms=["agriculture technology", "modern farming"],
            fallback_image="/images/section-featured-farms-fallback.svg",
        ),
        "testimonials": SectionConfig(
            search_terms=["happy farmers", "agricultural success"],
            fallback_image="/images/section-featured-farms-fallback.svg",
        ),
    }


@dataclass
class ImageSystemConfig:
    """Main image system configuration."""

    environment: str = "development"
    debug: bool = False

    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    fallback_images: FallbackImagesConfig = field(default_factory=FallbackImagesConfig)
    features: FeaturesConfig = field(default_factory=FeaturesConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    sections: Dict[str, SectionConfig] = field(default_factory=_default_sections)
    categories: List[CategoryMapping] = field(default_factory=lambda: list(DEFAULT_CATEGORY_MAPPINGS))
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def provider_active(self, name: str) -> bool:
        """A provider is active when its section and feature flags are on and it has a key."""
        provider = getattr(self.providers, name, None)
        if provider is None:
            return False
        feature_enabled = getattr(self.features, f"enable_{name}", False)
        return bool(provider.enabled and feature_enabled and provider.api_key)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() == "true"


class ConfigManager:
    """
    Configuration manager for loading and validating configuration.
    """

    def __init__(self, config_path: Optional[str] = None, load_env_file: bool = True):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to YAML configuration file (optional)
            load_env_file: Read a ``.env`` file into the environment first
        """
        self.config_path = config_path
        self.load_env_file = load_env_file
        self._config: Optional[ImageSystemConfig] = None

    def load_config(self) -> ImageSystemConfig:
        """
        Load configuration from defaults, file and environment variables.

        Returns:
            ImageSystemConfig instance

        Raises:
            ConfigurationError: If the resulting configuration is invalid
        """
        if self._config is not None:
            return self._config

        if self.load_env_file:
            load_dotenv()

        config = ImageSystemConfig()

        if self.config_path and Path(self.config_path).exists():
            config = self._load_from_file(config, self.config_path)

        config = self._load_from_env(config)

        self.validate(config)

        self._config = config
        logger.info(f"Configuration loaded for environment: {config.environment}")

        return config

    def _load_from_file(self, config: ImageSystemConfig, file_path: str) -> ImageSystemConfig:
        """Load configuration from YAML file."""
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Error loading configuration from {file_path}: {e}") from e

        self._update_config_from_dict(config, file_config)
        logger.info(f"Configuration loaded from file: {file_path}")
        return config

    def _load_from_env(self, config: ImageSystemConfig) -> ImageSystemConfig:
        """Load configuration from environment variables."""

        # Environment
        config.environment = os.getenv("ENVIRONMENT", config.environment)
        config.debug = _env_bool("DEBUG", config.debug)

        # Providers
        unsplash = config.providers.unsplash
        unsplash.api_key = os.getenv("UNSPLASH_ACCESS_KEY", unsplash.api_key)
        unsplash.base_url = os.getenv("UNSPLASH_BASE_URL", unsplash.base_url)
        unsplash.rate_limit = int(os.getenv("UNSPLASH_RATE_LIMIT", str(unsplash.rate_limit)))
        unsplash.enabled = _env_bool("ENABLE_UNSPLASH", unsplash.enabled)

        pexels = config.providers.pexels
        pexels.api_key = os.getenv("PEXELS_API_KEY", pexels.api_key)
        pexels.base_url = os.getenv("PEXELS_BASE_URL", pexels.base_url)
        pexels.rate_limit = int(os.getenv("PEXELS_RATE_LIMIT", str(pexels.rate_limit)))
        pexels.enabled = _env_bool("ENABLE_PEXELS", pexels.enabled)

        priority_env = os.getenv("IMAGE_PROVIDER_PRIORITY")
        if priority_env:
            config.providers.priority = [p.strip().lower() for p in priority_env.split(",") if p.strip()]

        # Cache
        config.cache.max_size = int(os.getenv("IMAGE_CACHE_MAX_SIZE", str(config.cache.max_size)))
        config.cache.default_ttl = int(os.getenv("IMAGE_CACHE_TTL", str(config.cache.default_ttl)))
        config.cache.eviction_policy = os.getenv(
            "IMAGE_CACHE_EVICTION_POLICY", config.cache.eviction_policy
        )
        config.cache.enabled = _env_bool("IMAGE_CACHE_ENABLED", config.cache.enabled)

        # Features
        config.features.enable_caching = _env_bool(
            "ENABLE_IMAGE_CACHING", config.features.enable_caching
        )
        config.features.enable_attribution = _env_bool(
            "ENABLE_ATTRIBUTION", config.features.enable_attribution
        )

        # Fallback assets
        config.fallback_images.hero = os.getenv("HERO_FALLBACK_IMAGE", config.fallback_images.hero)
        config.fallback_images.category = os.getenv(
            "CATEGORY_FALLBACK_IMAGE", config.fallback_images.category
        )
        config.fallback_images.section = os.getenv(
            "SECTION_FALLBACK_IMAGE", config.fallback_images.section
        )

        # Performance
        perf = config.performance
        perf.request_timeout = float(os.getenv("IMAGE_REQUEST_TIMEOUT", str(perf.request_timeout)))
        perf.retry_attempts = int(os.getenv("IMAGE_RETRY_ATTEMPTS", str(perf.retry_attempts)))
        perf.retry_delay = float(os.getenv("IMAGE_RETRY_DELAY", str(perf.retry_delay)))
        perf.max_concurrent_requests = int(
            os.getenv("MAX_CONCURRENT_IMAGE_REQUESTS", str(perf.max_concurrent_requests))
        )

        # Logging
        config.logging.level = os.getenv("LOG_LEVEL", config.logging.level)
        config.logging.format_type = os.getenv("LOG_FORMAT", config.logging.format_type)
        config.logging.log_file = os.getenv("LOG_FILE", config.logging.log_file)

        # Monitoring
        config.monitoring.prometheus_enabled = _env_bool(
            "PROMETHEUS_ENABLED", config.monitoring.prometheus_enabled
        )

        return config

    def _update_config_from_dict(self, config: ImageSystemConfig, config_dict: Dict[str, Any]) -> None:
        """Update configuration from dictionary."""
        for section_name, section_config in config_dict.items():
            if section_name == "categories":
                config.categories = [CategoryMapping.from_dict(c) for c in section_config]
            elif section_name == "sections":
                config.sections = {
                    name: SectionConfig(**values) for name, values in section_config.items()
                }
            elif section_name == "providers" and isinstance(section_config, dict):
                for provider_name, values in section_config.items():
                    if provider_name == "priority":
                        config.providers.priority = list(values)
                    elif hasattr(config.providers, provider_name) and isinstance(values, dict):
                        provider = getattr(config.providers, provider_name)
                        for key, value in values.items():
                            if hasattr(provider, key):
                                setattr(provider, key, value)
            elif hasattr(config, section_name) and isinstance(section_config, dict):
                section_obj = getattr(config, section_name)
                for key, value in section_config.items():
                    if hasattr(section_obj, key):
                        setattr(section_obj, key, value)
            elif hasattr(config, section_name):
                setattr(config, section_name, section_config)

    def validate(self, config: ImageSystemConfig) -> None:
        """Validate configuration values, reporting every problem at once."""
        errors = []

        # Providers
        for name in config.providers.priority:
            if name not in ("unsplash", "pexels"):
                errors.append(f"Unknown provider in priority list: {name}")

        for name in ("unsplash", "pexels"):
            provider = getattr(config.providers, name)
            if provider.rate_limit < 1:
                errors.append(f"{name} rate limit must be at least 1")
            if not provider.base_url.startswith(("http://", "https://")):
                errors.append(f"{name} base URL must be an http(s) URL")

        # Cache
        if config.cache.max_size < 1:
            errors.append("Cache max size must be at least 1")

        if config.cache.default_ttl < 1:
            errors.append("Cache default TTL must be at least 1 second")

        if config.cache.eviction_policy not in ("lru", "fifo"):
            errors.append("Cache eviction policy must be one of: lru, fifo")

        # Performance
        if config.performance.request_timeout <= 0:
            errors.append("Request timeout must be positive")

        if config.performance.retry_attempts < 1:
            errors.append("Retry attempts must be at least 1")

        if config.performance.retry_delay < 0:
            errors.append("Retry delay cannot be negative")

        if config.performance.max_concurrent_requests < 1:
            errors.append("Max concurrent requests must be at least 1")

        # Fallbacks
        for kind in ("hero", "category", "section"):
            if not getattr(config.fallback_images, kind):
                errors.append(f"Fallback image for {kind} must be set")

        # Logging
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if config.logging.level.upper() not in valid_log_levels:
            errors.append(f"Log level must be one of: {', '.join(valid_log_levels)}")

        if errors:
            error_message = "Configuration validation errors:\n" + "\n".join(
                f"- {error}" for error in errors
            )
            raise ConfigurationError(error_message)

    def get_config(self) -> ImageSystemConfig:
        """Get the current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    def reload_config(self) -> ImageSystemConfig:
        """Reload configuration from sources."""
        self._config = None
        return self.load_config()

    def to_dict(self, redact_secrets: bool = True) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        config = self.get_config()

        def dataclass_to_dict(obj):
            if hasattr(obj, "__dataclass_fields__"):
                return {
                    field_name: dataclass_to_dict(getattr(obj, field_name))
                    for field_name in obj.__dataclass_fields__
                }
            elif isinstance(obj, dict):
                return {key: dataclass_to_dict(value) for key, value in obj.items()}
            elif isinstance(obj, (list, tuple)):
                return [dataclass_to_dict(item) for item in obj]
            else:
                return obj

        result = dataclass_to_dict(config)
        if redact_secrets:
            for name in ("unsplash", "pexels"):
                if result["providers"][name]["api_key"]:
                    result["providers"][name]["api_key"] = "***"
        return result
