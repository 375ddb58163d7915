"""
Event Log - Structured logging and time-windowed metrics collection

Part of the AgroLink Image Integration System.
Infrastructure Layer

Records performance, provider usage, cache and error events in bounded,
time-stamped collections and mirrors every entry onto the standard logger.
Aggregations always apply a trailing-window filter before computing rates.

License: MIT
"""

from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional
import logging
import time

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from ..utils.helpers import create_unique_id

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 3600
DEFAULT_MAX_AGE_SECONDS = 86400


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def severity(self) -> int:
        return _LEVEL_ORDER[self]

    @property
    def stdlib_level(self) -> int:
        return _STDLIB_LEVELS[self]


_LEVEL_ORDER = {LogLevel.DEBUG: 0, LogLevel.INFO: 1, LogLevel.WARNING: 2, LogLevel.ERROR: 3}
_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def _iso(timestamp: Optional[float]) -> Optional[str]:
    return datetime.fromtimestamp(timestamp).isoformat() if timestamp is not None else None


@dataclass
class LogContext:
    """Where an entry originated."""

    operation: str
    component: str
    provider: Optional[str] = None
    image_id: Optional[str] = None
    category: Optional[str] = None
    section: Optional[str] = None
    request_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class LogEntry:
    timestamp: float
    level: LogLevel
    message: str
    context: LogContext
    metadata: Dict[str, Any] = field(default_factory=dict)
    duration_ms: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "level": self.level.value,
            "message": self.message,
            "context": self.context.to_dict(),
            "metadata": self.metadata,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass
class OperationMetrics:
    operation_name: str
    start_time: float
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error_type: Optional[str] = None
    cache_hit: Optional[bool] = None
    api_calls: int = 0
    image_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["start_time"] = _iso(self.start_time)
        data["end_time"] = _iso(self.end_time)
        return data


@dataclass
class ProviderUsageEvent:
    provider: str
    endpoint: str
    method: str
    response_time_ms: float
    success: bool
    timestamp: float
    status_code: Optional[int] = None
    error_type: Optional[str] = None
    rate_limit_remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _iso(self.timestamp)
        return data


@dataclass
class CacheOperationEvent:
    operation: str  # get | set | evict | clear
    key: str
    hit: bool
    timestamp: float
    size: Optional[int] = None
    eviction_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _iso(self.timestamp)
        return data


@dataclass
class ErrorEvent:
    error_type: str
    operation: str
    component: str
    message: str
    timestamp: float
    provider: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    resolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _iso(self.timestamp)
        return data


class EventLog:
    """
    Structured event log with windowed aggregations and Prometheus metrics.

    Each instance owns its own collector registry so several systems can live
    in one process (and in one test session) without metric name clashes.
    """

    def __init__(
        self,
        buffer_size: int = 1000,
        min_level: str = "debug",
        prometheus_enabled: bool = True,
        registry: Optional[CollectorRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the event log.

        Args:
            buffer_size: Maximum number of log entries retained
            min_level: Lowest level recorded in the buffer
            prometheus_enabled: Whether to maintain Prometheus metrics
            registry: Collector registry (a private one is created if omitted)
            clock: Time source returning epoch seconds
        """
        self.buffer_size = buffer_size
        self.min_level = LogLevel(min_level.lower())
        self._clock = clock

        self._log_buffer: Deque[LogEntry] = deque(maxlen=buffer_size)
        self._performance: List[OperationMetrics] = []
        self._provider_usage: List[ProviderUsageEvent] = []
        self._cache_operations: List[CacheOperationEvent] = []
        self._errors: List[ErrorEvent] = []
        self._active_operations: Dict[str, OperationMetrics] = {}

        self.registry: Optional[CollectorRegistry] = None
        if prometheus_enabled:
            self.registry = registry or CollectorRegistry()
            self._setup_prometheus_metrics(self.registry)

    def _setup_prometheus_metrics(self, registry: CollectorRegistry) -> None:
        self._operation_count = Counter(
            "image_operations_total",
            "Completed image system operations",
            ["operation", "success"],
            registry=registry,
        )
        self._operation_duration = Histogram(
            "image_operation_duration_seconds",
            "Image system operation duration in seconds",
            ["operation"],
            registry=registry,
        )
        self._provider_requests = Counter(
            "image_provider_requests_total",
            "Outbound provider requests",
            ["provider", "success"],
            registry=registry,
        )
        self._provider_duration = Histogram(
            "image_provider_request_duration_seconds",
            "Provider request duration in seconds",
            ["provider"],
            registry=registry,
        )
        self._provider_remaining = Gauge(
            "image_provider_rate_limit_remaining",
            "Last reported remaining provider quota",
            ["provider"],
            registry=registry,
        )
        self._cache_ops = Counter(
            "image_cache_operations_total",
            "Cache operations",
            ["operation", "result"],
            registry=registry,
        )
        self._error_count = Counter(
            "image_errors_total",
            "Errors recorded by the image system",
            ["error_type", "component"],
            registry=registry,
        )
        logger.debug("Prometheus metrics initialized for event log")

    # ------------------------------------------------------------------
    # Logging entry points
    # ------------------------------------------------------------------

    def debug(self, message: str, context: LogContext, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.DEBUG, message, context, metadata)

    def info(self, message: str, context: LogContext, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.INFO, message, context, metadata)

    def warning(self, message: str, context: LogContext, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.WARNING, message, context, metadata)

    def error(
        self,
        message: str,
        context: LogContext,
        error: Optional[BaseException] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Record an error entry and an error event.

        Args:
            message: Human readable summary
            context: Originating operation and component
            error: Exception that caused the failure, if any
            metadata: Additional structured fields
        """
        self._log(LogLevel.ERROR, message, context, metadata, error=error)

        error_type = getattr(getattr(error, "code", None), "value", None) or (
            type(error).__name__ if error is not None else "UnknownError"
        )
        self._errors.append(
            ErrorEvent(
                error_type=error_type,
                operation=context.operation,
                component=context.component,
                provider=context.provider,
                message=str(error) if error is not None else message,
                context={**context.to_dict(), **(metadata or {})},
                timestamp=self._clock(),
            )
        )
        if self.registry is not None:
            self._error_count.labels(error_type=error_type, component=context.component).inc()

    def _log(
        self,
        level: LogLevel,
        message: str,
        context: LogContext,
        metadata: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if level.severity < self.min_level.severity:
            return

        entry = LogEntry(
            timestamp=self._clock(),
            level=level,
            message=message,
            context=context,
            metadata=dict(metadata or {}),
            duration_ms=duration_ms,
            error=repr(error) if error is not None else None,
        )
        self._log_buffer.append(entry)

        provider = f" [{context.provider}]" if context.provider else ""
        duration = f" ({duration_ms:.0f}ms)" if duration_ms is not None else ""
        logger.log(
            level.stdlib_level,
            f"[{context.component}:{context.operation}]{provider} {message}{duration}",
            extra={"event_context": context.to_dict(), "event_metadata": entry.metadata},
            exc_info=error if level == LogLevel.ERROR and error is not None else None,
        )

    # ------------------------------------------------------------------
    # Operation tracking
    # ------------------------------------------------------------------

    def generate_operation_id(self) -> str:
        return create_unique_id("op")

    def start_operation(self, operation_id: str, operation_name: str, context: LogContext) -> None:
        metrics = OperationMetrics(operation_name=operation_name, start_time=self._clock())
        self._active_operations[operation_id] = metrics
        self.debug(f"Started operation: {operation_name}", context, {"operation_id": operation_id})

    def end_operation(
        self,
        operation_id: str,
        context: LogContext,
        success: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[OperationMetrics]:
        """
        Close an operation started with ``start_operation``.

        Returns:
            The completed metrics, or None when the id is unknown
        """
        metrics = self._active_operations.pop(operation_id, None)
        if metrics is None:
            self.warning("Attempted to end unknown operation", context, {"operation_id": operation_id})
            return None

        metrics.end_time = self._clock()
        metrics.duration_ms = (metrics.end_time - metrics.start_time) * 1000
        metrics.success = success
        for key, value in (metadata or {}).items():
            if hasattr(metrics, key) and key not in ("operation_name", "start_time", "end_time"):
                setattr(metrics, key, value)

        self._performance.append(metrics)

        if self.registry is not None:
            self._operation_count.labels(
                operation=metrics.operation_name, success=str(success).lower()
            ).inc()
            self._operation_duration.labels(operation=metrics.operation_name).observe(
                metrics.duration_ms / 1000
            )

        self._log(
            LogLevel.INFO if success else LogLevel.WARNING,
            f"Completed operation: {metrics.operation_name}",
            context,
            {"operation_id": operation_id, "success": success, **(metadata or {})},
            duration_ms=metrics.duration_ms,
        )
        return metrics

    @asynccontextmanager
    async def track(self, operation_name: str, context: LogContext) -> AsyncIterator[Dict[str, Any]]:
        """
        Track an operation for the duration of an ``async with`` block.

        The yielded dict collects metadata (``cache_hit``, ``api_calls``,
        ``image_count`` and free-form keys) stored when the block ends.

        Usage:
            async with event_log.track("get_theme_image", context) as op:
                op["cache_hit"] = True
        """
        operation_id = self.generate_operation_id()
        self.start_operation(operation_id, operation_name, context)
        metadata: Dict[str, Any] = {}
        try:
            yield metadata
        except Exception as e:
            metadata["error_type"] = type(e).__name__
            self.end_operation(operation_id, context, success=False, metadata=metadata)
            raise
        else:
            self.end_operation(operation_id, context, success=metadata.pop("success", True), metadata=metadata)

    # ------------------------------------------------------------------
    # Event tracking
    # ------------------------------------------------------------------

    def track_provider_usage(
        self,
        provider: str,
        endpoint: str,
        response_time_ms: float,
        success: bool,
        method: str = "GET",
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        rate_limit_remaining: Optional[int] = None,
    ) -> None:
        event = ProviderUsageEvent(
            provider=provider,
            endpoint=endpoint,
            method=method,
            status_code=status_code,
            response_time_ms=response_time_ms,
            success=success,
            error_type=error_type,
            rate_limit_remaining=rate_limit_remaining,
            timestamp=self._clock(),
        )
        self._provider_usage.append(event)

        if self.registry is not None:
            self._provider_requests.labels(provider=provider, success=str(success).lower()).inc()
            self._provider_duration.labels(provider=provider).observe(response_time_ms / 1000)
            if rate_limit_remaining is not None:
                self._provider_remaining.labels(provider=provider).set(rate_limit_remaining)

        self.debug(
            f"API call to {provider}",
            LogContext(operation="api_call", component="provider_adapter", provider=provider),
            {
                "endpoint": endpoint,
                "status_code": status_code,
                "response_time_ms": round(response_time_ms, 1),
                "success": success,
                "rate_limit_remaining": rate_limit_remaining,
            },
        )

    def track_cache_operation(
        self,
        operation: str,
        key: str,
        hit: bool,
        size: Optional[int] = None,
        eviction_reason: Optional[str] = None,
    ) -> None:
        self._cache_operations.append(
            CacheOperationEvent(
                operation=operation,
                key=key,
                hit=hit,
                size=size,
                eviction_reason=eviction_reason,
                timestamp=self._clock(),
            )
        )

        if self.registry is not None:
            self._cache_ops.labels(operation=operation, result="hit" if hit else "miss").inc()

        self.debug(
            f"Cache {operation}",
            LogContext(operation="cache_operation", component="image_cache"),
            {"key": key, "hit": hit, "size": size, "eviction_reason": eviction_reason},
        )

    def resolve_error(self, error_type: str, operation: str, component: str) -> bool:
        """Mark the oldest matching unresolved error as resolved."""
        for event in self._errors:
            if (
                event.error_type == error_type
                and event.operation == operation
                and event.component == component
                and not event.resolved
            ):
                event.resolved = True
                self.info(
                    "Error resolved",
                    LogContext(operation=operation, component=component),
                    {"error_type": error_type},
                )
                return True
        return False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _cutoff(self, window: float) -> float:
        return self._clock() - window

    def recent_logs(self, count: int = 100, level: Optional[str] = None) -> List[LogEntry]:
        """Most recent entries first."""
        logs = list(self._log_buffer)[-count:] if count > 0 else []
        if level:
            wanted = LogLevel(level.lower())
            logs = [entry for entry in logs if entry.level == wanted]
        return list(reversed(logs))

    def performance_metrics(self, operation_name: Optional[str] = None) -> List[OperationMetrics]:
        if operation_name:
            return [m for m in self._performance if m.operation_name == operation_name]
        return list(self._performance)

    def provider_metrics(self, provider: Optional[str] = None) -> List[ProviderUsageEvent]:
        if provider:
            return [m for m in self._provider_usage if m.provider == provider]
        return list(self._provider_usage)

    def cache_metrics(self) -> List[CacheOperationEvent]:
        return list(self._cache_operations)

    def error_metrics(self, resolved: Optional[bool] = None) -> List[ErrorEvent]:
        if resolved is not None:
            return [e for e in self._errors if e.resolved == resolved]
        return list(self._errors)

    def performance_stats(self, window: float = DEFAULT_WINDOW_SECONDS) -> Dict[str, Any]:
        """
        Aggregate completed operations inside the trailing window.

        Args:
            window: Window length in seconds

        Returns:
            Totals, success rate, average duration (ms) and per-operation breakdown
        """
        cutoff = self._cutoff(window)
        recent = [m for m in self._performance if m.start_time >= cutoff and m.duration_ms is not None]

        total = len(recent)
        successes = sum(1 for m in recent if m.success)
        total_time = sum(m.duration_ms or 0.0 for m in recent)

        breakdown: Dict[str, Dict[str, Any]] = {}
        for metric in recent:
            item = breakdown.setdefault(
                metric.operation_name,
                {"count": 0, "success_count": 0, "total_time": 0.0, "total_api_calls": 0},
            )
            item["count"] += 1
            item["success_count"] += 1 if metric.success else 0
            item["total_time"] += metric.duration_ms or 0.0
            item["total_api_calls"] += metric.api_calls

        for item in breakdown.values():
            item["success_rate"] = item["success_count"] / item["count"]
            item["average_time"] = item["total_time"] / item["count"]

        return {
            "total_operations": total,
            "success_rate": successes / total if total else 0.0,
            "average_response_time": total_time / total if total else 0.0,
            "operation_breakdown": breakdown,
        }

    def slowest_operations(self, window: float = DEFAULT_WINDOW_SECONDS, limit: int = 10) -> List[Dict[str, Any]]:
        cutoff = self._cutoff(window)
        recent = [m for m in self._performance if m.start_time >= cutoff and m.duration_ms]
        recent.sort(key=lambda m: m.duration_ms or 0.0, reverse=True)
        return [
            {"operation": m.operation_name, "duration_ms": m.duration_ms, "timestamp": _iso(m.start_time)}
            for m in recent[:limit]
        ]

    def provider_stats(self, window: float = DEFAULT_WINDOW_SECONDS) -> Dict[str, Any]:
        """
        Aggregate provider usage inside the trailing window.

        ``rate_limit_status`` holds the most recent remaining quota per provider.
        """
        cutoff = self._cutoff(window)
        recent = [m for m in self._provider_usage if m.timestamp >= cutoff]

        total = len(recent)
        successes = sum(1 for m in recent if m.success)
        total_time = sum(m.response_time_ms for m in recent)

        rate_limit_status: Dict[str, int] = {}
        breakdown: Dict[str, Dict[str, Any]] = {}
        for metric in recent:
            if metric.rate_limit_remaining is not None:
                rate_limit_status[metric.provider] = metric.rate_limit_remaining

            item = breakdown.setdefault(
                metric.provider, {"requests": 0, "success_count": 0, "total_time": 0.0}
            )
            item["requests"] += 1
            item["success_count"] += 1 if metric.success else 0
            item["total_time"] += metric.response_time_ms

        for item in breakdown.values():
            item["success_rate"] = item["success_count"] / item["requests"]
            item["average_response_time"] = item["total_time"] / item["requests"]

        return {
            "total_requests": total,
            "success_rate": successes / total if total else 0.0,
            "average_response_time": total_time / total if total else 0.0,
            "rate_limit_status": rate_limit_status,
            "service_breakdown": breakdown,
        }

    def cache_stats(self, window: float = DEFAULT_WINDOW_SECONDS) -> Dict[str, Any]:
        """
        Aggregate cache operations inside the trailing window.

        The hit rate is computed over lookups only; writes and evictions are
        reported in the operation breakdown.
        """
        cutoff = self._cutoff(window)
        recent = [m for m in self._cache_operations if m.timestamp >= cutoff]

        lookups = [m for m in recent if m.operation == "get"]
        hits = sum(1 for m in lookups if m.hit)

        operation_breakdown: Dict[str, int] = {}
        eviction_reasons: Dict[str, int] = {}
        for metric in recent:
            operation_breakdown[metric.operation] = operation_breakdown.get(metric.operation, 0) + 1
            if metric.eviction_reason:
                eviction_reasons[metric.eviction_reason] = eviction_reasons.get(metric.eviction_reason, 0) + 1

        return {
            "total_operations": len(recent),
            "lookups": len(lookups),
            "hits": hits,
            "hit_rate": hits / len(lookups) if lookups else 0.0,
            "operation_breakdown": operation_breakdown,
            "eviction_reasons": eviction_reasons,
        }

    def errors_in_window(self, window: float = DEFAULT_WINDOW_SECONDS) -> List[ErrorEvent]:
        cutoff = self._cutoff(window)
        return [e for e in self._errors if e.timestamp >= cutoff]

    # ------------------------------------------------------------------
    # Maintenance and export
    # ------------------------------------------------------------------

    def clear_old_metrics(self, max_age: float = DEFAULT_MAX_AGE_SECONDS) -> Dict[str, int]:
        """
        Drop metric events older than ``max_age`` seconds.

        Returns:
            Remaining item counts per collection
        """
        cutoff = self._cutoff(max_age)

        self._performance = [m for m in self._performance if m.start_time >= cutoff]
        self._provider_usage = [m for m in self._provider_usage if m.timestamp >= cutoff]
        self._cache_operations = [m for m in self._cache_operations if m.timestamp >= cutoff]
        self._errors = [m for m in self._errors if m.timestamp >= cutoff]

        remaining = {
            "performance": len(self._performance),
            "provider_usage": len(self._provider_usage),
            "cache_operations": len(self._cache_operations),
            "errors": len(self._errors),
        }
        self.info("Cleared old metrics", LogContext(operation="cleanup", component="event_log"), remaining)
        return remaining

    def prometheus_metrics(self) -> bytes:
        """Prometheus text exposition of this instance's registry."""
        if self.registry is None:
            return b""
        return generate_latest(self.registry)

    def export(self) -> Dict[str, Any]:
        return {
            "logs": [entry.to_dict() for entry in self._log_buffer],
            "performance": [m.to_dict() for m in self._performance],
            "provider_usage": [m.to_dict() for m in self._provider_usage],
            "cache": [m.to_dict() for m in self._cache_operations],
            "errors": [m.to_dict() for m in self._errors],
            "exported_at": _iso(self._clock()),
        }
