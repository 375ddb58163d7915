"""
Monitoring - Component health, alert rules and system reports

Part of the AgroLink Image Integration System.
Infrastructure Layer

Health and alerting are derived from the event log's windowed aggregations
and the cache's own statistics.

License: MIT
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import csv
import html
import io
import json
import logging
import operator
import time

from ..core.attribution import AttributionManager
from ..core.exceptions import ValidationError
from ..utils.helpers import create_unique_id, format_duration, get_system_info
from .cache import ImageCache
from .event_log import EventLog, LogContext

logger = logging.getLogger(__name__)

HEALTH_WINDOW_SECONDS = 300
DEFAULT_METRICS_WINDOW_SECONDS = 3600

API_CRITICAL_ERROR_RATE = 0.5
API_DEGRADED_ERROR_RATE = 0.2
LOW_QUOTA_REMAINING = 10
LOW_CACHE_HIT_RATE = 0.3
MIN_CACHE_OPERATIONS = 10
CACHE_NEAR_CAPACITY = 0.9
MISSING_ATTRIBUTION_RATE = 0.1
ERROR_LOG_RATE = 0.2
RECENT_LOG_SAMPLE = 100

OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"healthy": 0, "degraded": 1, "critical": 2}[self.value]


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ComponentHealth:
    status: HealthStatus
    message: str
    metrics: Dict[str, float] = field(default_factory=dict)
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "metrics": self.metrics,
            "last_error": self.last_error,
        }


@dataclass
class AlertRule:
    """
    Declarative threshold rule.

    ``window`` and ``cooldown`` are in seconds. ``last_triggered`` is stamped
    by the monitoring service each time the rule fires.
    """

    name: str
    metric: str
    operator: str
    threshold: float
    window: float
    cooldown: float
    severity: AlertSeverity = AlertSeverity.MEDIUM
    description: str = ""
    enabled: bool = True
    id: str = field(default_factory=lambda: create_unique_id("rule"))
    last_triggered: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "metric": self.metric,
            "operator": self.operator,
            "threshold": self.threshold,
            "window": self.window,
            "cooldown": self.cooldown,
            "severity": AlertSeverity(self.severity).value,
            "enabled": self.enabled,
            "last_triggered": datetime.fromtimestamp(self.last_triggered).isoformat()
            if self.last_triggered is not None
            else None,
        }


@dataclass
class Alert:
    id: str
    rule_id: str
    severity: AlertSeverity
    message: str
    timestamp: float
    value: float
    resolved: bool = False
    resolved_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "severity": AlertSeverity(self.severity).value,
            "message": self.message,
            "timestamp": datetime.fromtimestamp(self.timestamp).isoformat(),
            "value": self.value,
            "resolved": self.resolved,
            "resolved_at": datetime.fromtimestamp(self.resolved_at).isoformat()
            if self.resolved_at is not None
            else None,
        }


@dataclass
class ReportOptions:
    window: float = DEFAULT_METRICS_WINDOW_SECONDS
    include_performance: bool = True
    include_api: bool = True
    include_cache: bool = True
    include_errors: bool = True
    include_attribution: bool = False
    format: str = "json"


def default_alert_rules() -> List[AlertRule]:
    return [
        AlertRule(
            name="High Error Rate",
            description="Provider error rate exceeds 20%",
            metric="error_rate",
            operator=">",
            threshold=0.2,
            window=300,
            cooldown=600,
            severity=AlertSeverity.HIGH,
        ),
        AlertRule(
            name="API Rate Limit Warning",
            description="Provider quota is running low",
            metric="rate_limit_remaining",
            operator="<",
            threshold=10,
            window=60,
            cooldown=300,
        ),
        AlertRule(
            name="Low Cache Hit Rate",
            description="Cache hit rate is below 30%",
            metric="cache_hit_rate",
            operator="<",
            threshold=0.3,
            window=600,
            cooldown=1800,
        ),
        AlertRule(
            name="Slow Response Time",
            description="Average operation time exceeds 5 seconds",
            metric="average_response_time",
            operator=">",
            threshold=5000,
            window=300,
            cooldown=600,
        ),
    ]


class MonitoringService:
    """
    Health checks, alert evaluation and reporting for the image system.

    Alert evaluation is driven externally (see ``PeriodicTask``); this class
    holds no timers of its own.
    """

    def __init__(
        self,
        event_log: EventLog,
        cache: Optional[ImageCache] = None,
        attribution: Optional[AttributionManager] = None,
        rules: Optional[List[AlertRule]] = None,
        health_window: float = HEALTH_WINDOW_SECONDS,
        version: str = "1.0.0",
        clock: Callable[[], float] = time.time,
    ):
        self.event_log = event_log
        self.cache = cache
        self.attribution = attribution
        self.health_window = health_window
        self.version = version

        self._clock = clock
        self._start_time = clock()
        self._rules: List[AlertRule] = []
        self._alerts: List[Alert] = []

        self._metric_resolvers: Dict[str, Callable[[float], Optional[float]]] = {
            "error_rate": self._error_rate,
            "cache_hit_rate": self._cache_hit_rate,
            "average_response_time": self._average_response_time,
            "rate_limit_remaining": self._min_rate_limit_remaining,
        }

        for rule in default_alert_rules() if rules is None else rules:
            self.add_alert_rule(rule)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> Dict[str, Any]:
        """
        Per-component health; overall status is the worst component status.
        """
        components = {
            "apis": self._check_api_health(),
            "cache": self._check_cache_health(),
            "attribution": self._check_attribution_health(),
            "logging": self._check_logging_health(),
        }
        overall = max((c.status for c in components.values()), key=lambda status: status.rank)
        uptime = self._clock() - self._start_time

        return {
            "overall": overall.value,
            "components": {name: c.to_dict() for name, c in components.items()},
            "last_checked": datetime.fromtimestamp(self._clock()).isoformat(),
            "uptime_seconds": uptime,
            "uptime": format_duration(uptime),
            "version": self.version,
        }

    def _check_api_health(self) -> ComponentHealth:
        stats = self.event_log.provider_stats(self.health_window)

        if stats["total_requests"] == 0:
            return ComponentHealth(
                HealthStatus.HEALTHY, "No recent API activity", {"requests": 0, "success_rate": 1.0}
            )

        error_rate = 1 - stats["success_rate"]
        status = HealthStatus.HEALTHY
        message = "APIs functioning normally"

        if error_rate > API_CRITICAL_ERROR_RATE:
            status = HealthStatus.CRITICAL
            message = f"High API error rate: {error_rate * 100:.1f}%"
        elif error_rate > API_DEGRADED_ERROR_RATE:
            status = HealthStatus.DEGRADED
            message = f"Elevated API error rate: {error_rate * 100:.1f}%"

        for provider, remaining in stats["rate_limit_status"].items():
            if remaining < LOW_QUOTA_REMAINING:
                if status == HealthStatus.HEALTHY:
                    status = HealthStatus.DEGRADED
                message = f"{provider} API approaching rate limit ({remaining} remaining)"

        return ComponentHealth(
            status,
            message,
            {
                "total_requests": stats["total_requests"],
                "success_rate": stats["success_rate"],
                "average_response_time": stats["average_response_time"],
            },
        )

    def _check_cache_health(self) -> ComponentHealth:
        activity = self.event_log.cache_stats(self.health_window)
        metrics: Dict[str, float] = {
            "hit_rate": activity["hit_rate"],
            "total_operations": activity["total_operations"],
        }

        status = HealthStatus.HEALTHY
        message = "Cache functioning normally"

        if activity["hit_rate"] < LOW_CACHE_HIT_RATE and activity["lookups"] > MIN_CACHE_OPERATIONS:
            status = HealthStatus.DEGRADED
            message = f"Low cache hit rate: {activity['hit_rate'] * 100:.1f}%"

        if self.cache is not None:
            stats = self.cache.stats()
            metrics.update({"size": stats.size, "max_size": stats.max_size})
            if stats.size >= stats.max_size * CACHE_NEAR_CAPACITY:
                status = HealthStatus.DEGRADED
                message = f"Cache near capacity: {stats.size}/{stats.max_size}"

        return ComponentHealth(status, message, metrics)

    def _check_attribution_health(self) -> ComponentHealth:
        if self.attribution is None:
            return ComponentHealth(HealthStatus.HEALTHY, "Attribution tracking disabled")

        report = self.attribution.report()
        status = HealthStatus.HEALTHY
        message = "Attribution tracking normal"

        total = report["total_images"]
        missing = report["missing_attributions"]
        if total > 0 and missing / total > MISSING_ATTRIBUTION_RATE:
            status = HealthStatus.DEGRADED
            message = f"{missing} images missing attribution"

        return ComponentHealth(
            status,
            message,
            {"total_images": total, "missing_attributions": missing, "total_usage": report["total_usage"]},
        )

    def _check_logging_health(self) -> ComponentHealth:
        recent = self.event_log.recent_logs(RECENT_LOG_SAMPLE)
        errors = [entry for entry in recent if entry.level.value == "error"]

        status = HealthStatus.HEALTHY
        message = "Logging functioning normally"
        if recent and len(errors) > len(recent) * ERROR_LOG_RATE:
            status = HealthStatus.DEGRADED
            message = f"High error log rate: {len(errors)}/{len(recent)}"

        return ComponentHealth(
            status,
            message,
            {
                "total_logs": len(recent),
                "error_logs": len(errors),
                "error_rate": len(errors) / len(recent) if recent else 0.0,
            },
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def system_metrics(self, window: float = DEFAULT_METRICS_WINDOW_SECONDS) -> Dict[str, Any]:
        """
        Snapshot of performance, provider, cache and error metrics.

        Args:
            window: Trailing window in seconds

        Returns:
            Dictionary keyed by ``performance``, ``api``, ``cache`` and ``errors``
        """
        performance = self.event_log.performance_stats(window)
        api = self.event_log.provider_stats(window)
        cache_activity = self.event_log.cache_stats(window)
        errors = self.event_log.errors_in_window(window)

        errors_by_type: Dict[str, int] = {}
        for error in errors:
            errors_by_type[error.error_type] = errors_by_type.get(error.error_type, 0) + 1

        cache_stats = self.cache.stats() if self.cache is not None else None

        return {
            "performance": {
                "total_operations": performance["total_operations"],
                "success_rate": performance["success_rate"],
                "average_response_time": performance["average_response_time"],
                "slowest_operations": self.event_log.slowest_operations(window),
            },
            "api": {
                "total_requests": api["total_requests"],
                "success_rate": api["success_rate"],
                "error_rate": 1 - api["success_rate"] if api["total_requests"] else 0.0,
                "rate_limit_status": api["rate_limit_status"],
                "service_breakdown": api["service_breakdown"],
            },
            "cache": {
                "hit_rate": cache_activity["hit_rate"],
                "total_operations": cache_activity["total_operations"],
                "current_size": cache_stats.size if cache_stats else 0,
                "eviction_count": cache_stats.eviction_count if cache_stats else 0,
                "eviction_reasons": cache_activity["eviction_reasons"],
            },
            "errors": {
                "total_errors": len(errors),
                "unresolved_errors": sum(1 for e in errors if not e.resolved),
                "errors_by_type": errors_by_type,
                "recent_errors": [e.to_dict() for e in errors[-20:]],
            },
        }

    def _error_rate(self, window: float) -> Optional[float]:
        stats = self.event_log.provider_stats(window)
        if not stats["total_requests"]:
            return None
        return 1 - stats["success_rate"]

    def _cache_hit_rate(self, window: float) -> Optional[float]:
        stats = self.event_log.cache_stats(window)
        if not stats["lookups"]:
            return None
        return stats["hit_rate"]

    def _average_response_time(self, window: float) -> Optional[float]:
        stats = self.event_log.performance_stats(window)
        if not stats["total_operations"]:
            return None
        return stats["average_response_time"]

    def _min_rate_limit_remaining(self, window: float) -> Optional[float]:
        status = self.event_log.provider_stats(window)["rate_limit_status"]
        if not status:
            return None
        return min(status.values())

    def metric_value(self, metric: str, window: float) -> Optional[float]:
        """Current windowed value of an alertable metric, or None without data."""
        resolver = self._metric_resolvers.get(metric)
        if resolver is None:
            raise ValidationError(f"Unknown alert metric: {metric}", provider="monitoring")
        return resolver(window)

    # ------------------------------------------------------------------
    # Alert rules
    # ------------------------------------------------------------------

    def add_alert_rule(self, rule: AlertRule) -> str:
        """
        Register a rule.

        Raises:
            ValidationError: If the metric or operator is unknown, or the
                window or cooldown is negative
        """
        if rule.metric not in self._metric_resolvers:
            raise ValidationError(f"Unknown alert metric: {rule.metric}", provider="monitoring")
        if rule.operator not in OPERATORS:
            raise ValidationError(f"Unknown alert operator: {rule.operator}", provider="monitoring")
        if rule.window <= 0 or rule.cooldown < 0:
            raise ValidationError("Alert window must be positive and cooldown non-negative", provider="monitoring")

        self._rules.append(rule)
        self.event_log.info(
            "Alert rule added",
            LogContext(operation="add_alert_rule", component="monitoring"),
            {"rule_id": rule.id, "rule_name": rule.name},
        )
        return rule.id

    def remove_alert_rule(self, rule_id: str) -> bool:
        for index, rule in enumerate(self._rules):
            if rule.id == rule_id:
                del self._rules[index]
                self.event_log.info(
                    "Alert rule removed",
                    LogContext(operation="remove_alert_rule", component="monitoring"),
                    {"rule_id": rule_id, "rule_name": rule.name},
                )
                return True
        return False

    def alert_rules(self) -> List[AlertRule]:
        return list(self._rules)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def evaluate_alerts(self) -> List[Alert]:
        """
        Evaluate every enabled rule over its own window.

        A rule fires when its metric has data, the comparison holds and its
        cooldown has elapsed since the last trigger.

        Returns:
            Alerts created by this evaluation
        """
        now = self._clock()
        created: List[Alert] = []

        for rule in self._rules:
            if not rule.enabled:
                continue
            if rule.last_triggered is not None and now - rule.last_triggered < rule.cooldown:
                continue

            value = self.metric_value(rule.metric, rule.window)
            if value is None or not OPERATORS[rule.operator](value, rule.threshold):
                continue

            alert = Alert(
                id=create_unique_id("alert"),
                rule_id=rule.id,
                severity=rule.severity,
                message=f"{rule.name}: {rule.description}" if rule.description else rule.name,
                timestamp=now,
                value=value,
            )
            self._alerts.append(alert)
            rule.last_triggered = now
            created.append(alert)

            self.event_log.warning(
                f"Alert triggered: {rule.name}",
                LogContext(operation="alert_triggered", component="monitoring"),
                {"alert_id": alert.id, "severity": AlertSeverity(alert.severity).value, "value": value},
            )

        return created

    def active_alerts(self) -> List[Alert]:
        return [alert for alert in self._alerts if not alert.resolved]

    def all_alerts(self) -> List[Alert]:
        return list(self._alerts)

    def resolve_alert(self, alert_id: str) -> bool:
        """Resolve by id. Returns False for unknown or already resolved alerts."""
        for alert in self._alerts:
            if alert.id == alert_id and not alert.resolved:
                alert.resolved = True
                alert.resolved_at = self._clock()
                self.event_log.info(
                    "Alert resolved",
                    LogContext(operation="resolve_alert", component="monitoring"),
                    {"alert_id": alert_id, "severity": AlertSeverity(alert.severity).value},
                )
                return True
        return False

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def cache_inspection(self) -> Dict[str, Any]:
        if self.cache is None:
            return {}

        stats = self.cache.stats()
        return {
            "size": stats.size,
            "max_size": stats.max_size,
            "hit_rate": self.event_log.cache_stats()["hit_rate"],
            "oldest_entry": stats.oldest_entry.isoformat() if stats.oldest_entry else None,
            "newest_entry": stats.newest_entry.isoformat() if stats.newest_entry else None,
            "top_keys": [
                {
                    "key": info.key,
                    "access_count": info.access_count,
                    "last_accessed": info.last_accessed.isoformat(),
                }
                for info in stats.top_keys
            ],
            "keys": self.cache.keys(),
            "estimated_size": stats.estimated_size,
        }

    def force_cleanup(self, max_age: float = 86400) -> Dict[str, int]:
        """Drop event log metrics, alerts and attribution usage older than ``max_age`` seconds."""
        remaining = self.event_log.clear_old_metrics(max_age)

        cutoff = self._clock() - max_age
        self._alerts = [alert for alert in self._alerts if alert.timestamp >= cutoff]
        remaining["alerts"] = len(self._alerts)

        if self.attribution is not None:
            self.attribution.prune(max_age)
            remaining["attribution_records"] = len(self.attribution.all_usage_records())

        self.event_log.info(
            "Forced cleanup completed",
            LogContext(operation="force_cleanup", component="monitoring"),
            {"max_age": max_age, "remaining_alerts": len(self._alerts)},
        )
        return remaining

    def export_monitoring_data(self) -> Dict[str, Any]:
        return {
            "health": self.health(),
            "metrics": self.system_metrics(),
            "alerts": [alert.to_dict() for alert in self._alerts],
            "alert_rules": [rule.to_dict() for rule in self._rules],
            "logs": [entry.to_dict() for entry in self.event_log.recent_logs(1000)],
            "system": get_system_info(),
            "exported_at": datetime.fromtimestamp(self._clock()).isoformat(),
        }

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def report(self, options: Optional[ReportOptions] = None) -> str:
        """
        Render a point-in-time report.

        Args:
            options: Window, included sections and output format
                (``json``, ``csv`` or ``html``)

        Returns:
            Serialized report

        Raises:
            ValidationError: If the format is not supported
        """
        options = options or ReportOptions()
        renderers = {"json": _render_json, "csv": _render_csv, "html": _render_html}
        renderer = renderers.get(options.format)
        if renderer is None:
            raise ValidationError(f"Unsupported report format: {options.format}", provider="monitoring")

        metrics = self.system_metrics(options.window)
        now = self._clock()

        sections = {
            "performance": options.include_performance,
            "api": options.include_api,
            "cache": options.include_cache,
            "errors": options.include_errors,
        }
        report: Dict[str, Any] = {
            "generated_at": datetime.fromtimestamp(now).isoformat(),
            "time_range": {
                "start": datetime.fromtimestamp(now - options.window).isoformat(),
                "end": datetime.fromtimestamp(now).isoformat(),
            },
            "system_health": self.health(),
            "metrics": {name: metrics[name] for name, included in sections.items() if included},
        }
        if options.include_attribution and self.attribution is not None:
            report["attribution"] = self.attribution.report()

        return renderer(report)


def _render_json(report: Dict[str, Any]) -> str:
    return json.dumps(report, indent=2, default=str)


def _render_csv(report: Dict[str, Any]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["timestamp", "component", "metric", "value"])

    generated = report["generated_at"]
    writer.writerow([generated, "health", "overall", report["system_health"]["overall"]])
    for section, values in report["metrics"].items():
        for metric, value in values.items():
            if isinstance(value, (int, float, str)):
                writer.writerow([generated, section, metric, value])

    return buffer.getvalue()


def _render_html(report: Dict[str, Any]) -> str:
    overall = html.escape(report["system_health"]["overall"])
    parts = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        "    <title>Image Integration System Report</title>",
        "    <style>",
        "        body { font-family: Arial, sans-serif; margin: 20px; }",
        "        .section { margin: 20px 0; }",
        "        .metric { display: inline-block; margin: 10px; padding: 10px; background: #e9e9e9; }",
        "        .status-healthy { color: green; }",
        "        .status-degraded { color: orange; }",
        "        .status-critical { color: red; }",
        "    </style>",
        "</head>",
        "<body>",
        "    <h1>Image Integration System Report</h1>",
        f"    <p>Generated: {html.escape(report['generated_at'])}</p>",
        f"    <p>Time Range: {html.escape(report['time_range']['start'])} to "
        f"{html.escape(report['time_range']['end'])}</p>",
        '    <div class="section">',
        "        <h2>System Health</h2>",
        f'        <p class="status-{overall}">Overall Status: {overall}</p>',
        "    </div>",
    ]

    for section, values in report["metrics"].items():
        parts.append('    <div class="section">')
        parts.append(f"        <h2>{html.escape(section.title())} Metrics</h2>")
        for metric, value in values.items():
            if isinstance(value, (int, float, str)):
                label = html.escape(metric.replace("_", " ").title())
                parts.append(f'        <div class="metric">{label}: {html.escape(str(value))}</div>')
        parts.append("    </div>")

    parts.extend(["</body>", "</html>"])
    return "\n".join(parts)
