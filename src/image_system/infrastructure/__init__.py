"""
Infrastructure components: quota tracking, cache, event log, monitoring,
logging and scheduling.

License: MIT
"""

from .rate_limiter import QuotaTracker, QuotaWindowRecord
from .cache import EvictionObserver, EvictionReason, ImageCache
from .event_log import EventLog, LogContext, LogLevel
from .monitoring import Alert, AlertRule, AlertSeverity, HealthStatus, MonitoringService, ReportOptions
from .scheduler import PeriodicTask
from .logging_config import setup_logging, setup_logging_from_config, configure_external_loggers

__all__ = [
    "QuotaTracker",
    "QuotaWindowRecord",
    "EvictionObserver",
    "EvictionReason",
    "ImageCache",
    "EventLog",
    "LogContext",
    "LogLevel",
    "Alert",
    "AlertRule",
    "AlertSeverity",
    "HealthStatus",
    "MonitoringService",
    "ReportOptions",
    "PeriodicTask",
    "setup_logging",
    "setup_logging_from_config",
    "configure_external_loggers",
]
