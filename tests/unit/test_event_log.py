"""
Unit Tests for Event Log

Tests structured entries, operation tracking and windowed aggregations.
"""

import pytest

from image_system.core.exceptions import ImageError, ImageErrorType
from image_system.infrastructure.event_log import EventLog, LogContext, LogLevel


@pytest.fixture
def context():
    return LogContext(operation="get_theme_image", component="image_service", provider="unsplash")


class TestLogging:
    """Test cases for log entries."""

    def test_entries_are_buffered_newest_first(self, event_log, context):
        event_log.info("first", context)
        event_log.warning("second", context)

        logs = event_log.recent_logs(10)

        assert [entry.message for entry in logs] == ["second", "first"]
        assert logs[0].level == LogLevel.WARNING
        assert logs[0].context.provider == "unsplash"

    def test_recent_logs_level_filter(self, event_log, context):
        event_log.info("info", context)
        event_log.error("error", context)

        assert [entry.message for entry in event_log.recent_logs(level="error")] == ["error"]

    def test_buffer_is_bounded(self, clock, context):
        event_log = EventLog(buffer_size=3, clock=clock.time)

        for i in range(5):
            event_log.info(f"entry {i}", context)

        assert [entry.message for entry in event_log.recent_logs()] == ["entry 4", "entry 3", "entry 2"]

    def test_min_level_filters_buffer(self, clock, context):
        event_log = EventLog(min_level="warning", clock=clock.time)

        event_log.debug("debug", context)
        event_log.info("info", context)
        event_log.warning("warning", context)

        assert [entry.message for entry in event_log.recent_logs()] == ["warning"]

    def test_entries_reach_standard_logger(self, event_log, context, caplog):
        with caplog.at_level("INFO", logger="image_system.infrastructure.event_log"):
            event_log.info("Image fetched", context, {"count": 1})

        record = caplog.records[-1]
        assert "[image_service:get_theme_image] [unsplash] Image fetched" in record.getMessage()
        assert record.event_metadata == {"count": 1}

    def test_error_records_error_event(self, event_log, context):
        error = ImageError(ImageErrorType.API_RATE_LIMIT, "slow down", provider="unsplash")

        event_log.error("Search failed", context, error, {"query": "cattle"})

        events = event_log.error_metrics()
        assert len(events) == 1
        assert events[0].error_type == "API_RATE_LIMIT"
        assert events[0].provider == "unsplash"
        assert events[0].context["query"] == "cattle"

    def test_error_without_exception(self, event_log, context):
        event_log.error("Something went wrong", context)

        assert event_log.error_metrics()[0].error_type == "UnknownError"

    def test_resolve_error(self, event_log, context):
        event_log.error("failed", context, ValueError("bad"))

        assert event_log.resolve_error("ValueError", "get_theme_image", "image_service") is True
        assert event_log.resolve_error("ValueError", "get_theme_image", "image_service") is False
        assert event_log.error_metrics(resolved=True)[0].resolved is True


class TestOperationTracking:
    """Test cases for operation tracking."""

    async def test_track_records_duration_and_metadata(self, event_log, context, clock):
        async with event_log.track("get_theme_image", context) as op:
            clock.advance(0.25)
            op["api_calls"] = 2
            op["cache_hit"] = False

        metrics = event_log.performance_metrics("get_theme_image")
        assert len(metrics) == 1
        assert metrics[0].success is True
        assert metrics[0].duration_ms == pytest.approx(250.0)
        assert metrics[0].api_calls == 2
        assert metrics[0].cache_hit is False

        stats = event_log.performance_stats()
        assert stats["total_operations"] == 1
        assert stats["average_response_time"] == pytest.approx(250.0)
        assert stats["operation_breakdown"]["get_theme_image"]["total_api_calls"] == 2

    async def test_track_records_failure_and_reraises(self, event_log, context):
        with pytest.raises(RuntimeError):
            async with event_log.track("get_theme_image", context):
                raise RuntimeError("boom")

        metrics = event_log.performance_metrics()[0]
        assert metrics.success is False
        assert metrics.error_type == "RuntimeError"
        assert event_log.performance_stats()["success_rate"] == 0.0

    def test_end_unknown_operation(self, event_log, context):
        assert event_log.end_operation("op_missing", context) is None
        assert event_log.recent_logs(1)[0].message == "Attempted to end unknown operation"

    def test_slowest_operations(self, event_log, context, clock):
        for name, duration in (("fast", 0.1), ("slow", 2.0)):
            event_log.start_operation(name, name, context)
            clock.advance(duration)
            event_log.end_operation(name, context)

        slowest = event_log.slowest_operations(limit=1)

        assert slowest[0]["operation"] == "slow"


class TestAggregations:
    """Test cases for windowed statistics."""

    def test_cache_stats_hit_rate_over_lookups(self, event_log):
        event_log.track_cache_operation("get", "a", hit=True)
        event_log.track_cache_operation("get", "b", hit=False)
        event_log.track_cache_operation("set", "b", hit=False)
        event_log.track_cache_operation("evict", "c", hit=False, eviction_reason="lru")

        stats = event_log.cache_stats()

        assert stats["total_operations"] == 4
        assert stats["lookups"] == 2
        assert stats["hit_rate"] == 0.5
        assert stats["operation_breakdown"] == {"get": 2, "set": 1, "evict": 1}
        assert stats["eviction_reasons"] == {"lru": 1}

    def test_window_excludes_old_events(self, event_log, clock):
        event_log.track_cache_operation("get", "a", hit=True)
        clock.advance(4000)
        event_log.track_cache_operation("get", "b", hit=False)

        stats = event_log.cache_stats(3600)

        assert stats["lookups"] == 1
        assert stats["hit_rate"] == 0.0

    def test_provider_stats(self, event_log):
        event_log.track_provider_usage("unsplash", "/search/photos", 120.0, True, rate_limit_remaining=40)
        event_log.track_provider_usage("unsplash", "/search/photos", 80.0, False, status_code=500, rate_limit_remaining=39)
        event_log.track_provider_usage("pexels", "/search", 50.0, True)

        stats = event_log.provider_stats()

        assert stats["total_requests"] == 3
        assert stats["success_rate"] == pytest.approx(2 / 3)
        assert stats["rate_limit_status"] == {"unsplash": 39}
        assert stats["service_breakdown"]["unsplash"]["average_response_time"] == pytest.approx(100.0)

    def test_errors_in_window(self, event_log, context, clock):
        event_log.error("old", context)
        clock.advance(600)
        event_log.error("new", context)

        assert [e.message for e in event_log.errors_in_window(300)] == ["new"]

    def test_clear_old_metrics(self, event_log, context, clock):
        event_log.track_cache_operation("get", "a", hit=True)
        event_log.error("old", context)
        clock.advance(100)
        event_log.track_provider_usage("pexels", "/search", 50.0, True)

        remaining = event_log.clear_old_metrics(max_age=50)

        assert remaining == {"performance": 0, "provider_usage": 1, "cache_operations": 0, "errors": 0}

    def test_empty_statistics(self, event_log):
        assert event_log.performance_stats()["success_rate"] == 0.0
        assert event_log.provider_stats()["average_response_time"] == 0.0
        assert event_log.cache_stats()["hit_rate"] == 0.0


class TestExport:
    """Test cases for Prometheus and JSON export."""

    def test_prometheus_metrics(self, event_log):
        event_log.track_cache_operation("get", "a", hit=True)
        event_log.track_provider_usage("unsplash", "/search/photos", 120.0, True, rate_limit_remaining=40)

        output = event_log.prometheus_metrics().decode()

        assert 'image_cache_operations_total{operation="get",result="hit"} 1.0' in output
        assert 'image_provider_rate_limit_remaining{provider="unsplash"} 40.0' in output

    def test_instances_use_separate_registries(self, clock):
        first = EventLog(clock=clock.time)
        second = EventLog(clock=clock.time)

        first.track_cache_operation("get", "a", hit=True)

        assert b'result="hit"} 1.0' in first.prometheus_metrics()
        assert b'result="hit"} 1.0' not in second.prometheus_metrics()

    def test_prometheus_disabled(self, clock):
        event_log = EventLog(prometheus_enabled=False, clock=clock.time)
        event_log.track_cache_operation("get", "a", hit=True)

        assert event_log.prometheus_metrics() == b""

    def test_export(self, event_log, context):
        event_log.info("hello", context)
        event_log.track_cache_operation("set", "a", hit=False)

        data = event_log.export()

        assert data["cache"][0]["key"] == "a"
        assert data["logs"][0]["message"] == "hello"
        assert data["logs"][0]["context"]["provider"] == "unsplash"
