"""
Unit Tests for Helper Functions

Tests cache key normalization and formatting helpers.
"""

import pytest

from image_system.utils.helpers import (
    build_cache_key,
    create_unique_id,
    format_duration,
    normalize_key_part,
    unique_preserving_order,
)


class TestCacheKeys:
    """Test cases for cache key building."""

    @pytest.mark.parametrize(
        "value, expected",
        [("  Dairy   Farm ", "dairy farm"), (None, "default"), ("   ", "default"), (6, "6")],
    )
    def test_normalize_key_part(self, value, expected):
        assert normalize_key_part(value) == expected

    def test_build_cache_key(self):
        assert build_cache_key("hero", None) == "hero:default"
        assert build_cache_key("category", "Livestock ", 6, 0) == "category:livestock:6:0"
        assert build_cache_key("section", "Testimonials") == build_cache_key("section", " testimonials")


class TestFormatting:
    """Test cases for formatting helpers."""

    @pytest.mark.parametrize(
        "seconds, expected",
        [(0.25, "250ms"), (12.34, "12.3s"), (125, "2m 5s"), (7260, "2h 1m")],
    )
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected

    def test_create_unique_id(self):
        first = create_unique_id("alert")
        second = create_unique_id("alert")

        assert first.startswith("alert_")
        assert len(first) == len("alert_") + 12
        assert first != second

    def test_unique_preserving_order(self):
        assert unique_preserving_order(["cattle", "farm", "cattle", "barn"]) == ["cattle", "farm", "barn"]
