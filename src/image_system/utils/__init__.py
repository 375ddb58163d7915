"""
Utility functions for the image system.

License: MIT
"""

from .helpers import (
    normalize_key_part,
    build_cache_key,
    unique_preserving_order,
    format_duration,
    create_unique_id,
    get_system_info,
)

__all__ = [
    "normalize_key_part",
    "build_cache_key",
    "unique_preserving_order",
    "format_duration",
    "create_unique_id",
    "get_system_info",
]
