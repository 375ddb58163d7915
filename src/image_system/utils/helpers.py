"""
Utility Helper Functions - Common utilities for the image system

Part of the AgroLink Image Integration System.

License: MIT
"""

import re
import uuid
import platform
import sys
from typing import Any, Dict, Iterable, List
from datetime import datetime

import psutil


def normalize_key_part(value: Any, default: str = "default") -> str:
    """Lowercase, trim and collapse whitespace in one cache key component."""
    if value is None:
        return default
    cleaned = re.sub(r"\s+", " ", str(value)).strip().lower()
    return cleaned or default


def build_cache_key(prefix: str, *parts: Any) -> str:
    """
    Build a deterministic cache key from request parameters.

    Args:
        prefix: Request type prefix (hero, category, section, preload)
        *parts: Request parameters, normalized before joining

    Returns:
        Key of the form ``prefix:part1:part2``
    """
    normalized = [normalize_key_part(p) for p in parts]
    return ":".join([prefix] + normalized)


def unique_preserving_order(items: Iterable[str]) -> List[str]:
    """Remove duplicates while keeping first-seen order."""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable format.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string
    """
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        remaining_seconds = seconds % 60
        return f"{minutes}m {remaining_seconds:.0f}s"
    else:
        hours = int(seconds // 3600)
        remaining_minutes = int((seconds % 3600) // 60)
        return f"{hours}h {remaining_minutes}m"


def create_unique_id(prefix: str = "") -> str:
    """
    Create a unique identifier.

    Args:
        prefix: Optional prefix for the ID

    Returns:
        Unique identifier string
    """
    unique_id = uuid.uuid4().hex[:12]

    if prefix:
        return f"{prefix}_{unique_id}"

    return unique_id


def get_system_info() -> Dict[str, Any]:
    """
    Get host information for reports.

    Returns:
        Dictionary with platform, interpreter and memory details
    """
    memory = psutil.virtual_memory()
    process = psutil.Process()

    return {
        "platform": platform.platform(),
        "python_version": sys.version.split()[0],
        "cpu_count": psutil.cpu_count(),
        "memory": {
            "total": memory.total,
            "available": memory.available,
            "percent": memory.percent,
        },
        "process_rss": process.memory_info().rss,
        "timestamp": datetime.now().isoformat(),
    }
