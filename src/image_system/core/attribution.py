"""
Attribution Manager - Photographer credits and usage tracking

Part of the AgroLink Image Integration System.
Core Implementation

License: MIT
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from html import escape
from typing import Any, Callable, Dict, Iterable, List, Optional
import csv
import io
import logging

from .models import ImageDescriptor, ImageSource

logger = logging.getLogger(__name__)


@dataclass
class UsageRecord:
    image_id: str
    source: str
    photographer: str
    photographer_url: str
    required: bool
    usage_count: int
    first_used: datetime
    last_used: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image_id": self.image_id,
            "source": self.source,
            "photographer": self.photographer,
            "photographer_url": self.photographer_url,
            "required": self.required,
            "usage_count": self.usage_count,
            "first_used": self.first_used.isoformat(),
            "last_used": self.last_used.isoformat(),
        }


class AttributionManager:
    """
    Formats photographer credits and tracks image usage for provider compliance.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self._usage: Dict[str, UsageRecord] = {}

    @staticmethod
    def _usage_key(image_id: str, source: str) -> str:
        return f"{source}-{image_id}"

    def format_attribution(self, image: ImageDescriptor) -> str:
        """
        Human readable credit line.

        Returns:
            Empty string when the image does not require attribution
        """
        attribution = image.attribution
        if not attribution.required:
            return ""

        if image.source == ImageSource.UNSPLASH:
            return f"Photo by {attribution.photographer} on Unsplash"
        if image.source == ImageSource.PEXELS:
            return f"Photo by {attribution.photographer} from Pexels"
        return f"Photo by {attribution.photographer}"

    def attribution_link(self, image: ImageDescriptor) -> str:
        """Photographer URL, else source URL, else empty."""
        attribution = image.attribution
        if not attribution.required:
            return ""
        return attribution.photographer_url or attribution.source_url or ""

    def attribution_html(self, image: ImageDescriptor) -> str:
        text = self.format_attribution(image)
        if not text:
            return ""

        link = self.attribution_link(image)
        if link:
            return (
                f'<div class="image-attribution"><a href="{escape(link)}" target="_blank" '
                f'rel="noopener">{escape(text)}</a></div>'
            )
        return f'<div class="image-attribution">{escape(text)}</div>'

    def bulk_attribution(self, images: Iterable[ImageDescriptor]) -> str:
        """Distinct credit lines joined with '; '."""
        lines: List[str] = []
        for image in images:
            text = self.format_attribution(image)
            if text and text not in lines:
                lines.append(text)
        return "; ".join(lines)

    def requires_attribution(self, image: ImageDescriptor) -> bool:
        return image.attribution.required

    def track_usage(self, image: ImageDescriptor) -> UsageRecord:
        """Record one display of ``image``."""
        source = image.source.value
        key = self._usage_key(image.id, source)
        now = self._clock()

        record = self._usage.get(key)
        if record is not None:
            record.usage_count += 1
            record.last_used = now
            return record

        record = UsageRecord(
            image_id=image.id,
            source=source,
            photographer=image.attribution.photographer,
            photographer_url=image.attribution.photographer_url,
            required=image.attribution.required,
            usage_count=1,
            first_used=now,
            last_used=now,
        )
        self._usage[key] = record
        return record

    def usage_for(self, image_id: str, source: str) -> Optional[UsageRecord]:
        return self._usage.get(self._usage_key(image_id, source))

    def all_usage_records(self) -> List[UsageRecord]:
        return list(self._usage.values())

    def usage_by_source(self) -> Dict[str, Dict[str, int]]:
        stats: Dict[str, Dict[str, int]] = {}
        for record in self._usage.values():
            item = stats.setdefault(record.source, {"images": 0, "total_usage": 0})
            item["images"] += 1
            item["total_usage"] += record.usage_count
        return stats

    def top_photographers(self, limit: int = 10) -> List[Dict[str, Any]]:
        stats: Dict[str, Dict[str, int]] = {}
        for record in self._usage.values():
            if not record.required:
                continue
            item = stats.setdefault(record.photographer, {"image_count": 0, "total_usage": 0})
            item["image_count"] += 1
            item["total_usage"] += record.usage_count

        ranked = [{"photographer": name, **values} for name, values in stats.items()]
        ranked.sort(key=lambda item: item["total_usage"], reverse=True)
        return ranked[:limit]

    def clear(self) -> None:
        self._usage.clear()
        logger.info("Attribution usage data cleared")

    def prune(self, max_age: float) -> int:
        """
        Drop usage records not displayed within the last ``max_age`` seconds.

        Returns:
            Number of records removed
        """
        cutoff = self._clock() - timedelta(seconds=max_age)
        stale = [key for key, record in self._usage.items() if record.last_used < cutoff]
        for key in stale:
            del self._usage[key]

        if stale:
            logger.debug(f"Pruned {len(stale)} attribution usage records")
        return len(stale)

    def report(self) -> Dict[str, Any]:
        """
        Compliance report over all tracked usage.

        An image is missing attribution when it requires credit but carries
        no photographer link.
        """
        records = list(self._usage.values())

        images_by_source: Dict[str, int] = {}
        for record in records:
            images_by_source[record.source] = images_by_source.get(record.source, 0) + 1

        missing = [r for r in records if r.required and not r.photographer_url]
        compliance_issues = [
            f"{r.source} image {r.image_id} by {r.photographer or 'unknown'} has no photographer link"
            for r in missing
        ]

        return {
            "total_images": len(records),
            "total_usage": sum(r.usage_count for r in records),
            "missing_attributions": len(missing),
            "images_by_source": images_by_source,
            "photographer_credits": [
                {"photographer": r.photographer, "image_count": r.usage_count, "source": r.source}
                for r in records
                if r.required
            ],
            "compliance_issues": compliance_issues,
            "generated_at": self._clock().isoformat(),
        }

    def export_usage_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(
            ["Image ID", "Source", "Photographer", "Photographer URL", "Usage Count", "First Used", "Last Used"]
        )
        for record in self._usage.values():
            writer.writerow(
                [
                    record.image_id,
                    record.source,
                    record.photographer,
                    record.photographer_url,
                    record.usage_count,
                    record.first_used.isoformat(),
                    record.last_used.isoformat(),
                ]
            )
        return buffer.getvalue()
