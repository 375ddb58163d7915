"""
Pexels Provider - Pexels API adapter

Part of the AgroLink Image Integration System.
Provider Adapters

License: MIT
"""

from dataclasses import replace
from math import ceil
from typing import Any, Dict, List
import logging

from ..core.exceptions import ImageError, ImageSystemError
from ..core.models import ImageUrls, ProviderImage, QuotaInfo, SearchOptions
from ..utils.helpers import unique_preserving_order
from .base import AGRICULTURAL_KEYWORDS, BaseImageProvider

logger = logging.getLogger(__name__)

MAX_EXTRACTED_TAGS = 10


class PexelsProvider(BaseImageProvider):
    """
    Adapter for the Pexels search and photo endpoints.

    Pexels sends no usable rate limit headers, so quota comes from local
    tracking alone.
    """

    name = "pexels"
    display_name = "Pexels"
    max_per_page = 80
    search_path = "/search"

    enrichment_terms = {
        "livestock": ("farm animals", "cattle", "dairy", "pasture", "ranch"),
        "crops": ("agriculture", "harvest", "grain", "field", "cultivation"),
        "equipment": ("farm equipment", "agricultural machinery", "rural", "farming tools"),
        "farms": ("farmhouse", "barn", "agricultural land", "countryside", "rural property"),
        "hero": ("rural landscape", "farming", "countryside", "agricultural vista"),
        "general": ("agriculture", "farming", "rural", "organic"),
    }

    category_queries = {
        "livestock": "cattle cows farm animals dairy livestock ranch",
        "crops": "crops wheat corn harvest agriculture grain farming",
        "equipment": "tractor farm equipment agricultural machinery farming tools",
        "farms": "farm farmhouse barn rural property countryside",
        "hero": "agriculture farming rural landscape countryside vista",
        "general": "agriculture farming rural countryside organic",
    }

    hero_queries = (
        "agriculture landscape farming countryside vista",
        "rural farm field sunset golden hour pastoral",
        "farming equipment tractor field machinery",
        "harvest season agriculture crops grain",
        "pastoral landscape farm animals cattle",
    )

    curated_queries = (
        "sustainable agriculture organic farming",
        "modern farming technology precision agriculture",
        "traditional farming rural heritage",
        "livestock management cattle dairy",
        "crop cultivation harvest season",
    )

    def __init__(self, api_key: str, base_url: str = "https://api.pexels.com/v1", rate_limit: int = 200, **kwargs):
        super().__init__(api_key, base_url, rate_limit, **kwargs)

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": self.api_key}

    def build_search_params(self, query: str, options: SearchOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "query": query,
            "per_page": min(options.count, self.max_per_page),
        }
        if options.orientation:
            params["orientation"] = options.orientation
        if options.size:
            params["size"] = options.size
        if options.category:
            params["query"] = self.enhance_query(query, options.category)
        return params

    def extract_search_results(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        photos = data.get("photos")
        if not isinstance(photos, list):
            raise ValueError("missing 'photos' list")
        return photos

    def transform(self, raw: Dict[str, Any]) -> ProviderImage:
        alt_text = raw.get("alt") or ""
        photographer = raw.get("photographer") or ""
        src = raw["src"]

        return ProviderImage(
            id=str(raw["id"]),
            urls=ImageUrls(
                raw=src["original"],
                full=src["large2x"],
                regular=src["large"],
                small=src["medium"],
                thumb=src["small"],
            ),
            photographer_name=photographer,
            photographer_url=raw.get("photographer_url") or "",
            description=alt_text or f"Agricultural image by {photographer}",
            tags=tuple(extract_tags(alt_text)),
            width=raw.get("width"),
            height=raw.get("height"),
            color=raw.get("avg_color"),
            download_url=src.get("original"),
        )

    async def get_quota(self) -> QuotaInfo:
        """
        Local tracking, verified with a one-result search.

        A failed probe lowers the remaining count by one as a conservative estimate.
        """
        local = self.quota.quota_info()

        try:
            await self._request(self.search_path, {"query": "test", "per_page": 1})
        except ImageSystemError as e:
            logger.debug(f"Pexels quota probe failed: {e}")
            return replace(local, remaining=max(0, local.remaining - 1))

        return self.quota.quota_info()

    async def get_curated(self, count: int = 10) -> List[ProviderImage]:
        """Landscape images drawn from a fixed set of curated agricultural queries."""
        results: List[ProviderImage] = []
        per_query = ceil(count / len(self.curated_queries))

        for query in self.curated_queries:
            try:
                images = await self.search(query, SearchOptions(count=per_query, orientation="landscape"))
            except ImageError as e:
                logger.warning(f"Failed to fetch curated images for query '{query}': {e}")
                continue

            results.extend(images)
            if len(results) >= count:
                break

        return results[:count]


def extract_tags(alt_text: str) -> List[str]:
    """Agricultural keywords and longer descriptive words from alt text, unique, at most ten."""
    if not alt_text:
        return []

    words = alt_text.lower().split()
    tags = [word for word in words if word in AGRICULTURAL_KEYWORDS or len(word) > 4]
    return unique_preserving_order(tags)[:MAX_EXTRACTED_TAGS]
