"""
Unsplash Provider - Unsplash API adapter

Part of the AgroLink Image Integration System.
Provider Adapters

License: MIT
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

import httpx

from ..core.exceptions import ImageSystemError
from ..core.models import ImageUrls, ProviderImage, QuotaInfo, SearchOptions
from .base import BaseImageProvider

logger = logging.getLogger(__name__)


class UnsplashProvider(BaseImageProvider):
    """
    Adapter for the Unsplash search and photo endpoints.

    Authenticates with ``Client-ID`` and refines quota from the
    ``X-Ratelimit-*`` response headers.
    """

    name = "unsplash"
    display_name = "Unsplash"
    max_per_page = 30
    search_path = "/search/photos"

    enrichment_terms = {
        "livestock": ("farm animals", "cattle", "dairy", "pasture"),
        "crops": ("agriculture", "harvest", "grain", "field"),
        "equipment": ("farm equipment", "agricultural machinery", "rural"),
        "farms": ("farmhouse", "barn", "agricultural land", "countryside"),
        "hero": ("rural landscape", "farming", "countryside"),
        "general": ("agriculture", "farming", "rural"),
    }

    category_queries = {
        "livestock": "cattle cows farm animals dairy livestock",
        "crops": "crops wheat corn harvest agriculture grain",
        "equipment": "tractor farm equipment agricultural machinery",
        "farms": "farm farmhouse barn rural property",
        "hero": "agriculture farming rural landscape countryside",
        "general": "agriculture farming rural countryside",
    }

    hero_queries = (
        "agriculture landscape farming countryside",
        "rural farm field sunset golden hour",
        "farming equipment tractor field",
        "harvest season agriculture crops",
        "pastoral landscape farm animals",
    )

    def __init__(self, api_key: str, base_url: str = "https://api.unsplash.com", rate_limit: int = 50, **kwargs):
        super().__init__(api_key, base_url, rate_limit, **kwargs)

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Client-ID {self.api_key}"}

    def build_search_params(self, query: str, options: SearchOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "query": query,
            "per_page": min(options.count, self.max_per_page),
            "order_by": "relevant",
        }
        if options.orientation:
            params["orientation"] = options.orientation
        if options.category:
            params["query"] = self.enhance_query(query, options.category)
        return params

    def extract_search_results(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        results = data.get("results")
        if not isinstance(results, list):
            raise ValueError("missing 'results' list")
        return results

    def transform(self, raw: Dict[str, Any]) -> ProviderImage:
        tags = tuple(tag["title"] for tag in raw.get("tags") or [] if tag.get("title"))

        alt_text = (
            raw.get("alt_description")
            or raw.get("description")
            or (f"Image featuring {', '.join(tags[:3])}" if tags else "Agricultural image")
        )

        urls = raw["urls"]
        user = raw["user"]
        return ProviderImage(
            id=str(raw["id"]),
            urls=ImageUrls(
                raw=urls["raw"],
                full=urls["full"],
                regular=urls["regular"],
                small=urls["small"],
                thumb=urls["thumb"],
            ),
            photographer_name=user.get("name") or "",
            photographer_url=(user.get("links") or {}).get("html", ""),
            description=raw.get("description") or alt_text,
            tags=tags,
            width=raw.get("width"),
            height=raw.get("height"),
            color=raw.get("color"),
            download_url=(raw.get("links") or {}).get("download"),
        )

    def remaining_from_response(self, response: Optional[httpx.Response]) -> int:
        local = self.quota.quota_info().remaining
        if response is not None:
            server = _header_int(response.headers, "X-Ratelimit-Remaining")
            if server is not None:
                return min(server, local)
        return local

    async def get_quota(self) -> QuotaInfo:
        """
        Probe ``/photos`` for rate limit headers.

        Remaining is the lower of the provider's figure and local tracking;
        local tracking is returned unchanged when the probe fails.
        """
        local = self.quota.quota_info()

        try:
            response = await self._request("/photos", {"per_page": 1})
        except ImageSystemError as e:
            logger.debug(f"Unsplash quota probe failed, using local tracking: {e}")
            return local

        remaining = _header_int(response.headers, "X-Ratelimit-Remaining")
        total = _header_int(response.headers, "X-Ratelimit-Limit")
        reset = _header_int(response.headers, "X-Ratelimit-Reset")

        return QuotaInfo(
            remaining=min(remaining, local.remaining) if remaining is not None else local.remaining,
            total=total if total is not None else self.quota.max_requests,
            reset_time=datetime.fromtimestamp(reset) if reset else local.reset_time,
        )


def _header_int(headers: httpx.Headers, name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
