"""
Category Matcher - Map logical categories to weighted search vocabulary

Part of the AgroLink Image Integration System.
Core Implementation

Provides tiered search terms for staged retries and a 3/2/1 weighted
relevance score used to filter and rank untrusted provider results.

License: MIT
"""

from typing import Iterable, List, Optional, Sequence, TypeVar, Union
import logging

from .models import CategoryMapping, ImageDescriptor, ProviderImage
from ..utils.helpers import unique_preserving_order

logger = logging.getLogger(__name__)

Scorable = Union[ImageDescriptor, ProviderImage]
S = TypeVar("S", ImageDescriptor, ProviderImage)

EXCLUDED_SCORE = -1

PRIMARY_WEIGHT = 3
FALLBACK_WEIGHT = 2
GENERIC_WEIGHT = 1


DEFAULT_CATEGORY_MAPPINGS: Sequence[CategoryMapping] = (
    CategoryMapping(
        category="livestock",
        primary_terms=("cattle", "cows", "livestock", "farm animals", "dairy cows", "beef cattle"),
        fallback_terms=("agriculture", "farming", "rural", "pasture", "ranch"),
        exclude_terms=("wild animals", "zoo", "pets"),
    ),
    CategoryMapping(
        category="crops",
        primary_terms=("crops", "wheat", "corn", "soybeans", "harvest", "grain fields", "crop farming"),
        fallback_terms=("agriculture", "farming", "fields", "rural landscape"),
        exclude_terms=("garden", "flowers", "decorative plants"),
    ),
    CategoryMapping(
        category="poultry",
        primary_terms=(
            "chickens", "poultry", "farm chickens", "egg production",
            "chicken coop", "free range chickens",
        ),
        fallback_terms=("farm animals", "agriculture", "farming", "rural"),
        exclude_terms=("wild birds", "pets", "exotic birds"),
    ),
    CategoryMapping(
        category="dairy",
        primary_terms=("dairy farm", "milk production", "dairy cows", "milking", "dairy farming", "cow milking"),
        fallback_terms=("cattle", "cows", "agriculture", "farming", "rural"),
        exclude_terms=("wild animals", "beef cattle"),
    ),
    CategoryMapping(
        category="vegetables",
        primary_terms=(
            "vegetable farming", "vegetable crops", "tomatoes", "lettuce",
            "carrots", "farm vegetables",
        ),
        fallback_terms=("agriculture", "farming", "crops", "harvest", "fields"),
        exclude_terms=("wild plants", "decorative plants", "flowers"),
    ),
    CategoryMapping(
        category="fruits",
        primary_terms=(
            "fruit farming", "orchard", "apple trees", "fruit harvest",
            "agricultural fruits", "farm fruits",
        ),
        fallback_terms=("agriculture", "farming", "trees", "harvest", "rural"),
        exclude_terms=("wild fruits", "decorative trees", "forest"),
    ),
    CategoryMapping(
        category="equipment",
        primary_terms=("farm equipment", "tractor", "agricultural machinery", "farming tools", "harvester", "plow"),
        fallback_terms=("agriculture", "farming", "rural", "machinery"),
        exclude_terms=("construction equipment", "industrial machinery"),
    ),
    CategoryMapping(
        category="farms",
        primary_terms=("farm", "farmhouse", "barn", "rural property", "agricultural land"),
        fallback_terms=("agriculture", "countryside", "rural"),
        exclude_terms=("urban", "city", "suburban"),
    ),
    CategoryMapping(
        category="general",
        primary_terms=("agriculture", "farming", "farm", "rural landscape", "agricultural land", "countryside"),
        fallback_terms=("rural", "landscape", "fields", "nature"),
        exclude_terms=("urban", "city", "industrial"),
    ),
)

HERO_THEMES = (
    "beautiful farm landscape",
    "golden wheat fields",
    "pastoral countryside",
    "agricultural sunrise",
    "green farmland",
    "rural farming scene",
    "harvest season",
    "farm at sunset",
    "agricultural valley",
    "farming community",
)

GLOBAL_FALLBACK_TERMS = (
    "agriculture",
    "farming",
    "rural",
    "countryside",
    "farm",
    "agricultural landscape",
    "pastoral",
    "farmland",
)

AGRICULTURAL_KEYWORDS = (
    "agriculture", "farming", "farm", "rural", "countryside", "pastoral",
    "livestock", "cattle", "cows", "dairy", "beef", "poultry", "chickens",
    "crops", "wheat", "corn", "soybeans", "vegetables", "fruits", "harvest",
    "fields", "pasture", "orchard", "barn", "silo", "tractor", "plow",
    "agricultural", "farmland", "ranch", "grazing", "cultivation",
)

NON_AGRICULTURAL_TERMS = (
    "urban", "city", "industrial", "factory", "office", "building",
    "technology", "computer", "digital", "abstract", "portrait",
    "fashion", "sports", "entertainment", "music", "art gallery",
)

SEASONS = ("spring", "summer", "autumn", "winter")


class CategoryMatcher:
    """
    Category vocabulary lookups and relevance scoring.

    The mapping table is static and read-only after construction.
    """

    def __init__(
        self,
        mappings: Optional[Iterable[CategoryMapping]] = None,
        generic_keywords: Sequence[str] = AGRICULTURAL_KEYWORDS,
        disqualifying_terms: Sequence[str] = NON_AGRICULTURAL_TERMS,
    ):
        """
        Initialize the matcher.

        Args:
            mappings: Category mappings (defaults to the built-in table)
            generic_keywords: Vocabulary scored with the lowest weight
            disqualifying_terms: Terms that make a result off-theme
        """
        source = DEFAULT_CATEGORY_MAPPINGS if mappings is None else mappings
        self._mappings = {m.category.lower().strip(): m for m in source}
        self._generic_keywords = tuple(k.lower() for k in generic_keywords)
        self._disqualifying_terms = tuple(t.lower() for t in disqualifying_terms)

    # ------------------------------------------------------------------
    # Vocabulary lookups
    # ------------------------------------------------------------------

    def mapping_for(self, category: str) -> Optional[CategoryMapping]:
        """Exact-match mapping lookup."""
        return self._mappings.get(_normalize(category))

    def resolve_mapping(self, category: str) -> Optional[CategoryMapping]:
        """
        Exact match, then partial containment match, then the generic tier.
        """
        normalized = _normalize(category)
        mapping = self._mappings.get(normalized)
        if mapping:
            return mapping

        if normalized:
            for name, candidate in self._mappings.items():
                if name in normalized or normalized in name:
                    return candidate

        return self._mappings.get("general")

    def search_terms(self, category: str) -> List[str]:
        """Primary search terms for a category."""
        mapping = self.resolve_mapping(category)
        if mapping:
            return list(mapping.primary_terms)
        return list(GLOBAL_FALLBACK_TERMS)

    def tiered_fallback_terms(self, category: str) -> List[List[str]]:
        """
        Ordered search tiers for staged retry: primary, category fallback, global fallback.
        """
        mapping = self.mapping_for(category)
        if mapping:
            return [
                list(mapping.primary_terms),
                list(mapping.fallback_terms),
                list(GLOBAL_FALLBACK_TERMS),
            ]

        general = self._mappings.get("general")
        return [
            list(general.primary_terms) if general else list(GLOBAL_FALLBACK_TERMS),
            list(GLOBAL_FALLBACK_TERMS),
        ]

    def next_fallback_terms(self, category: str, attempt: int) -> List[str]:
        tiers = self.tiered_fallback_terms(category)
        if attempt < len(tiers):
            return tiers[attempt]
        return list(GLOBAL_FALLBACK_TERMS)

    def hero_themes(self) -> List[str]:
        return list(HERO_THEMES)

    def global_fallback_terms(self) -> List[str]:
        return list(GLOBAL_FALLBACK_TERMS)

    def available_categories(self) -> List[str]:
        return list(self._mappings.keys())

    def search_variations(self, base_terms: Sequence[str]) -> List[str]:
        """
        Expand base terms with farm/agricultural and seasonal prefixes.
        """
        variations = list(base_terms)

        for term in base_terms:
            if "farm" not in term and "agricultural" not in term:
                variations.append(f"farm {term}")
                variations.append(f"agricultural {term}")

        for term in base_terms[:2]:
            for season in SEASONS:
                variations.append(f"{season} {term}")

        return unique_preserving_order(variations)

    # ------------------------------------------------------------------
    # Scoring and filtering
    # ------------------------------------------------------------------

    def relevance_score(self, result: Scorable, category: str) -> int:
        """
        Score a result for topical fit.

        Any exclude-term hit is a hard reject (-1). Otherwise the score is
        3 per primary-term match, 2 per fallback-term match and 1 per generic
        vocabulary match.
        """
        text = result.search_text
        mapping = self.mapping_for(category)

        if mapping and _any_in(mapping.exclude_terms, text):
            return EXCLUDED_SCORE

        score = 0
        if mapping:
            score += PRIMARY_WEIGHT * _count_in(mapping.primary_terms, text)
            score += FALLBACK_WEIGHT * _count_in(mapping.fallback_terms, text)
        score += GENERIC_WEIGHT * _count_in(self._generic_keywords, text)

        return score

    def filter_and_rank(self, results: Sequence[S], category: str) -> List[S]:
        """
        Drop results scoring <= 0 and stable-sort the rest by descending score.
        """
        scored = [(self.relevance_score(r, category), r) for r in results]
        kept = [(score, r) for score, r in scored if score > 0]
        kept.sort(key=lambda item: item[0], reverse=True)

        dropped = len(results) - len(kept)
        if dropped:
            logger.debug(f"Filtered {dropped}/{len(results)} results as irrelevant to '{category}'")

        return [r for _, r in kept]

    def is_relevant(self, result: Scorable, category: str) -> bool:
        """Boolean acceptance: excluded terms reject, any known vocabulary accepts."""
        text = result.search_text
        mapping = self.mapping_for(category)

        if mapping:
            if _any_in(mapping.exclude_terms, text):
                return False
            if _any_in(mapping.primary_terms, text) or _any_in(mapping.fallback_terms, text):
                return True

        return _any_in(self._generic_keywords, text)

    def is_on_theme(self, result: Scorable) -> bool:
        """At least one agricultural term and no disqualifying term."""
        text = result.search_text
        return _any_in(self._generic_keywords, text) and not _any_in(self._disqualifying_terms, text)


def _normalize(category: Optional[str]) -> str:
    return (category or "").lower().strip()


def _any_in(terms: Iterable[str], text: str) -> bool:
    return any(term.lower() in text for term in terms)


def _count_in(terms: Iterable[str], text: str) -> int:
    return sum(1 for term in terms if term.lower() in text)
