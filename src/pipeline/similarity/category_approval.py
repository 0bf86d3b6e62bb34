"""Collaborative signal from other users' approval rates per category."""

import logging

from src.core.schemas import Candidate, PreferenceProfile, normalize_category
from src.pipeline.similarity.base import NEUTRAL_SIMILARITY, SimilarityProvider

logger = logging.getLogger(__name__)


class CategoryApprovalSimilarity(SimilarityProvider):
    """Scales an aggregated thumbs-up rate (0-1) for the category to 0-10.

    The approval map is computed elsewhere (e.g. a nightly job over users
    with overlapping favorites). Categories missing from it score neutral.
    """

    def __init__(
        self,
        approval_rates: dict[str, float] | None = None,
        default: float = NEUTRAL_SIMILARITY,
    ) -> None:
        self._rates: dict[str, float] = {}
        for category, rate in (approval_rates or {}).items():
            clamped = max(0.0, min(1.0, float(rate)))
            if clamped != rate:
                logger.warning("Approval rate for '%s' out of range (%s), clamped", category, rate)
            self._rates[normalize_category(category)] = clamped
        self._default = float(default)

    @property
    def provider_id(self) -> str:
        return "category_approval"

    def similarity(self, candidate: Candidate, profile: PreferenceProfile) -> float:
        rate = self._rates.get(candidate.category)
        if rate is None:
            return self._default
        return round(rate * 10.0, 2)
