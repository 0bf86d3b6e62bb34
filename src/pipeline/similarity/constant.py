"""Fixed collaborative signal for users without a similarity model."""

from src.core.schemas import Candidate, PreferenceProfile
from src.pipeline.similarity.base import NEUTRAL_SIMILARITY, SimilarityProvider


class ConstantSimilarity(SimilarityProvider):
    """Returns the same value for every candidate."""

    def __init__(self, value: float = NEUTRAL_SIMILARITY) -> None:
        self._value = float(value)

    @property
    def provider_id(self) -> str:
        return "constant"

    def similarity(self, candidate: Candidate, profile: PreferenceProfile) -> float:
        return self._value
