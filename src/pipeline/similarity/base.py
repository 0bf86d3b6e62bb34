"""Abstract base class for collaborative similarity providers."""

from abc import ABC, abstractmethod

from src.core.schemas import Candidate, PreferenceProfile

NEUTRAL_SIMILARITY = 5.0


class SimilarityProvider(ABC):
    """Base class that every collaborative signal must implement.

    Providers are called concurrently from the batch ranker, so
    implementations must not mutate shared state inside similarity().
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'constant')."""

    @abstractmethod
    def similarity(self, candidate: Candidate, profile: PreferenceProfile) -> float:
        """Return how strongly similar users rate this candidate.

        Args:
            candidate: The candidate being scored.
            profile: The requesting user's preference snapshot.

        Returns:
            A value expected in [0, 10]. The scorer clamps anything outside.
        """
