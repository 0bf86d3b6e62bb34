"""Abstract base class for candidate sources."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from src.core.schemas import Candidate, Context


class CandidateSource(ABC):
    """Base class that every candidate source must implement.

    Sources hand back geocoded, distance-annotated records. They are not
    trusted: the ranker validates every record it receives.
    """

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Unique identifier for this source (e.g. 'json_file')."""

    @abstractmethod
    async def fetch(self, context: Context) -> list[Candidate | Mapping[str, Any]]:
        """Return raw (unvalidated, unscored) candidates for the context."""
