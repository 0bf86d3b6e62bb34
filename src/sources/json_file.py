"""Candidate source backed by a JSON file of place records."""

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from src.core.schemas import Candidate, Context
from src.sources.base import CandidateSource

logger = logging.getLogger(__name__)


class JsonFileSource(CandidateSource):
    """Reads a JSON array of candidate records.

    Records are returned as-is; validation happens in the ranker so a bad
    record is reported instead of failing the whole file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def source_id(self) -> str:
        return "json_file"

    async def fetch(self, context: Context) -> list[Candidate | Mapping[str, Any]]:
        if not self._path.exists():
            msg = f"Candidates file not found: {self._path}"
            raise FileNotFoundError(msg)
        try:
            data = json.loads(self._path.read_text())
        except json.JSONDecodeError as e:
            msg = f"Failed to parse candidates file as JSON: {e}"
            raise ValueError(msg) from e
        if not isinstance(data, list):
            msg = f"Candidates file must contain a JSON array, got {type(data).__name__}"
            raise ValueError(msg)
        logger.debug("Loaded %d candidate records from %s", len(data), self._path)
        return data
