"""Core data models for the activity recommender."""

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from src.core.errors import InvalidCandidateData

BASE_SCORE_MAX = 40.0
LOCATION_SCORE_MAX = 20.0
TIME_SCORE_MAX = 15.0
FEEDBACK_SCORE_MAX = 15.0
COLLABORATIVE_SCORE_MAX = 10.0

FAVORITE_CAPACITY = 10
DISLIKED_CAPACITY = 5
DISTANCE_FLOOR_MILES = 2.0


def normalize_category(value: str) -> str:
    """Lower-case and strip a category tag."""
    return value.strip().lower()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


class PriceSensitivity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DistanceTolerance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Rating(str, Enum):
    THUMBS_UP = "thumbs_up"
    THUMBS_DOWN = "thumbs_down"


class FeedbackTag(str, Enum):
    """Closed feedback vocabulary. Free text collapses to OTHER."""

    TOO_EXPENSIVE = "too_expensive"
    TOO_FAR = "too_far"
    TOO_CROWDED = "too_crowded"
    BORING = "boring"
    BAD_WEATHER = "bad_weather"
    GREAT_VALUE = "great_value"
    CONVENIENT = "convenient"
    LOVED_IT = "loved_it"
    OTHER = "other"


def time_of_day_for(hour: int) -> TimeOfDay:
    """Bucket an hour (0-23) into a time of day."""
    if 5 <= hour < 12:
        return TimeOfDay.MORNING
    if 12 <= hour < 17:
        return TimeOfDay.AFTERNOON
    if 17 <= hour < 21:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


# ---------------------------------------------------------------------------
# Candidates and context
# ---------------------------------------------------------------------------


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class Candidate(BaseModel):
    """An activity or place under consideration.

    Frozen: arrives from an untrusted source and is never mutated by scoring.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    category: str
    coordinates: Coordinates | None = None
    price_tier: int = Field(default=0, ge=0, le=4)
    rating: float | None = Field(default=None, ge=0.0, le=5.0)
    distance_miles: float | None = Field(default=None, ge=0.0)
    open_now: bool | None = None
    sponsored: bool = False

    @field_validator("id")
    @classmethod
    def id_not_empty(cls, v: str) -> str:
        if not v.strip():
            msg = "id must not be empty"
            raise ValueError(msg)
        return v.strip()

    @field_validator("category")
    @classmethod
    def category_normalized(cls, v: str) -> str:
        v = normalize_category(v)
        if not v:
            msg = "category must not be empty"
            raise ValueError(msg)
        return v


def parse_candidate(raw: Candidate | Mapping[str, Any]) -> Candidate:
    """Validate a raw candidate record from a candidate source.

    Raises:
        InvalidCandidateData: If the record fails validation.
    """
    if isinstance(raw, Candidate):
        return raw
    candidate_id = raw.get("id") if isinstance(raw, Mapping) else None
    try:
        return Candidate.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidCandidateData(
            str(candidate_id) if candidate_id is not None else None, problems,
        ) from e


class Context(BaseModel):
    """Caller-supplied request context. The core never reads the clock itself."""

    model_config = ConfigDict(frozen=True)

    current_time: datetime
    user_location: Coordinates | None = None
    time_of_day: TimeOfDay

    @model_validator(mode="before")
    @classmethod
    def derive_time_of_day(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("time_of_day") is not None:
            return data
        current = data.get("current_time")
        if isinstance(current, str):
            current = datetime.fromisoformat(current)
        if isinstance(current, datetime):
            data = {**data, "time_of_day": time_of_day_for(current.hour)}
        return data


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


class ScoreBreakdown(BaseModel):
    """Per-component match score for one (candidate, profile, context) triple."""

    model_config = ConfigDict(frozen=True)

    base_score: float = Field(ge=0.0, le=BASE_SCORE_MAX)
    location_score: float = Field(ge=0.0, le=LOCATION_SCORE_MAX)
    time_score: float = Field(ge=0.0, le=TIME_SCORE_MAX)
    feedback_score: float = Field(ge=0.0, le=FEEDBACK_SCORE_MAX)
    collaborative_score: float = Field(ge=0.0, le=COLLABORATIVE_SCORE_MAX)
    sponsor_boost: float = Field(default=0.0, ge=0.0)
    final_score: float = Field(ge=0.0, le=100.0)

    def components(self) -> dict[str, float]:
        """The five organic components, in declaration order."""
        return {
            "base_score": self.base_score,
            "location_score": self.location_score,
            "time_score": self.time_score,
            "feedback_score": self.feedback_score,
            "collaborative_score": self.collaborative_score,
        }

    @property
    def top_component(self) -> str:
        contributions = self.components()
        return max(contributions, key=lambda name: contributions[name])

    @property
    def ranking_score(self) -> float:
        return self.final_score + self.sponsor_boost

    @property
    def confidence(self) -> float:
        return min(self.final_score / 100.0, 1.0)


class RankedResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate: Candidate
    breakdown: ScoreBreakdown
    reason: str = ""


class RejectedCandidate(BaseModel):
    """A candidate excluded from ranking, with the reason it was dropped."""

    model_config = ConfigDict(frozen=True)

    candidate_id: str | None
    reason: str
    error: str = ""


class RankingOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    ranked: list[RankedResult] = Field(default_factory=list)
    rejected: list[RejectedCandidate] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Preferences and feedback
# ---------------------------------------------------------------------------


class PreferenceProfile(BaseModel):
    """Learned per-user preferences.

    Immutable value: apply_feedback returns a new profile instead of mutating.
    Category tuples are ordered oldest first.
    """

    model_config = ConfigDict(frozen=True)

    preferred_distance_miles: float = Field(default=5.0, ge=DISTANCE_FLOOR_MILES)
    budget_level: int = Field(default=2, ge=0, le=4)
    favorite_categories: tuple[str, ...] = ()
    disliked_categories: tuple[str, ...] = ()
    price_sensitivity: PriceSensitivity = PriceSensitivity.MEDIUM
    distance_tolerance: DistanceTolerance = DistanceTolerance.MEDIUM
    time_preferences: frozenset[TimeOfDay] = frozenset()

    @field_validator("favorite_categories", "disliked_categories")
    @classmethod
    def categories_bounded(cls, v: tuple[str, ...], info: ValidationInfo) -> tuple[str, ...]:
        capacity = (
            FAVORITE_CAPACITY if info.field_name == "favorite_categories" else DISLIKED_CAPACITY
        )
        ordered: list[str] = []
        for raw in v:
            category = normalize_category(raw)
            if not category:
                continue
            # Repeats count as the most recent occurrence
            if category in ordered:
                ordered.remove(category)
            ordered.append(category)
        return tuple(ordered[-capacity:])


def default_profile() -> PreferenceProfile:
    """Profile used for users with no stored preferences."""
    return PreferenceProfile()


class FeedbackEvent(BaseModel):
    """A single rating of a completed activity. Consumed once by apply_feedback."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    category: str
    rating: Rating
    tags: tuple[FeedbackTag, ...] = ()
    notes: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)

    @field_validator("category")
    @classmethod
    def category_normalized(cls, v: str) -> str:
        v = normalize_category(v)
        if not v:
            msg = "category must not be empty"
            raise ValueError(msg)
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        known = {t.value for t in FeedbackTag}
        tags: list[FeedbackTag] = []
        for raw in v:
            value = raw.value if isinstance(raw, FeedbackTag) else str(raw).strip().lower()
            tag = FeedbackTag(value) if value in known else FeedbackTag.OTHER
            if tag not in tags:
                tags.append(tag)
        return tuple(tags)


class FeedbackReceipt(BaseModel):
    """Result of submitting feedback through the profile manager."""

    model_config = ConfigDict(frozen=True)

    event_id: int
    applied: bool
    profile: PreferenceProfile | None = None
    version: int | None = None


class FeedbackStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    thumbs_up: int = 0
    thumbs_down: int = 0
    satisfaction_rate: float = 0.0
    top_categories: list[str] = Field(default_factory=list)
