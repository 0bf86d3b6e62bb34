"""Configuration models and YAML loader for the activity recommender."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from src.core.schemas import BASE_SCORE_MAX, TIME_SCORE_MAX, normalize_category


class ScoringConfig(BaseModel):
    """Curve parameters for the five score components and the sponsor nudge."""

    # Interest match (base score)
    favorite_base: float = Field(default=30.0, ge=0.0)
    favorite_recency_span: float = Field(default=6.0, ge=0.0)
    neutral_base: float = Field(default=16.0, ge=0.0)
    disliked_base: float = Field(default=2.0, ge=0.0)
    quality_bonus_max: float = Field(default=4.0, ge=0.0)

    # Distance decay exponents per tolerance level
    tolerance_exponents: dict[str, float] = Field(
        default_factory=lambda: {"low": 2.0, "medium": 1.0, "high": 0.5},
    )

    # Time of day
    time_neutral: float = Field(default=8.0, gt=0.0, le=TIME_SCORE_MAX)
    time_fit_bonus: float = Field(default=4.0, ge=0.0, le=TIME_SCORE_MAX)

    # Feedback history
    feedback_favorite: float = Field(default=12.0, ge=0.0)
    feedback_neutral: float = Field(default=7.0, ge=0.0)
    feedback_disliked: float = Field(default=1.0, ge=0.0)
    price_fit_bonus: float = Field(default=3.0, ge=0.0)

    # Sponsorship
    sponsor_boost_cap: float = Field(default=5.0, ge=0.0)
    sponsor_boost_rate: float = Field(default=0.3, ge=0.0, le=1.0)

    @field_validator("tolerance_exponents")
    @classmethod
    def exponents_cover_levels(cls, v: dict[str, float]) -> dict[str, float]:
        missing = {"low", "medium", "high"} - set(v)
        if missing:
            msg = f"tolerance_exponents missing levels: {sorted(missing)}"
            raise ValueError(msg)
        if any(e <= 0 for e in v.values()):
            msg = "tolerance_exponents must be positive"
            raise ValueError(msg)
        if not v["low"] >= v["medium"] >= v["high"]:
            msg = "tolerance_exponents must satisfy low >= medium >= high"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def interest_levels_ordered(self) -> "ScoringConfig":
        favorite_max = self.favorite_base + self.favorite_recency_span + self.quality_bonus_max
        neutral_max = self.neutral_base + self.quality_bonus_max
        if favorite_max > BASE_SCORE_MAX:
            msg = f"favorite base score can reach {favorite_max}, above {BASE_SCORE_MAX}"
            raise ValueError(msg)
        if not self.favorite_base > neutral_max:
            msg = "favorite_base must exceed neutral_base + quality_bonus_max"
            raise ValueError(msg)
        if not self.neutral_base > self.disliked_base:
            msg = "neutral_base must exceed disliked_base"
            raise ValueError(msg)
        if not self.feedback_favorite > self.feedback_neutral > self.feedback_disliked:
            msg = "feedback levels must satisfy favorite > neutral > disliked"
            raise ValueError(msg)
        if self.time_neutral + self.time_fit_bonus > TIME_SCORE_MAX:
            msg = "time_neutral + time_fit_bonus must not exceed the time score max"
            raise ValueError(msg)
        return self


class FeedbackConfig(BaseModel):
    """Profile update policy."""

    max_retries: int = Field(default=5, ge=1, le=50)
    # Users whose last good profile is kept for store outages
    profile_cache_size: int = Field(default=1000, ge=1)


class RankingConfig(BaseModel):
    """Batch ranking and presentation rules."""

    workers: int = Field(default=1, ge=1, le=64)
    max_results: int | None = Field(default=None, ge=1)
    max_sponsored_in_top: int = Field(default=2, ge=0)
    sponsored_window: int = Field(default=5, ge=1)
    exclude_closed: bool = False
    # Request filters; empty or None disables each one
    min_rating: float | None = Field(default=None, ge=0.0, le=5.0)
    categories: list[str] = Field(default_factory=list)
    exclude_ids: list[str] = Field(default_factory=list)

    @field_validator("categories")
    @classmethod
    def normalize_categories(cls, v: list[str]) -> list[str]:
        return [c for c in (normalize_category(x) for x in v) if c]


class CollaborativeConfig(BaseModel):
    """Which similarity provider feeds the collaborative score."""

    provider: str = "constant"
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("provider")
    @classmethod
    def provider_not_empty(cls, v: str) -> str:
        if not v.strip():
            msg = "provider must not be empty"
            raise ValueError(msg)
        return v.strip()


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/profiles.db"


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    collaborative: CollaborativeConfig = Field(default_factory=CollaborativeConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
