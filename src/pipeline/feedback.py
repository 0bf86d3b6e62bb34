"""Feedback processor: folds one rating into a user's preference profile.

Rules:
  1. thumbs_up: category joins favorites, leaves dislikes
  2. thumbs_down: category joins dislikes, leaves favorites
  3. Category lists are bounded (10 favorites / 5 dislikes); overflow evicts
     the oldest entry
  4. Tags adjust numeric fields through TAG_EFFECTS, each clamped to its floor
"""

import logging

from pydantic import BaseModel, ConfigDict, Field

from src.core.schemas import (
    DISLIKED_CAPACITY,
    DISTANCE_FLOOR_MILES,
    FAVORITE_CAPACITY,
    DistanceTolerance,
    FeedbackEvent,
    FeedbackTag,
    PreferenceProfile,
    PriceSensitivity,
    Rating,
    default_profile,
)

logger = logging.getLogger(__name__)


class TagEffect(BaseModel):
    """Numeric profile adjustment triggered by one feedback tag."""

    model_config = ConfigDict(frozen=True)

    price_sensitivity: PriceSensitivity | None = None
    distance_tolerance: DistanceTolerance | None = None
    budget_delta: int = 0
    distance_reduction: float = Field(default=0.0, ge=0.0)
    distance_floor: float = Field(default=DISTANCE_FLOOR_MILES, ge=DISTANCE_FLOOR_MILES)


TAG_EFFECTS: dict[FeedbackTag, TagEffect] = {
    FeedbackTag.GREAT_VALUE: TagEffect(price_sensitivity=PriceSensitivity.LOW),
    FeedbackTag.TOO_EXPENSIVE: TagEffect(
        price_sensitivity=PriceSensitivity.HIGH,
        budget_delta=-1,
    ),
    FeedbackTag.CONVENIENT: TagEffect(
        distance_tolerance=DistanceTolerance.LOW,
        distance_reduction=0.5,
        distance_floor=3.0,
    ),
    FeedbackTag.TOO_FAR: TagEffect(
        distance_tolerance=DistanceTolerance.LOW,
        distance_reduction=1.0,
        distance_floor=DISTANCE_FLOOR_MILES,
    ),
    # Membership-only tags
    FeedbackTag.TOO_CROWDED: TagEffect(),
    FeedbackTag.BORING: TagEffect(),
    FeedbackTag.BAD_WEATHER: TagEffect(),
    FeedbackTag.LOVED_IT: TagEffect(),
    FeedbackTag.OTHER: TagEffect(),
}


def apply_feedback(profile: PreferenceProfile | None, event: FeedbackEvent) -> PreferenceProfile:
    """Return the profile that results from applying one feedback event.

    Deterministic and side-effect free; the input profile is not modified.
    A missing profile starts from the documented defaults.
    """
    profile = profile or default_profile()
    category = event.category

    if event.rating is Rating.THUMBS_UP:
        favorites = _add_bounded(profile.favorite_categories, category, FAVORITE_CAPACITY)
        disliked = _remove(profile.disliked_categories, category)
    else:
        disliked = _add_bounded(profile.disliked_categories, category, DISLIKED_CAPACITY)
        favorites = _remove(profile.favorite_categories, category)

    updates: dict[str, object] = {
        "favorite_categories": favorites,
        "disliked_categories": disliked,
    }

    budget = profile.budget_level
    distance = profile.preferred_distance_miles
    for tag in event.tags:
        effect = TAG_EFFECTS[tag]
        if effect.price_sensitivity is not None:
            updates["price_sensitivity"] = effect.price_sensitivity
        if effect.distance_tolerance is not None:
            updates["distance_tolerance"] = effect.distance_tolerance
        if effect.budget_delta:
            budget = max(0, min(4, budget + effect.budget_delta))
            updates["budget_level"] = budget
        if effect.distance_reduction:
            distance = max(effect.distance_floor, distance - effect.distance_reduction)
            updates["preferred_distance_miles"] = distance

    updated = PreferenceProfile.model_validate({**profile.model_dump(), **updates})
    logger.debug(
        "Applied %s for '%s' (tags=%s): budget %d→%d, distance %.1f→%.1f",
        event.rating.value, category, [t.value for t in event.tags],
        profile.budget_level, updated.budget_level,
        profile.preferred_distance_miles, updated.preferred_distance_miles,
    )
    return updated


def _add_bounded(categories: tuple[str, ...], category: str, capacity: int) -> tuple[str, ...]:
    """Append a category if absent, evicting the oldest entries past capacity."""
    if category in categories:
        return categories
    appended = (*categories, category)
    evicted = appended[:-capacity]
    if evicted:
        logger.debug("Evicting %s to stay within %d categories", list(evicted), capacity)
    return appended[-capacity:]


def _remove(categories: tuple[str, ...], category: str) -> tuple[str, ...]:
    return tuple(c for c in categories if c != category)
