"""Rule-based match scoring for activity candidates.

Score range: 0-100 organic points split across five capped components
(interest 40, location 20, time 15, feedback 15, collaborative 10).
Sponsored candidates also carry a boost, capped by ScoringConfig, that only
affects presentation order and is reported outside the 100-point budget.
"""

import logging
import math

from src.core.config import ScoringConfig
from src.core.errors import InvalidCandidateData
from src.core.schemas import (
    BASE_SCORE_MAX,
    COLLABORATIVE_SCORE_MAX,
    FEEDBACK_SCORE_MAX,
    LOCATION_SCORE_MAX,
    TIME_SCORE_MAX,
    Candidate,
    Context,
    Coordinates,
    PreferenceProfile,
    PriceSensitivity,
    ScoreBreakdown,
    TimeOfDay,
    default_profile,
)
from src.pipeline.similarity.base import NEUTRAL_SIMILARITY, SimilarityProvider
from src.pipeline.similarity.constant import ConstantSimilarity

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3958.8

# Categories that suit each part of the day regardless of stated preferences.
TIME_FIT: dict[TimeOfDay, frozenset[str]] = {
    TimeOfDay.MORNING: frozenset(
        {"coffee", "cafe", "breakfast", "bakery", "brunch", "fitness", "gym", "park", "outdoor"},
    ),
    TimeOfDay.AFTERNOON: frozenset(
        {"dining", "restaurant", "shopping", "culture", "arts", "museum", "park", "outdoor"},
    ),
    TimeOfDay.EVENING: frozenset(
        {"dining", "restaurant", "bars", "bar", "nightlife", "movies", "entertainment",
         "live music", "live_music"},
    ),
    TimeOfDay.NIGHT: frozenset(
        {"nightlife", "bars", "bar", "live music", "live_music", "entertainment"},
    ),
}

# Points lost per price tier above the user's budget.
_PRICE_PENALTY: dict[PriceSensitivity, float] = {
    PriceSensitivity.LOW: 1.0,
    PriceSensitivity.MEDIUM: 2.0,
    PriceSensitivity.HIGH: 3.0,
}

_DEFAULT_CONFIG = ScoringConfig()
_DEFAULT_SIMILARITY = ConstantSimilarity()


def score_candidate(
    candidate: Candidate,
    profile: PreferenceProfile | None,
    context: Context,
    config: ScoringConfig | None = None,
    similarity: SimilarityProvider | None = None,
    category_rating: float | None = None,
) -> ScoreBreakdown:
    """Score a single candidate against a preference profile.

    Pure: no clock, no I/O, same inputs give the same breakdown.

    Args:
        candidate: The candidate to score.
        profile: The user's preferences. None uses the default profile.
        context: Caller-supplied time and location.
        config: Curve parameters. None uses the defaults.
        similarity: Collaborative signal. None uses a neutral constant.
        category_rating: Optional historical thumbs-up rate (0-1) for the
            candidate's category.

    Returns:
        ScoreBreakdown with each component within its cap.

    Raises:
        InvalidCandidateData: If the candidate has no coordinates or no
            distance can be derived for it.
    """
    profile = profile or default_profile()
    config = config or _DEFAULT_CONFIG

    base = _clamp(_base_score(candidate, profile, config), BASE_SCORE_MAX)
    location = _clamp(_location_score(candidate, profile, context, config), LOCATION_SCORE_MAX)
    time_score = _clamp(_time_score(candidate, profile, context, config), TIME_SCORE_MAX)
    feedback = _clamp(
        _feedback_score(candidate, profile, config, category_rating), FEEDBACK_SCORE_MAX,
    )
    collaborative = _clamp(
        _collaborative_score(candidate, profile, similarity or _DEFAULT_SIMILARITY),
        COLLABORATIVE_SCORE_MAX,
    )

    final = max(0.0, min(100.0, round(base + location + time_score + feedback + collaborative, 2)))
    boost = _sponsor_boost(candidate, final, config)

    logger.debug(
        "Scored %s (%s): base=%.2f loc=%.2f time=%.2f fb=%.2f collab=%.2f boost=%.2f final=%.2f",
        candidate.id, candidate.category, base, location, time_score, feedback,
        collaborative, boost, final,
    )

    return ScoreBreakdown(
        base_score=base,
        location_score=location,
        time_score=time_score,
        feedback_score=feedback,
        collaborative_score=collaborative,
        sponsor_boost=boost,
        final_score=final,
    )


def resolve_distance(candidate: Candidate, context: Context) -> float:
    """Return the candidate's distance from the user in miles.

    Uses the precomputed distance when present, otherwise derives it from
    the candidate and user coordinates.
    """
    if candidate.coordinates is None:
        raise InvalidCandidateData(candidate.id, "missing coordinates")
    if candidate.distance_miles is not None:
        return candidate.distance_miles
    if context.user_location is None:
        raise InvalidCandidateData(
            candidate.id, "no precomputed distance and no user location to derive one",
        )
    return haversine_miles(context.user_location, candidate.coordinates)


def haversine_miles(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in miles."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(min(1.0, math.sqrt(h)))


def _base_score(candidate: Candidate, profile: PreferenceProfile, config: ScoringConfig) -> float:
    """Interest match: favorite > neutral > disliked, favorites by recency."""
    category = candidate.category
    if category in profile.disliked_categories:
        return config.disliked_base

    quality = _quality_bonus(candidate.rating, config)
    favorites = profile.favorite_categories
    if category in favorites:
        # Oldest-first ordering, so the most recent favorite gets the full span
        recency = (favorites.index(category) + 1) / len(favorites)
        return config.favorite_base + config.favorite_recency_span * recency + quality
    return config.neutral_base + quality


def _quality_bonus(rating: float | None, config: ScoringConfig) -> float:
    if rating is None:
        return config.quality_bonus_max / 2.0
    return config.quality_bonus_max * rating / 5.0


def _location_score(
    candidate: Candidate,
    profile: PreferenceProfile,
    context: Context,
    config: ScoringConfig,
) -> float:
    """Distance decay: full marks at 0 mi, zero at the preferred distance.

    Low tolerance raises the exponent (steeper falloff), high lowers it.
    """
    distance = resolve_distance(candidate, context)
    ratio = min(distance / profile.preferred_distance_miles, 1.0)
    exponent = config.tolerance_exponents[profile.distance_tolerance.value]
    return LOCATION_SCORE_MAX * (1.0 - ratio) ** exponent


def _time_score(
    candidate: Candidate,
    profile: PreferenceProfile,
    context: Context,
    config: ScoringConfig,
) -> float:
    bucket = context.time_of_day
    if bucket in profile.time_preferences:
        return TIME_SCORE_MAX

    fit = config.time_fit_bonus if candidate.category in TIME_FIT[bucket] else 0.0
    if not profile.time_preferences:
        # No stated preference is neutral, not a negative signal
        return config.time_neutral + fit
    return fit


def _feedback_score(
    candidate: Candidate,
    profile: PreferenceProfile,
    config: ScoringConfig,
    category_rating: float | None,
) -> float:
    category = candidate.category
    if category in profile.disliked_categories:
        signal = config.feedback_disliked
    elif category in profile.favorite_categories:
        signal = config.feedback_favorite
    else:
        signal = config.feedback_neutral

    if category_rating is not None:
        rate = max(0.0, min(1.0, category_rating))
        signal = (signal + config.feedback_favorite * rate) / 2.0

    return signal + _price_fit(candidate, profile, config)


def _price_fit(candidate: Candidate, profile: PreferenceProfile, config: ScoringConfig) -> float:
    over = candidate.price_tier - profile.budget_level
    if over <= 0:
        return config.price_fit_bonus
    penalty = _PRICE_PENALTY[profile.price_sensitivity]
    return max(0.0, config.price_fit_bonus - over * penalty)


def _collaborative_score(
    candidate: Candidate,
    profile: PreferenceProfile,
    provider: SimilarityProvider,
) -> float:
    raw = float(provider.similarity(candidate, profile))
    if math.isnan(raw):
        logger.warning(
            "Provider '%s' returned NaN for %s, using neutral",
            provider.provider_id, candidate.id,
        )
        return NEUTRAL_SIMILARITY
    if not 0.0 <= raw <= COLLABORATIVE_SCORE_MAX:
        logger.warning(
            "Provider '%s' returned %.2f for %s, clamping to [0, %.0f]",
            provider.provider_id, raw, candidate.id, COLLABORATIVE_SCORE_MAX,
        )
    return raw


def _sponsor_boost(candidate: Candidate, organic: float, config: ScoringConfig) -> float:
    """Bounded nudge for sponsored candidates; never exceeds the configured cap."""
    if not candidate.sponsored:
        return 0.0
    return min(config.sponsor_boost_cap, round(organic * config.sponsor_boost_rate, 2))


def _clamp(value: float, upper: float) -> float:
    return max(0.0, min(upper, round(value, 2)))
