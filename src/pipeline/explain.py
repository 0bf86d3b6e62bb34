"""Template-based "why recommended" text built from a score breakdown."""

from src.core.schemas import Candidate, Context, ScoreBreakdown, TimeOfDay

FALLBACK_REASON = "Something new to discover"
HIGH_RATING = 4.5

_TIME_PHRASES: dict[TimeOfDay, str] = {
    TimeOfDay.MORNING: "Great for a morning outing",
    TimeOfDay.AFTERNOON: "Great for an afternoon outing",
    TimeOfDay.EVENING: "Great for tonight",
    TimeOfDay.NIGHT: "Great for a late night out",
}


def explain(candidate: Candidate, breakdown: ScoreBreakdown, context: Context) -> str:
    """Return up to two short reasons, strongest component first.

    Each component only contributes a phrase once it clears roughly 75% of
    its cap, so weak matches fall back to a neutral discovery message.
    """
    phrases = {
        "base_score": _interest_phrase(candidate, breakdown),
        "location_score": _location_phrase(candidate, breakdown),
        "time_score": _TIME_PHRASES[context.time_of_day] if breakdown.time_score >= 12 else None,
        "feedback_score": None,
        "collaborative_score": (
            "Popular with people like you" if breakdown.collaborative_score >= 8 else None
        ),
    }

    components = breakdown.components()
    ordered = sorted(components, key=lambda name: components[name], reverse=True)
    reasons = [phrases[name] for name in ordered if phrases[name]]

    if candidate.rating is not None and candidate.rating >= HIGH_RATING:
        reasons.append(f"Highly rated ({candidate.rating:.1f}★)")

    if not reasons:
        return FALLBACK_REASON
    return ", ".join(reasons[:2])


def _interest_phrase(candidate: Candidate, breakdown: ScoreBreakdown) -> str | None:
    if breakdown.base_score < 30:
        return None
    return f"Matches your love of {candidate.category}"


def _location_phrase(candidate: Candidate, breakdown: ScoreBreakdown) -> str | None:
    if breakdown.location_score < 15 or candidate.distance_miles is None:
        return None
    return f"Just {candidate.distance_miles:.1f} mi away"
