"""Orchestrator: wires candidate source, profile store, and ranker.

Data flow:
  1. Source fetch → raw candidate records
  2. Profile load (default profile when none is stored or the store is down)
  3. Category approval history for the feedback component
  4. Collaborative provider from settings
  5. Rank → RankingOutcome
"""

import json
import logging

from src.core.config import Settings
from src.core.errors import PersistenceError
from src.core.schemas import Context, RankingOutcome, default_profile
from src.pipeline.profile_manager import ProfileManager
from src.pipeline.ranker import rank
from src.pipeline.similarity import get_provider
from src.sources.base import CandidateSource

logger = logging.getLogger(__name__)


async def recommend(
    user_id: str,
    source: CandidateSource,
    manager: ProfileManager,
    context: Context,
    settings: Settings,
) -> RankingOutcome:
    """Produce a ranked recommendation list for one user.

    Store failures never block ranking: the user's last known profile (or
    the default profile) is used and the failure is logged.
    """
    logger.info("Fetching candidates from %s for '%s'", source.source_id, user_id)
    raw_candidates = await source.fetch(context)
    logger.info("Raw candidates: %d", len(raw_candidates))

    try:
        profile = manager.get_profile(user_id)
    except PersistenceError:
        logger.warning(
            "Profile store unavailable for '%s' - ranking with default profile",
            user_id, exc_info=True,
        )
        profile = default_profile()

    try:
        approval = manager.approval_rates(user_id)
    except PersistenceError:
        logger.warning("Feedback history unavailable for '%s'", user_id, exc_info=True)
        approval = {}

    similarity = get_provider(settings.collaborative.provider, **settings.collaborative.options)

    outcome = rank(
        raw_candidates,
        profile,
        context,
        config=settings.ranking,
        scoring=settings.scoring,
        similarity=similarity,
        category_ratings=approval,
    )

    logger.info(
        "Recommendations for '%s': %d raw, %d ranked, %d rejected",
        user_id, len(raw_candidates), len(outcome.ranked), len(outcome.rejected),
    )
    return outcome


def export_results_json(outcome: RankingOutcome) -> str:
    """Export a ranking outcome as a JSON string."""
    ranked = []
    for position, r in enumerate(outcome.ranked, start=1):
        c, b = r.candidate, r.breakdown
        ranked.append({
            "position": position,
            "id": c.id,
            "name": c.name,
            "category": c.category,
            "distance_miles": c.distance_miles,
            "price_tier": c.price_tier,
            "rating": c.rating,
            "sponsored": c.sponsored,
            "reason": r.reason,
            "top_component": b.top_component,
            "confidence": round(b.confidence, 2),
            "score": b.model_dump(),
        })
    rejected = [r.model_dump() for r in outcome.rejected]
    return json.dumps({"ranked": ranked, "rejected": rejected}, indent=2)
