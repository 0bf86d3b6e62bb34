"""Batch ranker: scores a candidate list and orders it for presentation.

Order of operations:
  1. Validate raw records (invalid ones are rejected, not raised)
  2. Apply request filters: excluded ids, category allow-list, minimum
     rating, closed venues (each off unless set in RankingConfig)
  3. Score each candidate, optionally on a thread pool
  4. Sort by final_score + sponsor_boost desc, then id asc
  5. Deduplicate by candidate id; the best-ranked instance wins
  6. Cap sponsored items in the top window; excess is demoted, never promoted
  7. Truncate to max_results
"""

import logging
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from src.core.config import RankingConfig, ScoringConfig
from src.core.errors import InvalidCandidateData
from src.core.schemas import (
    Candidate,
    Context,
    PreferenceProfile,
    RankedResult,
    RankingOutcome,
    RejectedCandidate,
    ScoreBreakdown,
    default_profile,
    parse_candidate,
)
from src.pipeline.explain import explain
from src.pipeline.scorer import score_candidate
from src.pipeline.similarity.base import SimilarityProvider

logger = logging.getLogger(__name__)

REASON_INVALID = "invalid"
REASON_CLOSED = "closed"
REASON_EXCLUDED = "excluded"
REASON_CATEGORY = "category_filtered"
REASON_LOW_RATING = "below_min_rating"
REASON_DUPLICATE = "duplicate"

_Scored = tuple[Candidate, ScoreBreakdown]


def rank(
    candidates: Iterable[Candidate | Mapping[str, Any]],
    profile: PreferenceProfile | None,
    context: Context,
    config: RankingConfig | None = None,
    scoring: ScoringConfig | None = None,
    similarity: SimilarityProvider | None = None,
    category_ratings: Mapping[str, float] | None = None,
) -> RankingOutcome:
    """Score and order candidates for one user.

    Args:
        candidates: Candidate models or raw records from a candidate source.
        profile: Immutable preference snapshot. None uses the default profile.
        context: Caller-supplied time and location.
        config: Ranking rules. None uses the defaults.
        scoring: Scoring curve parameters. None uses the defaults.
        similarity: Collaborative signal provider.
        category_ratings: Historical thumbs-up rate per category (0-1).

    Returns:
        RankingOutcome with ranked results and every rejected candidate.
    """
    config = config or RankingConfig()
    profile = profile or default_profile()
    ratings = category_ratings or {}
    rejected: list[RejectedCandidate] = []
    excluded_ids = set(config.exclude_ids)

    valid: list[Candidate] = []
    for raw in candidates:
        try:
            candidate = parse_candidate(raw)
        except InvalidCandidateData as e:
            logger.warning("Rejected candidate: %s", e)
            rejected.append(_rejection(e))
            continue
        reason = _filter_reason(candidate, config, excluded_ids)
        if reason is not None:
            logger.debug("Skipping candidate %s (%s)", candidate.id, reason)
            rejected.append(RejectedCandidate(candidate_id=candidate.id, reason=reason))
            continue
        valid.append(candidate)

    def _score(candidate: Candidate) -> _Scored | InvalidCandidateData:
        try:
            breakdown = score_candidate(
                candidate, profile, context, scoring, similarity,
                ratings.get(candidate.category),
            )
        except InvalidCandidateData as e:
            return e
        return candidate, breakdown

    if config.workers > 1 and len(valid) > 1:
        with ThreadPoolExecutor(max_workers=config.workers) as pool:
            results = list(pool.map(_score, valid))
    else:
        results = [_score(c) for c in valid]

    scored: list[_Scored] = []
    for result in results:
        if isinstance(result, InvalidCandidateData):
            logger.warning("Rejected candidate: %s", result)
            rejected.append(_rejection(result))
        else:
            scored.append(result)

    scored.sort(key=lambda item: (-item[1].ranking_score, item[0].id))

    unique: list[_Scored] = []
    seen_ids: set[str] = set()
    for candidate, breakdown in scored:
        if candidate.id in seen_ids:
            rejected.append(
                RejectedCandidate(candidate_id=candidate.id, reason=REASON_DUPLICATE),
            )
            continue
        seen_ids.add(candidate.id)
        unique.append((candidate, breakdown))

    ordered = limit_sponsored_in_window(
        unique, window=config.sponsored_window, max_sponsored=config.max_sponsored_in_top,
    )
    if config.max_results is not None:
        ordered = ordered[: config.max_results]

    ranked = [
        RankedResult(candidate=c, breakdown=b, reason=explain(c, b, context))
        for c, b in ordered
    ]
    logger.info(
        "Ranked %d candidates (%d rejected)", len(ranked), len(rejected),
    )
    return RankingOutcome(ranked=ranked, rejected=rejected)


def limit_sponsored_in_window(
    scored: list[_Scored],
    window: int,
    max_sponsored: int,
) -> list[_Scored]:
    """Keep at most max_sponsored sponsored items in the first window slots.

    Excess sponsored items move to just after the window, keeping their
    relative order. Nothing is ever moved up.
    """
    head: list[_Scored] = []
    demoted: list[_Scored] = []
    sponsored = 0
    idx = 0
    while idx < len(scored) and len(head) < window:
        item = scored[idx]
        idx += 1
        if item[0].sponsored:
            if sponsored >= max_sponsored:
                demoted.append(item)
                continue
            sponsored += 1
        head.append(item)
    if demoted:
        logger.debug("Demoted %d sponsored candidates out of the top %d", len(demoted), window)
    return head + demoted + scored[idx:]


def _filter_reason(
    candidate: Candidate, config: RankingConfig, excluded_ids: set[str],
) -> str | None:
    """Return the rejection reason when a request filter drops the candidate.

    A missing rating counts as 0 against min_rating.
    """
    if candidate.id in excluded_ids:
        return REASON_EXCLUDED
    if config.categories and candidate.category not in config.categories:
        return REASON_CATEGORY
    if config.min_rating and (candidate.rating or 0.0) < config.min_rating:
        return REASON_LOW_RATING
    if config.exclude_closed and candidate.open_now is False:
        return REASON_CLOSED
    return None


def _rejection(error: InvalidCandidateData) -> RejectedCandidate:
    return RejectedCandidate(
        candidate_id=error.candidate_id, reason=REASON_INVALID, error=error.message,
    )
