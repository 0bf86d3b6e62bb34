#!/usr/bin/env python3
"""Compare rankings produced by two collaborative similarity providers.

Loads candidates from a JSON fixture and a user's profile from the DB (or
the default profile), ranks them with the constant provider and with
category approval rates, and prints a comparison table with agreement
metrics and timing.

Usage:
    python scripts/benchmark_ranking.py --candidates data/candidates.json
    python scripts/benchmark_ranking.py --candidates data/candidates.json --user alice
    python scripts/benchmark_ranking.py --candidates data/candidates.json --rates rates.json
    python scripts/benchmark_ranking.py --candidates data/candidates.json --workers 8
"""

import argparse
import asyncio
import json
import logging
import statistics
import sys
import time
from datetime import datetime
from pathlib import Path

# Ensure project root is on the path when run as a script
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import RankingConfig, Settings
from src.core.db import init_db
from src.core.schemas import Context, PreferenceProfile, RankingOutcome, default_profile
from src.pipeline.profile_manager import ProfileManager
from src.pipeline.ranker import rank
from src.pipeline.similarity import get_provider
from src.sources.json_file import JsonFileSource

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def _load_profile(settings: Settings, user_id: str | None) -> tuple[PreferenceProfile, dict[str, float]]:
    """Return (profile, approval rates) for a stored user, or defaults."""
    if user_id is None:
        return default_profile(), {}
    conn = init_db(settings.database.path)
    manager = ProfileManager(conn, settings.feedback)
    profile = manager.get_profile(user_id)
    rates = manager.approval_rates(user_id)
    conn.close()
    return profile, rates


def _rank_with(
    records: list,
    profile: PreferenceProfile,
    context: Context,
    settings: Settings,
    provider_id: str,
    workers: int,
    **options: object,
) -> tuple[RankingOutcome, float]:
    """Rank once with the given provider. Returns (outcome, elapsed seconds)."""
    config = RankingConfig(**{**settings.ranking.model_dump(), "workers": workers, "max_results": None})
    start = time.perf_counter()
    outcome = rank(
        records,
        profile,
        context,
        config=config,
        scoring=settings.scoring,
        similarity=get_provider(provider_id, **options),
    )
    return outcome, time.perf_counter() - start


def _print_table(baseline: RankingOutcome, candidate: RankingOutcome) -> None:
    """Print formatted comparison table."""
    other = {r.candidate.id: (pos, r) for pos, r in enumerate(candidate.ranked, start=1)}
    header = f"{'Name':<35} {'Category':<15} {'Pos A':>5} {'Score A':>8} {'Pos B':>5} {'Score B':>8}"
    print("\n" + "=" * len(header))
    print(header)
    print("=" * len(header))

    for pos, r in enumerate(baseline.ranked, start=1):
        pos_b, r_b = other.get(r.candidate.id, (None, None))
        label = (r.candidate.name or r.candidate.id)[:34]
        pos_b_str = f"{pos_b}" if pos_b is not None else "-"
        score_b_str = f"{r_b.breakdown.final_score:.1f}" if r_b is not None else "-"
        print(
            f"{label:<35} {r.candidate.category[:14]:<15} {pos:>5} "
            f"{r.breakdown.final_score:>8.1f} {pos_b_str:>5} {score_b_str:>8}"
        )

    print("=" * len(header))


def _compute_agreement(baseline: RankingOutcome, candidate: RankingOutcome, top_k: int) -> None:
    """Compute and print agreement metrics between the two rankings."""
    pos_a = {r.candidate.id: i for i, r in enumerate(baseline.ranked)}
    pos_b = {r.candidate.id: i for i, r in enumerate(candidate.ranked)}
    score_a = {r.candidate.id: r.breakdown.final_score for r in baseline.ranked}
    score_b = {r.candidate.id: r.breakdown.final_score for r in candidate.ranked}
    shared = [cid for cid in pos_a if cid in pos_b]

    if not shared:
        print("\nNo shared candidates to compute agreement metrics.")
        return

    mad = statistics.mean(abs(score_a[c] - score_b[c]) for c in shared)

    # Spearman rank correlation as Pearson over positions
    n = len(shared)
    if n > 1:
        xs = [pos_a[c] for c in shared]
        ys = [pos_b[c] for c in shared]
        x_mean, y_mean = statistics.mean(xs), statistics.mean(ys)
        numerator = sum((x - x_mean) * (y - y_mean) for x, y in zip(xs, ys))
        x_std, y_std = statistics.stdev(xs), statistics.stdev(ys)
        corr = numerator / ((n - 1) * x_std * y_std) if x_std > 0 and y_std > 0 else 1.0
    else:
        corr = float("nan")

    top_a = {r.candidate.id for r in baseline.ranked[:top_k]}
    top_b = {r.candidate.id for r in candidate.ranked[:top_k]}
    overlap = len(top_a & top_b)

    print(f"\nAgreement metrics (n={n} shared candidates):")
    print(f"  Mean absolute score difference: {mad:.1f} points")
    print(f"  Rank correlation:               {corr:.3f}")
    print(f"  Top-{top_k} overlap:                  {overlap}/{min(top_k, n)}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark collaborative similarity providers")
    parser.add_argument("--candidates", required=True, help="JSON array of candidate records")
    parser.add_argument("--config", default="config/settings.yaml", help="Settings YAML path")
    parser.add_argument("--user", default=None, help="Stored user whose profile to rank for")
    parser.add_argument(
        "--rates",
        default=None,
        help="JSON object of category approval rates (default: the user's own history)",
    )
    parser.add_argument("--at", default=None, help="Request time as ISO-8601 (default: now)")
    parser.add_argument("--workers", type=int, default=4, help="Scoring threads for timing run")
    parser.add_argument("--top-k", type=int, default=5, help="Window for top-k overlap")
    args = parser.parse_args()

    settings = Settings.from_yaml(args.config) if Path(args.config).exists() else Settings()

    print(f"Loading candidates from {args.candidates}...")
    context = Context(current_time=datetime.fromisoformat(args.at) if args.at else datetime.now())
    try:
        records = asyncio.run(JsonFileSource(args.candidates).fetch(context))
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    if not records:
        print("No candidate records found.")
        sys.exit(0)
    print(f"  Loaded {len(records)} records ({context.time_of_day.value})")

    profile, history_rates = _load_profile(settings, args.user)
    rates = json.loads(Path(args.rates).read_text()) if args.rates else history_rates
    print(f"  Profile: {args.user or 'default'}, {len(rates)} categories with approval rates")

    print("\nRanking with constant provider...")
    baseline, t_seq = _rank_with(records, profile, context, settings, "constant", 1)
    print("Ranking with category_approval provider...")
    approval, _ = _rank_with(
        records, profile, context, settings, "category_approval", 1, approval_rates=rates,
    )
    _, t_par = _rank_with(records, profile, context, settings, "constant", args.workers)

    _print_table(baseline, approval)
    _compute_agreement(baseline, approval, args.top_k)

    print(f"\nRejected: {len(baseline.rejected)}")
    print(f"Timing: sequential {t_seq * 1000:.1f} ms, {args.workers} workers {t_par * 1000:.1f} ms")
    print("\nDone.")


if __name__ == "__main__":
    main()
