"""CLI entry point for the activity recommender."""

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from src.core.config import Settings
from src.core.db import init_db
from src.core.errors import PersistenceError
from src.core.schemas import Context, Coordinates, FeedbackEvent, Rating
from src.pipeline.orchestrator import export_results_json, recommend
from src.pipeline.profile_manager import ProfileManager
from src.sources.json_file import JsonFileSource


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Activity recommender - rank candidates and learn from feedback",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- rank subcommand ---
    rank_parser = subparsers.add_parser("rank", help="Rank candidate activities for a user")
    rank_parser.add_argument("--user", required=True, help="User ID")
    rank_parser.add_argument(
        "--candidates",
        required=True,
        help="Path to a JSON array of candidate records",
    )
    rank_parser.add_argument(
        "--at",
        help="Request time as ISO-8601 (default: now)",
    )
    rank_parser.add_argument("--lat", type=float, help="User latitude")
    rank_parser.add_argument("--lon", type=float, help="User longitude")
    rank_parser.add_argument(
        "--export",
        choices=["json"],
        help="Export results to format (json)",
    )
    _add_common_flags(rank_parser)

    # --- feedback subcommand ---
    feedback_parser = subparsers.add_parser("feedback", help="Record a rating for an activity")
    feedback_parser.add_argument("--user", required=True, help="User ID")
    feedback_parser.add_argument("--category", required=True, help="Activity category")
    feedback_parser.add_argument(
        "--rating",
        required=True,
        choices=[r.value for r in Rating],
        help="thumbs_up or thumbs_down",
    )
    feedback_parser.add_argument(
        "--tag",
        action="append",
        default=[],
        help="Feedback tag (repeatable), e.g. too_far, great_value",
    )
    feedback_parser.add_argument("--notes", help="Free-text notes (stored, not scored)")
    _add_common_flags(feedback_parser)

    # --- replay subcommand ---
    replay_parser = subparsers.add_parser(
        "replay",
        help="Apply feedback events that were stored but not yet applied",
    )
    replay_parser.add_argument("--user", required=True, help="User ID")
    _add_common_flags(replay_parser)

    # --- stats subcommand ---
    stats_parser = subparsers.add_parser("stats", help="Show a user's feedback statistics")
    stats_parser.add_argument("--user", required=True, help="User ID")
    _add_common_flags(stats_parser)

    # --- show-profile subcommand ---
    show_parser = subparsers.add_parser("show-profile", help="Print a user's preference profile")
    show_parser.add_argument("--user", required=True, help="User ID")
    _add_common_flags(show_parser)

    args = parser.parse_args(argv)

    if args.command == "rank" and (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be given together")

    return args


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_context(args: argparse.Namespace) -> Context:
    """Build the request context from CLI flags."""
    current_time = datetime.fromisoformat(args.at) if args.at else datetime.now()
    location = None
    if args.lat is not None and args.lon is not None:
        location = Coordinates(latitude=args.lat, longitude=args.lon)
    return Context(current_time=current_time, user_location=location)


async def cmd_rank(args: argparse.Namespace, settings: Settings) -> None:
    """Handle rank subcommand."""
    conn = init_db(settings.database.path)
    manager = ProfileManager(conn, settings.feedback)
    context = build_context(args)

    outcome = await recommend(
        args.user, JsonFileSource(args.candidates), manager, context, settings,
    )

    print(f"\n{len(outcome.ranked)} recommendations for '{args.user}' "
          f"({context.time_of_day.value}), {len(outcome.rejected)} rejected.")
    for position, r in enumerate(outcome.ranked, start=1):
        badge = " [Sponsored]" if r.candidate.sponsored else ""
        label = r.candidate.name or r.candidate.id
        print(f"  {position:>2}. {r.breakdown.final_score:5.1f}  {label} "
              f"({r.candidate.category}){badge} - {r.reason}")
    for rej in outcome.rejected:
        print(f"  rejected {rej.candidate_id or '<no id>'}: {rej.reason} {rej.error}".rstrip())

    if args.export == "json":
        print(f"\n{export_results_json(outcome)}")

    conn.close()


def cmd_feedback(args: argparse.Namespace, settings: Settings) -> None:
    """Handle feedback subcommand."""
    conn = init_db(settings.database.path)
    manager = ProfileManager(conn, settings.feedback)
    event = FeedbackEvent(
        user_id=args.user,
        category=args.category,
        rating=Rating(args.rating),
        tags=args.tag,
        notes=args.notes,
        timestamp=datetime.now(),
    )
    receipt = manager.submit_feedback(event)
    if receipt.applied and receipt.profile is not None:
        print(f"Feedback recorded (event {receipt.event_id}); profile now at version "
              f"{receipt.version}.")
        print(f"  Favorites: {list(receipt.profile.favorite_categories)}")
        print(f"  Disliked: {list(receipt.profile.disliked_categories)}")
    else:
        print(f"Feedback recorded (event {receipt.event_id}) but not yet applied. "
              f"Run: python main.py replay --user {args.user}")
    conn.close()


def cmd_replay(args: argparse.Namespace, settings: Settings) -> None:
    """Handle replay subcommand."""
    conn = init_db(settings.database.path)
    manager = ProfileManager(conn, settings.feedback)
    receipts = manager.replay_pending(args.user)
    print(f"Applied {len(receipts)} pending feedback events for '{args.user}'.")
    conn.close()


def cmd_stats(args: argparse.Namespace, settings: Settings) -> None:
    """Handle stats subcommand."""
    conn = init_db(settings.database.path)
    stats = ProfileManager(conn, settings.feedback).stats(args.user)
    print(f"Feedback for '{args.user}': {stats.total} total, "
          f"{stats.thumbs_up} up, {stats.thumbs_down} down")
    print(f"  Satisfaction: {stats.satisfaction_rate:.1f}%")
    print(f"  Top categories: {stats.top_categories}")
    conn.close()


def cmd_show_profile(args: argparse.Namespace, settings: Settings) -> None:
    """Handle show-profile subcommand."""
    conn = init_db(settings.database.path)
    profile = ProfileManager(conn, settings.feedback).get_profile(args.user)
    print(profile.model_dump_json(indent=2))
    conn.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "rank":
            asyncio.run(cmd_rank(args, settings))
        elif args.command == "feedback":
            cmd_feedback(args, settings)
        elif args.command == "replay":
            cmd_replay(args, settings)
        elif args.command == "stats":
            cmd_stats(args, settings)
        else:
            cmd_show_profile(args, settings)
    except (FileNotFoundError, ValueError, PersistenceError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
