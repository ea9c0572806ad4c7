#!/usr/bin/env python3
"""
Run batch matching or a discovery pass from the shell.

batch:     scores every eligible lost/found pair and stores matches at or
           above --min-score (default: MATCH_MIN_SCORE, 30)
discover:  ranks potential matches without storing anything (default
           threshold: POTENTIAL_MATCH_MIN_SCORE, 10)

Run:  python scripts/run_batch.py batch [--min-score 40] [--category Electronics]
      python scripts/run_batch.py discover [--user-id u1] [--top 20]

Exit codes:
  0 - Run completed
  1 - Run completed but some pairs failed to persist
  2 - Fatal error (database connection, empty item sets, imports)
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

try:
    from app.database import close_services, init_services
    from app.services.exceptions import MatchingError
    from app.services.monitoring import setup_logging
except ImportError as e:
    print(f"ERROR: Failed to import required modules: {e}")
    print("Make sure you're running from the project root and dependencies are installed.")
    sys.exit(2)


def print_batch(stats):
    print(f"\n{'=' * 50}")
    print(f"Lost items analyzed:   {stats.total_analyzed}")
    print(f"Items skipped:         {stats.items_skipped}")
    print(f"Pairs scored:          {stats.pairs_scored}")
    print(f"Pairs already matched: {stats.pairs_skipped_existing}")
    print(f"Pairs failed:          {stats.pairs_failed}")
    print(f"Matches created:       {stats.matches_created}")
    print(f"High confidence:       {stats.high_confidence_matches}")
    print(f"Total matches:         {stats.total_matches}")
    print(f"Average score:         {stats.average_score}")
    print(f"{'=' * 50}")

    if stats.top_matches:
        print("\nTop pairs this run:")
        for entry in stats.top_matches:
            print(f"  {entry['score']:5.1f}  lost={entry['lost_item_id']}  found={entry['found_item_id']}"
                  f"  ({', '.join(entry['similarities'])})")


def print_discovery(result, top: int):
    summary = result.summary
    print(f"\n{'=' * 50}")
    for key, value in summary.items():
        print(f"{key.replace('_', ' ').capitalize() + ':':<26}{value}")
    print(f"{'=' * 50}")

    for candidate in result.matches[:top]:
        print(f"  {candidate.score:5.1f}  [{candidate.existing_status}]  "
              f"{candidate.lost_item.title!r} -> {candidate.found_item.title!r}")
        print(f"         {candidate.rationale}")


def main():
    parser = argparse.ArgumentParser(
        description="Match lost items to found items"
    )
    parser.add_argument(
        "mode",
        choices=["batch", "discover"],
        help="batch stores matches; discover only ranks candidates"
    )
    parser.add_argument(
        "--min-score",
        type=float,
        default=None,
        help="Minimum score (0-100)"
    )
    parser.add_argument(
        "--category",
        action="append",
        dest="categories",
        help="Restrict to a category (repeatable)"
    )
    parser.add_argument(
        "--user-id",
        default=None,
        help="discover only: restrict to one user's lost items"
    )
    parser.add_argument(
        "--top",
        type=int,
        default=20,
        help="discover only: number of candidates to print"
    )
    args = parser.parse_args()

    setup_logging()

    print("Connecting to MongoDB...")
    store, engine = init_services()
    if not store.is_available():
        print("ERROR: MongoDB not available (MONGODB_URL missing or unreachable).")
        sys.exit(2)

    try:
        if args.mode == "batch":
            stats = engine.run_batch(min_score=args.min_score, categories=args.categories)
            print_batch(stats)
            if stats.pairs_failed > 0:
                sys.exit(1)
        else:
            result = engine.discover_potential(
                min_score=args.min_score,
                categories=args.categories,
                user_id=args.user_id
            )
            print_discovery(result, args.top)
    except MatchingError as e:
        print(f"ERROR: {e}")
        sys.exit(2)
    finally:
        close_services()


if __name__ == "__main__":
    main()
