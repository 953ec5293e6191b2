"""Manual check runner for testing and debugging.

Runs one forced check pass, one target, or one keyword watch against the
configured database and prints the outcome.

Usage:
    python scripts/run_check.py --all
    python scripts/run_check.py --target 6f1c...-uuid
    python scripts/run_check.py --watch 0b7e...-uuid
"""

import argparse
import asyncio
import os
import sys
from uuid import UUID

# Add backend to path so the script also runs from a plain checkout
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

import stockwatch.models  # noqa: F401,E402
from stockwatch.container import MonitorContainer  # noqa: E402
from stockwatch.core.exceptions import NotFoundError  # noqa: E402
from stockwatch.db.seed import seed_store_profiles  # noqa: E402
from stockwatch.db.session import async_session_factory, engine  # noqa: E402
from stockwatch.logging_config import configure_logging  # noqa: E402
from stockwatch.models.base import Base  # noqa: E402


async def run(args: argparse.Namespace) -> int:
    """Build the container, run the requested check and print the result.

    Returns:
        Process exit code
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await seed_store_profiles(async_session_factory)

    container = MonitorContainer.build(async_session_factory)
    try:
        if args.target:
            outcome = await container.checker.check_one(UUID(args.target), force=args.force)
            print(f"\n{'='*70}")
            print(f"  Target {outcome.target_id}")
            print(f"{'='*70}")
            print(f"  ok:            {outcome.ok}")
            print(f"  in stock:      {outcome.in_stock}")
            print(f"  price:         {outcome.price}")
            print(f"  came in stock: {outcome.came_in_stock}")
            if outcome.error:
                print(f"  error:         {outcome.error}")
        elif args.watch:
            result = await container.watcher.check_watch(UUID(args.watch))
            print(f"\n{'='*70}")
            print(f"  Watch {result.watch_id}")
            print(f"{'='*70}")
            print(f"  found:         {result.total}")
            print(f"  after filter:  {result.matched}")
            print(f"  new:           {result.new}")
            print(f"  back in stock: {result.back_in_stock}")
            print(f"  auto-added:    {result.added}")
            if result.error:
                print(f"  error:         {result.error}")
        else:
            stats = await container.checker.run_due_checks(force=True)
            print(f"\n{'='*70}")
            print("  Check pass")
            print(f"{'='*70}")
            for key, value in stats.items():
                print(f"  {key}: {value}")
        print()
        return 0
    except NotFoundError as e:
        print(f"\n❌ {e.message}\n")
        return 1
    finally:
        await container.close()


def main():
    """Parse arguments and run the check."""
    parser = argparse.ArgumentParser(
        description="Run stock checks or a keyword watch once",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_check.py --all
  python scripts/run_check.py --target <uuid> --force
  python scripts/run_check.py --watch <uuid>
        """,
    )

    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--all", action="store_true", help="Check every target now")
    group.add_argument("--target", help="Id of one target to check")
    group.add_argument("--watch", help="Id of one keyword watch to run")

    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-alert if the target is already in stock (with --target)",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL setting)")

    args = parser.parse_args()
    configure_logging(args.log_level)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
