#!/usr/bin/env python3
"""
Operator commands for the spending engine.

    spendwise summary <uid> --period past_week
    spendwise summary <uid> --period custom --start 2026-01-01 --end 2026-01-31
    spendwise trends <uid> --months 6
    spendwise categories <uid>
    spendwise reconcile <uid> [<uid> ...] --max-passes 3

Results are printed as JSON. Reconciliation re-runs a user's pass until it
comes back clean or --max-passes is reached; users are processed one at a
time.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings
from app.core.exceptions import SpendwiseException, InvalidRequestError
from app.db.repositories.category_repo import CategoryRepository
from app.db.session import async_session_maker, init_db
from app.models.enums import DanglingCategoryPolicy, SpendingPeriod
from app.schemas.category import CategoryResponse
from app.services.analytics_service import AnalyticsService
from app.services.category_reconciliation_service import CategoryReconciliationService
from app.services.trend_service import TrendService

logger = logging.getLogger("app.cli")

EXIT_STORE_ERROR = 1
EXIT_INVALID_REQUEST = 2


def configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Silence noisy third-party libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spendwise",
        description="Spending summaries, trends and category reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    summary = subparsers.add_parser("summary", help="Spending per category for a period")
    summary.add_argument("user_id", help="Owner (Firebase UID)")
    summary.add_argument(
        "--period",
        choices=[p.value for p in SpendingPeriod],
        default=SpendingPeriod.CURRENT_MONTH.value,
        help="Period (default: current_month)",
    )
    summary.add_argument("--start", help="Start date for a custom period (ISO-8601)")
    summary.add_argument("--end", help="End date for a custom period (ISO-8601)")
    summary.add_argument(
        "--bucket-unknown",
        action="store_true",
        help="List spending of deleted categories as 'Unknown' instead of skipping it",
    )
    summary.add_argument(
        "--detailed",
        action="store_true",
        help="Include every transaction, grouped by category",
    )

    trends = subparsers.add_parser("trends", help="Current month against previous months")
    trends.add_argument("user_id", help="Owner (Firebase UID)")
    trends.add_argument(
        "--months",
        type=int,
        default=None,
        help="Number of previous months in the baseline (default: TREND_DEFAULT_MONTHS)",
    )
    trends.add_argument(
        "--exclude-current",
        action="store_true",
        help="Leave the current month summary out of the output",
    )

    categories = subparsers.add_parser("categories", help="List a user's categories")
    categories.add_argument("user_id", help="Owner (Firebase UID)")

    reconcile = subparsers.add_parser(
        "reconcile", help="Repair duplicate categories and orphaned references"
    )
    reconcile.add_argument("user_ids", nargs="+", help="Owners (Firebase UIDs)")
    reconcile.add_argument(
        "--max-passes",
        type=int,
        default=3,
        help="Re-run a user's pass until it is clean, at most this many times (default: 3)",
    )

    return parser


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run_summary(args: argparse.Namespace) -> None:
    async with async_session_maker() as session:
        analytics = AnalyticsService(session)
        if args.detailed:
            result = await analytics.get_detailed_report(
                args.user_id, args.period, args.start, args.end
            )
        else:
            result = await analytics.get_summary(
                args.user_id,
                args.period,
                args.start,
                args.end,
                dangling_policy=DanglingCategoryPolicy.BUCKET if args.bucket_unknown else None,
            )
    _print(result.model_dump(mode="json"))


async def run_trends(args: argparse.Namespace) -> None:
    async with async_session_maker() as session:
        result = await TrendService(session).get_monthly_trends(
            args.user_id,
            month_count=args.months,
            include_current_month=not args.exclude_current,
        )
    _print(result.model_dump(mode="json"))


async def run_categories(args: argparse.Namespace) -> None:
    async with async_session_maker() as session:
        categories = await CategoryRepository(session).get_by_user(args.user_id)
    _print([CategoryResponse.model_validate(c).model_dump(mode="json") for c in categories])


async def reconcile_user(user_id: str, max_passes: int) -> List[dict]:
    """Run passes for one user, committing each, until a pass is clean."""
    reports = []
    for attempt in range(1, max_passes + 1):
        async with async_session_maker() as session:
            try:
                report = await CategoryReconciliationService(session).reconcile(user_id)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        reports.append(report.model_dump(mode="json"))
        if report.is_clean:
            logger.info(f"user_id={user_id}: clean after {attempt} pass(es)")
            break
    else:
        logger.warning(f"user_id={user_id}: still changing after {max_passes} passes")
    return reports


async def run_reconcile(args: argparse.Namespace) -> None:
    if args.max_passes < 1:
        raise InvalidRequestError("--max-passes must be at least 1")
    results = {}
    for user_id in args.user_ids:
        results[user_id] = await reconcile_user(user_id, args.max_passes)
    _print(results)


COMMANDS = {
    "summary": run_summary,
    "trends": run_trends,
    "categories": run_categories,
    "reconcile": run_reconcile,
}


async def _main(args: argparse.Namespace) -> None:
    await init_db()
    await COMMANDS[args.command](args)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        asyncio.run(_main(args))
    except InvalidRequestError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_INVALID_REQUEST
    except (SQLAlchemyError, SpendwiseException) as e:
        logger.exception(f"{args.command} failed: {e}")
        return EXIT_STORE_ERROR
    return 0


if __name__ == "__main__":
    sys.exit(main())
