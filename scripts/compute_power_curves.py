"""Recompute and store power curves for one or more athletes."""

import sys
from pathlib import Path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import argparse
from typing import List, Optional
import requests
from sqlalchemy.exc import SQLAlchemyError
from config.settings import settings, validate_settings
from utils.analytics_manager import AnalyticsManager
from utils.exceptions import AnalyticsError
from utils.request_scheduler import RequestScheduler
from utils.strava_client import create_strava_client
from utils.logger import get_context_logger, get_logger, log_exception

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_FATAL = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute power curves from upstream power streams")
    parser.add_argument(
        "--athlete-id",
        type=int,
        action="append",
        dest="athlete_ids",
        help="Athlete ID to compute (repeatable, default: all athletes in the database)"
    )
    parser.add_argument("--concurrency", type=int, default=settings.POWER_CURVE_CONCURRENCY,
                        help="Parallel stream fetches per batch")
    parser.add_argument("--limit", type=int, default=settings.POWER_CURVE_SESSION_LIMIT,
                        help="Maximum number of sessions per athlete (most recent first)")
    parser.add_argument("--batch-delay-ms", type=int, default=0,
                        help="Pause between stream batches in milliseconds")
    parser.add_argument("--days", type=int, default=settings.POWER_CURVE_DAYS,
                        help="Look-back window in days (0 for all history)")
    return parser.parse_args(argv)


def compute_all(
    manager: AnalyticsManager,
    athlete_ids: List[int],
    concurrency: int,
    limit: int,
    batch_delay_ms: int,
    days: int
) -> int:
    """
    Compute power curves athlete by athlete.

    Args:
        manager: Analytics manager
        athlete_ids: Athletes to process
        concurrency: Parallel stream fetches per batch
        limit: Maximum sessions per athlete
        batch_delay_ms: Pause between batches
        days: Look-back window in days

    Returns:
        Number of athletes that failed
    """
    failures = 0

    for athlete_id in athlete_ids:
        log = get_context_logger(__name__, athlete=f"athlete {athlete_id}")
        log.info("Computing power curve")
        try:
            stored = manager.compute_power_curve(
                athlete_id,
                days=days,
                limit=limit,
                concurrency=concurrency,
                batch_delay_ms=batch_delay_ms,
            )
            log.info(f"Stored power curve: {stored.curve.to_dict()}")
        except (AnalyticsError, requests.RequestException, SQLAlchemyError) as e:
            failures += 1
            log_exception(log, e, "Power curve computation failed")

    return failures


def main(argv: Optional[List[str]] = None, manager: Optional[AnalyticsManager] = None) -> int:
    """Run the batch; returns the process exit code."""
    args = parse_args(argv)

    try:
        if manager is None:
            validate_settings()
            scheduler = RequestScheduler(name="strava")
            manager = AnalyticsManager(
                upstream_factory=lambda athlete_id: create_strava_client(
                    access_token=settings.STRAVA_ACCESS_TOKEN,
                    athlete_id=athlete_id,
                ),
                scheduler=scheduler,
            )

        athlete_ids = args.athlete_ids or manager.training_loads.list_athlete_ids()
    except (ValueError, AnalyticsError, SQLAlchemyError) as e:
        logger.error(f"Cannot start power curve computation: {e}")
        return EXIT_FATAL

    if not athlete_ids:
        logger.warning("No athletes to process")
        return EXIT_OK

    logger.info(f"Computing power curves for {len(athlete_ids)} athletes")
    try:
        failures = compute_all(
            manager,
            athlete_ids,
            concurrency=args.concurrency,
            limit=args.limit,
            batch_delay_ms=args.batch_delay_ms,
            days=args.days,
        )
    finally:
        manager.shutdown()

    logger.info(f"Done: {len(athlete_ids) - failures} succeeded, {failures} failed")
    return EXIT_PARTIAL_FAILURE if failures else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
