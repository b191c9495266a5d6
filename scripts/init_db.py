"""Create or check the analytics database schema."""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from typing import Optional
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from config.settings import settings, get_database_engine, get_database_session
from models import Base, Athlete
from utils.logger import get_logger

logger = get_logger(__name__)


def init_database(drop_existing: bool = False, engine=None) -> bool:
    """
    Create all tables (power_curves, training_loads, athletes).

    Args:
        drop_existing: Drop all existing tables first
        engine: Engine to use (defaults to the configured one)

    Returns:
        True on success
    """
    logger.info("Initializing database...")
    logger.info(f"Database URL: {settings.DATABASE_URL}")

    try:
        engine = engine or get_database_engine()

        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(engine)

        Base.metadata.create_all(engine)

        table_names = sorted(Base.metadata.tables.keys())
        logger.info(f"Schema contains {len(table_names)} tables: {', '.join(table_names)}")
        return True

    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        return False


def check_database(engine=None) -> bool:
    """Check the connection and report missing tables."""
    logger.info("Checking database connection...")

    try:
        engine = engine or get_database_engine()
        existing_tables = set(inspect(engine).get_table_names())
    except SQLAlchemyError as e:
        logger.error(f"Database check failed: {e}", exc_info=True)
        return False

    missing_tables = set(Base.metadata.tables.keys()) - existing_tables
    if missing_tables:
        logger.warning(f"Missing tables: {sorted(missing_tables)}")
        logger.warning("Run 'python scripts/init_db.py' to create missing tables")
        return False

    logger.info("All required tables exist")
    return True


def register_athlete(athlete_id: int, ftp: Optional[int] = None, weight: Optional[float] = None) -> Athlete:
    """Insert or update an athlete and its thresholds."""
    session = get_database_session()
    try:
        athlete = session.get(Athlete, athlete_id) or Athlete(id=athlete_id)
        if ftp is not None:
            athlete.ftp = ftp
        if weight is not None:
            athlete.weight = weight
        athlete = session.merge(athlete)
        session.commit()
        logger.info(f"Registered athlete {athlete_id} (ftp={athlete.ftp}, weight={athlete.weight})")
        return athlete
    except SQLAlchemyError:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize the training analytics database")
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing tables before creating (WARNING: deletes all data)"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check database connection and schema without making changes"
    )
    parser.add_argument("--athlete-id", type=int, help="Register an athlete after creating the schema")
    parser.add_argument("--ftp", type=int, help="FTP of the registered athlete")
    parser.add_argument("--weight", type=float, help="Weight (kg) of the registered athlete")

    args = parser.parse_args()

    if args.check:
        success = check_database()
    else:
        if args.drop:
            confirm = input(
                "WARNING: This will delete all existing data. Are you sure? (yes/no): "
            )
            if confirm.lower() != "yes":
                print("Aborted.")
                sys.exit(0)

        success = init_database(drop_existing=args.drop)
        if success and args.athlete_id:
            register_athlete(args.athlete_id, ftp=args.ftp, weight=args.weight)

    sys.exit(0 if success else 1)
