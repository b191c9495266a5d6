"""Repositories persisting computed analytics (last successful computation wins)."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence
from sqlalchemy.orm import Session
from config.settings import get_database_session
from models import Athlete, PowerCurveRecord, TrainingLoad
from models.performance.fitness_fatigue import DailyLoad
from models.performance.power_curve import PowerCurve
from utils.logger import get_logger

logger = get_logger(__name__)


def _ensure_athlete(session: Session, athlete_id: int):
    """Add a bare athlete row so rows referencing it satisfy the foreign key."""
    if session.get(Athlete, athlete_id) is None:
        session.add(Athlete(id=athlete_id))
        session.flush()
        logger.info(f"Registered unknown athlete {athlete_id}")


@dataclass
class StoredPowerCurve:
    """A persisted power curve and when it was computed."""

    athlete_id: int
    computed_at: datetime
    curve: PowerCurve
    schema_version: int

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.utcnow()
        return (now - self.computed_at).total_seconds()


class PowerCurveRepository:
    """Load and upsert power curve snapshots."""

    def __init__(self, session_factory: Callable[[], Session] = get_database_session):
        """
        Args:
            session_factory: Callable returning a new database session
        """
        self.session_factory = session_factory

    def load_power_curve(self, athlete_id: int) -> Optional[StoredPowerCurve]:
        """
        Load the stored curve of an athlete.

        Returns:
            StoredPowerCurve, or None if nothing was computed yet
        """
        session = self.session_factory()
        try:
            record = session.get(PowerCurveRecord, athlete_id)
            if record is None:
                return None
            return StoredPowerCurve(
                athlete_id=record.athlete_id,
                computed_at=record.computed_at,
                curve=record.to_curve(),
                schema_version=record.schema_version,
            )
        finally:
            session.close()

    def save_power_curve(
        self,
        athlete_id: int,
        curve: PowerCurve,
        computed_at: Optional[datetime] = None
    ) -> StoredPowerCurve:
        """
        Insert or replace the curve of an athlete.

        Args:
            athlete_id: Athlete ID
            curve: Power curve replacing any previous snapshot
            computed_at: Computation time (defaults to now, UTC)

        Returns:
            The stored snapshot
        """
        computed_at = computed_at or datetime.utcnow()
        session = self.session_factory()
        try:
            _ensure_athlete(session, athlete_id)
            record = PowerCurveRecord(athlete_id=athlete_id, computed_at=computed_at)
            record.apply_curve(curve)
            record = session.merge(record)
            session.commit()
            logger.info(f"Saved power curve for athlete {athlete_id}")
            return StoredPowerCurve(
                athlete_id=athlete_id,
                computed_at=computed_at,
                curve=curve,
                schema_version=record.schema_version,
            )
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class TrainingLoadRepository:
    """Athlete thresholds and daily training load rows."""

    def __init__(self, session_factory: Callable[[], Session] = get_database_session):
        self.session_factory = session_factory

    def get_athlete_ftp(self, athlete_id: int) -> Optional[int]:
        session = self.session_factory()
        try:
            athlete = session.get(Athlete, athlete_id)
            return athlete.ftp if athlete else None
        finally:
            session.close()

    def list_athlete_ids(self) -> List[int]:
        session = self.session_factory()
        try:
            return [row.id for row in session.query(Athlete.id).order_by(Athlete.id).all()]
        finally:
            session.close()

    def replace_training_loads(self, athlete_id: int, loads: Sequence[DailyLoad]) -> int:
        """
        Replace all stored daily loads of an athlete.

        Returns:
            Number of rows written
        """
        session = self.session_factory()
        try:
            _ensure_athlete(session, athlete_id)
            session.query(TrainingLoad).filter(
                TrainingLoad.athlete_id == athlete_id
            ).delete(synchronize_session=False)
            session.add_all([TrainingLoad.from_daily_load(athlete_id, load) for load in loads])
            session.commit()
            logger.info(f"Stored training loads for {len(loads)} days (athlete {athlete_id})")
            return len(loads)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def load_training_loads(self, athlete_id: int) -> List[DailyLoad]:
        session = self.session_factory()
        try:
            rows = session.query(TrainingLoad).filter(
                TrainingLoad.athlete_id == athlete_id
            ).order_by(TrainingLoad.date).all()
            return [row.to_daily_load() for row in rows]
        finally:
            session.close()
