"""Training load model for tracking fitness metrics over time."""

from sqlalchemy import Column, Integer, BigInteger, Date, Float, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from models.database.base import Base
from models.performance.fitness_fatigue import DailyLoad


class TrainingLoad(Base):
    """
    Daily training load and fitness metrics.

    Tracks Training Stress Score (TSS) and derived metrics:
    - CTL (Chronic Training Load): 42-day exponential moving average
    - ATL (Acute Training Load): 7-day exponential moving average
    - TSB (Training Stress Balance): CTL - previous day's ATL (form/freshness)

    The rows of an athlete are replaced as a whole on every computation.
    """

    __tablename__ = "training_loads"

    # Primary key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Foreign key to athlete
    athlete_id = Column(BigInteger, ForeignKey("athletes.id"), nullable=False)

    # Date
    date = Column(Date, nullable=False)

    # Daily metrics
    daily_tss = Column(Float, default=0.0, nullable=False)  # Total TSS for the day

    # Fitness metrics (exponential moving averages)
    ctl = Column(Float, nullable=False)  # Chronic Training Load (fitness)
    atl = Column(Float, nullable=False)  # Acute Training Load (fatigue)
    tsb = Column(Float, nullable=False)  # Training Stress Balance (form)

    # Relationship
    athlete = relationship("Athlete", back_populates="training_loads")

    # Indexes and constraints
    __table_args__ = (
        UniqueConstraint("athlete_id", "date", name="uix_athlete_date"),
        Index("idx_athlete_date_load", "athlete_id", "date"),
    )

    def __repr__(self) -> str:
        return f"<TrainingLoad(athlete_id={self.athlete_id}, date={self.date}, CTL={self.ctl:.1f}, TSB={self.tsb:.1f})>"

    @classmethod
    def from_daily_load(cls, athlete_id: int, load: DailyLoad) -> "TrainingLoad":
        return cls(
            athlete_id=athlete_id,
            date=load.date,
            daily_tss=load.tss,
            ctl=load.ctl,
            atl=load.atl,
            tsb=load.tsb,
        )

    def to_daily_load(self) -> DailyLoad:
        return DailyLoad(date=self.date, tss=self.daily_tss, atl=self.atl, ctl=self.ctl, tsb=self.tsb)
