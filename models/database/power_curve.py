"""Power curve model storing the latest best-power snapshot per athlete."""

from datetime import datetime
from sqlalchemy import Column, BigInteger, Integer, Float, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.database.base import Base
from models.performance.power_curve import DurationBucket, PowerCurve

# Bump when the set of bucket columns changes
POWER_CURVE_SCHEMA_VERSION = 1


class PowerCurveRecord(Base):
    """
    Best average power per duration bucket for one athlete.

    One row per athlete; every recomputation replaces the whole row. Each
    duration bucket has its own typed column (watts).
    """

    __tablename__ = "power_curves"

    # Primary key (one snapshot per athlete)
    athlete_id = Column(BigInteger, ForeignKey("athletes.id"), primary_key=True, autoincrement=False)

    computed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    schema_version = Column(Integer, nullable=False, default=POWER_CURVE_SCHEMA_VERSION)

    # Best average watts per bucket
    watts_5s = Column(Float, nullable=False, default=0)
    watts_15s = Column(Float, nullable=False, default=0)
    watts_30s = Column(Float, nullable=False, default=0)
    watts_1m = Column(Float, nullable=False, default=0)
    watts_2m = Column(Float, nullable=False, default=0)
    watts_3m = Column(Float, nullable=False, default=0)
    watts_5m = Column(Float, nullable=False, default=0)
    watts_10m = Column(Float, nullable=False, default=0)
    watts_15m = Column(Float, nullable=False, default=0)
    watts_20m = Column(Float, nullable=False, default=0)
    watts_30m = Column(Float, nullable=False, default=0)
    watts_45m = Column(Float, nullable=False, default=0)
    watts_1h = Column(Float, nullable=False, default=0)

    # Relationship
    athlete = relationship("Athlete", back_populates="power_curve")

    def __repr__(self) -> str:
        return f"<PowerCurveRecord(athlete_id={self.athlete_id}, computed_at={self.computed_at})>"

    @staticmethod
    def column_name(bucket: DurationBucket) -> str:
        return f"watts_{bucket.key}"

    def apply_curve(self, curve: PowerCurve):
        """Overwrite every bucket column with the curve's values."""
        for bucket, watts in curve.items():
            setattr(self, self.column_name(bucket), float(watts))
        self.schema_version = POWER_CURVE_SCHEMA_VERSION

    def to_curve(self) -> PowerCurve:
        return PowerCurve({
            bucket: getattr(self, self.column_name(bucket)) or 0
            for bucket in DurationBucket
        })
