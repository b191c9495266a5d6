"""Athlete thresholds used to score training load."""

from sqlalchemy import Column, BigInteger, Integer, String, Float
from sqlalchemy.orm import relationship
from models.database.base import Base, TimestampMixin


class Athlete(Base, TimestampMixin):
    """Athlete known to the analytics engine, keyed by the upstream athlete ID."""

    __tablename__ = "athletes"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    username = Column(String(100), nullable=True)

    weight = Column(Float, nullable=True)  # kg
    ftp = Column(Integer, nullable=True)  # watts, required for TSS

    power_curve = relationship(
        "PowerCurveRecord", back_populates="athlete", uselist=False, cascade="all, delete-orphan"
    )
    training_loads = relationship("TrainingLoad", back_populates="athlete", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Athlete(id={self.id}, ftp={self.ftp})>"
