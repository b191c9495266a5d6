"""Database and analytics models for Training Load Analytics."""

from models.database.base import Base
from models.database.athlete import Athlete
from models.database.power_curve import PowerCurveRecord
from models.database.training_load import TrainingLoad

__all__ = [
    "Base",
    "Athlete",
    "PowerCurveRecord",
    "TrainingLoad",
]
