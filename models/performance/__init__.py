"""Pure analytics over fetched training data."""

from models.performance.session import SessionStreams
from models.performance.power_curve import (
    ALL_BUCKETS,
    DurationBucket,
    PowerCurve,
    PowerCurveExtractor,
)
from models.performance.fitness_fatigue import (
    DailyLoad,
    FitnessFatigueModel,
    StressSample,
)
from models.performance.critical_power import CriticalPowerModel
from models.performance.forecaster import Forecaster

__all__ = [
    "SessionStreams",
    "ALL_BUCKETS",
    "DurationBucket",
    "PowerCurve",
    "PowerCurveExtractor",
    "DailyLoad",
    "FitnessFatigueModel",
    "StressSample",
    "CriticalPowerModel",
    "Forecaster",
]
