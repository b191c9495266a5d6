"""Forward projection of the fitness/fatigue model for planned training."""

from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence
from models.performance.fitness_fatigue import DailyLoad, FitnessFatigueModel


class Forecaster:
    """Projects ATL/CTL/TSB from a current state through planned daily stress."""

    def __init__(self, model: Optional[FitnessFatigueModel] = None):
        self.model = model or FitnessFatigueModel()

    def forecast(
        self,
        current: DailyLoad,
        planned_tss: Sequence[Optional[float]],
        start_date: Optional[date] = None
    ) -> List[DailyLoad]:
        """
        Re-apply the daily recurrence starting at the current ATL/CTL.

        Args:
            current: Latest known state (its ATL is the lagged ATL of day one)
            planned_tss: Planned stress per day; None counts as rest
            start_date: Date of the first planned day (default: day after `current`)

        Returns:
            One DailyLoad per planned day
        """
        first_day = start_date or (current.date + timedelta(days=1))
        daily = [
            (first_day + timedelta(days=offset), float(tss or 0.0))
            for offset, tss in enumerate(planned_tss)
        ]
        return self.model.run(daily, initial_atl=current.atl, initial_ctl=current.ctl)

    def training_scenarios(
        self,
        current: DailyLoad,
        days: int = 14
    ) -> Dict[str, List[DailyLoad]]:
        """
        Project the standard scenarios.

        - rest: no training
        - maintenance: constant 50 TSS
        - moderate: 80 TSS, every 7th day off
        - intense: 120 TSS, every 7th day off
        """
        return {
            "rest": self.forecast(current, [0] * days),
            "maintenance": self.forecast(current, [50] * days),
            "moderate": self.forecast(current, weekly_pattern(80, days)),
            "intense": self.forecast(current, weekly_pattern(120, days)),
        }


def weekly_pattern(tss: float, days: int) -> List[float]:
    """Constant stress with every seventh day as rest."""
    return [0 if day % 7 == 6 else tss for day in range(days)]


def initial_state(loads: Sequence[DailyLoad], today: Optional[date] = None) -> DailyLoad:
    """Latest modeled day, or an untrained state dated today."""
    if loads:
        return loads[-1]
    return DailyLoad(date=today or date.today(), tss=0.0, atl=0.0, ctl=0.0, tsb=0.0)
