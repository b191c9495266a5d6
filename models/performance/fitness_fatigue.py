"""
Fitness/fatigue model (performance management chart).

Turns per-session Training Stress Scores into a gap-filled daily series of:
- ATL (Acute Training Load): 7-day exponential moving average (fatigue)
- CTL (Chronic Training Load): 42-day exponential moving average (fitness)
- TSB (Training Stress Balance): today's CTL minus yesterday's ATL (freshness)

Each EMA step uses k = 2 / (period + 1). Day N depends only on day N-1, so
the series is always computed sequentially in date order.
"""

import math
from dataclasses import dataclass
from datetime import date, timedelta
from itertools import groupby
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import pandas as pd
from utils.logger import get_logger

logger = get_logger(__name__)

ATL_TIME_CONSTANT = 7
CTL_TIME_CONSTANT = 42


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


@dataclass
class StressSample:
    """Training stress of one calendar day (or one session before summing)."""

    date: date
    tss: float


@dataclass
class DailyLoad:
    """Model state at the end of one day."""

    date: date
    tss: float
    atl: float
    ctl: float
    tsb: float

    def to_dict(self) -> Dict[str, Any]:
        """Presentation form: integer TSS, loads to one decimal."""
        return {
            "date": self.date.isoformat(),
            "tss": int(round_half_up(self.tss)),
            "atl": round_half_up(self.atl, 1),
            "ctl": round_half_up(self.ctl, 1),
            "tsb": round_half_up(self.tsb, 1),
        }


class FitnessFatigueModel:
    """Exponential moving average model of training load."""

    def __init__(self, atl_period: int = ATL_TIME_CONSTANT, ctl_period: int = CTL_TIME_CONSTANT):
        self.atl_period = atl_period
        self.ctl_period = ctl_period
        self.atl_factor = 2 / (atl_period + 1)
        self.ctl_factor = 2 / (ctl_period + 1)

    def step(self, atl: float, ctl: float, tss: float) -> Tuple[float, float]:
        """Advance ATL and CTL by one day of training stress."""
        atl = atl + self.atl_factor * (tss - atl)
        ctl = ctl + self.ctl_factor * (tss - ctl)
        return atl, ctl

    def run(
        self,
        daily_tss: Iterable[Tuple[date, float]],
        initial_atl: float = 0.0,
        initial_ctl: float = 0.0
    ) -> List[DailyLoad]:
        """
        Apply the recurrence over consecutive days.

        TSB mixes today's CTL with the previous day's ATL (one-day lag).

        Args:
            daily_tss: (date, tss) pairs in date order, one per day
            initial_atl: ATL before the first day
            initial_ctl: CTL before the first day

        Returns:
            One DailyLoad per input day
        """
        atl = initial_atl
        ctl = initial_ctl
        previous_atl = initial_atl

        loads: List[DailyLoad] = []
        for day, tss in daily_tss:
            atl, ctl = self.step(atl, ctl, tss)
            tsb = ctl - previous_atl
            previous_atl = atl
            loads.append(DailyLoad(date=day, tss=tss, atl=atl, ctl=ctl, tsb=tsb))

        return loads

    @staticmethod
    def daily_stress(
        samples: Sequence[StressSample],
        today: Optional[date] = None
    ) -> List[Tuple[date, float]]:
        """
        Sum same-day samples and fill missing days with zero stress.

        The range runs from the earliest sample to min(latest sample, today).

        Args:
            samples: Stress samples in any order
            today: Upper bound of the range (defaults to the current date)

        Returns:
            (date, tss) pairs for every day of the range
        """
        if not samples:
            return []

        frame = pd.DataFrame({
            "date": pd.to_datetime([sample.date for sample in samples]),
            "tss": [float(sample.tss or 0.0) for sample in samples],
        })
        totals = frame.groupby("date")["tss"].sum().sort_index()

        start = totals.index.min()
        end = min(totals.index.max(), pd.Timestamp(today or date.today()))
        calendar = pd.date_range(start, end, freq="D")
        filled = totals.reindex(calendar, fill_value=0.0)

        return [(timestamp.date(), float(tss)) for timestamp, tss in filled.items()]

    def model(
        self,
        samples: Sequence[StressSample],
        initial_atl: float = 0.0,
        initial_ctl: float = 0.0,
        today: Optional[date] = None
    ) -> List[DailyLoad]:
        """
        Compute the daily load series for a set of stress samples.

        Args:
            samples: Stress samples (several per day allowed)
            initial_atl: ATL before the first day
            initial_ctl: CTL before the first day
            today: Last day that may appear in the result

        Returns:
            Gap-filled DailyLoad series in date order, empty for empty input
        """
        daily = self.daily_stress(samples, today=today)
        loads = self.run(daily, initial_atl=initial_atl, initial_ctl=initial_ctl)
        logger.debug(f"Computed training load for {len(loads)} days from {len(samples)} samples")
        return loads


def fitness_status(load: DailyLoad) -> Dict[str, str]:
    """
    Classify fatigue (ATL), form (CTL) and freshness (TSB).

    The recommendation comes from the fatigue level when fatigue is high,
    otherwise from the freshness level.
    """
    recommendation = ""

    if load.atl > 150:
        fatigue_level = "very_high"
        recommendation = "Consider rest or a very easy session"
    elif load.atl > 100:
        fatigue_level = "high"
        recommendation = "Reduce intensity or volume"
    elif load.atl > 60:
        fatigue_level = "moderate"
    else:
        fatigue_level = "low"

    if load.ctl > 150:
        form_level = "excellent"
    elif load.ctl > 100:
        form_level = "very_good"
    elif load.ctl > 60:
        form_level = "good"
    elif load.ctl > 30:
        form_level = "developing"
    else:
        form_level = "low"

    if load.tsb > 25:
        freshness_level = "very_fresh"
        advice = "Good moment to train hard"
    elif load.tsb > 10:
        freshness_level = "fresh"
        advice = "Ready for intense sessions"
    elif load.tsb > -10:
        freshness_level = "balanced"
        advice = "Keep the current balance"
    elif load.tsb > -30:
        freshness_level = "fatigued"
        advice = "Reduce load or rest"
    else:
        freshness_level = "very_fatigued"
        advice = "Rest is required"

    return {
        "fatigue_level": fatigue_level,
        "form_level": form_level,
        "freshness_level": freshness_level,
        "recommendation": recommendation or advice,
    }


def _window_summary(loads: Sequence[DailyLoad], days: int) -> Dict[str, Any]:
    window = loads[-days:]
    last = loads[-1]
    total = sum(day.tss for day in window)
    return {
        "current_atl": round_half_up(last.atl, 1),
        "current_ctl": round_half_up(last.ctl, 1),
        "current_tsb": round_half_up(last.tsb, 1),
        "total_tss": int(round_half_up(total)),
        "avg_tss_per_day": int(round_half_up(total / days)),
        "workout_days": sum(1 for day in window if day.tss > 0),
        "status": fitness_status(last),
    }


def weekly_summary(loads: Sequence[DailyLoad]) -> Optional[Dict[str, Any]]:
    """Summary of the last 7 days, None without data."""
    if not loads:
        return None
    return _window_summary(loads, 7)


def monthly_summary(loads: Sequence[DailyLoad]) -> Optional[Dict[str, Any]]:
    """Summary of the last 30 days plus the CTL change over the window."""
    if not loads:
        return None
    summary = _window_summary(loads, 30)
    window = loads[-30:]
    summary["ctl_change"] = round_half_up(
        round_half_up(window[-1].ctl, 1) - round_half_up(window[0].ctl, 1), 1
    )
    return summary


def _week_start(day: date) -> date:
    # Weeks start on Sunday
    return day - timedelta(days=(day.weekday() + 1) % 7)


def group_by_week(loads: Sequence[DailyLoad]) -> List[Dict[str, Any]]:
    """Weekly rollup: total TSS, day counts and end-of-week loads."""
    weeks = []
    for week_start, days in groupby(loads, key=lambda load: _week_start(load.date)):
        days = list(days)
        total = sum(day.tss for day in days)
        last = days[-1]
        weeks.append({
            "week_start": week_start.isoformat(),
            "tss": int(round_half_up(total)),
            "avg_tss": int(round_half_up(total / 7)),
            "days": len(days),
            "workout_days": sum(1 for day in days if day.tss > 0),
            "atl": round_half_up(last.atl, 1),
            "ctl": round_half_up(last.ctl, 1),
            "tsb": round_half_up(last.tsb, 1),
        })
    return weeks


def group_by_month(loads: Sequence[DailyLoad]) -> List[Dict[str, Any]]:
    """Monthly rollup: total TSS, day counts and end-of-month loads."""
    months = []
    for month, days in groupby(loads, key=lambda load: load.date.strftime("%Y-%m")):
        days = list(days)
        total = sum(day.tss for day in days)
        last = days[-1]
        months.append({
            "month": month,
            "tss": int(round_half_up(total)),
            "avg_tss": int(round_half_up(total / len(days))),
            "days": len(days),
            "workout_days": sum(1 for day in days if day.tss > 0),
            "atl_end": round_half_up(last.atl, 1),
            "ctl_end": round_half_up(last.ctl, 1),
            "tsb_end": round_half_up(last.tsb, 1),
        })
    return months
