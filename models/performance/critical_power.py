"""
Two-parameter critical power model and W' balance simulation.

Work done at a maximal effort is modeled as work = CP * t + W', where CP is
the power sustainable indefinitely and W' a finite reserve above CP. The
model is fitted by least squares on three anchors of the power curve.
FTP is estimated from the same curve and its trend from recent sessions.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from scipy import stats
from models.performance.power_curve import PowerCurve
from models.performance.session import parse_start_date
from utils.logger import get_logger

logger = get_logger(__name__)

# Anchor durations in seconds: 3 min, 10 min, 20 min
ANCHOR_DURATIONS = (180, 600, 1200)

# W' recovery time constant (seconds)
W_PRIME_RECOVERY_TAU = 546

# FTP trend: look-back window, minimum sessions and change considered a trend
FTP_TREND_DAYS = 90
FTP_TREND_MIN_SESSIONS = 5
FTP_TREND_THRESHOLD_PERCENT = 5

MODEL_TWO_PARAMETER = "2-parameter"
INSUFFICIENT_DATA = "insufficient_data"


@dataclass
class CriticalPowerModel:
    """Fitted CP (watts) and W' (joules)."""

    cp: float
    w_prime: float
    model_kind: str = MODEL_TWO_PARAMETER

    @classmethod
    def insufficient(cls) -> "CriticalPowerModel":
        return cls(cp=0.0, w_prime=0.0, model_kind=INSUFFICIENT_DATA)

    @property
    def is_sufficient(self) -> bool:
        return self.model_kind != INSUFFICIENT_DATA

    def time_to_exhaustion(self, power: float) -> float:
        """Seconds until W' is exhausted at `power`; infinite at or below CP."""
        if not self.is_sufficient:
            return math.inf
        return time_to_exhaustion(power, self.cp, self.w_prime)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "CP": round(self.cp),
            "Wprime": round(self.w_prime),
            "model": self.model_kind,
        }
        if self.is_sufficient:
            data["description"] = (
                f"CP = theoretical sustainable power, W' = {round(self.w_prime / 1000)}kJ "
                f"of anaerobic capacity"
            )
        return data


def fit(curve: Optional[PowerCurve]) -> CriticalPowerModel:
    """
    Fit CP and W' from the 3, 10 and 20 minute bests.

    Args:
        curve: Power curve

    Returns:
        Fitted model, or the insufficient_data sentinel when an anchor is
        missing or zero
    """
    if curve is None:
        return CriticalPowerModel.insufficient()

    powers = [curve.watts_at(seconds) for seconds in ANCHOR_DURATIONS]
    if any(not power or power <= 0 for power in powers):
        logger.info(f"Critical power anchors incomplete: {dict(zip(ANCHOR_DURATIONS, powers))}")
        return CriticalPowerModel.insufficient()

    return fit_points(ANCHOR_DURATIONS, powers)


def fit_points(durations: Sequence[float], powers: Sequence[float]) -> CriticalPowerModel:
    """
    Least-squares fit of work = CP * t + W' over (duration, power) points.

    Args:
        durations: Effort durations in seconds
        powers: Best average power for each duration

    Returns:
        Fitted model (slope is CP, intercept is W')
    """
    if len(durations) != len(powers):
        raise ValueError("durations and powers must have the same length")

    works = [power * duration for duration, power in zip(durations, powers)]
    regression = stats.linregress(durations, works)

    model = CriticalPowerModel(cp=float(regression.slope), w_prime=float(regression.intercept))
    logger.debug(f"Critical power fit: CP={model.cp:.1f}W, W'={model.w_prime:.0f}J")
    return model


def time_to_exhaustion(power: float, cp: float, w_prime: float) -> float:
    """
    Estimate time until exhaustion at a given power.

    Args:
        power: Target power (watts)
        cp: Critical Power
        w_prime: Anaerobic capacity (joules)

    Returns:
        Seconds, or math.inf if the power is sustainable indefinitely
    """
    if not power or not cp or not w_prime or power <= cp:
        return math.inf
    return w_prime / (power - cp)


def balance(
    power_series: Iterable[Optional[float]],
    cp: float,
    w_prime: float,
    tau: float = W_PRIME_RECOVERY_TAU
) -> List[float]:
    """
    Simulate the remaining W' across a power stream (one sample per second).

    Above CP the excess power is subtracted from the balance; at or below CP
    the balance recovers exponentially toward W'. The balance is clamped to
    [0, W'] after every sample.

    Args:
        power_series: Power samples in watts
        cp: Critical Power
        w_prime: Anaerobic capacity (joules)
        tau: Recovery time constant in seconds

    Returns:
        Balance after each sample, empty if CP or W' is zero
    """
    if not cp or not w_prime:
        return []

    recovery_rate = 1 - math.exp(-1 / tau)
    current = float(w_prime)
    series: List[float] = []

    for power in power_series:
        power = power or 0.0
        if power > cp:
            current -= power - cp
        else:
            current += (w_prime - current) * recovery_rate
        current = max(0.0, min(w_prime, current))
        series.append(current)

    return series


def estimate_ftp(curve: Optional[PowerCurve]) -> Dict[str, Any]:
    """
    Estimate FTP from the power curve.

    Uses 95% of the best 20 minutes, falling back to 95% of the best hour.

    Returns:
        Dictionary with ftp_estimated, method, confidence
    """
    if curve is None:
        return {"ftp_estimated": 0, "method": "none", "confidence": 0}

    p20min = curve.watts_at(1200)
    p60min = curve.watts_at(3600)

    if p20min and p20min > 0:
        return {
            "ftp_estimated": round(p20min * 0.95),
            "method": "20min",
            "confidence": 0.95,
            "based_on": f"Best 20 min: {p20min}W",
        }

    if p60min and p60min > 0:
        return {
            "ftp_estimated": round(p60min * 0.95),
            "method": "60min",
            "confidence": 0.90,
            "based_on": f"Best 60 min: {p60min}W",
        }

    return {"ftp_estimated": 0, "method": INSUFFICIENT_DATA, "confidence": 0}


def _weighted_watts(session: Mapping[str, Any]) -> float:
    try:
        return float(session.get("weighted_average_watts") or 0)
    except (TypeError, ValueError):
        return 0.0


def analyze_ftp_trend(
    sessions: Iterable[Mapping[str, Any]],
    current_ftp: Optional[float],
    now: datetime
) -> Dict[str, Any]:
    """
    Compare recent weighted power against the level of two to three months ago.

    Sessions of the last 90 days with weighted average watts are kept. The
    average of the last week is compared with the average of weeks 8 to 12
    before `now`; a change beyond 5% either way is reported as a trend.

    Args:
        sessions: Session summaries with start_date and weighted_average_watts
        current_ftp: FTP on the athlete's profile, if any
        now: Reference time (naive values are UTC)

    Returns:
        Dictionary with trend, change (%), recommendation and, when both
        windows hold sessions, avg_recent_np, avg_old_np and estimated_new_ftp
    """
    sessions = list(sessions or [])
    if not sessions:
        return {"trend": "no_data", "change": 0, "recommendation": "Record more sessions"}

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    dated = []
    for session in sessions:
        start = parse_start_date(session.get("start_date"))
        watts = _weighted_watts(session)
        if start is not None and start > now - timedelta(days=FTP_TREND_DAYS) and watts > 0:
            dated.append((start, watts))

    if len(dated) < FTP_TREND_MIN_SESSIONS:
        return {"trend": INSUFFICIENT_DATA, "change": 0, "recommendation": "More sessions are needed"}

    week_1 = now - timedelta(weeks=1)
    week_8 = now - timedelta(weeks=8)
    week_12 = now - timedelta(weeks=12)
    last_week = [watts for start, watts in dated if start > week_1]
    old_weeks = [watts for start, watts in dated if week_12 < start < week_8]

    if not last_week or not old_weeks:
        return {"trend": "neutral", "change": 0, "recommendation": "Keep your current FTP"}

    avg_recent = sum(last_week) / len(last_week)
    avg_old = sum(old_weeks) / len(old_weeks)
    change_percent = (avg_recent - avg_old) / avg_old * 100

    if change_percent > FTP_TREND_THRESHOLD_PERCENT:
        trend = "improving"
        recommendation = f"Your power has improved by ~{round(change_percent)}%. Consider an FTP test."
    elif change_percent < -FTP_TREND_THRESHOLD_PERCENT:
        trend = "declining"
        recommendation = (
            f"Your power has dropped by ~{abs(round(change_percent))}%. "
            "Check for fatigue or overtraining."
        )
    else:
        trend = "stable"
        recommendation = "Your performance is consistent."

    return {
        "trend": trend,
        "change": round(change_percent),
        "avg_recent_np": round(avg_recent),
        "avg_old_np": round(avg_old),
        "recommendation": recommendation,
        "estimated_new_ftp": round(current_ftp * (1 + change_percent / 100)) if current_ftp else None,
    }


def format_duration(seconds: float) -> str:
    if seconds == math.inf:
        return "unlimited"
    if seconds < 60:
        return f"{round(seconds)}s"
    if seconds < 3600:
        return f"{round(seconds / 60)}min"
    return f"{seconds / 3600:.1f}h"


def exhaustion_examples(
    model: CriticalPowerModel,
    powers: Iterable[float] = (300, 350, 400, 450, 500)
) -> List[Dict[str, Any]]:
    """Time to exhaustion for a few reference powers."""
    examples = []
    for power in powers:
        seconds = model.time_to_exhaustion(power)
        examples.append({
            "power": power,
            "time_to_exhaustion": None if seconds == math.inf else round(seconds),
            "time_label": format_duration(seconds),
        })
    return examples
