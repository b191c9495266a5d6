"""Training stress calculations (TSS, Intensity Factor) for session summaries."""

from typing import Any, Dict, Iterable, List, Optional
from models.performance.fitness_fatigue import StressSample, round_half_up
from models.performance.session import parse_start_date
from utils.logger import get_logger

logger = get_logger(__name__)


class TrainingMetrics:
    """Calculator for per-session training stress."""

    @staticmethod
    def calculate_intensity_factor(normalized_power: float, ftp: Optional[int]) -> float:
        """
        Calculate Intensity Factor (IF).

        IF = NP / FTP

        Args:
            normalized_power: Normalized Power
            ftp: Functional Threshold Power

        Returns:
            Intensity Factor, 0 without a usable FTP
        """
        if not normalized_power or not ftp or ftp <= 0:
            return 0.0
        return normalized_power / ftp

    @staticmethod
    def calculate_tss_from_power(
        duration_seconds: int,
        normalized_power: float,
        ftp: Optional[int]
    ) -> int:
        """
        Calculate Training Stress Score from power data.

        TSS = (duration_seconds * NP * IF) / (FTP * 3600) * 100
        where IF (Intensity Factor) = NP / FTP

        Args:
            duration_seconds: Session duration in seconds
            normalized_power: Normalized Power (NP)
            ftp: Functional Threshold Power

        Returns:
            Training Stress Score rounded to an integer, 0 if any input is missing
        """
        intensity_factor = TrainingMetrics.calculate_intensity_factor(normalized_power, ftp)
        if not duration_seconds or not intensity_factor:
            return 0

        tss = (duration_seconds * normalized_power * intensity_factor) / (ftp * 3600) * 100
        return int(round_half_up(tss))


def calculate_session_tss(session: Dict[str, Any], ftp: Optional[int]) -> int:
    """
    TSS of a session summary.

    Uses weighted average watts as NP, falling back to average watts.
    """
    normalized_power = session.get("weighted_average_watts") or session.get("average_watts") or 0
    return TrainingMetrics.calculate_tss_from_power(
        duration_seconds=session.get("moving_time") or 0,
        normalized_power=normalized_power,
        ftp=ftp,
    )


def stress_samples_from_sessions(
    sessions: Iterable[Dict[str, Any]],
    ftp: Optional[int]
) -> List[StressSample]:
    """
    Convert session summaries into stress samples (UTC calendar date).

    Sessions without a start date are skipped.
    """
    samples = []
    skipped = 0
    for session in sessions:
        start = parse_start_date(session.get("start_date"))
        if start is None:
            skipped += 1
            continue
        samples.append(StressSample(date=start.date(), tss=calculate_session_tss(session, ftp)))

    if skipped:
        logger.warning(f"Skipped {skipped} sessions without a start date")
    return samples
