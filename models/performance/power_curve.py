"""Power-duration curve extraction (best average power per duration bucket)."""

import math
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
import numpy as np
from models.performance.session import SessionStreams, start_timestamp
from utils.logger import get_logger

logger = get_logger(__name__)


class DurationBucket(Enum):
    """Fixed, ordered set of durations the curve is reported for."""

    S5 = ("5s", 5)
    S15 = ("15s", 15)
    S30 = ("30s", 30)
    M1 = ("1m", 60)
    M2 = ("2m", 120)
    M3 = ("3m", 180)
    M5 = ("5m", 300)
    M10 = ("10m", 600)
    M15 = ("15m", 900)
    M20 = ("20m", 1200)
    M30 = ("30m", 1800)
    M45 = ("45m", 2700)
    H1 = ("1h", 3600)

    def __init__(self, key: str, seconds: int):
        self.key = key
        self.seconds = seconds

    @classmethod
    def from_key(cls, key: str) -> "DurationBucket":
        for bucket in cls:
            if bucket.key == key:
                return bucket
        raise ValueError(f"Unknown duration bucket: {key!r}")

    @classmethod
    def from_seconds(cls, seconds: int) -> "DurationBucket":
        for bucket in cls:
            if bucket.seconds == seconds:
                return bucket
        raise ValueError(f"No duration bucket of {seconds}s")


ALL_BUCKETS = tuple(DurationBucket)


class PowerCurve:
    """
    Best average watts per duration bucket.

    Every bucket is present; a bucket no session reached stays at 0.
    Merging two curves is a per-bucket max, so any merge order gives the
    same result.
    """

    def __init__(self, values: Optional[Mapping[DurationBucket, float]] = None):
        self._values: Dict[DurationBucket, float] = {bucket: 0 for bucket in DurationBucket}
        for bucket, watts in (values or {}).items():
            if not isinstance(bucket, DurationBucket):
                raise TypeError(f"Power curve keys must be DurationBucket, got {bucket!r}")
            self._values[bucket] = watts

    def __getitem__(self, bucket: DurationBucket) -> float:
        return self._values[bucket]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PowerCurve):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        return f"<PowerCurve({self.to_dict()})>"

    def items(self):
        return self._values.items()

    def watts_at(self, seconds: int) -> float:
        """Best watts for the bucket of exactly `seconds`, 0 if there is none."""
        try:
            return self._values[DurationBucket.from_seconds(seconds)]
        except ValueError:
            return 0

    @property
    def is_empty(self) -> bool:
        return not any(self._values.values())

    def merge(self, other: "PowerCurve") -> "PowerCurve":
        """Return a new curve holding the per-bucket maximum of both curves."""
        return PowerCurve({
            bucket: max(self._values[bucket], other[bucket])
            for bucket in DurationBucket
        })

    def absorb(self, bests: Mapping[DurationBucket, float]):
        """Raise buckets in place to the given per-session bests."""
        for bucket, watts in bests.items():
            if watts > self._values[bucket]:
                self._values[bucket] = watts

    def to_dict(self) -> Dict[str, float]:
        return {bucket.key: self._values[bucket] for bucket in DurationBucket}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PowerCurve":
        """
        Build from a {bucket key: watts} mapping.

        Raises:
            ValueError: If a key is not a known bucket
        """
        return cls({DurationBucket.from_key(key): watts for key, watts in data.items()})


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_watts(value: Any) -> float:
    """Sample as watts; missing or unparseable samples count as 0 W."""
    try:
        watts = float(value)
    except (TypeError, ValueError):
        return 0.0
    return watts if math.isfinite(watts) else 0.0


def sample_interval(times: Optional[Sequence[float]]) -> float:
    """
    Seconds per sample from a time channel.

    Falls back to 1 second if the channel is absent or degenerate.
    """
    if not times or len(times) < 2:
        return 1.0
    dt = (float(times[-1]) - float(times[0])) / (len(times) - 1)
    return dt if dt > 0 else 1.0


class PowerCurveExtractor:
    """Reduces power streams of many sessions into one PowerCurve."""

    def __init__(self, buckets: Iterable[DurationBucket] = ALL_BUCKETS):
        self.buckets = tuple(buckets)

    @staticmethod
    def is_candidate(session: Mapping[str, Any], after: Optional[int] = None) -> bool:
        """A session counts only with power-meter data and, if given, a start at or after `after`."""
        if not session.get("device_watts"):
            return False
        if after:
            return start_timestamp(session) >= after
        return True

    @classmethod
    def filter_candidates(
        cls,
        sessions: Iterable[Mapping[str, Any]],
        after: Optional[int] = None
    ) -> List[Mapping[str, Any]]:
        """
        Keep the sessions whose streams are worth fetching.

        Args:
            sessions: Session summaries
            after: Optional epoch-seconds cutoff

        Returns:
            Candidate session summaries, in input order
        """
        return [session for session in sessions if cls.is_candidate(session, after)]

    def session_bests(
        self,
        watts: Sequence[Optional[float]],
        times: Optional[Sequence[float]] = None
    ) -> Dict[DurationBucket, int]:
        """
        Best average power per bucket for a single session.

        Buckets whose window is longer than the session are left out, so they
        do not take part in the max-reduction at all.

        Args:
            watts: Power channel; numeric strings are parsed, anything else
                that is not a number counts as 0 W
            times: Time channel in seconds, used for the sample interval

        Returns:
            Mapping bucket -> best average watts (rounded to the nearest watt)
        """
        power = np.array([_as_watts(w) for w in watts], dtype=float)
        n = len(power)
        if n == 0:
            return {}

        dt = sample_interval(times)
        prefix = np.concatenate(([0.0], np.cumsum(power)))

        bests: Dict[DurationBucket, int] = {}
        for bucket in self.buckets:
            window = max(1, math.ceil(bucket.seconds / dt))
            if window > n:
                continue
            window_sums = prefix[window:] - prefix[:-window]
            bests[bucket] = _round_half_up(float(window_sums.max()) / window)

        return bests

    def extract(
        self,
        session_streams: Iterable[SessionStreams],
        after: Optional[int] = None
    ) -> PowerCurve:
        """
        Compute the power curve across sessions.

        Args:
            session_streams: Fetched sessions with their channels
            after: Optional epoch-seconds cutoff

        Returns:
            PowerCurve with 0 for buckets no session reached
        """
        curve = PowerCurve()
        used = 0
        for streams in session_streams:
            if not self.is_candidate(streams.session, after):
                continue
            if not streams.watts:
                continue
            curve.absorb(self.session_bests(streams.watts, streams.time))
            used += 1

        logger.debug(f"Extracted power curve from {used} sessions")
        return curve
