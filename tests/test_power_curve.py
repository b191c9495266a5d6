"""Tests for power curve extraction and merging."""

from datetime import datetime, timezone

import pytest

from conftest import make_session
from models.performance.power_curve import (
    ALL_BUCKETS,
    DurationBucket,
    PowerCurve,
    PowerCurveExtractor,
    sample_interval,
)
from models.performance.session import SessionStreams

START = datetime(2024, 5, 4, 7, 30, tzinfo=timezone.utc)


def session_streams(watts, session_id=1, times=None, **session_fields):
    return SessionStreams(session=make_session(session_id, START, **session_fields), watts=watts, time=times)


class TestDurationBucket:
    """Fixed duration buckets."""

    def test_bucket_order_and_keys(self):
        assert [bucket.key for bucket in ALL_BUCKETS] == [
            "5s", "15s", "30s", "1m", "2m", "3m", "5m", "10m", "15m", "20m", "30m", "45m", "1h"
        ]
        assert [bucket.seconds for bucket in ALL_BUCKETS][-1] == 3600

    def test_lookup(self):
        assert DurationBucket.from_key("20m") is DurationBucket.M20
        assert DurationBucket.from_seconds(180) is DurationBucket.M3
        with pytest.raises(ValueError):
            DurationBucket.from_key("90m")


class TestSessionBests:
    """Best average power of one session."""

    def test_constant_power_in_every_reachable_bucket(self):
        bests = PowerCurveExtractor().session_bests([250] * 3600)

        assert len(bests) == len(ALL_BUCKETS)
        assert set(bests.values()) == {250}

    def test_buckets_longer_than_session_are_skipped(self):
        bests = PowerCurveExtractor().session_bests([300] * 100)

        assert set(bests) == {DurationBucket.S5, DurationBucket.S15, DurationBucket.S30, DurationBucket.M1}

    def test_best_window(self):
        watts = [100] * 20 + [400] * 5 + [100] * 20
        bests = PowerCurveExtractor().session_bests(watts)

        assert bests[DurationBucket.S5] == 400
        # 5 s at 400 W and 10 s at 100 W
        assert bests[DurationBucket.S15] == 200

    def test_missing_samples_count_as_zero(self):
        bests = PowerCurveExtractor(buckets=[DurationBucket.S5]).session_bests([None, 200, 200, 200, 200, 200, None])
        assert bests[DurationBucket.S5] == 200

        bests = PowerCurveExtractor(buckets=[DurationBucket.S5]).session_bests([None, 100, 100, 100, 100])
        assert bests[DurationBucket.S5] == 80

    def test_numeric_strings_are_parsed(self):
        bests = PowerCurveExtractor(buckets=[DurationBucket.S5]).session_bests(["250", "250", 250, "250.0", "250"])
        assert bests[DurationBucket.S5] == 250

        bests = PowerCurveExtractor(buckets=[DurationBucket.S5]).session_bests(["n/a", 100, 100, 100, float("nan")])
        assert bests[DurationBucket.S5] == 60

    def test_rounding_half_up(self):
        # Best 5 s average is 202.5 W
        bests = PowerCurveExtractor(buckets=[DurationBucket.S5]).session_bests([200, 200, 205, 205, 202.5])
        assert bests[DurationBucket.S5] == 203

    def test_window_uses_time_channel_interval(self):
        # 2 s recording interval: the 5 s window covers 3 samples
        watts = [100, 100, 100, 300, 300, 300, 100, 100]
        times = [index * 2 for index in range(len(watts))]

        bests = PowerCurveExtractor(buckets=[DurationBucket.S5]).session_bests(watts, times)

        assert bests[DurationBucket.S5] == 300

    def test_empty_stream(self):
        assert PowerCurveExtractor().session_bests([]) == {}


class TestSampleInterval:
    def test_default_without_time_channel(self):
        assert sample_interval(None) == 1.0
        assert sample_interval([5]) == 1.0

    def test_mean_interval(self):
        assert sample_interval([0, 1, 3, 6]) == pytest.approx(2.0)

    def test_degenerate_channel(self):
        assert sample_interval([4, 4, 4]) == 1.0


class TestExtract:
    """Reduction across sessions."""

    def test_unreached_buckets_are_zero(self):
        curve = PowerCurveExtractor().extract([session_streams([300] * 100)])

        assert curve[DurationBucket.M1] == 300
        assert curve[DurationBucket.M2] == 0
        assert curve[DurationBucket.H1] == 0

    def test_max_across_sessions(self):
        curve = PowerCurveExtractor().extract([
            session_streams([500] * 10 + [150] * 590, session_id=1),
            session_streams([250] * 1200, session_id=2),
        ])

        assert curve[DurationBucket.S5] == 500
        assert curve[DurationBucket.M10] == 250
        assert curve[DurationBucket.M20] == 250

    def test_sessions_without_power_meter_are_ignored(self):
        curve = PowerCurveExtractor().extract([
            session_streams([900] * 60, session_id=1, device_watts=False),
            session_streams([200] * 60, session_id=2),
        ])

        assert curve[DurationBucket.S5] == 200

    def test_cutoff(self):
        cutoff = int(START.timestamp()) + 1
        curve = PowerCurveExtractor().extract([session_streams([400] * 60)], after=cutoff)

        assert curve.is_empty

    def test_candidate_filter(self):
        sessions = [
            make_session(1, START, device_watts=True),
            make_session(2, START, device_watts=False),
            {"id": 3, "start_date": None, "device_watts": True},
        ]

        candidates = PowerCurveExtractor.filter_candidates(sessions)

        assert [session["id"] for session in candidates] == [1, 3]
        assert PowerCurveExtractor.filter_candidates(sessions, after=int(START.timestamp()) + 60) == []


class TestPowerCurve:
    """Merging and serialization."""

    def test_merge_is_commutative_and_pure(self):
        first = PowerCurve({DurationBucket.S5: 800, DurationBucket.M20: 240})
        second = PowerCurve({DurationBucket.S5: 750, DurationBucket.M20: 260, DurationBucket.H1: 220})

        merged = first.merge(second)

        assert merged == second.merge(first)
        assert merged.to_dict()["5s"] == 800
        assert merged.to_dict()["20m"] == 260
        assert merged.to_dict()["1h"] == 220
        assert first[DurationBucket.H1] == 0

    def test_merge_with_empty_curve_is_identity(self):
        curve = PowerCurve({DurationBucket.M5: 310})
        assert curve.merge(PowerCurve()) == curve

    def test_dict_form(self):
        curve = PowerCurve.from_dict({"5s": 900, "3m": 380})

        assert curve.watts_at(5) == 900
        assert curve.watts_at(180) == 380
        assert curve.watts_at(7) == 0
        assert list(curve.to_dict()) == [bucket.key for bucket in ALL_BUCKETS]

    def test_unknown_key_is_rejected(self):
        with pytest.raises(ValueError):
            PowerCurve.from_dict({"7s": 100})

    def test_non_bucket_key_is_rejected(self):
        with pytest.raises(TypeError):
            PowerCurve({"5s": 100})
