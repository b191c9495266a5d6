"""Tests for per-key call deduplication."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from utils.single_flight import SingleFlight


class TestSingleFlight:
    def test_sequential_calls_run_each_time(self):
        flights = SingleFlight()
        calls = []

        assert flights.do("a", lambda: calls.append(1) or len(calls)) == 1
        assert flights.do("a", lambda: calls.append(1) or len(calls)) == 2
        assert not flights.in_flight("a")

    def test_concurrent_calls_share_one_execution(self):
        flights = SingleFlight()
        started = threading.Event()
        release = threading.Event()
        calls = []

        def compute():
            calls.append(1)
            started.set()
            release.wait(5)
            return {"5s": 900}

        with ThreadPoolExecutor(max_workers=4) as executor:
            leader = executor.submit(flights.do, 42, compute)
            assert started.wait(5)
            assert flights.in_flight(42)

            followers = [executor.submit(flights.do, 42, compute) for _ in range(3)]
            # Give the followers time to join the running call
            time.sleep(0.2)
            release.set()

            results = [leader.result(5)] + [future.result(5) for future in followers]

        assert len(calls) == 1
        assert all(result is results[0] for result in results)
        assert not flights.in_flight(42)

    def test_different_keys_do_not_block_each_other(self):
        flights = SingleFlight()
        release = threading.Event()

        with ThreadPoolExecutor(max_workers=2) as executor:
            blocked = executor.submit(flights.do, 1, lambda: release.wait(5))
            assert flights.do(2, lambda: "free") == "free"
            release.set()
            assert blocked.result(5) is True

    def test_exception_is_shared_and_cleared(self):
        flights = SingleFlight()

        def fail():
            raise ValueError("upstream down")

        with pytest.raises(ValueError, match="upstream down"):
            flights.do("k", fail)

        assert not flights.in_flight("k")
        assert flights.do("k", lambda: "recovered") == "recovered"
