"""Tests for the rate-limit aware request scheduler."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from utils.exceptions import RetriesExhausted, UpstreamError, UpstreamThrottled
from utils.request_scheduler import QuotaState, RequestScheduler, UpstreamResponse

TIMEOUT = 5


class ScriptedOperation:
    """Raises the scripted errors in turn, then returns `result`."""

    def __init__(self, name, log, errors=(), result=None):
        self.name = name
        self.log = log
        self.errors = list(errors)
        self.result = result if result is not None else name
        self.calls = 0

    def __call__(self):
        self.calls += 1
        self.log.append(self.name)
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestQuotaState:
    """Quota bookkeeping."""

    def test_record_counts_locally_without_reported_usage(self):
        quota = QuotaState(limit_count=100)
        quota.record()
        quota.record()
        assert quota.used_count == 2

    def test_record_takes_reported_usage_and_limit(self):
        quota = QuotaState(used_count=3, limit_count=100)
        quota.record(usage=42, limit=600)
        assert quota.used_count == 42
        assert quota.limit_count == 600
        assert quota.usage_fraction == pytest.approx(0.07)

    def test_window_reset(self):
        quota = QuotaState(used_count=0, limit_count=100)
        assert quota.reset_if_expired(now=0.0, window_seconds=900) is False
        quota.used_count = 80
        assert quota.reset_if_expired(now=900.0, window_seconds=900) is False
        assert quota.reset_if_expired(now=900.5, window_seconds=900) is True
        assert quota.used_count == 0
        assert quota.seconds_until_reset(now=1000.5, window_seconds=900) == pytest.approx(800.0)


class TestDispatchOrder:
    """Serialized FIFO dispatch."""

    def test_results_in_enqueue_order(self, scheduler):
        log = []
        futures = [scheduler.enqueue(ScriptedOperation(index, log)) for index in range(5)]

        assert [future.result(timeout=TIMEOUT) for future in futures] == [0, 1, 2, 3, 4]
        assert log == [0, 1, 2, 3, 4]

    def test_never_two_operations_at_once(self, scheduler):
        active = []
        overlaps = []
        lock = threading.Lock()

        def operation():
            with lock:
                active.append(1)
                if len(active) > 1:
                    overlaps.append(len(active))
            with lock:
                active.pop()
            return True

        with ThreadPoolExecutor(max_workers=4) as executor:
            results = list(executor.map(lambda _: scheduler.submit(operation), range(40)))

        assert all(results)
        assert overlaps == []
        assert scheduler.queue_length == 0

    def test_upstream_response_is_unwrapped(self, scheduler):
        result = scheduler.submit(lambda: UpstreamResponse(data=[1, 2], usage=7, limit=100))
        assert result == [1, 2]
        assert scheduler.quota.used_count == 7


class TestThrottling:
    """Requeue and backoff on throttling rejections."""

    def test_throttled_task_is_retried_before_later_tasks(self, scheduler, clock):
        log = []
        first = ScriptedOperation("a", log, errors=[UpstreamThrottled(retry_after=10)])
        second = ScriptedOperation("b", log)

        future_a = scheduler.enqueue(first)
        future_b = scheduler.enqueue(second)

        assert future_a.result(timeout=TIMEOUT) == "a"
        assert future_b.result(timeout=TIMEOUT) == "b"
        assert log == ["a", "a", "b"]
        # retry-after plus the 5 second buffer
        assert clock.sleeps == [15.0]

    def test_exponential_backoff_without_retry_after(self, scheduler, clock):
        operation = ScriptedOperation(
            "a", [], errors=[UpstreamThrottled(), UpstreamThrottled(), UpstreamThrottled()]
        )

        assert scheduler.submit(operation) == "a"
        assert operation.calls == 4
        assert clock.sleeps == [35.0, 65.0, 120.0]

    def test_retries_exhausted(self, clock):
        scheduler = RequestScheduler(
            name="test", min_delay_ms=0, max_retries=2, clock=clock, sleep=clock.sleep
        )
        operation = ScriptedOperation("a", [], errors=[UpstreamThrottled(retry_after=1)] * 10)

        with pytest.raises(RetriesExhausted) as excinfo:
            scheduler.submit(operation)

        assert excinfo.value.attempts == 3
        assert operation.calls == 3

    def test_other_errors_fail_only_their_task(self, scheduler):
        log = []
        failing = ScriptedOperation("a", log, errors=[UpstreamError("boom", status=500)])
        healthy = ScriptedOperation("b", log)

        future_a = scheduler.enqueue(failing)
        future_b = scheduler.enqueue(healthy)

        with pytest.raises(UpstreamError, match="boom"):
            future_a.result(timeout=TIMEOUT)
        assert future_b.result(timeout=TIMEOUT) == "b"
        assert failing.calls == 1

    def test_malformed_quota_report_fails_only_its_task(self, scheduler):
        future_a = scheduler.enqueue(lambda: UpstreamResponse(data=1, usage="n/a", limit=100))
        future_b = scheduler.enqueue(lambda: "ok")

        with pytest.raises(ValueError):
            future_a.result(timeout=TIMEOUT)
        assert future_b.result(timeout=TIMEOUT) == "ok"

    def test_queue_survives_base_exception(self, scheduler):
        class Abort(BaseException):
            pass

        def abort():
            raise Abort()

        future_a = scheduler.enqueue(abort)
        future_b = scheduler.enqueue(lambda: "after")

        with pytest.raises(Abort):
            future_a.result(timeout=TIMEOUT)
        assert future_b.result(timeout=TIMEOUT) == "after"
        assert scheduler.submit(lambda: "later") == "later"


class TestQuotaWaiting:
    """Waiting near the quota limit."""

    def test_waits_for_window_reset_above_threshold(self, scheduler, clock):
        scheduler.submit(lambda: UpstreamResponse(data="first", usage=95, limit=100))
        assert clock.sleeps == []

        scheduler.submit(lambda: "second")
        # Remaining window, then the high-usage inter-request delay
        assert clock.sleeps == [900.0, 1.0]

        scheduler.submit(lambda: "third")
        assert scheduler.quota.used_count == 1
        assert clock.sleeps == [900.0, 1.0]

    def test_adaptive_delay(self, scheduler):
        assert scheduler._adaptive_delay(0.95) == 1.0
        assert scheduler._adaptive_delay(0.8) == 0.5
        assert scheduler._adaptive_delay(0.6) == 0.3
        assert scheduler._adaptive_delay(0.1) == 0.0

    def test_status(self, scheduler):
        scheduler.record_usage(40, 200)
        status = scheduler.status()

        assert status["requests_used"] == 40
        assert status["requests_limit"] == 200
        assert status["requests_remaining"] == 160
        assert status["percentage_used"] == 20
        assert status["queue_length"] == 0
        assert status["estimated_reset_seconds"] == 900
