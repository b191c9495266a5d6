"""Serialized, quota-aware dispatch of calls to a rate-limited upstream API."""

import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional
from config.settings import settings
from utils.exceptions import UpstreamThrottled, RetriesExhausted
from utils.logger import get_context_logger, log_exception


@dataclass
class QuotaState:
    """Upstream quota usage within the current rate limit window."""

    used_count: int = 0
    limit_count: int = 100
    window_start: Optional[float] = None

    @property
    def usage_fraction(self) -> float:
        if not self.limit_count:
            return 0.0
        return self.used_count / self.limit_count

    def record(self, usage: Optional[int] = None, limit: Optional[int] = None):
        """
        Apply the usage reported by a completed call.

        Args:
            usage: Requests used in the window as reported upstream; when the
                upstream reports nothing the local count is incremented
            limit: Window limit as reported upstream
        """
        if usage is not None:
            self.used_count = int(usage)
        else:
            self.used_count += 1
        if limit:
            self.limit_count = int(limit)

    def reset_if_expired(self, now: float, window_seconds: float) -> bool:
        """Start a new window if the current one has elapsed."""
        if self.window_start is None:
            self.window_start = now
            return False
        if now - self.window_start > window_seconds:
            self.used_count = 0
            self.window_start = now
            return True
        return False

    def seconds_until_reset(self, now: float, window_seconds: float) -> float:
        start = self.window_start if self.window_start is not None else now
        return max(0.0, window_seconds - (now - start))


@dataclass
class UpstreamResponse:
    """Payload of an upstream call plus the quota values it reported."""

    data: Any
    usage: Optional[int] = None
    limit: Optional[int] = None


@dataclass
class FetchTask:
    """A queued upstream operation and the future its caller waits on."""

    operation: Callable[[], Any]
    future: Future = field(default_factory=Future)
    attempts: int = 0


class RequestScheduler:
    """
    FIFO request queue drained by a single consumer thread.

    Callers on any thread enqueue operations and wait on the returned future;
    dispatch to the upstream is serialized in enqueue order. Handles:
    - Quota tracking from reported usage/limit values
    - Waiting for the window to reset when usage is above the threshold
    - Adaptive inter-request delay
    - Front-of-queue requeue with backoff on throttling, bounded retries
    """

    def __init__(
        self,
        name: str = "strava",
        limit: Optional[int] = None,
        window_seconds: Optional[float] = None,
        min_delay_ms: Optional[int] = None,
        throttle_threshold: Optional[float] = None,
        min_throttle_wait: Optional[float] = None,
        backoff_cap: Optional[float] = None,
        backoff_buffer: Optional[float] = None,
        default_retry_after: Optional[float] = None,
        max_retries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize a scheduler for one upstream target.

        Args:
            name: Upstream name used in log messages
            limit: Initial requests-per-window limit (until the upstream reports one)
            window_seconds: Length of the rate limit window
            min_delay_ms: Minimum delay between two dispatched requests
            throttle_threshold: Usage fraction above which dispatch waits for the window reset
            min_throttle_wait: Lower bound of the wait applied above the threshold
            backoff_cap: Upper bound of the backoff after a throttling rejection
            backoff_buffer: Seconds added to the upstream's retry-after value
            default_retry_after: Backoff base when the upstream gives no retry-after
            max_retries: Retries allowed per task after throttling rejections
            clock: Monotonic clock in seconds
            sleep: Sleep function, replaceable in tests
        """
        self.name = name
        self.log = get_context_logger(__name__, upstream=name)
        self.window_seconds = window_seconds if window_seconds is not None else settings.RATE_LIMIT_WINDOW_SECONDS
        self.min_delay_ms = min_delay_ms if min_delay_ms is not None else settings.RATE_LIMIT_MIN_DELAY_MS
        self.throttle_threshold = (
            throttle_threshold if throttle_threshold is not None else settings.RATE_LIMIT_THROTTLE_THRESHOLD
        )
        self.min_throttle_wait = (
            min_throttle_wait if min_throttle_wait is not None else settings.RATE_LIMIT_MIN_THROTTLE_WAIT_SECONDS
        )
        self.backoff_cap = backoff_cap if backoff_cap is not None else settings.RATE_LIMIT_BACKOFF_CAP_SECONDS
        self.backoff_buffer = (
            backoff_buffer if backoff_buffer is not None else settings.RATE_LIMIT_BACKOFF_BUFFER_SECONDS
        )
        self.default_retry_after = (
            default_retry_after if default_retry_after is not None
            else settings.RATE_LIMIT_DEFAULT_RETRY_AFTER_SECONDS
        )
        self.max_retries = max_retries if max_retries is not None else settings.RATE_LIMIT_MAX_RETRIES

        self._clock = clock
        self._sleep = sleep

        self.quota = QuotaState(limit_count=limit or settings.STRAVA_RATE_LIMIT_15MIN)
        self._quota_lock = threading.Lock()

        self._queue: Deque[FetchTask] = deque()
        self._lock = threading.Lock()
        self._draining = False

    def enqueue(self, operation: Callable[[], Any]) -> Future:
        """
        Queue an upstream operation.

        Args:
            operation: Zero-argument callable performing one upstream call. It may
                return an UpstreamResponse to report quota usage.

        Returns:
            Future resolved with the operation's data, or failed with its error
        """
        task = FetchTask(operation=operation)
        with self._lock:
            self._queue.append(task)
            if not self._draining:
                self._draining = True
                threading.Thread(
                    target=self._drain,
                    name=f"{self.name}-scheduler",
                    daemon=True,
                ).start()
        return task.future

    def submit(self, operation: Callable[[], Any]) -> Any:
        """Queue an operation and block until it has been executed."""
        return self.enqueue(operation).result()

    def record_usage(self, usage: Optional[int] = None, limit: Optional[int] = None):
        with self._quota_lock:
            self.quota.record(usage, limit)

    @property
    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    def status(self) -> Dict[str, Any]:
        """Get current rate limit status."""
        now = self._clock()
        with self._quota_lock:
            used = self.quota.used_count
            limit = self.quota.limit_count
            reset_in = self.quota.seconds_until_reset(now, self.window_seconds)
        return {
            "requests_used": used,
            "requests_limit": limit,
            "requests_remaining": max(0, limit - used),
            "percentage_used": round(used / limit * 100) if limit else 0,
            "queue_length": self.queue_length,
            "estimated_reset_seconds": reset_in,
        }

    def _drain(self):
        """Execute queued tasks one at a time until the queue is empty."""
        task = None
        try:
            while True:
                with self._lock:
                    if not self._queue:
                        self._draining = False
                        return
                    task = self._queue.popleft()

                if task.attempts == 0 and not task.future.set_running_or_notify_cancel():
                    task = None
                    continue

                self._execute(task)
                task = None
        except BaseException as e:
            log_exception(self.log, e, "Scheduler drain stopped")
            if task is not None and not task.future.done():
                with self._lock:
                    requeued = any(queued is task for queued in self._queue)
                if not requeued:
                    task.future.set_exception(e)
            self._restart_if_stranded()

    def _execute(self, task: FetchTask):
        """Run one attempt of a task and resolve, fail or requeue it."""
        task.attempts += 1
        try:
            self._wait_before_request()
            data = self._record_response(task.operation())
        except UpstreamThrottled as e:
            if task.attempts > self.max_retries:
                self.log.error(f"Rate limit exceeded, max retries reached ({task.attempts} attempts)")
                task.future.set_exception(RetriesExhausted(task.attempts))
                return
            wait_time = self._backoff_delay(e, task.attempts)
            with self._lock:
                self._queue.appendleft(task)
            self.log.warning(
                "Throttled by upstream, re-queued at front, "
                f"backing off {wait_time:.1f}s (attempt {task.attempts})"
            )
            self._sleep(wait_time)
        except Exception as e:
            task.future.set_exception(e)
        else:
            task.future.set_result(data)

    def _restart_if_stranded(self):
        """Hand remaining tasks to a new drain thread after an abnormal exit."""
        with self._lock:
            if not self._queue:
                self._draining = False
                return
            threading.Thread(
                target=self._drain,
                name=f"{self.name}-scheduler",
                daemon=True,
            ).start()

    def _record_response(self, result: Any) -> Any:
        usage = limit = None
        data = result
        if isinstance(result, UpstreamResponse):
            data, usage, limit = result.data, result.usage, result.limit

        with self._quota_lock:
            self.quota.record(usage, limit)
            used, current_limit = self.quota.used_count, self.quota.limit_count

        self.log.debug(f"Quota updated: {used}/{current_limit} requests used")
        return data

    def _wait_before_request(self):
        """Throttle near the quota limit, otherwise apply the inter-request delay."""
        now = self._clock()
        with self._quota_lock:
            if self.quota.reset_if_expired(now, self.window_seconds):
                self.log.info("Rate limit window expired, resetting counters")
            fraction = self.quota.usage_fraction
            reset_in = self.quota.seconds_until_reset(now, self.window_seconds)

        if fraction > self.throttle_threshold:
            wait_time = max(self.min_throttle_wait, reset_in)
            self.log.warning(
                f"High usage ({fraction:.0%}), waiting {wait_time:.1f}s "
                f"(reset in {reset_in:.1f}s)"
            )
            self._sleep(wait_time)

        delay = self._adaptive_delay(fraction)
        if delay > 0:
            self._sleep(delay)

    def _adaptive_delay(self, fraction: float) -> float:
        if fraction > 0.9:
            return 1.0
        elif fraction > 0.75:
            return 0.5
        elif fraction > 0.5:
            return 0.3
        return self.min_delay_ms / 1000.0

    def _backoff_delay(self, error: UpstreamThrottled, attempts: int) -> float:
        if error.retry_after is not None:
            base = float(error.retry_after)
        else:
            # Exponential backoff: 30s, 60s, 120s...
            base = self.default_retry_after * (2 ** (attempts - 1))
        return min(base + self.backoff_buffer, self.backoff_cap)
