"""Orchestration of fetching, analytics computation and persistence per athlete."""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from functools import partial
from collections.abc import Sequence as SequenceABC
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import requests
from config.settings import settings
from models.performance import critical_power
from models.performance.fitness_fatigue import (
    DailyLoad,
    FitnessFatigueModel,
    group_by_month,
    group_by_week,
    monthly_summary,
    weekly_summary,
)
from models.performance.forecaster import Forecaster, initial_state
from models.performance.power_curve import PowerCurve, PowerCurveExtractor
from utils.exceptions import UpstreamError
from utils.persistence import PowerCurveRepository, StoredPowerCurve, TrainingLoadRepository
from utils.request_scheduler import RequestScheduler
from utils.single_flight import SingleFlight
from utils.stream_fetcher import StreamBatchFetcher
from utils.training_metrics import stress_samples_from_sessions
from utils.logger import get_logger, log_exception

logger = get_logger(__name__)

FETCH_ERRORS = (UpstreamError, requests.RequestException)


class AnalyticsManager:
    """
    Computes and serves an athlete's training analytics.

    Handles:
    - Power curve recomputation (single-flight per athlete, persisted)
    - Cached power curve reads with max-age and background recompute
    - Performance management chart (ATL/CTL/TSB) with summaries
    - Critical power, W' balance, forecasts and training scenarios

    Read operations always return a well-formed dictionary; when upstream
    data is unavailable they fall back to empty data and a message.
    """

    def __init__(
        self,
        upstream_factory: Callable[[int], Any],
        scheduler: RequestScheduler,
        power_curves: Optional[PowerCurveRepository] = None,
        training_loads: Optional[TrainingLoadRepository] = None,
        extractor: Optional[PowerCurveExtractor] = None,
        fitness_model: Optional[FitnessFatigueModel] = None,
        background_workers: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize analytics manager.

        Args:
            upstream_factory: Returns the upstream client for an athlete ID
            scheduler: Shared scheduler for the upstream's rate limit
            power_curves: Power curve persistence
            training_loads: Athlete thresholds and training load persistence
            extractor: Power curve extractor
            fitness_model: Fitness/fatigue model
            background_workers: Threads available for background recomputes
            clock: Current UTC time (naive)
        """
        self.upstream_factory = upstream_factory
        self.scheduler = scheduler
        self.power_curves = power_curves or PowerCurveRepository()
        self.training_loads = training_loads or TrainingLoadRepository()
        self.extractor = extractor or PowerCurveExtractor()
        self.fitness_model = fitness_model or FitnessFatigueModel()
        self.forecaster = Forecaster(self.fitness_model)
        self.background_workers = background_workers or settings.BACKGROUND_WORKERS
        self._clock = clock
        self._flights = SingleFlight()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Power curve
    # ------------------------------------------------------------------

    def compute_power_curve(
        self,
        athlete_id: int,
        days: Optional[int] = None,
        limit: Optional[int] = None,
        concurrency: Optional[int] = None,
        batch_delay_ms: int = 0
    ) -> StoredPowerCurve:
        """
        Recompute and persist an athlete's power curve.

        Concurrent calls for the same athlete share one computation.

        Args:
            athlete_id: Athlete ID
            days: Look-back window in days (0 for all history)
            limit: Maximum number of sessions whose streams are fetched
            concurrency: Stream fetch workers
            batch_delay_ms: Pause between stream batches

        Returns:
            The stored power curve snapshot
        """
        return self._flights.do(
            ("power_curve", athlete_id),
            partial(self._compute_power_curve, athlete_id, days, limit, concurrency, batch_delay_ms),
        )

    def _compute_power_curve(
        self,
        athlete_id: int,
        days: Optional[int],
        limit: Optional[int],
        concurrency: Optional[int],
        batch_delay_ms: int
    ) -> StoredPowerCurve:
        logger.info(f"Computing power curve for athlete {athlete_id}")
        after = self._after_timestamp(settings.POWER_CURVE_DAYS if days is None else days)

        fetcher = StreamBatchFetcher(
            self.upstream_factory(athlete_id),
            self.scheduler,
            concurrency=concurrency,
            batch_delay_ms=batch_delay_ms,
        )
        sessions = fetcher.list_all_sessions(after=after)
        candidates = self.extractor.filter_candidates(sessions, after=after)
        logger.info(f"{len(candidates)} of {len(sessions)} sessions carry power data")

        curve = PowerCurve()
        for batch in fetcher.iter_batches(candidates, limit=limit):
            curve = curve.merge(self.extractor.extract(batch, after=after))

        stored = self.power_curves.save_power_curve(athlete_id, curve, computed_at=self._clock())
        logger.info(f"Power curve computed for athlete {athlete_id}: {curve.to_dict()}")
        return stored

    def start_background_compute(self, athlete_id: int, **kwargs) -> Future:
        """Fire-and-forget recompute; errors are logged."""
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.background_workers,
                    thread_name_prefix="analytics-background",
                )
            future = self._executor.submit(self.compute_power_curve, athlete_id, **kwargs)
        future.add_done_callback(partial(self._log_background_result, athlete_id))
        return future

    @staticmethod
    def _log_background_result(athlete_id: int, future: Future):
        error = future.exception()
        if error is not None:
            log_exception(logger, error, f"Background power curve computation failed for athlete {athlete_id}")
        else:
            logger.info(f"Background power curve computation finished for athlete {athlete_id}")

    def get_power_curve(
        self,
        athlete_id: int,
        max_age_hours: Optional[float] = None,
        force: bool = False,
        background: bool = False,
        days: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Cached power curve, recomputed when older than `max_age_hours`.

        Args:
            athlete_id: Athlete ID
            max_age_hours: Maximum age of a cached curve
            force: Ignore the cache
            background: Start the recompute in the background and return at once
            days: Look-back window for a recompute

        Returns:
            Result dictionary (ok, cached/background, data, computed_at, message)
        """
        if max_age_hours is None:
            max_age_hours = settings.POWER_CURVE_MAX_AGE_HOURS

        cached = self.power_curves.load_power_curve(athlete_id)
        if cached and not force and cached.age_seconds(self._clock()) < max_age_hours * 3600:
            return self._power_curve_result(cached, cached=True)

        if background:
            self.start_background_compute(athlete_id, days=days)
            return {"ok": True, "background": True, "message": "Computation started"}

        try:
            stored = self.compute_power_curve(athlete_id, days=days)
        except FETCH_ERRORS as e:
            logger.error(f"Power curve computation failed for athlete {athlete_id}: {e}")
            fallback = cached.curve if cached else PowerCurve()
            return {
                "ok": False,
                "cached": cached is not None,
                "data": fallback.to_dict(),
                "computed_at": cached.computed_at.isoformat() if cached else None,
                "message": f"Could not fetch data from upstream: {e}",
            }

        return self._power_curve_result(stored, cached=False)

    @staticmethod
    def _power_curve_result(stored: StoredPowerCurve, cached: bool) -> Dict[str, Any]:
        return {
            "ok": True,
            "cached": cached,
            "data": stored.curve.to_dict(),
            "computed_at": stored.computed_at.isoformat(),
        }

    # ------------------------------------------------------------------
    # Critical power
    # ------------------------------------------------------------------

    def get_critical_power(self, athlete_id: int) -> Dict[str, Any]:
        """CP/W' fit from the stored curve with time-to-exhaustion examples."""
        stored = self.power_curves.load_power_curve(athlete_id)
        if stored is None:
            result = critical_power.CriticalPowerModel.insufficient().to_dict()
            result.update({"examples": [], "message": "No power curve data found"})
            return result

        model = critical_power.fit(stored.curve)
        result = model.to_dict()
        result["examples"] = critical_power.exhaustion_examples(model) if model.is_sufficient else []
        result["ftp_estimate"] = critical_power.estimate_ftp(stored.curve)
        if model.is_sufficient:
            result["interpretation"] = {
                "CP": f"{round(model.cp)}W is your theoretically indefinitely sustainable power",
                "Wprime": f"{round(model.w_prime / 1000)}kJ is your available anaerobic capacity",
            }
        else:
            result["message"] = "Best 3, 10 and 20 minute efforts are required"
        return result

    def get_ftp_prediction(self, athlete_id: int, ftp: Optional[int] = None) -> Dict[str, Any]:
        """
        FTP estimate from the stored curve next to the weighted power trend.

        Args:
            athlete_id: Athlete ID
            ftp: Current FTP (defaults to the stored athlete FTP)

        Returns:
            Dictionary with current_ftp, prediction, trend and recommendation
        """
        current_ftp = ftp or self.training_loads.get_athlete_ftp(athlete_id)
        stored = self.power_curves.load_power_curve(athlete_id)
        if stored is None:
            return {
                "current_ftp": current_ftp,
                "prediction": critical_power.estimate_ftp(None),
                "trend": None,
                "message": "No power curve data found",
            }

        prediction = critical_power.estimate_ftp(stored.curve)
        result = {"current_ftp": current_ftp, "prediction": prediction}

        fetcher = StreamBatchFetcher(
            self.upstream_factory(athlete_id),
            self.scheduler,
            max_pages=settings.PMC_MAX_PAGES,
        )
        try:
            sessions = fetcher.list_all_sessions(after=self._after_timestamp(critical_power.FTP_TREND_DAYS))
        except FETCH_ERRORS as e:
            logger.error(f"Could not fetch sessions for athlete {athlete_id}: {e}")
            result["trend"] = None
            result["message"] = f"Could not fetch sessions from upstream: {e}"
        else:
            result["trend"] = critical_power.analyze_ftp_trend(sessions, current_ftp, self._clock())

        estimated = prediction["ftp_estimated"]
        if estimated and current_ftp:
            if estimated > current_ftp * 1.05:
                result["recommendation"] = "Consider updating your FTP with a formal test"
            else:
                result["recommendation"] = "Your current FTP looks right"
        else:
            result["recommendation"] = "Set your FTP in your profile"
        return result

    def get_reserve_balance(self, athlete_id: int, power_series: Sequence[Optional[float]]) -> Dict[str, Any]:
        """W' balance over a power stream using the athlete's current model."""
        stored = self.power_curves.load_power_curve(athlete_id)
        model = critical_power.fit(stored.curve if stored else None)
        if not model.is_sufficient:
            return {"model": model.to_dict(), "balance": [], "message": "Critical power model unavailable"}

        series = critical_power.balance(power_series, model.cp, model.w_prime)
        return {
            "model": model.to_dict(),
            "balance": series,
            "minimum": min(series) if series else None,
        }

    # ------------------------------------------------------------------
    # Performance management chart
    # ------------------------------------------------------------------

    def get_pmc(
        self,
        athlete_id: int,
        ftp: Optional[int] = None,
        days: Optional[int] = None,
        view: str = "all",
        persist: bool = True,
        today: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Daily/weekly/monthly ATL, CTL and TSB with summaries.

        Args:
            athlete_id: Athlete ID
            ftp: FTP for TSS (defaults to the stored athlete FTP)
            days: Look-back window in days (0 for all history)
            view: "all", "daily", "weekly" or "monthly"
            persist: Store the daily series
            today: Last day of the series

        Returns:
            Result dictionary; empty lists plus a message when data is unavailable
        """
        loads, message = self._model_loads(athlete_id, ftp=ftp, days=days, today=today)
        if message:
            return self._empty_pmc(message)

        if persist:
            self.training_loads.replace_training_loads(athlete_id, loads)

        daily = [load.to_dict() for load in loads]
        weekly = group_by_week(loads)
        monthly = group_by_month(loads)
        summary_week = weekly_summary(loads)
        summary_month = monthly_summary(loads)

        if view == "daily":
            return {"daily": daily, "summary_week": summary_week}
        if view == "weekly":
            return {"weekly": weekly, "summary_month": summary_month}
        if view == "monthly":
            return {"monthly": monthly, "summary_month": summary_month}

        return {
            "daily": daily,
            "weekly": weekly,
            "monthly": monthly,
            "summary_week": summary_week,
            "summary_month": summary_month,
        }

    def forecast_pmc(
        self,
        athlete_id: int,
        planned_tss: Sequence[Optional[float]],
        ftp: Optional[int] = None,
        today: Optional[date] = None
    ) -> Dict[str, Any]:
        """Project the athlete's current state through planned daily TSS."""
        if isinstance(planned_tss, (str, bytes)) or not isinstance(planned_tss, SequenceABC):
            raise ValueError("planned_tss must be a sequence of daily TSS values")

        current = self._current_state(athlete_id, ftp=ftp, today=today)
        forecast = self.forecaster.forecast(current, planned_tss)
        return {
            "current": current.to_dict(),
            "forecast": [load.to_dict() for load in forecast],
        }

    def get_training_scenarios(
        self,
        athlete_id: int,
        days: int = 14,
        ftp: Optional[int] = None,
        today: Optional[date] = None
    ) -> Dict[str, Any]:
        """Rest, maintenance, moderate and intense projections."""
        current = self._current_state(athlete_id, ftp=ftp, today=today)
        scenarios = self.forecaster.training_scenarios(current, days=days)
        return {
            "current": current.to_dict(),
            "scenarios": {
                name: [load.to_dict() for load in loads]
                for name, loads in scenarios.items()
            },
        }

    def _current_state(self, athlete_id: int, ftp: Optional[int], today: Optional[date]) -> DailyLoad:
        loads, message = self._model_loads(athlete_id, ftp=ftp, days=None, today=today)
        if message:
            logger.info(f"Starting projection from an untrained state: {message}")
        return initial_state(loads, today=today or self._clock().date())

    def _model_loads(
        self,
        athlete_id: int,
        ftp: Optional[int],
        days: Optional[int],
        today: Optional[date]
    ) -> Tuple[List[DailyLoad], Optional[str]]:
        ftp = ftp or self.training_loads.get_athlete_ftp(athlete_id)
        if not ftp:
            return [], "FTP required in profile to calculate TSS/PMC"

        after = self._after_timestamp(settings.PMC_DAYS if days is None else days)
        fetcher = StreamBatchFetcher(
            self.upstream_factory(athlete_id),
            self.scheduler,
            max_pages=settings.PMC_MAX_PAGES,
        )
        try:
            sessions = fetcher.list_all_sessions(after=after)
        except FETCH_ERRORS as e:
            logger.error(f"Could not fetch sessions for athlete {athlete_id}: {e}")
            return [], f"Could not fetch sessions from upstream: {e}"

        if not sessions:
            return [], "No sessions found"

        samples = stress_samples_from_sessions(sessions, ftp)
        loads = self.fitness_model.model(samples, today=today or self._clock().date())
        return loads, None

    @staticmethod
    def _empty_pmc(message: str) -> Dict[str, Any]:
        return {
            "daily": [],
            "weekly": [],
            "monthly": [],
            "summary_week": None,
            "summary_month": None,
            "message": message,
        }

    # ------------------------------------------------------------------

    def _after_timestamp(self, days: int) -> Optional[int]:
        if not days or days <= 0:
            return None
        cutoff = self._clock() - timedelta(days=days)
        return int(cutoff.replace(tzinfo=timezone.utc).timestamp())

    def shutdown(self, wait: bool = True):
        """Stop the background executor."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
