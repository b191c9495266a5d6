"""Paged session listing and bounded-concurrency stream fetching."""

import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, Iterator, List, Optional
import requests
from config.settings import settings
from models.performance.session import SessionStreams, start_timestamp
from utils.exceptions import UpstreamError, UpstreamAuthExpired
from utils.request_scheduler import RequestScheduler
from utils.strava_client import STREAM_CHANNELS
from utils.logger import get_logger

logger = get_logger(__name__)


class StreamBatchFetcher:
    """
    Fetches session lists and per-session streams through a RequestScheduler.

    The upstream must provide `list_sessions(after, per_page, page)` and
    `get_session_streams(session_id, keys)` (see StravaClient). Streams are
    fetched by a worker pool bounded to `concurrency`, one batch at a time;
    a failing session is logged and dropped without affecting its siblings.
    """

    def __init__(
        self,
        upstream: Any,
        scheduler: RequestScheduler,
        per_page: Optional[int] = None,
        max_pages: Optional[int] = None,
        concurrency: Optional[int] = None,
        batch_delay_ms: int = 0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize fetcher.

        Args:
            upstream: Upstream client (list_sessions / get_session_streams)
            scheduler: Scheduler every upstream call is routed through
            per_page: Sessions per page
            max_pages: Page-count ceiling
            concurrency: Worker count and batch size
            batch_delay_ms: Pause between two batches
            sleep: Sleep function, replaceable in tests
        """
        self.upstream = upstream
        self.scheduler = scheduler
        self.per_page = per_page or settings.POWER_CURVE_PER_PAGE
        self.max_pages = max_pages or settings.POWER_CURVE_MAX_PAGES
        self.concurrency = max(1, concurrency or settings.POWER_CURVE_CONCURRENCY)
        self.batch_delay_ms = batch_delay_ms
        self._sleep = sleep

    def list_all_sessions(self, after: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Page through the session list.

        Stops at the first page shorter than `per_page` or at `max_pages`.

        Args:
            after: Only sessions starting after this epoch timestamp

        Returns:
            Session summaries of all pages, concatenated in page order
        """
        sessions: List[Dict[str, Any]] = []
        pages = 0

        for page in range(1, self.max_pages + 1):
            batch = self.scheduler.submit(
                partial(self.upstream.list_sessions, after=after, per_page=self.per_page, page=page)
            )
            pages += 1
            if isinstance(batch, list) and batch:
                sessions.extend(batch)
            if not isinstance(batch, list) or len(batch) < self.per_page:
                break

        logger.info(f"Listed {len(sessions)} sessions in {pages} pages")
        return sessions

    @staticmethod
    def select_sessions(sessions: List[Dict[str, Any]], limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent sessions first, at most `limit` of them."""
        ordered = sorted(sessions, key=start_timestamp, reverse=True)
        if limit is not None and limit > 0:
            return ordered[:limit]
        return ordered

    def iter_batches(
        self,
        sessions: List[Dict[str, Any]],
        limit: Optional[int] = None
    ) -> Iterator[List[SessionStreams]]:
        """
        Fetch streams batch by batch.

        Args:
            sessions: Candidate session summaries
            limit: Maximum number of sessions to fetch (most recent first)

        Yields:
            Successfully fetched SessionStreams of each batch, in session order
        """
        selected = self.select_sessions(sessions, limit)
        if not selected:
            return

        logger.info(f"Fetching streams for {len(selected)} sessions (concurrency={self.concurrency})")

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="stream-fetch") as executor:
            for start in range(0, len(selected), self.concurrency):
                batch = selected[start:start + self.concurrency]
                futures = [executor.submit(self._fetch_one, session) for session in batch]
                results = [future.result() for future in futures]
                yield [streams for streams in results if streams is not None]

                if self.batch_delay_ms > 0 and start + self.concurrency < len(selected):
                    self._sleep(self.batch_delay_ms / 1000.0)

    def fetch_streams(
        self,
        sessions: List[Dict[str, Any]],
        limit: Optional[int] = None
    ) -> List[SessionStreams]:
        """Fetch streams for all selected sessions (see iter_batches)."""
        fetched: List[SessionStreams] = []
        for batch in self.iter_batches(sessions, limit=limit):
            fetched.extend(batch)
        return fetched

    def _fetch_one(self, session: Dict[str, Any]) -> Optional[SessionStreams]:
        session_id = session.get("id")
        try:
            payload = self.scheduler.submit(
                partial(self.upstream.get_session_streams, session_id, STREAM_CHANNELS)
            )
        except UpstreamAuthExpired:
            raise
        except (UpstreamError, requests.RequestException) as e:
            logger.warning(f"Failed to fetch streams for session {session_id}: {e}")
            return None

        streams = SessionStreams.from_upstream(session, payload)
        if not streams.watts:
            logger.debug(f"Session {session_id} has no power stream")
            return None
        return streams
