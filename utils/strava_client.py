"""Strava API client reporting rate limit usage for the request scheduler."""

from typing import Optional, List, Dict, Any, Callable
from stravalib.client import Client
from stravalib.exc import RateLimitExceeded, AccessUnauthorized, Fault
from config.settings import settings
from utils.exceptions import UpstreamError, UpstreamThrottled, UpstreamAuthExpired
from utils.request_scheduler import UpstreamResponse
from utils.logger import get_logger

logger = get_logger(__name__)

STREAM_CHANNELS = ["watts", "time"]


def _first_value(header_value: Optional[str]) -> Optional[int]:
    """Parse the 15-minute component of a header like '30,500'."""
    if not header_value:
        return None
    try:
        return int(str(header_value).split(",")[0].strip())
    except ValueError:
        return None


def _retry_after(response) -> Optional[float]:
    headers = getattr(response, "headers", None) or {}
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class QuotaHeaderReader:
    """
    Rate limiter hook installed in the stravalib client.

    stravalib calls it with the headers of every response; the reader keeps
    the last reported usage and limit so they can travel with the payload.
    """

    def __init__(self):
        self.usage: Optional[int] = None
        self.limit: Optional[int] = None

    def __call__(self, response_headers: Dict[str, str], method: Any = None):
        usage = _first_value(response_headers.get("X-RateLimit-Usage"))
        limit = _first_value(response_headers.get("X-RateLimit-Limit"))
        if usage is not None and limit is not None:
            self.usage = usage
            self.limit = limit

    def clear(self):
        self.usage = None
        self.limit = None


class StravaClient:
    """
    Wrapper around stravalib Client exposing the two upstream calls the
    analytics engine consumes:
    - Paged session (activity) listing
    - Per-session stream fetching

    Every call returns an UpstreamResponse carrying the quota headers.
    Throttling is translated to UpstreamThrottled and left to the
    scheduler; an expired token is refreshed once through the injected
    refresher and the call retried.
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        athlete_id: Optional[int] = None,
        token_refresher: Optional[Callable[[Optional[int]], str]] = None,
        client: Optional[Client] = None,
    ):
        """
        Initialize Strava client.

        Args:
            access_token: OAuth access token (defaults to STRAVA_ACCESS_TOKEN)
            athlete_id: Athlete the token belongs to, passed to the refresher
            token_refresher: Callable returning a fresh access token for an athlete
            client: Preconfigured stravalib client (mainly for tests)
        """
        self.athlete_id = athlete_id
        self.token_refresher = token_refresher
        self._quota_headers = QuotaHeaderReader()

        if client is None:
            client = Client(
                access_token=access_token or settings.STRAVA_ACCESS_TOKEN or None,
                rate_limiter=self._quota_headers,
            )
        self.client = client

    def list_sessions(
        self,
        after: Optional[int] = None,
        per_page: int = 200,
        page: int = 1
    ) -> UpstreamResponse:
        """
        List one page of session summaries.

        Args:
            after: Only sessions starting after this epoch timestamp
            per_page: Page size
            page: 1-based page number

        Returns:
            UpstreamResponse whose data is a list of session dictionaries
        """
        params: Dict[str, Any] = {"per_page": per_page, "page": page}
        if after:
            params["after"] = int(after)

        logger.info(f"Fetching sessions page {page} (per_page={per_page}, after={after})")
        return self._call(self.client.protocol.get, "/athlete/activities", **params)

    def get_session_streams(
        self,
        session_id: int,
        keys: Optional[List[str]] = None
    ) -> UpstreamResponse:
        """
        Get time series channels for one session.

        Args:
            session_id: Session (activity) ID
            keys: Channel keys to fetch (default: watts and time)

        Returns:
            UpstreamResponse whose data maps channel -> {"data": [...]}
        """
        keys = keys or STREAM_CHANNELS
        logger.debug(f"Fetching streams for session {session_id}: {keys}")
        return self._call(
            self.client.protocol.get,
            "/activities/{id}/streams",
            id=session_id,
            keys=",".join(keys),
            key_by_type="true",
        )

    def _call(self, func, *args, **kwargs) -> UpstreamResponse:
        """Run one upstream call, refreshing the token at most once."""
        refreshed = False
        while True:
            self._quota_headers.clear()
            try:
                data = func(*args, **kwargs)
                return UpstreamResponse(data=data, usage=self._quota_headers.usage, limit=self._quota_headers.limit)

            except RateLimitExceeded as e:
                raise UpstreamThrottled(str(e), retry_after=getattr(e, "timeout", None)) from e

            except AccessUnauthorized as e:
                if not refreshed and self._refresh_access_token():
                    refreshed = True
                    continue
                logger.error(f"Access unauthorized for athlete {self.athlete_id}")
                raise UpstreamAuthExpired(str(e)) from e

            except Fault as e:
                response = getattr(e, "response", None)
                status = getattr(response, "status_code", None)
                if status == 429:
                    raise UpstreamThrottled(str(e), retry_after=_retry_after(response)) from e
                raise UpstreamError(str(e), status=status) from e

    def _refresh_access_token(self) -> bool:
        """
        Refresh the access token through the external refresher.

        Returns:
            True if refresh successful, False otherwise
        """
        if not self.token_refresher:
            logger.error("No token refresher configured")
            return False

        try:
            logger.info(f"Refreshing access token for athlete {self.athlete_id}")
            self.client.access_token = self.token_refresher(self.athlete_id)
            return True
        except Exception as e:
            logger.error(f"Error refreshing token: {e}", exc_info=True)
            return False


def create_strava_client(
    access_token: Optional[str] = None,
    athlete_id: Optional[int] = None,
    token_refresher: Optional[Callable[[Optional[int]], str]] = None,
) -> StravaClient:
    """
    Factory function to create a Strava client.

    Args:
        access_token: OAuth access token
        athlete_id: Athlete the token belongs to
        token_refresher: Callable returning a fresh access token

    Returns:
        Configured StravaClient instance
    """
    return StravaClient(access_token=access_token, athlete_id=athlete_id, token_refresher=token_refresher)
