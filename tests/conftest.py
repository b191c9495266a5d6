"""
Pytest configuration and fixtures.

Tests run against an in-memory SQLite database and a scripted fake
upstream; no network access and no real sleeping.
"""

import os

# Must be set before config.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DEBUG", "True")

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base
from utils.request_scheduler import RequestScheduler, UpstreamResponse


class FakeClock:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeUpstream:
    """
    Scripted stand-in for StravaClient.

    Sessions are served in pages; streams are looked up by session ID. A
    stream entry that is an exception instance is raised instead.
    """

    def __init__(self, sessions: Optional[List[Dict[str, Any]]] = None, streams: Optional[Dict[Any, Any]] = None):
        self.sessions = sessions or []
        self.streams = streams or {}
        self.list_calls: List[Dict[str, Any]] = []
        self.stream_calls: List[Any] = []
        self.list_error: Optional[Exception] = None

    def list_sessions(self, after=None, per_page=200, page=1):
        self.list_calls.append({"after": after, "per_page": per_page, "page": page})
        if self.list_error is not None:
            raise self.list_error
        start = (page - 1) * per_page
        return UpstreamResponse(data=self.sessions[start:start + per_page], usage=len(self.list_calls), limit=100)

    def get_session_streams(self, session_id, keys=None):
        self.stream_calls.append(session_id)
        payload = self.streams.get(session_id)
        if isinstance(payload, Exception):
            raise payload
        return payload or {}


def make_session(
    session_id: int,
    start: datetime,
    device_watts: bool = True,
    moving_time: int = 3600,
    weighted_average_watts: Optional[float] = None,
    average_watts: Optional[float] = None,
) -> Dict[str, Any]:
    """Session summary as returned by the upstream's activity list."""
    return {
        "id": session_id,
        "start_date": start.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "device_watts": device_watts,
        "moving_time": moving_time,
        "weighted_average_watts": weighted_average_watts,
        "average_watts": average_watts,
    }


def make_streams(watts: List[Optional[float]], interval: float = 1.0) -> Dict[str, Any]:
    """Key-by-type stream payload for a power channel."""
    return {
        "watts": {"data": list(watts)},
        "time": {"data": [index * interval for index in range(len(watts))]},
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    """Scheduler with no inter-request delay and a fake clock."""
    return RequestScheduler(
        name="test",
        limit=100,
        window_seconds=900,
        min_delay_ms=0,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def session_factory():
    """Session factory bound to a fresh in-memory database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def upstream():
    return FakeUpstream()
