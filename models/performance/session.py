"""Session summaries and the stream channels fetched for them."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class SessionStreams:
    """Power and time channels of one session, next to its summary."""

    session: Dict[str, Any]
    watts: List[Optional[float]] = field(default_factory=list)
    time: Optional[List[float]] = None

    @property
    def session_id(self) -> Any:
        return self.session.get("id")

    @classmethod
    def from_upstream(cls, session: Dict[str, Any], streams: Dict[str, Any]) -> "SessionStreams":
        """
        Build from a key-by-type stream payload.

        Args:
            session: Session summary
            streams: Mapping channel -> {"data": [...]}

        Returns:
            SessionStreams with empty watts if the channel is missing
        """
        streams = streams or {}
        watts = (streams.get("watts") or {}).get("data") or []
        time = (streams.get("time") or {}).get("data")
        return cls(session=session, watts=list(watts), time=list(time) if time else None)


def parse_start_date(value: Any) -> Optional[datetime]:
    """Parse a session start date (ISO string with optional 'Z', or datetime) as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def start_timestamp(session: Dict[str, Any]) -> int:
    """Epoch seconds of a session's start, 0 when unknown."""
    start = parse_start_date(session.get("start_date"))
    return int(start.timestamp()) if start else 0
