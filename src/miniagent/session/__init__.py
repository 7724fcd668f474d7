"""Sessions — persistence and the UI event wire."""

from miniagent.session.store import SessionData, SessionError, SessionManager
from miniagent.session.wire import EventType, Wire, WireEvent

__all__ = [
    "SessionData",
    "SessionError",
    "SessionManager",
    "EventType",
    "Wire",
    "WireEvent",
]
