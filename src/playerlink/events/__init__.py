"""
Log event extraction.

Raw server log lines are classified by an ordered list of named matchers
into typed, immutable events:
- Connected / Disconnected: connection slot bookkeeping
- SessionIdAssigned: the in-game session id the correlator resolves
- AdminLogin, ChatMessage, ServerWarning: operational lines
"""

from playerlink.events.extractor import (
    DEFAULT_MATCHERS,
    MATCHERS_BY_CATEGORY,
    extract_event,
    matchers_for,
)
from playerlink.events.types import (
    AdminLogin,
    ChatMessage,
    Connected,
    Disconnected,
    LogEvent,
    ServerWarning,
    SessionIdAssigned,
)

__all__ = [
    "AdminLogin",
    "ChatMessage",
    "Connected",
    "DEFAULT_MATCHERS",
    "Disconnected",
    "LogEvent",
    "MATCHERS_BY_CATEGORY",
    "ServerWarning",
    "SessionIdAssigned",
    "extract_event",
    "matchers_for",
]
