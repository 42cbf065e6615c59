"""
Log line classification.

Turns one raw log line into at most one typed event. The grammars handled:

- Connect:     ``12:00:00 : Player #3 JohnDoe (1.2.3.4:2304) connected``
- Session id:  ``12:00:01 : Player #3 JohnDoe - BE GUID: <32 hex>``
               (``SID:`` is accepted as the label too)
- Disconnect:  ``12:30:00 : Player #3 JohnDoe disconnected``
- Admin login: ``12:00:00 : RCon admin #0 (5.6.7.8:51234) logged in``
- Chat:        ``12:00:00 : Global: JohnDoe: hello``
- Warning:     any line mentioning Warning / Error

Each grammar is a named matcher function ``line -> Optional[LogEvent]``.
Matchers are tried in order and the first hit wins. Lines nothing matches
are expected noise and are dropped without logging. A matcher that finds
its shape but cannot parse a capture (bad clock value, wrong id length)
reports no match rather than raising.
"""

from __future__ import annotations

import re
from datetime import time
from typing import Callable, Optional

from playerlink.db.models import SESSION_ID_LENGTH
from playerlink.events.types import (
    AdminLogin,
    ChatMessage,
    Connected,
    Disconnected,
    LogEvent,
    ServerWarning,
    SessionIdAssigned,
)

Matcher = Callable[[str], Optional[LogEvent]]

_CLOCK = r"(?P<clock>\d{2}:\d{2}:\d{2})"

CONNECT_RE = re.compile(
    _CLOCK + r" : Player #(?P<slot>\d+) (?P<name>.+?) \((?P<ip>[^()\s]+?):(?P<port>\d+)\) connected\s*$"
)
SESSION_ID_RE = re.compile(
    _CLOCK + r" : Player #(?P<slot>\d+) (?P<name>.+?) - (?:BE GUID|SID): (?P<sid>[0-9A-Fa-f]+)\s*$"
)
DISCONNECT_RE = re.compile(
    _CLOCK + r" : Player #(?P<slot>\d+) (?P<name>.+?) disconnected\s*$"
)
ADMIN_LOGIN_RE = re.compile(
    _CLOCK + r" : RCon admin #(?P<admin>\d+) \((?P<ip>[^()\s]+?):(?P<port>\d+)\) logged in"
)
CHAT_RE = re.compile(
    _CLOCK + r" : (?P<channel>[A-Za-z]+): (?P<name>.+?): (?P<message>.+)$"
)
WARNING_RE = re.compile(r"\b(?P<level>Warning|Error|error)\b")
LEADING_CLOCK_RE = re.compile(r"^" + _CLOCK)


def parse_clock(value: str) -> Optional[time]:
    """Parse ``HH:MM:SS``; returns None for out-of-range values like 25:61:00."""
    try:
        hours, minutes, seconds = (int(part) for part in value.split(":"))
        return time(hours, minutes, seconds)
    except ValueError:
        return None


def _strip(line: str) -> str:
    return line.lstrip("\ufeff").strip()


# =============================================================================
# Matchers
# =============================================================================

def match_connected(line: str) -> Optional[Connected]:
    m = CONNECT_RE.match(_strip(line))
    if not m:
        return None
    clock = parse_clock(m.group("clock"))
    if clock is None:
        return None
    return Connected(
        timestamp=clock,
        connection_id=int(m.group("slot")),
        display_name=m.group("name"),
        ip=m.group("ip"),
        port=int(m.group("port")),
    )


def match_session_id(line: str) -> Optional[SessionIdAssigned]:
    m = SESSION_ID_RE.match(_strip(line))
    if not m:
        return None
    clock = parse_clock(m.group("clock"))
    session_id = m.group("sid")
    if clock is None or len(session_id) != SESSION_ID_LENGTH:
        return None
    return SessionIdAssigned(
        timestamp=clock,
        connection_id=int(m.group("slot")),
        display_name=m.group("name"),
        session_id=session_id.lower(),
    )


def match_disconnected(line: str) -> Optional[Disconnected]:
    m = DISCONNECT_RE.match(_strip(line))
    if not m:
        return None
    clock = parse_clock(m.group("clock"))
    if clock is None:
        return None
    return Disconnected(
        timestamp=clock,
        connection_id=int(m.group("slot")),
        display_name=m.group("name"),
    )


def match_admin_login(line: str) -> Optional[AdminLogin]:
    m = ADMIN_LOGIN_RE.match(_strip(line))
    if not m:
        return None
    clock = parse_clock(m.group("clock"))
    if clock is None:
        return None
    return AdminLogin(
        timestamp=clock,
        admin_id=int(m.group("admin")),
        ip=m.group("ip"),
        port=int(m.group("port")),
    )


def match_chat(line: str) -> Optional[ChatMessage]:
    m = CHAT_RE.match(_strip(line))
    if not m:
        return None
    clock = parse_clock(m.group("clock"))
    if clock is None:
        return None
    return ChatMessage(
        timestamp=clock,
        channel=m.group("channel"),
        player_name=m.group("name"),
        message=m.group("message"),
    )


def match_warning(line: str) -> Optional[ServerWarning]:
    text = _strip(line)
    m = WARNING_RE.search(text)
    if not m:
        return None
    level = "warning" if m.group("level") == "Warning" else "error"
    clock_match = LEADING_CLOCK_RE.match(text)
    clock = parse_clock(clock_match.group("clock")) if clock_match else None
    return ServerWarning(timestamp=clock, level=level, text=text)


# Order matters: the session-id and connect grammars are more specific than
# disconnect (a name may end in "disconnected"), and chat / warning are the
# loosest shapes so they go last.
DEFAULT_MATCHERS: tuple[Matcher, ...] = (
    match_connected,
    match_session_id,
    match_disconnected,
    match_admin_login,
    match_chat,
    match_warning,
)

MATCHERS_BY_CATEGORY: dict[str, tuple[Matcher, ...]] = {
    "be": (match_connected, match_session_id, match_disconnected, match_admin_login),
    "chat": (match_chat,),
    "error": (match_warning,),
}


def extract_event(line: str, matchers: tuple[Matcher, ...] = DEFAULT_MATCHERS) -> Optional[LogEvent]:
    """
    Classify a log line.

    Args:
        line: Raw line text (BOM and surrounding whitespace are tolerated)
        matchers: Ordered matchers to try; defaults to every known grammar

    Returns:
        The first matcher's event, or None if no matcher recognises the line
    """
    if not line or not line.strip():
        return None
    for matcher in matchers:
        event = matcher(line)
        if event is not None:
            return event
    return None


def matchers_for(category: str) -> tuple[Matcher, ...]:
    """Return the matchers for a log category, raising KeyError for unknown names."""
    return MATCHERS_BY_CATEGORY[category]
