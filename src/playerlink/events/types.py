"""
Typed events extracted from game server log lines.

Every event is an immutable dataclass carrying the log clock time
(``HH:MM:SS`` as written by the server, no date) plus the parsed fields of
its grammar. ``kind`` is the tag used when dispatching on the variant.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from typing import ClassVar, Optional, Union


@dataclass(frozen=True)
class Connected:
    """A player took a connection slot: ``Player #3 Name (1.2.3.4:2304) connected``."""

    kind: ClassVar[str] = "connected"

    timestamp: time
    connection_id: int
    display_name: str
    ip: str
    port: int


@dataclass(frozen=True)
class SessionIdAssigned:
    """
    The server assigned the hardware-bound session id to a connection slot.

    The line itself does not carry the IP; ``ip`` is filled in from the
    connect line of the same slot when it is known.
    """

    kind: ClassVar[str] = "session_id_assigned"

    timestamp: time
    connection_id: int
    display_name: str
    session_id: str
    ip: Optional[str] = None


@dataclass(frozen=True)
class Disconnected:
    kind: ClassVar[str] = "disconnected"

    timestamp: time
    connection_id: int
    display_name: str


@dataclass(frozen=True)
class AdminLogin:
    """Remote console administrator login."""

    kind: ClassVar[str] = "admin_login"

    timestamp: time
    admin_id: int
    ip: str
    port: int


@dataclass(frozen=True)
class ChatMessage:
    kind: ClassVar[str] = "chat_message"

    timestamp: time
    channel: str
    player_name: str
    message: str


@dataclass(frozen=True)
class ServerWarning:
    """A warning or error line from the server's own error log."""

    kind: ClassVar[str] = "warning"

    timestamp: Optional[time]
    level: str
    text: str


LogEvent = Union[Connected, SessionIdAssigned, Disconnected, AdminLogin, ChatMessage, ServerWarning]
