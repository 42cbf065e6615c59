"""
Database module for PlayerLink.

Provides SQLAlchemy ORM models and the explicit storage context.

Usage:
    from playerlink.db import create_storage, PlayerRecord

    storage = create_storage("sqlite:///playerlink.db")
    with storage.session_scope() as session:
        players = session.query(PlayerRecord).all()
"""

from playerlink.db.models import (
    SESSION_PENDING,
    Base,
    ChatLogEntry,
    CorrelationAbstention,
    PlayerAccountId,
    PlayerRecord,
    TailCheckpoint,
    TransientConnection,
    UnmappedSession,
    utc_now,
)
from playerlink.db.session import StorageContext, create_storage, get_engine

__all__ = [
    # Base
    "Base",
    "SESSION_PENDING",
    "utc_now",
    # Models
    "PlayerRecord",
    "PlayerAccountId",
    "UnmappedSession",
    "TransientConnection",
    "CorrelationAbstention",
    "ChatLogEntry",
    "TailCheckpoint",
    # Storage
    "StorageContext",
    "create_storage",
    "get_engine",
]
