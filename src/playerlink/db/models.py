"""
SQLAlchemy ORM models for PlayerLink.

The schema is built around one verification record per player, keyed by the
stable external account id. The in-game session id is attached to that
record once the correlator has matched a live session to it.

Key design decisions:
- The account id is the primary key; alternate account ids live in a child
  table, the same way name variations hang off a canonical record
- session_id starts as the literal "pending" until a log line resolves it
- Verification invariants are CHECK constraints as well as code paths, so a
  buggy collaborator cannot write a rewarded-but-unmapped record
- Sessions nobody could be matched to are kept for operator follow-up

Tables:
- players: Verification records
- player_account_ids: Alternate account ids seen for a player
- unmapped_sessions: Session ids that could not be matched
- transient_connections: Short-lived connect-line bookkeeping (IP by slot)
- correlation_abstentions: Ambiguous correlations that were not guessed
- chat_log: Chat lines captured from the server
- tail_checkpoints: Persisted byte offsets of followed log files
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# =============================================================================
# Constants
# =============================================================================

# Placeholder stored in players.session_id until a live session is matched
SESSION_PENDING = "pending"

# Session ids are 32 lowercase hex characters (an MD5-sized digest)
SESSION_ID_LENGTH = 32

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    """Naive UTC timestamp, matching how every DateTime column is stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Player Models
# =============================================================================

class PlayerRecord(Base):
    """
    Verification record for one player.

    Created by the web-login layer the first time a player proves their
    account. The device check sets device_verified / last_ip and flags the
    record as awaiting a session id; the correlator then attaches the
    in-game session id observed in the server logs.

    reward_issued is set exactly once, by the verification state machine,
    after every completion side effect has been delivered. It is never unset.
    """
    __tablename__ = "players"

    # Stable external account id (the web-login identity)
    account_id: Mapped[str] = mapped_column(String(32), primary_key=True)

    # Chat platform identity
    chat_account_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    chat_tag: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Name the player set in the launcher; may differ from the in-game name
    nickname: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    nickname_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Verification flags
    web_identity_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    web_verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    device_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_device_check: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    # In-game session
    session_id: Mapped[Optional[str]] = mapped_column(
        String(SESSION_ID_LENGTH), nullable=True, default=SESSION_PENDING
    )
    awaiting_session_id: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    session_id_source: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    session_id_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_seen_in_session: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # One-time completion bookkeeping
    reward_issued: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reward_issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Metadata
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    known_account_ids: Mapped[list["PlayerAccountId"]] = relationship(
        back_populates="player", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "NOT awaiting_session_id OR (web_identity_verified AND device_verified)",
            name="ck_players_awaiting_requires_verified",
        ),
        CheckConstraint(
            "NOT reward_issued OR (web_identity_verified AND device_verified "
            "AND session_id IS NOT NULL AND session_id != 'pending')",
            name="ck_players_reward_requires_complete",
        ),
        Index("idx_players_last_ip", "last_ip"),
        Index("idx_players_session_id", "session_id"),
        Index("idx_players_display_name", "display_name"),
        Index("idx_players_nickname", "nickname"),
        Index("idx_players_awaiting", "awaiting_session_id", "last_device_check"),
    )

    @property
    def is_fully_verified(self) -> bool:
        return bool(self.web_identity_verified and self.device_verified)

    @property
    def has_resolved_session(self) -> bool:
        return bool(self.session_id) and self.session_id != SESSION_PENDING

    def __repr__(self) -> str:
        return f"<PlayerRecord(account_id='{self.account_id}', session_id='{self.session_id}')>"


class PlayerAccountId(Base):
    """
    Alternate account ids seen for a player.

    The device check reports every account id logged in on the machine; all
    of them resolve to the same record. The primary id is stored here too.
    """
    __tablename__ = "player_account_ids"

    id: Mapped[int] = mapped_column(primary_key=True)
    player_account_id: Mapped[str] = mapped_column(
        ForeignKey("players.account_id", ondelete="CASCADE")
    )
    account_id: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    player: Mapped["PlayerRecord"] = relationship(back_populates="known_account_ids")

    __table_args__ = (
        UniqueConstraint("player_account_id", "account_id", name="uq_player_account_ids"),
        Index("idx_player_account_ids_account_id", "account_id"),
    )

    def __repr__(self) -> str:
        return f"<PlayerAccountId('{self.account_id}' -> '{self.player_account_id}')>"


class UnmappedSession(Base):
    """
    Session ids seen in the logs that no player record could be matched to.

    Upserted by session id; deleted when a later event resolves the same
    session id to a player. Operators inspect this table to release players
    manually (changed IP, not verified, whitelisted by hand).
    """
    __tablename__ = "unmapped_sessions"

    session_id: Mapped[str] = mapped_column(String(SESSION_ID_LENGTH), primary_key=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    last_seen: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    source: Mapped[str] = mapped_column(String(30), default="be_log", nullable=False)

    def __repr__(self) -> str:
        return f"<UnmappedSession('{self.session_id}', name='{self.display_name}')>"


class TransientConnection(Base):
    """
    Connect-line bookkeeping: which IP sits in which connection slot.

    The session-id line only carries the connection slot number, so the IP
    comes from the earlier connect line of the same slot. Rows are removed
    on disconnect and expired by the periodic sweep.
    """
    __tablename__ = "transient_connections"

    id: Mapped[int] = mapped_column(primary_key=True)
    source: Mapped[str] = mapped_column(String(255), nullable=False)
    connection_id: Mapped[int] = mapped_column(Integer, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ip: Mapped[str] = mapped_column(String(45), nullable=False)
    connected_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("source", "connection_id", name="uq_transient_connection_slot"),
        Index("idx_transient_connections_connected_at", "connected_at"),
    )

    def __repr__(self) -> str:
        return f"<TransientConnection(#{self.connection_id} {self.ip})>"


class CorrelationAbstention(Base):
    """
    A session id the correlator refused to assign because several players
    were equally plausible. Nothing is mutated when this is written.
    """
    __tablename__ = "correlation_abstentions"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(String(SESSION_ID_LENGTH), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    candidate_account_ids: Mapped[list] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_correlation_abstentions_session", "session_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<CorrelationAbstention('{self.session_id}', candidates={self.candidate_account_ids})>"


class ChatLogEntry(Base):
    """Chat line captured from the server chat log."""
    __tablename__ = "chat_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    log_time: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    channel: Mapped[str] = mapped_column(String(30), nullable=False)
    player_name: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<ChatLogEntry({self.channel} {self.player_name})>"


class TailCheckpoint(Base):
    """Byte offset and observed size of one followed log file."""

    __tablename__ = "tail_checkpoints"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    byte_offset: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<TailCheckpoint(key='{self.key}', offset={self.byte_offset})>"
