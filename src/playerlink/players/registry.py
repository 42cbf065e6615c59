"""
Player registry: every read and write of verification records.

The registry wraps one SQLAlchemy session. It flushes but never commits;
committing is left to the caller (the correlator and the state machine
commit inside their per-account critical sections).

Correlation lookups only ever return fully verified records (web identity
AND device both verified). The one exception is find_by_session_id, which
backs the idempotent re-entry path and matches purely by session id.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from playerlink.db.models import (
    SESSION_PENDING,
    CorrelationAbstention,
    PlayerAccountId,
    PlayerRecord,
    TransientConnection,
    UnmappedSession,
    utc_now,
)
from playerlink.errors import RecordNotFoundError


def _fully_verified():
    return (PlayerRecord.web_identity_verified.is_(True)) & (PlayerRecord.device_verified.is_(True))


def _session_pending():
    return or_(PlayerRecord.session_id.is_(None), PlayerRecord.session_id == SESSION_PENDING)


class PlayerRegistry:
    """
    Persistent store of player verification records.

    Usage:
        with storage.session_scope() as session:
            registry = PlayerRegistry(session)
            registry.register_web_verification("7656...", chat_account_id="1234")
            registry.record_device_check("7656...", ip="1.2.3.4")
    """

    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # Record lookups
    # =========================================================================

    def get(self, account_id: str, refresh: bool = False) -> Optional[PlayerRecord]:
        """
        Fetch a record by primary account id.

        Args:
            account_id: Stable external account id
            refresh: Reload from the database even if the record is already
                in the session (use after taking the account lock)
        """
        if refresh:
            return self.session.execute(
                select(PlayerRecord)
                .where(PlayerRecord.account_id == account_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        return self.session.get(PlayerRecord, account_id)

    def find_by_account_id(self, account_id: str) -> Optional[PlayerRecord]:
        """Find a record by its primary id or any alternate account id seen for it."""
        record = self.get(account_id)
        if record is not None:
            return record
        return self.session.execute(
            select(PlayerRecord)
            .join(PlayerAccountId, PlayerAccountId.player_account_id == PlayerRecord.account_id)
            .where(PlayerAccountId.account_id == account_id)
            .limit(1)
        ).scalar_one_or_none()

    def find_by_ip(
        self,
        ip: str,
        *,
        checked_since: Optional[datetime] = None,
        awaiting_only: bool = False,
        pending_only: bool = False,
    ) -> list[PlayerRecord]:
        """
        Fully verified records whose last device check came from ``ip``.

        Ordered by most recent device check first.
        """
        query = select(PlayerRecord).where(PlayerRecord.last_ip == ip, _fully_verified())
        if checked_since is not None:
            query = query.where(PlayerRecord.last_device_check >= checked_since)
        if awaiting_only:
            query = query.where(PlayerRecord.awaiting_session_id.is_(True))
        if pending_only:
            query = query.where(_session_pending())
        query = query.order_by(PlayerRecord.last_device_check.desc())
        return list(self.session.execute(query).scalars())

    def find_by_display_name(self, display_name: str, *, pending_only: bool = True) -> list[PlayerRecord]:
        """
        Fully verified records known under this exact name (no time window).

        Matches the launcher nickname the player declared, or the in-game
        name last seen for the record.
        """
        query = select(PlayerRecord).where(
            or_(PlayerRecord.nickname == display_name, PlayerRecord.display_name == display_name),
            _fully_verified(),
        )
        if pending_only:
            query = query.where(_session_pending())
        query = query.order_by(PlayerRecord.last_device_check.desc())
        return list(self.session.execute(query).scalars())

    def find_awaiting_within_window(self, checked_since: datetime) -> list[PlayerRecord]:
        """Fully verified records awaiting a session id, device-checked since the cutoff."""
        query = (
            select(PlayerRecord)
            .where(
                _fully_verified(),
                PlayerRecord.awaiting_session_id.is_(True),
                PlayerRecord.last_device_check >= checked_since,
            )
            .order_by(PlayerRecord.last_device_check.desc())
        )
        return list(self.session.execute(query).scalars())

    def find_by_session_id(self, session_id: str) -> Optional[PlayerRecord]:
        """Record already holding this session id, regardless of verification flags."""
        return self.session.execute(
            select(PlayerRecord).where(PlayerRecord.session_id == session_id).limit(1)
        ).scalar_one_or_none()

    def find_pending_completions(self) -> list[PlayerRecord]:
        """Fully verified, session-mapped records whose completion was never recorded."""
        query = (
            select(PlayerRecord)
            .where(
                _fully_verified(),
                PlayerRecord.session_id.is_not(None),
                PlayerRecord.session_id != SESSION_PENDING,
                PlayerRecord.reward_issued.is_(False),
            )
            .order_by(PlayerRecord.session_id_updated_at)
        )
        return list(self.session.execute(query).scalars())

    # =========================================================================
    # Verification writes (web-login and device check layers)
    # =========================================================================

    def register_web_verification(
        self,
        account_id: str,
        chat_account_id: Optional[str] = None,
        chat_tag: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> PlayerRecord:
        """Create or update a record after a successful web login."""
        at = at or utc_now()
        record = self.get(account_id)
        if record is None:
            record = PlayerRecord(account_id=account_id, session_id=SESSION_PENDING)
            self.session.add(record)
            self._add_known_id(record, account_id)

        record.web_identity_verified = True
        record.web_verified_at = at
        if chat_account_id is not None:
            record.chat_account_id = chat_account_id
        if chat_tag is not None:
            record.chat_tag = chat_tag
        self._refresh_awaiting(record)
        self.session.flush()
        return record

    def record_device_check(
        self,
        account_id: str,
        ip: str,
        account_ids: Iterable[str] = (),
        at: Optional[datetime] = None,
    ) -> PlayerRecord:
        """
        Record a device check: the launcher confirmed the account from ``ip``.

        Every account id logged in on the device is remembered as an alternate
        id. If the web identity is verified too and no session id is known yet,
        the record starts awaiting one.
        """
        at = at or utc_now()
        record = self.find_by_account_id(account_id)
        if record is None:
            record = PlayerRecord(account_id=account_id, session_id=SESSION_PENDING)
            self.session.add(record)

        record.device_verified = True
        record.last_ip = ip
        record.last_device_check = at
        for known in [account_id, *account_ids]:
            self._add_known_id(record, known)
        self._refresh_awaiting(record)
        self.session.flush()
        return record

    def update_nickname(self, account_id: str, nickname: str, at: Optional[datetime] = None) -> PlayerRecord:
        """Store the name the player declared in the launcher."""
        record = self.find_by_account_id(account_id)
        if record is None:
            raise RecordNotFoundError(f"No player record for account {account_id}")
        record.nickname = nickname
        record.nickname_updated_at = at or utc_now()
        self.session.flush()
        return record

    def _add_known_id(self, record: PlayerRecord, account_id: str) -> None:
        if any(known.account_id == account_id for known in record.known_account_ids):
            return
        record.known_account_ids.append(PlayerAccountId(account_id=account_id))

    @staticmethod
    def _refresh_awaiting(record: PlayerRecord) -> None:
        record.awaiting_session_id = record.is_fully_verified and not record.has_resolved_session

    # =========================================================================
    # Session mapping
    # =========================================================================

    def apply_session_id_mapping(
        self,
        record: PlayerRecord,
        session_id: str,
        display_name: str,
        source: str = "be_log",
        at: Optional[datetime] = None,
    ) -> PlayerRecord:
        """Attach a session id to a record and stop it awaiting one."""
        at = at or utc_now()
        record.session_id = session_id
        record.display_name = display_name
        record.session_id_source = source
        record.session_id_updated_at = at
        record.last_seen_in_session = at
        record.awaiting_session_id = False
        self.session.flush()
        return record

    def touch_session(self, record: PlayerRecord, display_name: str, at: Optional[datetime] = None) -> PlayerRecord:
        """Re-entry of an already mapped session: refresh name and last seen only."""
        record.display_name = display_name
        record.last_seen_in_session = at or utc_now()
        self.session.flush()
        return record

    def mark_reward_issued(self, record: PlayerRecord, at: Optional[datetime] = None) -> PlayerRecord:
        """Set the one-time completion flag. Never unset."""
        if not (record.is_fully_verified and record.has_resolved_session):
            raise ValueError(f"Record {record.account_id} is not complete; cannot mark reward issued")
        record.reward_issued = True
        record.reward_issued_at = at or utc_now()
        self.session.flush()
        return record

    def require(self, account_id: str) -> PlayerRecord:
        record = self.get(account_id)
        if record is None:
            raise RecordNotFoundError(f"No player record for account {account_id}")
        return record

    # =========================================================================
    # Unmapped sessions and abstentions
    # =========================================================================

    def upsert_unmapped(
        self,
        session_id: str,
        display_name: Optional[str],
        ip: Optional[str],
        at: Optional[datetime] = None,
        source: str = "be_log",
    ) -> UnmappedSession:
        at = at or utc_now()
        entry = self.session.get(UnmappedSession, session_id)
        if entry is None:
            entry = UnmappedSession(session_id=session_id)
            self.session.add(entry)
        entry.display_name = display_name
        entry.last_ip = ip
        entry.last_seen = at
        entry.source = source
        self.session.flush()
        return entry

    def delete_unmapped(self, session_id: str) -> bool:
        """Remove the unmapped entry for a session id. Returns True if one existed."""
        result = self.session.execute(
            delete(UnmappedSession).where(UnmappedSession.session_id == session_id)
        )
        return result.rowcount > 0

    def list_unmapped(self, limit: int = 100) -> list[UnmappedSession]:
        query = select(UnmappedSession).order_by(UnmappedSession.last_seen.desc()).limit(limit)
        return list(self.session.execute(query).scalars())

    def record_abstention(
        self,
        session_id: str,
        display_name: Optional[str],
        ip: Optional[str],
        candidate_ids: Iterable[str],
        at: Optional[datetime] = None,
    ) -> CorrelationAbstention:
        abstention = CorrelationAbstention(
            session_id=session_id,
            display_name=display_name,
            ip=ip,
            candidate_account_ids=list(candidate_ids),
            created_at=at or utc_now(),
        )
        self.session.add(abstention)
        self.session.flush()
        return abstention

    def list_abstentions(self, limit: int = 50) -> list[CorrelationAbstention]:
        query = (
            select(CorrelationAbstention)
            .order_by(CorrelationAbstention.created_at.desc(), CorrelationAbstention.id.desc())
            .limit(limit)
        )
        return list(self.session.execute(query).scalars())

    # =========================================================================
    # Transient connection bookkeeping
    # =========================================================================

    def track_connection(
        self,
        source: str,
        connection_id: int,
        ip: str,
        display_name: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> TransientConnection:
        """Remember which IP sits in a connection slot (a reused slot is overwritten)."""
        conn = self.session.execute(
            select(TransientConnection).where(
                TransientConnection.source == source,
                TransientConnection.connection_id == connection_id,
            )
        ).scalar_one_or_none()
        if conn is None:
            conn = TransientConnection(source=source, connection_id=connection_id)
            self.session.add(conn)
        conn.ip = ip
        conn.display_name = display_name
        conn.connected_at = at or utc_now()
        self.session.flush()
        return conn

    def resolve_connection_ip(self, source: str, connection_id: int) -> Optional[str]:
        return self.session.execute(
            select(TransientConnection.ip).where(
                TransientConnection.source == source,
                TransientConnection.connection_id == connection_id,
            )
        ).scalar_one_or_none()

    def forget_connection(self, source: str, connection_id: int) -> bool:
        result = self.session.execute(
            delete(TransientConnection).where(
                TransientConnection.source == source,
                TransientConnection.connection_id == connection_id,
            )
        )
        return result.rowcount > 0

    def expire_connections(self, older_than: datetime) -> int:
        """Drop connection slots not refreshed since ``older_than``. Returns rows removed."""
        result = self.session.execute(
            delete(TransientConnection).where(TransientConnection.connected_at < older_than)
        )
        return result.rowcount
