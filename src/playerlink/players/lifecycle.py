"""
Verification lifecycle of a player record.

States are derived from the record's flags, never stored:

    UNVERIFIED -> WEB_VERIFIED -> DEVICE_VERIFIED -> SESSION_MAPPED -> COMPLETE -> REWARDED

Web and device verification may arrive in either order. Once a record is
COMPLETE (both flags set and a session id resolved) the state machine
delivers one CompletionEvent to every sink in order: access list, role
grant, reward, notification. reward_issued is committed only after all of
them succeed; a failing sink leaves the flag false so the next sweep can
retry the whole sequence. Sinks therefore have to tolerate a repeat.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence

from playerlink.db.models import PlayerRecord, utc_now
from playerlink.errors import DispatchError
from playerlink.players.registry import PlayerRegistry
from playerlink.tasks.locks import AccountLocks

logger = logging.getLogger(__name__)


class VerificationState(str, Enum):
    UNVERIFIED = "unverified"
    WEB_VERIFIED = "web_verified"
    DEVICE_VERIFIED = "device_verified"
    SESSION_MAPPED = "session_mapped"
    COMPLETE = "complete"
    REWARDED = "rewarded"


def derive_state(record: PlayerRecord) -> VerificationState:
    """Pure function of the record's flags."""
    if record.reward_issued:
        return VerificationState.REWARDED
    if record.is_fully_verified and record.has_resolved_session:
        return VerificationState.COMPLETE
    if record.has_resolved_session:
        # Mapped by an operator or an earlier run before a flag was revoked
        return VerificationState.SESSION_MAPPED
    if record.is_fully_verified:
        return VerificationState.DEVICE_VERIFIED
    if record.web_identity_verified:
        return VerificationState.WEB_VERIFIED
    return VerificationState.UNVERIFIED


@dataclass(frozen=True)
class CompletionEvent:
    """Everything a sink needs to act on a completed verification."""
    account_id: str
    session_id: str
    chat_account_id: Optional[str] = None
    chat_tag: Optional[str] = None
    display_name: Optional[str] = None

    @classmethod
    def from_record(cls, record: PlayerRecord) -> "CompletionEvent":
        return cls(
            account_id=record.account_id,
            session_id=record.session_id,
            chat_account_id=record.chat_account_id,
            chat_tag=record.chat_tag,
            display_name=record.display_name,
        )


class CompletionSink(Protocol):
    """A side effect of completion. Raises DispatchError on failure."""

    name: str

    def deliver(self, event: CompletionEvent) -> None:
        ...


class VerificationStateMachine:
    """
    Drives a record from COMPLETE to REWARDED exactly once.

    Usage:
        machine = VerificationStateMachine(sinks, locks)
        with storage.session_scope() as session:
            machine.on_session_mapped(PlayerRegistry(session), account_id)
    """

    def __init__(
        self,
        sinks: Sequence[CompletionSink] = (),
        locks: Optional[AccountLocks] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.sinks = list(sinks)
        self.locks = locks or AccountLocks()
        self.clock = clock

    def on_session_mapped(self, registry: PlayerRegistry, account_id: str) -> bool:
        """
        Run the completion sequence for one account if it is due.

        Returns:
            True if every sink succeeded and reward_issued was committed
        """
        session = registry.session
        with self.locks.hold(account_id, session):
            record = registry.get(account_id, refresh=True)
            if record is None:
                logger.warning("Completion check for unknown account %s", account_id)
                session.rollback()
                return False

            state = derive_state(record)
            if state is not VerificationState.COMPLETE:
                logger.info(
                    "Account %s is %s; no completion to deliver (web=%s device=%s rewarded=%s)",
                    account_id, state.value, record.web_identity_verified,
                    record.device_verified, record.reward_issued,
                )
                session.rollback()
                return False

            event = CompletionEvent.from_record(record)
            for sink in self.sinks:
                try:
                    sink.deliver(event)
                except DispatchError as exc:
                    logger.error(
                        "Completion for %s stopped at sink %s: %s (will retry)",
                        account_id, exc.sink or sink.name, exc,
                    )
                    session.rollback()
                    return False

            registry.mark_reward_issued(record, at=self.clock())
            session.commit()

        logger.info("Verification complete for %s (session %s)", account_id, event.session_id)
        return True

    def resume_pending(self, registry: PlayerRegistry) -> int:
        """
        Retry every record stuck in COMPLETE.

        Returns:
            Number of records that reached REWARDED
        """
        account_ids = [record.account_id for record in registry.find_pending_completions()]
        # End the read transaction before taking per-account locks
        registry.session.rollback()
        if not account_ids:
            return 0

        logger.info("Retrying %d pending completion(s)", len(account_ids))
        completed = 0
        for account_id in account_ids:
            if self.on_session_mapped(registry, account_id):
                completed += 1
        return completed
