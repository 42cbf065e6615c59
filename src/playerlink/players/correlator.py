"""
Identity correlator: matches an in-game session id to a verification record.

A session-id line carries only the connection slot, the in-game display name
and the session id; the IP comes from the earlier connect line of the same
slot. The correlator turns that into at most one record mutation.

The matching strategy prioritizes reliability:
1. Same IP, device-checked in the last 10 minutes, awaiting a session id
   (most recent device check wins)
2. Same IP, no session id yet
3. Same launcher nickname (or last seen in-game name), no session id yet
4. The only record awaiting a session id system-wide (30 minute window).
   Two or more such records is ambiguous: the correlator abstains.

Every strategy only considers fully verified records. When nothing matches,
a session id that already belongs to a record is a harmless re-entry
(refresh name / last seen); anything else is queued as an unmapped session
for operators.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from playerlink.db.models import PlayerRecord, utc_now
from playerlink.events.types import SessionIdAssigned
from playerlink.players.lifecycle import VerificationStateMachine
from playerlink.players.registry import PlayerRegistry
from playerlink.tasks.locks import AccountLocks

logger = logging.getLogger(__name__)

# Outcome statuses
MATCHED = "matched"
REENTRY = "reentry"
UNMAPPED = "unmapped"
ABSTAINED = "abstained"

# Strategy names, recorded on outcomes
RECENT_IP_AWAITING = "recent_ip_awaiting"
IP_PENDING = "ip_pending"
DISPLAY_NAME_PENDING = "display_name_pending"
SOLE_AWAITING_CANDIDATE = "sole_awaiting_candidate"

SESSION_SOURCE = "be_log"


@dataclass(frozen=True)
class CorrelationOutcome:
    """
    Result of correlating one session-id event.

    status is one of matched / reentry / unmapped / abstained.
    candidate_ids lists every plausible account when the correlator abstained.
    """
    status: str
    session_id: str
    account_id: Optional[str] = None
    strategy: Optional[str] = None
    candidate_ids: tuple[str, ...] = ()
    completed: bool = False

    def __repr__(self) -> str:
        return f"<CorrelationOutcome({self.status}, account={self.account_id}, strategy={self.strategy})>"


@dataclass
class _StrategyResult:
    record: Optional[PlayerRecord] = None
    candidates: list[PlayerRecord] = field(default_factory=list)

    @property
    def ambiguous(self) -> bool:
        return self.record is None and len(self.candidates) > 1


class IdentityCorrelator:
    """
    Runs the strategy chain for session-id events.

    Usage:
        correlator = IdentityCorrelator(state_machine, locks)
        with storage.session_scope() as session:
            outcome = correlator.correlate(PlayerRegistry(session), event)
    """

    def __init__(
        self,
        state_machine: Optional[VerificationStateMachine] = None,
        locks: Optional[AccountLocks] = None,
        *,
        recent_ip_window: timedelta = timedelta(minutes=10),
        sole_candidate_window: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.locks = locks or AccountLocks()
        self.state_machine = state_machine or VerificationStateMachine(locks=self.locks, clock=clock)
        self.recent_ip_window = recent_ip_window
        self.sole_candidate_window = sole_candidate_window
        self.clock = clock

        self.strategies: list[tuple[str, Callable[[PlayerRegistry, SessionIdAssigned, datetime], _StrategyResult]]] = [
            (RECENT_IP_AWAITING, self._recent_ip_awaiting),
            (IP_PENDING, self._ip_pending),
            (DISPLAY_NAME_PENDING, self._display_name_pending),
            (SOLE_AWAITING_CANDIDATE, self._sole_awaiting_candidate),
        ]

    # =========================================================================
    # Strategies
    # =========================================================================

    def _recent_ip_awaiting(self, registry, event, now) -> _StrategyResult:
        if not event.ip:
            return _StrategyResult()
        matches = registry.find_by_ip(
            event.ip, checked_since=now - self.recent_ip_window, awaiting_only=True
        )
        return _StrategyResult(record=matches[0] if matches else None)

    def _ip_pending(self, registry, event, now) -> _StrategyResult:
        if not event.ip:
            return _StrategyResult()
        matches = registry.find_by_ip(event.ip, pending_only=True)
        return _StrategyResult(record=matches[0] if matches else None)

    def _display_name_pending(self, registry, event, now) -> _StrategyResult:
        # No time window here; a stale record with a reused name can match
        matches = registry.find_by_display_name(event.display_name, pending_only=True)
        return _StrategyResult(record=matches[0] if matches else None)

    def _sole_awaiting_candidate(self, registry, event, now) -> _StrategyResult:
        candidates = registry.find_awaiting_within_window(now - self.sole_candidate_window)
        if len(candidates) == 1:
            return _StrategyResult(record=candidates[0], candidates=candidates)
        return _StrategyResult(candidates=candidates)

    # =========================================================================
    # Main entry point
    # =========================================================================

    def correlate(self, registry: PlayerRegistry, event: SessionIdAssigned) -> CorrelationOutcome:
        """
        Correlate one session-id event.

        On a match the record is updated and committed under the account
        lock, then handed to the state machine. Nothing is mutated when the
        correlator abstains.
        """
        now = self.clock()
        logger.debug(
            "Correlating session %s (name=%s ip=%s)", event.session_id, event.display_name, event.ip
        )

        for name, strategy in self.strategies:
            result = strategy(registry, event, now)
            if result.record is not None:
                outcome = self._apply_match(registry, event, result.record, name, now)
                if outcome is not None:
                    return outcome
                break
            if result.ambiguous:
                return self._abstain(registry, event, result.candidates, name, now)

        # No usable match: re-entry of a session we already know?
        existing = registry.find_by_session_id(event.session_id)
        if existing is not None:
            with self.locks.hold(existing.account_id, registry.session):
                registry.touch_session(existing, event.display_name, at=now)
                registry.session.commit()
            logger.info(
                "Session %s already mapped to %s; refreshed name to %s",
                event.session_id, existing.account_id, event.display_name,
            )
            return CorrelationOutcome(
                status=REENTRY, session_id=event.session_id, account_id=existing.account_id
            )

        registry.upsert_unmapped(event.session_id, event.display_name, event.ip, at=now)
        registry.session.commit()
        logger.warning(
            "Unmapped session %s (name=%s ip=%s): IP changed, not verified, or released manually",
            event.session_id, event.display_name, event.ip,
        )
        return CorrelationOutcome(status=UNMAPPED, session_id=event.session_id)

    def _apply_match(
        self,
        registry: PlayerRegistry,
        event: SessionIdAssigned,
        record: PlayerRecord,
        strategy: str,
        now: datetime,
    ) -> Optional[CorrelationOutcome]:
        """
        Attach the session to the matched record under its lock.

        Returns None when the record resolved a session after the strategy
        read it; the caller then treats the event as unmatched.
        """
        account_id = record.account_id
        with self.locks.hold(account_id, registry.session):
            record = registry.get(account_id, refresh=True)
            if record is None or record.has_resolved_session:
                logger.info(
                    "Account %s resolved session %s before %s could be applied via %s",
                    account_id, record.session_id if record else None, event.session_id, strategy,
                )
                registry.session.rollback()
                return None
            registry.apply_session_id_mapping(
                record, event.session_id, event.display_name, source=SESSION_SOURCE, at=now
            )
            registry.delete_unmapped(event.session_id)
            registry.session.commit()

        logger.info(
            "Session %s mapped to %s via %s (name=%s)",
            event.session_id, account_id, strategy, event.display_name,
        )
        completed = self.state_machine.on_session_mapped(registry, account_id)
        return CorrelationOutcome(
            status=MATCHED,
            session_id=event.session_id,
            account_id=account_id,
            strategy=strategy,
            completed=completed,
        )

    def _abstain(
        self,
        registry: PlayerRegistry,
        event: SessionIdAssigned,
        candidates: list[PlayerRecord],
        strategy: str,
        now: datetime,
    ) -> CorrelationOutcome:
        candidate_ids = tuple(record.account_id for record in candidates)
        logger.warning(
            "Ambiguous session %s (name=%s ip=%s): %d candidates awaiting via %s, not guessing: %s",
            event.session_id, event.display_name, event.ip, len(candidate_ids), strategy,
            ", ".join(candidate_ids),
        )
        registry.record_abstention(
            event.session_id, event.display_name, event.ip, candidate_ids, at=now
        )
        registry.session.commit()
        return CorrelationOutcome(
            status=ABSTAINED,
            session_id=event.session_id,
            strategy=strategy,
            candidate_ids=candidate_ids,
        )
