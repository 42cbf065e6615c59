"""
Reconciliation service: wires log followers to the correlator.

Pipeline per line:
    log file -> TailReader -> extract_event -> handler -> registry / correlator

One follower task per log category runs on the event loop. Each batch of
lines is handled in a worker thread (asyncio.to_thread) in file order, so
database and HTTP calls never block the loop. A periodic sweep expires stale
connection bookkeeping and retries completions whose side effects failed.

Usage:
    storage = create_storage(settings.database_url)
    service = ReconciliationService(storage, sinks, settings=settings)
    await service.run(stop_event)
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from playerlink.config import Settings, get_settings
from playerlink.db.models import ChatLogEntry, utc_now
from playerlink.db.session import StorageContext
from playerlink.events.extractor import extract_event, matchers_for
from playerlink.events.types import (
    AdminLogin,
    ChatMessage,
    Connected,
    Disconnected,
    LogEvent,
    ServerWarning,
    SessionIdAssigned,
)
from playerlink.players.correlator import (
    ABSTAINED,
    MATCHED,
    REENTRY,
    UNMAPPED,
    CorrelationOutcome,
    IdentityCorrelator,
)
from playerlink.players.lifecycle import CompletionSink, VerificationStateMachine
from playerlink.players.registry import PlayerRegistry
from playerlink.tail.offsets import CheckpointOffsetStore, OffsetStore
from playerlink.tail.reader import sleep_or_stop
from playerlink.tail.registry import DailyLogFollower, ReaderRegistry
from playerlink.tasks.locks import AccountLocks

logger = logging.getLogger(__name__)

BE_CATEGORY = "be"
CHAT_CATEGORY = "chat"
ERROR_CATEGORY = "error"


@dataclass
class ServiceStats:
    """
    Counters of one monitor run.

    Updated from several worker threads at once; go through increment()
    and record_outcome() rather than mutating the fields directly.
    """
    lines_seen: int = 0
    events: int = 0
    matched: int = 0
    reentries: int = 0
    unmapped: int = 0
    abstained: int = 0
    completions: int = 0
    chat_messages: int = 0
    warnings: int = 0
    errors: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def record_outcome(self, outcome: CorrelationOutcome) -> None:
        counter = {
            MATCHED: "matched",
            REENTRY: "reentries",
            UNMAPPED: "unmapped",
            ABSTAINED: "abstained",
        }.get(outcome.status)
        with self._lock:
            if counter is not None:
                setattr(self, counter, getattr(self, counter) + 1)
            if outcome.completed:
                self.completions += 1

    def summary(self) -> str:
        """Return a human-readable summary of the run."""
        return "\n".join([
            "Monitor summary:",
            f"  Lines read:           {self.lines_seen}",
            f"  Events recognised:    {self.events}",
            f"  Sessions matched:     {self.matched}",
            f"  Re-entries:           {self.reentries}",
            f"  Unmapped sessions:    {self.unmapped}",
            f"  Abstentions:          {self.abstained}",
            f"  Completions:          {self.completions}",
            f"  Chat messages:        {self.chat_messages}",
            f"  Server warnings:      {self.warnings}",
            f"  Errors:               {self.errors}",
        ])


class ReconciliationService:
    """Owns the followers, the correlator and the sweep of one monitor process."""

    def __init__(
        self,
        storage: StorageContext,
        sinks: Sequence[CompletionSink] = (),
        *,
        settings: Optional[Settings] = None,
        locks: Optional[AccountLocks] = None,
        offset_store: Optional[OffsetStore] = None,
        clock: Callable[[], datetime] = utc_now,
        today: Callable[[], date] = date.today,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.locks = locks or AccountLocks()
        self.clock = clock
        self.today = today
        self.offset_store = offset_store or CheckpointOffsetStore(storage)

        self.state_machine = VerificationStateMachine(sinks, self.locks, clock)
        self.correlator = IdentityCorrelator(
            self.state_machine,
            self.locks,
            recent_ip_window=timedelta(minutes=self.settings.recent_ip_window_minutes),
            sole_candidate_window=timedelta(minutes=self.settings.sole_candidate_window_minutes),
            clock=clock,
        )
        self.readers = ReaderRegistry()
        self.stats = ServiceStats()

    # =========================================================================
    # Line handling (runs in worker threads)
    # =========================================================================

    def handle_line(self, category: str, line: str) -> Optional[LogEvent]:
        """
        Classify and apply one log line.

        Returns:
            The recognised event, or None for noise and dropped events
        """
        self.stats.increment("lines_seen")
        event = extract_event(line, matchers_for(category))
        if event is None:
            return None
        self.stats.increment("events")

        try:
            with self.storage.session_scope() as session:
                self.handle_event(PlayerRegistry(session), event, source=category)
        except (SQLAlchemyError, TimeoutError) as exc:
            # Dropped; an equivalent later event heals through re-entry
            self.stats.increment("errors")
            logger.error("Dropped %s event from %s log: %s", event.kind, category, exc)
            return None
        except Exception:
            # The reader has moved past this line; keep going with the rest of the batch
            self.stats.increment("errors")
            logger.exception("Error handling %s event from %s log: %r", event.kind, category, line)
            return None
        return event

    def handle_lines(self, category: str, lines: list[str]) -> int:
        """Handle a batch in order. Returns the number of recognised events."""
        return sum(1 for line in lines if self.handle_line(category, line) is not None)

    def handle_event(self, registry: PlayerRegistry, event: LogEvent, source: str = BE_CATEGORY) -> Optional[CorrelationOutcome]:
        now = self.clock()

        if isinstance(event, Connected):
            registry.track_connection(source, event.connection_id, event.ip, event.display_name, at=now)
            logger.info("%s [CONNECT] #%d %s (%s)", event.timestamp, event.connection_id, event.display_name, event.ip)
            return None

        if isinstance(event, SessionIdAssigned):
            if event.ip is None:
                event = replace(event, ip=registry.resolve_connection_ip(source, event.connection_id))
            if event.ip is None:
                logger.info(
                    "No connect line seen for #%d %s; correlating without IP",
                    event.connection_id, event.display_name,
                )
            outcome = self.correlator.correlate(registry, event)
            self.stats.record_outcome(outcome)
            return outcome

        if isinstance(event, Disconnected):
            registry.forget_connection(source, event.connection_id)
            logger.info("%s [DISCONNECT] #%d %s", event.timestamp, event.connection_id, event.display_name)
            return None

        if isinstance(event, AdminLogin):
            logger.info("%s [ADMIN] RCon admin #%d logged in from %s", event.timestamp, event.admin_id, event.ip)
            return None

        if isinstance(event, ChatMessage):
            registry.session.add(
                ChatLogEntry(
                    log_time=event.timestamp.strftime("%H:%M:%S"),
                    channel=event.channel,
                    player_name=event.player_name,
                    message=event.message,
                    received_at=now,
                )
            )
            self.stats.increment("chat_messages")
            logger.info("%s [CHAT %s] %s: %s", event.timestamp, event.channel, event.player_name, event.message)
            return None

        if isinstance(event, ServerWarning):
            self.stats.increment("warnings")
            logger.warning("[SERVER %s] %s", event.level.upper(), event.text)
            return None

        return None

    async def on_lines(self, category: str, lines: list[str]) -> None:
        await asyncio.to_thread(self.handle_lines, category, lines)

    # =========================================================================
    # Sweep
    # =========================================================================

    def sweep(self) -> tuple[int, int]:
        """
        Expire stale connection slots and retry pending completions.

        Returns:
            Tuple of (connections expired, completions delivered)
        """
        cutoff = self.clock() - timedelta(seconds=self.settings.connection_ttl_seconds)
        with self.storage.session_scope() as session:
            expired = PlayerRegistry(session).expire_connections(cutoff)
        if expired:
            logger.info("Expired %d stale connection slot(s)", expired)

        with self.storage.session_scope() as session:
            completed = self.state_machine.resume_pending(PlayerRegistry(session))
        self.stats.increment("completions", completed)
        return expired, completed

    async def _sweep_loop(self, stop: asyncio.Event) -> None:
        while not await sleep_or_stop(stop, self.settings.sweep_interval_seconds):
            try:
                await asyncio.to_thread(self.sweep)
            except (SQLAlchemyError, TimeoutError) as exc:
                logger.error("Sweep failed (will retry): %s", exc)

    # =========================================================================
    # Followers and lifecycle
    # =========================================================================

    def add_follower(self, category: str, directory: str, prefix: str) -> DailyLogFollower:
        follower = DailyLogFollower(
            category,
            directory,
            prefix,
            self.on_lines,
            self.offset_store,
            poll_interval=self.settings.tail_poll_interval,
            probe_interval=self.settings.file_probe_interval,
            rollover_interval=self.settings.rollover_check_interval,
            today=self.today,
        )
        self.readers.register(follower)
        return follower

    def add_default_followers(self) -> None:
        """Follow the connection, chat and error logs configured in settings."""
        s = self.settings
        self.add_follower(BE_CATEGORY, s.be_log_dir, s.be_log_prefix)
        self.add_follower(CHAT_CATEGORY, s.chat_log_dir, s.chat_log_prefix)
        self.add_follower(ERROR_CATEGORY, s.error_log_dir, s.error_log_prefix)

    async def run(self, stop: asyncio.Event) -> None:
        """Run until ``stop`` is set, then wait for followers to drain."""
        if not len(self.readers):
            self.add_default_followers()

        logger.info("Starting monitor for: %s", ", ".join(self.readers.categories()))
        self.readers.start(stop)
        sweeper = asyncio.create_task(self._sweep_loop(stop), name="sweep")

        await stop.wait()
        logger.info("Stopping monitor...")
        await self.readers.wait_stopped()
        await sweeper
        logger.info(self.stats.summary())
