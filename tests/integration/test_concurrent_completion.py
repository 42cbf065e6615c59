"""
Concurrency test: several worker threads racing on one account against a
file-backed SQLite registry must deliver the completion exactly once.
"""

import threading
import time
from datetime import time as clock_time

from playerlink.db import PlayerRecord
from playerlink.events import SessionIdAssigned
from playerlink.players import IdentityCorrelator, PlayerRegistry, VerificationStateMachine
from playerlink.players.correlator import MATCHED, REENTRY

SID = "a" * 32
WORKERS = 4


class SlowSink:
    """Holds the critical section open long enough for the others to pile up."""

    name = "slow"

    def __init__(self, delay=0.05):
        self.delay = delay
        self.events = []
        self._lock = threading.Lock()

    def deliver(self, event):
        time.sleep(self.delay)
        with self._lock:
            self.events.append(event)


def _verified(storage, account_id, at, session_id=None):
    with storage.session_scope() as session:
        registry = PlayerRegistry(session)
        registry.register_web_verification(account_id, chat_account_id="555", at=at)
        record = registry.record_device_check(account_id, ip="1.2.3.4", at=at)
        if session_id is not None:
            registry.apply_session_id_mapping(record, session_id, "JohnDoe", at=at)


def _run_together(target):
    barrier = threading.Barrier(WORKERS)
    results = []
    errors = []

    def worker():
        barrier.wait()
        try:
            results.append(target())
        except Exception as exc:  # surfaced through the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    assert errors == []
    return results


def test_concurrent_state_machine_calls_deliver_once(file_storage, clock):
    _verified(file_storage, "S", clock(), session_id=SID)
    sink = SlowSink()
    machine = VerificationStateMachine([sink], clock=clock)

    def complete():
        with file_storage.session_scope() as session:
            return machine.on_session_mapped(PlayerRegistry(session), "S")

    results = _run_together(complete)

    assert sorted(results) == [False] * (WORKERS - 1) + [True]
    assert len(sink.events) == 1
    with file_storage.session_scope() as session:
        assert session.get(PlayerRecord, "S").reward_issued is True


def test_concurrent_correlations_of_one_session_deliver_once(file_storage, clock):
    _verified(file_storage, "S", clock())
    sink = SlowSink()
    machine = VerificationStateMachine([sink], clock=clock)
    correlator = IdentityCorrelator(machine, machine.locks, clock=clock)
    event = SessionIdAssigned(
        timestamp=clock_time(12, 0, 0), connection_id=3, display_name="JohnDoe", session_id=SID, ip="1.2.3.4"
    )

    def correlate():
        with file_storage.session_scope() as session:
            return correlator.correlate(PlayerRegistry(session), event)

    outcomes = _run_together(correlate)

    assert sorted(outcome.status for outcome in outcomes) == [MATCHED] + [REENTRY] * (WORKERS - 1)
    assert len(sink.events) == 1
    with file_storage.session_scope() as session:
        record = session.get(PlayerRecord, "S")
        assert record.session_id == SID
        assert record.reward_issued is True
