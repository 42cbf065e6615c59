"""Unit tests for the identity correlator strategy chain."""

import logging
from datetime import time, timedelta

import pytest
from sqlalchemy import select

from playerlink.db import CorrelationAbstention, PlayerRecord, UnmappedSession
from playerlink.events import SessionIdAssigned
from playerlink.players import IdentityCorrelator, PlayerRegistry, VerificationStateMachine
from playerlink.players.correlator import (
    ABSTAINED,
    DISPLAY_NAME_PENDING,
    IP_PENDING,
    MATCHED,
    RECENT_IP_AWAITING,
    REENTRY,
    SOLE_AWAITING_CANDIDATE,
    UNMAPPED,
)

SID_A = "a" * 32
SID_B = "b" * 32


def _event(session_id=SID_A, name="JohnDoe", ip="1.2.3.4"):
    return SessionIdAssigned(
        timestamp=time(12, 0, 0), connection_id=3, display_name=name, session_id=session_id, ip=ip
    )


@pytest.fixture
def correlator(sink, clock):
    machine = VerificationStateMachine([sink], clock=clock)
    return IdentityCorrelator(machine, machine.locks, clock=clock)


def test_recent_ip_match_assigns_session_and_completes(correlator, registry, make_verified_player, sink):
    """A verified player who just ran the device check from this IP gets the session."""
    make_verified_player("S", ip="1.2.3.4")

    outcome = correlator.correlate(registry, _event())

    assert outcome.status == MATCHED
    assert outcome.strategy == RECENT_IP_AWAITING
    assert outcome.account_id == "S"
    assert outcome.completed is True

    record = registry.get("S", refresh=True)
    assert record.session_id == SID_A
    assert record.display_name == "JohnDoe"
    assert record.awaiting_session_id is False
    assert record.session_id_source == "be_log"
    assert record.reward_issued is True

    assert len(sink.events) == 1
    assert sink.events[0].account_id == "S"
    assert sink.events[0].session_id == SID_A
    assert sink.events[0].chat_account_id == "111"


def test_most_recent_device_check_wins_on_shared_ip(correlator, registry, make_verified_player, clock):
    make_verified_player("earlier", ip="1.2.3.4", checked_at=clock() - timedelta(minutes=8))
    make_verified_player("later", ip="1.2.3.4", checked_at=clock() - timedelta(minutes=1))

    outcome = correlator.correlate(registry, _event())
    assert outcome.account_id == "later"
    assert registry.get("earlier", refresh=True).session_id == "pending"


def test_ip_match_outside_recent_window(correlator, registry, make_verified_player, clock):
    make_verified_player("S", ip="1.2.3.4", checked_at=clock() - timedelta(hours=3))

    outcome = correlator.correlate(registry, _event())
    assert outcome.status == MATCHED
    assert outcome.strategy == IP_PENDING


def test_launcher_nickname_match_after_ip_change(correlator, registry, make_verified_player, clock):
    """Verified days ago from another IP: only the declared nickname links the session."""
    make_verified_player("S", ip="5.5.5.5", checked_at=clock() - timedelta(days=2))
    registry.update_nickname("S", "JohnDoe", at=clock())
    registry.session.commit()

    outcome = correlator.correlate(registry, _event(ip="9.9.9.9"))

    assert outcome.status == MATCHED
    assert outcome.strategy == DISPLAY_NAME_PENDING
    assert outcome.account_id == "S"
    assert registry.get("S", refresh=True).session_id == SID_A


def test_stale_match_never_overwrites_a_resolved_session(file_storage, clock, make_sink):
    """Another worker maps and rewards the account between lookup and lock."""
    sink = make_sink()
    machine = VerificationStateMachine([sink], clock=clock)
    correlator = IdentityCorrelator(machine, machine.locks, clock=clock)
    with file_storage.session_scope() as session:
        registry = PlayerRegistry(session)
        registry.register_web_verification("S", at=clock())
        registry.record_device_check("S", ip="1.2.3.4", at=clock())

    name, recent_ip = correlator.strategies[0]

    def lookup_then_lose_race(registry, event, now):
        result = recent_ip(registry, event, now)
        if event.session_id == SID_A:
            with file_storage.session_scope() as session:
                winner = correlator.correlate(PlayerRegistry(session), _event(session_id=SID_B))
                assert winner.status == MATCHED
        return result

    correlator.strategies[0] = (name, lookup_then_lose_race)

    with file_storage.session_scope() as session:
        outcome = correlator.correlate(PlayerRegistry(session), _event(session_id=SID_A))

    assert outcome.status == UNMAPPED
    with file_storage.session_scope() as session:
        record = session.get(PlayerRecord, "S")
        assert record.session_id == SID_B
        assert record.reward_issued is True
        assert session.get(UnmappedSession, SID_A) is not None
    assert [event.session_id for event in sink.events] == [SID_B]


def test_sole_awaiting_candidate(correlator, registry, make_verified_player, clock):
    make_verified_player("S", ip="5.5.5.5", checked_at=clock() - timedelta(minutes=20))

    outcome = correlator.correlate(registry, _event(ip="9.9.9.9"))
    assert outcome.status == MATCHED
    assert outcome.strategy == SOLE_AWAITING_CANDIDATE
    assert outcome.account_id == "S"


def test_ambiguous_candidates_abstain_without_mutation(
    correlator, registry, make_verified_player, clock, db_session, sink, caplog
):
    make_verified_player("P1", ip="5.5.5.5", checked_at=clock() - timedelta(minutes=15))
    make_verified_player("P2", ip="6.6.6.6", checked_at=clock() - timedelta(minutes=25))

    with caplog.at_level(logging.WARNING, logger="playerlink.players.correlator"):
        outcome = correlator.correlate(registry, _event(ip="9.9.9.9"))

    assert outcome.status == ABSTAINED
    assert set(outcome.candidate_ids) == {"P1", "P2"}
    assert "P1" in caplog.text and "P2" in caplog.text

    for account_id in ("P1", "P2"):
        record = registry.get(account_id, refresh=True)
        assert record.session_id == "pending"
        assert record.awaiting_session_id is True

    abstentions = db_session.execute(select(CorrelationAbstention)).scalars().all()
    assert len(abstentions) == 1
    assert set(abstentions[0].candidate_account_ids) == {"P1", "P2"}
    assert db_session.execute(select(UnmappedSession)).scalars().all() == []
    assert sink.events == []


def test_already_mapped_session_is_a_reentry(correlator, registry, make_verified_player, sink):
    """Same session id, new display name: refresh only, no second completion."""
    make_verified_player("X", ip="1.2.3.4")
    correlator.correlate(registry, _event())
    assert len(sink.events) == 1

    outcome = correlator.correlate(registry, _event(name="JohnRenamed", ip="7.7.7.7"))

    assert outcome.status == REENTRY
    assert outcome.account_id == "X"
    record = registry.get("X", refresh=True)
    assert record.display_name == "JohnRenamed"
    assert record.session_id == SID_A
    assert len(sink.events) == 1


def test_replay_for_rewarded_account_dispatches_nothing(correlator, registry, make_verified_player, sink):
    make_verified_player("S", ip="1.2.3.4")
    correlator.correlate(registry, _event())
    rewarded_at = registry.get("S", refresh=True).reward_issued_at

    for _ in range(3):
        assert correlator.correlate(registry, _event()).status == REENTRY

    record = registry.get("S", refresh=True)
    assert record.reward_issued is True
    assert record.reward_issued_at == rewarded_at
    assert len(sink.events) == 1


def test_unknown_session_is_recorded_as_unmapped(correlator, registry, db_session):
    outcome = correlator.correlate(registry, _event(session_id=SID_B, name="Stranger", ip="8.8.8.8"))

    assert outcome.status == UNMAPPED
    entry = db_session.get(UnmappedSession, SID_B)
    assert entry.display_name == "Stranger"
    assert entry.last_ip == "8.8.8.8"


def test_later_match_removes_unmapped_entry(correlator, registry, make_verified_player, db_session):
    correlator.correlate(registry, _event(ip="1.2.3.4"))
    assert db_session.get(UnmappedSession, SID_A) is not None

    make_verified_player("S", ip="1.2.3.4")
    outcome = correlator.correlate(registry, _event(ip="1.2.3.4"))

    assert outcome.status == MATCHED
    db_session.expire_all()
    assert db_session.get(UnmappedSession, SID_A) is None


def test_partially_verified_records_are_never_matched(correlator, registry, clock):
    registry.record_device_check("device-only", ip="1.2.3.4", at=clock())
    registry.session.commit()

    outcome = correlator.correlate(registry, _event())
    assert outcome.status == UNMAPPED
    assert registry.get("device-only", refresh=True).session_id == "pending"
