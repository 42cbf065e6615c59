"""Unit tests for line handling in the reconciliation service."""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from playerlink.config import Settings
from playerlink.db import ChatLogEntry, PlayerRecord, UnmappedSession
from playerlink.players import PlayerRegistry
from playerlink.service import ReconciliationService, ServiceStats
from playerlink.tail import MemoryOffsetStore

SID = "d" * 32


@pytest.fixture
def service(storage, sink, clock):
    return ReconciliationService(
        storage,
        [sink],
        settings=Settings(),
        offset_store=MemoryOffsetStore(),
        clock=clock,
    )


def _verified(storage, account_id, ip, at):
    with storage.session_scope() as session:
        registry = PlayerRegistry(session)
        registry.register_web_verification(account_id, chat_account_id="555", at=at)
        registry.record_device_check(account_id, ip=ip, at=at)


def test_connect_line_supplies_ip_for_session_line(service, storage, sink, clock):
    _verified(storage, "S", "1.2.3.4", clock())

    service.handle_lines("be", [
        "12:00:00 : Player #3 JohnDoe (1.2.3.4:2304) connected",
        f"12:00:01 : Player #3 JohnDoe - BE GUID: {SID}",
    ])

    with storage.session_scope() as session:
        record = session.get(PlayerRecord, "S")
        assert record.session_id == SID
        assert record.reward_issued is True
    assert len(sink.events) == 1
    assert service.stats.matched == 1
    assert service.stats.completions == 1


def test_session_line_without_connect_is_unmapped_without_ip(service, storage):
    service.handle_line("be", f"12:00:01 : Player #7 Ghost - BE GUID: {SID}")

    with storage.session_scope() as session:
        entry = session.get(UnmappedSession, SID)
        assert entry.display_name == "Ghost"
        assert entry.last_ip is None
    assert service.stats.unmapped == 1


def test_disconnect_forgets_connection_slot(service, storage):
    service.handle_lines("be", [
        "12:00:00 : Player #3 JohnDoe (1.2.3.4:2304) connected",
        "12:10:00 : Player #3 JohnDoe disconnected",
    ])
    with storage.session_scope() as session:
        assert PlayerRegistry(session).resolve_connection_ip("be", 3) is None


def test_chat_lines_are_stored(service, storage):
    service.handle_lines("chat", ["12:00:00 : Global: JohnDoe: hello", "garbage"])

    with storage.session_scope() as session:
        rows = session.execute(select(ChatLogEntry)).scalars().all()
        assert [(r.log_time, r.channel, r.player_name, r.message) for r in rows] == [
            ("12:00:00", "Global", "JohnDoe", "hello")
        ]
    assert service.stats.lines_seen == 2
    assert service.stats.events == 1


def test_noise_is_not_an_error(service):
    assert service.handle_line("be", "12:00:00 : BattlEye Server: Initialized") is None
    assert service.stats.errors == 0


def test_database_error_drops_event(service, monkeypatch, caplog):
    def broken(registry, event):
        raise OperationalError("SELECT 1", {}, Exception("database is down"))

    monkeypatch.setattr(service.correlator, "correlate", broken)
    assert service.handle_line("be", f"12:00:01 : Player #7 Ghost - BE GUID: {SID}") is None
    assert service.stats.errors == 1
    assert "Dropped session_id_assigned event" in caplog.text


def test_unexpected_error_on_one_line_does_not_drop_the_batch(storage, clock, make_sink, caplog):
    class BrokenSink:
        name = "broken"

        def deliver(self, event):
            raise AttributeError("'list' object has no attribute 'get'")

    service = ReconciliationService(
        storage,
        [BrokenSink(), make_sink()],
        settings=Settings(),
        offset_store=MemoryOffsetStore(),
        clock=clock,
    )
    _verified(storage, "S", "1.2.3.4", clock())
    other_sid = "c" * 32

    handled = service.handle_lines("be", [
        "12:00:00 : Player #3 JohnDoe (1.2.3.4:2304) connected",
        f"12:00:01 : Player #3 JohnDoe - BE GUID: {SID}",
        "12:00:02 : Player #4 Other (8.8.8.8:2304) connected",
        f"12:00:03 : Player #4 Other - BE GUID: {other_sid}",
    ])

    assert handled == 3
    assert service.stats.lines_seen == 4
    assert service.stats.errors == 1
    assert service.stats.unmapped == 1
    assert "Error handling session_id_assigned event from be log" in caplog.text
    with storage.session_scope() as session:
        entry = session.get(UnmappedSession, other_sid)
        assert entry.display_name == "Other"
        assert entry.last_ip == "8.8.8.8"
        # Mapping was committed before the sink failed; the reward was not
        record = session.get(PlayerRecord, "S")
        assert record.session_id == SID
        assert record.reward_issued is False


def test_stats_counters_are_safe_across_threads():
    stats = ServiceStats()

    def bump():
        for _ in range(1000):
            stats.increment("lines_seen")

    workers = [threading.Thread(target=bump) for _ in range(8)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert stats.lines_seen == 8000


def test_sweep_expires_connections_and_retries_completions(service, storage, sink, clock):
    with storage.session_scope() as session:
        registry = PlayerRegistry(session)
        registry.track_connection("be", 1, "9.9.9.9", "Old", at=clock() - timedelta(minutes=10))
        registry.track_connection("be", 2, "8.8.8.8", "New", at=clock())
        registry.register_web_verification("S", at=clock())
        record = registry.record_device_check("S", ip="1.2.3.4", at=clock())
        registry.apply_session_id_mapping(record, SID, "JohnDoe", at=clock())

    expired, completed = service.sweep()

    assert (expired, completed) == (1, 1)
    assert [e.account_id for e in sink.events] == ["S"]


def test_summary_lists_counters(service):
    service.handle_line("be", f"12:00:01 : Player #7 Ghost - BE GUID: {SID}")
    summary = service.stats.summary()
    assert "Unmapped sessions:    1" in summary
