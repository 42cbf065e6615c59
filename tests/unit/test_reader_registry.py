"""Unit tests for daily log following and the reader registry."""

import asyncio
from datetime import date

import pytest

from playerlink.tail import DailyLogFollower, MemoryOffsetStore, ReaderRegistry, daily_log_path


async def _noop_handler(category, lines):
    return None


def test_daily_log_path_format(tmp_path):
    assert daily_log_path(tmp_path, "Be", date(2026, 1, 5)) == tmp_path / "Be_2026-01-05.log"


def test_registry_register_and_get(tmp_path):
    registry = ReaderRegistry()
    follower = DailyLogFollower("be", tmp_path, "Be", _noop_handler)
    registry.register(follower)

    assert registry.get("be") is follower
    assert registry.categories() == ["be"]
    assert len(registry) == 1
    assert registry.positions() == {"be": (None, 0)}


def test_registry_duplicate_registration_raises(tmp_path):
    registry = ReaderRegistry()
    registry.register(DailyLogFollower("be", tmp_path, "Be", _noop_handler))
    with pytest.raises(ValueError):
        registry.register(DailyLogFollower("be", tmp_path, "Be", _noop_handler))


def test_registry_unknown_category_raises():
    with pytest.raises(KeyError):
        ReaderRegistry().get("chat")


async def _wait_for(predicate, attempts=300):
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return False


async def test_follower_switches_to_next_days_file(tmp_path):
    day = {"value": date(2026, 10, 19)}
    received = []

    async def handler(category, lines):
        received.extend((category, line) for line in lines)

    day1 = daily_log_path(tmp_path, "Be", date(2026, 10, 19))
    day2 = daily_log_path(tmp_path, "Be", date(2026, 10, 20))
    day1.write_text("already handled\n", encoding="utf-8")

    follower = DailyLogFollower(
        "be",
        tmp_path,
        "Be",
        handler,
        MemoryOffsetStore(),
        poll_interval=0.01,
        rollover_interval=0.02,
        today=lambda: day["value"],
    )
    registry = ReaderRegistry()
    registry.register(follower)

    stop = asyncio.Event()
    registry.start(stop)
    assert await _wait_for(lambda: follower.reader is not None and follower.reader.is_open)

    with open(day1, "a", encoding="utf-8") as f:
        f.write("late on day one\n")
    assert await _wait_for(lambda: len(received) == 1)

    day2.write_text("first of day two\n", encoding="utf-8")
    day["value"] = date(2026, 10, 20)
    assert await _wait_for(lambda: len(received) == 2)
    assert follower.current_path == day2

    stop.set()
    await registry.wait_stopped(timeout=5)

    assert received == [("be", "late on day one"), ("be", "first of day two")]
