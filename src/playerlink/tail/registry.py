"""
Daily log file following and the explicit registry of followers.

The game server writes one file per category per day, named
``<prefix>_<YYYY-MM-DD>.log``. A DailyLogFollower keeps one TailReader on
today's file and swaps to a fresh reader when the date changes. The
ReaderRegistry owns every follower of a monitor process; nothing about
file positions lives at module level.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Awaitable, Callable, Optional

from playerlink.tail.offsets import OffsetStore
from playerlink.tail.reader import TailReader, sleep_or_stop
from playerlink.tail.source import FileLogSource, LogSource

logger = logging.getLogger(__name__)

CategoryHandler = Callable[[str, list[str]], Awaitable[None]]


def daily_log_path(directory: str | Path, prefix: str, day: date) -> Path:
    """Path of a category's log file for a given day."""
    return Path(directory) / f"{prefix}_{day:%Y-%m-%d}.log"


class DailyLogFollower:
    """Follows the current day's file of one log category."""

    def __init__(
        self,
        category: str,
        directory: str | Path,
        prefix: str,
        handler: CategoryHandler,
        offset_store: Optional[OffsetStore] = None,
        *,
        poll_interval: float = 1.0,
        probe_interval: float = 5.0,
        rollover_interval: float = 10.0,
        today: Callable[[], date] = date.today,
        source_factory: Callable[[Path], LogSource] = FileLogSource,
    ):
        self.category = category
        self.directory = Path(directory)
        self.prefix = prefix
        self.handler = handler
        self.offset_store = offset_store
        self.poll_interval = poll_interval
        self.probe_interval = probe_interval
        self.rollover_interval = rollover_interval
        self.today = today
        self.source_factory = source_factory

        self.reader: Optional[TailReader] = None
        self._reader_stop: Optional[asyncio.Event] = None
        self._reader_task: Optional[asyncio.Task] = None

    @property
    def current_path(self) -> Optional[Path]:
        return Path(self.reader.source.path) if self.reader else None

    def path_for_today(self) -> Path:
        return daily_log_path(self.directory, self.prefix, self.today())

    async def _handle(self, lines: list[str]) -> None:
        await self.handler(self.category, lines)

    def _start_reader(self, path: Path, start_at_end: bool) -> None:
        self.reader = TailReader(
            self.source_factory(path),
            self.offset_store,
            start_at_end=start_at_end,
            poll_interval=self.poll_interval,
            probe_interval=self.probe_interval,
        )
        self._reader_stop = asyncio.Event()
        self._reader_task = asyncio.create_task(
            self.reader.run(self._handle, self._reader_stop),
            name=f"tail-{self.category}-{path.name}",
        )

    async def _stop_reader(self) -> None:
        if self.reader is None or self._reader_task is None:
            return
        self._reader_stop.set()
        try:
            await asyncio.wait_for(self._reader_task, timeout=max(self.poll_interval * 5, 5.0))
        except asyncio.TimeoutError:
            self._reader_task.cancel()
            logger.warning("[%s] Reader for %s did not stop in time", self.category, self.current_path)

        # Pick up whatever was appended after the reader's last tick
        if self.reader.is_open:
            try:
                lines = self.reader.poll()
                if lines:
                    await self._handle(lines)
            except OSError as exc:
                logger.warning("[%s] Final read of %s failed: %s", self.category, self.current_path, exc)

        self.reader = None
        self._reader_task = None
        self._reader_stop = None

    async def run(self, stop: asyncio.Event) -> None:
        """Follow today's file until ``stop`` is set, rolling over at midnight."""
        self._start_reader(self.path_for_today(), start_at_end=True)
        logger.info("[%s] Monitoring %s", self.category, self.current_path)

        try:
            while not await sleep_or_stop(stop, self.rollover_interval):
                latest = self.path_for_today()
                if latest != self.current_path:
                    logger.info(
                        "[%s] New log file detected: %s -> %s",
                        self.category, self.current_path.name if self.current_path else None, latest.name,
                    )
                    await self._stop_reader()
                    self._start_reader(latest, start_at_end=False)
        finally:
            await self._stop_reader()


class ReaderRegistry:
    """Registry of the log followers run by one monitor process."""

    def __init__(self) -> None:
        self._followers: dict[str, DailyLogFollower] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def register(self, follower: DailyLogFollower) -> None:
        if follower.category in self._followers:
            raise ValueError(f"Follower already registered: {follower.category}")
        self._followers[follower.category] = follower

    def get(self, category: str) -> DailyLogFollower:
        try:
            return self._followers[category]
        except KeyError as exc:
            raise KeyError(f"Unknown log category: {category}") from exc

    def categories(self) -> list[str]:
        return list(self._followers)

    def start(self, stop: asyncio.Event) -> list[asyncio.Task]:
        """Start one task per follower; followers run independently."""
        for category, follower in self._followers.items():
            if category in self._tasks and not self._tasks[category].done():
                continue
            self._tasks[category] = asyncio.create_task(
                follower.run(stop), name=f"follow-{category}"
            )
        return list(self._tasks.values())

    async def wait_stopped(self, timeout: float = 30.0) -> None:
        """Wait for every follower task to finish after ``stop`` was set."""
        if not self._tasks:
            return
        tasks = list(self._tasks.values())
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error("Follower task %s failed: %s", task.get_name(), task.exception())
        self._tasks.clear()

    def positions(self) -> dict[str, tuple[Optional[str], int]]:
        """Current file and byte offset per category."""
        result = {}
        for category, follower in self._followers.items():
            reader = follower.reader
            result[category] = (reader.source.path, reader.offset) if reader else (None, 0)
        return result

    def __len__(self) -> int:
        return len(self._followers)
