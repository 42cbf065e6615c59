"""
Tail reader for append-only log files.

A TailReader follows exactly one LogSource from a byte cursor:

- On open, it resumes from the persisted position when there is one. With
  no checkpoint it starts at end-of-file (startup: old content was handled
  by a previous run or is too old to act on) or at byte 0 (a day rollover
  onto a freshly created file).
- Each poll reads exactly the bytes appended since the last poll, splits
  them into lines, strips BOM/whitespace and returns the non-empty ones.
  The cursor then moves to the new size and is persisted. Consumed bytes
  are never read again.
- A file smaller than the cursor was rotated or truncated. It is treated as
  a new stream starting at byte 0; nothing from the old file is replayed.

Readers share no state with each other. I/O errors are logged and retried
on the next tick; a reader never brings the process down.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from playerlink.tail.offsets import OffsetStore, TailPosition
from playerlink.tail.source import LogSource

logger = logging.getLogger(__name__)

LineHandler = Callable[[list[str]], Awaitable[None]]


def split_lines(data: bytes) -> list[str]:
    """Decode a chunk of log bytes into stripped, non-empty lines."""
    text = data.decode("utf-8", errors="replace")
    lines = []
    for raw in text.splitlines():
        line = raw.lstrip("\ufeff").strip()
        if line:
            lines.append(line)
    return lines


async def sleep_or_stop(stop: Optional[asyncio.Event], seconds: float) -> bool:
    """
    Sleep for ``seconds`` unless ``stop`` is set first.

    Returns:
        True if the stop event fired, False if the full interval elapsed
    """
    if stop is None:
        await asyncio.sleep(seconds)
        return False
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False


class TailReader:
    """
    Follows one log file and yields newly appended lines.

    Usage:
        reader = TailReader(FileLogSource(path), offset_store)
        if reader.open_now():
            for line in reader.poll():
                ...

        # Or as a long-running task
        await reader.run(handler, stop_event)
    """

    def __init__(
        self,
        source: LogSource,
        offset_store: Optional[OffsetStore] = None,
        *,
        key: Optional[str] = None,
        start_at_end: bool = True,
        poll_interval: float = 1.0,
        probe_interval: float = 5.0,
    ):
        self.source = source
        self.offset_store = offset_store
        self.key = key or f"tail:{source.path}"
        self.start_at_end = start_at_end
        self.poll_interval = poll_interval
        self.probe_interval = probe_interval

        self.offset = 0
        self.last_known_size = 0
        self.is_open = False
        self._missing_logged = False

    # =========================================================================
    # Cursor management
    # =========================================================================

    def open_now(self) -> bool:
        """
        Position the cursor if the file exists.

        Returns:
            True if the file exists and the reader is ready to poll
        """
        size = self.source.stat()
        if size is None:
            return False

        saved = self.offset_store.load(self.key) if self.offset_store else None
        if saved is not None:
            if saved.offset > size:
                logger.info(
                    "%s shrank below its checkpoint (%d > %d bytes); starting a new stream",
                    self.source.path, saved.offset, size,
                )
                self.offset = 0
            else:
                self.offset = saved.offset
        elif self.start_at_end:
            self.offset = size
        else:
            self.offset = 0

        self.last_known_size = size
        self.is_open = True
        self._missing_logged = False
        self._persist()
        logger.info("Following %s from byte %d (size %d)", self.source.path, self.offset, size)
        return True

    async def open(self, stop: Optional[asyncio.Event] = None) -> bool:
        """
        Wait for the file to exist, probing every ``probe_interval`` seconds.

        Returns:
            True once open, False if ``stop`` fired first
        """
        while True:
            try:
                if self.open_now():
                    return True
            except OSError as exc:
                logger.warning("Could not open %s: %s", self.source.path, exc)
            if not self._missing_logged:
                logger.info("Waiting for %s to be created", self.source.path)
                self._missing_logged = True
            if await sleep_or_stop(stop, self.probe_interval):
                return False

    def poll(self) -> list[str]:
        """
        Return the lines appended since the previous poll.

        Raises:
            OSError: if the file exists but cannot be read
        """
        if not self.is_open and not self.open_now():
            return []

        size = self.source.stat()
        if size is None:
            if not self._missing_logged:
                logger.warning("%s disappeared; waiting for it to come back", self.source.path)
                self._missing_logged = True
            return []
        self._missing_logged = False

        if size < self.offset:
            logger.info(
                "%s was rotated or truncated (%d < %d bytes); resuming from byte 0",
                self.source.path, size, self.offset,
            )
            self.offset = 0
            self.last_known_size = size
            self._persist()

        if size == self.offset:
            self.last_known_size = size
            return []

        data = self.source.read(self.offset, size)
        self.offset += len(data)
        self.last_known_size = size
        self._persist()

        lines = split_lines(data)
        if lines:
            logger.debug("%s: %d new line(s), cursor at %d", self.source.path, len(lines), self.offset)
        return lines

    def _persist(self) -> None:
        if self.offset_store is not None:
            self.offset_store.save(
                self.key, TailPosition(offset=self.offset, size=self.last_known_size)
            )

    # =========================================================================
    # Long-running loop
    # =========================================================================

    async def run(self, handler: LineHandler, stop: asyncio.Event) -> None:
        """
        Follow the file until ``stop`` is set, passing each batch of lines
        to ``handler`` in file order.
        """
        if not await self.open(stop):
            return

        while not stop.is_set():
            try:
                lines = self.poll()
            except OSError as exc:
                logger.warning("Error reading %s (will retry): %s", self.source.path, exc)
                lines = []

            if lines:
                try:
                    await handler(lines)
                except Exception:
                    logger.exception("Line handler failed for %s", self.source.path)

            if await sleep_or_stop(stop, self.poll_interval):
                break

    def __repr__(self) -> str:
        return f"<TailReader('{self.source.path}', offset={self.offset})>"
