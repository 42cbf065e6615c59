"""
Crash-resumable tailing of append-only server log files.

- source: LogSource protocol and the plain-file implementation
- reader: TailReader, one byte cursor per followed file
- offsets: persisted cursor positions
- registry: daily-file followers and the registry that runs them
"""

from playerlink.tail.offsets import (
    CheckpointOffsetStore,
    MemoryOffsetStore,
    OffsetStore,
    TailPosition,
)
from playerlink.tail.reader import TailReader, split_lines
from playerlink.tail.registry import DailyLogFollower, ReaderRegistry, daily_log_path
from playerlink.tail.source import FileLogSource, LogSource

__all__ = [
    "CheckpointOffsetStore",
    "DailyLogFollower",
    "FileLogSource",
    "LogSource",
    "MemoryOffsetStore",
    "OffsetStore",
    "ReaderRegistry",
    "TailPosition",
    "TailReader",
    "daily_log_path",
    "split_lines",
]
