"""
Log sources: the file-system side of tailing.

A LogSource only answers two questions, how big the file is right now and
what bytes sit in a given range. Everything stateful (the cursor, rotation
handling) lives in the TailReader, so a source can be backed by interval
polling, by native change notification, or by an in-memory buffer in tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, Union


class LogSource(Protocol):
    """Append-only log file as seen by a TailReader."""

    path: str

    def stat(self) -> Optional[int]:
        """Current size in bytes, or None when the file does not exist."""
        ...

    def read(self, start: int, end: int) -> bytes:
        """Bytes in ``[start, end)``; may return fewer if the file shrank."""
        ...


class FileLogSource:
    """LogSource over a plain file, re-opened on every read."""

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)

    def stat(self) -> Optional[int]:
        try:
            return Path(self.path).stat().st_size
        except FileNotFoundError:
            return None

    def read(self, start: int, end: int) -> bytes:
        if end <= start:
            return b""
        with open(self.path, "rb") as f:
            f.seek(start)
            return f.read(end - start)

    def __repr__(self) -> str:
        return f"<FileLogSource('{self.path}')>"
