"""
Persistence of tail positions.

Positions are stored per followed file so a restarted monitor resumes at the
byte it stopped at instead of replaying the file (which would re-trigger
correlations that already happened) or skipping to the end.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from playerlink.db.models import TailCheckpoint, utc_now
from playerlink.db.session import StorageContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TailPosition:
    """Persisted cursor of one followed file."""

    offset: int
    size: int


class OffsetStore(Protocol):
    def load(self, key: str) -> Optional[TailPosition]:
        ...

    def save(self, key: str, position: TailPosition) -> None:
        ...


class CheckpointOffsetStore:
    """OffsetStore backed by the tail_checkpoints table."""

    def __init__(self, storage: StorageContext):
        self.storage = storage

    def load(self, key: str) -> Optional[TailPosition]:
        with self.storage.session_scope() as session:
            row = session.get(TailCheckpoint, key)
            if row is None:
                return None
            position = TailPosition(offset=row.byte_offset, size=row.file_size)
        if position.offset < 0:
            logger.warning("Ignoring negative tail checkpoint %s: %d", key, position.offset)
            return None
        return position

    def save(self, key: str, position: TailPosition) -> None:
        try:
            with self.storage.session_scope() as session:
                row = session.get(TailCheckpoint, key)
                if row is None:
                    row = TailCheckpoint(key=key)
                    session.add(row)
                row.byte_offset = position.offset
                row.file_size = position.size
                row.updated_at = utc_now()
        except SQLAlchemyError as exc:
            # The in-memory cursor stays correct; only crash recovery is affected
            logger.error("Could not persist tail position %s: %s", key, exc)


class MemoryOffsetStore:
    """Process-local OffsetStore, for dry runs and tests."""

    def __init__(self) -> None:
        self._positions: dict[str, TailPosition] = {}

    def load(self, key: str) -> Optional[TailPosition]:
        return self._positions.get(key)

    def save(self, key: str, position: TailPosition) -> None:
        self._positions[key] = position
