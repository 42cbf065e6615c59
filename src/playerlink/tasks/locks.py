"""Per-account lock helpers guarding the one-time completion sequence."""

from __future__ import annotations

import hashlib
import threading
import time
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import text
from sqlalchemy.orm import Session


def advisory_lock_key(name: str) -> int:
    """Return a deterministic signed 64-bit lock key from a lock name."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=True)


def account_lock_name(account_id: str) -> str:
    return f"player:{account_id}"


@contextmanager
def postgres_advisory_xact_lock(
    session: Session,
    *,
    key: int,
    timeout_seconds: float = 30.0,
    poll_interval_seconds: float = 0.2,
) -> Generator[bool, None, None]:
    """
    Take a transaction-scoped PostgreSQL advisory lock on the session.

    The lock is released by PostgreSQL when the session's transaction ends,
    so callers must commit or roll back inside (or right after) the block.

    Yields:
        True once the lock is held.

    Raises:
        TimeoutError: if the lock cannot be acquired before timeout.
    """
    deadline = time.monotonic() + max(timeout_seconds, 0.0)
    while True:
        acquired = bool(
            session.execute(
                text("SELECT pg_try_advisory_xact_lock(:key)"),
                {"key": key},
            ).scalar()
        )
        if acquired:
            break
        if time.monotonic() >= deadline:
            raise TimeoutError(f"Could not acquire advisory lock key={key}")
        time.sleep(max(poll_interval_seconds, 0.05))

    yield True


class AccountLocks:
    """
    In-process registry of one lock per account id.

    Serialises every mutation of a given player record across the reader
    threads of one monitor process. On PostgreSQL, hold() additionally takes
    a transaction-scoped advisory lock so separate processes are serialised
    as well. An account's lock is dropped once nobody holds or waits for it.
    """

    def __init__(self, timeout_seconds: float = 30.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        # account id -> [lock, number of holders and waiters]
        self._locks: dict[str, list] = {}

    def _acquire_entry(self, account_id: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(account_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[account_id] = entry
            entry[1] += 1
            return entry[0]

    def _release_entry(self, account_id: str) -> None:
        with self._guard:
            entry = self._locks[account_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[account_id]

    @contextmanager
    def hold(self, account_id: str, session: Session | None = None) -> Generator[None, None, None]:
        """
        Hold the lock for account_id for the duration of the block.

        Raises:
            TimeoutError: if the lock is still busy after timeout_seconds.
        """
        lock = self._acquire_entry(account_id)
        try:
            if not lock.acquire(timeout=self.timeout_seconds):
                raise TimeoutError(f"Could not acquire lock for account {account_id}")
            try:
                if session is not None and session.get_bind().dialect.name == "postgresql":
                    with postgres_advisory_xact_lock(
                        session,
                        key=advisory_lock_key(account_lock_name(account_id)),
                        timeout_seconds=self.timeout_seconds,
                    ):
                        yield
                else:
                    yield
            finally:
                lock.release()
        finally:
            self._release_entry(account_id)

    def __len__(self) -> int:
        """Number of accounts currently held or waited on."""
        with self._guard:
            return len(self._locks)
