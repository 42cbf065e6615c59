"""Per-account locking for the reconciliation pipeline."""

from playerlink.tasks.locks import (
    AccountLocks,
    account_lock_name,
    advisory_lock_key,
    postgres_advisory_xact_lock,
)

__all__ = [
    "AccountLocks",
    "account_lock_name",
    "advisory_lock_key",
    "postgres_advisory_xact_lock",
]
