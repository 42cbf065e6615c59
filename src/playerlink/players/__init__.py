"""
Player identity management module.

This module links an in-game session id observed in the server logs to the
verification record a player built through the web login and device check.

Key components:
- PlayerRegistry: Reads and writes of verification records
- IdentityCorrelator: Strategy chain matching a session id to one record
- VerificationStateMachine: One-time completion side effects

The matching strategy (in priority order):
1. Same IP, recent device check, awaiting a session id
2. Same IP, no session id yet
3. Same display name, no session id yet
4. The only record awaiting a session id (abstain if there are several)
"""

from playerlink.players.correlator import CorrelationOutcome, IdentityCorrelator
from playerlink.players.lifecycle import (
    CompletionEvent,
    CompletionSink,
    VerificationState,
    VerificationStateMachine,
    derive_state,
)
from playerlink.players.registry import PlayerRegistry

__all__ = [
    "CompletionEvent",
    "CompletionSink",
    "CorrelationOutcome",
    "IdentityCorrelator",
    "PlayerRegistry",
    "VerificationState",
    "VerificationStateMachine",
    "derive_state",
]
