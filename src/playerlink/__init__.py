"""
PlayerLink - Player Identity Reconciliation Engine

Links a chat-platform account, a web-login identity and the in-game
session id that only shows up in live game server logs into one verified
player record. That record gates server access and one-time rewards.

Main components:
- tail: Crash-resumable followers for append-only server log files
- events: Typed log events and the ordered line matchers that produce them
- players: Player registry, identity correlator and verification lifecycle
- effects: One-time side effects fired when a player completes verification
- service: Wiring of readers, correlator and periodic sweeps
- tasks: Per-account locking
"""

__version__ = "1.0.0"
