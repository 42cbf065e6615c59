#!/usr/bin/env python3
"""
Retry completion side effects once.

Finds every player who is fully verified and has a session id but was
never marked rewarded (a sink failed earlier), and runs the completion
sequence again. The monitor does the same on its periodic sweep.

Usage:
    python scripts/retry_completions.py
"""

import logging
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from playerlink.config import settings
from playerlink.db import create_storage
from playerlink.effects import build_sinks, discord_client
from playerlink.players import PlayerRegistry, VerificationStateMachine

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main() -> int:
    storage = create_storage(settings.database_url)
    client = discord_client(timeout=settings.http_timeout)

    try:
        machine = VerificationStateMachine(build_sinks(settings, client))
        with storage.session_scope() as session:
            registry = PlayerRegistry(session)
            pending = len(registry.find_pending_completions())
            completed = machine.resume_pending(registry)
    finally:
        client.close()
        storage.dispose()

    print(f"Completed {completed} of {pending} pending verification(s).")
    return 0 if completed == pending else 1


if __name__ == "__main__":
    raise SystemExit(main())
