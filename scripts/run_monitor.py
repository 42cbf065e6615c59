#!/usr/bin/env python3
"""
Server Log Monitor.

Follows the daily connection, chat and error logs of the game server and
links every in-game session id it sees to a verified player record.
Completed players are whitelisted, granted the verified role, rewarded and
announced once.

Usage:
    # Run until Ctrl+C / SIGTERM
    python scripts/run_monitor.py

    # First run against an empty database
    python scripts/run_monitor.py --create-tables

    # Only the connection log, with verbose output
    python scripts/run_monitor.py --categories be --log-level DEBUG
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from playerlink.config import settings
from playerlink.db import create_storage
from playerlink.effects import build_sinks, discord_client
from playerlink.service import BE_CATEGORY, CHAT_CATEGORY, ERROR_CATEGORY, ReconciliationService

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Follow server logs and reconcile player identities.")
    parser.add_argument(
        "--categories",
        default=f"{BE_CATEGORY},{CHAT_CATEGORY},{ERROR_CATEGORY}",
        help="Comma-separated log categories to follow (be, chat, error).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before starting (use alembic in production).",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level (default from LOG_LEVEL).",
    )
    return parser.parse_args()


async def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    storage = create_storage(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    if args.create_tables:
        storage.create_tables()
        logger.info("Tables created")

    client = discord_client(timeout=settings.http_timeout)
    sinks = build_sinks(settings, client)
    service = ReconciliationService(storage, sinks, settings=settings)

    directories = {
        BE_CATEGORY: (settings.be_log_dir, settings.be_log_prefix),
        CHAT_CATEGORY: (settings.chat_log_dir, settings.chat_log_prefix),
        ERROR_CATEGORY: (settings.error_log_dir, settings.error_log_prefix),
    }
    for category in [c.strip() for c in args.categories.split(",") if c.strip()]:
        if category not in directories:
            print(f"Unknown log category: {category}")
            return 2
        directory, prefix = directories[category]
        service.add_follower(category, directory, prefix)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: Ctrl+C still raises KeyboardInterrupt
            pass

    try:
        await service.run(stop)
    finally:
        client.close()
        storage.dispose()
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nMonitor stopped.")
