#!/usr/bin/env python3
"""
List sessions the monitor could not link to a player.

Shows unmapped session ids (no candidate at all) and recent abstentions
(several players equally plausible). Operators use this to release players
whose IP changed or who were whitelisted by hand.

Usage:
    python scripts/list_unmapped.py
    python scripts/list_unmapped.py --limit 20
"""

import argparse
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from playerlink.config import settings
from playerlink.db import create_storage
from playerlink.players import PlayerRegistry


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Show unmapped sessions and correlation abstentions.")
    parser.add_argument("--limit", type=int, default=50, help="Rows to show per section.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    storage = create_storage(settings.database_url)

    try:
        with storage.session_scope() as session:
            registry = PlayerRegistry(session)
            unmapped = registry.list_unmapped(limit=args.limit)
            abstentions = registry.list_abstentions(limit=args.limit)

            if not unmapped:
                print("No unmapped sessions.")
            else:
                print(f"Unmapped sessions ({len(unmapped)}):")
                for entry in unmapped:
                    print(
                        f"  {entry.session_id}  {entry.display_name or '-':<24} "
                        f"{entry.last_ip or '-':<15}  last seen {entry.last_seen:%Y-%m-%d %H:%M:%S}"
                    )

            if abstentions:
                print(f"\nAbstentions ({len(abstentions)}):")
                for item in abstentions:
                    candidates = ", ".join(item.candidate_account_ids)
                    print(
                        f"  {item.created_at:%Y-%m-%d %H:%M:%S}  {item.session_id}  "
                        f"{item.display_name or '-'}  candidates: {candidates}"
                    )
    finally:
        storage.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
