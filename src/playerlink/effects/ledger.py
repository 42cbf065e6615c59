"""
One-time reward issuer writing the game store's per-player coin files.

Each player has ``<ledger_dir>/<account_id>.json`` holding
``{"steamid": ..., "coins": ...}`` indented by 4 spaces, the format the
server-side store mod reads.
"""

import json
import logging
import os
from pathlib import Path

from playerlink.errors import DispatchError
from playerlink.players.lifecycle import CompletionEvent

logger = logging.getLogger(__name__)


class LedgerRewardIssuer:
    """Credits a fixed coin amount to the player's ledger file."""

    name = "reward"

    def __init__(self, ledger_dir: str | Path, amount: int = 1325, reason: str = "Verification bonus"):
        self.ledger_dir = Path(ledger_dir)
        self.amount = amount
        self.reason = reason

    def ledger_path(self, account_id: str) -> Path:
        return self.ledger_dir / f"{account_id}.json"

    def balance(self, account_id: str) -> int:
        path = self.ledger_path(account_id)
        if not path.exists():
            return 0
        data = json.loads(path.read_text(encoding="utf-8"))
        return int(data.get("coins") or 0)

    def deliver(self, event: CompletionEvent) -> None:
        path = self.ledger_path(event.account_id)
        try:
            self.ledger_dir.mkdir(parents=True, exist_ok=True)
            if path.exists():
                data = json.loads(path.read_text(encoding="utf-8"))
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            else:
                data = {"steamid": event.account_id, "coins": 0}

            old_balance = int(data.get("coins") or 0)
            data["coins"] = old_balance + self.amount

            # Write-then-rename so the mod never reads a half-written file
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(json.dumps(data, indent=4), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, ValueError) as exc:
            raise DispatchError(self.name, f"could not credit {path}: {exc}") from exc

        logger.info(
            "Credited %s: %d -> %d coins (+%d, %s)",
            event.account_id, old_balance, data["coins"], self.amount, self.reason,
        )
