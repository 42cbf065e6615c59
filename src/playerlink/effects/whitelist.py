"""Access list writer: appends completed players to the server whitelist file."""

import logging
from pathlib import Path

from playerlink.errors import DispatchError
from playerlink.players.lifecycle import CompletionEvent

logger = logging.getLogger(__name__)


class AccessListWriter:
    """
    Appends ``<account_id>\\t//<comment>`` lines to the whitelist.

    The file is created if missing. An account id already present anywhere
    in the file is not written again, so a retried completion is harmless.
    """

    name = "access_list"

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def contains(self, account_id: str) -> bool:
        if not self.path.exists():
            return False
        return account_id in self.path.read_text(encoding="utf-8", errors="replace")

    def deliver(self, event: CompletionEvent) -> None:
        comment = event.chat_tag or event.display_name or "Added by system"
        try:
            if self.contains(event.account_id):
                logger.info("%s already whitelisted", event.account_id)
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(f"\n{event.account_id}\t//{comment}")
        except OSError as exc:
            raise DispatchError(self.name, f"could not update {self.path}: {exc}") from exc

        logger.info("Whitelisted %s -> %s", event.account_id, comment)
