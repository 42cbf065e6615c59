"""
Chat platform sinks: verified role grant and completion webhook.

Both use a shared synchronous httpx.Client; the sinks run inside the
worker threads that handle log lines, never on the event loop.
"""

import logging
from typing import Optional

import httpx

from playerlink.errors import DispatchError
from playerlink.players.lifecycle import CompletionEvent

logger = logging.getLogger(__name__)

DISCORD_API_URL = "https://discord.com/api/v10"


class DiscordRoleGranter:
    """Grants the verified role to the player's chat account."""

    name = "role_grant"

    def __init__(
        self,
        client: httpx.Client,
        bot_token: str,
        guild_id: str,
        role_id: str,
        api_url: str = DISCORD_API_URL,
    ):
        self.client = client
        self.bot_token = bot_token
        self.guild_id = guild_id
        self.role_id = role_id
        self.api_url = api_url.rstrip("/")

    def role_url(self, user_id: str) -> str:
        return f"{self.api_url}/guilds/{self.guild_id}/members/{user_id}/roles/{self.role_id}"

    def deliver(self, event: CompletionEvent) -> None:
        if not event.chat_account_id:
            logger.warning("No chat account linked to %s; skipping role grant", event.account_id)
            return

        try:
            response = self.client.put(
                self.role_url(event.chat_account_id),
                headers={
                    "Authorization": f"Bot {self.bot_token}",
                    "X-Audit-Log-Reason": "Verification complete",
                },
            )
        except httpx.HTTPError as exc:
            raise DispatchError(self.name, f"request failed: {exc}") from exc

        if response.status_code == 404:
            # Member left the chat server; nothing to grant
            logger.warning(
                "Chat member %s not found; role not granted to %s",
                event.chat_account_id, event.account_id,
            )
            return
        if response.status_code not in (200, 204):
            raise DispatchError(self.name, f"HTTP {response.status_code}: {response.text[:200]}")

        logger.info("Verified role granted to %s (%s)", event.chat_tag or event.chat_account_id, event.account_id)


class WebhookCompletionNotifier:
    """Posts a completion embed to a chat webhook."""

    name = "notifier"

    COLOR_SUCCESS = 0x00FF00

    def __init__(self, client: httpx.Client, webhook_url: str):
        self.client = client
        self.webhook_url = webhook_url

    def build_payload(self, event: CompletionEvent) -> dict:
        return {
            "embeds": [
                {
                    "title": "Verification complete",
                    "color": self.COLOR_SUCCESS,
                    "description": f"**Account:** `{event.account_id}`\n**Session:** `{event.session_id}`",
                    "fields": [
                        {
                            "name": "Player",
                            "value": (
                                f"**Chat:** `{event.chat_tag or 'N/A'}`\n"
                                f"**In-game:** `{event.display_name or 'N/A'}`"
                            ),
                            "inline": False,
                        },
                        {
                            "name": "Identifiers",
                            "value": (
                                f"**Chat ID:** `{event.chat_account_id or 'N/A'}`\n"
                                f"**Account ID:** `{event.account_id}`"
                            ),
                            "inline": False,
                        },
                    ],
                    "footer": {"text": "Verified via server log"},
                }
            ]
        }

    def deliver(self, event: CompletionEvent) -> None:
        try:
            response = self.client.post(self.webhook_url, json=self.build_payload(event))
        except httpx.HTTPError as exc:
            raise DispatchError(self.name, f"request failed: {exc}") from exc

        if response.status_code >= 300:
            raise DispatchError(self.name, f"HTTP {response.status_code}: {response.text[:200]}")
        logger.info("Completion notification sent for %s", event.account_id)


def discord_client(timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None) -> httpx.Client:
    """Shared HTTP client. Close it on shutdown."""
    return httpx.Client(timeout=timeout, transport=transport)
