"""
Completion side effects.

Each sink implements ``deliver(event)`` and raises DispatchError when its
effect could not be applied. build_sinks() assembles the ordered chain from
settings: access list, role grant, reward, notification. Sinks that are not
configured are left out with a warning.
"""

import logging

import httpx

from playerlink.config import Settings
from playerlink.effects.discord import DiscordRoleGranter, WebhookCompletionNotifier, discord_client
from playerlink.effects.ledger import LedgerRewardIssuer
from playerlink.effects.whitelist import AccessListWriter
from playerlink.players.lifecycle import CompletionSink

logger = logging.getLogger(__name__)


def build_sinks(settings: Settings, client: httpx.Client) -> list[CompletionSink]:
    """Build the ordered completion sinks that the settings configure."""
    sinks: list[CompletionSink] = []

    if settings.whitelist_path:
        sinks.append(AccessListWriter(settings.whitelist_path))
    else:
        logger.warning("WHITELIST_PATH not set; completed players will not be whitelisted")

    if settings.discord_bot_token and settings.discord_guild_id and settings.discord_verified_role_id:
        sinks.append(
            DiscordRoleGranter(
                client,
                settings.discord_bot_token,
                settings.discord_guild_id,
                settings.discord_verified_role_id,
                api_url=settings.discord_api_base,
            )
        )
    else:
        logger.warning("Discord bot/guild/role not configured; verified role will not be granted")

    if settings.reward_ledger_dir:
        sinks.append(
            LedgerRewardIssuer(
                settings.reward_ledger_dir,
                amount=settings.reward_amount,
                reason=settings.reward_reason,
            )
        )
    else:
        logger.warning("REWARD_LEDGER_DIR not set; no reward will be issued")

    if settings.discord_webhook_url:
        sinks.append(WebhookCompletionNotifier(client, settings.discord_webhook_url))
    else:
        logger.warning("DISCORD_WEBHOOK_URL not set; completions will not be announced")

    return sinks


__all__ = [
    "AccessListWriter",
    "CompletionSink",
    "DiscordRoleGranter",
    "LedgerRewardIssuer",
    "WebhookCompletionNotifier",
    "build_sinks",
    "discord_client",
]
