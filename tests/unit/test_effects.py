"""Unit tests for the completion sinks."""

import json

import httpx
import pytest

from playerlink.config import Settings
from playerlink.effects import (
    AccessListWriter,
    DiscordRoleGranter,
    LedgerRewardIssuer,
    WebhookCompletionNotifier,
    build_sinks,
)
from playerlink.errors import DispatchError
from playerlink.players import CompletionEvent

EVENT = CompletionEvent(
    account_id="76561198000000001",
    session_id="a" * 32,
    chat_account_id="4242",
    chat_tag="john#0001",
    display_name="JohnDoe",
)


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_access_list_creates_file_and_appends_once(tmp_path):
    path = tmp_path / "server" / "whitelist.txt"
    writer = AccessListWriter(path)

    writer.deliver(EVENT)
    writer.deliver(EVENT)

    assert path.read_text(encoding="utf-8") == "\n76561198000000001\t//john#0001"
    assert writer.contains(EVENT.account_id)


def test_access_list_keeps_existing_entries(tmp_path):
    path = tmp_path / "whitelist.txt"
    path.write_text("76561198000000999\t//admin", encoding="utf-8")

    AccessListWriter(path).deliver(EVENT)

    assert path.read_text(encoding="utf-8").splitlines() == [
        "76561198000000999\t//admin",
        "76561198000000001\t//john#0001",
    ]


def test_ledger_creates_player_file(tmp_path):
    issuer = LedgerRewardIssuer(tmp_path / "PlayerAccounts")
    issuer.deliver(EVENT)

    path = tmp_path / "PlayerAccounts" / "76561198000000001.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == {"steamid": "76561198000000001", "coins": 1325}
    assert '\n    "coins": 1325' in path.read_text(encoding="utf-8")


def test_ledger_adds_to_existing_balance(tmp_path):
    path = tmp_path / "76561198000000001.json"
    path.write_text(json.dumps({"steamid": "76561198000000001", "coins": 100}), encoding="utf-8")

    issuer = LedgerRewardIssuer(tmp_path, amount=50)
    issuer.deliver(EVENT)

    assert issuer.balance(EVENT.account_id) == 150


def test_ledger_unreadable_file_raises_dispatch_error(tmp_path):
    (tmp_path / "76561198000000001.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(DispatchError) as exc_info:
        LedgerRewardIssuer(tmp_path).deliver(EVENT)
    assert exc_info.value.sink == "reward"


def test_ledger_non_object_file_raises_dispatch_error(tmp_path):
    (tmp_path / "76561198000000001.json").write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(DispatchError, match="expected a JSON object"):
        LedgerRewardIssuer(tmp_path).deliver(EVENT)


def test_role_grant_puts_role_with_bot_token():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    granter = DiscordRoleGranter(_client(handler), "token-123", "guild-1", "role-9", api_url="https://chat.test/api")
    granter.deliver(EVENT)

    assert len(requests) == 1
    assert requests[0].method == "PUT"
    assert str(requests[0].url) == "https://chat.test/api/guilds/guild-1/members/4242/roles/role-9"
    assert requests[0].headers["Authorization"] == "Bot token-123"


def test_role_grant_server_error_raises():
    granter = DiscordRoleGranter(_client(lambda r: httpx.Response(500, text="oops")), "t", "g", "r")
    with pytest.raises(DispatchError):
        granter.deliver(EVENT)


def test_role_grant_tolerates_member_that_left():
    granter = DiscordRoleGranter(_client(lambda r: httpx.Response(404)), "t", "g", "r")
    granter.deliver(EVENT)


def test_role_grant_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    granter = DiscordRoleGranter(_client(handler), "t", "g", "r")
    with pytest.raises(DispatchError):
        granter.deliver(EVENT)


def test_role_grant_without_chat_account_makes_no_request():
    requests = []
    granter = DiscordRoleGranter(_client(lambda r: requests.append(r) or httpx.Response(204)), "t", "g", "r")

    granter.deliver(CompletionEvent(account_id="x", session_id="a" * 32))
    assert requests == []


def test_webhook_posts_embed():
    payloads = []

    def handler(request):
        payloads.append(json.loads(request.content))
        return httpx.Response(204)

    notifier = WebhookCompletionNotifier(_client(handler), "https://chat.test/webhooks/1/abc")
    notifier.deliver(EVENT)

    embed = payloads[0]["embeds"][0]
    assert embed["title"] == "Verification complete"
    assert "76561198000000001" in embed["description"]
    assert "a" * 32 in embed["description"]


def test_webhook_rejected_raises():
    notifier = WebhookCompletionNotifier(_client(lambda r: httpx.Response(400, text="bad")), "https://x.test/h")
    with pytest.raises(DispatchError):
        notifier.deliver(EVENT)


def test_build_sinks_orders_configured_sinks(tmp_path):
    settings = Settings(
        whitelist_path=str(tmp_path / "whitelist.txt"),
        reward_ledger_dir=str(tmp_path / "ledger"),
        discord_bot_token="t",
        discord_guild_id="g",
        discord_verified_role_id="r",
        discord_webhook_url="https://x.test/h",
    )
    sinks = build_sinks(settings, _client(lambda r: httpx.Response(204)))
    assert [s.name for s in sinks] == ["access_list", "role_grant", "reward", "notifier"]


def test_build_sinks_skips_unconfigured(caplog):
    settings = Settings(
        whitelist_path=None,
        reward_ledger_dir=None,
        discord_bot_token=None,
        discord_guild_id=None,
        discord_verified_role_id=None,
        discord_webhook_url=None,
    )
    assert build_sinks(settings, _client(lambda r: httpx.Response(204))) == []
    assert "WHITELIST_PATH" in caplog.text
