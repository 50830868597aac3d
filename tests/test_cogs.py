import asyncio
import random
from types import SimpleNamespace

from discord import app_commands

from conftest import make_interaction
from croupier.cogs.economy import Economy
from croupier.cogs.gambling import BlackjackView, Gamble, context_id
from croupier.helpers.casino import Casino
from croupier.helpers.errors import InsufficientFunds
from croupier.helpers.store import Store


async def make_bot(db_path, balance=100):
    store = Store(db_path)
    await store.init()
    if balance:
        await store.adjust_balance("42", balance, "seed")
    casino = Casino(store, rng=random.Random(3))
    config = SimpleNamespace(
        COIN_NAME="coins",
        ADMIN_USER_IDS=frozenset({"1001"}),
        DASHBOARD_URL="http://localhost:3000/login",
    )
    return SimpleNamespace(casino=casino, config=config)


def test_context_id_prefers_guild():
    assert context_id(make_interaction(guild_id=55)) == "55"
    assert context_id(make_interaction(guild_id=None)) == "dm-7"


def test_play_sends_result_embed(db_path):
    async def _run():
        bot = await make_bot(db_path)
        await bot.casino.store.set_user_override("42", "coinflip", {"headsProb": 1.0})
        cog = Gamble(bot)
        interaction = make_interaction()
        await cog._play(interaction, "coinflip", 50, "heads")
        await bot.casino.store.close()
        return interaction
    interaction = asyncio.run(_run())
    embed = interaction.response.sent[0]["embed"]
    assert "WIN!" in embed.title
    fields = {f.name: f.value for f in embed.fields}
    assert fields["Bet"] == "**50**"
    assert fields["Payout"] == "+50 (won 100)"
    assert "150" in fields["Balance"]


def test_casino_errors_reach_the_player_privately(db_path):
    async def _run():
        bot = await make_bot(db_path, balance=10)
        cog = Gamble(bot)
        interaction = make_interaction()
        err = app_commands.CommandInvokeError(
            SimpleNamespace(name="coinflip"), InsufficientFunds(50, 10)
        )
        await cog.cog_app_command_error(interaction, err)
        await bot.casino.store.close()
        return interaction
    interaction = asyncio.run(_run())
    sent = interaction.response.sent[0]
    assert sent["ephemeral"] is True
    assert sent["embed"].title == "Not enough coins"
    assert "short by **40**" in sent["embed"].description


def test_check_failure_message_is_forwarded(db_path):
    async def _run():
        bot = await make_bot(db_path)
        cog = Gamble(bot)
        interaction = make_interaction()
        await cog.cog_app_command_error(interaction, app_commands.CheckFailure("Nope."))
        await bot.casino.store.close()
        return interaction
    interaction = asyncio.run(_run())
    assert interaction.response.sent == [{"content": "Nope.", "ephemeral": True}]


def test_unexpected_errors_get_generic_notice(db_path):
    async def _run():
        bot = await make_bot(db_path)
        cog = Gamble(bot)
        interaction = make_interaction()
        interaction.response._done = True
        err = app_commands.CommandInvokeError(SimpleNamespace(name="slots"), RuntimeError("boom"))
        await cog.cog_app_command_error(interaction, err)
        await bot.casino.store.close()
        return interaction
    interaction = asyncio.run(_run())
    assert interaction.followup.sent[0]["embed"].title == "Something went wrong"


def test_blackjack_command_and_stand_button(db_path):
    async def _run():
        bot = await make_bot(db_path)
        cog = Gamble(bot)
        interaction = make_interaction()
        await cog.blackjack.callback(cog, interaction, 20)
        start = interaction.response.sent[0]
        after_deal = await bot.casino.store.get_balance("42")

        view = start["view"]
        press = make_interaction()
        await view._act(press, bot.casino.blackjack_stand)
        final = await bot.casino.store.get_balance("42")
        await bot.casino.store.close()
        return start, view, press, after_deal, final
    start, view, press, after_deal, final = asyncio.run(_run())
    assert start["embed"].title == "🃏 Blackjack"
    assert view.message is not None
    assert after_deal == 80
    edited = press.response.edited[0]
    assert edited["view"] is None
    assert all(child.disabled for child in view.children)
    assert f"**{final}**" in {f.name: f.value for f in edited["embed"].fields}["Balance"]


def test_blackjack_button_on_expired_hand(db_path):
    async def _run():
        bot = await make_bot(db_path)
        view = BlackjackView(bot.casino, 42, "1")
        press = make_interaction()
        await view._act(press, bot.casino.blackjack_hit)
        await bot.casino.store.close()
        return press
    press = asyncio.run(_run())
    assert press.response.sent[0]["embed"].title == "Blackjack hand expired"


def test_blackjack_buttons_reject_other_players(db_path):
    async def _run():
        bot = await make_bot(db_path)
        view = BlackjackView(bot.casino, 42, "1")
        stranger = make_interaction(user_id=7)
        allowed = await view.interaction_check(stranger)
        await bot.casino.store.close()
        return allowed, stranger
    allowed, stranger = asyncio.run(_run())
    assert allowed is False
    assert stranger.response.sent[0]["ephemeral"] is True


def test_daily_command(db_path):
    async def _run():
        bot = await make_bot(db_path, balance=0)
        cog = Economy(bot)
        interaction = make_interaction()
        await cog.daily.callback(cog, interaction)
        balance = await bot.casino.store.get_balance("42")
        await bot.casino.store.close()
        return interaction, balance
    interaction, balance = asyncio.run(_run())
    assert balance == 500
    embed = interaction.response.sent[0]["embed"]
    assert "**500**" in embed.description


def test_history_command_lists_recent_rows(db_path):
    async def _run():
        bot = await make_bot(db_path)
        await bot.casino.store.adjust_balance("42", -25, "Dice bet")
        cog = Economy(bot)
        interaction = make_interaction()
        await cog.history.callback(cog, interaction, 5)
        await bot.casino.store.close()
        return interaction
    interaction = asyncio.run(_run())
    lines = interaction.response.sent[0]["embed"].description.splitlines()
    assert "`-25`  Dice bet" in lines[0]
    assert "`+100`  seed" in lines[1]


def test_dashboard_link_is_admin_only(db_path):
    async def _run():
        bot = await make_bot(db_path)
        cog = Economy(bot)
        player = make_interaction()
        admin = make_interaction(user_id=1001)
        await cog.dashboard.callback(cog, player)
        await cog.dashboard.callback(cog, admin)
        await bot.casino.store.close()
        return player, admin
    player, admin = asyncio.run(_run())
    assert player.response.sent[0]["embed"].title == "Admins only"
    assert admin.response.sent[0]["ephemeral"] is True
    assert "localhost:3000" in admin.response.sent[0]["content"]


def test_blackjack_error_disables_buttons_on_the_message(db_path):
    class HandMessage:
        def __init__(self):
            self.edits = []

        async def edit(self, **kwargs):
            self.edits.append(kwargs)

    async def _run():
        bot = await make_bot(db_path)
        view = BlackjackView(bot.casino, 42, "1")
        view.message = HandMessage()
        await view._act(make_interaction(), bot.casino.blackjack_stand)
        await bot.casino.store.close()
        return view
    view = asyncio.run(_run())
    assert view.message.edits == [{"view": view}]
    assert all(child.disabled for child in view.children)
