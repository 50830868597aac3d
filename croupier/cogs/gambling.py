# cogs/gambling.py
import logging
from typing import Literal, Optional

import discord
from discord import app_commands, Interaction
from discord.ui import View, button, Button
from discord.ext import commands

from croupier.helpers.blackjack import BlackjackSession, format_cards
from croupier.helpers.casino import Casino, GameRequest, GameResult, GAME_LABELS
from croupier.helpers.embeds import (
    THEME,
    VERDICT_COLORS,
    base_embed,
    game_result_embed,
    notice_embed,
    payout_text,
)
from croupier.helpers.errors import CasinoError
from croupier.helpers.games import MAX_BET

log = logging.getLogger(__name__)

GAME_EMOJI = {
    "coinflip": "🪙",
    "slots": "🎰",
    "roulette": "🎡",
    "dice": "🎲",
    "highlow": "🃏",
}

Bet = app_commands.Range[int, 1, MAX_BET]


def context_id(interaction: Interaction) -> str:
    """Blackjack hands are scoped per server (or per DM channel)."""
    if interaction.guild_id:
        return str(interaction.guild_id)
    return f"dm-{interaction.channel_id}"


def outcome_text(result: GameResult) -> str:
    outcome = result.outcome
    if result.game == "coinflip":
        return f"🪙 **{outcome.flip.upper()}**"
    if result.game == "slots":
        return f"Matched! **x{outcome.multiplier}**" if outcome.win else "No match"
    if result.game == "roulette":
        return f"Your bet: **{outcome.bet}**"
    if result.game == "dice":
        return f"Exact hit! **x{outcome.multiplier}**" if outcome.win else "Missed"
    if result.verdict == "push":
        return "Tie"
    return "Correct call" if outcome.win else "Wrong call"


def result_embed(interaction: Interaction, result: GameResult) -> discord.Embed:
    verdict = result.verdict
    headline = {"win": "WIN!", "lose": "LOSE", "push": "PUSH"}[verdict]
    return game_result_embed(
        interaction,
        title=f"{GAME_EMOJI[result.game]} {GAME_LABELS[result.game]} — {headline}",
        description=result.describe(),
        color=VERDICT_COLORS[verdict],
        bet=result.bet,
        outcome=outcome_text(result),
        payout=payout_text(verdict, result.bet, result.payout),
        balance=result.balance,
    )


def blackjack_embed(interaction: Interaction, session: BlackjackSession, balance: Optional[int] = None) -> discord.Embed:
    bet = session.bet
    pv, dv = session.player_value, session.dealer_value
    if not session.done:
        e = base_embed(interaction, THEME.color)
        e.title = "🃏 Blackjack"
        e.description = "Beat the dealer without going over **21**."
        e.add_field(name=f"Your Hand ({pv})", value=format_cards(session.player), inline=False)
        e.add_field(name="Dealer Shows", value=f"{session.dealer[0]}  ??", inline=False)
        e.add_field(name="Bet", value=f"**{bet}** coins", inline=True)
        return e

    if session.verdict == "win":
        title = "🃏 Blackjack — WIN!"
        text = f"✅ You win! (**{pv}** vs **{dv}**)\nYou receive **{bet * 2}** back (profit **{bet}**)."
    elif session.verdict == "push":
        title = "🃏 Blackjack — PUSH"
        text = f"🤝 Push! (**{pv}** vs **{dv}**)\nYou get your bet back (**{bet}**)."
    elif pv > 21:
        title = "🃏 Blackjack — BUST"
        text = f"**You busted** with **{pv}**.\n❌ You lose **{bet}** coins."
    else:
        title = "🃏 Blackjack — LOSE"
        text = f"❌ Dealer wins. (**{pv}** vs **{dv}**)\nYou lose **{bet}** coins."

    e = notice_embed(interaction, title, text, VERDICT_COLORS[session.verdict])
    e.add_field(name=f"Your Hand ({pv})", value=format_cards(session.player), inline=False)
    e.add_field(name=f"Dealer Hand ({dv})", value=format_cards(session.dealer), inline=False)
    if balance is not None:
        e.add_field(name="Balance", value=f"💰 **{balance}**", inline=True)
    e.set_footer(text=f"Bet: {bet} coins • Virtual coins only")
    return e


async def send_casino_error(interaction: Interaction, error: CasinoError):
    """Tell the player what went wrong without touching any state."""
    log.debug("Rejected %s for %s: %s", type(error).__name__, interaction.user.id, error)
    embed = notice_embed(interaction, error.title, str(error))
    if interaction.response.is_done():
        await interaction.followup.send(embed=embed, ephemeral=True)
    else:
        await interaction.response.send_message(embed=embed, ephemeral=True)


class BlackjackView(View):
    def __init__(self, casino: Casino, owner_id: int, context: str):
        super().__init__(timeout=300)
        self.casino   = casino
        self.owner_id = owner_id
        self.context  = context
        # set by the command after sending
        self.message: discord.Message | None = None

    async def interaction_check(self, interaction: Interaction) -> bool:
        if interaction.user.id != self.owner_id:
            await interaction.response.send_message("❌ This hand isn't yours.", ephemeral=True)
            return False
        return True

    @button(label="Hit", style=discord.ButtonStyle.primary)
    async def hit_button(self, interaction: Interaction, button: Button):
        await self._act(interaction, self.casino.blackjack_hit)

    @button(label="Stand", style=discord.ButtonStyle.secondary)
    async def stand_button(self, interaction: Interaction, button: Button):
        await self._act(interaction, self.casino.blackjack_stand)

    async def _act(self, interaction: Interaction, action):
        try:
            update = await action(self.context, interaction.user.id)
        except CasinoError as e:
            self._disable()
            self.stop()
            await send_casino_error(interaction, e)
            await self._refresh_message()
            return

        if update.session.done:
            self._disable()
            self.stop()
            embed = blackjack_embed(interaction, update.session, update.balance)
            await interaction.response.edit_message(embed=embed, view=None)
        else:
            await interaction.response.edit_message(embed=blackjack_embed(interaction, update.session), view=self)

    def _disable(self):
        for child in self.children:
            child.disabled = True

    async def on_error(self, interaction: Interaction, error: Exception, item: discord.ui.Item):
        log.error(
            "View error in %s for user %s: %s",
            self.__class__.__name__,
            interaction.user.id,
            error,
            exc_info=True
        )
        if not interaction.response.is_done():
            await interaction.response.send_message(
                "❌ Oops, that action failed. Please try again.",
                ephemeral=True
            )

    async def _refresh_message(self):
        """Push the current button state to the hand's message."""
        if self.message is None:
            return
        try:
            await self.message.edit(view=self)
        except discord.HTTPException:
            log.exception("Failed to update buttons in %s", self.__class__.__name__)

    async def on_timeout(self):
        # the hand stays unsettled; the stake is forfeited
        self._disable()
        await self._refresh_message()


class Gamble(commands.Cog):
    """Slash-only casino games"""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.casino: Casino = bot.casino

    async def _play(self, interaction: Interaction, game: str, bet: int, choice=None):
        result = await self.casino.play(
            GameRequest(game=game, player_id=str(interaction.user.id), bet=bet, choice=choice)
        )
        await interaction.response.send_message(embed=result_embed(interaction, result))

    @app_commands.command(name="coinflip", description="Bet on a coinflip.")
    @app_commands.describe(bet="Bet amount", choice="heads or tails")
    async def coinflip(self, interaction: Interaction, bet: Bet, choice: Literal["heads", "tails"]):
        await self._play(interaction, "coinflip", bet, choice)

    @app_commands.command(name="slots", description="Spin the slots.")
    @app_commands.describe(bet="Bet amount")
    async def slots(self, interaction: Interaction, bet: Bet):
        await self._play(interaction, "slots", bet)

    @app_commands.command(name="roulette", description="Roulette: red/black/even/odd/number.")
    @app_commands.describe(bet="Bet amount", type="Bet type", number="0-36 (only if type=number)")
    async def roulette(
        self,
        interaction: Interaction,
        bet: Bet,
        type: Literal["red", "black", "even", "odd", "number"],
        number: Optional[app_commands.Range[int, 0, 36]] = None,
    ):
        await self._play(interaction, "roulette", bet, (type, number))

    @app_commands.command(name="dice", description="Roll a die and guess the exact number.")
    @app_commands.describe(bet="Bet amount", guess="Pick a number from 1-6")
    async def dice(self, interaction: Interaction, bet: Bet, guess: app_commands.Range[int, 1, 6]):
        await self._play(interaction, "dice", bet, guess)

    @app_commands.command(name="highlow", description="Guess whether the next card is higher or lower.")
    @app_commands.describe(bet="Bet amount", guess="Higher or lower")
    async def highlow(self, interaction: Interaction, bet: Bet, guess: Literal["higher", "lower"]):
        await self._play(interaction, "highlow", bet, guess)

    @app_commands.command(name="blackjack", description="Play blackjack vs dealer (buttons).")
    @app_commands.describe(bet="Bet amount")
    async def blackjack(self, interaction: Interaction, bet: Bet):
        ctx = context_id(interaction)
        session = await self.casino.start_blackjack(ctx, interaction.user.id, bet)
        view = BlackjackView(self.casino, interaction.user.id, ctx)
        await interaction.response.send_message(embed=blackjack_embed(interaction, session), view=view)
        view.message = await interaction.original_response()

    # ───── COG‐LEVEL ERROR HANDLER ────────────────────────────────────────────
    async def cog_app_command_error(
        self,
        interaction: Interaction,
        error: app_commands.AppCommandError
    ):
        original = getattr(error, "original", error)
        if isinstance(original, CasinoError):
            return await send_casino_error(interaction, original)

        if isinstance(error, app_commands.CheckFailure):
            return await interaction.response.send_message(str(error), ephemeral=True)

        log.error(
            "Unhandled error in /%s: %s",
            interaction.command.name if interaction.command else "?",
            error,
            exc_info=error
        )
        embed = notice_embed(
            interaction,
            "Something went wrong",
            "Please try again later.",
            THEME.danger,
        )
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(Gamble(bot))
