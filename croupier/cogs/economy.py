import logging
from typing import Optional

import discord
from discord import app_commands, Interaction
from discord.ext import commands

from croupier.cogs.gambling import send_casino_error
from croupier.helpers.casino import Casino
from croupier.helpers.embeds import THEME, base_embed, notice_embed
from croupier.helpers.errors import CasinoError

log = logging.getLogger(__name__)


class Economy(commands.Cog):
    def __init__(self, bot):
        self.bot    = bot
        self.casino: Casino = bot.casino

    @app_commands.command(name="balance", description="Check balance.")
    @app_commands.describe(user="User to check")
    async def balance(self, interaction: Interaction, user: Optional[discord.User] = None):
        target = user or interaction.user
        bal = await self.casino.store.get_balance(str(target.id))
        e = base_embed(interaction, THEME.info)
        e.title = "💰 Balance"
        if target.id == interaction.user.id:
            e.description = "Here’s your current balance:"
        else:
            e.description = f"Here’s **{target.display_name}**'s current balance:"
        e.add_field(name=self.bot.config.COIN_NAME.title(), value=f"**{bal}**", inline=True)
        await interaction.response.send_message(embed=e)

    @app_commands.command(name="daily", description="Claim your daily allowance.")
    async def daily(self, interaction: Interaction):
        claim = await self.casino.claim_daily(str(interaction.user.id))
        e = notice_embed(
            interaction,
            "🎁 Daily Allowance Claimed!",
            f"You received **{claim.amount}** {self.bot.config.COIN_NAME}.",
            THEME.success,
        )
        e.add_field(name="New Balance", value=f"💰 **{claim.balance}**", inline=True)
        await interaction.response.send_message(embed=e)

    @app_commands.command(name="history", description="Show your recent transactions.")
    @app_commands.describe(limit="How many entries to show (1-20)")
    async def history(self, interaction: Interaction, limit: Optional[int] = 10):
        limit = max(1, min(limit or 10, 20))
        rows = await self.casino.store.get_transactions(str(interaction.user.id), limit)
        if not rows:
            return await interaction.response.send_message(
                "You have no transaction history yet.", ephemeral=True
            )

        # format each row: timestamp, +/-coins, reason
        lines = [f"<t:{ts}:f>  `{delta:+}`  {reason}" for delta, reason, ts in rows]
        embed = notice_embed(interaction, "📜 Your Recent Transactions", "\n".join(lines), THEME.info)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="dashboard", description="Get the admin dashboard link (admin only).")
    async def dashboard(self, interaction: Interaction):
        if str(interaction.user.id) not in self.bot.config.ADMIN_USER_IDS:
            return await interaction.response.send_message(
                embed=notice_embed(interaction, "Admins only", "You can't open the dashboard."),
                ephemeral=True,
            )
        await interaction.response.send_message(
            f"🛠️ Dashboard: {self.bot.config.DASHBOARD_URL}", ephemeral=True
        )

    async def cog_app_command_error(self, interaction: Interaction, error: app_commands.AppCommandError):
        original = getattr(error, "original", error)
        if isinstance(original, CasinoError):
            return await send_casino_error(interaction, original)
        log.error("Unhandled error in economy command: %s", error, exc_info=error)
        if not interaction.response.is_done():
            await interaction.response.send_message(
                "❌ Something went wrong! Please try again later.",
                ephemeral=True
            )


async def setup(bot):
    await bot.add_cog(Economy(bot))
