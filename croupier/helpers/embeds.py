from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Optional

import discord

THEME = SimpleNamespace(
    color=0x8B5CF6,
    success=0x22C55E,
    danger=0xEF4444,
    warn=0xF59E0B,
    info=0x3B82F6,
    footer="🎲 Casino Bot • Virtual coins only",
)

VERDICT_COLORS = {"win": THEME.success, "lose": THEME.danger, "push": THEME.info}


def base_embed(interaction: discord.Interaction, color: int = THEME.color) -> discord.Embed:
    user = interaction.user
    e = discord.Embed(color=color, timestamp=datetime.now(timezone.utc))
    avatar = getattr(user, "display_avatar", None)
    e.set_author(name=user.display_name, icon_url=avatar.url if avatar else None)
    e.set_footer(text=THEME.footer)
    return e


def notice_embed(interaction: discord.Interaction, title: str, description: str, color: int = THEME.warn) -> discord.Embed:
    e = base_embed(interaction, color)
    e.title = title
    e.description = description
    return e


def game_result_embed(
    interaction: discord.Interaction,
    *,
    title: str,
    description: str,
    color: int,
    bet: int,
    outcome: str,
    payout: str,
    balance: Optional[int] = None,
) -> discord.Embed:
    e = notice_embed(interaction, title, description, color)
    e.add_field(name="Bet", value=f"**{bet}**", inline=True)
    e.add_field(name="Outcome", value=outcome, inline=True)
    e.add_field(name="Payout", value=payout, inline=True)
    if balance is not None:
        e.add_field(name="Balance", value=f"💰 **{balance}** coins", inline=False)
    return e


def payout_text(verdict: str, bet: int, payout: int) -> str:
    if verdict == "push":
        return "0 (push)"
    if payout > 0:
        return f"+{payout - bet} (won {payout})"
    return f"-{bet}"
