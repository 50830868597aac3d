# File: croupier/bot.py
import os
from dotenv import load_dotenv

# Some hosts hand us a `.env` saved as Windows-1252; fall back to a
# single-byte read so a stray accent does not stop the casino.
try:  # pragma: no cover - depends on the host's .env
    load_dotenv()
except UnicodeDecodeError:  # pragma: no cover - depends on the host's .env
    load_dotenv(encoding="latin-1")

import asyncio
import pathlib
import logging
from types import SimpleNamespace

import discord
import yaml
from discord.errors import Forbidden, LoginFailure
from discord.ext import commands

from croupier.helpers.casino import Casino, DAILY_AMOUNT
from croupier.helpers.game_config import default_configs
from croupier.helpers.store import Store
from croupier.utils.logger_setup import setup_logger
from croupier.web.dashboard import AdminConsole, DashboardSettings, start_dashboard

TOKEN          = os.getenv("DISCORD_TOKEN")
DEV_GUILD_ID   = int(os.getenv("DEV_GUILD_ID", "0"))  # 0 = global sync only
COIN_NAME      = os.getenv("COIN_NAME", "coins")
DASHBOARD_HOST = os.getenv("DASHBOARD_HOST", "127.0.0.1")
DASHBOARD_PORT = int(os.getenv("DASHBOARD_PORT", "3000"))
ADMIN_USER_IDS = frozenset(
    s.strip() for s in os.getenv("ADMIN_USER_IDS", "").split(",") if s.strip()
)
CONFIG_PATH    = os.getenv("CROUPIER_CONFIG", "config/croupier.yml")

# Root logger goes to stdout; discord.py and aiohttp log through it
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)-15s %(message)s",
)
# Casino modules additionally keep a rotating file under ./logs
setup_logger("croupier", "logs/croupier.log")
logging.getLogger("discord.gateway").setLevel(logging.INFO)

log = logging.getLogger(__name__)


def load_yaml_config(path: str = CONFIG_PATH) -> dict:
    """Read the casino YAML file; a missing file means built-in defaults."""
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


CASINO_CONFIG = load_yaml_config()
DAILY = int(os.getenv("DAILY_AMOUNT", CASINO_CONFIG.get("daily_amount", DAILY_AMOUNT)))

bot = commands.Bot(
    command_prefix="/",
    help_command=None,
    intents=discord.Intents.default(),
)

# Cogs read their settings from here
bot.config = SimpleNamespace(
    DEV_GUILD_ID=DEV_GUILD_ID,
    COIN_NAME=COIN_NAME,
    DAILY_AMOUNT=DAILY,
    ADMIN_USER_IDS=ADMIN_USER_IDS,
    DASHBOARD_URL=os.getenv("DASHBOARD_URL", f"http://localhost:{DASHBOARD_PORT}/login"),
    ODDS=default_configs(CASINO_CONFIG.get("odds")),
)


def cog_modules() -> list:
    """Dotted module paths for every cog file under ``croupier/cogs``."""
    root = pathlib.Path(__file__).parent / "cogs"
    modules = []
    for path in sorted(root.rglob("*.py")):
        if path.name.startswith("_"):
            continue
        parts = path.relative_to(root).with_suffix("").parts
        modules.append(".".join(("croupier", "cogs") + parts))
    return modules


async def load_extensions() -> None:
    for module in cog_modules():
        try:
            await bot.load_extension(module)
        except commands.ExtensionError as e:
            log.warning("⚠️ Cog %s did not load: %s", module, e)
        else:
            log.info("🎰 Cog ready: %s", module)


async def sync_app_commands(bot: commands.Bot) -> None:
    """Push slash commands to the dev guild first (if set), then globally."""
    names = [c.name for c in bot.tree.get_commands()]
    log.info("Syncing %d slash commands: %s", len(names), names)

    if DEV_GUILD_ID:
        dev_guild = discord.Object(id=DEV_GUILD_ID)
        bot.tree.copy_global_to(guild=dev_guild)
        try:
            synced = await bot.tree.sync(guild=dev_guild)
            log.info("Dev guild %s now has %d commands", DEV_GUILD_ID, len(synced))
        except Forbidden:
            log.warning("Not allowed to sync dev guild %s; global sync only", DEV_GUILD_ID)
        except discord.HTTPException:
            log.error("Dev guild command sync failed", exc_info=True)

    try:
        synced = await bot.tree.sync()
        log.info("Global command set synced (%d commands)", len(synced))
    except discord.HTTPException:
        log.error("Global command sync failed", exc_info=True)


@bot.event
async def on_ready() -> None:
    log.info("🃏 Croupier online as %s (ID: %s) in %d guilds", bot.user, bot.user.id, len(bot.guilds))
    await sync_app_commands(bot)


async def main() -> None:
    store = Store()
    await store.init()
    bot.casino = Casino(store, defaults=bot.config.ODDS, daily_amount=DAILY)

    settings = DashboardSettings(
        client_id=os.getenv("CLIENT_ID", ""),
        client_secret=os.getenv("CLIENT_SECRET", ""),
        redirect_uri=os.getenv("DASHBOARD_REDIRECT_URI", ""),
        admin_ids=ADMIN_USER_IDS,
    )
    runner = None
    try:
        runner = await start_dashboard(
            AdminConsole(store, bot.config.ODDS), settings, DASHBOARD_HOST, DASHBOARD_PORT
        )
    except OSError:
        log.error("Dashboard could not bind %s:%d", DASHBOARD_HOST, DASHBOARD_PORT, exc_info=True)

    try:
        async with bot:
            await load_extensions()
            try:
                await bot.start(TOKEN)
            except (LoginFailure, TypeError):
                log.error("DISCORD_TOKEN is missing or rejected by Discord; not starting.")
    finally:
        if runner is not None:
            await runner.cleanup()
        await store.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
