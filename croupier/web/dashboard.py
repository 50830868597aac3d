"""Admin console for odds and balances.

The console only talks to the store through :class:`AdminConsole`; the
aiohttp routes below parse form fields, call it and redirect back to
``/dashboard``.  Logins go through Discord OAuth and are limited to the
``ADMIN_USER_IDS`` allow-list.  Sessions are kept in memory.
"""

import html
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional
from urllib.parse import urlencode

import aiohttp
from aiohttp import web

from croupier.helpers.game_config import (
    GAME_KEYS,
    PROBABILITY_FIELDS,
    ensure_game,
    fields_for_percent,
    probability_to_percent,
)
from croupier.helpers.casino import GAME_LABELS
from croupier.helpers.store import Store

log = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api"
SESSION_COOKIE = "croupier_session"


class AdminConsole:
    """Function-call interface the web routes (and tests) drive."""

    def __init__(self, store: Store, defaults: Dict[str, Dict[str, float]]):
        self.store = store
        self.defaults = defaults

    async def set_global_odds(self, game: str, pct) -> Dict[str, float]:
        fields = fields_for_percent(ensure_game(game), pct)
        await self.store.set_global_config(game, fields)
        log.info("Global %s odds set to %s", game, fields)
        return fields

    async def set_user_odds(self, user_id: str, game: str, pct) -> Dict[str, float]:
        user_id = str(user_id).strip()
        if not user_id:
            raise ValueError("missing user id")
        fields = fields_for_percent(ensure_game(game), pct)
        await self.store.set_user_override(user_id, game, fields)
        log.info("%s odds override for user %s set to %s", game, user_id, fields)
        return fields

    async def clear_user_odds(self, user_id: str, game: str):
        await self.store.clear_user_override(str(user_id).strip(), ensure_game(game))
        log.info("%s odds override for user %s cleared", game, user_id)

    async def set_balance(self, user_id: str, value) -> int:
        user_id = str(user_id).strip()
        if not user_id:
            raise ValueError("missing user id")
        balance = max(0, int(value))
        await self.store.set_balance(user_id, balance, "Balance set from dashboard")
        log.info("Balance for user %s set to %d", user_id, balance)
        return balance

    async def odds_percentages(self) -> Dict[str, int]:
        pcts = {}
        for game in GAME_KEYS:
            cfg = await self.store.get_global_config(game, self.defaults[game])
            name = PROBABILITY_FIELDS[game]
            pcts[game] = probability_to_percent(cfg.get(name, self.defaults[game][name]))
        return pcts

    async def snapshot(self, limit: int = 200) -> Dict[str, Any]:
        return {
            "odds": await self.odds_percentages(),
            "balances": await self.store.get_top_balances(limit),
            "overrides": await self.store.list_user_overrides(limit),
        }


@dataclass
class DashboardSettings:
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    admin_ids: FrozenSet[str] = frozenset()
    sessions: Dict[str, Dict[str, str]] = field(default_factory=dict)


CONSOLE_KEY = web.AppKey("console", AdminConsole)
SETTINGS_KEY = web.AppKey("settings", DashboardSettings)


# ─── OAuth ───────────────────────────────────────────────────────────────────────
async def exchange_code_for_token(settings: DashboardSettings, code: str) -> Dict[str, Any]:
    data = {
        "client_id": settings.client_id,
        "client_secret": settings.client_secret,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.redirect_uri,
    }
    async with aiohttp.ClientSession() as session:
        async with session.post(f"{DISCORD_API}/oauth2/token", data=data) as resp:
            resp.raise_for_status()
            return await resp.json()


async def fetch_discord_user(access_token: str) -> Dict[str, Any]:
    headers = {"Authorization": f"Bearer {access_token}"}
    async with aiohttp.ClientSession() as session:
        async with session.get(f"{DISCORD_API}/users/@me", headers=headers) as resp:
            resp.raise_for_status()
            return await resp.json()


def _current_user(request: web.Request) -> Optional[Dict[str, str]]:
    settings: DashboardSettings = request.app[SETTINGS_KEY]
    token = request.cookies.get(SESSION_COOKIE)
    return settings.sessions.get(token) if token else None


def admin_required(handler):
    async def wrapper(request: web.Request):
        user = _current_user(request)
        if user is None:
            raise web.HTTPFound("/login")
        if user["id"] not in request.app[SETTINGS_KEY].admin_ids:
            return web.Response(status=403, text="Forbidden (not admin).")
        return await handler(request)
    return wrapper


# ─── HTML ────────────────────────────────────────────────────────────────────────
STYLE = """
  body { font-family: ui-sans-serif, system-ui; background:#0b1020; color:#e5e7eb; margin:0; }
  .wrap { max-width: 1100px; margin: 0 auto; padding: 24px; }
  .card { background: rgba(255,255,255,0.06); border-radius: 14px; padding: 16px; margin: 16px 0; }
  a { color:#a78bfa; text-decoration:none; }
  table { width:100%; border-collapse: collapse; }
  th, td { border-bottom: 1px solid rgba(255,255,255,0.08); padding: 10px; text-align:left; }
  input, select { padding: 8px; border-radius: 8px; }
  .row { display:grid; grid-template-columns: 1fr 1fr 1fr; gap: 16px; }
  .btn { background:#8b5cf6; border:none; color:white; padding:8px 12px; border-radius: 8px; cursor:pointer; }
  .muted { color:#9ca3af; }
"""


def html_page(title: str, body: str) -> web.Response:
    page = (
        "<!doctype html><html><head><meta charset='utf-8'/>"
        f"<title>{html.escape(title)}</title><style>{STYLE}</style></head>"
        f"<body><div class='wrap'>{body}</div></body></html>"
    )
    return web.Response(text=page, content_type="text/html")


def render_dashboard(user: Dict[str, str], snap: Dict[str, Any]) -> str:
    esc = html.escape
    odds_forms = "".join(
        f"""
        <div>
          <h3>{esc(GAME_LABELS[game])}</h3>
          <form method="POST" action="/config/{game}">
            <label>Win chance (%)</label>
            <input type="number" name="pct" min="0" max="100" value="{pct}"/>
            <button class="btn" type="submit">Update</button>
          </form>
        </div>"""
        for game, pct in snap["odds"].items()
    )
    game_options = "".join(f"<option value='{g}'>{esc(GAME_LABELS[g])}</option>" for g in GAME_KEYS)
    override_rows = "".join(
        f"""
        <tr><td>{esc(uid)}</td><td>{esc(GAME_LABELS.get(game, game))}</td>
          <td>{probability_to_percent(fields.get(PROBABILITY_FIELDS.get(game, ''), 0))}%</td>
          <td><form method="POST" action="/overrides/{esc(game)}/clear">
            <input type="hidden" name="user_id" value="{esc(uid)}"/>
            <button class="btn" type="submit">Clear</button></form></td></tr>"""
        for uid, game, fields in snap["overrides"]
    )
    balance_rows = "".join(
        f"""
        <tr><td>{esc(uid)}</td><td><b>{balance}</b></td>
          <td><form method="POST" action="/balances/{esc(uid)}">
            <input type="number" name="balance" value="{balance}" min="0" step="1"/>
            <button class="btn" type="submit">Save</button></form></td></tr>"""
        for uid, balance, _ in snap["balances"]
    )
    return f"""
      <div class="card">
        <h1>Casino Dashboard</h1>
        <p class="muted">Logged in as <b>{esc(user['username'])}</b> • <a href="/logout">Logout</a></p>
      </div>
      <div class="card">
        <h2>Odds &amp; Chances</h2>
        <p class="muted">These affect randomness internally. They are <b>not shown</b> to players.</p>
        <div class="row">{odds_forms}</div>
      </div>
      <div class="card">
        <h2>Per-user overrides</h2>
        <form method="POST" action="/overrides">
          <input type="text" name="user_id" placeholder="User ID"/>
          <select name="game">{game_options}</select>
          <input type="number" name="pct" min="0" max="100" placeholder="%"/>
          <button class="btn" type="submit">Set override</button>
        </form>
        <table><thead><tr><th>User</th><th>Game</th><th>Chance</th><th></th></tr></thead>
        <tbody>{override_rows}</tbody></table>
      </div>
      <div class="card">
        <h2>Balances (Top 200)</h2>
        <table><thead><tr><th>User ID</th><th>Balance</th><th>Edit</th></tr></thead>
        <tbody>{balance_rows}</tbody></table>
        <form method="POST" action="/balances/set-any" style="margin-top:16px;">
          <input type="text" name="user_id" placeholder="User ID"/>
          <input type="number" name="balance" min="0" step="1" placeholder="Balance"/>
          <button class="btn" type="submit">Set Balance</button>
        </form>
      </div>
    """


# ─── routes ──────────────────────────────────────────────────────────────────────
async def index(request: web.Request):
    raise web.HTTPFound("/dashboard")


async def login(request: web.Request):
    settings: DashboardSettings = request.app[SETTINGS_KEY]
    query = urlencode({
        "client_id": settings.client_id,
        "redirect_uri": settings.redirect_uri,
        "response_type": "code",
        "scope": "identify",
    })
    return html_page("Login", f"""
      <div class="card">
        <h1>Casino Dashboard</h1>
        <p class="muted">Login with Discord to manage balances and odds.</p>
        <p><a href="{DISCORD_API}/oauth2/authorize?{html.escape(query)}">→ Login with Discord</a></p>
      </div>""")


async def oauth_callback(request: web.Request):
    settings: DashboardSettings = request.app[SETTINGS_KEY]
    code = request.query.get("code")
    if not code:
        return web.Response(status=400, text="Missing code")
    try:
        token = await exchange_code_for_token(settings, code)
        user = await fetch_discord_user(token["access_token"])
    except (aiohttp.ClientError, KeyError):
        log.error("Dashboard OAuth login failed", exc_info=True)
        return web.Response(status=500, text="Auth failed.")

    session_token = secrets.token_urlsafe(32)
    settings.sessions[session_token] = {"id": str(user["id"]), "username": user.get("username", "")}
    resp = web.HTTPFound("/dashboard")
    resp.set_cookie(SESSION_COOKIE, session_token, httponly=True, samesite="Lax")
    raise resp


async def logout(request: web.Request):
    settings: DashboardSettings = request.app[SETTINGS_KEY]
    settings.sessions.pop(request.cookies.get(SESSION_COOKIE, ""), None)
    resp = web.HTTPFound("/login")
    resp.del_cookie(SESSION_COOKIE)
    raise resp


@admin_required
async def dashboard(request: web.Request):
    console: AdminConsole = request.app[CONSOLE_KEY]
    snap = await console.snapshot()
    return html_page("Dashboard", render_dashboard(_current_user(request), snap))


def _bad_request(text: str):
    return web.Response(status=400, text=text)


@admin_required
async def update_odds(request: web.Request):
    console: AdminConsole = request.app[CONSOLE_KEY]
    form = await request.post()
    try:
        await console.set_global_odds(request.match_info["game"], form.get("pct", ""))
    except KeyError:
        raise web.HTTPNotFound()
    except ValueError:
        return _bad_request("Chance must be a number between 0 and 100.")
    raise web.HTTPFound("/dashboard")


@admin_required
async def set_override(request: web.Request):
    console: AdminConsole = request.app[CONSOLE_KEY]
    form = await request.post()
    try:
        game = request.match_info.get("game") or form.get("game", "")
        await console.set_user_odds(form.get("user_id", ""), game, form.get("pct", ""))
    except KeyError:
        return _bad_request("Unknown game.")
    except ValueError:
        return _bad_request("A user id and a chance between 0 and 100 are required.")
    raise web.HTTPFound("/dashboard")


@admin_required
async def clear_override(request: web.Request):
    console: AdminConsole = request.app[CONSOLE_KEY]
    form = await request.post()
    try:
        await console.clear_user_odds(form.get("user_id", ""), request.match_info["game"])
    except KeyError:
        raise web.HTTPNotFound()
    raise web.HTTPFound("/dashboard")


@admin_required
async def set_balance(request: web.Request):
    console: AdminConsole = request.app[CONSOLE_KEY]
    form = await request.post()
    user_id = request.match_info.get("user_id") or form.get("user_id", "")
    try:
        await console.set_balance(user_id, form.get("balance") or "0")
    except ValueError:
        return _bad_request("A user id and a whole-number balance are required.")
    raise web.HTTPFound("/dashboard")


def create_app(console: AdminConsole, settings: DashboardSettings) -> web.Application:
    app = web.Application()
    app[CONSOLE_KEY] = console
    app[SETTINGS_KEY] = settings
    app.router.add_get("/", index)
    app.router.add_get("/login", login)
    app.router.add_get("/auth/discord/callback", oauth_callback)
    app.router.add_get("/logout", logout)
    app.router.add_get("/dashboard", dashboard)
    app.router.add_post("/config/{game}", update_odds)
    app.router.add_post("/overrides", set_override)
    app.router.add_post("/overrides/{game}", set_override)
    app.router.add_post("/overrides/{game}/clear", clear_override)
    # literal route first so "set-any" is not read as a user id
    app.router.add_post("/balances/set-any", set_balance)
    app.router.add_post("/balances/{user_id}", set_balance)
    return app


async def start_dashboard(
    console: AdminConsole,
    settings: DashboardSettings,
    host: str = "127.0.0.1",
    port: int = 3000,
) -> web.AppRunner:
    """Start the dashboard HTTP server; the caller cleans up the runner."""
    runner = web.AppRunner(create_app(console, settings))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    log.info("🛠️ Dashboard: http://%s:%d/login", host, port)
    return runner
