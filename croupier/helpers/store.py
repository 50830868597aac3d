import os
import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

import aiosqlite

from croupier.helpers.game_config import decode_fields, encode_fields, resolve_effective

log = logging.getLogger(__name__)
DB_PATH = os.getenv("CROUPIER_DB", "data/croupier.db")


@dataclass
class Ledger:
    user_id: str
    balance: int
    last_claim: int  # ms epoch, 0 = never


class Store:
    """Balances, odds config and per-user overrides in one SQLite file.

    Every write is last-write-wins; :class:`croupier.helpers.casino.Casino`
    serialises work per player so a row is only written by the request that
    read it.
    """

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def _db(self) -> aiosqlite.Connection:
        """Return the shared connection, opening it on first use."""
        if self._conn is None:
            async with self._lock:
                if self._conn is None:
                    db_dir = os.path.dirname(self.db_path)
                    if db_dir:
                        os.makedirs(db_dir, exist_ok=True)
                    self._conn = await aiosqlite.connect(self.db_path)
        return self._conn

    async def close(self):
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def _with_retry(self, fn, *args, **kwargs):
        """Simple 3-attempt retry with exponential backoff."""
        for attempt in range(1, 4):
            try:
                return await fn(*args, **kwargs)
            except aiosqlite.Error as e:
                if attempt == 3:
                    log.error("DB op permanently failed after 3 attempts", exc_info=True)
                    raise
                log.warning("DB op failed (attempt %d/3): %s", attempt, e)
                await asyncio.sleep(0.1 * 2 ** (attempt - 1))

    async def init(self):
        """Initialize all tables."""
        async def _init():
            db = await self._db()
            await db.executescript("""
            CREATE TABLE IF NOT EXISTS users (
              user_id    TEXT PRIMARY KEY,
              balance    INTEGER NOT NULL DEFAULT 0,
              last_claim INTEGER NOT NULL DEFAULT 0
            );
            CREATE TABLE IF NOT EXISTS transactions (
              id        INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id   TEXT NOT NULL,
              delta     INTEGER NOT NULL,
              reason    TEXT,
              timestamp INTEGER NOT NULL
            );
            CREATE TABLE IF NOT EXISTS config (
              key   TEXT PRIMARY KEY,
              value TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS user_config (
              user_id TEXT NOT NULL,
              key     TEXT NOT NULL,
              value   TEXT NOT NULL,
              PRIMARY KEY (user_id, key)
            );
            """)
            await db.commit()
        await self._with_retry(_init)

    # ─── ledger ─────────────────────────────────────────────────────────────────

    async def get_ledger(self, user_id: str) -> Ledger:
        """Return the player's ledger row, creating a zero balance row if unseen."""
        async def _get():
            db = await self._db()
            await db.execute(
                "INSERT OR IGNORE INTO users(user_id, balance, last_claim) VALUES(?, 0, 0)",
                (user_id,),
            )
            await db.commit()
            cur = await db.execute(
                "SELECT balance, last_claim FROM users WHERE user_id=?", (user_id,)
            )
            balance, last_claim = await cur.fetchone()
            return Ledger(user_id, balance, last_claim)
        return await self._with_retry(_get)

    async def get_balance(self, user_id: str) -> int:
        return (await self.get_ledger(user_id)).balance

    async def adjust_balance(self, user_id: str, delta: int, reason: str = "") -> int:
        """Add ``delta`` (may be negative) and journal it. Returns the new balance."""
        return await self.apply_entries(user_id, [(delta, reason)])

    async def apply_entries(self, user_id: str, entries: List[Tuple[int, str]]) -> int:
        """Apply ``(delta, reason)`` entries in one transaction.

        Either every entry lands in the balance and the journal or none does.
        Returns the new balance.
        """
        ts = int(time.time())
        async def _upd():
            db = await self._db()
            try:
                for delta, reason in entries:
                    await db.execute("""
                      INSERT INTO users(user_id, balance) VALUES(?,?)
                      ON CONFLICT(user_id) DO UPDATE
                        SET balance = users.balance + excluded.balance;
                    """, (user_id, delta))
                    await db.execute("""
                      INSERT INTO transactions(user_id, delta, reason, timestamp)
                      VALUES (?,?,?,?);
                    """, (user_id, delta, reason, ts))
                await db.commit()
            except aiosqlite.Error:
                await db.rollback()
                raise
            cur = await db.execute("SELECT balance FROM users WHERE user_id=?", (user_id,))
            row = await cur.fetchone()
            return row[0]
        return await self._with_retry(_upd)

    async def set_balance(self, user_id: str, value: int, reason: str = "Balance set") -> int:
        ts = int(time.time())
        async def _set():
            db = await self._db()
            cur = await db.execute("SELECT balance FROM users WHERE user_id=?", (user_id,))
            row = await cur.fetchone()
            previous = row[0] if row else 0
            await db.execute("""
              INSERT INTO users(user_id, balance) VALUES(?,?)
              ON CONFLICT(user_id) DO UPDATE SET balance = excluded.balance;
            """, (user_id, value))
            if value != previous:
                await db.execute("""
                  INSERT INTO transactions(user_id, delta, reason, timestamp)
                  VALUES (?,?,?,?);
                """, (user_id, value - previous, reason, ts))
            await db.commit()
            return value
        return await self._with_retry(_set)

    async def set_last_claim(self, user_id: str, ts_ms: int):
        async def _set():
            db = await self._db()
            await db.execute("""
              INSERT INTO users(user_id, last_claim) VALUES(?,?)
              ON CONFLICT(user_id) DO UPDATE SET last_claim = excluded.last_claim;
            """, (user_id, ts_ms))
            await db.commit()
        await self._with_retry(_set)

    async def get_last_claim(self, user_id: str) -> int:
        return (await self.get_ledger(user_id)).last_claim

    async def get_top_balances(self, limit: int = 200) -> List[Tuple[str, int, int]]:
        db = await self._db()
        cur = await db.execute(
            "SELECT user_id, balance, last_claim FROM users ORDER BY balance DESC LIMIT ?",
            (limit,)
        )
        return await cur.fetchall()

    async def get_transactions(self, user_id: str, limit: int = 10):
        db = await self._db()
        cur = await db.execute("""
            SELECT delta, reason, timestamp
              FROM transactions
             WHERE user_id = ?
          ORDER BY id DESC
             LIMIT ?
        """, (user_id, limit))
        return await cur.fetchall()

    # ─── odds config ────────────────────────────────────────────────────────────

    async def set_global_config(self, key: str, value: Mapping[str, Any]):
        """Overwrite the global field map for ``key``."""
        async def _set():
            db = await self._db()
            await db.execute("""
              INSERT INTO config(key, value) VALUES(?,?)
              ON CONFLICT(key) DO UPDATE SET value=excluded.value;
            """, (key, encode_fields(value)))
            await db.commit()
        await self._with_retry(_set)

    async def get_global_config(self, key: str, default: Mapping[str, Any]) -> Dict[str, Any]:
        """Return the global field map, writing ``default`` if missing or corrupt."""
        db = await self._db()
        cur = await db.execute("SELECT value FROM config WHERE key=?", (key,))
        row = await cur.fetchone()
        fields = decode_fields(row[0]) if row else None
        if fields is None:
            if row:
                log.warning("Corrupt global config for %s, restoring default", key)
            await self.set_global_config(key, default)
            return dict(default)
        return fields

    async def get_user_override(self, user_id: str, key: str) -> Optional[Dict[str, Any]]:
        db = await self._db()
        cur = await db.execute(
            "SELECT value FROM user_config WHERE user_id=? AND key=?", (user_id, key)
        )
        row = await cur.fetchone()
        if not row:
            return None
        fields = decode_fields(row[0])
        if fields is None:
            log.warning("Corrupt %s override for user %s, dropping it", key, user_id)
            await self.clear_user_override(user_id, key)
        return fields

    async def set_user_override(self, user_id: str, key: str, value: Mapping[str, Any]):
        async def _set():
            db = await self._db()
            await db.execute("""
              INSERT INTO user_config(user_id, key, value) VALUES(?,?,?)
              ON CONFLICT(user_id, key) DO UPDATE SET value=excluded.value;
            """, (user_id, key, encode_fields(value)))
            await db.commit()
        await self._with_retry(_set)

    async def clear_user_override(self, user_id: str, key: str):
        async def _clear():
            db = await self._db()
            await db.execute(
                "DELETE FROM user_config WHERE user_id=? AND key=?", (user_id, key)
            )
            await db.commit()
        await self._with_retry(_clear)

    async def list_user_overrides(self, limit: int = 200) -> List[Tuple[str, str, Dict[str, Any]]]:
        db = await self._db()
        cur = await db.execute(
            "SELECT user_id, key, value FROM user_config ORDER BY user_id, key LIMIT ?",
            (limit,)
        )
        overrides = []
        for user_id, key, raw in await cur.fetchall():
            fields = decode_fields(raw)
            if fields is not None:
                overrides.append((user_id, key, fields))
        return overrides

    async def get_effective_config(self, user_id: str, key: str, default: Mapping[str, Any]) -> Dict[str, Any]:
        """Default, then global config, then the user's override."""
        global_cfg = await self.get_global_config(key, default)
        override = await self.get_user_override(user_id, key)
        return resolve_effective(default, global_cfg, override)
