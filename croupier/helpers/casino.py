"""Game dispatch and settlement.

:class:`Casino` sits between the chat surface and the store: it validates a
request, looks up the player's effective odds, runs the resolver (or moves
the blackjack hand along) and settles the ledger.  Every failure a player
can cause is a :class:`~croupier.helpers.errors.CasinoError` raised before
any balance changes.
"""

from __future__ import annotations

import time
import random
import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from croupier.helpers import games
from croupier.helpers.blackjack import BlackjackSession, SessionStore
from croupier.helpers.errors import (
    ClaimOnCooldown,
    InsufficientFunds,
    InvalidChoice,
    SessionExpired,
)
from croupier.helpers.game_config import GAME_KEYS, GameOdds, default_configs, parse_odds
from croupier.helpers.store import Store

log = logging.getLogger(__name__)

DAILY_AMOUNT = 500
DAILY_COOLDOWN_MS = 24 * 60 * 60 * 1000

GAME_LABELS = {
    "coinflip": "Coinflip",
    "slots": "Slots",
    "roulette": "Roulette",
    "dice": "Dice",
    "highlow": "High-Low",
    "blackjack": "Blackjack",
}


@dataclass
class GameRequest:
    game: str
    player_id: str
    bet: Any
    choice: Any = None


@dataclass
class GameResult:
    game: str
    bet: int
    outcome: Any
    payout: int
    balance: int

    @property
    def verdict(self) -> str:
        if getattr(self.outcome, "push", False):
            return "push"
        return "win" if self.outcome.win else "lose"

    @property
    def win(self) -> Union[bool, str]:
        verdict = self.verdict
        return "push" if verdict == "push" else verdict == "win"

    @property
    def net(self) -> int:
        return self.payout - self.bet

    def describe(self) -> str:
        return self.outcome.describe()


@dataclass
class BlackjackUpdate:
    session: BlackjackSession
    balance: Optional[int] = None  # set once the hand is settled


@dataclass
class DailyClaim:
    amount: int
    balance: int


def normalize_choice(game: str, choice):
    """Check a game's choice argument up front and return it in resolver form."""
    if game == "coinflip":
        if choice not in games.COIN_SIDES:
            raise InvalidChoice("Pick **heads** or **tails**.")
        return choice
    if game == "slots":
        return None
    if game == "roulette":
        if isinstance(choice, games.RouletteBet):
            return choice
        if isinstance(choice, str):
            return games.RouletteBet(choice)
        if isinstance(choice, (tuple, list)) and len(choice) == 2:
            return games.RouletteBet(*choice)
        raise InvalidChoice("Bet on red, black, even, odd or a number.")
    if game == "dice":
        if isinstance(choice, bool) or not isinstance(choice, int) or not 1 <= choice <= 6:
            raise InvalidChoice("Pick a number from **1** to **6**.")
        return choice
    if game == "highlow":
        if choice not in games.HIGHLOW_GUESSES:
            raise InvalidChoice("Guess **higher** or **lower**.")
        return choice
    raise InvalidChoice(f"Unknown game `{game}`.")


class Casino:
    def __init__(
        self,
        store: Store,
        sessions: Optional[SessionStore] = None,
        rng=random,
        defaults: Optional[Dict[str, Dict[str, float]]] = None,
        daily_amount: int = DAILY_AMOUNT,
        daily_cooldown_ms: int = DAILY_COOLDOWN_MS,
    ):
        self.store = store
        self.sessions = sessions if sessions is not None else SessionStore()
        self.rng = rng
        self.defaults = defaults or default_configs()
        self.daily_amount = daily_amount
        self.daily_cooldown_ms = daily_cooldown_ms
        # one lock per player keeps ledger and hand updates strictly sequential;
        # a lock disappears once no request holds or awaits it
        self._locks = weakref.WeakValueDictionary()

    def _lock(self, player_id: str) -> asyncio.Lock:
        uid = str(player_id)
        lock = self._locks.get(uid)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[uid] = lock
        return lock

    async def odds_for(self, player_id: str, game: str) -> GameOdds:
        default = self.defaults[game]
        fields = await self.store.get_effective_config(player_id, game, default)
        return parse_odds(game, fields, default)

    async def _ensure_funds(self, player_id: str, bet: int) -> int:
        balance = await self.store.get_balance(player_id)
        if balance < bet:
            raise InsufficientFunds(bet, balance)
        return balance

    def _resolve(self, game: str, choice, p: float):
        if game == "coinflip":
            return games.coinflip(choice, p, self.rng)
        if game == "slots":
            return games.spin_slots(p, self.rng)
        if game == "roulette":
            return games.spin_roulette(choice, p, self.rng)
        if game == "dice":
            return games.roll_dice(choice, p, self.rng)
        return games.highlow_round(choice, p, self.rng)

    async def play(self, request: GameRequest) -> GameResult:
        """Run one single-shot game and settle it.

        The stake and the payout are journaled in a single store transaction,
        so a failed write leaves the ledger as it was before the bet.
        """
        game = request.game
        if game == "blackjack":
            raise InvalidChoice("Blackjack is played with `/blackjack`.")
        if game not in GAME_KEYS:
            raise InvalidChoice(f"Unknown game `{game}`.")
        bet = games.validate_bet(request.bet)
        choice = normalize_choice(game, request.choice)
        uid = str(request.player_id)
        label = GAME_LABELS[game]

        async with self._lock(uid):
            await self._ensure_funds(uid, bet)
            odds = await self.odds_for(uid, game)
            outcome = self._resolve(game, choice, odds.probability)
            payout = games.payout_for(bet, outcome.multiplier)

            entries = [(-bet, f"{label} bet")]
            if payout > 0:
                reason = f"{label} push" if getattr(outcome, "push", False) else f"{label} win"
                entries.append((payout, reason))
            balance = await self.store.apply_entries(uid, entries)

        result = GameResult(game=game, bet=bet, outcome=outcome, payout=payout, balance=balance)
        log.info(
            "%s user=%s bet=%d verdict=%s payout=%d balance=%d",
            game, uid, bet, result.verdict, payout, balance,
        )
        return result

    # ─── blackjack ──────────────────────────────────────────────────────────────

    async def start_blackjack(self, context_id, player_id, bet) -> BlackjackSession:
        """Debit the stake, deal a biased hand and store it as the player's session."""
        bet = games.validate_bet(bet)
        uid = str(player_id)
        async with self._lock(uid):
            await self._settle_pending(context_id, uid)
            await self._ensure_funds(uid, bet)
            await self.store.adjust_balance(uid, -bet, "Blackjack bet")
            odds = await self.odds_for(uid, "blackjack")
            session = BlackjackSession.deal(bet, odds.probability, self.rng)
            replaced = self.sessions.put(context_id, uid, session)
        if replaced is not None:
            log.info(
                "Blackjack hand for user=%s in %s replaced; stake %d forfeited",
                uid, context_id, replaced.bet,
            )
        return session

    def _live_session(self, context_id, player_id) -> BlackjackSession:
        session = self.sessions.get(context_id, player_id)
        if session is None or session.done:
            raise SessionExpired()
        return session

    async def _settle_blackjack(self, context_id, uid: str, session: BlackjackSession) -> int:
        """Credit a finished hand, then drop it.

        If the credit fails the hand stays stored, finished but unsettled, and
        the player's next blackjack action settles it.
        """
        if session.payout > 0:
            balance = await self.store.adjust_balance(uid, session.payout, f"Blackjack {session.verdict}")
        else:
            balance = await self.store.get_balance(uid)
        session.settled = True
        self.sessions.discard(context_id, uid)
        log.info(
            "blackjack user=%s bet=%d verdict=%s player=%d dealer=%d payout=%d balance=%d",
            uid, session.bet, session.verdict, session.player_value,
            session.dealer_value, session.payout, balance,
        )
        return balance

    async def _settle_pending(self, context_id, uid: str) -> Optional[BlackjackUpdate]:
        session = self.sessions.get(context_id, uid)
        if session is None or not session.done or session.settled:
            return None
        log.info("Settling earlier blackjack hand for user=%s in %s", uid, context_id)
        balance = await self._settle_blackjack(context_id, uid, session)
        return BlackjackUpdate(session, balance)

    async def blackjack_hit(self, context_id, player_id) -> BlackjackUpdate:
        uid = str(player_id)
        async with self._lock(uid):
            pending = await self._settle_pending(context_id, uid)
            if pending is not None:
                return pending
            session = self._live_session(context_id, uid)
            session.hit(self.rng)
            balance = None
            if session.done:
                balance = await self._settle_blackjack(context_id, uid, session)
        return BlackjackUpdate(session, balance)

    async def blackjack_stand(self, context_id, player_id) -> BlackjackUpdate:
        uid = str(player_id)
        async with self._lock(uid):
            pending = await self._settle_pending(context_id, uid)
            if pending is not None:
                return pending
            session = self._live_session(context_id, uid)
            session.stand(self.rng)
            balance = await self._settle_blackjack(context_id, uid, session)
        return BlackjackUpdate(session, balance)

    # ─── daily allowance ────────────────────────────────────────────────────────

    async def claim_daily(self, player_id, now_ms: Optional[int] = None) -> DailyClaim:
        uid = str(player_id)
        now = int(time.time() * 1000) if now_ms is None else now_ms
        async with self._lock(uid):
            ledger = await self.store.get_ledger(uid)
            remaining = ledger.last_claim + self.daily_cooldown_ms - now
            if ledger.last_claim and remaining > 0:
                raise ClaimOnCooldown(remaining)
            balance = await self.store.adjust_balance(uid, self.daily_amount, "Daily claim")
            await self.store.set_last_claim(uid, now)
        return DailyClaim(amount=self.daily_amount, balance=balance)
