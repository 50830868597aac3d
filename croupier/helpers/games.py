"""Single-shot game resolvers.

Each resolver turns a player's choice plus a win parameter into an outcome.
They never touch balances; :class:`croupier.helpers.casino.Casino` debits
the stake and credits ``floor(multiplier * bet)`` afterwards.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import List, Optional

from croupier.helpers.errors import InvalidBet, InvalidChoice
from croupier.helpers.odds import chance, clamp_probability, sample_until, weighted_pick

MAX_BET = 1_000_000


def validate_bet(bet) -> int:
    """Return ``bet`` if it is a usable stake, otherwise raise :class:`InvalidBet`."""
    if isinstance(bet, bool) or not isinstance(bet, int) or bet <= 0:
        raise InvalidBet("Use a positive whole number.")
    if bet > MAX_BET:
        raise InvalidBet(f"Bets are capped at **{MAX_BET:,}** coins.")
    return bet


def payout_for(bet: int, multiplier: float) -> int:
    return math.floor(multiplier * bet)


# ─── Coinflip ──────────────────────────────────────────────────────────────────
COIN_SIDES = ("heads", "tails")
COINFLIP_MULTIPLIER = 2


@dataclass
class CoinflipResult:
    flip: str
    choice: str
    win: bool

    @property
    def multiplier(self) -> float:
        return COINFLIP_MULTIPLIER if self.win else 0

    def describe(self) -> str:
        return f"It landed on **{self.flip}**. You guessed **{self.choice}**."


def coinflip(choice: str, heads_prob: float = 0.5, rng=random) -> CoinflipResult:
    if choice not in COIN_SIDES:
        raise InvalidChoice("Pick **heads** or **tails**.")
    flip = "heads" if chance(heads_prob, rng) else "tails"
    return CoinflipResult(flip=flip, choice=choice, win=flip == choice)


# ─── Slots ─────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class SlotSymbol:
    emoji: str
    weight: int
    triple: int


SLOT_SYMBOLS = (
    SlotSymbol("🍒", 40, 3),
    SlotSymbol("🍋", 30, 4),
    SlotSymbol("🍇", 18, 6),
    SlotSymbol("🔔", 9, 12),
    SlotSymbol("💎", 3, 30),
)
SLOTS_PAIR_MULTIPLIER = 1.3
# share of forced wins that land as a triple rather than a pair
SLOTS_FORCED_TRIPLE_SHARE = 0.25


@dataclass
class SlotsResult:
    line: List[str]
    multiplier: float

    @property
    def win(self) -> bool:
        return self.multiplier > 0

    def describe(self) -> str:
        return "**" + " | ".join(self.line) + "**"


def _pick_symbol(rng) -> str:
    return weighted_pick(SLOT_SYMBOLS, lambda s: s.weight, rng).emoji


def slots_multiplier(line: List[str]) -> float:
    a, b, c = line
    if a == b == c:
        for sym in SLOT_SYMBOLS:
            if sym.emoji == a:
                return sym.triple
        return 0
    if a == b or b == c or a == c:
        return SLOTS_PAIR_MULTIPLIER
    return 0


def spin_slots(win_chance: float = 0.28, rng=random) -> SlotsResult:
    """Spin three reels, forcing a pair or triple with probability ``win_chance``."""
    if chance(win_chance, rng):
        sym = _pick_symbol(rng)
        if rng.random() < SLOTS_FORCED_TRIPLE_SHARE:
            line = [sym, sym, sym]
        else:
            other = _pick_symbol(rng)
            line = rng.choice([
                [sym, sym, other],
                [sym, other, sym],
                [other, sym, sym],
            ])
    else:
        line = [_pick_symbol(rng) for _ in range(3)]
    return SlotsResult(line=line, multiplier=slots_multiplier(line))


# ─── Roulette ──────────────────────────────────────────────────────────────────
RED_NUMBERS = frozenset({1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36})
ROULETTE_KINDS = ("red", "black", "even", "odd", "number")
ROULETTE_REROLLS = 6


@dataclass(frozen=True)
class Pocket:
    number: int
    color: str
    parity: Optional[str]

    def __str__(self) -> str:
        if self.parity is None:
            return f"**{self.number}** ({self.color})"
        return f"**{self.number}** ({self.color}, {self.parity})"


@dataclass(frozen=True)
class RouletteBet:
    kind: str
    number: Optional[int] = None

    def __post_init__(self):
        if self.kind not in ROULETTE_KINDS:
            raise InvalidChoice("Bet on red, black, even, odd or a number.")
        if self.kind == "number":
            if self.number is None:
                raise InvalidChoice("If **type=number**, you must provide a number from **0–36**.")
            if isinstance(self.number, bool) or not isinstance(self.number, int) or not 0 <= self.number <= 36:
                raise InvalidChoice("Roulette numbers run from **0** to **36**.")
        elif self.number is not None:
            raise InvalidChoice("Only provide a number when **type=number**.")

    def __str__(self) -> str:
        if self.kind == "number":
            return f"number ({self.number})"
        return self.kind


@dataclass
class RouletteResult:
    pocket: Pocket
    bet: RouletteBet
    win: bool

    @property
    def multiplier(self) -> float:
        return roulette_multiplier(self.bet.kind) if self.win else 0

    def describe(self) -> str:
        return f"Result: {self.pocket}"


def roulette_pocket(n: int) -> Pocket:
    if n == 0:
        return Pocket(0, "green", None)
    color = "red" if n in RED_NUMBERS else "black"
    return Pocket(n, color, "even" if n % 2 == 0 else "odd")


def roulette_is_win(pocket: Pocket, bet: RouletteBet) -> bool:
    if bet.kind in ("red", "black"):
        return pocket.color == bet.kind
    if bet.kind in ("even", "odd"):
        return pocket.parity == bet.kind
    return pocket.number == bet.number


def roulette_multiplier(kind: str) -> int:
    if kind == "number":
        return 36
    if kind in ("red", "black", "even", "odd"):
        return 2
    return 0


def spin_roulette(bet: RouletteBet, player_win_chance: float = 0.47, rng=random) -> RouletteResult:
    pocket = sample_until(
        lambda: roulette_pocket(rng.randrange(37)),
        lambda p: roulette_is_win(p, bet),
        player_win_chance,
        ROULETTE_REROLLS,
        rng,
    )
    return RouletteResult(pocket=pocket, bet=bet, win=roulette_is_win(pocket, bet))


# ─── Dice ──────────────────────────────────────────────────────────────────────
DICE_MULTIPLIER = 6
DICE_REROLLS = 5


@dataclass
class DiceResult:
    guess: int
    roll: int

    @property
    def win(self) -> bool:
        return self.roll == self.guess

    @property
    def multiplier(self) -> float:
        return DICE_MULTIPLIER if self.win else 0

    def describe(self) -> str:
        return f"You guessed **{self.guess}**. The die shows **{self.roll}**."


def roll_dice(guess: int, player_win_chance: float = 0.18, rng=random) -> DiceResult:
    """Roll one die against an exact guess.

    Unlike the other resolvers, ``p == 0`` and ``p == 1`` are exact: the die
    is forced to miss or hit.
    """
    if isinstance(guess, bool) or not isinstance(guess, int) or not 1 <= guess <= 6:
        raise InvalidChoice("Pick a number from **1** to **6**.")
    p = clamp_probability(player_win_chance)
    if p == 1:
        return DiceResult(guess=guess, roll=guess)
    if p == 0:
        return DiceResult(guess=guess, roll=2 if guess == 1 else 1)
    roll = sample_until(
        lambda: rng.randint(1, 6),
        lambda r: r == guess,
        p,
        DICE_REROLLS,
        rng,
    )
    return DiceResult(guess=guess, roll=roll)


# ─── High-Low ──────────────────────────────────────────────────────────────────
HIGHLOW_GUESSES = ("higher", "lower")
HIGHLOW_TIE_CHANCE = 0.08
HIGHLOW_MULTIPLIER = 2
RANK_NAMES = {11: "J", 12: "Q", 13: "K", 14: "A"}


def rank_name(rank: int) -> str:
    return RANK_NAMES.get(rank, str(rank))


@dataclass
class HighLowResult:
    guess: str
    base: int
    next: int

    @property
    def push(self) -> bool:
        return self.next == self.base

    @property
    def win(self) -> bool:
        if self.push:
            return False
        return self.next > self.base if self.guess == "higher" else self.next < self.base

    @property
    def multiplier(self) -> float:
        if self.push:
            return 1
        return HIGHLOW_MULTIPLIER if self.win else 0

    def describe(self) -> str:
        return f"Base card: **{rank_name(self.base)}** → Next card: **{rank_name(self.next)}**"


def highlow_round(guess: str, player_win_chance: float = 0.5, rng=random) -> HighLowResult:
    if guess not in HIGHLOW_GUESSES:
        raise InvalidChoice("Guess **higher** or **lower**.")
    p = clamp_probability(player_win_chance)
    base = rng.randint(2, 14)
    higher = [r for r in range(2, 15) if r > base]
    lower = [r for r in range(2, 15) if r < base]

    want_win = rng.random() < p
    if rng.random() < HIGHLOW_TIE_CHANCE:
        return HighLowResult(guess=guess, base=base, next=base)

    winning, losing = (higher, lower) if guess == "higher" else (lower, higher)
    pool = winning if want_win else losing
    if not pool:
        # base is an edge rank; the only remaining pool flips the verdict
        pool = losing if want_win else winning
    return HighLowResult(guess=guess, base=base, next=rng.choice(pool))
