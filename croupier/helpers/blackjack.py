"""Blackjack hands, biased dealing and the per-player session state machine.

A session moves ``DEALT -> (hit)* -> BUST | RESOLVED``.  Sessions live in a
:class:`SessionStore` keyed by ``(context_id, player_id)``; starting a new
hand under the same key replaces whatever was there.
"""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional, Tuple

from croupier.helpers.errors import SessionExpired
from croupier.helpers.odds import chance, clamp_probability

SUITS = ("♠", "♥", "♦", "♣")
RANKS = ("A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K")
HIGH_RANKS = frozenset({"A", "10", "J", "Q", "K"})
LOW_RANKS = frozenset({"2", "3", "4", "5", "6"})
DEALER_STANDS_ON = 17


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str

    def __str__(self) -> str:
        return f"{self.rank}{self.suit}"


def new_deck(rng=random) -> List[Card]:
    """Return a shuffled 52 card deck.  The end of the list is the top."""
    deck = [Card(rank, suit) for suit in SUITS for rank in RANKS]
    rng.shuffle(deck)
    return deck


def hand_value(cards) -> int:
    total = 0
    aces = 0
    for card in cards:
        if card.rank == "A":
            aces += 1
            total += 11
        elif card.rank in ("J", "Q", "K"):
            total += 10
        else:
            total += int(card.rank)
    while total > 21 and aces:
        total -= 10
        aces -= 1
    return total


def format_cards(cards) -> str:
    return "  ".join(str(c) for c in cards)


def _take_first(deck: List[Card], ranks) -> Optional[Card]:
    for idx, card in enumerate(deck):
        if card.rank in ranks:
            return deck.pop(idx)
    return None


def draw_high_card(deck: List[Card]) -> Card:
    return _take_first(deck, HIGH_RANKS) or deck.pop()


def draw_low_card(deck: List[Card]) -> Card:
    return _take_first(deck, LOW_RANKS) or deck.pop()


def deal_biased(deck: List[Card], player_win_chance: float = 0.45, rng=random) -> Tuple[List[Card], List[Card]]:
    """Deal two cards each, leaning the start toward one side.

    With probability ``player_win_chance`` the player gets high cards and the
    dealer low ones; otherwise the roles swap.
    """
    if chance(player_win_chance, rng):
        player = [draw_high_card(deck), draw_high_card(deck)]
        dealer = [draw_low_card(deck), draw_low_card(deck)]
    else:
        player = [draw_low_card(deck), draw_low_card(deck)]
        dealer = [draw_high_card(deck), draw_high_card(deck)]
    return player, dealer


def draw_card_biased(deck: List[Card], player_win_chance: float = 0.45, who: str = "player", rng=random) -> Card:
    """Draw one card during play with a mild lean toward the player.

    When the per-draw coin flip favours the player, the player draws a low
    card (less bust risk) and the dealer draws a high card half the time.
    Otherwise the top card is drawn.
    """
    helped = chance(player_win_chance, rng)
    if who == "player":
        return draw_low_card(deck) if helped else deck.pop()
    if helped and rng.random() < 0.5:
        return draw_high_card(deck)
    return deck.pop()


class HandState(enum.Enum):
    DEALT = "dealt"
    BUST = "bust"
    RESOLVED = "resolved"


@dataclass
class BlackjackSession:
    bet: int
    deck: List[Card]
    player: List[Card]
    dealer: List[Card]
    player_win_chance: float
    state: HandState = HandState.DEALT
    verdict: Optional[str] = None
    # true once the payout has been credited
    settled: bool = False

    @classmethod
    def deal(cls, bet: int, player_win_chance: float, rng=random) -> "BlackjackSession":
        p = clamp_probability(player_win_chance)
        deck = new_deck(rng)
        player, dealer = deal_biased(deck, p, rng)
        return cls(bet=bet, deck=deck, player=player, dealer=dealer, player_win_chance=p)

    @property
    def done(self) -> bool:
        return self.state is not HandState.DEALT

    @property
    def player_value(self) -> int:
        return hand_value(self.player)

    @property
    def dealer_value(self) -> int:
        return hand_value(self.dealer)

    @property
    def payout(self) -> int:
        """Amount credited back at resolution: 2x on a win, the stake on a push."""
        if self.verdict == "win":
            return self.bet * 2
        if self.verdict == "push":
            return self.bet
        return 0

    def _ensure_live(self):
        if self.done:
            raise SessionExpired()

    def hit(self, rng=random) -> Card:
        self._ensure_live()
        card = draw_card_biased(self.deck, self.player_win_chance, "player", rng)
        self.player.append(card)
        if self.player_value > 21:
            self.state = HandState.BUST
            self.verdict = "lose"
        return card

    def stand(self, rng=random) -> str:
        self._ensure_live()
        while self.dealer_value < DEALER_STANDS_ON:
            self.dealer.append(draw_card_biased(self.deck, self.player_win_chance, "dealer", rng))
        pv, dv = self.player_value, self.dealer_value
        if dv > 21 or pv > dv:
            self.verdict = "win"
        elif pv == dv:
            self.verdict = "push"
        else:
            self.verdict = "lose"
        self.state = HandState.RESOLVED
        return self.verdict


SessionKey = Tuple[Hashable, Hashable]


class SessionStore:
    """In-memory blackjack sessions keyed by ``(context_id, player_id)``.

    Policy: :meth:`put` overwrites.  A hand that was still in play under the
    same key becomes unreachable; its stake stays debited.  A finished hand
    stays here until its payout is credited.
    """

    def __init__(self):
        self._sessions: Dict[SessionKey, BlackjackSession] = {}

    @staticmethod
    def key(context_id, player_id) -> SessionKey:
        return (str(context_id), str(player_id))

    def get(self, context_id, player_id) -> Optional[BlackjackSession]:
        return self._sessions.get(self.key(context_id, player_id))

    def put(self, context_id, player_id, session: BlackjackSession) -> Optional[BlackjackSession]:
        """Store ``session`` and return the unfinished hand it replaced, if any."""
        key = self.key(context_id, player_id)
        previous = self._sessions.get(key)
        self._sessions[key] = session
        if previous is not None and not previous.done:
            return previous
        return None

    def discard(self, context_id, player_id) -> None:
        self._sessions.pop(self.key(context_id, player_id), None)

    def __len__(self) -> int:
        return len(self._sessions)
