"""Biased randomness shared by every game.

Games never expose the configured odds to players.  Instead the natural
draw is nudged toward a target win probability in one of two ways:

* *targeted trials* (:func:`sample_until`): draw an outcome, flip a biased
  coin for the verdict we would like to see, and redraw while the two
  disagree.  The number of redraws is bounded, so the observed win rate
  approaches the target without ever matching it exactly.  That residual
  pull toward the game's natural rate is accepted.
* *constructive bias*: build a winning or losing shape directly (see
  :func:`croupier.helpers.games.spin_slots` and the blackjack dealer).

All helpers take an ``rng`` argument with the :mod:`random` module API so
callers (and tests) can pass a seeded :class:`random.Random`.
"""

from __future__ import annotations

import math
import random
from typing import Callable, Optional, Sequence, TypeVar

T = TypeVar("T")


def clamp_probability(p: Optional[float]) -> float:
    """Clamp ``p`` into ``[0, 1]``; ``None`` and NaN count as ``0``."""
    if p is None:
        return 0.0
    p = float(p)
    if math.isnan(p):
        return 0.0
    return max(0.0, min(1.0, p))


def chance(p: Optional[float], rng=random) -> bool:
    """Return ``True`` with probability ``p``."""
    return rng.random() < clamp_probability(p)


def sample_until(
    draw: Callable[[], T],
    verdict: Callable[[T], bool],
    desired_probability: float,
    max_attempts: int,
    rng=random,
) -> T:
    """Draw an outcome, then redraw up to ``max_attempts`` times toward a verdict.

    Every attempt samples a fresh desired verdict (win with
    ``desired_probability``).  As soon as the current outcome already has the
    desired verdict we keep it; otherwise we redraw.  When attempts run out
    the last draw is returned whatever its verdict.
    """
    p = clamp_probability(desired_probability)
    outcome = draw()
    won = verdict(outcome)
    for _ in range(max_attempts):
        want = rng.random() < p
        if won == want:
            break
        outcome = draw()
        won = verdict(outcome)
    return outcome


def weighted_pick(items: Sequence[T], weight: Callable[[T], float], rng=random) -> T:
    """Pick one item with probability proportional to ``weight(item)``."""
    total = sum(weight(item) for item in items)
    r = rng.random() * total
    for item in items:
        r -= weight(item)
        if r <= 0:
            return item
    return items[0]
