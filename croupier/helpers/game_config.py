"""Per-game odds records and the effective-config merge.

Odds are persisted as small JSON field maps (``{"headsProb": 0.5}``) in two
scopes: one global row per game and optional per-user overrides.  The
effective odds for a player are resolved in a single precedence order::

    hardcoded default  <  global config  <  user override

and only then turned into a typed record, clamping every probability.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

GAME_KEYS = ("coinflip", "slots", "roulette", "blackjack", "dice", "highlow")

# the one tunable field each game exposes
PROBABILITY_FIELDS = {
    "coinflip": "headsProb",
    "slots": "winChance",
    "roulette": "playerWinChance",
    "blackjack": "playerWinChance",
    "dice": "playerWinChance",
    "highlow": "playerWinChance",
}

DEFAULT_CONFIGS: Dict[str, Dict[str, float]] = {
    "coinflip": {"headsProb": 0.5},
    "slots": {"winChance": 0.28},
    "roulette": {"playerWinChance": 0.47},
    "blackjack": {"playerWinChance": 0.45},
    "dice": {"playerWinChance": 0.18},
    "highlow": {"playerWinChance": 0.5},
}


def ensure_game(game: str) -> str:
    if game not in GAME_KEYS:
        raise KeyError(f"unknown game {game!r}")
    return game


def default_configs(overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> Dict[str, Dict[str, float]]:
    """Hardcoded defaults, optionally patched from the ``odds`` YAML section."""
    defaults = {game: dict(fields) for game, fields in DEFAULT_CONFIGS.items()}
    for game, fields in (overrides or {}).items():
        if game in defaults and isinstance(fields, Mapping):
            defaults[game].update(clean_fields(game, fields))
    return defaults


def resolve_effective(
    default: Mapping[str, Any],
    global_cfg: Optional[Mapping[str, Any]],
    user_override: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """Shallow-merge ``global_cfg`` over ``default``, then ``user_override`` over that.

    User override fields set to ``None`` do not override.
    """
    merged = dict(default)
    if global_cfg:
        merged.update(global_cfg)
    if user_override:
        for name, value in user_override.items():
            if value is not None:
                merged[name] = value
    return merged


# ─── (de)serialisation ─────────────────────────────────────────────────────────
def encode_fields(fields: Mapping[str, Any]) -> str:
    return json.dumps(dict(fields), sort_keys=True)


def decode_fields(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a stored field map; anything that is not a JSON object is ``None``."""
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _is_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and not math.isnan(value)
    )


def clean_fields(game: str, fields: Mapping[str, Any]) -> Dict[str, float]:
    """Keep only the game's known, numeric fields."""
    name = PROBABILITY_FIELDS[ensure_game(game)]
    value = fields.get(name)
    return {name: float(value)} if _is_number(value) else {}


# ─── typed records ─────────────────────────────────────────────────────────────
def _clamp(p: float) -> float:
    return max(0.0, min(1.0, p))


@dataclass(frozen=True)
class CoinflipOdds:
    heads_prob: float
    kind: str = "coinflip"

    @property
    def probability(self) -> float:
        return self.heads_prob


@dataclass(frozen=True)
class SlotsOdds:
    win_chance: float
    kind: str = "slots"

    @property
    def probability(self) -> float:
        return self.win_chance


@dataclass(frozen=True)
class WinChanceOdds:
    """Roulette, blackjack, dice and high-low all bias on the player's win chance."""

    kind: str
    player_win_chance: float

    @property
    def probability(self) -> float:
        return self.player_win_chance


GameOdds = Union[CoinflipOdds, SlotsOdds, WinChanceOdds]


def parse_odds(game: str, fields: Mapping[str, Any], default: Optional[Mapping[str, Any]] = None) -> GameOdds:
    """Build the typed record for ``game`` from a resolved field map.

    Malformed values fall back to ``default`` (or the hardcoded default) and
    every probability is clamped into ``[0, 1]``.
    """
    name = PROBABILITY_FIELDS[ensure_game(game)]
    fallback = clean_fields(game, default or DEFAULT_CONFIGS[game]) or DEFAULT_CONFIGS[game]
    p = _clamp(clean_fields(game, fields).get(name, fallback[name]))
    if game == "coinflip":
        return CoinflipOdds(heads_prob=p)
    if game == "slots":
        return SlotsOdds(win_chance=p)
    return WinChanceOdds(kind=game, player_win_chance=p)


# ─── admin percentages ─────────────────────────────────────────────────────────
def percent_to_probability(pct) -> float:
    """Turn a 0-100 percentage (number or numeric string) into a 0-1 probability.

    Out of range values are clamped; non-numeric input raises ``ValueError``.
    """
    value = float(pct)
    if math.isnan(value):
        raise ValueError("percentage is not a number")
    return max(0.0, min(100.0, value)) / 100


def probability_to_percent(p) -> int:
    if not _is_number(p):
        return 0
    return round(_clamp(float(p)) * 100)


def fields_for_percent(game: str, pct) -> Dict[str, float]:
    return {PROBABILITY_FIELDS[ensure_game(game)]: percent_to_probability(pct)}
