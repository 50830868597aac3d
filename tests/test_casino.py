import asyncio
import gc
import random

import aiosqlite
import pytest

from croupier.helpers.blackjack import BlackjackSession, Card, HandState
from croupier.helpers.casino import Casino, GameRequest, GameResult, normalize_choice
from croupier.helpers.errors import (
    ClaimOnCooldown,
    InsufficientFunds,
    InvalidBet,
    InvalidChoice,
    SessionExpired,
)
from croupier.helpers.games import HighLowResult, RouletteBet
from croupier.helpers.store import Store


async def funded_casino(db_path, balance=100, user="42"):
    store = Store(db_path)
    await store.init()
    if balance:
        await store.adjust_balance(user, balance, "seed")
    return Casino(store, rng=random.Random(5))


def test_coinflip_win_with_forced_heads(db_path):
    async def _run():
        casino = await funded_casino(db_path)
        await casino.store.set_user_override("42", "coinflip", {"headsProb": 1.0})
        result = await casino.play(GameRequest("coinflip", "42", 50, "heads"))
        history = await casino.store.get_transactions("42")
        await casino.store.close()
        return result, history
    result, history = asyncio.run(_run())
    assert result.win is True
    assert result.payout == 100
    assert result.balance == 150
    assert result.net == 50
    assert [(d, r) for d, r, _ in history[:2]] == [(100, "Coinflip win"), (-50, "Coinflip bet")]


def test_coinflip_loss_keeps_stake(db_path):
    async def _run():
        casino = await funded_casino(db_path)
        await casino.store.set_global_config("coinflip", {"headsProb": 0.0})
        result = await casino.play(GameRequest("coinflip", "42", 30, "heads"))
        balance = await casino.store.get_balance("42")
        await casino.store.close()
        return result, balance
    result, balance = asyncio.run(_run())
    assert result.win is False
    assert result.payout == 0
    assert balance == 70


def test_insufficient_funds_changes_nothing(db_path):
    async def _run():
        casino = await funded_casino(db_path, balance=10)
        with pytest.raises(InsufficientFunds) as exc:
            await casino.play(GameRequest("dice", "42", 50, 3))
        balance = await casino.store.get_balance("42")
        history = await casino.store.get_transactions("42")
        await casino.store.close()
        return exc.value, balance, history
    err, balance, history = asyncio.run(_run())
    assert err.shortfall == 40
    assert "**50**" in str(err) and "**10**" in str(err)
    assert balance == 10
    assert len(history) == 1


@pytest.mark.parametrize("request_", [
    GameRequest("coinflip", "42", 0, "heads"),
    GameRequest("coinflip", "42", -3, "heads"),
    GameRequest("coinflip", "42", 1.5, "heads"),
])
def test_bad_bets_rejected(db_path, request_):
    async def _run():
        casino = await funded_casino(db_path)
        try:
            await casino.play(request_)
        finally:
            await casino.store.close()
    with pytest.raises(InvalidBet):
        asyncio.run(_run())


@pytest.mark.parametrize("request_", [
    GameRequest("coinflip", "42", 10, "edge"),
    GameRequest("dice", "42", 10, 9),
    GameRequest("roulette", "42", 10, ("number", None)),
    GameRequest("highlow", "42", 10, "same"),
    GameRequest("poker", "42", 10, None),
    GameRequest("blackjack", "42", 10, None),
])
def test_bad_choices_rejected_before_debit(db_path, request_):
    async def _run():
        casino = await funded_casino(db_path)
        with pytest.raises(InvalidChoice):
            await casino.play(request_)
        balance = await casino.store.get_balance("42")
        await casino.store.close()
        return balance
    assert asyncio.run(_run()) == 100


def test_normalize_roulette_choices():
    assert normalize_choice("roulette", "red") == RouletteBet("red")
    assert normalize_choice("roulette", ("number", 17)) == RouletteBet("number", 17)
    bet = RouletteBet("odd")
    assert normalize_choice("roulette", bet) is bet
    assert normalize_choice("slots", "anything") is None


def test_every_single_shot_game_settles(db_path):
    async def _run():
        casino = await funded_casino(db_path, balance=1000)
        results = [
            await casino.play(GameRequest("slots", "42", 10)),
            await casino.play(GameRequest("roulette", "42", 10, "black")),
            await casino.play(GameRequest("dice", "42", 10, 4)),
            await casino.play(GameRequest("highlow", "42", 10, "higher")),
        ]
        balance = await casino.store.get_balance("42")
        await casino.store.close()
        return results, balance
    results, balance = asyncio.run(_run())
    assert balance == 1000 + sum(r.net for r in results)
    assert results[-1].balance == balance


def test_push_result_reports_push():
    result = GameResult(
        game="highlow", bet=10, outcome=HighLowResult("higher", 8, 8), payout=10, balance=100
    )
    assert result.verdict == "push"
    assert result.win == "push"
    assert result.net == 0


def test_blackjack_debits_up_front_and_settles(db_path):
    async def _run():
        casino = await funded_casino(db_path)
        await casino.store.set_global_config("blackjack", {"playerWinChance": 0.0})
        session = await casino.start_blackjack("guild", "42", 20)
        after_deal = await casino.store.get_balance("42")
        update = await casino.blackjack_stand("guild", "42")
        final = await casino.store.get_balance("42")
        await casino.store.close()
        return session, after_deal, update, final
    session, after_deal, update, final = asyncio.run(_run())
    assert after_deal == 80
    assert update.session is session
    assert session.state is HandState.RESOLVED
    assert update.balance == final == 80 + session.payout


def test_blackjack_hand_expires_after_resolution(db_path):
    async def _run():
        casino = await funded_casino(db_path)
        await casino.start_blackjack("guild", "42", 20)
        await casino.blackjack_stand("guild", "42")
        with pytest.raises(SessionExpired):
            await casino.blackjack_hit("guild", "42")
        with pytest.raises(SessionExpired):
            await casino.blackjack_stand("guild", "42")
        await casino.store.close()
        return len(casino.sessions)
    assert asyncio.run(_run()) == 0


def test_blackjack_without_hand_is_expired(db_path):
    async def _run():
        casino = await funded_casino(db_path)
        try:
            await casino.blackjack_hit("guild", "42")
        finally:
            await casino.store.close()
    with pytest.raises(SessionExpired):
        asyncio.run(_run())


def test_blackjack_hit_until_done(db_path):
    async def _run():
        casino = await funded_casino(db_path)
        await casino.start_blackjack("guild", "42", 20)
        update = await casino.blackjack_hit("guild", "42")
        while not update.session.done:
            assert update.balance is None
            update = await casino.blackjack_hit("guild", "42")
        final = await casino.store.get_balance("42")
        await casino.store.close()
        return update, final
    update, final = asyncio.run(_run())
    assert update.session.state is HandState.BUST
    assert update.balance == final == 80


def test_new_blackjack_hand_forfeits_previous_stake(db_path):
    async def _run():
        casino = await funded_casino(db_path)
        first = await casino.start_blackjack("guild", "42", 20)
        second = await casino.start_blackjack("guild", "42", 30)
        balance = await casino.store.get_balance("42")
        current = casino.sessions.get("guild", "42")
        await casino.store.close()
        return first, second, current, balance
    first, second, current, balance = asyncio.run(_run())
    assert current is second and current is not first
    assert balance == 50


def test_blackjack_insufficient_funds(db_path):
    async def _run():
        casino = await funded_casino(db_path, balance=5)
        with pytest.raises(InsufficientFunds):
            await casino.start_blackjack("guild", "42", 20)
        balance = await casino.store.get_balance("42")
        await casino.store.close()
        return balance, len(casino.sessions)
    assert asyncio.run(_run()) == (5, 0)


def test_daily_claim_and_cooldown(db_path):
    day = 24 * 60 * 60 * 1000

    async def _run():
        casino = await funded_casino(db_path, balance=0)
        first = await casino.claim_daily("42", now_ms=10 * day)
        with pytest.raises(ClaimOnCooldown) as exc:
            await casino.claim_daily("42", now_ms=10 * day + 3 * 60 * 60 * 1000)
        second = await casino.claim_daily("42", now_ms=11 * day)
        await casino.store.close()
        return first, exc.value, second
    first, err, second = asyncio.run(_run())
    assert first.amount == 500 and first.balance == 500
    assert err.hours_left == 21
    assert second.balance == 1000


def test_concurrent_bets_never_overdraw(db_path):
    async def _run():
        casino = await funded_casino(db_path, balance=100)
        await casino.store.set_global_config("coinflip", {"headsProb": 0.0})
        results = await asyncio.gather(
            *(casino.play(GameRequest("coinflip", "42", 60, "heads")) for _ in range(3)),
            return_exceptions=True,
        )
        balance = await casino.store.get_balance("42")
        await casino.store.close()
        return results, balance
    results, balance = asyncio.run(_run())
    failures = [r for r in results if isinstance(r, InsufficientFunds)]
    assert len(failures) == 2
    assert balance == 40


def _winning_hand():
    # player 20 against a dealer already standing on 17
    return BlackjackSession(
        bet=20,
        deck=[Card("5", "♠")],
        player=[Card("K", "♠"), Card("Q", "♥")],
        dealer=[Card("10", "♦"), Card("7", "♣")],
        player_win_chance=0.0,
    )


async def _unavailable(*args, **kwargs):
    raise aiosqlite.OperationalError("database is locked")


def test_failed_blackjack_credit_keeps_hand_for_retry(db_path):
    async def _run():
        casino = await funded_casino(db_path, balance=80)
        session = _winning_hand()
        casino.sessions.put("g", "42", session)

        casino.store.adjust_balance = _unavailable
        with pytest.raises(aiosqlite.OperationalError):
            await casino.blackjack_stand("g", "42")
        kept = casino.sessions.get("g", "42")
        balance_during_outage = await casino.store.get_balance("42")

        del casino.store.adjust_balance
        retry = await casino.blackjack_stand("g", "42")
        final = await casino.store.get_balance("42")
        leftover = casino.sessions.get("g", "42")
        with pytest.raises(SessionExpired):
            await casino.blackjack_stand("g", "42")
        await casino.store.close()
        return session, kept, balance_during_outage, retry, final, leftover
    session, kept, during, retry, final, leftover = asyncio.run(_run())
    assert kept is session
    assert session.verdict == "win"
    assert during == 80
    assert retry.session is session
    assert retry.balance == final == 120
    assert session.settled
    assert leftover is None


def test_new_hand_settles_unpaid_previous_hand(db_path):
    async def _run():
        casino = await funded_casino(db_path, balance=80)
        casino.sessions.put("g", "42", _winning_hand())
        casino.store.adjust_balance = _unavailable
        with pytest.raises(aiosqlite.OperationalError):
            await casino.blackjack_stand("g", "42")
        del casino.store.adjust_balance

        fresh = await casino.start_blackjack("g", "42", 10)
        balance = await casino.store.get_balance("42")
        history = await casino.store.get_transactions("42")
        await casino.store.close()
        return fresh, casino.sessions.get("g", "42"), balance, history
    fresh, current, balance, history = asyncio.run(_run())
    assert current is fresh
    # 80 + 40 won, then a 10 stake
    assert balance == 110
    assert [(d, r) for d, r, _ in history[:2]] == [(-10, "Blackjack bet"), (40, "Blackjack win")]


def test_failed_settlement_leaves_ledger_untouched(db_path):
    async def _run():
        casino = await funded_casino(db_path)
        await casino.store.set_user_override("42", "coinflip", {"headsProb": 1.0})
        db = await casino.store._db()
        await db.execute("""
          CREATE TRIGGER refuse_wins BEFORE INSERT ON transactions
          WHEN NEW.reason = 'Coinflip win'
          BEGIN SELECT RAISE(ABORT, 'ledger unavailable'); END;
        """)
        await db.commit()
        with pytest.raises(aiosqlite.Error):
            await casino.play(GameRequest("coinflip", "42", 50, "heads"))
        balance = await casino.store.get_balance("42")
        history = await casino.store.get_transactions("42")
        await casino.store.close()
        return balance, history
    balance, history = asyncio.run(_run())
    assert balance == 100
    assert [(d, r) for d, r, _ in history] == [(100, "seed")]


def test_idle_player_locks_are_released(db_path):
    async def _run():
        casino = await funded_casino(db_path)
        await casino.play(GameRequest("dice", "42", 10, 3))
        await casino.claim_daily("43")
        gc.collect()
        remaining = len(casino._locks)
        await casino.store.close()
        return remaining
    assert asyncio.run(_run()) == 0
