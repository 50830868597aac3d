class CasinoError(Exception):
    """Base class for problems the player caused and should be told about."""

    title = "Something's off"


class InvalidBet(CasinoError):
    title = "Invalid bet"


class InvalidChoice(CasinoError):
    title = "Invalid choice"


class InsufficientFunds(CasinoError):
    title = "Not enough coins"

    def __init__(self, bet: int, balance: int):
        self.bet = bet
        self.balance = balance
        super().__init__(
            f"You tried to bet **{bet}**, but you only have **{balance}** "
            f"(short by **{self.shortfall}**)."
        )

    @property
    def shortfall(self) -> int:
        return self.bet - self.balance


class SessionExpired(CasinoError):
    title = "Blackjack hand expired"

    def __init__(self, message: str = "That blackjack hand is no longer active."):
        super().__init__(message)


class ClaimOnCooldown(CasinoError):
    title = "Daily already claimed"

    def __init__(self, remaining_ms: int):
        self.remaining_ms = remaining_ms
        super().__init__(f"Come back in about **{self.hours_left}h** to claim again.")

    @property
    def hours_left(self) -> int:
        return max(1, -(-self.remaining_ms // (60 * 60 * 1000)))
