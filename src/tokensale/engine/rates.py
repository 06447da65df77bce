"""Rate engine — converts contributed value into tokens.

    new_rate = rate + rate * bonus_factor // 100
    tokens   = new_rate * amount

Integer arithmetic throughout; the bonus truncates toward zero before it is
applied, so a 12.5-token bonus rate on rate=10 never appears.

Public contributions take their bonus factor from the time-tier schedule
(earliest tier whose deadline has not passed). Precommitments pass an
explicit bonus factor negotiated off-schedule.
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from tokensale.models.sale import RateTier


class RateEngine:
    """Pure token-pricing functions. No state beyond the configured schedule."""

    def __init__(self, rate: int, tiers: Sequence[RateTier] = ()) -> None:
        if rate <= 0:
            raise ValueError("Rate must be positive")
        ordered = list(tiers)
        for earlier, later in zip(ordered, ordered[1:]):
            if later.ends_utc <= earlier.ends_utc:
                raise ValueError("Rate tiers must have strictly increasing deadlines")
        for tier in ordered:
            if tier.bonus_factor < 0:
                raise ValueError(
                    f"Bonus factor must be non-negative, got {tier.bonus_factor}"
                )
        self._rate = rate
        self._tiers = tuple(ordered)

    @property
    def rate(self) -> int:
        return self._rate

    @property
    def tiers(self) -> tuple[RateTier, ...]:
        return self._tiers

    def rate_with_bonus(self, bonus_factor: int = 0) -> int:
        if bonus_factor < 0:
            raise ValueError(f"Bonus factor must be non-negative, got {bonus_factor}")
        return self._rate + (self._rate * bonus_factor) // 100

    def tokens_for(self, amount: int, bonus_factor: int = 0) -> int:
        """Tokens bought by `amount` value units at the given bonus."""
        if amount < 0:
            raise ValueError(f"Amount must be non-negative, got {amount}")
        return self.rate_with_bonus(bonus_factor) * amount

    def phase_for(self, now: datetime) -> int:
        """Index of the active rate tier, or -1 once only the base rate applies."""
        for index, tier in enumerate(self._tiers):
            if now <= tier.ends_utc:
                return index
        return -1

    def bonus_for(self, now: datetime) -> int:
        phase = self.phase_for(now)
        if phase < 0:
            return 0
        return self._tiers[phase].bonus_factor

    def quote(self, amount: int, now: datetime) -> int:
        """Tokens a public contribution of `amount` would buy at `now`."""
        return self.tokens_for(amount, self.bonus_for(now))
