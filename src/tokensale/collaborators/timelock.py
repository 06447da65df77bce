"""Time-locked release vault for deferred token grants.

A vault holds tokens for one beneficiary until unlock_utc. After that,
anyone may call release(); whatever was funded into the vault and not yet
released moves to the beneficiary. Tokens that reach the vault's holder
address by any other route are never paid out.
Used for the deferred half of vested precommitments and for the team pool.

Vault holder addresses live under RESERVED_HOLDER_PREFIXES. Participant
and beneficiary IDs with these prefixes are refused by the sale.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from tokensale.collaborators.token import TokenLedger
from tokensale.errors import InvalidState, ZeroAmount

VAULT_PREFIX = "vault:"
TEAM_VAULT_PREFIX = "team-vault:"
RESERVED_HOLDER_PREFIXES = (VAULT_PREFIX, TEAM_VAULT_PREFIX)


class VestingVault:
    """Token timelock for a single beneficiary."""

    def __init__(
        self,
        token: TokenLedger,
        beneficiary: str,
        unlock_utc: datetime,
        vault_id: Optional[str] = None,
    ) -> None:
        if not beneficiary.strip():
            raise ValueError("Vault beneficiary must not be blank")
        self._token = token
        self._beneficiary = beneficiary
        self._unlock_utc = unlock_utc
        self._vault_id = vault_id or f"{VAULT_PREFIX}{beneficiary}"
        self._funded = 0
        self._released = 0

    @property
    def vault_id(self) -> str:
        """Holder address of this vault in the token ledger."""
        return self._vault_id

    @property
    def beneficiary(self) -> str:
        return self._beneficiary

    @property
    def unlock_utc(self) -> datetime:
        return self._unlock_utc

    @property
    def funded(self) -> int:
        return self._funded

    @property
    def released(self) -> int:
        return self._released

    def balance(self) -> int:
        """Tokens funded into the vault and still awaiting release."""
        return self._funded - self._released

    def is_unlocked(self, now: Optional[datetime] = None) -> bool:
        if now is None:
            now = datetime.now(timezone.utc)
        return now >= self._unlock_utc

    def fund(self, amount: int) -> None:
        """Move tokens from the treasury into the vault."""
        if amount <= 0:
            raise ZeroAmount("Vault funding must be positive")
        self._token.transfer(self._vault_id, amount)
        self._funded += amount

    def defund(self) -> int:
        """Return unreleased funding to the treasury. Used to undo a failed grant."""
        amount = self.balance()
        if amount > 0:
            self._token.transfer_from(self._vault_id, self._token.treasury, amount)
            self._funded -= amount
        return amount

    def release(self, now: Optional[datetime] = None) -> int:
        """Transfer the funded, unreleased balance to the beneficiary once unlocked."""
        if now is None:
            now = datetime.now(timezone.utc)
        if not self.is_unlocked(now):
            raise InvalidState(
                f"Vault {self._vault_id} locked until {self._unlock_utc.isoformat()}"
            )
        amount = self.balance()
        if amount == 0:
            raise ZeroAmount(f"Vault {self._vault_id} has nothing to release")
        self._token.transfer_from(self._vault_id, self._beneficiary, amount)
        self._released += amount
        return amount
