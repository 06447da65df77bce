"""Escrow vault — holds contributed value until the sale resolves.

Every public contribution is deposited here on behalf of its contributor.
The sale resolves the vault exactly once:
    close()           goal reached, deposits forwarded to the operator
    enable_refunds()  goal missed, every depositor may reclaim

Independently of that global outcome, a single participant whose KYC was
rejected can be made refundable with enable_kyc_refund(). The deposit at
that moment is moved into a per-participant refundable bucket, so value
deposited afterwards still follows the global outcome.

State machine:
    ACTIVE → CLOSED
    ACTIVE → REFUNDING

The vault is a pure state machine — no side effects beyond its own
balances. Custody mechanics are out of scope.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol, runtime_checkable

from tokensale.errors import InvalidState, ZeroAmount


class VaultState(str, enum.Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    REFUNDING = "refunding"


VAULT_TRANSITIONS: Dict[VaultState, frozenset] = {
    VaultState.ACTIVE: frozenset({VaultState.CLOSED, VaultState.REFUNDING}),
    VaultState.CLOSED: frozenset(),
    VaultState.REFUNDING: frozenset(),
}


@runtime_checkable
class EscrowVault(Protocol):
    """Contract for the escrow collaborator."""

    def deposit(self, beneficiary: str, value: int) -> None:
        ...

    def refund(self, participant: str, now: Optional[datetime] = None) -> int:
        ...

    def enable_refunds(self) -> None:
        ...

    def close(self) -> int:
        ...

    def deposited(self, participant: str) -> int:
        ...

    def enable_kyc_refund(self, participant: str) -> None:
        ...

    def refund_enabled(self, participant: str) -> bool:
        ...


@dataclass(frozen=True)
class RefundReceipt:
    """Record of value returned to a participant."""
    participant: str
    amount: int
    kyc_refund: bool
    refunded_utc: datetime


class InMemoryEscrowVault:
    """Dictionary-backed escrow vault.

    Usage:
        vault = InMemoryEscrowVault(wallet="operator")
        vault.deposit("alice", 5)
        vault.close()                  # or vault.enable_refunds()
        vault.refund("alice")          # only when refundable
    """

    def __init__(self, wallet: str) -> None:
        if not wallet.strip():
            raise ValueError("Escrow wallet must not be blank")
        self._wallet = wallet
        self._state = VaultState.ACTIVE
        self._deposits: Dict[str, int] = {}
        self._kyc_refundable: Dict[str, int] = {}
        self._forwarded = 0
        self._refunded: Dict[str, int] = {}
        self._receipts: list[RefundReceipt] = []

    @property
    def state(self) -> VaultState:
        return self._state

    @property
    def wallet(self) -> str:
        return self._wallet

    @property
    def forwarded(self) -> int:
        """Value released to the operator wallet on close()."""
        return self._forwarded

    @property
    def receipts(self) -> list[RefundReceipt]:
        return list(self._receipts)

    def deposit(self, beneficiary: str, value: int) -> None:
        if self._state != VaultState.ACTIVE:
            raise InvalidState(f"Cannot deposit into {self._state.value} vault")
        if value <= 0:
            raise ZeroAmount("Deposit must be positive")
        self._deposits[beneficiary] = self.deposited(beneficiary) + value

    def deposited(self, participant: str) -> int:
        """Value held for the participant that follows the global outcome."""
        return self._deposits.get(participant, 0)

    def kyc_refundable(self, participant: str) -> int:
        return self._kyc_refundable.get(participant, 0)

    def refunded(self, participant: str) -> int:
        return self._refunded.get(participant, 0)

    def total_held(self) -> int:
        """Value still in custody (deposits plus KYC-refundable buckets)."""
        return sum(self._deposits.values()) + sum(self._kyc_refundable.values())

    def enable_kyc_refund(self, participant: str) -> None:
        """Make the participant's current deposit individually refundable."""
        amount = self._deposits.pop(participant, 0)
        if amount == 0:
            return
        self._kyc_refundable[participant] = self.kyc_refundable(participant) + amount

    def refund_enabled(self, participant: str) -> bool:
        if self.kyc_refundable(participant) > 0:
            return True
        return self._state == VaultState.REFUNDING and self.deposited(participant) > 0

    def enable_refunds(self) -> None:
        self._transition_to(VaultState.REFUNDING)

    def close(self) -> int:
        """Forward all deposits to the operator wallet.

        KYC-refundable buckets stay in custody: rejected participants can
        still claim them after the sale closes.
        """
        self._transition_to(VaultState.CLOSED)
        amount = sum(self._deposits.values())
        self._deposits.clear()
        self._forwarded += amount
        return amount

    def refund(self, participant: str, now: Optional[datetime] = None) -> int:
        """Return refundable value to the participant.

        Raises InvalidState when nothing is refundable for them.
        """
        if not self.refund_enabled(participant):
            raise InvalidState(f"Refund not enabled for {participant}")
        if now is None:
            now = datetime.now(timezone.utc)

        kyc_amount = self._kyc_refundable.pop(participant, 0)
        amount = kyc_amount
        if self._state == VaultState.REFUNDING:
            amount += self._deposits.pop(participant, 0)

        self._refunded[participant] = self.refunded(participant) + amount
        self._receipts.append(RefundReceipt(
            participant=participant,
            amount=amount,
            kyc_refund=kyc_amount > 0,
            refunded_utc=now,
        ))
        return amount

    def _transition_to(self, new_state: VaultState) -> None:
        allowed = VAULT_TRANSITIONS.get(self._state, frozenset())
        if new_state not in allowed:
            raise InvalidState(
                f"Invalid vault transition: {self._state.value} → {new_state.value}. "
                f"Allowed: {', '.join(s.value for s in allowed) or 'none'}"
            )
        self._state = new_state
