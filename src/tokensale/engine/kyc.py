"""KYC gate — reacts to identity-verification outcomes.

How verification is performed is out of scope; the gate only applies the
outcome:

    verify(p)   → VERIFIED. Any locked allocation is removed from the
                  registry and transferred to the participant.
    reject(p)   → REJECTED. Any locked allocation is removed, the purchase
                  is reversed in the ledger, and the participant's escrowed
                  value becomes individually refundable, independent of the
                  global sale outcome.

Rejecting a VERIFIED participant is refused: their tokens are already
distributed. A REJECTED participant may be verified later.

Re-verification is idempotent: once the registry entry is gone there is
nothing left to release, so a repeated verify() transfers nothing.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

from tokensale.collaborators.escrow import EscrowVault
from tokensale.collaborators.token import TokenLedger
from tokensale.engine.ledger import ContributionLedger
from tokensale.engine.locked import LockedAllocationRegistry
from tokensale.errors import InvalidState
from tokensale.models.sale import KYCStatus, check_kyc_transition


class KYCGate:
    """Per-participant verification status driving release or reversal."""

    def __init__(
        self,
        registry: LockedAllocationRegistry,
        ledger: ContributionLedger,
        escrow: EscrowVault,
        token: TokenLedger,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._escrow = escrow
        self._token = token
        self._status: Dict[str, KYCStatus] = {}

    def status(self, participant: str) -> KYCStatus:
        return self._status.get(participant, KYCStatus.UNVERIFIED)

    def is_verified(self, participant: str) -> bool:
        return self.status(participant) == KYCStatus.VERIFIED

    def statuses(self) -> Dict[str, KYCStatus]:
        return dict(self._status)

    def verify(self, participant: str) -> int:
        """Mark verified and release any locked tokens. Returns tokens released."""
        check_kyc_transition(self.status(participant), KYCStatus.VERIFIED)

        # Transfer first: a failed transfer leaves status and lock untouched.
        tokens = self._registry.locked_balance(participant)
        if tokens > 0:
            self._token.transfer(participant, tokens)
            self._registry.reset_locked(participant)
        self._status[participant] = KYCStatus.VERIFIED
        return tokens

    def reject(self, participant: str) -> int:
        """Mark rejected and reverse any locked purchase. Returns value reversed."""
        current = self.status(participant)
        if current == KYCStatus.VERIFIED:
            raise InvalidState(
                f"Cannot reject {participant}: already verified and tokens released"
            )
        check_kyc_transition(current, KYCStatus.REJECTED)

        locked = self._registry.locked_balance(participant)
        escrowed = self._escrow.deposited(participant)
        if locked > 0:
            self._ledger.ensure_can_reverse(participant, locked, escrowed)

        self._status[participant] = KYCStatus.REJECTED
        if locked == 0:
            return 0
        return self._reverse(participant, self._registry.reset_locked(participant))

    def reject_all_pending(self) -> List[Tuple[str, int]]:
        """Treat every locked participant as rejected.

        Returns (participant, value reversed) pairs. All reversals are
        validated before the registry is touched.
        """
        pending = self._registry.participants()
        for participant in pending:
            self._ledger.ensure_can_reverse(
                participant,
                self._registry.locked_balance(participant),
                self._escrow.deposited(participant),
            )

        reversed_values: List[Tuple[str, int]] = []

        def _on_reverse(participant: str, tokens: int) -> None:
            self._status[participant] = KYCStatus.REJECTED
            reversed_values.append((participant, self._reverse(participant, tokens)))

        self._registry.clear_all(on_reverse=_on_reverse)
        return reversed_values

    def _reverse(self, participant: str, tokens: int) -> int:
        value = self._ledger.reverse_contribution(
            participant, tokens, self._escrow.deposited(participant),
        )
        self._escrow.enable_kyc_refund(participant)
        return value
