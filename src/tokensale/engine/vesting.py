"""Vesting allocator — splits precommitment grants into now and later.

A vested grant of T tokens pays T // 2 immediately and parks T - T // 2 in
a VestingVault that unlocks at start + vesting period. The allocator owns
one VestingSchedule and one vault per beneficiary; the beneficiary (or
anyone) can only trigger the release once the unlock time has passed.

A second vested grant for a beneficiary that already holds a schedule is
refused rather than replacing the first record, which would orphan the
first vault's tokens.

allocate() either records the schedule with both halves delivered, or
raises with the treasury restored.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from tokensale.collaborators.timelock import VestingVault
from tokensale.collaborators.token import TokenLedger, TokenTransferError
from tokensale.errors import InvalidState, ZeroAmount
from tokensale.models.sale import VestingSchedule


class VestingAllocator:
    """Owns per-beneficiary vesting schedules and their vaults."""

    def __init__(self, token: TokenLedger) -> None:
        self._token = token
        self._schedules: Dict[str, VestingSchedule] = {}
        self._vaults: Dict[str, VestingVault] = {}

    def schedule(self, beneficiary: str) -> Optional[VestingSchedule]:
        return self._schedules.get(beneficiary)

    def schedules(self) -> List[VestingSchedule]:
        return list(self._schedules.values())

    def vault(self, beneficiary: str) -> Optional[VestingVault]:
        return self._vaults.get(beneficiary)

    def ensure_can_allocate(self, beneficiary: str, tokens: int) -> None:
        if tokens <= 0:
            raise ZeroAmount("Vested grant must be positive")
        if beneficiary in self._schedules:
            raise InvalidState(
                f"{beneficiary} already holds a vesting schedule; "
                f"multiple vested grants are not supported"
            )

    def allocate(
        self,
        beneficiary: str,
        tokens: int,
        unlock_utc: datetime,
    ) -> VestingSchedule:
        """Transfer the immediate half and lock the rest until unlock_utc."""
        self.ensure_can_allocate(beneficiary, tokens)

        vault = VestingVault(self._token, beneficiary, unlock_utc)
        schedule = VestingSchedule.split(
            beneficiary=beneficiary,
            total_tokens=tokens,
            unlock_utc=unlock_utc,
            vault_id=vault.vault_id,
        )
        vault.fund(schedule.deferred_tokens)
        if schedule.immediate_tokens > 0:
            try:
                self._token.transfer(beneficiary, schedule.immediate_tokens)
            except TokenTransferError:
                vault.defund()
                raise

        self._schedules[beneficiary] = schedule
        self._vaults[beneficiary] = vault
        return schedule

    def release(self, beneficiary: str, now: Optional[datetime] = None) -> int:
        """Release the deferred portion. Callable by anyone after unlock."""
        vault = self._vaults.get(beneficiary)
        if vault is None:
            raise InvalidState(f"No vesting schedule for {beneficiary}")
        return vault.release(now)
