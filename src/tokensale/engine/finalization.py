"""Finalization controller — the single irreversible close of the sale.

State machine:
    OPEN → FINALIZED_SUCCESS      goal reached
    OPEN → FINALIZED_REFUNDING    goal missed

Guards, all evaluated before anything changes:
1. Not already finalized (AlreadyFinalized — permanent, no recovery).
2. The sale has ended: the window closed or the purchase cap is exhausted.
3. No KYC case is pending: locked_total == 0 (PendingKYC).

On success the escrow is closed (value forwarded to the operator wallet),
the team pool is parked in a time-locked vault, every token left in the
treasury (foundation pool, unsold and reversed allocations) goes to the
foundation wallet, and token transfers are enabled. The token moves run
first and are undone if one fails, so the state only changes once they
have all succeeded.

On failure the escrow switches to refund mode; every depositor can claim.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple

from tokensale.collaborators.escrow import EscrowVault
from tokensale.collaborators.timelock import TEAM_VAULT_PREFIX, VestingVault
from tokensale.collaborators.token import TokenLedger, TokenTransferError
from tokensale.engine.ledger import ContributionLedger
from tokensale.engine.locked import LockedAllocationRegistry
from tokensale.errors import AlreadyFinalized, InvalidState, PendingKYC
from tokensale.models.sale import SALE_TRANSITIONS, SaleConfig, SaleState


@dataclass(frozen=True)
class FinalizationOutcome:
    """What finalize() did. Published with the SALE_FINALIZED event."""
    state: SaleState
    wei_raised: int
    goal: int
    forwarded: int
    foundation_tokens: int
    team_tokens: int
    team_vault_id: Optional[str]
    finalized_utc: datetime
    cleared: Tuple[Tuple[str, int], ...] = ()


class FinalizationController:
    """Owns the sale state and performs the one-shot settlement."""

    def __init__(
        self,
        config: SaleConfig,
        registry: LockedAllocationRegistry,
        ledger: ContributionLedger,
        escrow: EscrowVault,
        token: TokenLedger,
    ) -> None:
        self._config = config
        self._registry = registry
        self._ledger = ledger
        self._escrow = escrow
        self._token = token
        self._state = SaleState.OPEN
        self._outcome: Optional[FinalizationOutcome] = None
        self._team_vault: Optional[VestingVault] = None

    @property
    def state(self) -> SaleState:
        return self._state

    @property
    def is_finalized(self) -> bool:
        return self._state != SaleState.OPEN

    @property
    def outcome(self) -> Optional[FinalizationOutcome]:
        return self._outcome

    @property
    def team_vault(self) -> Optional[VestingVault]:
        return self._team_vault

    def has_ended(self, now: datetime) -> bool:
        return self._config.window.has_ended(now) or self._ledger.remaining_tokens <= 0

    def ensure_can_finalize(self, now: datetime) -> None:
        """Raise unless finalize() could run once pending KYC cases are cleared."""
        if self.is_finalized:
            raise AlreadyFinalized(f"Sale already finalized ({self._state.value})")
        if not self.has_ended(now):
            raise InvalidState(
                f"Sale still open until {self._config.window.end_utc.isoformat()}"
            )

    def finalize(
        self,
        now: Optional[datetime] = None,
        cleared: Sequence[Tuple[str, int]] = (),
    ) -> FinalizationOutcome:
        """Close the sale. `cleared` lists KYC cases force-rejected just before."""
        if now is None:
            now = datetime.now(timezone.utc)
        self.ensure_can_finalize(now)
        if self._registry.locked_total != 0:
            raise PendingKYC(
                f"{self._registry.count} participant(s) still pending KYC "
                f"({self._registry.locked_total} tokens locked)"
            )

        if self._ledger.goal_reached(self._config.goal):
            outcome = self._settle(now, tuple(cleared))
        else:
            outcome = self._open_refunds(now, tuple(cleared))
        self._outcome = outcome
        return outcome

    def _settle(
        self, now: datetime, cleared: Tuple[Tuple[str, int], ...],
    ) -> FinalizationOutcome:
        team_tokens = self._config.caps.team_pool
        team_vault: Optional[VestingVault] = None
        if team_tokens > 0:
            unlock = self._config.window.end_utc + self._config.months(
                self._config.team_lock_months
            )
            team_vault = VestingVault(
                self._token,
                self._config.wallets.team,
                unlock,
                vault_id=f"{TEAM_VAULT_PREFIX}{self._config.wallets.team}",
            )
            team_vault.fund(team_tokens)

        foundation_tokens = self._token.balance_of(self._token.treasury)
        if foundation_tokens > 0:
            try:
                self._token.transfer(self._config.wallets.foundation, foundation_tokens)
            except TokenTransferError:
                if team_vault is not None:
                    team_vault.defund()
                raise

        # Token moves are done; nothing below can fail once the guards passed.
        forwarded = self._escrow.close()
        self._token.enable_transfers()
        self._team_vault = team_vault
        self._transition_to(SaleState.FINALIZED_SUCCESS)

        return FinalizationOutcome(
            state=self._state,
            wei_raised=self._ledger.wei_raised,
            goal=self._config.goal,
            forwarded=forwarded,
            foundation_tokens=foundation_tokens,
            team_tokens=team_tokens,
            team_vault_id=team_vault.vault_id if team_vault is not None else None,
            finalized_utc=now,
            cleared=cleared,
        )

    def _open_refunds(
        self, now: datetime, cleared: Tuple[Tuple[str, int], ...],
    ) -> FinalizationOutcome:
        self._transition_to(SaleState.FINALIZED_REFUNDING)
        self._escrow.enable_refunds()
        return FinalizationOutcome(
            state=self._state,
            wei_raised=self._ledger.wei_raised,
            goal=self._config.goal,
            forwarded=0,
            foundation_tokens=0,
            team_tokens=0,
            team_vault_id=None,
            finalized_utc=now,
            cleared=cleared,
        )

    def _transition_to(self, new_state: SaleState) -> None:
        allowed = SALE_TRANSITIONS.get(self._state, frozenset())
        if new_state not in allowed:
            raise InvalidState(
                f"Invalid sale transition: {self._state.value} → {new_state.value}"
            )
        self._state = new_state
