"""Crowdsale — the public surface of the fundraising state machine.

Wires the engine components to the external collaborators and applies the
caller and time checks in front of them:

    contribute          anyone, inside the window
    verify_kyc          admin
    reject_kyc          admin, participant not verified
    add_precommitment   admin, before the window opens, presale cap
    finalize            admin, once, after the window (or cap) closes
    claim_refund        anyone, when their refund is enabled
    release_vesting     anyone, after a schedule unlocks

Every operation is check-then-act: all preconditions are evaluated before
the first mutation, so a raised CrowdsaleError means nothing changed.
Token movements run before the internal records are written, so a
TokenTransferError from the token ledger also leaves the sale as it was.
It is not a CrowdsaleError and propagates unchanged.

Participant IDs share the token ledger's holder namespace. The treasury
and the vault prefixes are reserved and refused as participant IDs.

The object is not thread-safe. Callers serialise operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from tokensale.collaborators.auth import AdminGate, AuthorizationGate
from tokensale.collaborators.escrow import EscrowVault, InMemoryEscrowVault
from tokensale.collaborators.timelock import RESERVED_HOLDER_PREFIXES
from tokensale.collaborators.token import InMemoryTokenLedger, TokenLedger
from tokensale.engine.finalization import FinalizationController, FinalizationOutcome
from tokensale.engine.kyc import KYCGate
from tokensale.engine.ledger import ContributionLedger
from tokensale.engine.locked import LockedAllocationRegistry
from tokensale.engine.rates import RateEngine
from tokensale.engine.vesting import VestingAllocator
from tokensale.errors import (
    AlreadyFinalized,
    InvalidState,
    NotAuthorized,
    SaleClosed,
    ZeroAmount,
)
from tokensale.models.sale import (
    KYCStatus,
    ParticipantSnapshot,
    SaleConfig,
    SaleSnapshot,
    SaleState,
    VestingSchedule,
)


@dataclass(frozen=True)
class ContributionReceipt:
    participant: str
    value: int
    tokens: int
    bonus_factor: int
    phase: int
    locked: bool
    contributed_utc: datetime


@dataclass(frozen=True)
class PrecommitmentReceipt:
    beneficiary: str
    value: int
    tokens: int
    bonus_factor: int
    immediate_tokens: int
    deferred_tokens: int
    schedule: Optional[VestingSchedule]
    recorded_utc: datetime


class Crowdsale:
    """KYC-gated token sale with precommitments, vesting and refunds.

    Usage:
        sale = Crowdsale(resolver.sale_config())
        sale.add_precommitment("admin", "fund_a", 100, bonus_factor=20,
                               vesting_months=6, now=before_start)
        sale.contribute("alice", 5, now=during_sale)
        sale.verify_kyc("admin", "alice")
        outcome = sale.finalize("admin", now=after_end)
        sale.claim_refund("bob")        # only if refundable
    """

    def __init__(
        self,
        config: SaleConfig,
        token: Optional[TokenLedger] = None,
        escrow: Optional[EscrowVault] = None,
        auth: Optional[AuthorizationGate] = None,
    ) -> None:
        self._config = config
        self._token = token if token is not None else InMemoryTokenLedger()
        self._escrow = (
            escrow if escrow is not None
            else InMemoryEscrowVault(wallet=config.wallets.operator)
        )
        self._auth = auth if auth is not None else AdminGate([config.admin_id])

        self._rates = RateEngine(config.rate, config.rate_tiers)
        self._ledger = ContributionLedger(config.window, config.caps)
        self._registry = LockedAllocationRegistry()
        self._kyc = KYCGate(self._registry, self._ledger, self._escrow, self._token)
        self._vesting = VestingAllocator(self._token)
        self._finalizer = FinalizationController(
            config, self._registry, self._ledger, self._escrow, self._token,
        )

        self._token.mint(config.caps.total_supply)
        self._token.finish_minting()

    # ------------------------------------------------------------------
    # Component access (read-mostly, for services and tests)
    # ------------------------------------------------------------------

    @property
    def config(self) -> SaleConfig:
        return self._config

    @property
    def token(self) -> TokenLedger:
        return self._token

    @property
    def escrow(self) -> EscrowVault:
        return self._escrow

    @property
    def rates(self) -> RateEngine:
        return self._rates

    @property
    def ledger(self) -> ContributionLedger:
        return self._ledger

    @property
    def registry(self) -> LockedAllocationRegistry:
        return self._registry

    @property
    def kyc(self) -> KYCGate:
        return self._kyc

    @property
    def vesting(self) -> VestingAllocator:
        return self._vesting

    @property
    def state(self) -> SaleState:
        return self._finalizer.state

    @property
    def is_finalized(self) -> bool:
        return self._finalizer.is_finalized

    # ------------------------------------------------------------------
    # Public contributions
    # ------------------------------------------------------------------

    def contribute(
        self,
        participant: str,
        value: int,
        now: Optional[datetime] = None,
    ) -> ContributionReceipt:
        """Buy tokens at the current tier rate.

        Verified participants receive tokens immediately; everyone else has
        them locked until their KYC outcome is known.
        """
        participant = self._canonical(participant)
        if now is None:
            now = datetime.now(timezone.utc)
        if self._finalizer.is_finalized:
            raise AlreadyFinalized("Sale is finalized")
        if not self._config.window.is_open(now):
            raise SaleClosed(
                f"Contributions accepted between {self._config.window.start_utc.isoformat()} "
                f"and {self._config.window.end_utc.isoformat()}"
            )
        if value <= 0:
            raise ZeroAmount("Contribution value must be positive")

        bonus = self._rates.bonus_for(now)
        tokens = self._rates.tokens_for(value, bonus)
        self._ledger.ensure_can_contribute(value, tokens, now)

        locked = not self._kyc.is_verified(participant)
        if not locked:
            self._token.transfer(participant, tokens)
        self._ledger.record_contribution(participant, value, tokens, now)
        self._escrow.deposit(participant, value)
        if locked:
            self._registry.add_locked(participant, tokens)

        return ContributionReceipt(
            participant=participant,
            value=value,
            tokens=tokens,
            bonus_factor=bonus,
            phase=self._rates.phase_for(now),
            locked=locked,
            contributed_utc=now,
        )

    # ------------------------------------------------------------------
    # KYC outcomes
    # ------------------------------------------------------------------

    def verify_kyc(self, caller: str, participant: str) -> int:
        """Approve a participant. Returns tokens released (0 if none were locked)."""
        self._require_admin(caller)
        return self._kyc.verify(self._canonical(participant))

    def reject_kyc(self, caller: str, participant: str) -> int:
        """Reject a participant. Returns value reversed out of wei_raised."""
        self._require_admin(caller)
        return self._kyc.reject(self._canonical(participant))

    # ------------------------------------------------------------------
    # Precommitments
    # ------------------------------------------------------------------

    def add_precommitment(
        self,
        caller: str,
        beneficiary: str,
        value: int,
        bonus_factor: int = 0,
        vesting_months: int = 0,
        now: Optional[datetime] = None,
    ) -> PrecommitmentReceipt:
        """Record an off-schedule purchase at a bonus rate.

        With vesting_months > 0, half the tokens are granted now and the
        rest unlock at start + vesting_months.
        """
        self._require_admin(caller)
        beneficiary = self._canonical(beneficiary)
        if now is None:
            now = datetime.now(timezone.utc)
        if self._finalizer.is_finalized:
            raise AlreadyFinalized("Sale is finalized")
        if self._config.window.has_started(now):
            raise InvalidState("Precommitments close when the sale starts")
        if bonus_factor < 0:
            raise ValueError(f"Bonus factor must be non-negative, got {bonus_factor}")
        if vesting_months < 0:
            raise ValueError(f"Vesting period must be non-negative, got {vesting_months}")
        if value <= 0:
            raise ZeroAmount("Precommitment value must be positive")

        tokens = self._rates.tokens_for(value, bonus_factor)
        self._ledger.ensure_can_precommit(value, tokens)
        if vesting_months > 0:
            self._vesting.ensure_can_allocate(beneficiary, tokens)

        schedule: Optional[VestingSchedule] = None
        if vesting_months > 0:
            unlock = self._config.window.start_utc + self._config.months(vesting_months)
            schedule = self._vesting.allocate(beneficiary, tokens, unlock)
            immediate, deferred = schedule.immediate_tokens, schedule.deferred_tokens
        else:
            self._token.transfer(beneficiary, tokens)
            immediate, deferred = tokens, 0
        self._ledger.record_precommitment(beneficiary, value, tokens, now)

        return PrecommitmentReceipt(
            beneficiary=beneficiary,
            value=value,
            tokens=tokens,
            bonus_factor=bonus_factor,
            immediate_tokens=immediate,
            deferred_tokens=deferred,
            schedule=schedule,
            recorded_utc=now,
        )

    def release_vesting(self, beneficiary: str, now: Optional[datetime] = None) -> int:
        """Release a precommitment's deferred tokens. Anyone may call."""
        return self._vesting.release(self._canonical(beneficiary), now)

    def release_team_tokens(self, now: Optional[datetime] = None) -> int:
        """Release the team pool after its lock. Anyone may call."""
        vault = self._finalizer.team_vault
        if vault is None:
            raise InvalidState("Team pool is not vested (sale not settled)")
        return vault.release(now)

    # ------------------------------------------------------------------
    # Finalization and refunds
    # ------------------------------------------------------------------

    def finalize(
        self,
        caller: str,
        now: Optional[datetime] = None,
        force_clear: bool = False,
    ) -> FinalizationOutcome:
        """Close the sale into settlement or refund mode.

        Fails with PendingKYC while any allocation is locked, unless
        force_clear is set, in which case every pending case is rejected
        first.
        """
        self._require_admin(caller)
        if now is None:
            now = datetime.now(timezone.utc)
        self._finalizer.ensure_can_finalize(now)

        cleared: List[Tuple[str, int]] = []
        if force_clear:
            cleared = self._kyc.reject_all_pending()
        return self._finalizer.finalize(now, cleared)

    def claim_refund(self, participant: str, now: Optional[datetime] = None) -> int:
        """Return a participant's escrowed value when refundable."""
        participant = self._canonical(participant)
        if not self._escrow.refund_enabled(participant):
            raise InvalidState(f"No refund available for {participant}")
        return self._escrow.refund(participant, now)

    def goal_reached(self) -> bool:
        return self._ledger.goal_reached(self._config.goal)

    def kyc_status(self, participant: str) -> KYCStatus:
        return self._kyc.status(self._canonical(participant))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def participant(self, participant: str) -> ParticipantSnapshot:
        participant = self._canonical(participant)
        record = self._ledger.participant(participant)
        return ParticipantSnapshot(
            participant_id=participant,
            kyc_status=self._kyc.status(participant),
            locked_balance=self._registry.locked_balance(participant),
            wei_contributed=record.wei_contributed if record else 0,
            wei_precommitted=record.wei_precommitted if record else 0,
            tokens_purchased=record.tokens_purchased if record else 0,
            escrow_deposited=self._escrow.deposited(participant),
            refund_enabled=self._escrow.refund_enabled(participant),
            vesting=self._vesting.schedule(participant),
        )

    def snapshot(self) -> SaleSnapshot:
        return SaleSnapshot(
            state=self._finalizer.state,
            wei_raised=self._ledger.wei_raised,
            total_purchased=self._ledger.total_purchased,
            locked_total=self._registry.locked_total,
            locked_participants=self._registry.count,
            participants=len(self._ledger.participants()),
            goal=self._config.goal,
            goal_reached=self.goal_reached(),
            vesting_schedules=len(self._vesting.schedules()),
        )

    def check_invariants(self) -> list[str]:
        """Cross-component conservation checks. Empty list means consistent."""
        errors = self._registry.check_invariants() + self._ledger.check_conservation()

        for participant in self._registry.participants():
            record = self._ledger.participant(participant)
            locked = self._registry.locked_balance(participant)
            if record is None or locked > record.tokens_purchased:
                errors.append(f"{participant} has {locked} locked tokens not backed by a purchase")
            if self._kyc.is_verified(participant):
                errors.append(f"{participant} is verified but still locked")

        if self._finalizer.is_finalized and self._registry.locked_total != 0:
            errors.append("Sale finalized with locked allocations outstanding")

        if self._finalizer.state != SaleState.FINALIZED_SUCCESS:
            expected = (
                self._config.caps.total_supply
                - self._ledger.total_purchased
                + self._registry.locked_total
            )
            held = self._token.balance_of(self._token.treasury)
            if held != expected:
                errors.append(
                    f"Treasury holds {held} tokens, expected {expected} "
                    f"(supply - purchased + locked)"
                )
        return errors

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_admin(self, caller: str) -> None:
        if not self._auth.is_admin(caller):
            raise NotAuthorized(f"{caller} is not the sale administrator")

    def _canonical(self, participant: str) -> str:
        canonical = participant.strip()
        if not canonical:
            raise ValueError("Participant ID must not be blank")
        if canonical == self._token.treasury or canonical.startswith(RESERVED_HOLDER_PREFIXES):
            raise ValueError(f"Participant ID {canonical!r} is reserved for sale-owned holders")
        return canonical
