"""Sale models — participants, KYC status, caps, window, vesting schedules.

All value and token amounts are integers in their smallest unit (wei for
value, base units for tokens). Rates and bonus arithmetic truncate, so no
Decimal or float appears in allocation math.

Invariants enforced by these models:
- Sale state is one-way: OPEN → FINALIZED_SUCCESS or FINALIZED_REFUNDING
- KYC status transitions are explicit (no VERIFIED → REJECTED)
- Caps fit inside the total supply
- Vesting schedules are immutable once created
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from tokensale.errors import InvalidState


class SaleState(str, enum.Enum):
    """Lifecycle state of the sale.

    State machine:
        OPEN → FINALIZED_SUCCESS      (goal reached, funds forwarded)
        OPEN → FINALIZED_REFUNDING    (goal missed, escrow refunds)
    """
    OPEN = "open"
    FINALIZED_SUCCESS = "finalized_success"
    FINALIZED_REFUNDING = "finalized_refunding"


SALE_TRANSITIONS: Dict[SaleState, frozenset] = {
    SaleState.OPEN: frozenset({
        SaleState.FINALIZED_SUCCESS,
        SaleState.FINALIZED_REFUNDING,
    }),
    SaleState.FINALIZED_SUCCESS: frozenset(),
    SaleState.FINALIZED_REFUNDING: frozenset(),
}


class KYCStatus(str, enum.Enum):
    """Verification outcome for a participant.

    State machine:
        UNVERIFIED → VERIFIED
        UNVERIFIED → REJECTED
        REJECTED → VERIFIED     (case reopened)
        REJECTED → REJECTED     (repeat rejection of a new lock)
        VERIFIED → VERIFIED     (idempotent reassertion)
    """
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    REJECTED = "rejected"


KYC_TRANSITIONS: Dict[KYCStatus, frozenset] = {
    KYCStatus.UNVERIFIED: frozenset({KYCStatus.VERIFIED, KYCStatus.REJECTED}),
    KYCStatus.REJECTED: frozenset({KYCStatus.VERIFIED, KYCStatus.REJECTED}),
    KYCStatus.VERIFIED: frozenset({KYCStatus.VERIFIED}),
}


def check_kyc_transition(current: KYCStatus, target: KYCStatus) -> None:
    """Raise InvalidState if current → target is not a legal KYC transition."""
    allowed = KYC_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidState(
            f"Invalid KYC transition: {current.value} → {target.value}. "
            f"Allowed: {', '.join(s.value for s in allowed) or 'none'}"
        )


@dataclass(frozen=True)
class SaleWindow:
    """Contribution window. Immutable after construction."""
    start_utc: datetime
    end_utc: datetime

    def __post_init__(self) -> None:
        if self.start_utc >= self.end_utc:
            raise ValueError(
                f"Sale window start ({self.start_utc.isoformat()}) must be "
                f"before end ({self.end_utc.isoformat()})"
            )

    def is_open(self, now: datetime) -> bool:
        return self.start_utc <= now <= self.end_utc

    def has_started(self, now: datetime) -> bool:
        return now >= self.start_utc

    def has_ended(self, now: datetime) -> bool:
        return now > self.end_utc


@dataclass(frozen=True)
class SaleCaps:
    """Token supply split. All values in token base units."""
    total_supply: int
    presale_cap: int
    sale_cap: int
    foundation_pool: int
    team_pool: int

    def __post_init__(self) -> None:
        for name in ("total_supply", "presale_cap", "sale_cap",
                     "foundation_pool", "team_pool"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.total_supply <= 0:
            raise ValueError("total_supply must be positive")
        allocated = (
            self.presale_cap + self.sale_cap
            + self.foundation_pool + self.team_pool
        )
        if allocated > self.total_supply:
            raise ValueError(
                f"Pools ({allocated}) exceed total supply ({self.total_supply})"
            )

    @property
    def purchase_cap(self) -> int:
        """Most tokens that may ever be sold (presale plus public)."""
        return self.presale_cap + self.sale_cap


@dataclass(frozen=True)
class RateTier:
    """Bonus factor applied to public contributions until a deadline."""
    ends_utc: datetime
    bonus_factor: int


@dataclass(frozen=True)
class SaleWallets:
    operator: str
    foundation: str
    team: str


@dataclass(frozen=True)
class SaleConfig:
    """Everything needed to construct a Crowdsale.

    Built by ParamsResolver.sale_config() from config/sale_params.json,
    or directly in tests.
    """
    window: SaleWindow
    rate: int
    goal: int
    caps: SaleCaps
    wallets: SaleWallets
    admin_id: str
    rate_tiers: Tuple[RateTier, ...] = ()
    month_days: int = 30
    team_lock_months: int = 12

    def __post_init__(self) -> None:
        if self.rate <= 0:
            raise ValueError("Rate must be positive")
        if self.goal <= 0:
            raise ValueError("Goal must be positive")
        if self.month_days <= 0:
            raise ValueError("month_days must be positive")
        if self.team_lock_months < 0:
            raise ValueError("team_lock_months must be non-negative")
        if not self.admin_id.strip():
            raise ValueError("admin_id must not be blank")

    def months(self, count: int) -> timedelta:
        """Length of `count` vesting months."""
        return timedelta(days=self.month_days * count)


@dataclass
class Participant:
    """Contribution record for one participant.

    Created lazily on first contribution or precommitment. KYC status and
    locked balances live in the KYCGate and LockedAllocationRegistry; this
    record only tracks value and purchased tokens.
    """
    participant_id: str
    wei_contributed: int = 0
    wei_precommitted: int = 0
    tokens_purchased: int = 0
    created_utc: Optional[datetime] = None


@dataclass(frozen=True)
class VestingSchedule:
    """A precommitment grant split into an immediate and deferred portion.

    Invariant: immediate_tokens + deferred_tokens == total_tokens, with the
    odd unit (if any) on the deferred side.
    """
    beneficiary: str
    total_tokens: int
    immediate_tokens: int
    deferred_tokens: int
    unlock_utc: datetime
    vault_id: str

    @staticmethod
    def split(
        beneficiary: str,
        total_tokens: int,
        unlock_utc: datetime,
        vault_id: str,
    ) -> VestingSchedule:
        half = total_tokens // 2
        return VestingSchedule(
            beneficiary=beneficiary,
            total_tokens=total_tokens,
            immediate_tokens=half,
            deferred_tokens=total_tokens - half,
            unlock_utc=unlock_utc,
            vault_id=vault_id,
        )


@dataclass(frozen=True)
class ParticipantSnapshot:
    """Read-only view of everything the sale knows about one participant."""
    participant_id: str
    kyc_status: KYCStatus
    locked_balance: int
    wei_contributed: int
    wei_precommitted: int
    tokens_purchased: int
    escrow_deposited: int
    refund_enabled: bool
    vesting: Optional[VestingSchedule] = None


@dataclass(frozen=True)
class SaleSnapshot:
    """Aggregate sale counters at a single point in time."""
    state: SaleState
    wei_raised: int
    total_purchased: int
    locked_total: int
    locked_participants: int
    participants: int
    goal: int
    goal_reached: bool
    vesting_schedules: int = 0
