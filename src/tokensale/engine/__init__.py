"""Sale engine — rates, ledger, KYC locks, vesting and finalization."""

from tokensale.engine.finalization import FinalizationController, FinalizationOutcome
from tokensale.engine.kyc import KYCGate
from tokensale.engine.ledger import ContributionLedger
from tokensale.engine.locked import LockedAllocationRegistry
from tokensale.engine.rates import RateEngine
from tokensale.engine.vesting import VestingAllocator

__all__ = [
    "ContributionLedger",
    "FinalizationController",
    "FinalizationOutcome",
    "KYCGate",
    "LockedAllocationRegistry",
    "RateEngine",
    "VestingAllocator",
]
