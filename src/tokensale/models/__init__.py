"""Core data models for the token sale."""

from tokensale.models.sale import (
    KYCStatus,
    Participant,
    ParticipantSnapshot,
    RateTier,
    SaleCaps,
    SaleConfig,
    SaleSnapshot,
    SaleState,
    SaleWallets,
    SaleWindow,
    VestingSchedule,
)

__all__ = [
    "KYCStatus",
    "Participant",
    "ParticipantSnapshot",
    "RateTier",
    "SaleCaps",
    "SaleConfig",
    "SaleSnapshot",
    "SaleState",
    "SaleWallets",
    "SaleWindow",
    "VestingSchedule",
]
