"""External collaborators — interfaces the sale consumes, with in-memory backends.

The sale core only talks to these Protocols. Swapping a backend (a real
token contract, a custodial escrow) requires zero changes to the engine.
"""

from tokensale.collaborators.auth import AdminGate, AuthorizationGate
from tokensale.collaborators.escrow import EscrowVault, InMemoryEscrowVault, VaultState
from tokensale.collaborators.timelock import RESERVED_HOLDER_PREFIXES, VestingVault
from tokensale.collaborators.token import (
    InMemoryTokenLedger,
    TokenLedger,
    TokenTransferError,
)

__all__ = [
    "AdminGate",
    "AuthorizationGate",
    "EscrowVault",
    "InMemoryEscrowVault",
    "InMemoryTokenLedger",
    "RESERVED_HOLDER_PREFIXES",
    "TokenLedger",
    "TokenTransferError",
    "VaultState",
    "VestingVault",
]
