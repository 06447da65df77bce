"""Token ledger — the external mint/transfer contract the sale consumes.

The sale never inspects token internals. It needs five things: a one-off
mint of the full supply into the sale treasury, a way to close minting,
all-or-nothing transfers that fail loudly, balance queries, and a switch
that enables holder-to-holder transfers after a successful sale.

InMemoryTokenLedger is the reference implementation used by the CLI and
the tests. Holder-to-holder transfer semantics (approvals, allowances)
are out of scope; only the treasury and vaults move tokens here.
"""

from __future__ import annotations

from typing import Dict, Protocol, runtime_checkable


class TokenTransferError(RuntimeError):
    """A token movement could not be completed.

    Fatal for the calling operation: the core never catches this.
    """


@runtime_checkable
class TokenLedger(Protocol):
    """Contract for the token collaborator."""

    @property
    def treasury(self) -> str:
        """Holder that receives the minted supply (the sale itself)."""
        ...

    def mint(self, total: int) -> None:
        ...

    def finish_minting(self) -> None:
        ...

    def transfer(self, to: str, amount: int) -> bool:
        """Move tokens out of the treasury."""
        ...

    def transfer_from(self, sender: str, to: str, amount: int) -> bool:
        """Move tokens held by a vault or other sale-owned holder."""
        ...

    def balance_of(self, holder: str) -> int:
        ...

    def enable_transfers(self) -> None:
        ...

    @property
    def transfers_enabled(self) -> bool:
        ...


class InMemoryTokenLedger:
    """Dictionary-backed token ledger.

    Usage:
        token = InMemoryTokenLedger(treasury="sale")
        token.mint(1_000_000)
        token.finish_minting()
        token.transfer("alice", 50)
    """

    def __init__(self, treasury: str = "sale") -> None:
        if not treasury.strip():
            raise ValueError("Treasury holder must not be blank")
        self._treasury = treasury
        self._balances: Dict[str, int] = {}
        self._total_supply = 0
        self._minting_finished = False
        self._transfers_enabled = False

    @property
    def treasury(self) -> str:
        return self._treasury

    @property
    def total_supply(self) -> int:
        return self._total_supply

    @property
    def minting_finished(self) -> bool:
        return self._minting_finished

    @property
    def transfers_enabled(self) -> bool:
        return self._transfers_enabled

    def mint(self, total: int) -> None:
        if self._minting_finished:
            raise TokenTransferError("Minting already finished")
        if total <= 0:
            raise TokenTransferError("Mint amount must be positive")
        self._balances[self._treasury] = self.balance_of(self._treasury) + total
        self._total_supply += total

    def finish_minting(self) -> None:
        self._minting_finished = True

    def transfer(self, to: str, amount: int) -> bool:
        return self.transfer_from(self._treasury, to, amount)

    def transfer_from(self, sender: str, to: str, amount: int) -> bool:
        if amount <= 0:
            raise TokenTransferError(f"Transfer amount must be positive, got {amount}")
        if not to.strip():
            raise TokenTransferError("Transfer recipient must not be blank")
        available = self.balance_of(sender)
        if available < amount:
            raise TokenTransferError(
                f"Insufficient balance for {sender}: has {available}, needs {amount}"
            )
        self._balances[sender] = available - amount
        self._balances[to] = self.balance_of(to) + amount
        return True

    def balance_of(self, holder: str) -> int:
        return self._balances.get(holder, 0)

    def enable_transfers(self) -> None:
        self._transfers_enabled = True

    def holders(self) -> Dict[str, int]:
        """Non-zero balances, for audits and status output."""
        return {h: b for h, b in self._balances.items() if b > 0}
