"""Locked allocation registry — tokens withheld pending a KYC outcome.

Storage is an ordered list of participants plus a participant → index map.
Removal swaps the target with the last entry, fixes the moved entry's
index and truncates, so each removal is O(1) and clearing n entries is
O(n) regardless of order.

Invariants (checked by check_invariants()):
1. locked_total == sum of every participant's locked balance.
2. A participant has a non-zero balance iff it is in the list.
3. index[participant] is that participant's position in the list.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple

from tokensale.errors import ZeroAmount


class LockedAllocationRegistry:
    """Per-participant KYC-locked token balances with an aggregate total."""

    def __init__(self) -> None:
        self._participants: List[str] = []
        self._index: Dict[str, int] = {}
        self._balances: Dict[str, int] = {}
        self._locked_total = 0

    @property
    def locked_total(self) -> int:
        return self._locked_total

    @property
    def count(self) -> int:
        return len(self._participants)

    def __contains__(self, participant: object) -> bool:
        return participant in self._index

    def __len__(self) -> int:
        return len(self._participants)

    def locked_balance(self, participant: str) -> int:
        return self._balances.get(participant, 0)

    def participants(self) -> List[str]:
        """Participants with a pending lock, in storage order."""
        return list(self._participants)

    def add_locked(self, participant: str, tokens: int) -> None:
        if tokens <= 0:
            raise ZeroAmount(f"Locked amount must be positive, got {tokens}")
        if participant not in self._index:
            self._index[participant] = len(self._participants)
            self._participants.append(participant)
        self._balances[participant] = self.locked_balance(participant) + tokens
        self._locked_total += tokens

    def reset_locked(self, participant: str) -> int:
        """Remove the participant's lock and return the tokens it held."""
        amount = self.locked_balance(participant)
        if amount <= 0:
            raise ZeroAmount(f"No locked balance for {participant}")

        position = self._index.pop(participant)
        last = self._participants.pop()
        if last != participant:
            self._participants[position] = last
            self._index[last] = position

        del self._balances[participant]
        self._locked_total -= amount
        return amount

    def clear_all(
        self,
        on_reverse: Optional[Callable[[str, int], None]] = None,
    ) -> List[Tuple[str, int]]:
        """Reset every lock, calling on_reverse(participant, tokens) for each.

        Entries are taken from the tail so every reset is a plain truncate.
        Returns the (participant, tokens) pairs that were cleared.
        """
        cleared: List[Tuple[str, int]] = []
        while self._participants:
            participant = self._participants[-1]
            tokens = self.reset_locked(participant)
            if on_reverse is not None:
                on_reverse(participant, tokens)
            cleared.append((participant, tokens))
        return cleared

    def check_invariants(self) -> List[str]:
        """Return invariant violations. Empty list means consistent."""
        errors: List[str] = []
        total = sum(self._balances.values())
        if total != self._locked_total:
            errors.append(
                f"locked_total ({self._locked_total}) != sum of balances ({total})"
            )
        if set(self._balances) != set(self._participants):
            errors.append("Registry list and balance map disagree on membership")
        if len(self._participants) != len(self._index):
            errors.append("Registry list and index map differ in size")
        for position, participant in enumerate(self._participants):
            if self._index.get(participant) != position:
                errors.append(f"Stale index for {participant}")
            if self._balances.get(participant, 0) <= 0:
                errors.append(f"Zero balance tracked for {participant}")
        return errors
