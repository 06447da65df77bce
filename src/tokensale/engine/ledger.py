"""Contribution ledger — raised value and purchased tokens.

The ledger is the single owner of the sale's aggregate counters:
    wei_raised       value credited to the sale (public + precommitted)
    total_purchased  tokens sold, including presale

Both only grow, except through reverse_contribution(), which undoes a
KYC-rejected participant's escrowed purchase. Every method validates
before it mutates, so a raised error leaves the ledger untouched.

Conservation (check_conservation()):
    wei_raised == Σ (wei_contributed + wei_precommitted) over participants
    total_purchased == Σ tokens_purchased over participants
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from tokensale.errors import CapExceeded, InvalidState, SaleClosed, ZeroAmount
from tokensale.models.sale import Participant, SaleCaps, SaleWindow


class ContributionLedger:
    """Aggregate and per-participant contribution accounting.

    Usage:
        ledger = ContributionLedger(window, caps)
        ledger.record_contribution("alice", 5, 50, now)
        ledger.goal_reached(goal=100)
    """

    def __init__(self, window: SaleWindow, caps: SaleCaps) -> None:
        self._window = window
        self._caps = caps
        self._participants: Dict[str, Participant] = {}
        self._wei_raised = 0
        self._total_purchased = 0

    @property
    def wei_raised(self) -> int:
        return self._wei_raised

    @property
    def total_purchased(self) -> int:
        return self._total_purchased

    @property
    def caps(self) -> SaleCaps:
        return self._caps

    @property
    def remaining_tokens(self) -> int:
        """Tokens still purchasable under the combined cap."""
        return self._caps.purchase_cap - self._total_purchased

    def participant(self, participant_id: str) -> Optional[Participant]:
        return self._participants.get(participant_id)

    def participants(self) -> List[Participant]:
        return list(self._participants.values())

    def ensure_can_contribute(self, value: int, tokens: int, now: datetime) -> None:
        """Raise if a public contribution could not be recorded."""
        if now > self._window.end_utc:
            raise SaleClosed(f"Sale ended at {self._window.end_utc.isoformat()}")
        if value <= 0:
            raise ZeroAmount("Contribution value must be positive")
        if self._total_purchased + tokens > self._caps.purchase_cap:
            raise CapExceeded(
                f"Purchase of {tokens} tokens exceeds cap: "
                f"{self._total_purchased} of {self._caps.purchase_cap} sold"
            )

    def ensure_can_precommit(self, value: int, tokens: int) -> None:
        """Raise if a precommitment could not be recorded."""
        if value <= 0:
            raise ZeroAmount("Precommitment value must be positive")
        if self._total_purchased + tokens > self._caps.presale_cap:
            raise CapExceeded(
                f"Precommitment of {tokens} tokens exceeds presale cap: "
                f"{self._total_purchased} of {self._caps.presale_cap} allocated"
            )

    def record_contribution(
        self,
        participant_id: str,
        value: int,
        tokens: int,
        now: Optional[datetime] = None,
    ) -> Participant:
        if now is None:
            now = datetime.now(timezone.utc)
        self.ensure_can_contribute(value, tokens, now)

        record = self._get_or_create(participant_id, now)
        record.wei_contributed += value
        record.tokens_purchased += tokens
        self._wei_raised += value
        self._total_purchased += tokens
        return record

    def record_precommitment(
        self,
        participant_id: str,
        value: int,
        tokens: int,
        now: Optional[datetime] = None,
    ) -> Participant:
        if now is None:
            now = datetime.now(timezone.utc)
        self.ensure_can_precommit(value, tokens)

        record = self._get_or_create(participant_id, now)
        record.wei_precommitted += value
        record.tokens_purchased += tokens
        self._wei_raised += value
        self._total_purchased += tokens
        return record

    def ensure_can_reverse(
        self, participant_id: str, locked_tokens: int, escrowed_value: int,
    ) -> None:
        """Raise if reverse_contribution() would leave the ledger inconsistent."""
        record = self._participants.get(participant_id)
        if record is None:
            raise InvalidState(f"No contribution recorded for {participant_id}")
        if escrowed_value != record.wei_contributed:
            raise InvalidState(
                f"Escrow holds {escrowed_value} for {participant_id} but ledger "
                f"records {record.wei_contributed}"
            )
        if locked_tokens > record.tokens_purchased:
            raise InvalidState(
                f"Cannot reverse {locked_tokens} tokens for {participant_id}: "
                f"only {record.tokens_purchased} purchased"
            )

    def reverse_contribution(
        self, participant_id: str, locked_tokens: int, escrowed_value: int,
    ) -> int:
        """Undo a locked purchase. Returns the value removed from wei_raised."""
        self.ensure_can_reverse(participant_id, locked_tokens, escrowed_value)
        record = self._participants[participant_id]
        record.tokens_purchased -= locked_tokens
        record.wei_contributed = 0
        self._total_purchased -= locked_tokens
        self._wei_raised -= escrowed_value
        return escrowed_value

    def goal_reached(self, goal: int) -> bool:
        return self._wei_raised >= goal

    def check_conservation(self) -> List[str]:
        """Return conservation violations. Empty list means consistent."""
        errors: List[str] = []
        value_sum = sum(
            p.wei_contributed + p.wei_precommitted
            for p in self._participants.values()
        )
        if value_sum != self._wei_raised:
            errors.append(
                f"wei_raised ({self._wei_raised}) != participant value sum ({value_sum})"
            )
        token_sum = sum(p.tokens_purchased for p in self._participants.values())
        if token_sum != self._total_purchased:
            errors.append(
                f"total_purchased ({self._total_purchased}) != "
                f"participant token sum ({token_sum})"
            )
        if self._total_purchased > self._caps.purchase_cap:
            errors.append(
                f"total_purchased ({self._total_purchased}) exceeds "
                f"purchase cap ({self._caps.purchase_cap})"
            )
        return errors

    def _get_or_create(self, participant_id: str, now: datetime) -> Participant:
        record = self._participants.get(participant_id)
        if record is None:
            record = Participant(participant_id=participant_id, created_utc=now)
            self._participants[participant_id] = record
        return record
