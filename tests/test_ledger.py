"""Tests for the contribution ledger — proves caps and conservation hold."""

import pytest
from datetime import datetime, timedelta, timezone

from tokensale.engine.ledger import ContributionLedger
from tokensale.errors import CapExceeded, InvalidState, SaleClosed, ZeroAmount
from tokensale.models.sale import SaleCaps, SaleWindow


def _now() -> datetime:
    return datetime(2026, 3, 5, 12, 0, 0, tzinfo=timezone.utc)


def _ledger() -> ContributionLedger:
    window = SaleWindow(
        start_utc=datetime(2026, 3, 1, tzinfo=timezone.utc),
        end_utc=datetime(2026, 3, 31, tzinfo=timezone.utc),
    )
    caps = SaleCaps(
        total_supply=10_000, presale_cap=2_000, sale_cap=4_000,
        foundation_pool=2_500, team_pool=1_500,
    )
    return ContributionLedger(window, caps)


class TestRecordContribution:
    def test_records_value_and_tokens(self) -> None:
        ledger = _ledger()
        record = ledger.record_contribution("alice", 5, 50, _now())
        assert record.wei_contributed == 5
        assert record.tokens_purchased == 50
        assert ledger.wei_raised == 5
        assert ledger.total_purchased == 50
        assert ledger.remaining_tokens == 5_950

    def test_accumulates_per_participant(self) -> None:
        ledger = _ledger()
        ledger.record_contribution("alice", 5, 50, _now())
        ledger.record_contribution("alice", 3, 30, _now())
        assert ledger.participant("alice").wei_contributed == 8
        assert len(ledger.participants()) == 1

    def test_after_end_rejected(self) -> None:
        ledger = _ledger()
        with pytest.raises(SaleClosed):
            ledger.record_contribution("alice", 5, 50, _now() + timedelta(days=30))
        assert ledger.wei_raised == 0

    def test_zero_value_rejected(self) -> None:
        with pytest.raises(ZeroAmount):
            _ledger().record_contribution("alice", 0, 0, _now())

    def test_purchase_cap_includes_presale(self) -> None:
        ledger = _ledger()
        ledger.record_precommitment("fund", 200, 2_000, _now())
        ledger.record_contribution("alice", 400, 4_000, _now())
        with pytest.raises(CapExceeded):
            ledger.record_contribution("bob", 1, 10, _now())
        assert ledger.total_purchased == 6_000
        assert ledger.participant("bob") is None


class TestRecordPrecommitment:
    def test_tracked_separately(self) -> None:
        ledger = _ledger()
        record = ledger.record_precommitment("fund", 100, 1_200, _now())
        assert record.wei_precommitted == 100
        assert record.wei_contributed == 0
        assert ledger.wei_raised == 100

    def test_presale_cap(self) -> None:
        ledger = _ledger()
        ledger.record_precommitment("fund", 150, 1_500, _now())
        with pytest.raises(CapExceeded, match="presale"):
            ledger.record_precommitment("fund2", 60, 600, _now())
        assert ledger.total_purchased == 1_500


class TestReverseContribution:
    def test_reverse_removes_value_and_tokens(self) -> None:
        ledger = _ledger()
        ledger.record_contribution("alice", 30, 300, _now())
        assert ledger.reverse_contribution("alice", 300, 30) == 30
        assert ledger.wei_raised == 0
        assert ledger.total_purchased == 0
        assert ledger.participant("alice").wei_contributed == 0
        assert ledger.check_conservation() == []

    def test_reverse_keeps_precommitment(self) -> None:
        ledger = _ledger()
        ledger.record_precommitment("fund", 100, 1_000, _now())
        ledger.record_contribution("fund", 10, 100, _now())
        ledger.reverse_contribution("fund", 100, 10)
        record = ledger.participant("fund")
        assert record.wei_precommitted == 100
        assert record.tokens_purchased == 1_000
        assert ledger.wei_raised == 100

    def test_escrow_mismatch_rejected_before_mutation(self) -> None:
        ledger = _ledger()
        ledger.record_contribution("alice", 30, 300, _now())
        with pytest.raises(InvalidState, match="Escrow holds"):
            ledger.reverse_contribution("alice", 300, 25)
        assert ledger.wei_raised == 30
        assert ledger.total_purchased == 300

    def test_unknown_participant_rejected(self) -> None:
        with pytest.raises(InvalidState):
            _ledger().reverse_contribution("ghost", 10, 1)


class TestGoalAndConservation:
    def test_goal_reached_at_threshold(self) -> None:
        ledger = _ledger()
        ledger.record_contribution("alice", 10, 100, _now())
        assert ledger.goal_reached(10)
        assert not ledger.goal_reached(11)

    def test_conservation_holds_through_mixed_operations(self) -> None:
        ledger = _ledger()
        ledger.record_precommitment("fund", 100, 1_000, _now())
        ledger.record_contribution("alice", 5, 50, _now())
        ledger.record_contribution("bob", 7, 70, _now())
        ledger.reverse_contribution("bob", 70, 7)
        assert ledger.check_conservation() == []
        assert ledger.wei_raised == 105
