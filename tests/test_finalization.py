"""Tests for finalization — proves the sale closes exactly once and only when clean."""

import pytest
from datetime import datetime, timedelta, timezone

from tokensale.crowdsale import Crowdsale
from tokensale.errors import AlreadyFinalized, InvalidState, NotAuthorized, PendingKYC
from tokensale.models.sale import (
    SaleCaps,
    SaleConfig,
    SaleState,
    SaleWallets,
    SaleWindow,
)

START = datetime(2026, 3, 1, tzinfo=timezone.utc)
END = datetime(2026, 3, 31, tzinfo=timezone.utc)


def _during() -> datetime:
    return START + timedelta(days=2)


def _after() -> datetime:
    return END + timedelta(days=1)


def _sale(goal: int = 10, presale_cap: int = 2_000, sale_cap: int = 4_000) -> Crowdsale:
    return Crowdsale(SaleConfig(
        window=SaleWindow(start_utc=START, end_utc=END),
        rate=10,
        goal=goal,
        caps=SaleCaps(
            total_supply=10_000, presale_cap=presale_cap, sale_cap=sale_cap,
            foundation_pool=2_500, team_pool=1_500,
        ),
        wallets=SaleWallets(operator="operator", foundation="foundation", team="team"),
        admin_id="admin",
    ))


class TestGuards:
    def test_non_admin_refused(self) -> None:
        sale = _sale()
        with pytest.raises(NotAuthorized):
            sale.finalize("mallory", _after())
        assert sale.state == SaleState.OPEN

    def test_before_end_refused(self) -> None:
        sale = _sale()
        with pytest.raises(InvalidState, match="still open"):
            sale.finalize("admin", _during())

    def test_exhausted_cap_ends_sale_early(self) -> None:
        sale = _sale(presale_cap=0, sale_cap=50)
        sale.verify_kyc("admin", "alice")
        sale.contribute("alice", 5, _during())
        outcome = sale.finalize("admin", _during())
        assert outcome.state == SaleState.FINALIZED_REFUNDING

    def test_pending_kyc_blocks(self) -> None:
        sale = _sale()
        sale.contribute("alice", 5, _during())
        with pytest.raises(PendingKYC):
            sale.finalize("admin", _after())
        assert not sale.is_finalized
        assert sale.registry.locked_total == 50

    def test_finalize_only_once(self) -> None:
        sale = _sale()
        sale.finalize("admin", _after())
        with pytest.raises(AlreadyFinalized):
            sale.finalize("admin", _after())


class TestSettlement:
    def test_goal_reached_settles(self) -> None:
        sale = _sale(goal=10)
        sale.verify_kyc("admin", "alice")
        sale.contribute("alice", 12, _during())
        outcome = sale.finalize("admin", _after())

        assert outcome.state == SaleState.FINALIZED_SUCCESS
        assert outcome.forwarded == 12
        assert sale.escrow.forwarded == 12
        assert outcome.team_tokens == 1_500
        assert outcome.foundation_tokens == 10_000 - 120 - 1_500
        assert sale.token.balance_of("foundation") == outcome.foundation_tokens
        assert sale.token.balance_of(sale.token.treasury) == 0
        assert sale.token.transfers_enabled

    def test_team_pool_locked_after_end(self) -> None:
        sale = _sale(goal=10)
        sale.verify_kyc("admin", "alice")
        sale.contribute("alice", 12, _during())
        sale.finalize("admin", _after())
        unlock = END + timedelta(days=360)
        with pytest.raises(InvalidState):
            sale.release_team_tokens(unlock - timedelta(seconds=1))
        assert sale.release_team_tokens(unlock) == 1_500
        assert sale.token.balance_of("team") == 1_500

    def test_team_release_requires_settlement(self) -> None:
        sale = _sale()
        with pytest.raises(InvalidState):
            sale.release_team_tokens(_after())


class TestRefundMode:
    def test_goal_missed_enables_refunds(self) -> None:
        sale = _sale(goal=100)
        sale.verify_kyc("admin", "alice")
        sale.contribute("alice", 5, _during())
        outcome = sale.finalize("admin", _after())
        assert outcome.state == SaleState.FINALIZED_REFUNDING
        assert outcome.forwarded == 0
        assert not sale.token.transfers_enabled
        assert sale.claim_refund("alice") == 5


class TestForceClear:
    def test_force_clear_rejects_pending_then_finalizes(self) -> None:
        sale = _sale(goal=10)
        sale.verify_kyc("admin", "alice")
        sale.contribute("alice", 12, _during())
        sale.contribute("bob", 3, _during())
        outcome = sale.finalize("admin", _after(), force_clear=True)

        assert outcome.cleared == (("bob", 3),)
        assert outcome.state == SaleState.FINALIZED_SUCCESS
        assert outcome.wei_raised == 12
        assert outcome.forwarded == 12
        assert sale.claim_refund("bob") == 3
        assert sale.check_invariants() == []

    def test_force_clear_can_drop_below_goal(self) -> None:
        sale = _sale(goal=10)
        sale.contribute("bob", 12, _during())
        outcome = sale.finalize("admin", _after(), force_clear=True)
        assert outcome.state == SaleState.FINALIZED_REFUNDING
        assert sale.claim_refund("bob") == 12

    def test_force_clear_checks_guards_first(self) -> None:
        sale = _sale()
        sale.contribute("bob", 3, _during())
        with pytest.raises(InvalidState):
            sale.finalize("admin", _during(), force_clear=True)
        assert sale.registry.locked_total == 30
