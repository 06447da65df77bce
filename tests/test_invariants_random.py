"""Randomised operation sequences — proves conservation holds under any ordering."""

import random

import pytest
from datetime import datetime, timedelta, timezone

from tokensale.crowdsale import Crowdsale
from tokensale.errors import CrowdsaleError
from tokensale.models.sale import (
    SaleCaps,
    SaleConfig,
    SaleState,
    SaleWallets,
    SaleWindow,
)

START = datetime(2026, 3, 1, tzinfo=timezone.utc)
END = datetime(2026, 3, 31, tzinfo=timezone.utc)
PARTICIPANTS = ["p0", "p1", "p2", "p3", "p4", "p5"]


def _sale(goal: int) -> Crowdsale:
    return Crowdsale(SaleConfig(
        window=SaleWindow(start_utc=START, end_utc=END),
        rate=10,
        goal=goal,
        caps=SaleCaps(
            total_supply=100_000, presale_cap=5_000, sale_cap=20_000,
            foundation_pool=40_000, team_pool=10_000,
        ),
        wallets=SaleWallets(operator="operator", foundation="foundation", team="team"),
        admin_id="admin",
    ))


def _random_step(sale: Crowdsale, rng: random.Random, now: datetime) -> int:
    """Run one random operation. Returns the value accepted by a successful contribute."""
    who = rng.choice(PARTICIPANTS)
    action = rng.choice(["contribute", "contribute", "verify", "reject", "refund"])
    try:
        if action == "contribute":
            return sale.contribute(who, rng.randint(0, 40), now).value
        elif action == "verify":
            sale.verify_kyc("admin", who)
        elif action == "reject":
            sale.reject_kyc("admin", who)
        else:
            sale.claim_refund(who, now)
    except CrowdsaleError:
        pass
    return 0


def _value_accounted(sale: Crowdsale) -> int:
    """Value still held or already refunded, across all participants."""
    escrow = sale.escrow
    return sum(
        escrow.deposited(p) + escrow.kyc_refundable(p) + escrow.refunded(p)
        for p in PARTICIPANTS
    )


@pytest.mark.parametrize("seed", range(12))
def test_random_sequences_preserve_invariants(seed: int) -> None:
    rng = random.Random(seed)
    sale = _sale(goal=rng.choice([50, 200, 1_000]))
    now = START + timedelta(hours=1)
    contributed = 0

    for _ in range(60):
        contributed += _random_step(sale, rng, now)
        assert sale.check_invariants() == []
        assert _value_accounted(sale) == contributed
        assert sum(sale.escrow.deposited(p) for p in PARTICIPANTS) == sale.ledger.wei_raised
        now += timedelta(hours=rng.randint(1, 6))

    outcome = sale.finalize("admin", END + timedelta(days=1), force_clear=True)
    assert sale.registry.locked_total == 0
    assert sale.check_invariants() == []

    for p in PARTICIPANTS:
        if sale.escrow.refund_enabled(p):
            sale.claim_refund(p)
        assert not sale.escrow.refund_enabled(p)

    refunded = sum(sale.escrow.refunded(p) for p in PARTICIPANTS)
    if outcome.state == SaleState.FINALIZED_SUCCESS:
        assert sale.escrow.forwarded + refunded == contributed
        assert sale.escrow.forwarded == sale.ledger.wei_raised
    else:
        assert refunded == contributed
