"""Tests for the in-memory escrow vault — proves refunds are gated and one-way."""

import pytest
from datetime import datetime, timezone

from tokensale.collaborators.escrow import EscrowVault, InMemoryEscrowVault, VaultState
from tokensale.errors import InvalidState, ZeroAmount


def _now() -> datetime:
    return datetime(2026, 4, 2, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def vault() -> InMemoryEscrowVault:
    return InMemoryEscrowVault(wallet="operator")


class TestDeposit:
    def test_satisfies_protocol(self, vault: InMemoryEscrowVault) -> None:
        assert isinstance(vault, EscrowVault)

    def test_deposits_accumulate(self, vault: InMemoryEscrowVault) -> None:
        vault.deposit("alice", 5)
        vault.deposit("alice", 3)
        assert vault.deposited("alice") == 8
        assert vault.total_held() == 8

    def test_zero_deposit_rejected(self, vault: InMemoryEscrowVault) -> None:
        with pytest.raises(ZeroAmount):
            vault.deposit("alice", 0)

    def test_no_deposit_after_close(self, vault: InMemoryEscrowVault) -> None:
        vault.close()
        with pytest.raises(InvalidState):
            vault.deposit("alice", 5)

    def test_blank_wallet_rejected(self) -> None:
        with pytest.raises(ValueError):
            InMemoryEscrowVault(wallet=" ")


class TestRefunds:
    def test_no_refund_while_active(self, vault: InMemoryEscrowVault) -> None:
        vault.deposit("alice", 5)
        assert not vault.refund_enabled("alice")
        with pytest.raises(InvalidState):
            vault.refund("alice")

    def test_global_refund(self, vault: InMemoryEscrowVault) -> None:
        vault.deposit("alice", 5)
        vault.enable_refunds()
        assert vault.state == VaultState.REFUNDING
        assert vault.refund("alice", _now()) == 5
        assert vault.refunded("alice") == 5
        assert vault.receipts[0].refunded_utc == _now()
        assert not vault.refund_enabled("alice")

    def test_kyc_refund_moves_current_deposit_only(self, vault: InMemoryEscrowVault) -> None:
        vault.deposit("bob", 30)
        vault.enable_kyc_refund("bob")
        vault.deposit("bob", 10)
        assert vault.kyc_refundable("bob") == 30
        assert vault.deposited("bob") == 10
        assert vault.refund("bob") == 30
        assert vault.deposited("bob") == 10
        assert vault.receipts[0].kyc_refund

    def test_kyc_refund_survives_close(self, vault: InMemoryEscrowVault) -> None:
        vault.deposit("alice", 12)
        vault.deposit("bob", 3)
        vault.enable_kyc_refund("bob")
        assert vault.close() == 12
        assert vault.forwarded == 12
        assert vault.refund_enabled("bob")
        assert vault.refund("bob") == 3
        assert vault.total_held() == 0

    def test_kyc_and_global_refund_combine(self, vault: InMemoryEscrowVault) -> None:
        vault.deposit("bob", 30)
        vault.enable_kyc_refund("bob")
        vault.deposit("bob", 10)
        vault.enable_refunds()
        assert vault.refund("bob") == 40

    def test_kyc_refund_without_deposit_is_noop(self, vault: InMemoryEscrowVault) -> None:
        vault.enable_kyc_refund("ghost")
        assert not vault.refund_enabled("ghost")


class TestStateMachine:
    def test_close_is_terminal(self, vault: InMemoryEscrowVault) -> None:
        vault.close()
        with pytest.raises(InvalidState, match="Invalid vault transition"):
            vault.enable_refunds()

    def test_refunding_is_terminal(self, vault: InMemoryEscrowVault) -> None:
        vault.enable_refunds()
        with pytest.raises(InvalidState):
            vault.close()
