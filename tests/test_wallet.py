"""Tests for the wallet aggregate and the ledger service."""

from decimal import Decimal

import pytest

from ridecore.domain.entities import Wallet
from ridecore.domain.enums import TransactionType
from ridecore.domain.errors import InsufficientFunds, ValidationError
from ridecore.infrastructure.locks import InMemoryLockProvider
from ridecore.services.wallet_ledger import WalletLedger
from tests.conftest import WEDNESDAY_MORNING as NOW, Clock
from tests.fakes import InMemoryWalletRepository

D = Decimal


@pytest.fixture
def ledger() -> WalletLedger:
    return WalletLedger(InMemoryWalletRepository(), InMemoryLockProvider(), clock=Clock())


class TestWalletAggregate:
    def test_debit_beyond_balance_records_nothing(self):
        wallet = Wallet(user_id="u1")
        wallet.credit(D("100"), type=TransactionType.TOPUP, reference="t1",
                      description="", at=NOW)
        with pytest.raises(InsufficientFunds) as exc:
            wallet.debit(D("150"), type=TransactionType.RIDE_PAYMENT, reference="r1",
                         description="", at=NOW)
        assert exc.value.available == D("100")
        assert wallet.balance == D("100")
        assert len(wallet.transactions) == 1

    def test_credit_type_must_be_a_credit(self):
        wallet = Wallet(user_id="u1")
        with pytest.raises(ValidationError):
            wallet.credit(D("10"), type=TransactionType.WITHDRAWAL, reference="x",
                          description="", at=NOW)

    def test_verify_detects_a_drifted_balance(self):
        wallet = Wallet(user_id="u1", balance=D("5"))
        assert not wallet.verify()


class TestLedger:
    @pytest.mark.asyncio
    async def test_insufficient_funds_leaves_balance(self, ledger):
        await ledger.top_up("u1", D("100"))
        with pytest.raises(InsufficientFunds):
            await ledger.debit("u1", D("150"), "ride:1:fare", "Ride fare")
        assert await ledger.balance("u1") == D("100")
        assert len(await ledger.history("u1")) == 1

    @pytest.mark.asyncio
    async def test_balance_after_snapshots(self, ledger):
        await ledger.top_up("u1", D("100"), reference="t1")
        debit = await ledger.debit("u1", D("30.50"), "ride:1:fare", "Ride fare")
        refund = await ledger.refund("u1", D("10"), "ride:1:refund", "Refund")

        assert debit.amount == D("-30.50")
        assert debit.balance_after == D("69.50")
        assert refund.type == TransactionType.REFUND
        assert refund.balance_after == D("79.50")
        assert await ledger.balance("u1") == D("79.50")
        assert await ledger.verify("u1")

    @pytest.mark.asyncio
    async def test_withdraw(self, ledger):
        await ledger.top_up("u1", D("50"))
        txn = await ledger.withdraw("u1", D("20"))
        assert txn.type == TransactionType.WITHDRAWAL
        assert txn.reference.startswith("withdrawal:")
        assert await ledger.balance("u1") == D("30.00")

    @pytest.mark.asyncio
    async def test_refund_is_idempotent_per_reference(self, ledger):
        first = await ledger.refund("u1", D("25"), "ride:9:refund", "Refund")
        second = await ledger.refund("u1", D("25"), "ride:9:refund", "Refund")
        assert first.id == second.id
        assert await ledger.balance("u1") == D("25.00")
        assert len(await ledger.history("u1")) == 1

    @pytest.mark.asyncio
    async def test_amounts_rounded_to_minor_unit(self, ledger):
        txn = await ledger.top_up("u1", "10.005")
        assert txn.amount == D("10.01")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, "0.001", "abc"])
    async def test_invalid_amounts_rejected(self, ledger, amount):
        with pytest.raises(ValidationError):
            await ledger.top_up("u1", amount)
        assert await ledger.balance("u1") == D("0")

    @pytest.mark.asyncio
    async def test_wallet_created_lazily(self, ledger):
        wallet = await ledger.get_wallet("new-user")
        assert wallet.balance == D("0")
        assert wallet.currency == "ZAR"
        assert wallet.is_active

    @pytest.mark.asyncio
    async def test_history_newest_first_and_paginated(self, ledger):
        for i in range(5):
            await ledger.top_up("u1", D(i + 1), reference=f"t{i}")
        page1 = await ledger.history("u1", page=1, limit=2)
        page3 = await ledger.history("u1", page=3, limit=2)
        assert [t.reference for t in page1] == ["t4", "t3"]
        assert [t.reference for t in page3] == ["t0"]

    @pytest.mark.asyncio
    async def test_history_rejects_bad_paging(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.history("u1", page=0)

    @pytest.mark.asyncio
    async def test_inactive_wallet_rejects_mutations(self, ledger):
        await ledger.wallets.create(Wallet(user_id="frozen", is_active=False))
        with pytest.raises(ValidationError):
            await ledger.top_up("frozen", D("10"))
        assert await ledger.balance("frozen") == D("0")

    @pytest.mark.asyncio
    async def test_find_by_reference(self, ledger):
        await ledger.top_up("u1", D("100"))
        txn = await ledger.debit("u1", D("40"), "ride:7:capture", "Capture")
        found = await ledger.find("u1", "ride:7:capture", TransactionType.RIDE_PAYMENT)
        assert found is not None and found.id == txn.id
        assert await ledger.find("u1", "ride:7:capture", TransactionType.REFUND) is None
        assert await ledger.find("nobody", "x", TransactionType.TOPUP) is None
