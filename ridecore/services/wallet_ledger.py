"""
Wallet Ledger
=============

Per-user balance ledger used for ride settlement and refunds.

Every mutation runs under the ``wallet:<user_id>`` lock, loads the wallet,
appends exactly one transaction through the ``Wallet`` aggregate and hands
both to ``WalletRepository.append`` which stores the transaction and the new
balance in one unit (with an optimistic version check in SQL).  A rejected
debit records nothing.  When a ``commit`` callback is given it runs before
the wallet lock is released.

Wallets are created lazily, in the ledger's currency, on first use.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from ridecore.domain.entities import Wallet, WalletTransaction, utcnow
from ridecore.domain.enums import TransactionType
from ridecore.domain.errors import ValidationError
from ridecore.domain.money import quantize
from ridecore.domain.ports import LockProvider, WalletRepository

logger = logging.getLogger(__name__)


class WalletLedger:
    def __init__(
        self,
        wallets: WalletRepository,
        locks: LockProvider,
        currency: str = "ZAR",
        clock: Callable[[], datetime] = utcnow,
        commit: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.wallets = wallets
        self.locks = locks
        self.currency = currency
        self.clock = clock
        self.commit = commit

    # ── Mutations ─────────────────────────────────────────────────────

    async def credit(
        self,
        user_id: str,
        amount: Decimal | float | int | str,
        reference: str,
        description: str,
        *,
        type: TransactionType = TransactionType.TOPUP,
    ) -> WalletTransaction:
        amount = self._amount(amount)
        async with self.locks.lock(f"wallet:{user_id}"):
            wallet = await self._wallet(user_id)
            txn = wallet.credit(
                amount, type=type, reference=reference,
                description=description, at=self.clock(),
            )
            await self.wallets.append(wallet, txn)
            await self._commit()
        logger.info(
            "Wallet %s credited %s (%s, ref=%s) balance=%s",
            user_id, amount, type.value, reference, txn.balance_after,
        )
        return txn

    async def debit(
        self,
        user_id: str,
        amount: Decimal | float | int | str,
        reference: str,
        description: str,
        *,
        type: TransactionType = TransactionType.RIDE_PAYMENT,
    ) -> WalletTransaction:
        amount = self._amount(amount)
        async with self.locks.lock(f"wallet:{user_id}"):
            wallet = await self._wallet(user_id)
            txn = wallet.debit(
                amount, type=type, reference=reference,
                description=description, at=self.clock(),
            )
            await self.wallets.append(wallet, txn)
            await self._commit()
        logger.info(
            "Wallet %s debited %s (%s, ref=%s) balance=%s",
            user_id, amount, type.value, reference, txn.balance_after,
        )
        return txn

    async def refund(
        self,
        user_id: str,
        amount: Decimal | float | int | str,
        reference: str,
        description: str,
    ) -> WalletTransaction:
        """Credit typed ``refund``; a second call with the same reference is a no-op."""
        amount = self._amount(amount)
        async with self.locks.lock(f"wallet:{user_id}"):
            wallet = await self._wallet(user_id)
            existing = wallet.find(reference, TransactionType.REFUND)
            if existing is not None:
                logger.info("Refund %s for %s already recorded", reference, user_id)
                return existing
            txn = wallet.credit(
                amount, type=TransactionType.REFUND, reference=reference,
                description=description, at=self.clock(),
            )
            await self.wallets.append(wallet, txn)
            await self._commit()
        logger.info(
            "Wallet %s refunded %s (ref=%s) balance=%s",
            user_id, amount, reference, txn.balance_after,
        )
        return txn

    async def top_up(
        self,
        user_id: str,
        amount: Decimal | float | int | str,
        reference: Optional[str] = None,
        description: str = "Wallet top-up",
    ) -> WalletTransaction:
        return await self.credit(
            user_id, amount, reference or f"topup:{uuid.uuid4().hex[:12]}",
            description, type=TransactionType.TOPUP,
        )

    async def withdraw(
        self,
        user_id: str,
        amount: Decimal | float | int | str,
        reference: Optional[str] = None,
        description: str = "Wallet withdrawal",
    ) -> WalletTransaction:
        return await self.debit(
            user_id, amount, reference or f"withdrawal:{uuid.uuid4().hex[:12]}",
            description, type=TransactionType.WITHDRAWAL,
        )

    # ── Queries ───────────────────────────────────────────────────────

    async def get_wallet(self, user_id: str) -> Wallet:
        return await self._wallet(user_id)

    async def balance(self, user_id: str) -> Decimal:
        return (await self._wallet(user_id)).balance

    async def find(
        self, user_id: str, reference: str, type: TransactionType
    ) -> Optional[WalletTransaction]:
        wallet = await self.wallets.get(user_id)
        return wallet.find(reference, type) if wallet else None

    async def history(
        self, user_id: str, page: int = 1, limit: int = 20
    ) -> list[WalletTransaction]:
        """Transactions newest first, paginated from page 1."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        wallet = await self.wallets.get(user_id)
        if wallet is None:
            return []
        newest_first = list(reversed(wallet.transactions))
        start = (page - 1) * limit
        return newest_first[start:start + limit]

    async def verify(self, user_id: str) -> bool:
        wallet = await self.wallets.get(user_id)
        if wallet is None:
            return True
        ok = wallet.verify()
        if not ok:
            logger.error("Ledger mismatch for wallet %s", user_id)
        return ok

    # ── Internals ─────────────────────────────────────────────────────

    async def _commit(self) -> None:
        if self.commit is not None:
            await self.commit()

    async def _wallet(self, user_id: str) -> Wallet:
        wallet = await self.wallets.get(user_id)
        if wallet is None:
            wallet = await self.wallets.create(
                Wallet(user_id=user_id, currency=self.currency)
            )
            logger.info("Created %s wallet for %s", self.currency, user_id)
        return wallet

    def _amount(self, amount: Decimal | float | int | str) -> Decimal:
        try:
            value = quantize(amount, self.currency)
        except ArithmeticError:
            raise ValidationError(f"Invalid amount: {amount!r}") from None
        if value <= 0:
            raise ValidationError("Amount must be positive")
        return value
