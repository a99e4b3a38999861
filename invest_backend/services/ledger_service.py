import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Tuple, AsyncIterator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from ..database_model.user import User
from ..database_model.product import Product
from ..database_model.purchase import UserProduct, PurchaseStatus
from ..database_model.transaction import Transaction, TransactionType
from ..database_model.recharge import Recharge, RechargeStatus
from ..database_model.withdrawal import Withdrawal, WithdrawalStatus, WithdrawalMethod
from ..core.config import settings
from ..core.errors import (
    NotFoundError,
    ValidationError,
    DuplicateError,
    ConflictError,
    InsufficientFundsError,
    RateLimitError
)
from ..utils.lock_manager import get_lock_manager, LockPatterns
from ..utils.periods import month_bounds, reference_timestamp
from .user_service import UserService
from .catalog_service import CatalogService


logger = logging.getLogger(__name__)

BANK_FIELDS = ("bank_name", "ifsc_code", "account_number", "account_holder_name")


def _money(value: float) -> float:
    return round(value, 2)


def _parse_amount(value: Any) -> Optional[float]:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if amount != amount or amount <= 0:  # NaN or non-positive
        return None
    return amount


class LedgerService:
    """Moves money between a user's recharge and profit balances.

    Every balance mutation follows the same shape: take the user's lock,
    re-read the user row for update, validate, write the balances, append a
    ledger transaction, then commit once. Any failure rolls the whole unit
    back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.user_service = UserService(db)
        self.catalog_service = CatalogService(db)

    @asynccontextmanager
    async def locked_user(self, user_id: int) -> AsyncIterator[User]:
        """Critical section over one user's balances, committed on exit."""
        async with get_lock_manager().lock(LockPatterns.user_balance(user_id)):
            try:
                user = await self.user_service.get_user_for_update(user_id)
                if not user:
                    raise NotFoundError("User not found")
                yield user
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

    def record_transaction(
        self,
        user_id: int,
        transaction_type: TransactionType,
        amount: float,
        description: str,
        reference_id: Optional[str],
        now: datetime
    ) -> Transaction:
        """Append a completed ledger entry to the current unit of work."""
        transaction = Transaction(
            user_id=user_id,
            type=transaction_type.value,
            amount=_money(amount),
            status="completed",
            description=description,
            reference_id=reference_id,
            created_at=now
        )
        self.db.add(transaction)
        return transaction

    # Purchases

    async def purchase_product(
        self,
        user_id: int,
        product_id: int,
        now: Optional[datetime] = None
    ) -> UserProduct:
        """Buy a product with the recharge balance."""
        now = now or datetime.utcnow()
        product = await self.catalog_service.get_product(product_id)

        async with self.locked_user(user_id) as user:
            if user.recharge_balance < product.price:
                logger.warning(
                    f"Purchase rejected for user {user_id}: recharge balance "
                    f"{user.recharge_balance} < price {product.price}"
                )
                raise InsufficientFundsError("Insufficient recharge balance")

            month_start, month_end = month_bounds(now)
            result = await self.db.execute(
                select(func.count(UserProduct.id)).where(
                    UserProduct.user_id == user_id,
                    UserProduct.product_id == product_id,
                    UserProduct.purchase_date >= month_start,
                    UserProduct.purchase_date < month_end
                )
            )
            if result.scalar_one() > 0:
                raise RateLimitError("You can only buy this product once per month")

            purchase = UserProduct(
                user_id=user_id,
                product_id=product.id,
                purchase_date=now,
                end_date=now + timedelta(days=product.duration),
                daily_income=product.daily_income,
                status=PurchaseStatus.ACTIVE.value,
                created_at=now
            )
            self.db.add(purchase)

            user.recharge_balance = _money(user.recharge_balance - product.price)
            user.total_invested = _money(user.total_invested + product.price)
            user.updated_at = now

            await self.db.flush()
            self.record_transaction(
                user_id,
                TransactionType.INVESTMENT,
                product.price,
                f"Purchased {product.name} investment plan",
                str(purchase.id),
                now
            )

        logger.info(f"User {user_id} purchased product {product.id} for {product.price} (purchase {purchase.id})")
        return purchase

    # Recharges

    async def request_recharge(
        self,
        user_id: int,
        amount: Any,
        now: Optional[datetime] = None
    ) -> Recharge:
        """Open a pending recharge; the UTR is attached afterwards."""
        now = now or datetime.utcnow()
        value = _parse_amount(amount)
        if value is None:
            raise ValidationError("Valid amount is required")

        if not await self.user_service.get_user_by_id(user_id):
            raise NotFoundError("User not found")

        recharge = Recharge(
            user_id=user_id,
            amount=_money(value),
            status=RechargeStatus.PENDING.value,
            created_at=now
        )
        self.db.add(recharge)
        await self.db.commit()
        await self.db.refresh(recharge)

        logger.info(f"Recharge {recharge.id} requested by user {user_id} for {recharge.amount}")
        return recharge

    async def attach_utr(self, user_id: int, recharge_id: int, utr: Optional[str]) -> Recharge:
        """Attach the payer's UTR to their own pending recharge."""
        utr = (utr or "").strip()
        if not utr:
            raise ValidationError("UTR is required")

        result = await self.db.execute(
            select(Recharge).where(Recharge.id == recharge_id, Recharge.user_id == user_id)
        )
        recharge = result.scalar_one_or_none()
        if not recharge:
            raise NotFoundError("Recharge request not found or does not belong to user")

        if not recharge.is_pending:
            raise ConflictError("This recharge has already been processed")

        result = await self.db.execute(
            select(Recharge.id).where(Recharge.utr_number == utr, Recharge.id != recharge.id)
        )
        if result.first():
            raise DuplicateError("This UTR has already been submitted")

        recharge.utr_number = utr
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateError("This UTR has already been submitted")
        await self.db.refresh(recharge)

        logger.info(f"UTR attached to recharge {recharge.id}")
        return recharge

    async def verify_utr(
        self,
        utr: Optional[str],
        action: Optional[str],
        now: Optional[datetime] = None
    ) -> Recharge:
        """Approve or reject the pending recharge carrying ``utr``."""
        now = now or datetime.utcnow()
        utr = (utr or "").strip()
        if not utr:
            raise ValidationError("UTR is required")

        action = (action or "").strip().lower()
        if action not in ("approve", "reject"):
            raise ValidationError('Action must be either "approve" or "reject"')

        result = await self.db.execute(select(Recharge).where(Recharge.utr_number == utr))
        recharge = result.scalar_one_or_none()
        if not recharge:
            raise NotFoundError("Recharge request not found for this UTR")

        async with self.locked_user(recharge.user_id) as user:
            result = await self.db.execute(
                select(Recharge)
                .where(Recharge.id == recharge.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            recharge = result.scalar_one()

            if not recharge.is_pending:
                raise ConflictError("This recharge has already been processed")

            recharge.processed_at = now
            if action == "approve":
                recharge.status = RechargeStatus.COMPLETED.value
                user.recharge_balance = _money(user.recharge_balance + recharge.amount)
                user.updated_at = now
                self.record_transaction(
                    user.id,
                    TransactionType.RECHARGE,
                    recharge.amount,
                    f"Recharge via UTR: {utr}",
                    utr,
                    now
                )
            else:
                recharge.status = RechargeStatus.FAILED.value

        logger.info(f"Recharge {recharge.id} {recharge.status} for user {recharge.user_id} (UTR {utr})")
        return recharge

    # Withdrawals

    async def request_withdrawal(
        self,
        user_id: int,
        data: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> Withdrawal:
        """File a pending withdrawal against the profit balance."""
        now = now or datetime.utcnow()

        amount = _parse_amount(data.get("amount"))
        if amount is None:
            raise ValidationError("Valid amount is required")

        method = str(data.get("method") or "").strip().lower()
        if method not in (WithdrawalMethod.BANK.value, WithdrawalMethod.UPI.value):
            raise ValidationError('Method must be either "bank" or "upi"')

        details = {}
        if method == WithdrawalMethod.BANK.value:
            for field in BANK_FIELDS:
                value = str(data.get(field) or "").strip()
                if not value:
                    raise ValidationError("Bank details are required for bank withdrawal")
                details[field] = value
        else:
            upi_id = str(data.get("upi_id") or "").strip()
            if not upi_id:
                raise ValidationError("UPI ID is required for UPI withdrawal")
            details["upi_id"] = upi_id

        async with self.locked_user(user_id) as user:
            if amount < settings.min_withdrawal_amount:
                raise ValidationError(f"Minimum withdrawal amount is ₹{settings.min_withdrawal_amount:g}")

            if user.balance < amount:
                logger.warning(f"Withdrawal rejected for user {user_id}: balance {user.balance} < {amount}")
                raise InsufficientFundsError(
                    "Insufficient profit balance. You can only withdraw profits from investments."
                )

            window_start = now - timedelta(hours=settings.withdrawal_cooldown_hours)
            result = await self.db.execute(
                select(func.count(Withdrawal.id)).where(
                    Withdrawal.user_id == user_id,
                    Withdrawal.created_at > window_start,
                    Withdrawal.status.notin_([WithdrawalStatus.REJECTED.value, "failed"])
                )
            )
            if result.scalar_one() > 0:
                raise RateLimitError(
                    f"You can only make one withdrawal every {settings.withdrawal_cooldown_hours} hours"
                )

            withdrawal = Withdrawal(
                user_id=user_id,
                amount=_money(amount),
                method=method,
                status=WithdrawalStatus.PENDING.value,
                created_at=now,
                **details
            )
            self.db.add(withdrawal)

        logger.info(f"Withdrawal {withdrawal.id} requested by user {user_id} for {withdrawal.amount} via {method}")
        return withdrawal

    async def resolve_withdrawal(
        self,
        withdrawal_id: int,
        status: Optional[str],
        now: Optional[datetime] = None
    ) -> Withdrawal:
        """Approve (settle) or reject a pending withdrawal."""
        now = now or datetime.utcnow()
        target = WithdrawalStatus.normalize(status)
        if target is None:
            raise ValidationError('Status must be "approved", "rejected" or "pending"')

        result = await self.db.execute(select(Withdrawal).where(Withdrawal.id == withdrawal_id))
        withdrawal = result.scalar_one_or_none()
        if not withdrawal:
            raise NotFoundError("Withdrawal not found")

        async with self.locked_user(withdrawal.user_id) as user:
            result = await self.db.execute(
                select(Withdrawal)
                .where(Withdrawal.id == withdrawal_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            withdrawal = result.scalar_one()

            current = WithdrawalStatus.normalize(withdrawal.status)
            if current in (WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED):
                raise ConflictError("This withdrawal has already been processed")

            if target == WithdrawalStatus.APPROVED:
                if user.balance < withdrawal.amount:
                    raise InsufficientFundsError("Insufficient profit balance to approve this withdrawal")

                user.balance = _money(user.balance - withdrawal.amount)
                user.total_withdrawn = _money(user.total_withdrawn + withdrawal.amount)
                user.updated_at = now
                withdrawal.status = WithdrawalStatus.APPROVED.value
                withdrawal.processed_at = now

                destination = withdrawal.bank_name if withdrawal.method == WithdrawalMethod.BANK.value else withdrawal.upi_id
                self.record_transaction(
                    user.id,
                    TransactionType.WITHDRAWAL,
                    withdrawal.amount,
                    f"Withdrawal via {withdrawal.method}: {destination}",
                    str(withdrawal.id),
                    now
                )
            elif target == WithdrawalStatus.REJECTED:
                withdrawal.status = WithdrawalStatus.REJECTED.value
                withdrawal.processed_at = now

        logger.info(f"Withdrawal {withdrawal.id} resolved as {withdrawal.status}")
        return withdrawal

    # Admin adjustment

    async def adjust_balance(
        self,
        identifier: Any,
        amount: Any,
        reason: Optional[str],
        now: Optional[datetime] = None
    ) -> Tuple[User, Transaction]:
        """Credit a user's profit balance by hand."""
        now = now or datetime.utcnow()
        value = _parse_amount(amount)
        if value is None:
            raise ValidationError("Valid amount is required")

        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Reason is required")

        target = await self.user_service.get_user_by_identifier(identifier)
        if not target:
            raise NotFoundError("User not found")

        async with self.locked_user(target.id) as user:
            user.balance = _money(user.balance + value)
            user.updated_at = now
            transaction = self.record_transaction(
                user.id,
                TransactionType.ADMIN_ADJUSTMENT,
                value,
                f"Admin adjustment: {reason}",
                f"ADJ-{reference_timestamp(now)}",
                now
            )

        await self.db.refresh(transaction)
        logger.info(f"Admin credited {value} to user {user.id}: {reason}")
        return user, transaction

    # Read views

    async def list_user_purchases(self, user_id: int) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(UserProduct, Product.name)
            .outerjoin(Product, Product.id == UserProduct.product_id)
            .where(UserProduct.user_id == user_id)
            .order_by(UserProduct.purchase_date.desc(), UserProduct.id.desc())
        )
        purchases = []
        for purchase, product_name in result.all():
            item = purchase.to_dict()
            item["product_name"] = product_name or f"Plan {purchase.product_id}"
            purchases.append(item)
        return purchases

    async def list_user_transactions(self, user_id: int) -> List[Dict[str, Any]]:
        """Completed ledger entries merged with pending requests, newest first."""
        result = await self.db.execute(
            select(Transaction).where(Transaction.user_id == user_id)
        )
        entries = [transaction.to_dict() for transaction in result.scalars().all()]

        result = await self.db.execute(
            select(Withdrawal).where(
                Withdrawal.user_id == user_id,
                Withdrawal.status == WithdrawalStatus.PENDING.value
            )
        )
        for withdrawal in result.scalars().all():
            destination = withdrawal.bank_name if withdrawal.method == WithdrawalMethod.BANK.value else withdrawal.upi_id
            entries.append({
                "id": f"withdrawal-{withdrawal.id}",
                "user_id": user_id,
                "type": "withdrawal_pending",
                "amount": withdrawal.amount,
                "status": withdrawal.status,
                "description": f"Withdrawal request via {withdrawal.method}: {destination}",
                "reference_id": str(withdrawal.id),
                "created_at": withdrawal.created_at.isoformat() if withdrawal.created_at else None,
            })

        result = await self.db.execute(
            select(Recharge).where(
                Recharge.user_id == user_id,
                Recharge.status == RechargeStatus.PENDING.value
            )
        )
        for recharge in result.scalars().all():
            entries.append({
                "id": f"recharge-{recharge.id}",
                "user_id": user_id,
                "type": "recharge_pending",
                "amount": recharge.amount,
                "status": recharge.status,
                "description": (
                    f"Recharge request (UTR: {recharge.utr_number})"
                    if recharge.utr_number else "Recharge request (awaiting UTR)"
                ),
                "reference_id": recharge.utr_number or str(recharge.id),
                "created_at": recharge.created_at.isoformat() if recharge.created_at else None,
            })

        entries.sort(key=lambda entry: entry["created_at"] or "", reverse=True)
        return entries

    async def list_transactions(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(Transaction).order_by(Transaction.created_at.desc(), Transaction.id.desc())
        )
        return [transaction.to_dict() for transaction in result.scalars().all()]

    async def list_withdrawals(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(Withdrawal, User.phone_number, User.username)
            .outerjoin(User, User.id == Withdrawal.user_id)
            .order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
        )
        return [
            {**withdrawal.to_dict(), "user_phone": phone, "user_username": username}
            for withdrawal, phone, username in result.all()
        ]

    async def list_recharges(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(Recharge, User.phone_number, User.username)
            .outerjoin(User, User.id == Recharge.user_id)
            .order_by(Recharge.created_at.desc(), Recharge.id.desc())
        )
        return [
            {**recharge.to_dict(), "user_phone": phone, "user_username": username}
            for recharge, phone, username in result.all()
        ]

    async def dashboard_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()

        total_users = await self.user_service.count_users()

        result = await self.db.execute(
            select(func.count(UserProduct.id)).where(
                UserProduct.status == PurchaseStatus.ACTIVE.value,
                UserProduct.end_date >= now
            )
        )
        active_products = result.scalar_one()

        result = await self.db.execute(
            select(func.coalesce(func.sum(Recharge.amount), 0.0)).where(
                Recharge.status.in_([RechargeStatus.COMPLETED.value, "approved"])
            )
        )
        total_recharges = float(result.scalar_one())

        result = await self.db.execute(
            select(func.count(Withdrawal.id)).where(
                Withdrawal.status == WithdrawalStatus.PENDING.value
            )
        )
        pending_withdrawals = result.scalar_one()

        return {
            "totalUsers": total_users,
            "activeProducts": active_products,
            "totalRecharges": total_recharges,
            "pendingWithdrawals": pending_withdrawals,
        }
