import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, exists

from ..database_model.purchase import UserProduct, PurchaseStatus
from ..database_model.transaction import Transaction, TransactionType
from ..core.errors import NotFoundError
from ..core.config import settings
from ..utils.periods import day_bounds
from .ledger_service import LedgerService, _money


logger = logging.getLogger(__name__)


class AccrualService:
    """Scheduled crediting of purchase income to profit balances."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    async def _active_purchase_batches(self, *criteria):
        """Yield active purchases matching ``criteria`` in id-ordered batches."""
        last_id = 0
        while True:
            result = await self.db.execute(
                select(UserProduct)
                .where(
                    UserProduct.status == PurchaseStatus.ACTIVE.value,
                    UserProduct.id > last_id,
                    *criteria
                )
                .order_by(UserProduct.id)
                .limit(settings.accrual_batch_size)
            )
            batch = list(result.scalars().all())
            if not batch:
                return
            last_id = batch[-1].id
            yield batch

    async def run_daily_accrual(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Credit one day of income to every purchase inside its window.

        A purchase already credited on today's calendar date is skipped, so
        running this more than once a day credits nothing extra.

        Args:
            now: Moment of the run, defaults to the current UTC time

        Returns:
            Dict[str, Any]: Counts of credited and skipped purchases
        """
        now = now or datetime.utcnow()
        day_start, day_end = day_bounds(now)

        results = {
            "processed": 0,
            "skipped": 0,
            "failed": 0,
            "total_amount": 0.0,
            "date": day_start.date().isoformat(),
        }

        logger.info(f"Starting daily accrual for {results['date']}")

        async for batch in self._active_purchase_batches(
            UserProduct.purchase_date <= now,
            UserProduct.end_date >= now
        ):
            # A failed purchase rolls the session back and expires the batch
            purchase_ids = [purchase.id for purchase in batch]
            for purchase_id in purchase_ids:
                try:
                    credited = await self._accrue_purchase(purchase_id, now, day_start, day_end)
                except Exception as e:
                    logger.error(f"Error accruing purchase {purchase_id}: {str(e)}", exc_info=True)
                    results["failed"] += 1
                    continue

                if credited is None:
                    results["skipped"] += 1
                else:
                    results["processed"] += 1
                    results["total_amount"] = _money(results["total_amount"] + credited)

        logger.info(
            f"Daily accrual finished: {results['processed']} credited, "
            f"{results['skipped']} skipped, {results['failed']} failed, "
            f"total {results['total_amount']}"
        )
        return results

    async def _accrue_purchase(
        self,
        purchase_id: int,
        now: datetime,
        day_start: datetime,
        day_end: datetime
    ) -> Optional[float]:
        """Credit one purchase for today unless already credited."""
        result = await self.db.execute(select(UserProduct).where(UserProduct.id == purchase_id))
        purchase = result.scalar_one()

        async with self.ledger.locked_user(purchase.user_id) as user:
            already_credited = await self.db.execute(
                select(
                    exists().where(
                        Transaction.type == TransactionType.DAILY_INCOME.value,
                        Transaction.reference_id == str(purchase_id),
                        Transaction.created_at >= day_start,
                        Transaction.created_at < day_end
                    )
                )
            )
            if already_credited.scalar():
                return None

            user.balance = _money(user.balance + purchase.daily_income)
            user.updated_at = now
            self.ledger.record_transaction(
                user.id,
                TransactionType.DAILY_INCOME,
                purchase.daily_income,
                f"Daily income from investment #{purchase_id}",
                str(purchase_id),
                now
            )

        return purchase.daily_income

    async def complete_matured_purchases(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Mark active purchases whose end date has passed as completed.

        Credits nothing.
        """
        now = now or datetime.utcnow()
        completed = 0

        async for batch in self._active_purchase_batches(UserProduct.end_date <= now):
            for purchase in batch:
                purchase.status = PurchaseStatus.COMPLETED.value
                completed += 1
            await self.db.commit()

        logger.info(f"Marked {completed} matured purchases as completed")
        return {"completed": completed}

    async def process_investment_rebate(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Pay one day of income early on every running purchase.

        Each call credits ``daily_income`` and pulls ``end_date`` one day
        closer, completing the purchase once the end date is reached. There
        is no per-day guard: two calls pay twice.

        Each purchase commits on its own. Purchases whose owner no longer
        exists are skipped; a failing purchase is counted as failed and the
        run continues.
        """
        now = now or datetime.utcnow()
        users_affected = set()
        investments_processed = 0
        total_amount = 0.0
        skipped = 0
        failed = 0

        purchase_ids: List[int] = []
        async for batch in self._active_purchase_batches(UserProduct.end_date > now):
            purchase_ids.extend(purchase.id for purchase in batch)

        logger.info(f"Processing investment rebate for {len(purchase_ids)} purchases")

        for purchase_id in purchase_ids:
            try:
                credited = await self._rebate_purchase(purchase_id, now)
            except NotFoundError as e:
                logger.warning(f"Skipping rebate for purchase {purchase_id}: {e.detail}")
                skipped += 1
                continue
            except Exception as e:
                logger.error(f"Error applying rebate to purchase {purchase_id}: {str(e)}", exc_info=True)
                failed += 1
                continue

            if credited is None:
                skipped += 1
                continue

            user_id, amount = credited
            users_affected.add(user_id)
            investments_processed += 1
            total_amount = _money(total_amount + amount)

        logger.info(
            f"Investment rebate credited {total_amount} across "
            f"{investments_processed} purchases for {len(users_affected)} users "
            f"({skipped} skipped, {failed} failed)"
        )
        return {
            "usersAffected": len(users_affected),
            "investmentsProcessed": investments_processed,
            "totalAmountAdded": total_amount,
            "skipped": skipped,
            "failed": failed,
        }

    async def _rebate_purchase(self, purchase_id: int, now: datetime) -> Optional[Tuple[int, float]]:
        """Credit one purchase's rebate; returns (user id, amount) or None when no longer running."""
        result = await self.db.execute(select(UserProduct).where(UserProduct.id == purchase_id))
        purchase = result.scalar_one()

        async with self.ledger.locked_user(purchase.user_id) as user:
            result = await self.db.execute(
                select(UserProduct)
                .where(UserProduct.id == purchase_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            purchase = result.scalar_one()
            if purchase.status != PurchaseStatus.ACTIVE.value or purchase.end_date <= now:
                return None

            amount = purchase.daily_income
            user.balance = _money(user.balance + amount)
            user.updated_at = now
            self.ledger.record_transaction(
                user.id,
                TransactionType.INVESTMENT_REBATE,
                amount,
                f"Investment rebate from investment #{purchase_id}",
                str(purchase_id),
                now
            )

            purchase.end_date = purchase.end_date - timedelta(days=1)
            if purchase.end_date <= now:
                purchase.status = PurchaseStatus.COMPLETED.value

        return user.id, amount
