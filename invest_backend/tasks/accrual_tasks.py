import asyncio
import logging
from typing import Dict, Any

from invest_backend.core.database import AsyncSessionLocal, engine
from invest_backend.services.accrual_service import AccrualService
from invest_backend.utils.lock_manager import get_lock_manager, LockPatterns
from invest_backend.tasks import celery_app


logger = logging.getLogger(__name__)


@celery_app.task(name="invest_backend.tasks.accrual_tasks.run_daily_accrual")
def run_daily_accrual() -> Dict[str, Any]:
    """Credit today's income to every running purchase.

    Safe to re-run: purchases already credited today are skipped.

    Returns:
        Dict[str, Any]: Summary of the accrual run
    """
    logger.info("Starting scheduled daily accrual")

    # Use sync-to-async pattern for Celery compatibility
    return asyncio.run(_run_daily_accrual_async())


async def _run_daily_accrual_async() -> Dict[str, Any]:
    try:
        async with get_lock_manager().lock(LockPatterns.daily_accrual(), timeout=3600):
            async with AsyncSessionLocal() as session:
                return await AccrualService(session).run_daily_accrual()
    finally:
        # Pooled connections belong to this event loop only
        await get_lock_manager().close()
        await engine.dispose()


@celery_app.task(name="invest_backend.tasks.accrual_tasks.complete_matured_purchases")
def complete_matured_purchases() -> Dict[str, Any]:
    """Close out purchases whose end date has passed.

    Returns:
        Dict[str, Any]: Number of purchases marked completed
    """
    logger.info("Starting matured purchase close-out")
    return asyncio.run(_complete_matured_purchases_async())


async def _complete_matured_purchases_async() -> Dict[str, Any]:
    try:
        async with AsyncSessionLocal() as session:
            return await AccrualService(session).complete_matured_purchases()
    finally:
        await engine.dispose()
