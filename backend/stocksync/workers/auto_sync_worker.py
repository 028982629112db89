"""
Auto Sync Worker
Runs every 30 minutes (AUTO_SYNC_INTERVAL_SECONDS) and syncs orders for all
connected merchant accounts. The first cycle starts shortly after startup.
Each cycle only lists orders placed since yesterday (AUTO_SYNC_LOOKBACK_DAYS)
and walks at most AUTO_SYNC_MAX_PAGES pages per account.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from stocksync.config import settings
from stocksync.models_sqlalchemy import SessionLocal
from stocksync.services.order_sync import OrderSyncOrchestrator, order_sync_orchestrator
from stocksync.utils.logger import logger


def recent_orders_filter(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    since = now.date() - timedelta(days=settings.AUTO_SYNC_LOOKBACK_DAYS)
    return {"dataInicial": since.isoformat()}


async def run_auto_sync_once(
    orchestrator: Optional[OrderSyncOrchestrator] = None,
    now: Optional[datetime] = None,
):
    """Sync every connected account once with a dedicated session."""
    orchestrator = orchestrator or order_sync_orchestrator
    filters = recent_orders_filter(now)
    logger.info(f"[auto-sync] Starting sync cycle (orders since {filters['dataInicial']})")

    db = SessionLocal()
    try:
        results = await orchestrator.sync_all_accounts(
            db, filters=filters, max_pages=settings.AUTO_SYNC_MAX_PAGES
        )
    finally:
        db.close()

    failed = [account_id for account_id, result in results.items() if not result.success]
    summary = {
        "status": "completed",
        "accounts": len(results),
        "failed": failed,
        "imported": sum(r.imported for r in results.values()),
        "auto_processed": sum(r.auto_processed for r in results.values()),
        "results": {account_id: result.summary() for account_id, result in results.items()},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if failed:
        logger.warning(f"[auto-sync] {len(failed)} accounts failed to sync: {failed}")
    return summary


async def run_auto_sync_loop(
    interval_seconds: Optional[int] = None,
    startup_delay_seconds: Optional[int] = None,
):
    """
    Run the auto sync worker forever.
    This is the entry point started from the application startup hook.
    """
    interval = interval_seconds or settings.AUTO_SYNC_INTERVAL_SECONDS
    startup_delay = settings.AUTO_SYNC_STARTUP_DELAY_SECONDS if startup_delay_seconds is None else startup_delay_seconds
    logger.info(f"Auto sync worker loop started (interval={interval}s)")

    await asyncio.sleep(startup_delay)
    while True:
        try:
            result = await run_auto_sync_once()
            logger.info(f"Auto sync cycle completed: {result}")
        except Exception as e:
            logger.error(f"Auto sync worker loop error: {str(e)}")

        await asyncio.sleep(interval)
