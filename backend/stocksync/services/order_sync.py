"""Order synchronization for merchant accounts.

Flow per account:
    ensure token -> fetch pages (partial results allowed) -> optional detail
    enrichment -> per order: resolve status, upsert, reconcile stock
    -> re-read the most recent orders.

Orders are persisted in batches of ``SYNC_BATCH_SIZE``. Each batch is one
transaction with a time limit of ``SYNC_BATCH_TIMEOUT_SECONDS``; each order
inside it runs in its own SAVEPOINT so one bad order does not take the batch
down. A batch that runs over its time limit or fails to commit is rolled back
as a whole and reported; earlier batches stay committed.

Accounts are synced one at a time. A per-account asyncio.Lock serializes
overlapping triggers (scheduler plus a manual "sync" click) so that the
processed check and the stock deduction never interleave for one account.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stocksync.config import settings
from stocksync.models_sqlalchemy.models import ExternalOrder, MerchantAccount
from stocksync.services.errors import AuthError, PersistenceError, ValidationError
from stocksync.services.merchant_account_service import merchant_account_service
from stocksync.services.order_fetcher import OrderFetcher
from stocksync.services.status_resolver import StatusResolver, status_resolver
from stocksync.services.stock_reconciler import StockReconciler, stock_reconciler
from stocksync.services.token_manager import RECONNECT_MESSAGE, TokenManager, token_manager
from stocksync.utils.logger import logger


@dataclass
class SyncResult:
    success: bool = True
    imported: int = 0
    auto_processed: int = 0
    errors: List[str] = field(default_factory=list)
    orders: List[ExternalOrder] = field(default_factory=list)
    error: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "imported": self.imported,
            "auto_processed": self.auto_processed,
            "errors": list(self.errors),
            "error": self.error,
        }


def parse_platform_date(value: Any) -> Optional[datetime]:
    """Parse the platform's order date.

    Bare dates (``YYYY-MM-DD``) are pinned to 12:00 UTC so they land on the
    same calendar day in every Brazilian timezone.
    """
    if not value or not isinstance(value, str):
        return None
    raw = value.strip()
    try:
        if len(raw) == 10:
            return datetime.strptime(raw, "%Y-%m-%d").replace(hour=12, tzinfo=timezone.utc)
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def upsert_external_order(
    db: Session,
    *,
    account_id: str,
    user_id: str,
    raw: Dict[str, Any],
    status: str,
) -> Tuple[ExternalOrder, Optional[str]]:
    """Insert or update the local mirror of ``raw``.

    Returns the row and the status it had before this sync (None when new).
    Status, line items, customer and total always take the latest values.
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"Order payload is not an object: {raw!r}"[:200])
    external_id = raw.get("id")
    if external_id is None or str(external_id).strip() == "":
        raise ValidationError("Order payload has no id")
    external_id = str(external_id)

    contact = raw.get("contato") if isinstance(raw.get("contato"), dict) else {}
    items = raw.get("itens") if isinstance(raw.get("itens"), list) else []
    now = datetime.now(timezone.utc)

    order = (
        db.query(ExternalOrder)
        .filter(ExternalOrder.external_order_id == external_id, ExternalOrder.account_id == account_id)
        .first()
    )

    if order is not None:
        status_before = order.status
        order.status = status
        order.customer_name = contact.get("nome") or None
        order.total_amount = _to_decimal(raw.get("total"))
        order.items = items
        order.updated_at = now
    else:
        status_before = None
        order = ExternalOrder(
            external_order_id=external_id,
            order_number=str(raw.get("numero") or external_id),
            account_id=account_id,
            user_id=user_id,
            status=status,
            customer_name=contact.get("nome") or None,
            total_amount=_to_decimal(raw.get("total")),
            items=items,
            processed=False,
            platform_created_at=parse_platform_date(raw.get("data")),
        )
        db.add(order)

    db.flush()
    return order, status_before


class OrderSyncOrchestrator:

    def __init__(
        self,
        *,
        tokens: Optional[TokenManager] = None,
        fetcher: Optional[OrderFetcher] = None,
        resolver: Optional[StatusResolver] = None,
        reconciler: Optional[StockReconciler] = None,
        batch_size: Optional[int] = None,
        batch_timeout: Optional[float] = None,
        result_limit: Optional[int] = None,
        enrich_details: Optional[bool] = None,
        account_delay: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.tokens = tokens or token_manager
        self.fetcher = fetcher or OrderFetcher()
        self.resolver = resolver or status_resolver
        self.reconciler = reconciler or stock_reconciler
        self.batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self.batch_timeout = settings.SYNC_BATCH_TIMEOUT_SECONDS if batch_timeout is None else batch_timeout
        self.result_limit = result_limit or settings.SYNC_RESULT_LIMIT
        self.enrich_details = settings.ENRICH_ORDER_DETAILS if enrich_details is None else enrich_details
        self.account_delay = settings.AUTO_SYNC_ACCOUNT_DELAY_SECONDS if account_delay is None else account_delay
        self._clock = clock
        self._sleep = sleep
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    async def sync_account(
        self,
        db: Session,
        account: MerchantAccount,
        *,
        filters: Optional[Dict[str, Any]] = None,
        max_pages: Optional[int] = None,
    ) -> SyncResult:
        lock = self._lock_for(account.id)
        if lock.locked():
            logger.info(f"Sync already running for account {account.id}, waiting for it to finish")
        async with lock:
            return await self._sync_account(db, account, filters, max_pages)

    async def _sync_account(
        self,
        db: Session,
        account: MerchantAccount,
        filters: Optional[Dict[str, Any]],
        max_pages: Optional[int],
    ) -> SyncResult:
        account_id = account.id
        user_id = account.user_id
        result = SyncResult()
        logger.info(f"Starting order sync for account {account_id} ({account.name})")

        try:
            access_token = await self.tokens.ensure_valid_token(db, account)

            async def refresh() -> str:
                return await self.tokens.force_refresh(db, account)

            fetched = await self.fetcher.fetch_all_orders(
                access_token, refresh_token=refresh, filters=filters, max_pages=max_pages
            )
        except AuthError as e:
            logger.warning(f"Order sync aborted for account {account_id}: {e.message}")
            result.success = False
            result.error = RECONNECT_MESSAGE
            result.errors.append(e.message)
            return result

        if fetched.error:
            result.errors.append(f"Order listing incomplete: {fetched.error}")
            if not fetched.orders:
                result.success = False
                result.error = fetched.error
                return result

        if self.enrich_details and fetched.orders:
            enriched = await self.fetcher.enrich_orders(fetched.orders, fetched.access_token)
            if enriched:
                logger.info(f"Loaded line items for {enriched} orders from detail endpoint")

        self._persist(db, account_id, user_id, fetched.orders, result)

        merchant_account_service.touch_last_sync(db, account)
        result.orders = self.recent_orders(db, account_id)

        logger.info(
            f"Order sync for account {account_id} done: fetched={len(fetched.orders)} "
            f"imported={result.imported} auto_processed={result.auto_processed} errors={len(result.errors)}"
        )
        return result

    def _persist(
        self,
        db: Session,
        account_id: str,
        user_id: str,
        orders: List[Dict[str, Any]],
        result: SyncResult,
    ) -> None:
        for batch_no, start in enumerate(range(0, len(orders), self.batch_size), 1):
            batch = orders[start:start + self.batch_size]
            try:
                imported, auto_processed, order_errors = self._persist_batch(db, account_id, user_id, batch)
            except (PersistenceError, SQLAlchemyError) as e:
                db.rollback()
                message = f"Batch {batch_no} ({len(batch)} orders) rolled back: {e}"
                logger.error(message)
                result.errors.append(message)
                continue

            result.imported += imported
            result.auto_processed += auto_processed
            result.errors.extend(order_errors)

    def _persist_batch(
        self,
        db: Session,
        account_id: str,
        user_id: str,
        batch: List[Dict[str, Any]],
    ) -> Tuple[int, int, List[str]]:
        deadline = self._clock() + self.batch_timeout
        self._apply_statement_timeout(db)

        imported = 0
        auto_processed = 0
        errors: List[str] = []

        for raw in batch:
            self._check_deadline(deadline)
            label = (raw.get("numero") or raw.get("id")) if isinstance(raw, dict) else "?"
            try:
                with db.begin_nested():
                    status = self.resolver.resolve(raw) if isinstance(raw, dict) else ""
                    order, status_before = upsert_external_order(
                        db, account_id=account_id, user_id=user_id, raw=raw, status=status
                    )
                    outcome = self.reconciler.reconcile(db, order, status_before, status, user_id=user_id)
            except ValidationError as e:
                logger.warning(f"Skipping order {label}: {e.message}")
                errors.append(f"Order {label}: {e.message}")
                continue
            except Exception as e:
                logger.exception(f"Failed to save order {label}")
                errors.append(f"Order {label}: {e}")
                continue

            imported += 1
            if outcome.processed:
                auto_processed += 1
                logger.info(
                    f"Order #{order.order_number} ({status}) deducted {outcome.items_deducted} items"
                )

        self._check_deadline(deadline)
        db.commit()
        return imported, auto_processed, errors

    def _check_deadline(self, deadline: float) -> None:
        if self._clock() > deadline:
            raise PersistenceError(f"transaction exceeded {self.batch_timeout}s")

    def _apply_statement_timeout(self, db: Session) -> None:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL statement_timeout = {int(self.batch_timeout * 1000)}"))

    def recent_orders(self, db: Session, account_id: str) -> List[ExternalOrder]:
        return (
            db.query(ExternalOrder)
            .filter(ExternalOrder.account_id == account_id)
            .order_by(ExternalOrder.created_at.desc())
            .limit(self.result_limit)
            .all()
        )

    async def sync_all_accounts(
        self,
        db: Session,
        *,
        filters: Optional[Dict[str, Any]] = None,
        max_pages: Optional[int] = None,
    ) -> Dict[str, SyncResult]:
        """Sync every active, connected account in turn.

        ``filters`` and ``max_pages`` apply to every account's order listing.
        """
        accounts = merchant_account_service.get_syncable_accounts(db)
        if not accounts:
            logger.info("No connected accounts to sync")
            return {}

        logger.info(f"Syncing orders for {len(accounts)} accounts")
        results: Dict[str, SyncResult] = {}
        for index, account in enumerate(accounts):
            if index:
                await self._sleep(self.account_delay)
            account_id = account.id
            try:
                results[account_id] = await self.sync_account(db, account, filters=filters, max_pages=max_pages)
            except Exception as e:
                db.rollback()
                logger.exception(f"Order sync crashed for account {account_id}")
                results[account_id] = SyncResult(success=False, error=str(e), errors=[str(e)])

        processed = sum(r.auto_processed for r in results.values())
        logger.info(f"Sync finished: {len(results)} accounts, {processed} orders deducted automatically")
        return results


order_sync_orchestrator = OrderSyncOrchestrator()
