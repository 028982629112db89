from datetime import datetime, timedelta, timezone
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stocksync.models.order import (
    ExternalOrderResponse,
    OrderListResponse,
    ProcessOrderResponse,
    SyncResponse,
)
from stocksync.models_sqlalchemy import get_db
from stocksync.models_sqlalchemy.models import ExternalOrder, User
from stocksync.services.auth import get_current_user
from stocksync.services.errors import ValidationError
from stocksync.services.merchant_account_service import merchant_account_service
from stocksync.services.order_sync import order_sync_orchestrator
from stocksync.services.stock_reconciler import is_eligible, stock_reconciler
from stocksync.utils.logger import logger

router = APIRouter(tags=["orders"])

RECENT_ORDERS_WINDOW = timedelta(days=90)


def _serialize(orders: List[ExternalOrder]) -> List[ExternalOrderResponse]:
    return [ExternalOrderResponse.model_validate(order) for order in orders]


def _get_user_order(db: Session, order_id: str, user_id: str):
    return (
        db.query(ExternalOrder)
        .filter(ExternalOrder.id == order_id, ExternalOrder.user_id == user_id)
        .first()
    )


@router.post("/sync/{account_id}", response_model=SyncResponse)
async def sync_orders(
    account_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Pull orders for one account, persist them and deduct stock for eligible ones."""
    account = merchant_account_service.get_account_for_user(db, account_id, current_user.id)
    if account is None:
        return SyncResponse(success=False, error="Account not found")

    logger.info(f"Manual order sync requested by {current_user.email} for account {account_id}")
    try:
        result = await order_sync_orchestrator.sync_account(db, account)
    except Exception as e:
        db.rollback()
        logger.exception(f"Order sync failed for account {account_id}")
        return SyncResponse(success=False, error=f"Failed to sync orders: {e}")

    return SyncResponse(
        success=result.success,
        imported=result.imported,
        auto_processed=result.auto_processed,
        errors=result.errors,
        orders=_serialize(result.orders),
        error=result.error,
    )


@router.post("/orders/{order_id}/process", response_model=ProcessOrderResponse)
async def process_order(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = _get_user_order(db, order_id, current_user.id)
    if order is None:
        return ProcessOrderResponse(success=False, error="Order not found")

    try:
        outcome = stock_reconciler.process_order(db, order, current_user.id)
        db.commit()
    except ValidationError as e:
        db.rollback()
        return ProcessOrderResponse(success=False, error=e.message)
    except Exception as e:
        db.rollback()
        logger.exception(f"Failed to process order {order_id}")
        return ProcessOrderResponse(success=False, error=f"Failed to process order: {e}")

    return ProcessOrderResponse(
        success=True,
        message="Stock deducted",
        items_deducted=outcome.items_deducted,
        unmatched=outcome.unmatched,
    )


@router.post("/orders/{order_id}/reopen", response_model=ProcessOrderResponse)
async def reopen_order(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Clear the processed flag. Stock already deducted is not restored."""
    order = _get_user_order(db, order_id, current_user.id)
    if order is None:
        return ProcessOrderResponse(success=False, error="Order not found")

    try:
        stock_reconciler.reopen(db, order)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception(f"Failed to reopen order {order_id}")
        return ProcessOrderResponse(success=False, error=f"Failed to reopen order: {e}")

    logger.info(f"Order {order_id} reopened by {current_user.email}")
    return ProcessOrderResponse(success=True, message="Order reopened")


@router.get("/orders/verified/{account_id}", response_model=OrderListResponse)
async def get_verified_orders(
    account_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Eligible orders still waiting for a stock deduction."""
    try:
        pending = (
            db.query(ExternalOrder)
            .filter(
                ExternalOrder.account_id == account_id,
                ExternalOrder.user_id == current_user.id,
                ExternalOrder.processed == False,  # noqa: E712
            )
            .order_by(ExternalOrder.created_at.desc())
            .all()
        )
    except Exception as e:
        logger.exception(f"Failed to load verified orders for account {account_id}")
        return OrderListResponse(success=False, error=f"Failed to load verified orders: {e}")

    # Eligibility uses the reconciler's status normalization.
    orders = [order for order in pending if is_eligible(order.status)]
    return OrderListResponse(success=True, orders=_serialize(orders))


@router.get("/orders/all/{account_id}", response_model=OrderListResponse)
async def get_all_orders(
    account_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Orders synced during the last three months, newest first."""
    since = datetime.now(timezone.utc) - RECENT_ORDERS_WINDOW
    try:
        orders = (
            db.query(ExternalOrder)
            .filter(
                ExternalOrder.account_id == account_id,
                ExternalOrder.user_id == current_user.id,
                ExternalOrder.created_at >= since,
            )
            .order_by(ExternalOrder.created_at.desc())
            .all()
        )
    except Exception as e:
        logger.exception(f"Failed to load orders for account {account_id}")
        return OrderListResponse(success=False, error=f"Failed to load orders: {e}")

    return OrderListResponse(success=True, orders=_serialize(orders))
