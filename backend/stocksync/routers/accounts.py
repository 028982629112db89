from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stocksync.models.order import ImportProductsResponse
from stocksync.models_sqlalchemy import get_db
from stocksync.models_sqlalchemy.models import User
from stocksync.services.auth import get_current_user
from stocksync.services.errors import SyncError
from stocksync.services.merchant_account_service import merchant_account_service
from stocksync.services.product_import import product_importer
from stocksync.utils.logger import logger

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.post("/{account_id}/import-products", response_model=ImportProductsResponse)
async def import_products(
    account_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Import the account's product catalog and stock balances from the platform."""
    account = merchant_account_service.get_account_for_user(db, account_id, current_user.id)
    if account is None:
        return ImportProductsResponse(success=False, error="Account not found")
    if not account.access_token:
        return ImportProductsResponse(success=False, error="Account is not connected. Connect it to the platform first.")

    try:
        result = await product_importer.import_products(db, account)
    except SyncError as e:
        db.rollback()
        logger.error(f"Product import failed for account {account_id}: {e.message}")
        return ImportProductsResponse(success=False, error=e.message)
    except Exception as e:
        db.rollback()
        logger.exception(f"Product import failed for account {account_id}")
        return ImportProductsResponse(success=False, error=f"Failed to import products: {e}")

    return ImportProductsResponse(success=True, **result.to_dict())
