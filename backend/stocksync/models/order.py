from pydantic import BaseModel
from typing import Any, List, Optional
from datetime import datetime
from decimal import Decimal


class ExternalOrderResponse(BaseModel):
    id: str
    external_order_id: str
    order_number: str
    account_id: str
    status: str
    customer_name: Optional[str] = None
    total_amount: Decimal
    items: List[Any] = []
    processed: bool
    processed_at: Optional[datetime] = None
    platform_created_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SyncResponse(BaseModel):
    success: bool
    imported: int = 0
    auto_processed: int = 0
    errors: List[str] = []
    orders: List[ExternalOrderResponse] = []
    error: Optional[str] = None


class OrderListResponse(BaseModel):
    success: bool
    orders: List[ExternalOrderResponse] = []
    error: Optional[str] = None


class ProcessOrderResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    items_deducted: int = 0
    unmatched: List[str] = []
    error: Optional[str] = None


class ImportProductsResponse(BaseModel):
    success: bool
    imported: int = 0
    updated: int = 0
    total: int = 0
    error: Optional[str] = None
