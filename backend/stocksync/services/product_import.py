"""Catalog import from the external platform.

Products are matched to the local catalog by SKU (``codigo``, else the
platform id). New products get a mapping row and an opening ENTRY for their
platform stock; known products get name/price refreshed and one adjustment
movement for the difference between platform stock and local derived stock.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from stocksync.config import settings
from stocksync.models_sqlalchemy.models import MerchantAccount, MovementType, Product, ProductMapping
from stocksync.services.errors import SyncError
from stocksync.services.inventory_ledger import current_stock, record_movement
from stocksync.services.merchant_account_service import merchant_account_service
from stocksync.services.platform_client import PlatformClient, platform_client
from stocksync.services.token_manager import TokenManager, token_manager
from stocksync.utils.logger import logger

IMPORT_REASON = "Importado do Bling"
SYNC_REASON = "Sincronizado do Bling"


@dataclass
class ImportResult:
    imported: int = 0
    updated: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"imported": self.imported, "updated": self.updated, "total": self.total}


def _stock_amount(value: Any) -> int:
    try:
        return int(round(float(value or 0)))
    except (TypeError, ValueError):
        return 0


def _price(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


class ProductImporter:

    def __init__(
        self,
        client: Optional[PlatformClient] = None,
        tokens: Optional[TokenManager] = None,
        *,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        page_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client or platform_client
        self.tokens = tokens or token_manager
        self.page_size = page_size or settings.PRODUCTS_PAGE_SIZE
        self.max_pages = max_pages or settings.PRODUCTS_MAX_PAGES
        self.page_delay = settings.PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self._sleep = sleep

    async def _collect(self, fetch_page, access_token: str) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for page in range(1, self.max_pages + 1):
            if page > 1:
                await self._sleep(self.page_delay)
            batch = await fetch_page(access_token, page, self.page_size)
            rows.extend(batch)
            if len(batch) < self.page_size:
                break
        return rows

    async def fetch_stock_map(self, access_token: str) -> Dict[str, int]:
        """Platform stock per product id. Empty when the stock endpoint fails."""
        try:
            balances = await self._collect(self.client.list_stock_balances, access_token)
        except SyncError as e:
            logger.warning(f"Could not load stock balances, importing without them: {e.message}")
            return {}

        stock: Dict[str, int] = {}
        for balance in balances:
            product = balance.get("produto") if isinstance(balance, dict) else None
            if isinstance(product, dict) and product.get("id") is not None:
                stock[str(product["id"])] = _stock_amount(
                    balance.get("saldoFisicoTotal") or balance.get("saldoVirtualTotal")
                )
        return stock

    async def import_products(self, db: Session, account: MerchantAccount) -> ImportResult:
        access_token = await self.tokens.ensure_valid_token(db, account)
        account_id = account.id
        user_id = account.user_id

        products = await self._collect(self.client.list_products, access_token)
        logger.info(f"Loaded {len(products)} products from platform for account {account_id}")
        stock_map = await self.fetch_stock_map(access_token)

        result = ImportResult(total=len(products))
        for raw in products:
            if not isinstance(raw, dict) or raw.get("id") is None:
                logger.warning(f"Skipping product without id: {raw!r}"[:200])
                continue
            try:
                with db.begin_nested():
                    created = self._upsert_product(db, account_id, user_id, raw, stock_map)
            except Exception:
                logger.exception(f"Failed to import product {raw.get('codigo') or raw.get('id')}")
                continue
            if created:
                result.imported += 1
            else:
                result.updated += 1

        db.commit()
        merchant_account_service.touch_last_sync(db, account)
        logger.info(
            f"Product import for account {account_id}: {result.imported} new, {result.updated} updated"
        )
        return result

    def _upsert_product(
        self,
        db: Session,
        account_id: str,
        user_id: str,
        raw: Dict[str, Any],
        stock_map: Dict[str, int],
    ) -> bool:
        external_id = str(raw["id"])
        sku = str(raw.get("codigo") or external_id).strip()
        name = raw.get("nome") or sku
        nested_stock = raw.get("estoque") if isinstance(raw.get("estoque"), dict) else {}
        stock = stock_map.get(external_id) or _stock_amount(nested_stock.get("saldoVirtualTotal"))

        product = db.query(Product).filter(Product.sku == sku).first()
        if product is None:
            product = Product(sku=sku, name=name, sale_price=_price(raw.get("preco")), is_active=True)
            db.add(product)
            db.flush()
            self._ensure_mapping(db, product, account_id, external_id, sku)
            if stock > 0:
                record_movement(
                    db,
                    product_id=product.id,
                    movement_type=MovementType.ENTRY,
                    quantity=stock,
                    reason=IMPORT_REASON,
                    user_id=user_id,
                )
            return True

        product.name = name
        product.sale_price = _price(raw.get("preco"))
        self._ensure_mapping(db, product, account_id, external_id, sku)
        db.flush()

        diff = stock - current_stock(db, product.id)
        if diff:
            record_movement(
                db,
                product_id=product.id,
                movement_type=MovementType.ENTRY if diff > 0 else MovementType.EXIT,
                quantity=abs(diff),
                reason=SYNC_REASON,
                user_id=user_id,
            )
        return False

    @staticmethod
    def _ensure_mapping(db: Session, product: Product, account_id: str, external_id: str, sku: str) -> None:
        mapping = (
            db.query(ProductMapping)
            .filter(ProductMapping.account_id == account_id, ProductMapping.external_product_id == external_id)
            .first()
        )
        if mapping is None:
            db.add(ProductMapping(
                product_id=product.id,
                account_id=account_id,
                external_product_id=external_id,
                external_sku=sku,
            ))
        elif mapping.product_id != product.id:
            mapping.product_id = product.id
            mapping.external_sku = sku


product_importer = ProductImporter()
