"""Inventory deduction for synchronized orders.

An order's stock is deducted at most once: ``reconcile`` only acts when the
order is not yet processed and its canonical status is deduction-eligible,
and it flips ``processed`` in the same transaction as the EXIT movements.
Eligible orders without line items are left unprocessed.
``processed`` is never reset automatically; ``reopen`` is the explicit
override.

Line items are matched to local products by a chain of matchers, first hit
wins: SKU (or internal code), EAN, exact name, then substring name. The
substring tier can produce false positives for short or generic names and can
be dropped by passing a shorter chain to ``StockReconciler``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional, Protocol, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from stocksync.config import settings
from stocksync.models_sqlalchemy.models import ExternalOrder, MovementType, Product
from stocksync.services.errors import ValidationError
from stocksync.services.inventory_ledger import record_movement
from stocksync.utils.logger import logger


ELIGIBLE_STATUSES = frozenset({
    "verificado",
    "checado",
    "aprovado",
    "pronto para envio",
    "verified",
    "checked",
    "approved",
    "ready to ship",
})


def normalize_status(status: Optional[str]) -> str:
    if not status:
        return ""
    return " ".join(str(status).split()).lower()


def is_eligible(status: Optional[str]) -> bool:
    """True when ``status`` triggers automatic stock deduction."""
    return normalize_status(status) in ELIGIBLE_STATUSES


def _first_text(*values: Any) -> Optional[str]:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


@dataclass(frozen=True)
class LineItem:
    sku: Optional[str]
    ean: Optional[str]
    name: Optional[str]
    quantity: int

    @property
    def label(self) -> str:
        return self.sku or self.ean or self.name or "?"

    @classmethod
    def from_payload(cls, raw: Any) -> "LineItem":
        if not isinstance(raw, dict):
            raise ValidationError(f"Line item is not an object: {raw!r}")

        product = raw.get("produto") if isinstance(raw.get("produto"), dict) else {}
        sku = _first_text(raw.get("codigo"), product.get("codigo"), raw.get("sku"))
        ean = _first_text(raw.get("gtin"), raw.get("ean"), product.get("gtin"), product.get("ean"))
        name = _first_text(raw.get("descricao"), raw.get("nome"), product.get("nome"), product.get("descricao"))

        if not (sku or ean or name):
            raise ValidationError("Line item has no SKU, EAN or name")

        raw_quantity = raw.get("quantidade")
        if raw_quantity is None or raw_quantity == "":
            quantity = 1
        else:
            try:
                quantity = int(round(float(raw_quantity)))
            except (TypeError, ValueError):
                raise ValidationError(f"Line item {sku or name} has invalid quantity {raw_quantity!r}")
        if quantity <= 0:
            raise ValidationError(f"Line item {sku or name} has non-positive quantity {raw_quantity!r}")

        return cls(sku=sku, ean=ean, name=name, quantity=quantity)


class ProductMatcher(Protocol):
    name: str

    def match(self, db: Session, item: LineItem) -> Optional[Product]:
        ...


class SkuMatcher:
    name = "sku"

    def match(self, db: Session, item: LineItem) -> Optional[Product]:
        if not item.sku:
            return None
        product = db.query(Product).filter(Product.sku == item.sku).first()
        if product is None:
            product = db.query(Product).filter(Product.internal_code == item.sku).first()
        return product


class EanMatcher:
    name = "ean"

    def match(self, db: Session, item: LineItem) -> Optional[Product]:
        if not item.ean:
            return None
        return db.query(Product).filter(Product.ean == item.ean).first()


class ExactNameMatcher:
    name = "name"

    def match(self, db: Session, item: LineItem) -> Optional[Product]:
        if not item.name:
            return None
        return (
            db.query(Product)
            .filter(func.lower(Product.name) == item.name.lower(), Product.is_active == True)  # noqa: E712
            .order_by(Product.created_at.asc(), Product.id.asc())
            .first()
        )


class FuzzyNameMatcher:
    """Substring containment in either direction, case-insensitive."""

    name = "fuzzy_name"

    def __init__(self, min_length: Optional[int] = None):
        self.min_length = settings.FUZZY_MATCH_MIN_LENGTH if min_length is None else min_length

    def match(self, db: Session, item: LineItem) -> Optional[Product]:
        if not item.name or len(item.name) < self.min_length:
            return None

        wanted = item.name.lower()
        candidates = (
            db.query(Product)
            .filter(Product.is_active == True)  # noqa: E712
            .order_by(Product.created_at.asc(), Product.id.asc())
            .all()
        )
        for product in candidates:
            have = (product.name or "").lower()
            if len(have) < self.min_length:
                continue
            if wanted in have or have in wanted:
                return product
        return None


DEFAULT_MATCHERS: Sequence[ProductMatcher] = (
    SkuMatcher(),
    EanMatcher(),
    ExactNameMatcher(),
    FuzzyNameMatcher(),
)


@dataclass
class ReconcileResult:
    processed: bool = False
    items_deducted: int = 0
    unmatched: List[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None


class StockReconciler:

    def __init__(self, matchers: Optional[Sequence[ProductMatcher]] = None):
        self.matchers = tuple(DEFAULT_MATCHERS if matchers is None else matchers)

    def match_product(self, db: Session, item: LineItem) -> Optional[Product]:
        for matcher in self.matchers:
            product = matcher.match(db, item)
            if product is not None:
                logger.debug(f"Line item {item.label} matched product {product.sku} via {matcher.name}")
                return product
        return None

    def reconcile(
        self,
        db: Session,
        order: ExternalOrder,
        status_before: Optional[str],
        status_after: str,
        user_id: Optional[str] = None,
    ) -> ReconcileResult:
        """Deduct stock for ``order`` if it just became (or still is) eligible.

        Runs inside the caller's transaction; the caller commits.
        """
        if not is_eligible(status_after):
            return ReconcileResult(skipped_reason="not_eligible")

        locked = self._lock_order(db, order)
        if locked.processed:
            return ReconcileResult(skipped_reason="already_processed")

        if status_before and status_before != status_after:
            logger.info(f"Order #{locked.order_number} moved from '{status_before}' to '{status_after}'")

        # Listing entries carry no line items; an order whose detail could not
        # be loaded stays open so a later sync can deduct it.
        if not locked.items:
            logger.warning(
                f"Order #{locked.order_number} is {status_after} but has no line items yet, leaving it unprocessed"
            )
            return ReconcileResult(skipped_reason="no_items")

        return self._deduct(
            db,
            locked,
            reason=f"Automatic deduction - order #{locked.order_number} ({status_after})",
            user_id=user_id or locked.user_id,
        )

    def process_order(self, db: Session, order: ExternalOrder, user_id: str) -> ReconcileResult:
        """Manual deduction, regardless of status. Refuses processed orders."""
        locked = self._lock_order(db, order)
        if locked.processed:
            raise ValidationError("Order has already been processed")

        return self._deduct(
            db,
            locked,
            reason=f"Manual deduction - order #{locked.order_number} ({locked.status})",
            user_id=user_id,
        )

    def reopen(self, db: Session, order: ExternalOrder) -> ExternalOrder:
        """Clear the processed flag so the order can be deducted again.

        Existing movements are kept; a later deduction appends new ones.
        """
        locked = self._lock_order(db, order)
        if locked.processed:
            logger.warning(f"Re-opening processed order #{locked.order_number} ({locked.id})")
        locked.processed = False
        locked.processed_at = None
        locked.updated_at = datetime.now(timezone.utc)
        db.flush()
        return locked

    def _lock_order(self, db: Session, order: ExternalOrder) -> ExternalOrder:
        # Sessions run with autoflush off; pending changes must reach the row
        # before it is re-read.
        db.flush()
        return (
            db.query(ExternalOrder)
            .filter(ExternalOrder.id == order.id)
            .with_for_update()
            .populate_existing()
            .one()
        )

    def _deduct(self, db: Session, order: ExternalOrder, *, reason: str, user_id: Optional[str]) -> ReconcileResult:
        result = ReconcileResult(processed=True)

        for raw in order.items or []:
            try:
                item = LineItem.from_payload(raw)
            except ValidationError as e:
                logger.warning(f"Order #{order.order_number}: skipping line item: {e.message}")
                result.unmatched.append(str(raw)[:120])
                continue

            product = self.match_product(db, item)
            if product is None:
                logger.warning(f"Order #{order.order_number}: no product matches line item {item.label}")
                result.unmatched.append(item.label)
                continue

            record_movement(
                db,
                product_id=product.id,
                movement_type=MovementType.EXIT,
                quantity=item.quantity,
                reason=reason,
                user_id=user_id,
                sync_status="synced",
                external_order_id=order.id,
            )
            result.items_deducted += 1
            logger.info(f"Order #{order.order_number}: -{item.quantity} x {product.name} (SKU {product.sku})")

        now = datetime.now(timezone.utc)
        order.processed = True
        order.processed_at = now
        order.updated_at = now
        db.flush()
        return result


stock_reconciler = StockReconciler()
