"""
Inventory ledger.

- Stock is never stored. It is derived from InventoryMovement rows by folding
  them in chronological order: ENTRY adds, EXIT subtracts.
- Movements are append-only; corrections are new movements.
- Quantities on rows are always positive; the type carries the sign.
"""

from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from stocksync.models_sqlalchemy.models import InventoryMovement, MovementType


def record_movement(
    db: Session,
    *,
    product_id: str,
    movement_type: MovementType,
    quantity: int,
    reason: str,
    user_id: Optional[str] = None,
    sync_status: str = "synced",
    external_order_id: Optional[str] = None,
) -> InventoryMovement:
    """Append a movement to the session. The caller owns the transaction."""
    if quantity <= 0:
        raise ValueError("movement quantity must be positive")

    movement = InventoryMovement(
        type=MovementType(movement_type).value,
        product_id=product_id,
        quantity=int(quantity),
        reason=reason,
        user_id=user_id,
        sync_status=sync_status,
        external_order_id=external_order_id,
    )
    db.add(movement)
    db.flush()
    return movement


def fold_stock(movements: Iterable[InventoryMovement]) -> int:
    total = 0
    for movement in movements:
        if movement.type == MovementType.ENTRY.value:
            total += movement.quantity
        else:
            total -= movement.quantity
    return total


def current_stock(db: Session, product_id: str) -> int:
    movements = (
        db.query(InventoryMovement)
        .filter(InventoryMovement.product_id == product_id)
        .order_by(InventoryMovement.created_at.asc(), InventoryMovement.id.asc())
        .all()
    )
    return fold_stock(movements)


def stock_levels(db: Session, product_ids: Iterable[str]) -> Dict[str, int]:
    ids = list(product_ids)
    levels = {product_id: 0 for product_id in ids}
    if not ids:
        return levels

    movements = (
        db.query(InventoryMovement)
        .filter(InventoryMovement.product_id.in_(ids))
        .order_by(InventoryMovement.created_at.asc(), InventoryMovement.id.asc())
        .all()
    )
    for movement in movements:
        delta = movement.quantity if movement.type == MovementType.ENTRY.value else -movement.quantity
        levels[movement.product_id] += delta
    return levels
