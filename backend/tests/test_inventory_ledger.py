import pytest

from stocksync.models_sqlalchemy.models import MovementType
from stocksync.services.inventory_ledger import current_stock, record_movement, stock_levels


def test_stock_is_folded_from_movements(db, make_product):
    product = make_product("SKU-1", "Camiseta Azul")

    record_movement(db, product_id=product.id, movement_type=MovementType.ENTRY, quantity=10, reason="compra")
    record_movement(db, product_id=product.id, movement_type=MovementType.EXIT, quantity=3, reason="venda")
    record_movement(db, product_id=product.id, movement_type=MovementType.ENTRY, quantity=2, reason="devolucao")
    db.commit()

    assert current_stock(db, product.id) == 9


def test_stock_can_go_negative(db, make_product):
    product = make_product("SKU-1", "Camiseta Azul", stock=1)
    record_movement(db, product_id=product.id, movement_type=MovementType.EXIT, quantity=4, reason="venda")

    assert current_stock(db, product.id) == -3


def test_non_positive_quantity_is_rejected(db, make_product):
    product = make_product("SKU-1", "Camiseta Azul")
    with pytest.raises(ValueError):
        record_movement(db, product_id=product.id, movement_type=MovementType.EXIT, quantity=0, reason="venda")


def test_stock_levels_for_several_products(db, make_product):
    first = make_product("SKU-1", "Camiseta Azul", stock=7)
    second = make_product("SKU-2", "Camiseta Verde")

    levels = stock_levels(db, [first.id, second.id])

    assert levels == {first.id: 7, second.id: 0}
