from datetime import timedelta

import pytest

from campus_store.errors import NotFoundError
from campus_store.models.inventory import MovementType, StockMovement
from campus_store.schemas.stock import StockMovementCreate
from campus_store.services import product_service
from campus_store.time_utils import utcnow


def test_low_stock_lists_sizes_and_plain_products(db, shirt, mug, size):
    rows = product_service.low_stock(db)
    assert [(r["product_name"], r["size"], r["stock"]) for r in rows] == [
        ("Uniform Shirt", "XL", 2),
        ("Uniform Shirt", "M", 5),
        ("Uniform Shirt", "S", 5),
    ]
    assert rows[0]["variant_id"] == size(shirt, "XL").id

    rows = product_service.low_stock(db, threshold=10)
    assert ("Campus Mug", "", 10) in [(r["product_name"], r["size"], r["stock"]) for r in rows]


def test_low_stock_skips_inactive_sizes_and_deleted_products(db, shirt, mug, size):
    size(shirt, "XL").is_active = False
    db.commit()
    product_service.delete_product(db, mug.id)

    rows = product_service.low_stock(db, threshold=10)
    assert {r["size"] for r in rows} == {"S", "M"}


def test_recorded_movement_can_be_fetched(db, mug, admin, publisher):
    movement = product_service.record_stock_movement(
        db,
        StockMovementCreate(product_id=mug.id, movement_type=MovementType.STOCK_IN, quantity=5, reason="restock"),
        publisher=publisher,
        user_id=admin.id,
    )

    fetched = product_service.get_stock_movement(db, movement.id)
    assert (fetched.previous_stock, fetched.new_stock, fetched.user_id) == (10, 15, admin.id)

    with pytest.raises(NotFoundError):
        product_service.get_stock_movement(db, "missing")


def test_summary_only_counts_recent_movements(db, mug, publisher):
    for qty in (3, 4):
        product_service.record_stock_movement(
            db,
            StockMovementCreate(product_id=mug.id, movement_type=MovementType.STOCK_IN, quantity=qty, reason="restock"),
            publisher=publisher,
        )
    old = db.query(StockMovement).filter(StockMovement.quantity == 3).one()
    old.created_at = utcnow() - timedelta(days=40)
    db.commit()

    [row] = product_service.stock_movement_summary(db, product_id=mug.id)
    assert (row["movement_type"], row["movements"], row["units"]) == (MovementType.STOCK_IN, 1, 4)

    [row] = product_service.stock_movement_summary(db, product_id=mug.id, days=60)
    assert row["units"] == 7
