import pytest

from campus_store.errors import InsufficientStock, InvalidPrice, NotFoundError, ValidationError
from campus_store.models.cart import CartItem
from campus_store.services.item_resolver import SelectionMode, resolve_selection


def test_cart_subset_takes_only_selected_items(db, student, shirt, mug, size, cart_line):
    keep = cart_line(student, mug, quantity=2)
    chosen = cart_line(student, shirt, size(shirt, "M"), quantity=1)

    resolution = resolve_selection(db, student.id, cart_item_ids=[chosen.id])

    assert resolution.mode == SelectionMode.CART_ITEMS
    [line] = resolution.lines
    assert (line.product_name, line.size, line.quantity, line.unit_price) == ("Uniform Shirt", "M", 1, 250.0)
    assert line.unit_cost == 150.0
    assert resolution.consumed_cart_item_ids == [chosen.id]
    assert keep.id not in resolution.consumed_cart_item_ids


def test_cart_items_of_another_user_are_not_found(db, student, other_student, mug, cart_line):
    theirs = cart_line(other_student, mug)
    with pytest.raises(NotFoundError):
        resolve_selection(db, student.id, cart_item_ids=[theirs.id])


def test_buy_now_bypasses_cart(db, student, mug, cart_line):
    cart_line(student, mug, quantity=1)
    resolution = resolve_selection(db, student.id, products=[{"product_id": mug.id, "quantity": 3}])
    assert resolution.mode == SelectionMode.BUY_NOW
    assert resolution.lines[0].quantity == 3
    assert resolution.consumed_cart_item_ids == []


def test_whole_cart_when_nothing_selected(db, student, shirt, mug, size, cart_line):
    cart_line(student, mug)
    cart_line(student, shirt, size(shirt, "S"), quantity=2)
    resolution = resolve_selection(db, student.id)
    assert resolution.mode == SelectionMode.WHOLE_CART
    assert len(resolution.lines) == 2


def test_variant_price_override(db, student, shirt, size):
    resolution = resolve_selection(
        db, student.id, products=[{"product_id": shirt.id, "size_id": size(shirt, "XL").id, "quantity": 1}]
    )
    assert resolution.lines[0].unit_price == 280.0


def test_size_required_when_product_has_variants(db, student, shirt):
    with pytest.raises(ValidationError):
        resolve_selection(db, student.id, products=[{"product_id": shirt.id, "quantity": 1}])


def test_variant_alone_rederives_product(db, student, shirt, mug, size):
    medium = size(shirt, "M")
    resolution = resolve_selection(
        db, student.id, products=[{"product_id": mug.id, "size_id": medium.id, "quantity": 1}]
    )
    line = resolution.lines[0]
    assert line.product_id == shirt.id
    assert line.variant_id == medium.id


def test_requested_more_than_available(db, student, shirt, size):
    with pytest.raises(InsufficientStock) as exc:
        resolve_selection(
            db, student.id, products=[{"product_id": shirt.id, "size_id": size(shirt, "XL").id, "quantity": 3}]
        )
    assert exc.value.available == 2


def test_duplicate_lines_are_merged_and_checked_together(db, student, shirt, size, cart_line):
    small = size(shirt, "S")
    a = cart_line(student, shirt, small, quantity=3)
    b = cart_line(student, shirt, small, quantity=3)
    with pytest.raises(InsufficientStock):
        resolve_selection(db, student.id, cart_item_ids=[a.id, b.id])

    b.quantity = 2
    db.commit()
    [line] = resolve_selection(db, student.id, cart_item_ids=[a.id, b.id]).lines
    assert line.quantity == 5
    assert sorted(line.cart_item_ids) == sorted([a.id, b.id])


def test_zero_price_rejected(db, student, mug):
    mug.price = 0
    db.commit()
    with pytest.raises(InvalidPrice):
        resolve_selection(db, student.id, products=[{"product_id": mug.id, "quantity": 1}])


def test_deleted_product_not_found(db, student, mug):
    mug.is_active = False
    db.commit()
    with pytest.raises(NotFoundError):
        resolve_selection(db, student.id, products=[{"product_id": mug.id, "quantity": 1}])


@pytest.mark.parametrize("quantity", [0, -2, 1.5])
def test_bad_quantity(db, student, mug, quantity):
    with pytest.raises(ValidationError):
        resolve_selection(db, student.id, products=[{"product_id": mug.id, "quantity": quantity}])


def test_empty_cart_resolves_to_no_lines(db, student):
    assert db.query(CartItem).count() == 0
    assert resolve_selection(db, student.id).lines == []


def test_buy_now_entry_without_product_or_size(db, student):
    with pytest.raises(ValidationError) as exc:
        resolve_selection(db, student.id, products=[{"quantity": 1}])
    assert exc.value.status_code == 400
