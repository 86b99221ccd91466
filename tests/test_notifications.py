from campus_store.models.order import OrderItem
from campus_store.services.events import NEW_ORDER, InMemoryEventPublisher, build_envelope
from campus_store.services.mailer import build_receipt
from campus_store.services.notification_service import (
    list_for_user,
    mark_all_read,
    mark_read,
    product_summary,
    unread_count,
)


def item(name, qty, size=""):
    return OrderItem(product_name=name, quantity=qty, size=size, unit_price=1.0, line_total=float(qty))


def test_product_summary_lists_up_to_three_lines():
    items = [item("Uniform Shirt", 2, "M"), item("Campus Mug", 1), item("Lanyard", 3)]
    assert product_summary(items) == "2x Uniform Shirt (M), 1x Campus Mug, 3x Lanyard"


def test_product_summary_collapses_long_orders():
    items = [item("Uniform Shirt", 2, "M"), item("Campus Mug", 1), item("Lanyard", 3), item("ID Lace", 1)]
    assert product_summary(items) == "2x Uniform Shirt (M) and 3 more items"


def test_envelope_shape():
    envelope = build_envelope(NEW_ORDER, {"orderId": "o1"})
    assert envelope["event"] == "new-order"
    assert envelope["payload"] == {"orderId": "o1"}
    assert "T" in envelope["timestamp"]


def test_in_memory_publisher_is_bounded():
    publisher = InMemoryEventPublisher(max_events=2)
    for i in range(3):
        publisher.publish(NEW_ORDER, {"n": i})
    assert [p["n"] for p in publisher.of(NEW_ORDER)] == [1, 2]


def test_receipt_and_notifications_for_placed_order(db, student, admin, mug, place):
    order = place(student, products=[{"product_id": mug.id, "quantity": 2}]).result.order

    receipt = build_receipt(order)
    assert receipt["orderNumber"] == order.order_number
    assert receipt["totalAmount"] == 240.0
    assert receipt["items"] == [
        {"product_name": "Campus Mug", "size": "", "quantity": 2, "unit_price": 120.0, "total_price": 240.0}
    ]

    [buyer_note] = list_for_user(db, student.id)
    assert buyer_note.related_id == order.id
    [admin_note] = list_for_user(db, admin.id)
    assert admin_note.type == "admin_order"
    assert order.order_number in admin_note.message

    assert mark_read(db, admin.id, buyer_note.id) is None
    assert mark_read(db, student.id, buyer_note.id).is_read is True
    assert list_for_user(db, student.id, unread_only=True) == []


def test_mark_all_read_only_touches_own_notifications(db, student, admin, mug, place):
    place(student, products=[{"product_id": mug.id, "quantity": 1}])
    place(student, products=[{"product_id": mug.id, "quantity": 1}])
    assert unread_count(db, student.id) == 2
    assert unread_count(db, admin.id) == 2

    assert mark_all_read(db, student.id) == 2

    assert unread_count(db, student.id) == 0
    assert all(n.is_read for n in list_for_user(db, student.id))
    assert unread_count(db, admin.id) == 2
    assert mark_all_read(db, student.id) == 0
