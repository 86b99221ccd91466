import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from campus_store.models.notification import Notification
from campus_store.models.order import Order, OrderItem
from campus_store.models.user import User
from campus_store.services.events import NEW_NOTIFICATION, EventPublisher
from campus_store.time_utils import to_utc_z

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    "pending": ("Order Placed", "Your order for {summary} has been placed and is pending confirmation."),
    "processing": ("Order Received", "Thank you! Your order for {summary} has been received and is being processed."),
    "ready_for_pickup": ("Ready for Pickup", "Your order for {summary} is ready for pickup at the accounting office!"),
    "delivered": ("Order Delivered", "Your order for {summary} has been delivered successfully!"),
    "claimed": ("Order Claimed", "Your order for {summary} has been claimed. Please confirm receipt."),
    "completed": ("Order Completed", "Your order for {summary} is complete. Thank you!"),
    "cancelled": ("Order Cancelled", "Your order for {summary} has been cancelled."),
    "refunded": ("Order Refunded", "Your order for {summary} has been refunded."),
}


def _item_text(item: OrderItem) -> str:
    if item.size:
        return f"{item.quantity}x {item.product_name} ({item.size})"
    return f"{item.quantity}x {item.product_name}"


def product_summary(items: list[OrderItem]) -> str:
    """Human-readable summary: every line for up to three lines, else the first plus a count."""
    if not items:
        return "your items"
    if len(items) <= 3:
        return ", ".join(_item_text(i) for i in items)
    return f"{_item_text(items[0])} and {len(items) - 1} more items"


def create_notification(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    type: str = "system",
    related_id: str | None = None,
) -> Notification:
    notification = Notification(user_id=user_id, title=title, message=message, type=type, related_id=related_id)
    db.add(notification)
    return notification


def admin_ids(db: Session) -> list[str]:
    rows = db.query(User.id).filter(User.role == "admin", User.active == True).all()  # noqa: E712
    return [user_id for (user_id,) in rows]


def notify_admins(db: Session, title: str, message: str, related_id: str | None = None) -> list[Notification]:
    return [
        create_notification(db, uid, title, message, type="admin_order", related_id=related_id)
        for uid in admin_ids(db)
    ]


def deliver(db: Session, publisher: EventPublisher, notifications: list[Notification]) -> int:
    """Commit the notifications and announce each one. Rolls back on failure."""
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    for n in notifications:
        publisher.publish(NEW_NOTIFICATION, notification_payload(n))
    return len(notifications)


def notification_payload(n: Notification) -> dict:
    return {
        "id": n.id,
        "userId": n.user_id,
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "orderId": n.related_id,
        "read": n.is_read,
        "createdAt": to_utc_z(n.created_at),
    }


# --- order-level helpers ---

def notify_order_placed(db: Session, publisher: EventPublisher, order: Order) -> int:
    summary = product_summary(order.items)
    title, template = STATUS_MESSAGES["pending"]
    notes = [create_notification(db, order.user_id, title, template.format(summary=summary), related_id=order.id)]
    buyer = order.user.name if order.user else "a customer"
    notes += notify_admins(
        db,
        "New Order",
        f"Order {order.order_number} from {buyer}: {summary} (total {order.total_amount:.2f}).",
        related_id=order.id,
    )
    return deliver(db, publisher, notes)


def notify_status_change(db: Session, publisher: EventPublisher, order: Order, status: str) -> int:
    summary = product_summary(order.items)
    title, template = STATUS_MESSAGES.get(
        status, ("Order Update", "Your order for {summary} status has been updated to " + status + ".")
    )
    note = create_notification(db, order.user_id, title, template.format(summary=summary), related_id=order.id)
    return deliver(db, publisher, [note])


def notify_delivery_confirmation_needed(db: Session, publisher: EventPublisher, order: Order) -> int:
    buyer = order.user.name if order.user else "the customer"
    notes = notify_admins(
        db,
        "Order Delivered - Confirmation Needed",
        f"Order {order.order_number} for {buyer} was marked delivered. Confirm once the customer has received it.",
        related_id=order.id,
    )
    return deliver(db, publisher, notes)


def list_for_user(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.is_read == False)  # noqa: E712
    return q.order_by(Notification.created_at.desc()).limit(limit).all()


def unread_count(db: Session, user_id: str) -> int:
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
        .scalar()
    ) or 0


def mark_read(db: Session, user_id: str, notification_id: str) -> Notification | None:
    n = db.get(Notification, notification_id)
    if not n or n.user_id != user_id:
        return None
    n.is_read = True
    db.commit()
    db.refresh(n)
    return n


def mark_all_read(db: Session, user_id: str) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return updated
