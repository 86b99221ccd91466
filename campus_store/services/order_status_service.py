"""Order lifecycle: transition table, durable side effects, buyer and admin actions.

``apply_transition`` is the single write path for status changes. It moves
the status with a compare-and-set UPDATE so two racing writers cannot both
act on the same old status, appends the history row, recognises or reverses
revenue and, for cancellations and refunds, returns each line's quantity to
stock. Each line is restored inside its own savepoint so one bad line does
not stop the others.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy import func, update
from sqlalchemy.orm import Session, selectinload

from campus_store.errors import ConflictError, InvalidStatus, InvalidTransition, NotFoundError
from campus_store.models.order import Order, OrderStatus, OrderStatusLog, PaymentStatus
from campus_store.models.sales import PaymentTransaction, SalesEntryType, SalesLog
from campus_store.models.user import User
from campus_store.services import notification_service
from campus_store.services.events import INVENTORY_UPDATED, ORDER_STATUS_UPDATED, EventPublisher
from campus_store.services.mailer import ReceiptMailer, build_receipt
from campus_store.services.outcome import Outcome
from campus_store.services.stock_ledger import StockLedger
from campus_store.time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)

S = OrderStatus

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING: frozenset({S.PROCESSING, S.READY_FOR_PICKUP, S.DELIVERED, S.CANCELLED}),
    S.PROCESSING: frozenset({S.READY_FOR_PICKUP, S.DELIVERED, S.CANCELLED, S.REFUNDED}),
    S.READY_FOR_PICKUP: frozenset({S.PROCESSING, S.DELIVERED, S.CLAIMED, S.CANCELLED, S.REFUNDED}),
    S.DELIVERED: frozenset({S.CLAIMED, S.COMPLETED, S.CANCELLED, S.REFUNDED}),
    S.CLAIMED: frozenset({S.COMPLETED, S.REFUNDED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)
REVERSING_STATUSES = frozenset({S.CANCELLED, S.REFUNDED})
SALE_STATUSES = frozenset({S.DELIVERED, S.CLAIMED, S.COMPLETED})

CUSTOMER_CANCELLABLE = frozenset({S.PENDING, S.PROCESSING})
CUSTOMER_CONFIRMABLE = frozenset({S.READY_FOR_PICKUP, S.DELIVERED, S.CLAIMED})
ADMIN_CONFIRMABLE = frozenset({S.DELIVERED, S.CLAIMED})
ADMIN_SETTABLE_STATUSES = frozenset().union(*ALLOWED_TRANSITIONS.values())


def _value(status) -> str:
    return getattr(status, "value", status)


@dataclass
class StatusChange:
    order: Order
    previous_status: str
    new_status: str
    inventory_updated: bool = False
    sales_logged: bool = False
    payment_status_updated: bool = False
    restored: list[dict] = field(default_factory=list)
    restore_failures: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "message": f"Order {self.order.order_number} updated to {self.new_status}",
            "orderId": self.order.id,
            "orderNumber": self.order.order_number,
            "previousStatus": self.previous_status,
            "newStatus": self.new_status,
            "paymentStatus": _value(self.order.payment_status),
            "inventoryUpdated": self.inventory_updated,
            "salesLogged": self.sales_logged,
            "paymentStatusUpdated": self.payment_status_updated,
            "restoreFailures": self.restore_failures,
        }


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatus(
            f"Invalid status '{value}'",
            validStatuses=sorted(s.value for s in ADMIN_SETTABLE_STATUSES),
        ) from None


def allowed_transitions(current) -> list[str]:
    return sorted(s.value for s in ALLOWED_TRANSITIONS.get(OrderStatus(current), ()))


def is_allowed(current, target) -> bool:
    return OrderStatus(target) in ALLOWED_TRANSITIONS.get(OrderStatus(current), ())


# --- reads ---

def get_order(db: Session, order_id: str) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def get_user_order(db: Session, user: User, order_id: str) -> Order:
    """Buyers only ever see their own orders; anyone else's reads as missing."""
    order = db.get(Order, order_id)
    if not order or (order.user_id != user.id and not user.is_admin):
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_user_orders(db: Session, user_id: str, skip: int = 0, limit: int = 50) -> list[Order]:
    return (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def list_orders(db: Session, status: str | None = None, skip: int = 0, limit: int = 50) -> list[Order]:
    q = db.query(Order).options(selectinload(Order.items))
    if status:
        q = q.filter(Order.status == parse_status(status))
    return q.order_by(Order.created_at.desc()).offset(skip).limit(limit).all()


def has_sale_entry(db: Session, order_id: str) -> bool:
    count = (
        db.query(func.count(SalesLog.id))
        .filter(SalesLog.order_id == order_id, SalesLog.entry_type == SalesEntryType.SALE)
        .scalar()
    )
    return bool(count)


def order_stats(db: Session, days: int = 30) -> dict:
    """Order counts by status plus net revenue from the sales ledger over the last ``days`` days."""
    since = utcnow() - timedelta(days=days)
    by_status = {s.value: 0 for s in OrderStatus}
    rows = (
        db.query(Order.status, func.count(Order.id))
        .filter(Order.created_at >= since)
        .group_by(Order.status)
        .all()
    )
    for status, count in rows:
        by_status[_value(status)] = count

    sales_rows = (
        db.query(SalesLog.entry_type, func.coalesce(func.sum(SalesLog.amount), 0.0))
        .filter(SalesLog.created_at >= since)
        .group_by(SalesLog.entry_type)
        .all()
    )
    totals = {_value(entry_type): float(amount) for entry_type, amount in sales_rows}
    gross = totals.get(SalesEntryType.SALE.value, 0.0)
    reversed_amount = -totals.get(SalesEntryType.REVERSAL.value, 0.0)
    return {
        "days": days,
        "totalOrders": sum(by_status.values()),
        "byStatus": by_status,
        "grossSales": round(gross, 2),
        "reversals": round(reversed_amount, 2),
        "netRevenue": round(gross - reversed_amount, 2),
    }


# --- the write path ---

def apply_transition(db: Session, order: Order, new_status: OrderStatus, notes: str = "") -> StatusChange:
    """Persist ``order`` -> ``new_status`` with its durable effects and commit.

    Does not consult the transition table; callers decide what is allowed.
    Raises ConflictError when the order's status changed underneath us.
    """
    new_status = OrderStatus(new_status)
    old_status = OrderStatus(order.status)
    now = utcnow()

    try:
        moved = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == old_status)
            .values(status=new_status, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if moved == 0:
            raise ConflictError(
                f"Order {order.order_number} was updated by someone else; reload and try again",
                currentStatus=_value(db.query(Order.status).filter(Order.id == order.id).scalar()),
            )
        db.refresh(order)

        db.add(OrderStatusLog(
            order_id=order.id,
            old_status=old_status.value,
            new_status=new_status.value,
            notes=notes or "",
        ))
        change = StatusChange(order=order, previous_status=old_status.value, new_status=new_status.value)

        if new_status in REVERSING_STATUSES:
            _reverse_sale(db, order, change)
            _restore_stock(db, order, change, reason=new_status.value)
        elif new_status in SALE_STATUSES and not has_sale_entry(db, order.id):
            _recognise_sale(db, order, change)

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "Order %s: %s -> %s%s",
        order.order_number, old_status.value, new_status.value, f" ({notes})" if notes else "",
    )
    if change.restore_failures:
        logger.error(
            "Order %s: %d line(s) could not be returned to stock: %s",
            order.order_number, len(change.restore_failures), change.restore_failures,
        )
    return change


def _recognise_sale(db: Session, order: Order, change: StatusChange) -> None:
    db.add(SalesLog(order_id=order.id, entry_type=SalesEntryType.SALE, amount=order.total_amount))
    change.sales_logged = True
    if _value(order.payment_status) != PaymentStatus.PAID.value:
        order.payment_status = PaymentStatus.PAID
        db.add(PaymentTransaction(
            order_id=order.id,
            transaction_id=f"counter_{order.order_number}",
            amount=order.total_amount,
            payment_method=order.payment_method,
            status="completed",
            gateway_response=json.dumps({
                "source": "counter",
                "captured_on": change.new_status,
                "captured_at": to_utc_z(utcnow()),
            }),
        ))
        change.payment_status_updated = True


def _reverse_sale(db: Session, order: Order, change: StatusChange) -> None:
    db.add(SalesLog(order_id=order.id, entry_type=SalesEntryType.REVERSAL, amount=-order.total_amount))
    change.sales_logged = True
    if _value(order.payment_status) != PaymentStatus.PAID.value:
        order.payment_status = PaymentStatus.CANCELLED
        change.payment_status_updated = True


def _restore_stock(db: Session, order: Order, change: StatusChange, reason: str) -> None:
    # Flush first: the savepoints below must sit inside an already-open transaction.
    db.flush()
    ledger = StockLedger(db)
    for item in order.items:
        label = f"{item.product_name} ({item.size})" if item.size else item.product_name
        try:
            with db.begin_nested():
                new_stock = ledger.increment(
                    item.product_id,
                    item.variant_id,
                    item.quantity,
                    reason=f"order_{reason}",
                    reference_id=order.id,
                    notes=f"Order {order.order_number} {reason}",
                )
        except Exception as e:
            logger.exception("Could not restore %d x %s for order %s", item.quantity, label, order.order_number)
            change.restore_failures.append({"item": label, "quantity": item.quantity, "error": str(e)})
            continue
        change.restored.append({
            "productId": item.product_id,
            "variantId": item.variant_id,
            "quantity": item.quantity,
            "newStock": new_stock,
        })
    change.inventory_updated = bool(change.restored)


# --- post-commit effects ---

def announce_change(
    db: Session,
    publisher: EventPublisher,
    mailer: ReceiptMailer | None,
    change: StatusChange,
    outcome: Outcome,
    notify_buyer: bool = True,
) -> None:
    order = change.order
    outcome.run(
        "order-status-updated",
        publisher.publish,
        ORDER_STATUS_UPDATED,
        {
            "orderId": order.id,
            "orderNumber": order.order_number,
            "userId": order.user_id,
            "status": change.new_status,
            "previousStatus": change.previous_status,
            "paymentStatus": _value(order.payment_status),
            "updatedAt": to_utc_z(order.updated_at),
        },
    )
    if change.inventory_updated:
        outcome.run(
            "inventory-updated",
            publisher.publish,
            INVENTORY_UPDATED,
            {"reason": change.new_status, "orderId": order.id, "items": change.restored},
        )
    if notify_buyer:
        outcome.run(
            "buyer-notification",
            notification_service.notify_status_change, db, publisher, order, change.new_status,
        )
    if change.new_status == S.DELIVERED.value:
        outcome.run(
            "delivery-confirmation-notification",
            notification_service.notify_delivery_confirmation_needed, db, publisher, order,
        )
    if change.new_status == S.COMPLETED.value and mailer is not None:
        outcome.run("receipt-email", send_receipt, mailer, order)


def send_receipt(mailer: ReceiptMailer, order: Order) -> bool:
    user = order.user
    if user is None:
        logger.warning("Order %s has no buyer record; receipt not sent", order.order_number)
        return False
    return mailer.send_receipt(user.email, user.name, build_receipt(order))


def _transition(
    db: Session,
    order: Order,
    new_status: OrderStatus,
    notes: str,
    publisher: EventPublisher,
    mailer: ReceiptMailer | None,
) -> Outcome[StatusChange]:
    change = apply_transition(db, order, new_status, notes)
    outcome = Outcome(change)
    announce_change(db, publisher, mailer, change, outcome)
    return outcome


# --- actions ---

def set_status(
    db: Session,
    order_id: str,
    new_status: str,
    publisher: EventPublisher,
    mailer: ReceiptMailer | None = None,
    notes: str = "",
) -> Outcome[StatusChange]:
    """Administrator status update, checked against the transition table."""
    target = parse_status(new_status)
    order = get_order(db, order_id)
    current = OrderStatus(order.status)
    if not is_allowed(current, target):
        raise InvalidTransition(
            f"Cannot change order status from '{current.value}' to '{target.value}'",
            currentStatus=current.value,
            allowedStatuses=allowed_transitions(current),
        )
    return _transition(db, order, target, notes, publisher, mailer)


def cancel_own_order(
    db: Session,
    user: User,
    order_id: str,
    publisher: EventPublisher,
    mailer: ReceiptMailer | None = None,
    reason: str = "",
) -> Outcome[StatusChange]:
    order = db.get(Order, order_id)
    if not order or order.user_id != user.id:
        raise NotFoundError(f"Order {order_id} not found")
    current = OrderStatus(order.status)
    if current not in CUSTOMER_CANCELLABLE:
        raise InvalidTransition(
            f"Order cannot be cancelled once it is '{current.value}'",
            currentStatus=current.value,
            allowedStatuses=[],
        )
    notes = f"Cancelled by customer: {reason}" if reason else "Cancelled by customer"
    return _transition(db, order, S.CANCELLED, notes, publisher, mailer)


def confirm_receipt(
    db: Session,
    user: User,
    order_id: str,
    publisher: EventPublisher,
    mailer: ReceiptMailer | None = None,
) -> Outcome[StatusChange]:
    """Buyer confirms they have the goods. Allowed straight from ready_for_pickup."""
    order = db.get(Order, order_id)
    if not order or order.user_id != user.id:
        raise NotFoundError(f"Order {order_id} not found")
    current = OrderStatus(order.status)
    if current not in CUSTOMER_CONFIRMABLE:
        raise InvalidTransition(
            f"Order cannot be confirmed while it is '{current.value}'",
            currentStatus=current.value,
            allowedStatuses=[],
        )
    outcome = _transition(db, order, S.COMPLETED, "Receipt confirmed by customer", publisher, mailer)
    buyer = user.name or user.email
    outcome.run(
        "admin-notification",
        lambda: notification_service.deliver(db, publisher, notification_service.notify_admins(
            db,
            "Order Received by Customer",
            f"{buyer} confirmed receipt of order {order.order_number}.",
            related_id=order.id,
        )),
    )
    return outcome


def admin_confirm(
    db: Session,
    order_id: str,
    publisher: EventPublisher,
    mailer: ReceiptMailer | None = None,
) -> Outcome[StatusChange]:
    order = get_order(db, order_id)
    current = OrderStatus(order.status)
    if current not in ADMIN_CONFIRMABLE:
        raise InvalidTransition(
            f"Only delivered or claimed orders can be confirmed, this one is '{current.value}'",
            currentStatus=current.value,
            allowedStatuses=allowed_transitions(current),
        )
    return _transition(db, order, S.COMPLETED, "Receipt confirmed by admin", publisher, mailer)
