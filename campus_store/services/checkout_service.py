"""Checkout: cart or buy-now selection -> committed order with stock deducted.

The order header, its lines, every stock decrement with its movement row,
the order-number reservation and the cart clean-up share one transaction.
Anything raised before the commit rolls all of it back. Broadcasts and
notifications run only after the commit and are collected as advisory
effects on the returned :class:`Outcome`.
"""
import logging
import math
from dataclasses import dataclass, field

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_store.errors import ConflictError, EmptyCart, InvalidTotal, ValidationError
from campus_store.models.cart import CartItem
from campus_store.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from campus_store.models.user import User
from campus_store.schemas.checkout import CheckoutRequest
from campus_store.services import notification_service
from campus_store.services.events import INVENTORY_UPDATED, NEW_ORDER, EventPublisher
from campus_store.services.item_resolver import Resolution, ResolvedLine, SelectionMode, resolve_selection
from campus_store.services.order_numbers import next_order_number
from campus_store.services.outcome import Outcome
from campus_store.services.stock_ledger import StockLedger
from campus_store.time_utils import to_utc_z

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    order: Order
    mode: SelectionMode
    stock_levels: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "orderId": self.order.id,
            "orderNumber": self.order.order_number,
            "total_amount": self.order.total_amount,
            "payment_method": self.order.payment_method,
            "payment_status": getattr(self.order.payment_status, "value", self.order.payment_status),
        }


def compute_total(lines: list[ResolvedLine]) -> float:
    total = sum(line.unit_price * line.quantity for line in lines)
    if not isinstance(total, (int, float)) or not math.isfinite(total) or total <= 0:
        raise InvalidTotal(f"Order total must be a positive amount, got {total!r}")
    return round(total, 2)


def place_order(db: Session, user: User, data: CheckoutRequest, publisher: EventPublisher) -> Outcome[CheckoutResult]:
    payment_method = (data.payment_method or "").strip()
    if not payment_method:
        raise ValidationError("Payment method is required")

    try:
        resolution = resolve_selection(db, user.id, cart_item_ids=data.cart_item_ids, products=data.products)
    except Exception:
        db.rollback()
        raise

    result = build_order(
        db,
        user.id,
        resolution,
        payment_method=payment_method,
        pay_at_counter=data.pay_at_counter,
        notes=data.notes,
    )
    outcome = Outcome(result)
    announce_order(db, publisher, result, outcome)
    return outcome


def build_order(
    db: Session,
    user_id: str,
    resolution: Resolution,
    payment_method: str,
    pay_at_counter: bool = False,
    notes: str = "",
) -> CheckoutResult:
    lines = resolution.lines
    if not lines:
        db.rollback()
        raise EmptyCart("Cart is empty")
    try:
        total = compute_total(lines)
        order = Order(
            order_number=next_order_number(db),
            user_id=user_id,
            total_amount=total,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            pay_at_counter=bool(pay_at_counter),
            status=OrderStatus.PENDING,
            notes=notes or "",
        )
        db.add(order)
        db.flush()

        ledger = StockLedger(db, user_id=user_id)
        stock_levels = []
        for line in lines:
            db.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                product_name=line.product_name,
                size=line.size,
                quantity=line.quantity,
                unit_price=line.unit_price,
                unit_cost=line.unit_cost,
                line_total=line.line_total,
            ))
            new_stock = ledger.decrement(
                line.product_id,
                line.variant_id,
                line.quantity,
                reason="order",
                reference_id=order.id,
                notes=f"Order {order.order_number}",
            )
            stock_levels.append({
                "productId": line.product_id,
                "variantId": line.variant_id,
                "quantity": line.quantity,
                "newStock": new_stock,
            })

        _consume_cart(db, user_id, resolution)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.error("Checkout for user %s hit a constraint violation: %s", user_id, e)
        raise ConflictError("Order could not be created because of a conflicting record; please retry") from e
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "Order %s created for user %s: %d lines, total %.2f via %s (%s)",
        order.order_number, user_id, len(lines), total, payment_method, resolution.mode.value,
    )
    return CheckoutResult(order=order, mode=resolution.mode, stock_levels=stock_levels)


def _consume_cart(db: Session, user_id: str, resolution: Resolution) -> None:
    if resolution.mode == SelectionMode.BUY_NOW:
        return
    stmt = delete(CartItem).where(CartItem.user_id == user_id)
    if resolution.mode == SelectionMode.CART_ITEMS:
        stmt = stmt.where(CartItem.id.in_(resolution.consumed_cart_item_ids))
    deleted = db.execute(stmt.execution_options(synchronize_session=False)).rowcount
    # A second submit of the same cart lines finds them already gone
    if resolution.mode == SelectionMode.CART_ITEMS and deleted != len(resolution.consumed_cart_item_ids):
        raise ConflictError("Cart items were already checked out")


def announce_order(db: Session, publisher: EventPublisher, result: CheckoutResult, outcome: Outcome) -> None:
    order = result.order
    outcome.run(
        "inventory-updated",
        publisher.publish,
        INVENTORY_UPDATED,
        {"reason": "order", "orderId": order.id, "items": result.stock_levels},
    )
    outcome.run(
        "new-order",
        publisher.publish,
        NEW_ORDER,
        {
            "orderId": order.id,
            "orderNumber": order.order_number,
            "userId": order.user_id,
            "totalAmount": order.total_amount,
            "paymentMethod": order.payment_method,
            "payAtCounter": order.pay_at_counter,
            "itemCount": len(result.stock_levels),
            "createdAt": to_utc_z(order.created_at),
        },
    )
    outcome.run("order-placed-notifications", notification_service.notify_order_placed, db, publisher, order)
