"""Finalise orders that have sat in ``claimed`` past the grace period.

Each order is completed in its own session, so one failure only costs that
order. Orders whose status moved on between selection and processing are
skipped through the compare-and-set in ``apply_transition``.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from campus_store.config import settings
from campus_store.models.order import Order, OrderStatus
from campus_store.services import notification_service
from campus_store.services.events import EventPublisher
from campus_store.services.mailer import ReceiptMailer
from campus_store.services.order_status_service import announce_change, apply_transition, send_receipt
from campus_store.services.outcome import EffectResult, Outcome
from campus_store.time_utils import utcnow

logger = logging.getLogger(__name__)


def default_grace() -> timedelta:
    return timedelta(days=settings.AUTO_CONFIRM_GRACE_DAYS)


@dataclass
class AutoConfirmReport:
    started_at: datetime
    found: int = 0
    confirmed: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    effects: list[EffectResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "found": self.found,
            "confirmed": len(self.confirmed),
            "confirmedOrders": self.confirmed,
            "failed": self.failed,
            "failedEffects": [e.to_dict() for e in self.effects if not e.ok],
        }


def due_order_ids(db: Session, now: datetime, grace: timedelta) -> list[str]:
    cutoff = now - grace
    rows = (
        db.query(Order.id)
        .filter(Order.status == OrderStatus.CLAIMED, Order.updated_at <= cutoff)
        .order_by(Order.updated_at)
        .all()
    )
    return [order_id for (order_id,) in rows]


def auto_confirm_claimed_orders(
    db_factory: Callable[[], Session],
    publisher: EventPublisher,
    mailer: ReceiptMailer | None = None,
    now: datetime | None = None,
    grace: timedelta | None = None,
) -> AutoConfirmReport:
    now = now or utcnow()
    grace = grace if grace is not None else default_grace()
    report = AutoConfirmReport(started_at=now)

    db = db_factory()
    try:
        order_ids = due_order_ids(db, now, grace)
    finally:
        db.close()

    report.found = len(order_ids)
    if not order_ids:
        logger.info("Auto-confirm: no claimed orders older than %s", grace)
        return report

    logger.info("Auto-confirm: %d claimed order(s) to complete", len(order_ids))
    for order_id in order_ids:
        db = db_factory()
        try:
            number = _confirm_one(db, order_id, grace, publisher, mailer, report)
        except Exception as e:
            logger.exception("Auto-confirm failed for order %s", order_id)
            report.failed.append({"orderId": order_id, "error": str(e)})
            continue
        finally:
            db.close()
        if number:
            report.confirmed.append(number)

    logger.info(
        "Auto-confirm finished: %d confirmed, %d failed of %d",
        len(report.confirmed), len(report.failed), report.found,
    )
    return report


def _confirm_one(
    db: Session,
    order_id: str,
    grace: timedelta,
    publisher: EventPublisher,
    mailer: ReceiptMailer | None,
    report: AutoConfirmReport,
) -> str | None:
    order = db.get(Order, order_id)
    if order is None or OrderStatus(order.status) != OrderStatus.CLAIMED:
        logger.info("Auto-confirm: order %s is no longer claimed, skipping", order_id)
        return None

    days = grace.days or 1
    change = apply_transition(db, order, OrderStatus.COMPLETED, f"Auto-confirmed after {days} days")
    outcome = Outcome(change)
    announce_change(db, publisher, None, change, outcome, notify_buyer=False)

    summary = notification_service.product_summary(order.items)
    buyer = order.user.name if order.user else "the customer"
    outcome.run(
        "buyer-notification",
        lambda: notification_service.deliver(db, publisher, [notification_service.create_notification(
            db,
            order.user_id,
            "Order Auto-Confirmed!",
            f"Your order for {summary} has been automatically confirmed as received after {days} days.",
            related_id=order.id,
        )]),
    )
    outcome.run(
        "admin-notification",
        lambda: notification_service.deliver(db, publisher, notification_service.notify_admins(
            db,
            "Order Auto-Confirmed",
            f"Order {order.order_number} for {buyer} ({summary}) was auto-confirmed after {days} days.",
            related_id=order.id,
        )),
    )
    if mailer is not None:
        outcome.run("receipt-email", send_receipt, mailer, order)

    report.effects.extend(outcome.effects)
    return order.order_number


def auto_confirm_stats(db: Session, now: datetime | None = None, grace: timedelta | None = None) -> dict:
    """Counts of claimed orders by how soon they become due."""
    now = now or utcnow()
    grace = grace if grace is not None else default_grace()

    def due_by(moment: datetime) -> int:
        return (
            db.query(func.count(Order.id))
            .filter(Order.status == OrderStatus.CLAIMED, Order.updated_at <= moment - grace)
            .scalar()
        ) or 0

    total = db.query(func.count(Order.id)).filter(Order.status == OrderStatus.CLAIMED).scalar() or 0
    ready_now = due_by(now)
    ready_tomorrow = due_by(now + timedelta(days=1))
    ready_in_two_days = due_by(now + timedelta(days=2))
    return {
        "totalClaimed": total,
        "readyNow": ready_now,
        "readyTomorrow": ready_tomorrow - ready_now,
        "readyInTwoDays": ready_in_two_days - ready_tomorrow,
        "graceDays": grace.days,
    }
